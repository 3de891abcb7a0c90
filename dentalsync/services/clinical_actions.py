"""
Clinical Actions
The write paths that produce clinical events: recording a tooth diagnosis,
moving treatments and appointments through their lifecycles, and booking a
treatment against an appointment.

Every completion hands a ClinicalEvent to dispatch_event(). Reconciliation is
best-effort from the caller's point of view: a dispatch failure is logged and
never fails the action that triggered it.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app

from dentalsync.errors import InvalidTransition, NotFound
from dentalsync.extensions import db
from dentalsync.models import Appointment, AppointmentTooth, Patient, ToothDiagnosis, Treatment
from dentalsync.models.appointment import APPOINTMENT_STATUSES, APPOINTMENT_TRANSITIONS
from dentalsync.models.treatment import TREATMENT_STATUSES
from dentalsync.services.events import ClinicalEvent, event_from_appointment, event_from_treatment
from dentalsync.services.publisher import notify_change
from dentalsync.services.reconciler import next_stamp, process_event
from dentalsync.services.status_rules import coerce_status, get_rule_table
from dentalsync.utils.audit import log_audit

logger = logging.getLogger(__name__)

PRIORITIES = ('urgent', 'high', 'medium', 'low', 'routine')


def dispatch_event(event: ClinicalEvent) -> Dict[str, Any]:
    """
    Hand an event to the reconciler: inline when RECONCILE_ASYNC is off,
    otherwise through the tasks.reconcile_event Celery task.

    Returns:
        dict: {'mode': 'inline'|'queued'|'failed', ...}
    """
    try:
        if not current_app.config.get('RECONCILE_ASYNC', True):
            outcome = process_event(event)
            return {'mode': 'inline', **outcome.to_dict()}

        from tasks.reconcile_tasks import reconcile_event
        result = reconcile_event.delay(event.to_dict())
        logger.info("Queued reconciliation for %s (task %s)", event.describe(), result.id)
        return {'mode': 'queued', 'task_id': result.id, 'event': event.to_dict()}
    except Exception as e:
        logger.warning("Reconciliation dispatch for %s failed: %s", event.describe(), e, exc_info=True)
        return {'mode': 'failed', 'event': event.to_dict(), 'error': str(e)}


def _get_patient(patient_id: str) -> Patient:
    patient = db.session.get(Patient, patient_id)
    if patient is None:
        raise NotFound(f"Patient {patient_id} not found", patient_id=patient_id)
    return patient


def _optional_int(value, field):
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer")


def _symptoms_text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        value = [s.strip() for s in value.split(',') if s.strip()]
    return json.dumps(list(value))


def save_tooth_diagnosis(patient_id: str, data: Dict[str, Any], user_id=None) -> Dict[str, Any]:
    """
    Create or update the diagnosis for (patient, consultation, tooth).

    The colour is always derived from the status; when no status is given it
    is derived from the diagnosis text. A client-supplied color_code is ignored.

    Args:
        patient_id: Patient ID
        data: toothNumber/tooth_number plus optional diagnosis fields
        user_id: acting user for the audit trail

    Returns:
        dict: {'diagnosis': ..., 'created': bool}

    Raises:
        NotFound: unknown patient
        ValueError: missing tooth number or unknown status/priority
    """
    _get_patient(patient_id)
    rules = get_rule_table()

    tooth_number = str(data.get('tooth_number') or data.get('toothNumber') or '').strip()
    if not tooth_number:
        raise ValueError("tooth_number is required")
    consultation_id = _optional_int(data.get('consultation_id', data.get('consultationId')), 'consultation_id')

    primary_diagnosis = data.get('primary_diagnosis', data.get('primaryDiagnosis'))
    recommended = data.get('recommended_treatment', data.get('recommendedTreatment'))

    raw_status = data.get('status')
    if raw_status:
        status = coerce_status(raw_status)
        if status is None:
            raise ValueError(f"Unknown tooth status: {raw_status}")
    else:
        status = rules.status_for_diagnosis(primary_diagnosis)

    priority = data.get('treatment_priority', data.get('treatmentPriority'))
    if priority is not None and priority not in PRIORITIES:
        raise ValueError(f"Unknown treatment priority: {priority}")

    if data.get('color_code') or data.get('colorCode'):
        logger.debug("Ignoring client color for patient %s tooth #%s", patient_id, tooth_number)

    diagnosis = ToothDiagnosis.query.filter(
        ToothDiagnosis.patient_id == patient_id,
        ToothDiagnosis.tooth_number == tooth_number,
        ToothDiagnosis.consultation_id.is_(None) if consultation_id is None
        else ToothDiagnosis.consultation_id == consultation_id,
        ToothDiagnosis.deleted_at.is_(None),
    ).order_by(ToothDiagnosis.id.desc()).first()

    created = diagnosis is None
    if created:
        diagnosis = ToothDiagnosis(patient_id=patient_id, consultation_id=consultation_id, tooth_number=tooth_number)
        db.session.add(diagnosis)

    diagnosis.status = status.value
    diagnosis.color_code = rules.color_for(status)
    if primary_diagnosis is not None:
        diagnosis.primary_diagnosis = primary_diagnosis
    if recommended is not None:
        diagnosis.recommended_treatment = recommended
    if priority is not None:
        diagnosis.treatment_priority = priority
    for key, camel in (('diagnosis_details', 'diagnosisDetails'), ('notes', 'notes')):
        if key in data or camel in data:
            setattr(diagnosis, key, data.get(key, data.get(camel)))
    if 'symptoms' in data:
        diagnosis.symptoms = _symptoms_text(data['symptoms'])
    follow_up = data.get('follow_up_required', data.get('followUpRequired'))
    if follow_up is not None:
        diagnosis.follow_up_required = bool(follow_up)
    if not created:
        # Explicit stamp keeps the optimistic guard strictly monotonic
        diagnosis.updated_at = next_stamp(diagnosis.updated_at)

    db.session.commit()

    logger.info("Tooth diagnosis %s %s: patient %s #%s %s (%s)",
                diagnosis.id, 'created' if created else 'updated',
                patient_id, tooth_number, diagnosis.status, diagnosis.color_code)
    notify_change(patient_id, 'tooth_diagnosis', diagnosis.id,
                  'insert' if created else 'update', sequence=diagnosis.updated_at)
    log_audit(
        entity_type='tooth_diagnosis',
        action='save',
        user_id=user_id,
        entity_id=diagnosis.id,
        details={'tooth_number': tooth_number, 'status': diagnosis.status, 'created': created},
    )
    return {'diagnosis': diagnosis.to_dict(), 'created': created}


def _apply_treatment_status(treatment: Treatment, status: str, now: datetime) -> bool:
    """Set a treatment's status with its side fields. Returns True when it just completed."""
    treatment.status = status
    if status == 'in_progress' and not treatment.started_at:
        treatment.started_at = now
    if status == 'completed':
        treatment.completed_visits = max(treatment.completed_visits or 0, treatment.total_visits or 1)
        treatment.completed_at = now
        if not treatment.started_at:
            treatment.started_at = now
        return True
    return False


def update_treatment_status(treatment_id: int, status: str, user_id=None) -> Dict[str, Any]:
    """
    Move a treatment to a new status. Completed and cancelled are terminal.

    Returns:
        dict: {'treatment': ..., 'changed': bool, 'reconciliation': dispatch result or None}

    Raises:
        NotFound: unknown treatment
        InvalidTransition: unknown status, or leaving a terminal status
    """
    treatment = db.session.get(Treatment, treatment_id)
    if treatment is None:
        raise NotFound(f"Treatment {treatment_id} not found", treatment_id=treatment_id)
    if status not in TREATMENT_STATUSES:
        raise InvalidTransition(f"Unknown treatment status: {status}")

    if treatment.status == status:
        return {'treatment': treatment.to_dict(), 'changed': False, 'reconciliation': None}
    if treatment.is_terminal:
        raise InvalidTransition(f"Treatment {treatment_id} is {treatment.status} and cannot be reopened")

    previous = treatment.status
    completed = _apply_treatment_status(treatment, status, datetime.utcnow())
    db.session.commit()

    logger.info("Treatment %s: %s -> %s", treatment.id, previous, status)
    notify_change(treatment.patient_id, 'treatment', treatment.id, 'update', sequence=treatment.updated_at)
    log_audit(
        entity_type='treatment',
        action='status_change',
        user_id=user_id,
        entity_id=treatment.id,
        details={'from': previous, 'to': status},
    )

    reconciliation = dispatch_event(event_from_treatment(treatment)) if completed else None
    return {'treatment': treatment.to_dict(), 'changed': True, 'reconciliation': reconciliation}


def _cascade_to_treatments(appointment: Appointment, status: str, now: datetime) -> Tuple[List[Treatment], List[Treatment]]:
    """
    Carry an appointment status change over to its open treatments.
    A completed visit counts towards total_visits; the last one completes the treatment.
    """
    changed, finished = [], []
    for treatment in appointment.treatments.order_by(Treatment.id).all():
        if treatment.is_terminal:
            continue
        if status == 'in_progress':
            if treatment.status == 'in_progress':
                continue
            _apply_treatment_status(treatment, 'in_progress', now)
        elif status == 'completed':
            done = (treatment.completed_visits or 0) + 1
            if done >= (treatment.total_visits or 1):
                _apply_treatment_status(treatment, 'completed', now)
                finished.append(treatment)
            else:
                treatment.completed_visits = done
                _apply_treatment_status(treatment, 'in_progress', now)
        elif status == 'cancelled':
            _apply_treatment_status(treatment, 'cancelled', now)
        else:
            continue
        changed.append(treatment)
    return changed, finished


def update_appointment_status(appointment_id: int, status: str, user_id=None) -> Dict[str, Any]:
    """
    Move an appointment through its lifecycle and cascade to linked treatments.

    Completion emits a treatment_completed event per finished treatment. An
    appointment without any treatments emits appointment_completed instead, so
    its tooth links are reconciled from the appointment type.

    Returns:
        dict: {'appointment': ..., 'changed': bool, 'treatments': [...], 'reconciliation': [...]}

    Raises:
        NotFound: unknown or deleted appointment
        InvalidTransition: unknown status or a transition the lifecycle forbids
    """
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None or appointment.deleted_at is not None:
        raise NotFound(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
    if status not in APPOINTMENT_STATUSES:
        raise InvalidTransition(f"Unknown appointment status: {status}")

    if appointment.status == status:
        return {'appointment': appointment.to_dict(), 'changed': False, 'treatments': [], 'reconciliation': []}
    if status not in APPOINTMENT_TRANSITIONS.get(appointment.status, ()):
        raise InvalidTransition(f"Appointment {appointment_id} cannot go from {appointment.status} to {status}")

    previous = appointment.status
    now = datetime.utcnow()
    appointment.status = status
    changed, finished = _cascade_to_treatments(appointment, status, now)
    db.session.commit()

    logger.info("Appointment %s: %s -> %s (%s treatments updated)", appointment.id, previous, status, len(changed))
    notify_change(appointment.patient_id, 'appointment', appointment.id, 'update', sequence=appointment.updated_at)
    for treatment in changed:
        notify_change(treatment.patient_id, 'treatment', treatment.id, 'update', sequence=treatment.updated_at)
    log_audit(
        entity_type='appointment',
        action='status_change',
        user_id=user_id,
        entity_id=appointment.id,
        details={'from': previous, 'to': status, 'treatments': [t.id for t in changed]},
    )

    reconciliation = []
    if status == 'completed':
        reconciliation = [dispatch_event(event_from_treatment(t)) for t in finished]
        if not appointment.treatments.count() and appointment.teeth.count():
            reconciliation.append(dispatch_event(event_from_appointment(appointment)))

    return {
        'appointment': appointment.to_dict(),
        'changed': True,
        'treatments': [t.to_dict() for t in changed],
        'reconciliation': reconciliation,
    }


def link_appointment_to_treatment(
    appointment_id: int,
    treatment_type: str,
    tooth_number: Optional[str] = None,
    tooth_diagnosis_id: Optional[int] = None,
    total_visits: int = 1,
    description: Optional[str] = None,
    user_id=None,
) -> Dict[str, Any]:
    """
    Book a treatment under an appointment and record which tooth it concerns.

    Returns:
        dict: {'treatment': ..., 'appointment_tooth_id': int or None}

    Raises:
        NotFound: unknown appointment or tooth diagnosis
        ValueError: missing treatment type or bad visit count
    """
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None or appointment.deleted_at is not None:
        raise NotFound(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
    if not (treatment_type or '').strip():
        raise ValueError("treatment_type is required")
    if total_visits is None or int(total_visits) < 1:
        raise ValueError("total_visits must be at least 1")
    if tooth_number is not None:
        tooth_number = str(tooth_number).strip() or None

    diagnosis = None
    if tooth_diagnosis_id:
        diagnosis = db.session.get(ToothDiagnosis, tooth_diagnosis_id)
        if diagnosis is None or diagnosis.patient_id != appointment.patient_id:
            raise NotFound(f"Tooth diagnosis {tooth_diagnosis_id} not found", tooth_diagnosis_id=tooth_diagnosis_id)
        tooth_number = tooth_number or diagnosis.tooth_number

    treatment = Treatment(
        patient_id=appointment.patient_id,
        dentist_id=appointment.dentist_id,
        appointment_id=appointment.id,
        consultation_id=appointment.consultation_id or (diagnosis.consultation_id if diagnosis else None),
        tooth_diagnosis_id=diagnosis.id if diagnosis else None,
        tooth_number=tooth_number,
        treatment_type=treatment_type.strip(),
        description=description,
        status='pending',
        total_visits=int(total_visits),
        completed_visits=0,
    )
    db.session.add(treatment)

    link = None
    if tooth_number:
        link = AppointmentTooth.query.filter_by(appointment_id=appointment.id, tooth_number=tooth_number).first()
        if link is None:
            link = AppointmentTooth(
                appointment_id=appointment.id,
                consultation_id=treatment.consultation_id,
                tooth_number=tooth_number,
                tooth_diagnosis_id=treatment.tooth_diagnosis_id,
                diagnosis=diagnosis.primary_diagnosis if diagnosis else None,
            )
            db.session.add(link)
        elif link.tooth_diagnosis_id is None and treatment.tooth_diagnosis_id:
            link.tooth_diagnosis_id = treatment.tooth_diagnosis_id

    db.session.commit()

    logger.info("Treatment %s '%s' linked to appointment %s (tooth %s)",
                treatment.id, treatment.treatment_type, appointment.id, tooth_number or '-')
    notify_change(treatment.patient_id, 'treatment', treatment.id, 'insert', sequence=treatment.updated_at)
    log_audit(
        entity_type='treatment',
        action='link_appointment',
        user_id=user_id,
        entity_id=treatment.id,
        details={'appointment_id': appointment.id, 'tooth_number': tooth_number},
    )
    return {'treatment': treatment.to_dict(), 'appointment_tooth_id': link.id if link else None}
