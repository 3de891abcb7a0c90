"""
Query Facade
Read-only assembly of the diagnosis and treatment overviews shown on a
patient's chart. Missing joins degrade to placeholders; they never abort a view.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from dentalsync.models import Appointment, AppointmentTooth, Consultation, Dentist, ToothDiagnosis, Treatment
from dentalsync.services.status_rules import get_rule_table, is_resolved, normalize_label

logger = logging.getLogger(__name__)

UNKNOWN_DENTIST = 'Unknown Dentist'

# Generic appointment types that always stand for clinical work
TREATMENT_APPOINTMENT_TYPES = frozenset({'treatment', 'procedure', 'follow-up', 'follow_up', 'follow up'})

APPOINTMENT_TO_TREATMENT_STATUS = {
    'scheduled': 'pending',
    'confirmed': 'pending',
    'in_progress': 'in_progress',
    'completed': 'completed',
    'cancelled': 'cancelled',
    'no_show': 'cancelled',
}


def overview_status(status: Optional[str], follow_up_required: bool) -> str:
    """resolved, else monitoring when a follow-up is pending, else active."""
    if is_resolved(status):
        return 'resolved'
    if follow_up_required:
        return 'monitoring'
    return 'active'


def map_appointment_status(appointment_status: Optional[str]) -> str:
    return APPOINTMENT_TO_TREATMENT_STATUS.get(appointment_status or '', 'pending')


def is_treatment_appointment(appointment_type: Optional[str]) -> bool:
    """Generic clinical types, or any type the rule table recognises as a procedure."""
    label = normalize_label(appointment_type)
    if not label:
        return False
    return label in TREATMENT_APPOINTMENT_TYPES or get_rule_table().resolve_event(label) is not None


def _iso(value):
    return value.isoformat() if value else None


def _dentist_names(dentist_ids) -> Dict[int, str]:
    ids = {i for i in dentist_ids if i is not None}
    if not ids:
        return {}
    return {d.id: d.full_name or UNKNOWN_DENTIST for d in Dentist.query.filter(Dentist.id.in_(ids)).all()}


def _appointment_summary(appointment: Appointment, dentist_names: Dict[int, str], dentist_id=None) -> Dict[str, Any]:
    dentist_id = dentist_id if dentist_id is not None else appointment.dentist_id
    return {
        'id': appointment.id,
        'appointment_type': appointment.appointment_type,
        'scheduled_date': _iso(appointment.scheduled_date),
        'scheduled_time': appointment.scheduled_time,
        'duration': appointment.duration_minutes,
        'status': appointment.status,
        'dentist_name': dentist_names.get(dentist_id, UNKNOWN_DENTIST),
    }


def _split_diagnoses(text: Optional[str]) -> List[str]:
    return [part.strip() for part in (text or '').split(',') if part.strip()]


def _priority(raw: Optional[str]) -> str:
    value = (raw or 'medium').lower()
    return 'low' if value == 'routine' else value


def get_diagnosis_overview(patient_id: str) -> List[Dict[str, Any]]:
    """
    Every tooth diagnosis of a patient, newest first, decorated with its
    overview status, linked treatments and the most relevant appointment.

    Args:
        patient_id: Patient ID

    Returns:
        list: DiagnosisOverviewRow dicts
    """
    diagnoses = ToothDiagnosis.query.filter(
        ToothDiagnosis.patient_id == patient_id,
        ToothDiagnosis.deleted_at.is_(None),
    ).order_by(ToothDiagnosis.updated_at.desc(), ToothDiagnosis.id.desc()).all()

    treatments = Treatment.query.filter(
        Treatment.patient_id == patient_id,
        Treatment.tooth_diagnosis_id.isnot(None),
    ).all()

    by_diagnosis = {}
    for treatment in treatments:
        by_diagnosis.setdefault(treatment.tooth_diagnosis_id, []).append(treatment)

    appointment_ids = {t.appointment_id for t in treatments if t.appointment_id}
    appointments = {}
    if appointment_ids:
        appointments = {a.id: a for a in Appointment.query.filter(Appointment.id.in_(appointment_ids)).all()}

    dentist_names = _dentist_names(
        [t.dentist_id for t in treatments] + [a.dentist_id for a in appointments.values()]
    )

    consultation_ids = {d.consultation_id for d in diagnoses if d.consultation_id}
    clinicians = {}
    if consultation_ids:
        consultations = Consultation.query.filter(Consultation.id.in_(consultation_ids)).all()
        names = _dentist_names([c.dentist_id for c in consultations])
        clinicians = {c.id: names.get(c.dentist_id) for c in consultations}

    rows = []
    for diagnosis in diagnoses:
        linked = sorted(
            by_diagnosis.get(diagnosis.id, []),
            key=lambda t: (t.updated_at or datetime.min, t.id),
            reverse=True,
        )

        appointment = None
        for treatment in linked:
            linked_appointment = appointments.get(treatment.appointment_id)
            if linked_appointment is not None:
                appointment = _appointment_summary(
                    linked_appointment, dentist_names,
                    dentist_id=treatment.dentist_id or linked_appointment.dentist_id,
                )
                break

        rows.append({
            'id': diagnosis.id,
            'patient_id': diagnosis.patient_id,
            'tooth_number': diagnosis.tooth_number,
            'diagnoses': _split_diagnoses(diagnosis.primary_diagnosis),
            'primary_diagnosis': diagnosis.primary_diagnosis,
            'tooth_status': diagnosis.status,
            'status': overview_status(diagnosis.status, diagnosis.follow_up_required),
            'priority': _priority(diagnosis.treatment_priority),
            'color_code': diagnosis.color_code,
            'follow_up_required': bool(diagnosis.follow_up_required),
            'consultation_id': diagnosis.consultation_id,
            'clinician_name': clinicians.get(diagnosis.consultation_id),
            'symptoms': diagnosis.symptom_list(),
            'created_at': _iso(diagnosis.created_at),
            'updated_at': _iso(diagnosis.updated_at),
            'treatments': [
                {
                    'id': t.id,
                    'treatment_type': t.treatment_type,
                    'status': t.status,
                    'appointment_id': t.appointment_id,
                    'consultation_id': t.consultation_id,
                    'tooth_number': t.tooth_number,
                }
                for t in linked
            ],
            'appointment': appointment,
        })

    return rows


def _sort_moment(row: Dict[str, Any]) -> str:
    appointment = row.get('appointment')
    if appointment and appointment.get('scheduled_date'):
        return f"{appointment['scheduled_date']}T{appointment.get('scheduled_time') or '00:00'}"
    return row.get('created_at') or ''


def get_treatment_overview(patient_id: str) -> List[Dict[str, Any]]:
    """
    Every treatment of a patient plus a pseudo-treatment for each
    treatment-like appointment without a Treatment row, newest first.

    Args:
        patient_id: Patient ID

    Returns:
        list: TreatmentOverviewRow dicts
    """
    treatments = Treatment.query.filter(Treatment.patient_id == patient_id).order_by(Treatment.created_at.desc()).all()
    appointments = Appointment.query.filter(
        Appointment.patient_id == patient_id,
        Appointment.deleted_at.is_(None),
    ).all()
    appointments_by_id = {a.id: a for a in appointments}

    # Treatments may point at appointments filed elsewhere (e.g. soft-deleted ones)
    missing = {t.appointment_id for t in treatments if t.appointment_id and t.appointment_id not in appointments_by_id}
    if missing:
        appointments_by_id.update({a.id: a for a in Appointment.query.filter(Appointment.id.in_(missing)).all()})

    consultation_ids = {t.consultation_id for t in treatments if t.consultation_id}
    consultations = {}
    if consultation_ids:
        consultations = {c.id: c for c in Consultation.query.filter(Consultation.id.in_(consultation_ids)).all()}

    diagnosis_ids = {t.tooth_diagnosis_id for t in treatments if t.tooth_diagnosis_id}
    diagnoses = {}
    if diagnosis_ids:
        diagnoses = {d.id: d for d in ToothDiagnosis.query.filter(ToothDiagnosis.id.in_(diagnosis_ids)).all()}

    dentist_names = _dentist_names(
        [t.dentist_id for t in treatments] + [a.dentist_id for a in appointments_by_id.values()]
    )

    rows = []
    for treatment in treatments:
        row = treatment.to_dict()
        appointment = appointments_by_id.get(treatment.appointment_id)
        row['appointment'] = (
            _appointment_summary(appointment, dentist_names, dentist_id=treatment.dentist_id or appointment.dentist_id)
            if appointment is not None else None
        )
        consultation = consultations.get(treatment.consultation_id)
        row['consultation'] = {
            'consultation_date': _iso(consultation.consultation_date),
            'chief_complaint': consultation.chief_complaint,
        } if consultation is not None else None
        diagnosis = diagnoses.get(treatment.tooth_diagnosis_id)
        row['tooth_diagnosis'] = {
            'primary_diagnosis': diagnosis.primary_diagnosis,
            'status': diagnosis.status,
            'priority': _priority(diagnosis.treatment_priority),
        } if diagnosis is not None else None
        row['synthesized'] = False
        rows.append(row)

    linked_appointment_ids = {t.appointment_id for t in treatments if t.appointment_id}
    unlinked = [
        a for a in appointments
        if a.id not in linked_appointment_ids and is_treatment_appointment(a.appointment_type)
    ]
    if unlinked:
        teeth = {}
        links = AppointmentTooth.query.filter(
            AppointmentTooth.appointment_id.in_([a.id for a in unlinked])
        ).order_by(AppointmentTooth.id).all()
        for link in links:
            if link.tooth_number:
                teeth.setdefault(link.appointment_id, []).append(link.tooth_number)

        for appointment in unlinked:
            status = map_appointment_status(appointment.status)
            rows.append({
                'id': f"unlinked_{appointment.id}",
                'patient_id': appointment.patient_id,
                'dentist_id': appointment.dentist_id,
                'appointment_id': appointment.id,
                'consultation_id': appointment.consultation_id,
                'tooth_diagnosis_id': None,
                'tooth_number': ', '.join(teeth.get(appointment.id, [])) or None,
                'treatment_type': appointment.reason_for_visit or appointment.appointment_type or 'Treatment',
                'description': appointment.notes,
                'notes': None,
                'status': status,
                'total_visits': 1,
                'completed_visits': 1 if status == 'completed' else 0,
                'started_at': _iso(appointment.created_at) if status == 'in_progress' else None,
                'completed_at': _iso(appointment.updated_at) if status == 'completed' else None,
                'created_at': _iso(appointment.created_at),
                'updated_at': _iso(appointment.updated_at),
                'appointment': _appointment_summary(appointment, dentist_names),
                'consultation': None,
                'tooth_diagnosis': None,
                'synthesized': True,
            })

    rows.sort(key=_sort_moment, reverse=True)
    return rows


def get_latest_tooth_chart(patient_id: str) -> Dict[str, Dict[str, Any]]:
    """Latest diagnosis per tooth: the snapshot a viewer fetches on (re)connect."""
    diagnoses = ToothDiagnosis.query.filter(
        ToothDiagnosis.patient_id == patient_id,
        ToothDiagnosis.deleted_at.is_(None),
    ).order_by(ToothDiagnosis.updated_at.desc(), ToothDiagnosis.id.desc()).all()

    chart = {}
    for diagnosis in diagnoses:
        chart.setdefault(diagnosis.tooth_number, diagnosis.to_dict())
    return chart


def get_diagnosis_stats(patient_id: str) -> Dict[str, int]:
    stats = {'total': 0, 'active': 0, 'resolved': 0, 'monitoring': 0, 'high_priority': 0, 'urgent': 0}
    for diagnosis in ToothDiagnosis.query.filter(
        ToothDiagnosis.patient_id == patient_id,
        ToothDiagnosis.deleted_at.is_(None),
    ).all():
        stats['total'] += 1
        stats[overview_status(diagnosis.status, diagnosis.follow_up_required)] += 1
        priority = _priority(diagnosis.treatment_priority)
        if priority == 'urgent':
            stats['urgent'] += 1
        if priority in ('urgent', 'high'):
            stats['high_priority'] += 1
    return stats


def get_treatment_stats(patient_id: str) -> Dict[str, int]:
    rows = get_treatment_overview(patient_id)
    return {
        'total': len(rows),
        'planned': sum(1 for r in rows if r['status'] == 'pending'),
        'in_progress': sum(1 for r in rows if r['status'] == 'in_progress'),
        'completed': sum(1 for r in rows if r['status'] == 'completed'),
        'cancelled': sum(1 for r in rows if r['status'] == 'cancelled'),
        'total_duration': sum((r['appointment'] or {}).get('duration') or 0 for r in rows),
    }
