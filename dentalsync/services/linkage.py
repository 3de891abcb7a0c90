"""
Linkage Resolver
Finds the tooth-diagnosis record(s) a clinical event affects.

Rules are tried in order and resolution stops at the first non-empty result:

    direct            event.tooth_diagnosis_id
    consultation      (consultation_id, tooth_number)
    latest_for_tooth  most recently updated diagnosis for (patient, tooth)   [inferred]
    appointment_link  AppointmentTooth rows of the event's appointment,
                      each re-entering the three rules above
    treatment_match   treatment without a tooth: the single diagnosis whose
                      recommended treatment maps to the same status           [inferred]
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from dentalsync.errors import AmbiguousLinkage, NotFound
from dentalsync.extensions import db
from dentalsync.models import Appointment, AppointmentTooth, Consultation, Patient, ToothDiagnosis
from dentalsync.services.events import TREATMENT_COMPLETED, ClinicalEvent
from dentalsync.services.status_rules import StatusRuleTable, get_rule_table

logger = logging.getLogger(__name__)

DIRECT = 'direct'
CONSULTATION = 'consultation'
LATEST_FOR_TOOTH = 'latest_for_tooth'
APPOINTMENT_LINK = 'appointment_link'
TREATMENT_MATCH = 'treatment_match'

INFERRED_METHODS = frozenset({LATEST_FOR_TOOTH, TREATMENT_MATCH})


@dataclass
class Linkage:
    target_ids: List[int] = field(default_factory=list)
    method: Optional[str] = None
    inferred: bool = False

    @property
    def found(self) -> bool:
        return bool(self.target_ids)

    def to_dict(self):
        return {'target_ids': list(self.target_ids), 'method': self.method, 'inferred': self.inferred}


def _active_diagnoses():
    return ToothDiagnosis.query.filter(ToothDiagnosis.deleted_at.is_(None))


def _newest_first(query):
    # Ties on updated_at go to the most recently inserted row
    return query.order_by(ToothDiagnosis.updated_at.desc(), ToothDiagnosis.id.desc())


def _by_direct_id(patient_id: str, diagnosis_id: int) -> Optional[int]:
    diagnosis = db.session.get(ToothDiagnosis, diagnosis_id)
    if diagnosis is None or diagnosis.deleted_at is not None:
        logger.warning("Tooth diagnosis %s referenced by event no longer exists", diagnosis_id)
        return None
    if diagnosis.patient_id != patient_id:
        logger.warning("Tooth diagnosis %s belongs to patient %s, not %s; ignoring direct link",
                       diagnosis_id, diagnosis.patient_id, patient_id)
        return None
    return diagnosis.id


def _by_consultation(patient_id: str, consultation_id: int, tooth_number: str) -> Optional[int]:
    diagnosis = _newest_first(_active_diagnoses().filter(
        ToothDiagnosis.patient_id == patient_id,
        ToothDiagnosis.consultation_id == consultation_id,
        ToothDiagnosis.tooth_number == tooth_number,
    )).first()
    return diagnosis.id if diagnosis else None


def _latest_for_tooth(patient_id: str, tooth_number: str) -> Optional[int]:
    diagnosis = _newest_first(_active_diagnoses().filter(
        ToothDiagnosis.patient_id == patient_id,
        ToothDiagnosis.tooth_number == tooth_number,
    )).first()
    return diagnosis.id if diagnosis else None


def resolve_tooth(
    patient_id: str,
    tooth_diagnosis_id: Optional[int] = None,
    consultation_id: Optional[int] = None,
    tooth_number: Optional[str] = None,
) -> Linkage:
    """Apply the direct, consultation and latest-for-tooth rules in order."""
    if tooth_diagnosis_id:
        found = _by_direct_id(patient_id, tooth_diagnosis_id)
        if found:
            return Linkage([found], DIRECT)

    if consultation_id and tooth_number:
        found = _by_consultation(patient_id, consultation_id, tooth_number)
        if found:
            return Linkage([found], CONSULTATION)

    if tooth_number:
        found = _latest_for_tooth(patient_id, tooth_number)
        if found:
            return Linkage([found], LATEST_FOR_TOOTH, inferred=True)

    return Linkage()


def _via_appointment_links(event: ClinicalEvent) -> Linkage:
    appointment = db.session.get(Appointment, event.appointment_id)
    if appointment is None or appointment.deleted_at is not None:
        raise NotFound(f"Appointment {event.appointment_id} not found", appointment_id=event.appointment_id)

    consultation_id = event.consultation_id or appointment.consultation_id
    links = AppointmentTooth.query.filter_by(appointment_id=appointment.id).order_by(AppointmentTooth.id).all()

    targets = []
    inferred = False
    for link in links:
        linkage = resolve_tooth(
            event.patient_id,
            tooth_diagnosis_id=link.tooth_diagnosis_id,
            consultation_id=link.consultation_id or consultation_id,
            tooth_number=link.tooth_number,
        )
        for target in linkage.target_ids:
            if target not in targets:
                targets.append(target)
        inferred = inferred or linkage.inferred

    if not targets:
        return Linkage()
    return Linkage(targets, APPOINTMENT_LINK, inferred=inferred)


def plausible_candidates(event: ClinicalEvent, rules: StatusRuleTable) -> List[int]:
    """Diagnoses whose recommended treatment maps to the same status as the event."""
    event_match = rules.resolve_event(event.label)
    if event_match is None:
        return []

    query = _active_diagnoses().filter(
        ToothDiagnosis.patient_id == event.patient_id,
        ToothDiagnosis.recommended_treatment.isnot(None),
    )
    if event.consultation_id:
        query = query.filter(ToothDiagnosis.consultation_id == event.consultation_id)

    candidates = []
    for diagnosis in query.order_by(ToothDiagnosis.id).all():
        match = rules.resolve_event(diagnosis.recommended_treatment)
        if match is not None and match.status == event_match.status:
            candidates.append(diagnosis.id)
    return candidates


def resolve_targets(event: ClinicalEvent, rules: Optional[StatusRuleTable] = None) -> Linkage:
    """
    Resolve an event to the tooth-diagnosis records it affects.

    Returns:
        Linkage: empty when nothing could be resolved

    Raises:
        NotFound: the patient, or the referenced consultation or appointment, no longer exists
        AmbiguousLinkage: more than one diagnosis plausibly matches a toothless treatment
    """
    rules = rules or get_rule_table()

    if db.session.get(Patient, event.patient_id) is None:
        raise NotFound(f"Patient {event.patient_id} not found", patient_id=event.patient_id)
    if event.consultation_id and db.session.get(Consultation, event.consultation_id) is None:
        raise NotFound(f"Consultation {event.consultation_id} not found", consultation_id=event.consultation_id)

    linkage = resolve_tooth(
        event.patient_id,
        tooth_diagnosis_id=event.tooth_diagnosis_id,
        consultation_id=event.consultation_id,
        tooth_number=event.tooth_number,
    )
    if linkage.found:
        return linkage

    if event.appointment_id:
        linkage = _via_appointment_links(event)
        if linkage.found:
            return linkage

    if event.event_kind == TREATMENT_COMPLETED and not event.tooth_number:
        candidates = plausible_candidates(event, rules)
        if len(candidates) > 1:
            raise AmbiguousLinkage(
                f"{len(candidates)} diagnoses plausibly match '{event.label}'",
                candidate_ids=candidates,
                patient_id=event.patient_id,
            )
        if candidates:
            return Linkage(candidates, TREATMENT_MATCH, inferred=True)

    return Linkage()
