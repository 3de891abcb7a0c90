"""
Inbound clinical events: the facts the reconciliation engine operates on.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

TREATMENT_COMPLETED = 'treatment_completed'
APPOINTMENT_COMPLETED = 'appointment_completed'
EVENT_KINDS = (TREATMENT_COMPLETED, APPOINTMENT_COMPLETED)


def _optional_int(value, field):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer id, got {value!r}")


def _optional_str(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class ClinicalEvent:
    patient_id: str
    event_kind: str
    label: str
    tooth_number: Optional[str] = None
    tooth_diagnosis_id: Optional[int] = None
    consultation_id: Optional[int] = None
    appointment_id: Optional[int] = None
    treatment_id: Optional[int] = None
    occurred_at: Optional[datetime] = None

    def __post_init__(self):
        if self.event_kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {self.event_kind}")
        if not self.patient_id:
            raise ValueError("patientId is required")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClinicalEvent':
        """
        Build an event from the inbound contract:
        {patientId, eventKind, treatmentType|appointmentType, toothNumber?,
         toothDiagnosisId?, consultationId?, appointmentId?}
        snake_case keys are accepted as well.
        """
        def pick(*keys):
            for key in keys:
                if data.get(key) not in (None, ''):
                    return data[key]
            return None

        occurred_at = pick('occurredAt', 'occurred_at')
        if isinstance(occurred_at, str):
            occurred_at = datetime.fromisoformat(occurred_at)

        return cls(
            patient_id=_optional_str(pick('patientId', 'patient_id')),
            event_kind=pick('eventKind', 'event_kind'),
            label=pick('treatmentType', 'appointmentType', 'treatment_type', 'appointment_type', 'label') or '',
            tooth_number=_optional_str(pick('toothNumber', 'tooth_number')),
            tooth_diagnosis_id=_optional_int(pick('toothDiagnosisId', 'tooth_diagnosis_id'), 'toothDiagnosisId'),
            consultation_id=_optional_int(pick('consultationId', 'consultation_id'), 'consultationId'),
            appointment_id=_optional_int(pick('appointmentId', 'appointment_id'), 'appointmentId'),
            treatment_id=_optional_int(pick('treatmentId', 'treatment_id'), 'treatmentId'),
            occurred_at=occurred_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        label_key = 'treatmentType' if self.event_kind == TREATMENT_COMPLETED else 'appointmentType'
        return {
            'patientId': self.patient_id,
            'eventKind': self.event_kind,
            label_key: self.label,
            'toothNumber': self.tooth_number,
            'toothDiagnosisId': self.tooth_diagnosis_id,
            'consultationId': self.consultation_id,
            'appointmentId': self.appointment_id,
            'treatmentId': self.treatment_id,
            'occurredAt': self.occurred_at.isoformat() if self.occurred_at else None,
        }

    def describe(self) -> str:
        tooth = f" tooth #{self.tooth_number}" if self.tooth_number else ''
        return f"{self.event_kind} '{self.label}' patient {self.patient_id}{tooth}"


def event_from_treatment(treatment) -> ClinicalEvent:
    return ClinicalEvent(
        patient_id=treatment.patient_id,
        event_kind=TREATMENT_COMPLETED,
        label=treatment.treatment_type or '',
        tooth_number=_optional_str(treatment.tooth_number),
        tooth_diagnosis_id=treatment.tooth_diagnosis_id,
        consultation_id=treatment.consultation_id,
        appointment_id=treatment.appointment_id,
        treatment_id=treatment.id,
        occurred_at=treatment.completed_at or treatment.updated_at,
    )


def event_from_appointment(appointment) -> ClinicalEvent:
    return ClinicalEvent(
        patient_id=appointment.patient_id,
        event_kind=APPOINTMENT_COMPLETED,
        label=appointment.appointment_type or '',
        consultation_id=appointment.consultation_id,
        appointment_id=appointment.id,
        occurred_at=appointment.updated_at,
    )
