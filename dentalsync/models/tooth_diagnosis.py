"""
Per-tooth clinical diagnosis. One row per (patient, tooth, diagnosis episode).

status and color_code are the reconciled fields; color_code is always derived
from status through the StatusRuleTable and is never authored directly.
"""
import json
from datetime import date

from dentalsync.extensions import db
from .base import TimestampMixin


class ToothDiagnosis(db.Model, TimestampMixin):
    __tablename__ = 'tooth_diagnoses'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.String(36), db.ForeignKey('patients.id'), nullable=False, index=True)
    consultation_id = db.Column(db.Integer, db.ForeignKey('consultations.id'), nullable=True, index=True)

    tooth_number = db.Column(db.String(4), nullable=False, index=True)  # FDI code, e.g. "11".."48"
    status = db.Column(db.String(30), nullable=False, default='healthy')
    color_code = db.Column(db.String(9), nullable=False)

    primary_diagnosis = db.Column(db.Text)
    diagnosis_details = db.Column(db.Text)
    symptoms = db.Column(db.Text)  # JSON list
    recommended_treatment = db.Column(db.Text)
    treatment_priority = db.Column(db.String(20), default='medium')  # urgent, high, medium, low, routine
    follow_up_required = db.Column(db.Boolean, default=False, nullable=False)
    examination_date = db.Column(db.Date, default=date.today)
    notes = db.Column(db.Text)

    # Soft delete (no hard deletion of clinical data)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    treatments = db.relationship('Treatment', backref='tooth_diagnosis', lazy='dynamic')

    __table_args__ = (
        db.Index('ix_tooth_diagnoses_patient_tooth', 'patient_id', 'tooth_number'),
    )

    def symptom_list(self):
        if not self.symptoms:
            return []
        try:
            value = json.loads(self.symptoms)
        except (TypeError, ValueError):
            return []
        return value if isinstance(value, list) else []

    def __repr__(self):
        return f"<ToothDiagnosis #{self.tooth_number} {self.status} (patient {self.patient_id})>"

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'patient_id': self.patient_id,
            'consultation_id': self.consultation_id,
            'tooth_number': self.tooth_number,
            'status': self.status,
            'color_code': self.color_code,
            'primary_diagnosis': self.primary_diagnosis,
            'diagnosis_details': self.diagnosis_details,
            'symptoms': self.symptom_list(),
            'recommended_treatment': self.recommended_treatment,
            'treatment_priority': self.treatment_priority,
            'follow_up_required': bool(self.follow_up_required),
            'examination_date': self.examination_date.isoformat() if self.examination_date else None,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
