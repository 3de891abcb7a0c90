from dentalsync.extensions import db
from .base import TimestampMixin

TREATMENT_STATUSES = ('pending', 'in_progress', 'completed', 'cancelled')
TERMINAL_TREATMENT_STATUSES = ('completed', 'cancelled')


class Treatment(db.Model, TimestampMixin):
    """
    A clinical procedure performed or planned for a patient.

    Linkage to the affected tooth is optional and of varying completeness:
    a direct tooth_diagnosis_id, a consultation + tooth number, a bare tooth
    number, or nothing but the appointment it was booked under.
    """
    __tablename__ = 'treatments'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.String(36), db.ForeignKey('patients.id'), nullable=False, index=True)
    dentist_id = db.Column(db.Integer, db.ForeignKey('dentists.id'), nullable=True, index=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey('appointments.id'), nullable=True, index=True)
    consultation_id = db.Column(db.Integer, db.ForeignKey('consultations.id'), nullable=True, index=True)
    tooth_diagnosis_id = db.Column(db.Integer, db.ForeignKey('tooth_diagnoses.id'), nullable=True, index=True)
    tooth_number = db.Column(db.String(4), nullable=True)

    treatment_type = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    notes = db.Column(db.Text)

    # Status: pending, in_progress, completed, cancelled
    status = db.Column(db.String(20), default='pending', nullable=False, index=True)
    total_visits = db.Column(db.Integer, default=1, nullable=False)
    completed_visits = db.Column(db.Integer, default=0, nullable=False)
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    appointment = db.relationship('Appointment', backref=db.backref('treatments', lazy='dynamic'), lazy=True)
    consultation = db.relationship('Consultation', lazy=True)
    dentist = db.relationship('Dentist', lazy=True)

    @property
    def is_terminal(self):
        return self.status in TERMINAL_TREATMENT_STATUSES

    def __repr__(self):
        return f"<Treatment {self.id} {self.treatment_type} ({self.status})>"

    def to_dict(self):
        return {
            'id': self.id,
            'patient_id': self.patient_id,
            'dentist_id': self.dentist_id,
            'appointment_id': self.appointment_id,
            'consultation_id': self.consultation_id,
            'tooth_diagnosis_id': self.tooth_diagnosis_id,
            'tooth_number': self.tooth_number,
            'treatment_type': self.treatment_type,
            'description': self.description,
            'notes': self.notes,
            'status': self.status,
            'total_visits': self.total_visits,
            'completed_visits': self.completed_visits,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
