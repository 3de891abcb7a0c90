from datetime import date

from dentalsync.extensions import db
from .base import TimestampMixin

# scheduled -> confirmed -> in_progress -> completed, or -> cancelled / no_show
APPOINTMENT_STATUSES = ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')
APPOINTMENT_TRANSITIONS = {
    'scheduled': ('confirmed', 'in_progress', 'completed', 'cancelled', 'no_show'),
    'confirmed': ('in_progress', 'completed', 'cancelled', 'no_show'),
    'in_progress': ('completed', 'cancelled'),
    'completed': (),
    'cancelled': (),
    'no_show': (),
}


class Appointment(db.Model, TimestampMixin):
    __tablename__ = 'appointments'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.String(36), db.ForeignKey('patients.id'), nullable=False, index=True)
    dentist_id = db.Column(db.Integer, db.ForeignKey('dentists.id'), nullable=True, index=True)
    consultation_id = db.Column(db.Integer, db.ForeignKey('consultations.id'), nullable=True, index=True)

    appointment_type = db.Column(db.String(100), nullable=False)  # e.g. "filling", "root canal", "follow_up"
    status = db.Column(db.String(20), default='scheduled', nullable=False, index=True)
    scheduled_date = db.Column(db.Date, default=date.today, nullable=False)
    scheduled_time = db.Column(db.String(10))  # e.g. "10:45"
    duration_minutes = db.Column(db.Integer, default=30)
    reason_for_visit = db.Column(db.Text)
    notes = db.Column(db.Text)

    # Soft delete (no hard deletion of clinical data)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    teeth = db.relationship('AppointmentTooth', backref='appointment', lazy='dynamic')
    dentist = db.relationship('Dentist', lazy=True)

    def __repr__(self):
        return f"<Appointment {self.id} {self.appointment_type} ({self.status})>"

    def to_dict(self):
        return {
            'id': self.id,
            'patient_id': self.patient_id,
            'dentist_id': self.dentist_id,
            'consultation_id': self.consultation_id,
            'appointment_type': self.appointment_type,
            'status': self.status,
            'scheduled_date': self.scheduled_date.isoformat() if self.scheduled_date else None,
            'scheduled_time': self.scheduled_time,
            'duration_minutes': self.duration_minutes,
            'reason_for_visit': self.reason_for_visit,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }


class AppointmentTooth(db.Model):
    """Which teeth an appointment concerns; may carry a diagnosis link used as a resolution hint."""
    __tablename__ = 'appointment_teeth'

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey('appointments.id'), nullable=False, index=True)
    consultation_id = db.Column(db.Integer, db.ForeignKey('consultations.id'), nullable=True)
    tooth_number = db.Column(db.String(4), nullable=True)
    tooth_diagnosis_id = db.Column(db.Integer, db.ForeignKey('tooth_diagnoses.id'), nullable=True)
    diagnosis = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint('appointment_id', 'tooth_number', name='uq_appointment_teeth_tooth'),
    )

    def __repr__(self):
        return f"<AppointmentTooth {self.appointment_id} #{self.tooth_number}>"
