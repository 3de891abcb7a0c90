from dentalsync.extensions import db
from .base import TimestampMixin


class Patient(db.Model, TimestampMixin):
    __tablename__ = 'patients'

    id = db.Column(db.String(36), primary_key=True)  # e.g., P001
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))
    email = db.Column(db.String(120))

    # Relationships
    tooth_diagnoses = db.relationship('ToothDiagnosis', backref='patient', lazy='dynamic')
    treatments = db.relationship('Treatment', backref='patient', lazy='dynamic')
    appointments = db.relationship('Appointment', backref='patient', lazy='dynamic')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Patient {self.first_name} {self.last_name} ({self.id})>"
