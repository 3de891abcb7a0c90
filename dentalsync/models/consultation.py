from datetime import date

from dentalsync.extensions import db
from .base import TimestampMixin


class Consultation(db.Model, TimestampMixin):
    __tablename__ = 'consultations'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.String(36), db.ForeignKey('patients.id'), nullable=False, index=True)
    dentist_id = db.Column(db.Integer, db.ForeignKey('dentists.id'), nullable=True, index=True)

    consultation_date = db.Column(db.Date, default=date.today, nullable=False)
    chief_complaint = db.Column(db.Text)
    status = db.Column(db.String(20), default='draft')  # draft, completed

    tooth_diagnoses = db.relationship('ToothDiagnosis', backref='consultation', lazy='dynamic')

    def __repr__(self):
        return f"<Consultation {self.id} - Patient: {self.patient_id}>"
