"""
Global test fixtures for pytest.

Provides:
- The Flask app on TestingConfig (in-memory SQLite, inline reconciliation)
- JWT auth headers by role
- Factories for patients, dentists, consultations, diagnoses, treatments
  and appointments
"""
from datetime import date, datetime, timedelta
import json

import pytest
from flask_jwt_extended import create_access_token

from dentalsync import create_app
from dentalsync.extensions import db
from dentalsync.models import (
    Appointment, AppointmentTooth, Consultation, Dentist, Patient, ToothDiagnosis, Treatment,
)
from dentalsync.services.status_rules import DEFAULT_RULES

BASE_TIME = datetime(2025, 3, 1, 9, 0, 0)


# ============================================================================
# Application
# ============================================================================

@pytest.fixture
def app():
    """App with a fresh schema; the app context stays pushed for the whole test."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    """Build Authorization headers for a role claim."""
    def _headers(role='dentist', identity='user-1'):
        token = create_access_token(identity=identity, additional_claims={'role': role})
        return {'Authorization': f'Bearer {token}'}
    return _headers


@pytest.fixture
def token(app):
    def _token(role='dentist', identity='user-1'):
        return create_access_token(identity=identity, additional_claims={'role': role})
    return _token


# ============================================================================
# Model factories
# ============================================================================

@pytest.fixture
def patient(app):
    patient = Patient(id='P001', first_name='Ana', last_name='Silva')
    db.session.add(patient)
    db.session.commit()
    return patient


@pytest.fixture
def other_patient(app):
    patient = Patient(id='P002', first_name='Ben', last_name='Okafor')
    db.session.add(patient)
    db.session.commit()
    return patient


@pytest.fixture
def dentist(app):
    dentist = Dentist(full_name='Dr. Maya Chen', email='maya@clinic.test', specialty='Endodontics')
    db.session.add(dentist)
    db.session.commit()
    return dentist


@pytest.fixture
def make_consultation(app):
    def _make(patient, dentist=None, **fields):
        consultation = Consultation(
            patient_id=patient.id,
            dentist_id=dentist.id if dentist else None,
            chief_complaint=fields.pop('chief_complaint', 'Toothache'),
            **fields
        )
        db.session.add(consultation)
        db.session.commit()
        return consultation
    return _make


@pytest.fixture
def make_diagnosis(app):
    """
    Tooth diagnosis with a consistent colour unless color_code is given.
    updated_at defaults to BASE_TIME + minutes so ordering is deterministic.
    """
    counter = {'n': 0}

    def _make(patient, tooth_number, status='caries', consultation=None, minutes=None, **fields):
        counter['n'] += 1
        stamp = BASE_TIME + timedelta(minutes=minutes if minutes is not None else counter['n'])
        symptoms = fields.pop('symptoms', None)
        diagnosis = ToothDiagnosis(
            patient_id=patient.id,
            consultation_id=consultation.id if consultation else None,
            tooth_number=tooth_number,
            status=status,
            color_code=fields.pop('color_code', None) or DEFAULT_RULES.color_for(status),
            symptoms=json.dumps(symptoms) if symptoms is not None else None,
            created_at=stamp,
            updated_at=stamp,
            **fields
        )
        db.session.add(diagnosis)
        db.session.commit()
        return diagnosis
    return _make


@pytest.fixture
def make_appointment(app):
    def _make(patient, appointment_type='Treatment', status='scheduled', dentist=None,
              consultation=None, teeth=(), scheduled_date=None, **fields):
        appointment = Appointment(
            patient_id=patient.id,
            dentist_id=dentist.id if dentist else None,
            consultation_id=consultation.id if consultation else None,
            appointment_type=appointment_type,
            status=status,
            scheduled_date=scheduled_date or date(2025, 3, 10),
            **fields
        )
        db.session.add(appointment)
        db.session.flush()
        for tooth in teeth:
            if isinstance(tooth, ToothDiagnosis):
                link = AppointmentTooth(appointment_id=appointment.id, tooth_number=tooth.tooth_number,
                                        tooth_diagnosis_id=tooth.id)
            else:
                link = AppointmentTooth(appointment_id=appointment.id, tooth_number=tooth)
            db.session.add(link)
        db.session.commit()
        return appointment
    return _make


@pytest.fixture
def make_treatment(app):
    def _make(patient, treatment_type, status='pending', tooth_number=None, diagnosis=None,
              appointment=None, consultation=None, dentist=None, **fields):
        treatment = Treatment(
            patient_id=patient.id,
            treatment_type=treatment_type,
            status=status,
            tooth_number=tooth_number,
            tooth_diagnosis_id=diagnosis.id if diagnosis else None,
            appointment_id=appointment.id if appointment else None,
            consultation_id=consultation.id if consultation else None,
            dentist_id=dentist.id if dentist else None,
            **fields
        )
        db.session.add(treatment)
        db.session.commit()
        return treatment
    return _make
