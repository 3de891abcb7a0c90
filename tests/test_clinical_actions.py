"""
Clinical actions: diagnosis recording, lifecycles, cascades and dispatch.
"""
import pytest

from dentalsync.errors import InvalidTransition, NotFound
from dentalsync.extensions import db
from dentalsync.models import AppointmentTooth, ToothDiagnosis, Treatment
from dentalsync.services import clinical_actions
from dentalsync.services.clinical_actions import (
    dispatch_event, link_appointment_to_treatment, save_tooth_diagnosis,
    update_appointment_status, update_treatment_status,
)
from dentalsync.services.events import TREATMENT_COMPLETED, ClinicalEvent
from dentalsync.services.publisher import change_publisher


def reload(model, pk):
    db.session.expire_all()
    return db.session.get(model, pk)


class TestSaveToothDiagnosis:

    def test_status_and_color_derived_from_text(self, patient):
        result = save_tooth_diagnosis(patient.id, {
            'toothNumber': '16',
            'primaryDiagnosis': 'Deep caries',
            'colorCode': '#000000',
            'symptoms': 'pain, sensitivity',
        })

        assert result['created'] is True
        saved = result['diagnosis']
        assert saved['status'] == 'caries'
        assert saved['color_code'] == '#ef4444'
        assert saved['symptoms'] == ['pain', 'sensitivity']

    def test_upsert_per_consultation_and_tooth(self, patient, make_consultation):
        consultation = make_consultation(patient)
        first = save_tooth_diagnosis(patient.id, {'tooth_number': '16', 'consultation_id': consultation.id,
                                                  'status': 'caries'})
        second = save_tooth_diagnosis(patient.id, {'tooth_number': '16', 'consultation_id': consultation.id,
                                                   'status': 'filled'})
        other = save_tooth_diagnosis(patient.id, {'tooth_number': '16', 'status': 'attention'})

        assert second['created'] is False
        assert second['diagnosis']['id'] == first['diagnosis']['id']
        assert second['diagnosis']['color_code'] == '#3b82f6'
        assert other['diagnosis']['id'] != first['diagnosis']['id']
        assert second['diagnosis']['updated_at'] > first['diagnosis']['updated_at']

    def test_publishes_insert_then_update(self, patient):
        subscription = change_publisher.subscribe(patient.id)
        try:
            save_tooth_diagnosis(patient.id, {'tooth_number': '21', 'status': 'healthy'})
            save_tooth_diagnosis(patient.id, {'tooth_number': '21', 'status': 'crown'})
            kinds = [n.change_kind for n in subscription.drain()]
        finally:
            change_publisher.unsubscribe(subscription)

        assert kinds == ['insert', 'update']

    @pytest.mark.parametrize('data', [
        {'status': 'caries'},
        {'tooth_number': '11', 'status': 'sparkly'},
        {'tooth_number': '11', 'treatment_priority': 'whenever'},
    ])
    def test_invalid_input(self, patient, data):
        with pytest.raises(ValueError):
            save_tooth_diagnosis(patient.id, data)

    def test_unknown_patient(self, app):
        with pytest.raises(NotFound):
            save_tooth_diagnosis('NOPE', {'tooth_number': '11'})


class TestTreatmentStatus:

    def test_completion_reconciles_tooth(self, patient, make_diagnosis, make_treatment):
        diagnosis = make_diagnosis(patient, '11', status='caries')
        treatment = make_treatment(patient, 'Root canal treatment', tooth_number='11', status='in_progress')

        result = update_treatment_status(treatment.id, 'completed')

        assert result['changed'] is True
        assert result['treatment']['completed_visits'] == 1
        assert result['treatment']['completed_at'] is not None
        assert result['reconciliation']['mode'] == 'inline'
        assert result['reconciliation']['outcome'] == 'applied'
        row = reload(ToothDiagnosis, diagnosis.id)
        assert (row.status, row.color_code) == ('root_canal', '#8b5cf6')

    def test_terminal_status_cannot_be_reopened(self, patient, make_treatment):
        treatment = make_treatment(patient, 'Crown', status='completed')
        with pytest.raises(InvalidTransition):
            update_treatment_status(treatment.id, 'in_progress')

    def test_same_status_is_a_no_op(self, patient, make_treatment):
        treatment = make_treatment(patient, 'Crown', status='pending')
        result = update_treatment_status(treatment.id, 'pending')
        assert result['changed'] is False
        assert result['reconciliation'] is None

    def test_unknown_status(self, patient, make_treatment):
        treatment = make_treatment(patient, 'Crown')
        with pytest.raises(InvalidTransition):
            update_treatment_status(treatment.id, 'paused')

    def test_missing_treatment(self, app):
        with pytest.raises(NotFound):
            update_treatment_status(404, 'completed')


class TestAppointmentStatus:

    def test_multi_visit_treatment_completes_on_last_visit(
            self, patient, make_diagnosis, make_appointment, make_treatment):
        diagnosis = make_diagnosis(patient, '36', status='caries')
        first_visit = make_appointment(patient, 'Root canal', status='in_progress')
        treatment = make_treatment(patient, 'Root canal treatment', tooth_number='36',
                                   appointment=first_visit, total_visits=2)

        result = update_appointment_status(first_visit.id, 'completed')

        assert result['reconciliation'] == []
        partial = reload(Treatment, treatment.id)
        assert (partial.status, partial.completed_visits) == ('in_progress', 1)
        assert reload(ToothDiagnosis, diagnosis.id).status == 'caries'

        second_visit = make_appointment(patient, 'Root canal', status='confirmed')
        partial.appointment_id = second_visit.id
        db.session.commit()

        result = update_appointment_status(second_visit.id, 'completed')

        done = reload(Treatment, treatment.id)
        assert (done.status, done.completed_visits) == ('completed', 2)
        assert [r['outcome'] for r in result['reconciliation']] == ['applied']
        assert reload(ToothDiagnosis, diagnosis.id).status == 'root_canal'

    def test_completed_appointment_without_treatments_uses_tooth_links(
            self, patient, make_diagnosis, make_appointment):
        diagnosis = make_diagnosis(patient, '24', status='caries')
        appointment = make_appointment(patient, 'Teeth Cleaning', status='confirmed', teeth=['24'])

        result = update_appointment_status(appointment.id, 'completed')

        assert result['reconciliation'][0]['event']['eventKind'] == 'appointment_completed'
        row = reload(ToothDiagnosis, diagnosis.id)
        assert (row.status, row.color_code) == ('healthy', '#22c55e')

    def test_start_and_cancel_cascade(self, patient, make_appointment, make_treatment):
        appointment = make_appointment(patient, 'Crown')
        treatment = make_treatment(patient, 'Crown', appointment=appointment)

        update_appointment_status(appointment.id, 'in_progress')
        started = reload(Treatment, treatment.id)
        assert started.status == 'in_progress'
        assert started.started_at is not None

        update_appointment_status(appointment.id, 'cancelled')
        assert reload(Treatment, treatment.id).status == 'cancelled'

    def test_lifecycle_is_enforced(self, patient, make_appointment):
        appointment = make_appointment(patient, 'Crown', status='completed')
        with pytest.raises(InvalidTransition):
            update_appointment_status(appointment.id, 'scheduled')

    def test_deleted_appointment(self, patient, make_appointment):
        from datetime import datetime

        appointment = make_appointment(patient, 'Crown')
        appointment.deleted_at = datetime.utcnow()
        db.session.commit()
        with pytest.raises(NotFound):
            update_appointment_status(appointment.id, 'confirmed')


class TestLinkAppointment:

    def test_creates_treatment_and_tooth_link(self, patient, dentist, make_diagnosis, make_appointment):
        diagnosis = make_diagnosis(patient, '46', status='caries')
        appointment = make_appointment(patient, 'Treatment', dentist=dentist)

        result = link_appointment_to_treatment(appointment.id, 'Composite filling',
                                               tooth_diagnosis_id=diagnosis.id)

        treatment = result['treatment']
        assert treatment['tooth_number'] == '46'
        assert treatment['tooth_diagnosis_id'] == diagnosis.id
        assert treatment['dentist_id'] == dentist.id
        link = db.session.get(AppointmentTooth, result['appointment_tooth_id'])
        assert (link.tooth_number, link.tooth_diagnosis_id) == ('46', diagnosis.id)

        update_appointment_status(appointment.id, 'completed')
        assert reload(ToothDiagnosis, diagnosis.id).status == 'filled'

    def test_requires_treatment_type(self, patient, make_appointment):
        appointment = make_appointment(patient)
        with pytest.raises(ValueError):
            link_appointment_to_treatment(appointment.id, '  ')

    def test_diagnosis_of_other_patient(self, patient, other_patient, make_diagnosis, make_appointment):
        foreign = make_diagnosis(other_patient, '46')
        appointment = make_appointment(patient)
        with pytest.raises(NotFound):
            link_appointment_to_treatment(appointment.id, 'Filling', tooth_diagnosis_id=foreign.id)


class TestDispatch:

    def test_queued_through_celery(self, app, patient, make_diagnosis):
        diagnosis = make_diagnosis(patient, '11')
        app.config['RECONCILE_ASYNC'] = True

        result = dispatch_event(ClinicalEvent(patient_id=patient.id, event_kind=TREATMENT_COMPLETED,
                                              label='Crown', tooth_number='11'))

        assert result['mode'] == 'queued'
        assert result['task_id']
        # eager in tests: the task already ran
        assert reload(ToothDiagnosis, diagnosis.id).status == 'crown'

    def test_failure_does_not_fail_the_action(self, patient, make_treatment, monkeypatch):
        def broken(event):
            raise RuntimeError('reconciler offline')

        monkeypatch.setattr(clinical_actions, 'process_event', broken)
        treatment = make_treatment(patient, 'Crown', tooth_number='11')

        result = update_treatment_status(treatment.id, 'completed')

        assert result['changed'] is True
        assert result['reconciliation']['mode'] == 'failed'
        assert reload(Treatment, treatment.id).status == 'completed'
