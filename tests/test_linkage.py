"""
Linkage Resolver: precedence, inference flags, ambiguity and missing references.
"""
import pytest

from dentalsync.errors import AmbiguousLinkage, NotFound
from dentalsync.services.events import APPOINTMENT_COMPLETED, TREATMENT_COMPLETED, ClinicalEvent
from dentalsync.services.linkage import (
    APPOINTMENT_LINK, CONSULTATION, DIRECT, LATEST_FOR_TOOTH, TREATMENT_MATCH, resolve_targets,
)


def treatment_event(patient, label='Root canal treatment', **fields):
    return ClinicalEvent(patient_id=patient.id, event_kind=TREATMENT_COMPLETED, label=label, **fields)


class TestPrecedence:

    def test_direct_id_beats_misleading_tooth_number(self, patient, make_diagnosis):
        target = make_diagnosis(patient, '11', minutes=1)
        decoy = make_diagnosis(patient, '21', minutes=50)

        linkage = resolve_targets(treatment_event(patient, tooth_diagnosis_id=target.id, tooth_number='21'))

        assert linkage.target_ids == [target.id]
        assert decoy.id not in linkage.target_ids
        assert linkage.method == DIRECT
        assert linkage.inferred is False

    def test_consultation_and_tooth(self, patient, make_consultation, make_diagnosis):
        first = make_consultation(patient)
        second = make_consultation(patient)
        older = make_diagnosis(patient, '11', consultation=first, minutes=1)
        make_diagnosis(patient, '11', consultation=second, minutes=30)

        linkage = resolve_targets(treatment_event(patient, consultation_id=first.id, tooth_number='11'))

        assert linkage.target_ids == [older.id]
        assert linkage.method == CONSULTATION
        assert linkage.inferred is False

    def test_latest_for_tooth_is_inferred(self, patient, make_diagnosis):
        make_diagnosis(patient, '11', minutes=1)
        newest = make_diagnosis(patient, '11', minutes=40)

        linkage = resolve_targets(treatment_event(patient, tooth_number='11'))

        assert linkage.target_ids == [newest.id]
        assert linkage.method == LATEST_FOR_TOOTH
        assert linkage.inferred is True

    def test_latest_for_tooth_tie_goes_to_highest_id(self, patient, make_diagnosis):
        make_diagnosis(patient, '11', minutes=5)
        later_insert = make_diagnosis(patient, '11', minutes=5)

        linkage = resolve_targets(treatment_event(patient, tooth_number='11'))
        assert linkage.target_ids == [later_insert.id]

    def test_direct_id_of_other_patient_is_ignored(self, patient, other_patient, make_diagnosis):
        foreign = make_diagnosis(other_patient, '11')
        own = make_diagnosis(patient, '11')

        linkage = resolve_targets(treatment_event(patient, tooth_diagnosis_id=foreign.id, tooth_number='11'))

        assert linkage.target_ids == [own.id]
        assert linkage.method == LATEST_FOR_TOOTH

    def test_soft_deleted_rows_are_not_targets(self, patient, make_diagnosis):
        from datetime import datetime
        from dentalsync.extensions import db

        gone = make_diagnosis(patient, '11')
        gone.deleted_at = datetime.utcnow()
        db.session.commit()

        linkage = resolve_targets(treatment_event(patient, tooth_number='11'))
        assert not linkage.found


class TestAppointmentLinks:

    def test_tooth_links_of_appointment(self, patient, make_diagnosis, make_appointment):
        diagnosis = make_diagnosis(patient, '24', status='caries')
        appointment = make_appointment(patient, 'Teeth Cleaning', status='completed', teeth=['24'])

        event = ClinicalEvent(patient_id=patient.id, event_kind=APPOINTMENT_COMPLETED,
                              label='Teeth Cleaning', appointment_id=appointment.id)
        linkage = resolve_targets(event)

        assert linkage.target_ids == [diagnosis.id]
        assert linkage.method == APPOINTMENT_LINK
        assert linkage.inferred is True

    def test_link_with_diagnosis_id_is_not_inferred(self, patient, make_diagnosis, make_appointment):
        first = make_diagnosis(patient, '36')
        second = make_diagnosis(patient, '37')
        appointment = make_appointment(patient, 'Filling', teeth=[first, second])

        event = ClinicalEvent(patient_id=patient.id, event_kind=APPOINTMENT_COMPLETED,
                              label='Filling', appointment_id=appointment.id)
        linkage = resolve_targets(event)

        assert linkage.target_ids == [first.id, second.id]
        assert linkage.inferred is False

    def test_missing_appointment(self, patient):
        event = ClinicalEvent(patient_id=patient.id, event_kind=APPOINTMENT_COMPLETED,
                              label='Filling', appointment_id=999)
        with pytest.raises(NotFound):
            resolve_targets(event)


class TestTreatmentMatch:

    def test_two_plausible_diagnoses_is_ambiguous(self, patient, make_diagnosis):
        first = make_diagnosis(patient, '11', recommended_treatment='Root canal')
        second = make_diagnosis(patient, '21', recommended_treatment='RCT')
        make_diagnosis(patient, '31', recommended_treatment='Filling')

        with pytest.raises(AmbiguousLinkage) as exc:
            resolve_targets(treatment_event(patient))

        assert sorted(exc.value.candidate_ids) == sorted([first.id, second.id])
        assert exc.value.outcome == 'ambiguous'

    def test_single_plausible_diagnosis_is_inferred(self, patient, make_diagnosis):
        make_diagnosis(patient, '31', recommended_treatment='Filling')
        target = make_diagnosis(patient, '11', recommended_treatment='Root canal treatment')

        linkage = resolve_targets(treatment_event(patient))

        assert linkage.target_ids == [target.id]
        assert linkage.method == TREATMENT_MATCH
        assert linkage.inferred is True

    def test_nothing_matches(self, patient, make_diagnosis):
        make_diagnosis(patient, '31', recommended_treatment='Filling')
        assert not resolve_targets(treatment_event(patient)).found


def test_unknown_patient(app):
    event = ClinicalEvent(patient_id='NOPE', event_kind=TREATMENT_COMPLETED, label='Filling', tooth_number='11')
    with pytest.raises(NotFound):
        resolve_targets(event)


def test_unknown_consultation(patient, make_diagnosis):
    make_diagnosis(patient, '11')
    event = treatment_event(patient, tooth_number='11', consultation_id=999)

    with pytest.raises(NotFound) as exc:
        resolve_targets(event)

    assert exc.value.context == {'consultation_id': 999}
