"""
Query facade: diagnosis/treatment overviews, stats and the latest tooth chart.
"""
from datetime import date

from dentalsync.services.overview import (
    UNKNOWN_DENTIST, get_diagnosis_overview, get_diagnosis_stats, get_latest_tooth_chart,
    get_treatment_overview, get_treatment_stats, is_treatment_appointment, map_appointment_status,
    overview_status,
)


class TestOverviewStatus:

    def test_resolved_first(self):
        assert overview_status('filled', follow_up_required=True) == 'resolved'

    def test_monitoring_when_follow_up(self):
        assert overview_status('caries', follow_up_required=True) == 'monitoring'

    def test_active_otherwise(self):
        assert overview_status('attention', follow_up_required=False) == 'active'

    def test_appointment_status_mapping(self):
        assert map_appointment_status('confirmed') == 'pending'
        assert map_appointment_status('in_progress') == 'in_progress'
        assert map_appointment_status('no_show') == 'cancelled'
        assert map_appointment_status(None) == 'pending'

    def test_treatment_like_appointment_types(self):
        assert is_treatment_appointment('follow_up')
        assert is_treatment_appointment('Teeth Cleaning')
        assert not is_treatment_appointment('consultation')
        assert not is_treatment_appointment(None)


class TestDiagnosisOverview:

    def test_rows_are_decorated(self, patient, dentist, make_diagnosis, make_treatment, make_appointment):
        diagnosis = make_diagnosis(
            patient, '16', status='caries', follow_up_required=True,
            primary_diagnosis='Deep caries, sensitivity to cold', treatment_priority='routine',
            symptoms=['pain', 'swelling'],
        )
        appointment = make_appointment(patient, 'Filling', dentist=dentist, scheduled_time='10:45')
        make_treatment(patient, 'Composite filling', diagnosis=diagnosis, appointment=appointment)

        rows = get_diagnosis_overview(patient.id)

        assert len(rows) == 1
        row = rows[0]
        assert row['status'] == 'monitoring'
        assert row['priority'] == 'low'
        assert row['diagnoses'] == ['Deep caries', 'sensitivity to cold']
        assert row['symptoms'] == ['pain', 'swelling']
        assert row['color_code'] == '#ef4444'
        assert [t['treatment_type'] for t in row['treatments']] == ['Composite filling']
        assert row['appointment']['id'] == appointment.id
        assert row['appointment']['dentist_name'] == 'Dr. Maya Chen'
        assert row['appointment']['scheduled_time'] == '10:45'

    def test_missing_dentist_degrades_to_placeholder(self, patient, make_diagnosis, make_treatment, make_appointment):
        diagnosis = make_diagnosis(patient, '21')
        appointment = make_appointment(patient, 'Crown')
        make_treatment(patient, 'Crown', diagnosis=diagnosis, appointment=appointment)

        row = get_diagnosis_overview(patient.id)[0]
        assert row['appointment']['dentist_name'] == UNKNOWN_DENTIST

    def test_no_treatments(self, patient, make_diagnosis):
        make_diagnosis(patient, '11', status='filled', symptoms=None)
        row = get_diagnosis_overview(patient.id)[0]
        assert row['status'] == 'resolved'
        assert row['treatments'] == []
        assert row['appointment'] is None
        assert row['symptoms'] == []

    def test_newest_first(self, patient, make_diagnosis):
        make_diagnosis(patient, '11', minutes=1)
        make_diagnosis(patient, '12', minutes=9)
        assert [r['tooth_number'] for r in get_diagnosis_overview(patient.id)] == ['12', '11']


class TestTreatmentOverview:

    def test_synthesizes_rows_for_unlinked_treatment_appointments(
            self, patient, dentist, make_treatment, make_appointment):
        linked = make_appointment(patient, 'Root canal', dentist=dentist, scheduled_date=date(2025, 3, 5))
        make_treatment(patient, 'Root canal treatment', appointment=linked, tooth_number='11')
        cleaning = make_appointment(patient, 'Teeth Cleaning', status='confirmed',
                                    scheduled_date=date(2025, 3, 20), teeth=['24', '25'],
                                    duration_minutes=45)
        make_appointment(patient, 'consultation', scheduled_date=date(2025, 3, 25))

        rows = get_treatment_overview(patient.id)

        assert [r['id'] for r in rows][0] == f"unlinked_{cleaning.id}"
        assert len(rows) == 2
        pseudo = rows[0]
        assert pseudo['synthesized'] is True
        assert pseudo['status'] == 'pending'
        assert pseudo['treatment_type'] == 'Teeth Cleaning'
        assert pseudo['tooth_number'] == '24, 25'
        assert pseudo['appointment']['duration'] == 45
        real = rows[1]
        assert real['synthesized'] is False
        assert real['appointment']['dentist_name'] == 'Dr. Maya Chen'

    def test_stats(self, patient, make_treatment, make_appointment):
        make_treatment(patient, 'Crown', status='completed')
        make_treatment(patient, 'Filling', status='in_progress')
        make_appointment(patient, 'Treatment', status='no_show', duration_minutes=20)

        stats = get_treatment_stats(patient.id)

        assert stats == {
            'total': 3,
            'planned': 0,
            'in_progress': 1,
            'completed': 1,
            'cancelled': 1,
            'total_duration': 20,
        }


def test_diagnosis_stats(patient, make_diagnosis):
    make_diagnosis(patient, '11', status='caries', treatment_priority='urgent')
    make_diagnosis(patient, '12', status='caries', follow_up_required=True, treatment_priority='high')
    make_diagnosis(patient, '13', status='crown')

    assert get_diagnosis_stats(patient.id) == {
        'total': 3,
        'active': 1,
        'resolved': 1,
        'monitoring': 1,
        'high_priority': 2,
        'urgent': 1,
    }


def test_latest_tooth_chart(patient, make_diagnosis):
    make_diagnosis(patient, '11', status='caries', minutes=1)
    newest = make_diagnosis(patient, '11', status='filled', minutes=5)
    make_diagnosis(patient, '12', status='healthy', minutes=2)

    chart = get_latest_tooth_chart(patient.id)

    assert set(chart) == {'11', '12'}
    assert chart['11']['id'] == newest.id
    assert chart['11']['color_code'] == '#3b82f6'
