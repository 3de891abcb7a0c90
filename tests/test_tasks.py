"""
Celery tasks, called directly inside the test app context.
"""
from datetime import datetime

from dentalsync.extensions import db
from dentalsync.models import ToothDiagnosis
from dentalsync.services.backfill import COLORS, REPLAY
from tasks.reconcile_tasks import nightly_chart_maintenance, reconcile_event, run_backfill_task


def test_reconcile_event(patient, make_diagnosis):
    diagnosis = make_diagnosis(patient, '11', status='caries')

    result = reconcile_event({
        'patientId': patient.id,
        'eventKind': 'treatment_completed',
        'treatmentType': 'Extraction',
        'toothNumber': '11',
    })

    assert result['success'] is True
    assert result['outcome'] == 'applied'
    db.session.expire_all()
    row = db.session.get(ToothDiagnosis, diagnosis.id)
    assert (row.status, row.color_code) == ('missing', '#6b7280')


def test_reconcile_event_rejects_bad_payload(app):
    result = reconcile_event({'eventKind': 'treatment_completed', 'treatmentType': 'Crown'})
    assert result['success'] is False
    assert 'Invalid clinical event' in result['error']


def test_reconcile_event_skipped_is_still_success(patient, make_diagnosis):
    make_diagnosis(patient, '16')
    result = reconcile_event({
        'patientId': patient.id,
        'eventKind': 'treatment_completed',
        'treatmentType': 'unspecified procedure',
        'toothNumber': '16',
    })
    assert result['success'] is True
    assert result['outcome'] == 'skipped'


def test_run_backfill_task(patient, make_diagnosis, make_treatment):
    make_diagnosis(patient, '11', status='caries', color_code='#22c55e')
    make_treatment(patient, 'Crown', status='completed', tooth_number='12', completed_at=datetime(2025, 4, 1))

    result = run_backfill_task(passes=[COLORS])

    assert result['success'] is True
    assert result['partial'] is False
    assert list(result['results']) == [COLORS]
    assert result['results'][COLORS]['updated'] == 1


def test_nightly_maintenance_runs_every_pass(app, patient, make_diagnosis, make_treatment):
    app.config['BACKFILL_TIME_BUDGET'] = 0
    make_diagnosis(patient, '12')
    make_treatment(patient, 'Crown', status='completed', tooth_number='12')

    result = nightly_chart_maintenance()

    assert result['success'] is True
    assert set(result['results']['results']) == {REPLAY, COLORS}
    assert result['results']['results'][REPLAY]['updated'] == 1
