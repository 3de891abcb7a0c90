"""
Celery tasks for tooth chart reconciliation and maintenance
"""
import logging
from datetime import datetime
from dentalsync.extensions import celery, db
from dentalsync.services.backfill import PASSES, run_backfill
from dentalsync.services.events import ClinicalEvent
from dentalsync.services.reconciler import process_event

logger = logging.getLogger(__name__)


@celery.task(name='tasks.reconcile_event')
def reconcile_event(event_data):
    """
    Reconcile the tooth chart for one clinical event

    Args:
        event_data: ClinicalEvent.to_dict() payload

    Returns:
        dict: Reconciliation outcome
    """
    try:
        event = ClinicalEvent.from_dict(event_data)
    except (TypeError, ValueError) as e:
        logger.error(f"Rejected clinical event payload {event_data!r}: {e}")
        return {'success': False, 'error': f'Invalid clinical event: {e}'}

    try:
        outcome = process_event(event)
        return {
            'success': outcome.outcome != 'failed',
            **outcome.to_dict()
        }

    except Exception as e:
        logger.error(f"Error reconciling {event.describe()}: {e}", exc_info=True)
        db.session.rollback()
        return {'success': False, 'error': str(e)}


@celery.task(name='tasks.run_backfill')
def run_backfill_task(passes=None, patient_id=None, time_budget=None):
    """
    Run the backfill passes (event replay, then colour integrity)

    Args:
        passes: Pass names to run (default: all)
        patient_id: Restrict to one patient (optional)
        time_budget: Seconds before the passes stop early (optional)

    Returns:
        dict: Per-pass summaries
    """
    try:
        results = run_backfill(passes=passes or PASSES, patient_id=patient_id, time_budget=time_budget)
        return {
            'success': True,
            'partial': any(summary['partial'] for summary in results.values()),
            'results': results,
            'timestamp': datetime.utcnow().isoformat()
        }

    except Exception as e:
        logger.error(f"Error running backfill: {e}", exc_info=True)
        db.session.rollback()
        return {'success': False, 'error': str(e)}


@celery.task(name='tasks.nightly_chart_maintenance')
def nightly_chart_maintenance():
    """
    Nightly maintenance: full backfill within the configured time budget

    Returns:
        dict: Maintenance results
    """
    from flask import current_app

    budget = current_app.config.get('BACKFILL_TIME_BUDGET') or None
    result = run_backfill_task(time_budget=budget)
    if result.get('partial'):
        logger.warning("Nightly chart maintenance hit its time budget; the next run continues the work")

    return {
        'success': result.get('success', False),
        'timestamp': datetime.utcnow().isoformat(),
        'results': result
    }
