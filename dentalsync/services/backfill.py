"""
Backfill / Batch Runner
Two idempotent passes, safe to re-run at any time and alongside live traffic:

    replay   every completed treatment, and every completed appointment without
             treatments, is run through the reconciler again, oldest first, so
             the latest event per tooth wins
    colors   every tooth diagnosis whose color_code disagrees with its status is
             rewritten from the Status Rule Table

A time budget stops a pass early; the summary is then marked partial and a
re-run picks up the remaining work.
"""
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from dentalsync.errors import WriteConflict
from dentalsync.extensions import db
from dentalsync.models import Appointment, AppointmentTooth, ToothDiagnosis, Treatment
from dentalsync.services.events import ClinicalEvent, event_from_appointment, event_from_treatment
from dentalsync.services.reconciler import ToothState, apply_transition, next_stamp, process_event
from dentalsync.services.status_rules import StatusRuleTable, coerce_status, get_rule_table
from dentalsync.utils.audit import log_audit

logger = logging.getLogger(__name__)

REPLAY = 'replay'
COLORS = 'colors'
PASSES = (REPLAY, COLORS)


@dataclass
class PassSummary:
    name: str
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    ambiguous: int = 0
    conflicted: int = 0
    not_found: int = 0
    failed: int = 0
    processed: int = 0
    partial: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'pass': self.name,
            'updated': self.updated,
            'unchanged': self.unchanged,
            'skipped': self.skipped,
            'ambiguous': self.ambiguous,
            'conflicted': self.conflicted,
            'not_found': self.not_found,
            'failed': self.failed,
            'processed': self.processed,
            'partial': self.partial,
            'duration_seconds': round(self.duration_seconds, 3),
        }


class _Deadline:
    def __init__(self, budget: Optional[float]):
        self._expires = time.monotonic() + budget if budget is not None else None

    def passed(self) -> bool:
        return self._expires is not None and time.monotonic() >= self._expires


def _sort_key(event: ClinicalEvent):
    return (event.occurred_at or datetime.min, event.event_kind, event.treatment_id or 0, event.appointment_id or 0)


def collect_events(patient_id: Optional[str] = None) -> List[ClinicalEvent]:
    """
    Completed treatments plus completed appointments with tooth links, oldest first.

    Appointments that carry treatments are left to their treatments, matching
    what update_appointment_status emits live.
    """
    treatments = Treatment.query.filter(Treatment.status == 'completed')
    appointments = Appointment.query.filter(
        Appointment.status == 'completed',
        Appointment.deleted_at.is_(None),
        Appointment.id.in_(select(AppointmentTooth.appointment_id)),
        ~Appointment.id.in_(select(Treatment.appointment_id).where(Treatment.appointment_id.isnot(None))),
    )
    if patient_id:
        treatments = treatments.filter(Treatment.patient_id == patient_id)
        appointments = appointments.filter(Appointment.patient_id == patient_id)

    events = [event_from_treatment(t) for t in treatments.order_by(Treatment.id).all()]
    events.extend(event_from_appointment(a) for a in appointments.order_by(Appointment.id).all())
    return sorted(events, key=_sort_key)


def replay_events(
    rules: Optional[StatusRuleTable] = None,
    patient_id: Optional[str] = None,
    time_budget: Optional[float] = None,
    events: Optional[Iterable[ClinicalEvent]] = None,
) -> PassSummary:
    """
    Event replay pass.

    Args:
        rules: rule table (defaults to the app's)
        patient_id: restrict the pass to one patient
        time_budget: seconds before the pass stops early
        events: explicit events to replay instead of collecting from the database

    Returns:
        PassSummary
    """
    rules = rules or get_rule_table()
    summary = PassSummary(REPLAY)
    deadline = _Deadline(time_budget)
    started = time.monotonic()

    for event in (events if events is not None else collect_events(patient_id)):
        if deadline.passed():
            summary.partial = True
            logger.warning("Replay pass stopped by time budget after %s events", summary.processed)
            break

        outcome = process_event(event, rules)
        summary.processed += 1
        if outcome.outcome in ('skipped', 'unresolved'):
            summary.skipped += 1
        elif outcome.outcome == 'ambiguous':
            summary.ambiguous += 1
        elif outcome.outcome == 'not_found':
            summary.not_found += 1
        elif outcome.outcome == 'failed':
            summary.failed += 1
        else:
            summary.updated += outcome.count('updated')
            summary.unchanged += outcome.count('unchanged')
            summary.conflicted += outcome.count('conflicted')
            summary.not_found += outcome.count('not_found')
            summary.failed += outcome.count('failed')

    summary.duration_seconds = time.monotonic() - started
    logger.info("Replay pass finished: %s", summary.to_dict())
    return summary


def repair_colors(
    rules: Optional[StatusRuleTable] = None,
    patient_id: Optional[str] = None,
    time_budget: Optional[float] = None,
) -> PassSummary:
    """Color-integrity pass: re-derive color_code from status for every tooth diagnosis."""
    rules = rules or get_rule_table()
    summary = PassSummary(COLORS)
    deadline = _Deadline(time_budget)
    started = time.monotonic()

    query = select(ToothDiagnosis.id).where(ToothDiagnosis.deleted_at.is_(None)).order_by(ToothDiagnosis.id)
    if patient_id:
        query = query.where(ToothDiagnosis.patient_id == patient_id)
    diagnosis_ids = db.session.execute(query).scalars().all()

    for diagnosis_id in diagnosis_ids:
        if deadline.passed():
            summary.partial = True
            logger.warning("Color pass stopped by time budget after %s records", summary.processed)
            break
        summary.processed += 1

        unknown = []

        def compute(current: ToothState):
            status = coerce_status(current.status)
            if status is None:
                unknown.append(current.status)
                return None
            expected = rules.color_for(status)
            if current.color_code == expected:
                return None
            return replace(current, color_code=expected, updated_at=next_stamp(current.updated_at))

        try:
            result = apply_transition(diagnosis_id, compute)
        except WriteConflict as e:
            logger.warning("Color pass: %s", e)
            summary.conflicted += 1
            continue
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Color pass: tooth diagnosis %s failed: %s", diagnosis_id, e, exc_info=True)
            summary.failed += 1
            continue

        if unknown:
            logger.warning("Color pass: tooth diagnosis %s has unknown status %r; skipped", diagnosis_id, unknown[0])
            summary.skipped += 1
        elif result.outcome == 'updated':
            summary.updated += 1
            logger.info("Color pass: tooth diagnosis %s #%s %s color %s -> %s",
                        diagnosis_id, result.before.tooth_number, result.before.status,
                        result.before.color_code, result.after.color_code)
            log_audit(
                entity_type='tooth_diagnosis',
                action='color_repair',
                entity_id=diagnosis_id,
                details={
                    'status': result.before.status,
                    'from_color': result.before.color_code,
                    'to_color': result.after.color_code,
                    'rules_version': rules.version,
                },
            )
        elif result.outcome == 'not_found':
            summary.not_found += 1
        else:
            summary.unchanged += 1

    summary.duration_seconds = time.monotonic() - started
    logger.info("Color pass finished: %s", summary.to_dict())
    return summary


def run_backfill(
    passes: Iterable[str] = PASSES,
    rules: Optional[StatusRuleTable] = None,
    patient_id: Optional[str] = None,
    time_budget: Optional[float] = None,
) -> Dict[str, Dict]:
    """
    Run the requested passes in order (replay before colors).

    Returns:
        dict: pass name -> summary dict
    """
    passes = [p for p in PASSES if p in set(passes)]
    time_budget = time_budget or None
    deadline = _Deadline(time_budget)
    started = time.monotonic()
    results = {}

    for name in passes:
        remaining = None
        if time_budget:
            remaining = max(time_budget - (time.monotonic() - started), 0.001)
            if deadline.passed():
                results[name] = PassSummary(name, partial=True).to_dict()
                continue
        if name == REPLAY:
            summary = replay_events(rules=rules, patient_id=patient_id, time_budget=remaining)
        else:
            summary = repair_colors(rules=rules, patient_id=patient_id, time_budget=remaining)
        results[name] = summary.to_dict()

    return results
