"""
Reconciler
Applies Status Rule Table output to tooth-diagnosis records.

reconcile() is the pure state transition. apply_transition() persists a
transition under an optimistic concurrency guard: the row is only written if
its updated_at has not advanced since it was read. A lost race is retried once
from a fresh read, then reported as a WriteConflict for that record alone.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from dentalsync.errors import NoRuleMatch, ReconciliationError, WriteConflict
from dentalsync.extensions import db
from dentalsync.models import ToothDiagnosis
from dentalsync.services.events import ClinicalEvent
from dentalsync.services.linkage import Linkage, resolve_targets
from dentalsync.services.publisher import notify_change
from dentalsync.services.status_rules import RuleMatch, StatusRuleTable, get_rule_table
from dentalsync.utils.audit import log_audit

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2  # first try + one retry

_table = ToothDiagnosis.__table__


@dataclass(frozen=True)
class ToothState:
    """Snapshot of the reconciled fields of one ToothDiagnosis row."""
    id: int
    patient_id: str
    tooth_number: str
    status: str
    color_code: Optional[str]
    follow_up_required: bool
    primary_diagnosis: Optional[str]
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> 'ToothState':
        return cls(
            id=row.id,
            patient_id=row.patient_id,
            tooth_number=row.tooth_number,
            status=row.status,
            color_code=row.color_code,
            follow_up_required=bool(row.follow_up_required),
            primary_diagnosis=row.primary_diagnosis,
            updated_at=row.updated_at,
        )


def next_stamp(current: datetime, now: Optional[datetime] = None) -> datetime:
    """A write stamp strictly after the current one, so the guard always sees the row advance."""
    now = now or datetime.utcnow()
    if current is not None and now <= current:
        return current + timedelta(microseconds=1)
    return now


def reconcile(current: ToothState, match: RuleMatch, now: Optional[datetime] = None) -> ToothState:
    """
    Pure transition: status and colour from the rule, follow-up cleared, stamped.
    Tooth number, diagnosis text and ownership are never touched.
    """
    return replace(
        current,
        status=match.status.value,
        color_code=match.color,
        follow_up_required=False,
        updated_at=next_stamp(current.updated_at, now),
    )


def is_settled(current: ToothState, match: RuleMatch) -> bool:
    """True when the row already reflects the rule; replaying the event changes nothing."""
    return (
        current.status == match.status.value
        and current.color_code == match.color
        and not current.follow_up_required
    )


@dataclass
class ReconcileResult:
    diagnosis_id: int
    outcome: str  # updated, unchanged, conflicted, not_found, failed
    before: Optional[ToothState] = None
    after: Optional[ToothState] = None
    attempts: int = 0

    def to_dict(self):
        return {
            'tooth_diagnosis_id': self.diagnosis_id,
            'outcome': self.outcome,
            'status': self.after.status if self.after else (self.before.status if self.before else None),
            'color_code': self.after.color_code if self.after else (self.before.color_code if self.before else None),
            'attempts': self.attempts,
        }


def _load_state(diagnosis_id: int) -> Optional[ToothState]:
    row = db.session.execute(
        select(_table).where(_table.c.id == diagnosis_id, _table.c.deleted_at.is_(None))
    ).one_or_none()
    return ToothState.from_row(row) if row is not None else None


def _guarded_write(current: ToothState, target: ToothState) -> bool:
    result = db.session.execute(
        update(_table)
        .where(_table.c.id == current.id, _table.c.updated_at == current.updated_at)
        .values(
            status=target.status,
            color_code=target.color_code,
            follow_up_required=target.follow_up_required,
            updated_at=target.updated_at,
        )
    )
    if result.rowcount != 1:
        db.session.rollback()
        return False
    db.session.commit()
    return True


def apply_transition(
    diagnosis_id: int,
    compute: Callable[[ToothState], Optional[ToothState]],
    snapshot: Optional[ToothState] = None,
) -> ReconcileResult:
    """
    Read, compute and guarded-write one record.

    Args:
        diagnosis_id: ToothDiagnosis id
        compute: returns the next state, or None when the row needs no change
        snapshot: state the caller read earlier; used for the first attempt

    Returns:
        ReconcileResult with outcome updated, unchanged or not_found

    Raises:
        WriteConflict: the row kept advancing across both attempts
    """
    for attempt in range(1, MAX_ATTEMPTS + 1):
        current = snapshot if (attempt == 1 and snapshot is not None) else _load_state(diagnosis_id)
        if current is None:
            return ReconcileResult(diagnosis_id, 'not_found', attempts=attempt)

        target = compute(current)
        if target is None:
            return ReconcileResult(diagnosis_id, 'unchanged', before=current, after=current, attempts=attempt)

        if _guarded_write(current, target):
            notify_change(current.patient_id, 'tooth_diagnosis', current.id, 'update', sequence=target.updated_at)
            return ReconcileResult(diagnosis_id, 'updated', before=current, after=target, attempts=attempt)

        logger.info("Tooth diagnosis %s changed concurrently (attempt %s/%s)", diagnosis_id, attempt, MAX_ATTEMPTS)

    raise WriteConflict(f"Tooth diagnosis {diagnosis_id} kept changing; gave up after {MAX_ATTEMPTS} attempts",
                        diagnosis_id=diagnosis_id)


def apply_match(diagnosis_id: int, match: RuleMatch, snapshot: Optional[ToothState] = None) -> ReconcileResult:
    """Reconcile one record against a rule match."""
    def compute(current):
        if is_settled(current, match):
            return None
        return reconcile(current, match)

    return apply_transition(diagnosis_id, compute, snapshot=snapshot)


@dataclass
class EventOutcome:
    event: ClinicalEvent
    outcome: str  # applied, skipped, unresolved, ambiguous, not_found, failed
    match: Optional[RuleMatch] = None
    linkage: Optional[Linkage] = None
    results: List[ReconcileResult] = field(default_factory=list)
    error: Optional[str] = None

    def count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def to_dict(self):
        return {
            'event': self.event.to_dict(),
            'outcome': self.outcome,
            'rule': self.match.to_dict() if self.match else None,
            'linkage': self.linkage.to_dict() if self.linkage else None,
            'results': [r.to_dict() for r in self.results],
            'error': self.error,
        }


def _audit_write(event: ClinicalEvent, match: RuleMatch, linkage: Linkage, result: ReconcileResult):
    log_audit(
        entity_type='tooth_diagnosis',
        action='reconcile',
        entity_id=result.diagnosis_id,
        details={
            'event_kind': event.event_kind,
            'label': event.label,
            'treatment_id': event.treatment_id,
            'appointment_id': event.appointment_id,
            'from_status': result.before.status,
            'to_status': result.after.status,
            'color_code': result.after.color_code,
            'rule': match.to_dict(),
            'linkage_method': linkage.method,
            'inferred': linkage.inferred,
        },
    )


def process_event(event: ClinicalEvent, rules: Optional[StatusRuleTable] = None) -> EventOutcome:
    """
    Run one clinical event through rule lookup, linkage resolution and the
    reconciler. Taxonomy failures are logged and reported, never raised.
    """
    rules = rules or get_rule_table()

    try:
        match = rules.resolve_event(event.label)
        if match is None:
            raise NoRuleMatch(f"No status rule for '{event.label}'", label=event.label)
        linkage = resolve_targets(event, rules)
    except ReconciliationError as e:
        db.session.rollback()
        level = logging.INFO if e.outcome == 'skipped' else logging.WARNING
        logger.log(level, "Event %s: %s (%s)", event.describe(), e.outcome, e)
        return EventOutcome(event, e.outcome, error=str(e))
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Event %s: linkage lookup failed: %s", event.describe(), e, exc_info=True)
        return EventOutcome(event, 'failed', error=str(e))

    if not linkage.found:
        logger.info("Event %s: no tooth diagnosis could be linked", event.describe())
        return EventOutcome(event, 'unresolved', match=match, linkage=linkage)

    if linkage.inferred:
        logger.warning("Event %s: inferred linkage via %s -> %s (inferred=True)",
                       event.describe(), linkage.method, linkage.target_ids)

    outcome = EventOutcome(event, 'applied', match=match, linkage=linkage)
    for diagnosis_id in linkage.target_ids:
        try:
            result = apply_match(diagnosis_id, match)
        except WriteConflict as e:
            logger.warning("Event %s: %s", event.describe(), e)
            result = ReconcileResult(diagnosis_id, WriteConflict.outcome, attempts=MAX_ATTEMPTS)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Event %s: write to tooth diagnosis %s failed: %s",
                         event.describe(), diagnosis_id, e, exc_info=True)
            result = ReconcileResult(diagnosis_id, 'failed')

        if result.outcome == 'updated':
            logger.info("Tooth diagnosis %s: %s -> %s (%s) [%s, inferred=%s]",
                        diagnosis_id, result.before.status, result.after.status,
                        result.after.color_code, linkage.method, linkage.inferred)
            _audit_write(event, match, linkage, result)
        outcome.results.append(result)

    return outcome
