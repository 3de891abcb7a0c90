from .status_rules import (
    ToothStatus,
    StatusRuleTable,
    RuleMatch,
    DEFAULT_RULES,
    get_rule_table,
)

from .events import ClinicalEvent, event_from_treatment, event_from_appointment

from .linkage import Linkage, resolve_targets

from .reconciler import reconcile, apply_match, process_event

from .backfill import run_backfill, replay_events, repair_colors

from .publisher import change_publisher, notify_change, ChangeNotification

from .overview import (
    get_diagnosis_overview,
    get_treatment_overview,
    get_diagnosis_stats,
    get_treatment_stats,
    get_latest_tooth_chart,
)

from .clinical_actions import (
    dispatch_event,
    save_tooth_diagnosis,
    update_treatment_status,
    update_appointment_status,
    link_appointment_to_treatment,
)

__all__ = [
    # Status rules
    "ToothStatus",
    "StatusRuleTable",
    "RuleMatch",
    "DEFAULT_RULES",
    "get_rule_table",
    # Events & linkage
    "ClinicalEvent",
    "event_from_treatment",
    "event_from_appointment",
    "Linkage",
    "resolve_targets",
    # Reconciliation
    "reconcile",
    "apply_match",
    "process_event",
    "run_backfill",
    "replay_events",
    "repair_colors",
    # Change notifications
    "change_publisher",
    "notify_change",
    "ChangeNotification",
    # Query facade
    "get_diagnosis_overview",
    "get_treatment_overview",
    "get_diagnosis_stats",
    "get_treatment_stats",
    "get_latest_tooth_chart",
    # Clinical actions
    "dispatch_event",
    "save_tooth_diagnosis",
    "update_treatment_status",
    "update_appointment_status",
    "link_appointment_to_treatment",
]
