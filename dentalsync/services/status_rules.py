"""
Status Rule Table
Maps a clinical event label (treatment type, appointment type or diagnosis
text) to the canonical tooth status and its display colour.

This module is the only place a tooth colour literal may appear.
"""
import enum
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional


class ToothStatus(str, enum.Enum):
    HEALTHY = 'healthy'
    CARIES = 'caries'
    FILLED = 'filled'
    CROWN = 'crown'
    ROOT_CANAL = 'root_canal'
    IMPLANT = 'implant'
    ATTENTION = 'attention'
    EXTRACTION_NEEDED = 'extraction_needed'
    MISSING = 'missing'


STATUS_COLORS = {
    ToothStatus.HEALTHY: '#22c55e',            # green
    ToothStatus.CARIES: '#ef4444',             # red
    ToothStatus.FILLED: '#3b82f6',             # blue
    ToothStatus.CROWN: '#eab308',              # yellow
    ToothStatus.ROOT_CANAL: '#8b5cf6',         # purple
    ToothStatus.IMPLANT: '#06b6d4',            # cyan
    ToothStatus.ATTENTION: '#f97316',          # orange
    ToothStatus.EXTRACTION_NEEDED: '#f97316',  # orange
    ToothStatus.MISSING: '#6b7280',            # gray
}

RESOLVED_STATUSES = frozenset({
    ToothStatus.FILLED, ToothStatus.CROWN, ToothStatus.ROOT_CANAL,
    ToothStatus.IMPLANT, ToothStatus.MISSING, ToothStatus.HEALTHY,
})
ATTENTION_STATUSES = frozenset({
    ToothStatus.CARIES, ToothStatus.ATTENTION, ToothStatus.EXTRACTION_NEEDED,
})

# Completed procedures (treatment types and appointment types)
PROCEDURE_RULES = {
    'root canal': ToothStatus.ROOT_CANAL,
    'root canal treatment': ToothStatus.ROOT_CANAL,
    'root canal therapy': ToothStatus.ROOT_CANAL,
    'root treatment': ToothStatus.ROOT_CANAL,
    'rct': ToothStatus.ROOT_CANAL,
    'endodontic': ToothStatus.ROOT_CANAL,
    'filling': ToothStatus.FILLED,
    'composite filling': ToothStatus.FILLED,
    'amalgam filling': ToothStatus.FILLED,
    'composite': ToothStatus.FILLED,
    'amalgam': ToothStatus.FILLED,
    'restoration': ToothStatus.FILLED,
    'pulpotomy': ToothStatus.FILLED,
    'pulpectomy': ToothStatus.FILLED,
    'pulp cap': ToothStatus.FILLED,
    'crown': ToothStatus.CROWN,
    'crown placement': ToothStatus.CROWN,
    'onlay': ToothStatus.CROWN,
    'veneer': ToothStatus.CROWN,
    'bridge': ToothStatus.CROWN,
    'extraction': ToothStatus.MISSING,
    'tooth extraction': ToothStatus.MISSING,
    'surgical extraction': ToothStatus.MISSING,
    'implant': ToothStatus.IMPLANT,
    'dental implant': ToothStatus.IMPLANT,
    'implant placement': ToothStatus.IMPLANT,
    'scaling': ToothStatus.HEALTHY,
    'polishing': ToothStatus.HEALTHY,
    'cleaning': ToothStatus.HEALTHY,
    'teeth cleaning': ToothStatus.HEALTHY,
    'prophylaxis': ToothStatus.HEALTHY,
    'periodontal': ToothStatus.HEALTHY,
    'gum treatment': ToothStatus.HEALTHY,
}

# Diagnosis text recorded during a consultation
DIAGNOSIS_RULES = {
    'missing': ToothStatus.MISSING,
    'extracted': ToothStatus.MISSING,
    'extraction done': ToothStatus.MISSING,
    'extraction needed': ToothStatus.EXTRACTION_NEEDED,
    'non-restorable': ToothStatus.EXTRACTION_NEEDED,
    'pulpitis': ToothStatus.ATTENTION,
    'periapical': ToothStatus.ATTENTION,
    'endo': ToothStatus.ATTENTION,
    'fracture': ToothStatus.ATTENTION,
    'crack': ToothStatus.ATTENTION,
    'periodontal': ToothStatus.ATTENTION,
    'abscess': ToothStatus.ATTENTION,
    'impacted': ToothStatus.ATTENTION,
    'caries': ToothStatus.CARIES,
    'cavity': ToothStatus.CARIES,
    'decay': ToothStatus.CARIES,
    'demineral': ToothStatus.CARIES,
}

PROCEDURE = 'procedure'
DIAGNOSIS = 'diagnosis'

_WHITESPACE = re.compile(r'\s+')


def normalize_label(label: Optional[str]) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    return _WHITESPACE.sub(' ', (label or '').strip().lower())


def coerce_status(value) -> Optional[ToothStatus]:
    """Return the ToothStatus for a stored value, or None when it is not a known status."""
    if isinstance(value, ToothStatus):
        return value
    try:
        return ToothStatus(normalize_label(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class RuleMatch:
    status: ToothStatus
    color: str
    match_kind: str  # exact, substring
    key: str
    version: str

    def to_dict(self):
        return {
            'status': self.status.value,
            'color': self.color,
            'match_kind': self.match_kind,
            'key': self.key,
            'rules_version': self.version,
        }


class StatusRuleTable:
    """
    Immutable event-label -> (status, colour) mapping.

    Matching: exact key first, then substring against the known keys
    longest-first, else no mapping.
    """

    def __init__(
        self,
        version: str,
        procedure_rules: Mapping[str, ToothStatus],
        diagnosis_rules: Mapping[str, ToothStatus],
        colors: Mapping[ToothStatus, str] = STATUS_COLORS,
    ):
        missing = [s.value for s in ToothStatus if s not in colors]
        if missing:
            raise ValueError(f"Colour table is missing statuses: {', '.join(missing)}")

        self.version = version
        self._colors = MappingProxyType(dict(colors))
        self._rules = MappingProxyType({
            PROCEDURE: MappingProxyType({normalize_label(k): ToothStatus(v) for k, v in procedure_rules.items()}),
            DIAGNOSIS: MappingProxyType({normalize_label(k): ToothStatus(v) for k, v in diagnosis_rules.items()}),
        })
        self._ordered_keys = {
            source: sorted(rules, key=lambda k: (-len(k), k))
            for source, rules in self._rules.items()
        }

    @property
    def colors(self) -> Mapping[ToothStatus, str]:
        return self._colors

    def color_for(self, status) -> str:
        """Authoritative colour for a status. Raises ValueError for unknown statuses."""
        known = coerce_status(status)
        if known is None:
            raise ValueError(f"Unknown tooth status: {status!r}")
        return self._colors[known]

    def resolve_event(self, label: Optional[str], source: str = PROCEDURE) -> Optional[RuleMatch]:
        """
        Resolve an event label to its canonical status and colour.

        Args:
            label: Treatment type, appointment type or diagnosis text
            source: 'procedure' or 'diagnosis' rule set

        Returns:
            RuleMatch, or None when no rule applies
        """
        rules = self._rules[source]
        text = normalize_label(label)
        if not text:
            return None

        if text in rules:
            return self._match(rules[text], 'exact', text)

        for key in self._ordered_keys[source]:
            if key in text:
                return self._match(rules[key], 'substring', key)

        return None

    def status_for_diagnosis(self, diagnosis: Optional[str], plan: Optional[str] = None) -> ToothStatus:
        """Initial status for a newly recorded diagnosis; no finding means healthy."""
        text = f"{normalize_label(diagnosis)} {normalize_label(plan)}".strip()
        match = self.resolve_event(text, DIAGNOSIS)
        return match.status if match else ToothStatus.HEALTHY

    def _match(self, status: ToothStatus, kind: str, key: str) -> RuleMatch:
        return RuleMatch(status=status, color=self._colors[status], match_kind=kind, key=key, version=self.version)

    def __repr__(self):
        return f"<StatusRuleTable {self.version}>"


DEFAULT_RULES = StatusRuleTable(
    version='2025.1',
    procedure_rules=PROCEDURE_RULES,
    diagnosis_rules=DIAGNOSIS_RULES,
)


def get_rule_table() -> StatusRuleTable:
    """Rule table configured on the current app, falling back to the default."""
    from flask import current_app, has_app_context

    if has_app_context():
        configured = current_app.config.get('STATUS_RULE_TABLE')
        if configured is not None:
            return configured
    return DEFAULT_RULES


def is_resolved(status) -> bool:
    return coerce_status(status) in RESOLVED_STATUSES


def requires_attention(status) -> bool:
    return coerce_status(status) in ATTENTION_STATUSES
