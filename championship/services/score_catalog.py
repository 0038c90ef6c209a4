"""
championship/services/score_catalog.py
Score Catalog: category -> points-per-unit weight and optional subtotal cap.

Pure lookup, no side effects. Caps apply per category per unit, before the
subtotals are summed into a unit's total.

Defaults can be overridden from the environment:
    SCORE_WEIGHT_ATTENDANCE_PUNCTUAL=2
    SCORE_CAP_BADGE_DELIVERED=none      # 'none' removes the cap

The demerit type table lives here too: each known infraction maps to a
severity level and a fixed negative points delta.
"""
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Union

from championship.config.settings import get_optional_int_env
from championship.errors import UnknownCategoryError

logger = logging.getLogger(__name__)


class ScoreCategory(str, Enum):
    ATTENDANCE_PUNCTUAL = "attendance-punctual"
    ATTENDANCE_LATE = "attendance-late"
    PAYMENT_ON_TIME = "payment-on-time"
    DEMERIT = "demerit"
    BADGE_DELIVERED = "badge-delivered"
    EVALUATION = "evaluation"


@dataclass(frozen=True)
class CategoryRule:
    weight: int
    cap: Optional[int] = None


DEFAULT_RULES: Dict[ScoreCategory, CategoryRule] = {
    ScoreCategory.ATTENDANCE_PUNCTUAL: CategoryRule(weight=10),
    ScoreCategory.ATTENDANCE_LATE: CategoryRule(weight=5),
    ScoreCategory.PAYMENT_ON_TIME: CategoryRule(weight=10),
    # units carry the (negative) points_delta of each demerit
    ScoreCategory.DEMERIT: CategoryRule(weight=1),
    # 20 specialties at 100 points each
    ScoreCategory.BADGE_DELIVERED: CategoryRule(weight=100, cap=2000),
    # units carry the color points of each evaluation (50/30/10)
    ScoreCategory.EVALUATION: CategoryRule(weight=1),
}

# Demerits are penalties; a cap would hide them
UNCAPPABLE = frozenset({ScoreCategory.DEMERIT})


def _env_suffix(category: ScoreCategory) -> str:
    return category.value.upper().replace("-", "_")


class ScoreCatalog:
    """Immutable rule table keyed by ScoreCategory."""

    def __init__(self, rules: Optional[Mapping[ScoreCategory, CategoryRule]] = None):
        self._rules: Dict[ScoreCategory, CategoryRule] = dict(rules or DEFAULT_RULES)
        for category in UNCAPPABLE:
            rule = self._rules.get(category)
            if rule is not None and rule.cap is not None:
                raise ValueError(f"Category '{category.value}' cannot be capped")

    @classmethod
    def from_env(cls) -> "ScoreCatalog":
        """Default rules with SCORE_WEIGHT_* / SCORE_CAP_* overrides applied."""
        rules = {}
        for category, rule in DEFAULT_RULES.items():
            suffix = _env_suffix(category)
            weight = os.getenv(f"SCORE_WEIGHT_{suffix}")
            cap = rule.cap
            if category not in UNCAPPABLE:
                cap = get_optional_int_env(f"SCORE_CAP_{suffix}", rule.cap)
            rules[category] = CategoryRule(
                weight=int(weight) if weight else rule.weight,
                cap=cap,
            )
            if rules[category] != rule:
                logger.info(f"Score rule override: {category.value} -> {rules[category]}")
        return cls(rules)

    def _rule(self, category: Union[ScoreCategory, str]) -> CategoryRule:
        try:
            key = ScoreCategory(category)
        except ValueError:
            raise UnknownCategoryError(str(category))
        rule = self._rules.get(key)
        if rule is None:
            raise UnknownCategoryError(key.value)
        return rule

    def weight_for(self, category: Union[ScoreCategory, str]) -> int:
        return self._rule(category).weight

    def cap_for(self, category: Union[ScoreCategory, str]) -> Optional[int]:
        return self._rule(category).cap

    @property
    def categories(self):
        """Configured categories in declaration order."""
        return [c for c in ScoreCategory if c in self._rules]

    def to_dict(self):
        return {
            c.value: {"weight": r.weight, "cap": r.cap}
            for c, r in self._rules.items()
        }


# =============================================================================
# Demerit types
# =============================================================================

@dataclass(frozen=True)
class DemeritType:
    key: str
    label: str
    level: str
    points: int

    @property
    def requires_description(self) -> bool:
        return self.level in ("D3", "D4")


_DEMERIT_TYPE_ROWS = [
    # D1 - minor
    ("d1_forgot_materials", "Forgot materials", "D1", -5),
    ("d1_unjustified_lateness", "Unjustified lateness", "D1", -5),
    ("d1_inattention", "Inattention", "D1", -5),
    ("d1_mild_disrespect", "Mild disrespect", "D1", -10),
    ("d1_careless_with_materials", "Careless with materials", "D1", -5),
    ("d1_improper_posture", "Improper posture", "D1", -5),
    ("d1_lack_of_cooperation", "Lack of cooperation", "D1", -5),
    ("d1_phone_misuse", "Phone misuse", "D1", -5),
    # D2 - moderate
    ("d2_repeated_d1", "Repeated D1", "D2", -10),
    ("d2_direct_disrespect", "Direct disrespect", "D2", -15),
    ("d2_disobedience", "Disobedience", "D2", -15),
    ("d2_harmful_behavior", "Harmful behavior", "D2", -15),
    ("d2_material_misuse", "Misuse of materials", "D2", -20),
    ("d2_unjustified_absence", "Unjustified absence", "D2", -15),
    ("d2_event_misconduct", "Misconduct at an event", "D2", -15),
    ("d2_disrupting_activities", "Disrupting activities", "D2", -15),
    # D3 - serious
    ("d3_disrespect_to_leaders", "Disrespect to leaders", "D3", -30),
    ("d3_aggressive_behavior", "Aggressive behavior", "D3", -40),
    ("d3_safety_risk", "Safety risk", "D3", -50),
    ("d3_intentional_damage", "Intentional damage", "D3", -40),
    ("d3_safety_rule_violation", "Safety rule disobedience", "D3", -50),
    ("d3_incompatible_conduct", "Incompatible conduct", "D3", -40),
    ("d3_repeated_d2", "Repeated D2", "D3", -30),
    ("d3_damages_club_image", "Damages the club's image", "D3", -50),
    # D4 - critical
    ("d4_physical_aggression", "Physical aggression", "D4", -80),
    ("d4_risk_to_life", "Risk to life", "D4", -100),
    ("d4_serious_damage", "Serious damage", "D4", -80),
    ("d4_extreme_disrespect", "Extreme disrespect", "D4", -70),
    ("d4_public_misconduct", "Public misconduct", "D4", -80),
    ("d4_safety_breach", "Safety breach", "D4", -100),
    ("d4_repeated_d3", "Repeated D3", "D4", -70),
    ("d4_institutional_consequences", "Institutional consequences", "D4", -100),
]

DEMERIT_TYPES: Dict[str, DemeritType] = {
    key: DemeritType(key=key, label=label, level=level, points=points)
    for key, label, level, points in _DEMERIT_TYPE_ROWS
}


def get_demerit_type(key: str) -> Optional[DemeritType]:
    return DEMERIT_TYPES.get(key)


_catalog: Optional[ScoreCatalog] = None


def get_catalog() -> ScoreCatalog:
    """Process-wide catalog built from the environment on first use."""
    global _catalog
    if _catalog is None:
        _catalog = ScoreCatalog.from_env()
    return _catalog
