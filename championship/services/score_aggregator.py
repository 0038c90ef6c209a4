"""
championship/services/score_aggregator.py
Score Aggregator: fold ScoringEvents into per-unit subtotals, totals and ranks.

SCORING:
- subtotal(category) = min(cap, sum(weight * units)) for capped categories
- the demerit subtotal is the sum of the (negative) points deltas, never capped
- total = sum of all subtotals, which is the positive subtotals plus the
  unit's demerit points for the period
- a unit with no events still gets a zero subtotal for every category
- totals are not floored at zero

RANKING RULES (in order):
1. total DESC
2. demerit_count ASC (fewer demerit events first)
3. unit name ASC, case-insensitive (str.casefold)
4. unit_id ASC (identical names only)

STRICT RANK: 1..n, contiguous, never shared.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from championship.services.event_collector import ScoringEvent
from championship.services.score_catalog import ScoreCatalog, ScoreCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitRef:
    """The parts of a Unit the aggregator needs."""
    unit_id: int
    name: str
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None


@dataclass
class UnitScore:
    unit_id: int
    unit_name: str
    colors: Dict[str, Optional[str]] = field(default_factory=dict)
    subtotals: Dict[str, int] = field(default_factory=dict)
    total: int = 0
    demerit_count: int = 0
    rank: int = 0
    goals: List[dict] = field(default_factory=list)

    @property
    def demerit_points(self) -> int:
        return self.subtotals.get(ScoreCategory.DEMERIT.value, 0)

    def sort_key(self):
        return (
            -self.total,
            self.demerit_count,
            self.unit_name.casefold(),
            self.unit_id,
        )


def _subtotal(catalog: ScoreCatalog, category: ScoreCategory, raw_units: int) -> int:
    points = catalog.weight_for(category) * raw_units
    cap = catalog.cap_for(category)
    if cap is not None:
        points = min(cap, points)
    return points


def aggregate(
    units: Sequence[UnitRef],
    events: Iterable[ScoringEvent],
    catalog: ScoreCatalog,
) -> List[UnitScore]:
    """
    Build one UnitScore per unit, ranked.

    Events for units not in `units` are ignored; the collector already
    scopes them, so any such event is logged.
    """
    categories = catalog.categories
    raw: Dict[int, Dict[ScoreCategory, int]] = {
        u.unit_id: {c: 0 for c in categories} for u in units
    }
    demerit_counts: Dict[int, int] = {u.unit_id: 0 for u in units}

    for event in events:
        per_unit = raw.get(event.unit_id)
        if per_unit is None:
            logger.warning(f"Ignoring event {event.source_ref} for out-of-scope unit {event.unit_id}")
            continue
        # unknown categories raise UnknownCategoryError
        catalog.weight_for(event.category)
        category = ScoreCategory(event.category)
        per_unit[category] = per_unit.get(category, 0) + event.units
        if category == ScoreCategory.DEMERIT:
            demerit_counts[event.unit_id] += 1

    scores = []
    for unit in units:
        subtotals = {
            category.value: _subtotal(catalog, category, raw[unit.unit_id][category])
            for category in categories
        }
        scores.append(UnitScore(
            unit_id=unit.unit_id,
            unit_name=unit.name,
            colors={"primary": unit.primary_color, "secondary": unit.secondary_color},
            subtotals=subtotals,
            total=sum(subtotals.values()),
            demerit_count=demerit_counts[unit.unit_id],
        ))

    return rank_units(scores)


def rank_units(scores: List[UnitScore]) -> List[UnitScore]:
    """Sort by the ranking rules and assign strict ranks 1..n."""
    ordered = sorted(scores, key=lambda s: s.sort_key())
    for position, score in enumerate(ordered, start=1):
        score.rank = position
    return ordered


def zero_scores(units: Sequence[UnitRef], catalog: ScoreCatalog) -> List[UnitScore]:
    """Ranked all-zero scores, used to seed the first snapshot."""
    return aggregate(units, [], catalog)
