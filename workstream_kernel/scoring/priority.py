"""
Priority Scorer — one ordering across signals, candidates and pursuits.

Keys, in order:
  1. score band  (scores within the dead-band of a band's anchor tie)
  2. tier rank   critical=4, high=3, medium=2, low=1, missing=0
  3. SLA rank    red=3, amber=2, green=1, missing=0
  4. original position

A pairwise "ignore differences <= 0.1" comparator is not transitive, so
scores are first grouped into anchored bands: the highest unassigned score
opens a band that takes every score within the dead-band below it. Each item
then gets a plain sort key, which keeps the ordering a strict total order and
re-sorting a ranked list a no-op. Missing scores sit in a band below all
scored items.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from workstream_kernel.models.config import WorkstreamConfig
from workstream_kernel.models.panel import PanelItem
from workstream_kernel.models.sla import SlaBadge
from workstream_kernel.models.workstream import PriorityTier

TIER_RANK = {
    PriorityTier.CRITICAL: 4,
    PriorityTier.HIGH: 3,
    PriorityTier.MEDIUM: 2,
    PriorityTier.LOW: 1,
}

SLA_RANK = {
    SlaBadge.RED: 3,
    SlaBadge.AMBER: 2,
    SlaBadge.GREEN: 1,
}

# Tolerance for float noise when testing "within the dead-band"
_EPSILON = 1e-9


def normalize_score(raw, score_max: float = 200.0) -> Optional[float]:
    """
    Map a priority score onto 0–1.

    Values above 1 are read as the 0–200 domain and divided by ``score_max``;
    negative, non-numeric and NaN values yield None.
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value != value or value < 0:
        return None
    if value > 1.0:
        value = min(value / score_max, 1.0)
    return value


def tier_rank(tier: Optional[PriorityTier]) -> int:
    return TIER_RANK.get(tier, 0)


def sla_rank(badge: Optional[SlaBadge]) -> int:
    return SLA_RANK.get(badge, 0)


def score_bands(scores: Iterable[Optional[float]], dead_band: float = 0.1) -> Dict[float, int]:
    """
    Band index per distinct score, 0 for the highest band.

    Missing scores are not included; callers rank them after every band.
    """
    distinct = sorted({s for s in scores if s is not None}, reverse=True)
    bands: Dict[float, int] = {}
    band = -1
    anchor = None
    for score in distinct:
        if anchor is None or anchor - score > dead_band + _EPSILON:
            band += 1
            anchor = score
        bands[score] = band
    return bands


class PriorityScorer:
    """Ranks panel items and flags candidates that are ready to promote."""

    def __init__(self, config: Optional[WorkstreamConfig] = None):
        self.config = config or WorkstreamConfig()

    def score_of(self, item: PanelItem) -> Optional[float]:
        return normalize_score(item.priority_score, self.config.priority_score_max)

    def sort_keys(self, items: Sequence[PanelItem]) -> List[Tuple[int, int, int, int]]:
        """Ascending sort key per item (lower ranks first)."""
        scores = [self.score_of(i) for i in items]
        bands = score_bands(scores, self.config.score_dead_band)
        missing_band = len(set(bands.values()))
        keys = []
        for position, (item, score) in enumerate(zip(items, scores)):
            band = bands[score] if score is not None else missing_band
            keys.append((
                band,
                -tier_rank(item.priority_tier),
                -sla_rank(item.badge),
                position,
            ))
        return keys

    def rank(self, items: Iterable[PanelItem]) -> List[PanelItem]:
        """Return ``items`` ordered highest priority first."""
        items = list(items)
        keys = self.sort_keys(items)
        order = sorted(range(len(items)), key=lambda i: keys[i])
        return [items[i] for i in order]

    def compare(
        self,
        a: PanelItem,
        b: PanelItem,
        population: Sequence[PanelItem] = (),
    ) -> int:
        """
        -1 if ``a`` ranks above ``b``, 1 if below, 0 if fully tied.

        Bands are drawn over ``population`` plus the pair. Comparisons that
        share one population are transitive; without one, the pair is banded
        on its own.
        """
        keys = self.sort_keys([a, b, *population])
        key_a, key_b = keys[0][:3], keys[1][:3]
        if key_a < key_b:
            return -1
        if key_a > key_b:
            return 1
        return 0

    def is_ready_to_promote(self, item: PanelItem) -> bool:
        """Candidate rows with a strong score and a high ICP band."""
        if item.item_type != "candidate":
            return False
        score = self.score_of(item)
        if score is None:
            return False
        return (
            score >= self.config.promote_score_threshold
            and item.icp_band == self.config.promote_icp_band
        )
