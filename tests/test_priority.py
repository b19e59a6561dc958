"""Tests for the Priority Scorer."""

from itertools import permutations

import pytest

from workstream_kernel.models.config import WorkstreamConfig
from workstream_kernel.models.panel import PanelItem
from workstream_kernel.models.sla import SlaBadge
from workstream_kernel.models.workstream import IcpBand, PriorityTier
from workstream_kernel.scoring.priority import PriorityScorer, normalize_score, score_bands


def _item(label, score=None, tier=None, badge=None, item_type="candidate", icp=None) -> PanelItem:
    return PanelItem(
        item_type=item_type, label=label, priority_score=score,
        priority_tier=tier, badge=badge, icp_band=icp,
    )


def _labels(items):
    return [i.label for i in items]


class TestNormalizeScore:
    def test_unit_scores_kept(self):
        assert normalize_score(0.82) == 0.82

    def test_wide_domain_scaled(self):
        assert normalize_score(150) == pytest.approx(0.75)

    def test_wide_domain_clamped(self):
        assert normalize_score(400) == 1.0

    @pytest.mark.parametrize("raw", [None, -0.5, "high", float("nan"), True])
    def test_invalid_scores_are_missing(self, raw):
        assert normalize_score(raw) is None


class TestScoreBands:
    def test_anchored_bands(self):
        bands = score_bands([0.95, 0.9, 0.81, 0.75, 0.6, None])
        assert bands == {0.95: 0, 0.9: 0, 0.81: 1, 0.75: 1, 0.6: 2}

    def test_chain_does_not_merge(self):
        # 0.9 → 0.82 → 0.74 are each within 0.1 of the next, but not of the anchor
        bands = score_bands([0.9, 0.82, 0.74])
        assert bands[0.9] == bands[0.82]
        assert bands[0.74] != bands[0.9]


class TestRanking:
    def setup_method(self):
        self.scorer = PriorityScorer()

    def test_dead_band_defers_to_tier(self):
        a = _item("a", 0.81, PriorityTier.LOW)
        b = _item("b", 0.75, PriorityTier.HIGH)
        assert _labels(self.scorer.rank([a, b])) == ["b", "a"]
        assert self.scorer.compare(b, a) == -1

    def test_score_wins_outside_dead_band(self):
        a = _item("a", 0.95, PriorityTier.LOW)
        b = _item("b", 0.75, PriorityTier.CRITICAL)
        assert _labels(self.scorer.rank([b, a])) == ["a", "b"]

    def test_sla_breaks_tier_tie(self):
        green = _item("green", 0.5, PriorityTier.MEDIUM, SlaBadge.GREEN)
        red = _item("red", 0.5, PriorityTier.MEDIUM, SlaBadge.RED)
        amber = _item("amber", 0.5, PriorityTier.MEDIUM, SlaBadge.AMBER)
        assert _labels(self.scorer.rank([green, red, amber])) == ["red", "amber", "green"]

    def test_full_tie_keeps_input_order(self):
        items = [_item(str(n), 0.5, PriorityTier.LOW) for n in range(4)]
        assert _labels(self.scorer.rank(items)) == ["0", "1", "2", "3"]
        assert self.scorer.compare(items[0], items[1]) == 0

    def test_missing_score_ranks_last(self):
        unscored = _item("unscored", None, PriorityTier.CRITICAL, SlaBadge.RED)
        weak = _item("weak", 0.05, PriorityTier.LOW)
        assert _labels(self.scorer.rank([unscored, weak])) == ["weak", "unscored"]

    def test_wide_domain_scores_rank_with_unit_scores(self):
        wide = _item("wide", 180)           # 0.9
        unit = _item("unit", 0.5)
        assert _labels(self.scorer.rank([unit, wide])) == ["wide", "unit"]


class TestTotalOrder:
    def setup_method(self):
        self.scorer = PriorityScorer()
        self.items = [
            _item("a", 0.95, PriorityTier.LOW),
            _item("b", 0.90, PriorityTier.HIGH),
            _item("c", 0.81, PriorityTier.MEDIUM),
            _item("d", 0.75, PriorityTier.CRITICAL),
            _item("e", 0.60, PriorityTier.HIGH),
            _item("f", 0.30, PriorityTier.CRITICAL),
            _item("g", None, PriorityTier.CRITICAL),
        ]

    def test_expected_order(self):
        assert _labels(self.scorer.rank(self.items)) == ["b", "a", "d", "c", "e", "f", "g"]

    def test_sorting_is_idempotent(self):
        once = self.scorer.rank(self.items)
        assert _labels(self.scorer.rank(once)) == _labels(once)

    def test_input_order_does_not_matter(self):
        expected = _labels(self.scorer.rank(self.items))
        assert _labels(self.scorer.rank(list(reversed(self.items)))) == expected

    def test_transitive(self):
        for x, y, z in permutations(self.items, 3):
            if (
                self.scorer.compare(x, y, self.items) < 0
                and self.scorer.compare(y, z, self.items) < 0
            ):
                assert self.scorer.compare(x, z, self.items) < 0

    def test_chained_scores_stay_transitive(self):
        x = _item("x", 0.90, PriorityTier.LOW)
        y = _item("y", 0.82, PriorityTier.MEDIUM)
        z = _item("z", 0.74, PriorityTier.CRITICAL)
        population = [x, y, z]
        assert _labels(self.scorer.rank(population)) == ["y", "x", "z"]
        assert self.scorer.compare(y, x, population) < 0
        assert self.scorer.compare(x, z, population) < 0
        assert self.scorer.compare(y, z, population) < 0


class TestReadyToPromote:
    def setup_method(self):
        self.scorer = PriorityScorer()

    def test_strong_high_icp_candidate(self):
        assert self.scorer.is_ready_to_promote(_item("c", 0.82, icp=IcpBand.HIGH))

    def test_below_threshold(self):
        assert not self.scorer.is_ready_to_promote(_item("c", 0.79, icp=IcpBand.HIGH))

    def test_medium_icp(self):
        assert not self.scorer.is_ready_to_promote(_item("c", 0.9, icp=IcpBand.MEDIUM))

    def test_only_candidates(self):
        assert not self.scorer.is_ready_to_promote(
            _item("s", 0.95, icp=IcpBand.HIGH, item_type="signal")
        )

    def test_threshold_is_configurable(self):
        scorer = PriorityScorer(WorkstreamConfig(promote_score_threshold=0.75))
        assert scorer.is_ready_to_promote(_item("c", 0.79, icp=IcpBand.HIGH))
