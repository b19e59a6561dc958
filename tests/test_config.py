"""Tests for workstream configuration and overrides."""

from datetime import datetime, timedelta, timezone

import pytest

from workstream_kernel.models.config import (
    ConfigType,
    ConfigurationItem,
    RetryPolicy,
    WorkstreamConfig,
    apply_configuration,
)
from workstream_kernel.models.workstream import IcpBand

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class TestDefaults:
    def test_stock_values(self):
        config = WorkstreamConfig()
        assert config.amber_window_hours == 6.0
        assert config.score_dead_band == 0.1
        assert config.promote_score_threshold == 0.8
        assert config.ready_to_promote_limit == 3
        assert config.sla_thresholds == {
            "triage_sla": 24.0,
            "proposal_sla": 72.0,
            "response_sla": 96.0,
        }

    def test_instances_do_not_share_thresholds(self):
        a = WorkstreamConfig()
        b = WorkstreamConfig()
        a.sla_thresholds["triage_sla"] = 1.0
        assert b.sla_thresholds["triage_sla"] == 24.0


class TestRetryPolicy:
    def test_exponential_backoff(self):
        policy = RetryPolicy(base_delay_seconds=60, multiplier=2, max_delay_seconds=3600)
        assert policy.delay_for(1) == 60
        assert policy.delay_for(2) == 120
        assert policy.delay_for(3) == 240

    def test_backoff_is_capped(self):
        policy = RetryPolicy(base_delay_seconds=60, multiplier=2, max_delay_seconds=300)
        assert policy.delay_for(10) == 300


class TestApplyConfiguration:
    def test_sla_threshold_override(self):
        items = [ConfigurationItem(
            config_type=ConfigType.SLA, config_key="triage_sla", config_value=12,
        )]
        config = apply_configuration(WorkstreamConfig(), items, NOW)
        assert config.sla_thresholds["triage_sla"] == 12.0
        assert config.sla_thresholds["proposal_sla"] == 72.0

    def test_original_config_untouched(self):
        base = WorkstreamConfig()
        items = [ConfigurationItem(
            config_type=ConfigType.SCORING, config_key="score_dead_band", config_value=0.2,
        )]
        apply_configuration(base, items, NOW)
        assert base.score_dead_band == 0.1

    def test_future_items_are_skipped(self):
        items = [ConfigurationItem(
            config_type=ConfigType.SCORING,
            config_key="promote_score_threshold",
            config_value=0.9,
            effective_from=NOW + timedelta(days=1),
        )]
        config = apply_configuration(WorkstreamConfig(), items, NOW)
        assert config.promote_score_threshold == 0.8

    def test_latest_effective_item_wins(self):
        items = [
            ConfigurationItem(
                config_type=ConfigType.SLA, config_key="amber_window_hours",
                config_value=4, effective_from=NOW - timedelta(hours=1),
            ),
            ConfigurationItem(
                config_type=ConfigType.SLA, config_key="amber_window_hours",
                config_value=8, effective_from=NOW - timedelta(days=2),
            ),
        ]
        config = apply_configuration(WorkstreamConfig(), items, NOW)
        assert config.amber_window_hours == 4.0

    def test_retry_override(self):
        items = [ConfigurationItem(
            config_type=ConfigType.OUTBOX, config_key="max_retries", config_value=2,
        )]
        config = apply_configuration(WorkstreamConfig(), items, NOW)
        assert config.retry.max_retries == 2

    def test_unknown_key_rejected(self):
        items = [ConfigurationItem(
            config_type=ConfigType.SCORING, config_key="magic", config_value=1,
        )]
        with pytest.raises(ValueError):
            apply_configuration(WorkstreamConfig(), items, NOW)

    def test_icp_band_override(self):
        items = [ConfigurationItem(
            config_type=ConfigType.SCORING, config_key="promote_icp_band", config_value="medium",
        )]
        config = apply_configuration(WorkstreamConfig(), items, NOW)
        assert config.promote_icp_band == IcpBand.MEDIUM

    def test_unknown_icp_band_rejected(self):
        items = [ConfigurationItem(
            config_type=ConfigType.SCORING, config_key="promote_icp_band", config_value="HIGH",
        )]
        with pytest.raises(ValueError):
            apply_configuration(WorkstreamConfig(), items, NOW)
