"""Workstream configuration and per-organization overrides."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from workstream_kernel.clock import as_utc, utcnow
from workstream_kernel.models.workstream import IcpBand


DEFAULT_SLA_THRESHOLDS = {
    "triage_sla": 24.0,     # hours from signal creation
    "proposal_sla": 72.0,   # hours from pursuit stage entry
    "response_sla": 96.0,   # hours from candidate last touch
}


class RetryPolicy(BaseModel):
    """Backoff for outbox side effects."""

    max_retries: int = Field(ge=0, default=5)
    base_delay_seconds: float = Field(gt=0, default=60.0)
    multiplier: float = Field(ge=1.0, default=2.0)
    max_delay_seconds: float = Field(gt=0, default=3600.0)

    def delay_for(self, retry_count: int) -> float:
        """Delay before the attempt that follows ``retry_count`` failures."""
        exponent = max(retry_count - 1, 0)
        return min(self.base_delay_seconds * (self.multiplier ** exponent), self.max_delay_seconds)


class WorkstreamConfig(BaseModel):
    """Tunables for SLA, ranking, outbox and drip behaviour."""

    amber_window_hours: float = Field(gt=0, default=6.0)
    sla_thresholds: Dict[str, float] = dict(DEFAULT_SLA_THRESHOLDS)

    score_dead_band: float = Field(ge=0, default=0.1)
    priority_score_max: float = Field(gt=0, default=200.0)
    promote_score_threshold: float = Field(ge=0, le=1, default=0.8)
    promote_icp_band: IcpBand = IcpBand.HIGH
    ready_to_promote_limit: int = Field(ge=0, default=3)

    retry: RetryPolicy = RetryPolicy()
    heartbeat_interval_seconds: int = 60

    drip_sequence_days: List[int] = [0, 3, 7, 14]
    drip_send_window: Optional[str] = "0 9 * * 1-5"     # Cron expression, None = send immediately


class ConfigType(str, Enum):
    SLA = "sla"
    SCORING = "scoring"
    OUTBOX = "outbox"
    DRIP = "drip"


class ConfigurationItem(BaseModel):
    """A stored override for one configuration key."""

    config_type: ConfigType
    config_key: str
    config_value: Any
    effective_from: Optional[datetime] = None


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_SCORING_KEYS = {
    "score_dead_band",
    "priority_score_max",
    "promote_score_threshold",
    "promote_icp_band",
    "ready_to_promote_limit",
}


def apply_configuration(
    config: WorkstreamConfig,
    items: List[ConfigurationItem],
    now: Optional[datetime] = None,
) -> WorkstreamConfig:
    """
    Return a copy of ``config`` with every effective override applied.

    Items whose ``effective_from`` lies in the future are skipped. Later items
    win over earlier ones for the same key. Unknown keys raise ValueError.
    """
    if now is None:
        now = utcnow()

    data = config.model_dump()
    for item in sorted(items, key=lambda i: as_utc(i.effective_from) or _EPOCH):
        if item.effective_from and as_utc(item.effective_from) > as_utc(now):
            continue

        if item.config_type == ConfigType.SLA:
            if item.config_key == "amber_window_hours":
                data["amber_window_hours"] = float(item.config_value)
            else:
                data["sla_thresholds"][item.config_key] = float(item.config_value)
        elif item.config_type == ConfigType.SCORING:
            if item.config_key not in _SCORING_KEYS:
                raise ValueError(f"Unknown scoring key: {item.config_key}")
            data[item.config_key] = item.config_value
        elif item.config_type == ConfigType.OUTBOX:
            if item.config_key == "heartbeat_interval_seconds":
                data["heartbeat_interval_seconds"] = int(item.config_value)
            elif item.config_key in RetryPolicy.model_fields:
                data["retry"][item.config_key] = item.config_value
            else:
                raise ValueError(f"Unknown outbox key: {item.config_key}")
        elif item.config_type == ConfigType.DRIP:
            if item.config_key not in ("drip_sequence_days", "drip_send_window"):
                raise ValueError(f"Unknown drip key: {item.config_key}")
            data[item.config_key] = item.config_value

    return WorkstreamConfig.model_validate(data)
