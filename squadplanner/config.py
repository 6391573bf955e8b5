"""
squadplanner.config — YAML Configuration Loader
================================================

**Why this file exists:**
This module reads ``config.yaml`` for the **non-secret** settings of a
deployment: display identity, scheduling defaults, the auto-confirm policy
and the recurring-session materialization cadence.  Secrets (database URL,
JWT secret, Discord token) stay in the environment / ``.env``.

Usage::

    from squadplanner.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.app_name)              # "Squad Planner"
    print(cfg.auto_confirm_policy)   # AutoConfirmPolicy.ON_RSVP
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from squadplanner.constants import (
    DEFAULT_AUTO_CONFIRM_THRESHOLD,
    DEFAULT_DURATION_MINUTES,
)
from squadplanner.engine.lifecycle import AutoConfirmPolicy
from squadplanner.errors import ValidationError


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SquadPlannerConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    app_name: str

    # Discord
    bot_prefix: str

    # HTTP API
    api_port: int

    # Scheduling
    timezone: str = "UTC"
    auto_confirm_policy: AutoConfirmPolicy = AutoConfirmPolicy.ON_RSVP
    default_auto_confirm_threshold: int = DEFAULT_AUTO_CONFIRM_THRESHOLD
    default_duration_minutes: int = DEFAULT_DURATION_MINUTES

    # Recurring templates
    recurring_horizon_hours: int = 48
    materialize_interval_minutes: int = 15

    # Optional
    announce_channel_id: int | None = None  # Where the bot posts new sessions

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> SquadPlannerConfig:
    """Read *path* and return a :class:`SquadPlannerConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValidationError
        If the policy, timezone or a numeric default is invalid.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return config_from_mapping(raw)


def config_from_mapping(raw: dict) -> SquadPlannerConfig:
    """Build a validated config from an already-parsed mapping."""
    policy_raw = str(raw.get("auto_confirm_policy", AutoConfirmPolicy.ON_RSVP.value))
    try:
        policy = AutoConfirmPolicy(policy_raw)
    except ValueError:
        allowed = ", ".join(p.value for p in AutoConfirmPolicy)
        raise ValidationError(
            f"auto_confirm_policy must be one of: {allowed} (got {policy_raw!r})"
        ) from None

    timezone = str(raw.get("timezone", "UTC"))
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {timezone!r}") from None

    threshold = int(raw.get("default_auto_confirm_threshold", DEFAULT_AUTO_CONFIRM_THRESHOLD))
    if threshold < 1:
        raise ValidationError("default_auto_confirm_threshold must be >= 1")

    duration = int(raw.get("default_duration_minutes", DEFAULT_DURATION_MINUTES))
    if duration <= 0:
        raise ValidationError("default_duration_minutes must be positive")

    return SquadPlannerConfig(
        app_name=raw["app_name"],
        bot_prefix=raw["bot_prefix"],
        api_port=int(raw["api_port"]),
        timezone=timezone,
        auto_confirm_policy=policy,
        default_auto_confirm_threshold=threshold,
        default_duration_minutes=duration,
        recurring_horizon_hours=int(raw.get("recurring_horizon_hours", 48)),
        materialize_interval_minutes=int(raw.get("materialize_interval_minutes", 15)),
        announce_channel_id=(
            int(raw["announce_channel_id"]) if raw.get("announce_channel_id") else None
        ),
    )
