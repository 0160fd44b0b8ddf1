"""Calibration settings: environment defaults overlaid with stored overrides.

Overrides live in the Redis hash ``settings:estimation`` so every worker
and agent sees the same switches. Values are used as given; nothing here
range-checks the approval threshold.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict, fields, replace

import redis

from velo_calibration.config.settings import (
    ENABLE_ESTIMATE_CALIBRATION,
    ESTIMATION_APPROVAL_THRESHOLD,
    ESTIMATION_REQUIRE_APPROVAL,
    REDIS_URL,
    SHOW_PERSONAL_CALIBRATION,
)

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings:estimation"


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


@dataclass(frozen=True)
class CalibrationSettings:
    enable_estimate_calibration: bool = ENABLE_ESTIMATE_CALIBRATION
    estimation_require_approval: bool = ESTIMATION_REQUIRE_APPROVAL
    estimation_approval_threshold: float = ESTIMATION_APPROVAL_THRESHOLD
    show_personal_calibration: bool = SHOW_PERSONAL_CALIBRATION

    def to_dict(self) -> dict:
        return asdict(self)


def _encode(value) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def _decode(name: str, raw: str):
    if name == "estimation_approval_threshold":
        return float(raw)
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_settings(r: redis.Redis | None = None) -> CalibrationSettings:
    """Current settings. Unreadable overrides fall back to the defaults."""
    r = r or _get_redis()
    defaults = CalibrationSettings()
    try:
        stored = r.hgetall(SETTINGS_KEY)
    except redis.RedisError as exc:
        logger.warning("Settings read failed, using defaults: %s", exc)
        return defaults

    overrides = {}
    for f in fields(CalibrationSettings):
        if f.name not in stored:
            continue
        try:
            overrides[f.name] = _decode(f.name, stored[f.name])
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable setting %s=%r", f.name, stored[f.name])
    return replace(defaults, **overrides)


def update_settings(r: redis.Redis | None = None, **changes) -> CalibrationSettings:
    """Persist a partial update and return the resulting settings."""
    r = r or _get_redis()
    known = {f.name for f in fields(CalibrationSettings)}
    unknown = set(changes) - known
    if unknown:
        raise ValueError(f"unknown calibration settings: {sorted(unknown)}")
    mapping = {k: _encode(v) for k, v in changes.items() if v is not None}
    if mapping:
        r.hset(SETTINGS_KEY, mapping=mapping)
        logger.info("Calibration settings updated: %s", sorted(mapping))
    return get_settings(r)
