"""Bias profile and adjustment preview records.

These are the types that cross the serialization boundary (Redis, HTTP,
agent messages). Every serialized record carries ``schema_version``.

Upgrade policy:
    * no ``schema_version``  -> legacy v0 record written by the browser
      client (camelCase keys, epoch-millisecond timestamps); upgraded on read
    * ``schema_version == SCHEMA_VERSION`` -> read as is
    * newer ``schema_version`` -> ValueError; readers skip the record
    * a schema change bumps SCHEMA_VERSION and adds one ``_UPGRADES`` step
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional

from velo_calibration.utils.datetime_utils import parse_timestamp, to_iso

SCHEMA_VERSION = 1


class Confidence:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    RANK = {LOW: 0, MEDIUM: 1, HIGH: 2}

    @classmethod
    def highest(cls, tiers: list[str]) -> str:
        if not tiers:
            return cls.LOW
        return max(tiers, key=lambda t: cls.RANK.get(t, 0))


class ContextType:
    GLOBAL = "global"
    PROJECT = "project"
    STAGE = "stage"
    TAG = "tag"

    ALL = (GLOBAL, PROJECT, STAGE, TAG)


GLOBAL_CONTEXT_KEY = "global"


def profile_id(organization_id: str, user_id: str, context_type: str, context_key: str) -> str:
    return f"{organization_id}:{user_id}:{context_type}:{context_key}"


def _upgrade_v0(data: dict) -> dict:
    """Legacy browser-client layout -> v1."""
    return {
        "schema_version": 1,
        "id": data.get("id"),
        "organization_id": data.get("orgId", data.get("organization_id")),
        "user_id": data.get("userId", data.get("user_id")),
        "context_type": data.get("contextType", data.get("context_type")),
        "context_key": data.get("contextKey", data.get("context_key")),
        "bias_factor": data.get("biasFactor", data.get("bias_factor")),
        "confidence": data.get("confidence"),
        "sample_size": data.get("sampleSize", data.get("sample_size")),
        "variance_score": data.get("varianceScore", data.get("variance_score", 0.0)),
        "trend_delta": data.get("trendDelta", data.get("trend_delta", 0.0)),
        "window_start": data.get("windowStart", data.get("window_start")),
        "window_end": data.get("windowEnd", data.get("window_end")),
        "updated_at": data.get("updatedAt", data.get("updated_at")),
    }


_UPGRADES = {0: _upgrade_v0}


def upgrade_record(data: dict) -> dict:
    """Bring a serialized profile up to SCHEMA_VERSION."""
    version = int(data.get("schema_version", 0))
    if version > SCHEMA_VERSION:
        raise ValueError(
            f"profile schema v{version} is newer than supported v{SCHEMA_VERSION}"
        )
    while version < SCHEMA_VERSION:
        data = _UPGRADES[version](data)
        version = int(data["schema_version"])
    return data


@dataclass
class BiasProfile:
    id: str
    organization_id: str
    user_id: str
    context_type: str
    context_key: str
    bias_factor: float
    confidence: str
    sample_size: int
    variance_score: float
    trend_delta: float
    window_start: Optional[datetime]
    window_end: Optional[datetime]
    updated_at: Optional[datetime]

    def to_dict(self) -> dict:
        d = asdict(self)
        d["window_start"] = to_iso(self.window_start)
        d["window_end"] = to_iso(self.window_end)
        d["updated_at"] = to_iso(self.updated_at)
        d["schema_version"] = SCHEMA_VERSION
        return d

    @classmethod
    def from_dict(cls, data: dict) -> BiasProfile:
        data = upgrade_record(dict(data))
        context_type = data["context_type"]
        if context_type not in ContextType.ALL:
            raise ValueError(f"unknown context type: {context_type!r}")
        organization_id = str(data["organization_id"])
        user_id = str(data["user_id"])
        context_key = str(data["context_key"])
        return cls(
            id=str(data.get("id") or profile_id(organization_id, user_id, context_type, context_key)),
            organization_id=organization_id,
            user_id=user_id,
            context_type=context_type,
            context_key=context_key,
            bias_factor=float(data["bias_factor"]),
            confidence=data.get("confidence") or Confidence.LOW,
            sample_size=int(data["sample_size"]),
            variance_score=float(data.get("variance_score") or 0.0),
            trend_delta=float(data.get("trend_delta") or 0.0),
            window_start=parse_timestamp(data.get("window_start")),
            window_end=parse_timestamp(data.get("window_end")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


@dataclass
class AdjustmentPreview:
    estimated_minutes: float
    adjusted_minutes: float
    bias_factor_used: float
    confidence: str
    sample_size: int
    explanation: str
    requires_approval: bool

    def to_dict(self) -> dict:
        d = asdict(self)
        d["schema_version"] = SCHEMA_VERSION
        return d
