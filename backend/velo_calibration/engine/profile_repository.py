"""Profile Repository: per-organization bias profile storage.

Profiles are never updated in place. Each recompute replaces the whole
set for one organization in a single write; other organizations are
untouched.

Redis layout:
    calibration:profiles:{org}          hash  profile id -> profile JSON
    calibration:profiles:{org}:version  int   bumped on every replace

Reads never raise: an empty, malformed or unreachable store reads as an
empty collection.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Optional

import redis

from velo_calibration.config.settings import REDIS_URL
from velo_calibration.models.profile import BiasProfile

logger = logging.getLogger(__name__)

PROFILES_PREFIX = "calibration:profiles:"
VERSION_SUFFIX = ":version"


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def profiles_key(organization_id: str) -> str:
    return f"{PROFILES_PREFIX}{organization_id}"


def version_key(organization_id: str) -> str:
    return f"{PROFILES_PREFIX}{organization_id}{VERSION_SUFFIX}"


class ProfileRepository(ABC):
    """Storage seam for bias profiles.

    ``replace_all`` with ``expected_version`` is an optimistic-concurrency
    replace: it is refused (returns False) when another writer replaced
    the organization's profiles since ``version()`` was read. Without it
    the last write wins.
    """

    @abstractmethod
    def replace_all(
        self,
        organization_id: str,
        profiles: list[BiasProfile],
        expected_version: Optional[int] = None,
    ) -> bool:
        """Swap the organization's profile set. True when the write landed."""

    @abstractmethod
    def get_for_org(self, organization_id: str) -> list[BiasProfile]:
        """All stored profiles of an organization."""

    @abstractmethod
    def version(self, organization_id: str) -> int:
        """Number of replaces applied to the organization so far."""

    def get_for_user(self, organization_id: str, user_id: str) -> list[BiasProfile]:
        return [p for p in self.get_for_org(organization_id) if p.user_id == user_id]

    def purge_org(self, organization_id: str) -> bool:
        """Drop every profile of an organization (used when the org is deleted)."""
        return self.replace_all(organization_id, [])


class InMemoryProfileRepository(ProfileRepository):
    """Process-local repository. Holds serialized records, like the Redis one."""

    def __init__(self) -> None:
        self._records: dict[str, list[dict]] = {}
        self._versions: dict[str, int] = {}

    def replace_all(self, organization_id, profiles, expected_version=None) -> bool:
        if expected_version is not None and expected_version != self.version(organization_id):
            logger.info(
                "Profile replace for org %s refused: version moved past %s",
                organization_id, expected_version,
            )
            return False
        self._records[organization_id] = [p.to_dict() for p in profiles]
        self._versions[organization_id] = self.version(organization_id) + 1
        return True

    def get_for_org(self, organization_id: str) -> list[BiasProfile]:
        return _decode_all(organization_id, self._records.get(organization_id, []))

    def version(self, organization_id: str) -> int:
        return self._versions.get(organization_id, 0)


class RedisProfileRepository(ProfileRepository):
    """Redis hash per organization, replaced inside MULTI/EXEC."""

    def __init__(self, r: redis.Redis | None = None) -> None:
        self.r = r or _get_redis()

    def replace_all(self, organization_id, profiles, expected_version=None) -> bool:
        key = profiles_key(organization_id)
        vkey = version_key(organization_id)
        mapping = {p.id: json.dumps(p.to_dict()) for p in profiles}
        try:
            with self.r.pipeline() as pipe:
                if expected_version is not None:
                    pipe.watch(vkey)
                    current = int(pipe.get(vkey) or 0)
                    if current != expected_version:
                        pipe.unwatch()
                        logger.info(
                            "Profile replace for org %s refused: version %s != expected %s",
                            organization_id, current, expected_version,
                        )
                        return False
                pipe.multi()
                pipe.delete(key)
                if mapping:
                    pipe.hset(key, mapping=mapping)
                pipe.incr(vkey)
                pipe.execute()
        except redis.WatchError:
            logger.info("Profile replace for org %s lost a race; skipped", organization_id)
            return False
        except redis.RedisError as exc:
            logger.warning("Profile replace for org %s failed: %s", organization_id, exc)
            return False
        logger.info("Stored %d profiles for org %s", len(mapping), organization_id)
        return True

    def get_for_org(self, organization_id: str) -> list[BiasProfile]:
        try:
            raw = self.r.hgetall(profiles_key(organization_id))
        except redis.RedisError as exc:
            logger.warning("Profile read for org %s failed: %s", organization_id, exc)
            return []
        records = []
        for field_name, payload in sorted(raw.items()):
            try:
                records.append(json.loads(payload))
            except (TypeError, ValueError):
                logger.warning("Skipping unreadable profile %s in org %s", field_name, organization_id)
        return _decode_all(organization_id, records)

    def version(self, organization_id: str) -> int:
        try:
            return int(self.r.get(version_key(organization_id)) or 0)
        except (redis.RedisError, ValueError) as exc:
            logger.warning("Profile version read for org %s failed: %s", organization_id, exc)
            return 0


def _decode_all(organization_id: str, records: list) -> list[BiasProfile]:
    profiles = []
    for record in records:
        if not isinstance(record, dict):
            logger.warning("Skipping non-object profile record in org %s", organization_id)
            continue
        try:
            profiles.append(BiasProfile.from_dict(record))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping invalid profile record in org %s: %s", organization_id, exc)
    return profiles
