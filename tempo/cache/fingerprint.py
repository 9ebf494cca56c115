"""Context fingerprints for analysis caching.

A fingerprint hashes only bucketed fields, so near-identical requests (a
battery level one point apart, a slightly warmer afternoon) collapse to the
same cache key.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tempo.config import CacheConfig
    from tempo.models import AnalysisContext, EnvironmentSnapshot

UNKNOWN = "unknown"


def _hash(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode()).hexdigest()


@dataclass(frozen=True)
class ContextFingerprint:
    """Stable cache key of an analysis context, plus the components it hashes.

    Equality and hashing use the digest only; the raw battery level is carried
    for similar-context lookup and never hashed.
    """

    digest: str
    user_id: str = field(compare=False)
    battery_bucket: int = field(compare=False)
    tags: tuple[str, ...] = field(compare=False)
    time_bucket: str = field(compare=False)
    env_bucket: str = field(compare=False)
    battery_level: float = field(compare=False)

    @property
    def family(self) -> str:
        """Key shared by every fingerprint of one user, tag set and time bucket."""
        return _hash("family", self.user_id, ",".join(self.tags), self.time_bucket)

    @property
    def short(self) -> str:
        return self.digest[:12]


class ContextFingerprinter:
    """Computes fingerprints using the configured bucket boundaries."""

    def __init__(self, config: CacheConfig) -> None:
        self.config = config

    def battery_bucket(self, level: float) -> int:
        width = self.config.battery_bucket_width
        return int(level // width) * width

    def environment_bucket(self, environment: EnvironmentSnapshot | None) -> str:
        """Coarse environment bucket, e.g. ``t=mild|h=humid|p=falling|aq=good``."""
        if environment is None:
            return "|".join(f"{key}={UNKNOWN}" for key in ("t", "h", "p", "aq"))

        cold, mild = self.config.temperature_bands
        dry, normal = self.config.humidity_bands
        good, moderate = self.config.air_quality_bands
        stable = self.config.pressure_trend_band

        temperature = _band(environment.temperature, (cold, "cold"), (mild, "mild"), "hot")
        humidity = _band(environment.humidity, (dry, "dry"), (normal, "normal"), "humid")
        air_quality = _band(
            environment.air_quality, (good, "good"), (moderate, "moderate"), "poor", inclusive=True
        )

        change = environment.pressure_change
        if change is None:
            pressure = UNKNOWN
        elif change < -stable:
            pressure = "falling"
        elif change > stable:
            pressure = "rising"
        else:
            pressure = "stable"

        return f"t={temperature}|h={humidity}|p={pressure}|aq={air_quality}"

    def fingerprint(self, context: AnalysisContext) -> ContextFingerprint:
        """Compute the fingerprint of an analysis context."""
        level = context.battery.current_level
        bucket = self.battery_bucket(level)
        tags = tuple(sorted(tag.value for tag in context.tags))
        time_bucket = context.time_of_day.value
        env_bucket = self.environment_bucket(context.environment)

        digest = _hash(
            context.user_id,
            str(bucket),
            ",".join(tags),
            time_bucket,
            env_bucket,
        )
        return ContextFingerprint(
            digest=digest,
            user_id=context.user_id,
            battery_bucket=bucket,
            tags=tags,
            time_bucket=time_bucket,
            env_bucket=env_bucket,
            battery_level=level,
        )


def _band(
    value: float | None,
    low: tuple[float, str],
    mid: tuple[float, str],
    high: str,
    inclusive: bool = False,
) -> str:
    if value is None:
        return UNKNOWN
    for bound, name in (low, mid):
        if value < bound or (inclusive and value == bound):
            return name
    return high
