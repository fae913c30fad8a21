"""CpuBucket - per-tick compute allowance with a carried-over reserve."""

from __future__ import annotations


class CpuBucket:
    """Tracks the compute reserve left over from previous ticks.

    Each tick is allowed ``limit`` units (milliseconds by convention). Unused
    allowance refills the bucket, overuse drains it, and the level is clamped
    to ``[0, ceiling]``.
    """

    def __init__(self, limit: float = 20.0, bucket: float = 10000.0,
                 ceiling: float = 10000.0) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if ceiling <= 0:
            raise ValueError("ceiling must be positive")
        self.limit = limit
        self.ceiling = ceiling
        self.bucket = min(max(bucket, 0.0), ceiling)
        self.last_used = 0.0

    def charge(self, used: float) -> float:
        """Account for *used* units spent this tick. Returns the new level."""
        self.last_used = used
        self.bucket = min(max(self.bucket + self.limit - used, 0.0), self.ceiling)
        return self.bucket

    def below(self, threshold: float) -> bool:
        return self.bucket < threshold

    def __repr__(self) -> str:
        return f"CpuBucket(limit={self.limit}, bucket={self.bucket:.0f})"
