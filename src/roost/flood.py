from __future__ import annotations

from .config import FloodSettings


class FloodLimiter:
    """Decaying counter that reports each excursion above its ceiling once.

    Every bump adds one unit; the count decays linearly at ``decay_per_s``
    units per second of elapsed time since the previous bump.
    """

    def __init__(
        self,
        *,
        ceiling: float,
        decay_per_s: float,
        breach_limit: int = 0,
    ) -> None:
        if ceiling <= 0:
            raise ValueError("ceiling must be positive")
        if decay_per_s < 0:
            raise ValueError("decay_per_s must be non-negative")
        self.ceiling = float(ceiling)
        self.decay_per_s = float(decay_per_s)
        self.breach_limit = breach_limit
        self.count = 0.0
        self.breaches = 0
        self._last_bump: float | None = None
        self._over = False

    @classmethod
    def from_settings(cls, settings: FloodSettings) -> FloodLimiter:
        return cls(
            ceiling=settings.ceiling,
            decay_per_s=settings.decay_per_s,
            breach_limit=settings.breach_limit,
        )

    @property
    def reached_limit(self) -> bool:
        return self.breach_limit > 0 and self.breaches >= self.breach_limit

    def _decay(self, now: float) -> None:
        if self._last_bump is None:
            return
        elapsed = max(0.0, now - self._last_bump)
        self.count = max(0.0, self.count - elapsed * self.decay_per_s)
        if self.count < self.ceiling:
            self._over = False

    def level(self, now: float) -> float:
        if self._last_bump is None:
            return self.count
        elapsed = max(0.0, now - self._last_bump)
        return max(0.0, self.count - elapsed * self.decay_per_s)

    def bump(self, now: float) -> bool:
        self._decay(now)
        self.count += 1.0
        self._last_bump = now
        if self.count < self.ceiling:
            self._over = False
            return False
        if self._over:
            return False
        self._over = True
        self.breaches += 1
        return True

    def reset(self) -> None:
        self.count = 0.0
        self.breaches = 0
        self._last_bump = None
        self._over = False
