import pytest

from roost.config import FloodSettings
from roost.flood import FloodLimiter


def test_reports_crossing_once_per_excursion() -> None:
    limiter = FloodLimiter(ceiling=5, decay_per_s=0)

    results = [limiter.bump(0.0) for _ in range(5)]

    assert results == [False, False, False, False, True]
    assert limiter.bump(0.0) is False
    assert limiter.breaches == 1


def test_decay_lets_count_fall_below_ceiling() -> None:
    limiter = FloodLimiter(ceiling=3, decay_per_s=1.0)

    assert [limiter.bump(0.0) for _ in range(3)] == [False, False, True]
    # 3 units minus 2 decayed plus the new one: back under the ceiling.
    assert limiter.bump(2.0) is False
    assert limiter.level(2.0) == pytest.approx(2.0)


def test_new_excursion_reported_again() -> None:
    limiter = FloodLimiter(ceiling=2, decay_per_s=1.0)

    assert [limiter.bump(0.0), limiter.bump(0.0)] == [False, True]
    assert limiter.bump(0.0) is False
    assert limiter.bump(10.0) is False
    assert limiter.bump(10.0) is True
    assert limiter.breaches == 2


def test_breach_limit() -> None:
    limiter = FloodLimiter.from_settings(
        FloodSettings(ceiling=1, decay_per_s=1.0, breach_limit=2)
    )

    assert limiter.bump(0.0) is True
    assert not limiter.reached_limit
    assert limiter.bump(5.0) is True
    assert limiter.reached_limit


def test_count_never_negative() -> None:
    limiter = FloodLimiter(ceiling=10, decay_per_s=100.0)
    limiter.bump(0.0)

    assert limiter.level(50.0) == 0.0
    limiter.bump(50.0)
    assert limiter.count == 1.0


def test_reset() -> None:
    limiter = FloodLimiter(ceiling=1, decay_per_s=0)
    limiter.bump(0.0)
    limiter.reset()

    assert limiter.count == 0.0
    assert limiter.breaches == 0
    assert limiter.bump(0.0) is True


def test_invalid_settings() -> None:
    with pytest.raises(ValueError):
        FloodLimiter(ceiling=0, decay_per_s=1)
    with pytest.raises(ValueError):
        FloodLimiter(ceiling=1, decay_per_s=-1)
