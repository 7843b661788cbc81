"""RateLimiter tests with an injected clock."""

import pytest

from lumina.services.rate_limiter import RateLimiter

WINDOW = 15 * 60
BLOCK = 30 * 60


class Clock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(max_attempts=5, window_seconds=WINDOW, block_seconds=BLOCK, clock=clock)


def test_first_attempt_creates_entry(limiter):
    result = limiter.check("user@example.com")

    assert result.allowed
    assert result.remaining_attempts == 4
    assert limiter.attempt_count("user@example.com") == 1


def test_five_attempts_allowed_then_blocked(limiter, clock):
    remaining = [limiter.check("user@example.com").remaining_attempts for _ in range(5)]
    assert remaining == [4, 3, 2, 1, 0]

    sixth = limiter.check("user@example.com")

    assert not sixth.allowed
    assert sixth.reset_time == clock.now + BLOCK
    assert limiter.is_blocked("user@example.com")


def test_blocked_identifier_stays_blocked_until_expiry(limiter, clock):
    for _ in range(6):
        limiter.check("user@example.com")

    clock.advance(BLOCK - 1)
    assert not limiter.check("user@example.com").allowed

    clock.advance(2)
    result = limiter.check("user@example.com")
    assert result.allowed
    assert result.remaining_attempts == 4
    assert not limiter.is_blocked("user@example.com")


def test_window_expiry_resets_counter(limiter, clock):
    for _ in range(4):
        limiter.check("user@example.com")

    clock.advance(WINDOW + 1)
    result = limiter.check("user@example.com")

    assert result.allowed
    assert result.remaining_attempts == 4


def test_identifiers_are_independent(limiter):
    for _ in range(6):
        limiter.check("a@example.com")

    assert limiter.check("b@example.com").allowed
    assert not limiter.check("a@example.com").allowed


def test_record_failed_attempt_counts_like_check(limiter):
    limiter.record_failed_attempt("user@example.com")
    limiter.record_failed_attempt("user@example.com")

    assert limiter.attempt_count("user@example.com") == 2


def test_clear_attempts_removes_entry(limiter):
    for _ in range(6):
        limiter.check("user@example.com")

    limiter.clear_attempts("user@example.com")

    assert limiter.attempt_count("user@example.com") == 0
    assert limiter.check("user@example.com").allowed


def test_sweep_drops_stale_entries(limiter, clock):
    limiter.check("old@example.com")
    clock.advance(WINDOW)
    for _ in range(6):
        limiter.check("blocked@example.com")
    limiter.check("fresh@example.com")

    # Unblocked entry older than twice the window goes; block still active stays
    clock.advance(WINDOW + 1)
    assert limiter.sweep() == 1
    assert limiter.attempt_count("old@example.com") == 0
    assert limiter.is_blocked("blocked@example.com")

    # Block expired more than one window ago
    clock.advance(BLOCK)
    removed = limiter.sweep()
    assert removed == 2
    assert len(limiter) == 0


def test_format_reset_time_rounds_up_to_minutes(limiter, clock):
    assert limiter.format_reset_time(clock.now + 10) == "1 minute"
    assert limiter.format_reset_time(clock.now) == "1 minute"
    assert limiter.format_reset_time(clock.now + 61) == "2 minutes"
    assert limiter.format_reset_time(clock.now + BLOCK) == "30 minutes"


def test_max_attempts_must_be_positive(clock):
    with pytest.raises(ValueError):
        RateLimiter(max_attempts=0, clock=clock)
