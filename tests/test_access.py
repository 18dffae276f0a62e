from ndis_core.access import FailedAttemptLimiter, client_ip_from_headers, verify_password


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_verify_password():
    assert verify_password("secret", "secret")
    assert not verify_password("Secret", "secret")
    assert not verify_password(None, "secret")


def test_unset_password_rejects_everything():
    assert not verify_password("", None)
    assert not verify_password("anything", "")


def test_blocks_after_max_failures():
    clock = FakeClock()
    limiter = FailedAttemptLimiter(max_attempts=3, block_seconds=60, clock=clock)

    assert limiter.record_failure("1.2.3.4").remaining_attempts == 2
    assert limiter.record_failure("1.2.3.4").remaining_attempts == 1
    status = limiter.record_failure("1.2.3.4")

    assert not status.allowed
    assert status.blocked_until == 1_060.0
    assert status.minutes_remaining(clock()) == 1
    assert limiter.check("5.6.7.8").allowed


def test_block_expires():
    clock = FakeClock()
    limiter = FailedAttemptLimiter(max_attempts=1, block_seconds=900, clock=clock)
    limiter.record_failure("ip")

    clock.now += 899
    assert not limiter.check("ip").allowed
    assert limiter.check("ip").minutes_remaining(clock()) == 1

    clock.now += 2
    status = limiter.check("ip")
    assert status.allowed
    assert status.remaining_attempts == 1


def test_success_resets_attempts():
    limiter = FailedAttemptLimiter(max_attempts=5, clock=FakeClock())
    limiter.record_failure("ip")
    limiter.record_failure("ip")

    limiter.reset("ip")

    assert limiter.check("ip").remaining_attempts == 5


def test_prune_drops_expired_blocks():
    clock = FakeClock()
    limiter = FailedAttemptLimiter(max_attempts=1, block_seconds=10, clock=clock)
    limiter.record_failure("a")
    limiter.record_failure("b")
    clock.now += 11

    assert limiter.prune() == 2
    assert limiter.prune() == 0


def test_client_ip_precedence():
    assert client_ip_from_headers({"x-forwarded-for": "10.0.0.1, 10.0.0.2", "x-real-ip": "10.0.0.9"}) == "10.0.0.1"
    assert client_ip_from_headers({"x-real-ip": "10.0.0.9"}) == "10.0.0.9"
    assert client_ip_from_headers({}) == "127.0.0.1"


def test_failures_below_the_limit_go_stale():
    clock = FakeClock()
    limiter = FailedAttemptLimiter(max_attempts=5, clock=clock, stale_seconds=600)
    limiter.record_failure("ip")
    limiter.record_failure("ip")

    clock.now += 601

    assert limiter.check("ip").remaining_attempts == 5
    assert limiter.record_failure("ip").remaining_attempts == 4


def test_expired_entries_are_swept_on_the_cleanup_interval():
    """Blocked addresses that never come back are dropped by later traffic from anyone."""
    clock = FakeClock()
    limiter = FailedAttemptLimiter(max_attempts=5, block_seconds=900, clock=clock, cleanup_interval=3600)
    for i in range(50):
        for _ in range(5):
            limiter.record_failure(f"10.0.0.{i}")
    limiter.record_failure("10.9.9.9")
    assert len(limiter) == 51

    clock.now += 1000
    limiter.check("192.168.0.1")
    assert len(limiter) == 51

    clock.now += 2600
    limiter.check("192.168.0.1")
    assert len(limiter) == 0
