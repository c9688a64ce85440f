"""Tests for pending echo tracking."""
from services.echo_tracker import PendingEchoes


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test__consume__suppresses_exactly_once() -> None:
    echoes = PendingEchoes(ttl=30)
    echoes.mark("a")

    assert "a" in echoes
    assert echoes.consume("a") is True
    assert echoes.consume("a") is False
    assert "a" not in echoes


def test__consume__unknown_id_is_not_an_echo() -> None:
    assert PendingEchoes(ttl=30).consume("a") is False


def test__consume__expired_marker_is_not_an_echo() -> None:
    clock = FakeClock()
    echoes = PendingEchoes(ttl=5, clock=clock)
    echoes.mark("a")

    clock.now += 6

    assert "a" not in echoes
    assert echoes.consume("a") is False
    assert len(echoes) == 0


def test__prune__removes_only_expired() -> None:
    clock = FakeClock()
    echoes = PendingEchoes(ttl=5, clock=clock)
    echoes.mark("old")
    clock.now += 3
    echoes.mark("new")
    clock.now += 3

    assert echoes.prune() == 1
    assert "new" in echoes
    assert len(echoes) == 1


def test__discard_and_clear() -> None:
    echoes = PendingEchoes(ttl=30)
    echoes.mark("a")
    echoes.mark("b")

    echoes.discard("a")
    echoes.discard("missing")
    assert len(echoes) == 1

    echoes.clear()
    assert len(echoes) == 0
