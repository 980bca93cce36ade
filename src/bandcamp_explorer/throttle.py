"""Cancellation and backoff primitives shared by a running search.

A search hands every background unit the same ``CancellationToken`` and
``PauseGate``. Units check the token before doing work and wait on the gate,
so a single 429/503 response pauses the whole run for the cooldown period.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field


class SearchCancelledError(Exception):
    """Raised to a waiter whose own cancellation token fired."""


@dataclass
class CancellationToken:
    """Cooperative cancellation flag for one search run."""

    _event: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; return the cancelled flag."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SearchCancelledError("Search cancelled")


@dataclass
class PauseGate:
    """Shared backoff gate.

    ``pause_for`` closes the gate until a deadline; ``wait`` blocks callers
    while the gate is closed. Overlapping pauses extend the deadline, they
    never shorten it.
    """

    _deadline: float = field(default=0.0, init=False)
    _cond: threading.Condition = field(default_factory=threading.Condition, init=False, repr=False)

    def pause_for(self, seconds: float) -> None:
        with self._cond:
            self._deadline = max(self._deadline, time.monotonic() + seconds)
            self._cond.notify_all()

    def resume(self) -> None:
        with self._cond:
            self._deadline = 0.0
            self._cond.notify_all()

    @property
    def is_paused(self) -> bool:
        with self._cond:
            return self._deadline > time.monotonic()

    def remaining(self) -> float:
        with self._cond:
            return max(0.0, self._deadline - time.monotonic())

    def wait(self, token: CancellationToken | None = None, poll_interval: float = 0.25) -> bool:
        """Wait while the gate is closed.

        Returns False when the token was cancelled during the wait, True otherwise.
        """
        with self._cond:
            while True:
                if token is not None and token.is_cancelled:
                    return False
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    return True
                self._cond.wait(min(remaining, poll_interval))


## Tests


def test_gate_open_by_default():
    gate = PauseGate()
    assert not gate.is_paused
    assert gate.wait() is True


def test_gate_pause_blocks_until_deadline():
    gate = PauseGate()
    gate.pause_for(0.1)
    assert gate.is_paused

    start = time.monotonic()
    assert gate.wait(poll_interval=0.02) is True
    assert time.monotonic() - start >= 0.09


def test_gate_pause_never_shortens():
    gate = PauseGate()
    gate.pause_for(10)
    gate.pause_for(0.01)
    assert gate.remaining() > 5
    gate.resume()
    assert not gate.is_paused


def test_gate_wait_returns_false_when_cancelled():
    gate = PauseGate()
    token = CancellationToken()
    gate.pause_for(10)
    token.cancel()
    assert gate.wait(token, poll_interval=0.01) is False


def test_token_raise_if_cancelled():
    import pytest

    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(SearchCancelledError):
        token.raise_if_cancelled()
