"""System clock adapter.

This is the production implementation of ClockPort.
For tests, inject a fake clock.
"""

from __future__ import annotations

import time

from rag_core.application.ports.clock_port import ClockPort


class SystemClock(ClockPort):
    """Production clock backed by ``time.monotonic``.

    Why (SAM): Infrastructure adapters implement ports. This is the only
    concrete clock implementation. Tests should use fakes, not this.
    """

    def monotonic(self) -> float:  # pragma: no cover - trivial
        return time.monotonic()
