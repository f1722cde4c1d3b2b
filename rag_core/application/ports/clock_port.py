from __future__ import annotations

from abc import ABC, abstractmethod


class ClockPort(ABC):
    """Port for time-related operations.

    Why (SAM): Prefetch freshness needs testable time. Infrastructure provides
    the concrete implementation (SystemClock); tests inject a fake.
    """

    @abstractmethod
    def monotonic(self) -> float:
        """Return monotonic seconds (only differences are meaningful)."""
        ...
