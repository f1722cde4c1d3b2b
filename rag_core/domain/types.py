from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E", bound=BaseException)


@dataclass(frozen=True)
class Result(Generic[T, E]):
    """Tagged success/failure value; used per source in the parallel search step."""

    ok: bool
    value: T | None = None
    error: E | None = None

    @staticmethod
    def success(v: T) -> Result[T, E]:
        return Result(ok=True, value=v)

    @staticmethod
    def failure(e: E) -> Result[T, E]:
        return Result(ok=False, error=e)


Vector = tuple[float, ...]  # domain stays agnostic to dimensionality
Score = float
