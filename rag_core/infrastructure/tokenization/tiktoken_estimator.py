from __future__ import annotations

from importlib import import_module
from typing import Any

from rag_core.domain.errors import ConfigurationError


class TiktokenEstimator:
    """Token counter for context budgets, backed by a tiktoken encoding.

    Callable so it can be passed wherever a ``TokenEstimator`` is expected.
    """

    def __init__(self, encoding: str = "cl100k_base") -> None:
        self.encoding_name = encoding
        try:
            tiktoken = import_module("tiktoken")
            self._encoder: Any = tiktoken.get_encoding(encoding)
        except Exception as ex:  # noqa: BLE001
            raise ConfigurationError(f"tiktoken encoding '{encoding}' unavailable: {ex}") from ex

    def __call__(self, text: str) -> int:
        if not text:
            return 1
        return max(1, len(self._encoder.encode(text, disallowed_special=())))
