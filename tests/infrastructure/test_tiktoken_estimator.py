import sys
import types

import pytest

from rag_core.domain.errors import ConfigurationError
from rag_core.infrastructure.tokenization.tiktoken_estimator import TiktokenEstimator


class _FakeEncoding:
    def encode(self, text, disallowed_special=()):
        return text.split()


@pytest.fixture(autouse=True)
def fake_tiktoken(monkeypatch):
    module = types.ModuleType("tiktoken")

    def get_encoding(name):
        if name != "cl100k_base":
            raise ValueError(f"Unknown encoding {name}")
        return _FakeEncoding()

    module.get_encoding = get_encoding
    monkeypatch.setitem(sys.modules, "tiktoken", module)


def test_counts_tokens_with_minimum_of_one():
    estimate = TiktokenEstimator()
    assert estimate("gold loan interest rates") == 4
    assert estimate("") == 1
    assert estimate("   ") == 1


def test_unknown_encoding_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="o200k_fake"):
        TiktokenEstimator("o200k_fake")
