"""Tests for message corruption strategies."""

import copy
import json

import pytest

from mcpcheck.corruption import (
    STRATEGIES,
    corrupt,
    corrupt_structure,
    corrupt_values,
    truncate_payload,
)
from mcpcheck.messages import RawPayload
from mcpcheck.prng import SeededRandom

REQUEST = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "tools/call",
    "params": {"name": "echo", "arguments": {"message": "hello"}},
}


class TestStrategies:
    """Tests for the individual strategies."""

    @pytest.mark.parametrize("strategy", STRATEGIES, ids=lambda s: s.__name__)
    @pytest.mark.parametrize("value", [{}, [], ""], ids=["object", "array", "string"])
    def test_degenerate_input_unchanged(self, strategy, value) -> None:
        """Empty values have nothing to corrupt."""
        assert strategy(value, SeededRandom(1)) == value

    @pytest.mark.parametrize("strategy", STRATEGIES, ids=lambda s: s.__name__)
    def test_input_not_mutated(self, strategy) -> None:
        """Strategies work on copies."""
        message = copy.deepcopy(REQUEST)
        for seed in range(20):
            strategy(message, SeededRandom(seed))
        assert message == REQUEST

    def test_structure_always_changes(self) -> None:
        """Every structural mutation yields a different object."""
        for seed in range(50):
            assert corrupt_structure(REQUEST, SeededRandom(seed)) != REQUEST

    def test_structure_ignores_non_objects(self) -> None:
        """Only objects have keys to mutate."""
        assert corrupt_structure([1, 2], SeededRandom(1)) == [1, 2]

    def test_boolean_is_flipped(self) -> None:
        """The only leaf of a single-boolean object is negated."""
        assert corrupt_values({"flag": True}, SeededRandom(3)) == {"flag": False}

    def test_null_becomes_empty_object(self) -> None:
        """null and {} are swapped."""
        assert corrupt_values({"cursor": None}, SeededRandom(3)) == {"cursor": {}}

    def test_truncate_cuts_between_half_and_ninety_percent(self) -> None:
        """Truncated text is broken JSON of 50-90% of the original length."""
        full = len(json.dumps(REQUEST, ensure_ascii=False))
        for seed in range(30):
            result = truncate_payload(REQUEST, SeededRandom(seed))
            assert isinstance(result, RawPayload)
            assert full * 0.5 - 1 <= len(result.text) <= full * 0.9

    def test_truncate_raw_payload(self) -> None:
        """Already broken text is truncated further."""
        result = truncate_payload(RawPayload('{"jsonrpc": "2.0", "id"'), SeededRandom(9))
        assert isinstance(result, RawPayload)
        assert len(result.text) < len('{"jsonrpc": "2.0", "id"')


class TestCorrupt:
    """Tests for the strategy selector."""

    def test_deterministic(self) -> None:
        """The same seed corrupts the same way."""
        for seed in range(20):
            first = corrupt(REQUEST, SeededRandom(seed))
            second = corrupt(REQUEST, SeededRandom(seed))
            assert repr(first) == repr(second)

    def test_none_passes_through(self) -> None:
        """There is nothing to corrupt in a missing message."""
        assert corrupt(None, SeededRandom(1)) is None
