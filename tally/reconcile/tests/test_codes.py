"""
Tests for session code generation and allocation.

Run with: pytest tally/reconcile/tests/test_codes.py -v
"""

import pytest

from tally.reconcile.codes import (
    ALPHABET,
    CODE_LENGTH,
    allocate_code,
    generate_code,
    normalize_session_code,
)
from tally.reconcile.errors import CodeSpaceExhausted, InvalidInput


class TestGenerateCode:
    def test_length_and_alphabet(self):
        for _ in range(50):
            code = generate_code()
            assert len(code) == CODE_LENGTH
            assert set(code) <= set(ALPHABET)

    def test_alphabet_has_no_ambiguous_symbols(self):
        assert not set("IO01") & set(ALPHABET)
        assert len(ALPHABET) == 32


class TestNormalize:
    def test_case_and_whitespace(self):
        assert normalize_session_code("  k7m2qx ") == "K7M2QX"

    @pytest.mark.parametrize("raw", [None, "", "K7M2Q", "K7M2QXX", "K7M2Q0", "K7-2QX"])
    def test_rejected(self, raw):
        with pytest.raises(InvalidInput):
            normalize_session_code(raw)


class TestAllocateCode:
    """Collision retry against the authoritative store."""

    def test_retries_after_collisions(self):
        taken = {"AAAAAA", "BBBBBB", "CCCCCC"}
        candidates = iter(["AAAAAA", "BBBBBB", "CCCCCC", "DDDDDD"])
        tried = []

        def try_claim(code):
            tried.append(code)
            return code not in taken

        code = allocate_code(try_claim, generator=lambda: next(candidates))
        assert code == "DDDDDD"
        assert tried == ["AAAAAA", "BBBBBB", "CCCCCC", "DDDDDD"]

    def test_exhausted(self):
        calls = []

        def try_claim(code):
            calls.append(code)
            return False

        with pytest.raises(CodeSpaceExhausted):
            allocate_code(try_claim, attempts=3, generator=lambda: "AAAAAA")
        assert len(calls) == 3
