"""Tests for room code generation and input normalization."""
import re

import pytest

from constants import ROOM_CODE_ALPHABET
from errors import InvalidRoomCode, MissingRoomCode
from room_codes import generate_room_code, normalize_room_code


class TestGenerateRoomCode:
    def test_alphabet_has_32_unambiguous_symbols(self):
        assert len(ROOM_CODE_ALPHABET) == 32
        assert len(set(ROOM_CODE_ALPHABET)) == 32
        for ambiguous in "0O1I":
            assert ambiguous not in ROOM_CODE_ALPHABET

    def test_codes_match_pattern_and_alphabet(self):
        for _ in range(500):
            code = generate_room_code()
            assert re.fullmatch(r"[A-Z0-9]{6}", code)
            assert set(code) <= set(ROOM_CODE_ALPHABET)

    def test_codes_vary(self):
        codes = {generate_room_code() for _ in range(200)}
        assert len(codes) > 190


class TestNormalizeRoomCode:
    def test_uppercases_input(self):
        assert normalize_room_code("ab3d5f") == "AB3D5F"

    def test_mixed_case_and_whitespace(self):
        assert normalize_room_code("  aB3d5F ") == "AB3D5F"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_missing(self, raw):
        with pytest.raises(MissingRoomCode):
            normalize_room_code(raw)

    @pytest.mark.parametrize("raw", ["abc", "ABCDEFG", "AB-CD1", "ÄBCDEF", "AB CD1"])
    def test_malformed(self, raw):
        with pytest.raises(InvalidRoomCode):
            normalize_room_code(raw)

    def test_missing_and_invalid_share_status(self):
        assert MissingRoomCode.status_code == InvalidRoomCode.status_code == 400
