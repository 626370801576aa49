"""Tests for code synthesis and normalisation."""
import re

from app.core.config import settings
from app.referral.codes import new_code, normalize_code


def test_new_code_matches_length_and_alphabet():
    pattern = re.compile(rf"^[{settings.referral_code_alphabet}]{{{settings.referral_code_length}}}$")
    for _ in range(200):
        assert pattern.match(new_code())


def test_default_alphabet_has_no_confusable_characters():
    for ch in "0O1IL":
        assert ch not in settings.referral_code_alphabet


def test_new_code_custom_length_and_alphabet():
    code = new_code(length=4, alphabet="AB")
    assert len(code) == 4
    assert set(code) <= {"A", "B"}


def test_normalize_code():
    assert normalize_code("  abcd2345 ") == "ABCD2345"
    assert normalize_code(None) == ""
    assert normalize_code("   ") == ""
