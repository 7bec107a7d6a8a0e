"""Tests for role canonicalization and keyword hits."""

import pytest

from casesim.core.role_mapping import canonicalize_role, count_keyword_hits


@pytest.mark.parametrize(
    "stage_role,expected",
    [
        ("Client", "owner"),
        ("Horse owner", "owner"),
        ("Producer", "owner"),
        ("Vet Nurse", "veterinary-nurse"),
        ("Lab technician", "veterinary-nurse"),
        ("", "veterinary-nurse"),
        (None, "veterinary-nurse"),
        ("Radiologist", "veterinary-nurse"),
    ],
)
def test_canonicalize_role(stage_role, expected):
    assert canonicalize_role(stage_role) == expected


def test_display_role_used_when_stage_role_missing():
    assert canonicalize_role(None, "Client (Owner)") == "owner"


def test_keyword_hits_whole_words_case_insensitive():
    text = "Her Temperature is 38.4 and the heart  rate is 64."

    assert count_keyword_hits(text, ["temperature", "heart rate", "pulse"]) == 2
    assert count_keyword_hits("temperatures rising", ["temperature"]) == 0
    assert count_keyword_hits("", ["temperature"]) == 0
