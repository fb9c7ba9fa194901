from __future__ import annotations

from cwsim.matcher import MatchResult, compare, normalize_call, partial_threshold


def test_identical_call_is_perfect():
    for call in ("K1ABC", "EA3IPX", "VE3/W1AW", "N0X"):
        assert compare(call, call) == MatchResult.PERFECT


def test_compare_ignores_case_and_surrounding_whitespace():
    assert compare("k1abc", " K1ABC ") == MatchResult.PERFECT


def test_question_mark_is_stripped_before_comparison():
    assert compare("K1ABC", "K1ABC?") == MatchResult.PERFECT
    assert normalize_call(" k1a? bc ") == "K1ABC"


def test_prefix_and_suffix_are_partial():
    assert compare("K1ABC", "K1AB") == MatchResult.PARTIAL
    assert compare("K1ABC", "K") == MatchResult.PARTIAL
    assert compare("K1ABC", "ABC") == MatchResult.PARTIAL


def test_long_shared_run_is_partial():
    # "1AB" is neither prefix nor suffix but covers three of five characters
    assert partial_threshold("K1ABC") == 3
    assert compare("K1ABC", "W1ABX") == MatchResult.PARTIAL
    assert compare("K1ABC", "K1ABCD") == MatchResult.PARTIAL


def test_unrelated_call_is_none():
    assert compare("K1ABC", "W2XYZ") == MatchResult.NONE
    assert compare("K1ABC", "X1AY") == MatchResult.NONE


def test_empty_sides_are_none():
    assert compare("K1ABC", "") == MatchResult.NONE
    assert compare("K1ABC", "?") == MatchResult.NONE
    assert compare("", "K1ABC") == MatchResult.NONE
    assert compare("", "") == MatchResult.NONE


def test_compare_is_total_over_odd_inputs():
    samples = ["", " ", "?", "K", "K1ABC", "k1abc?", "W2XYZ", "123", "/", "AGN?"]
    for a in samples:
        for b in samples:
            assert compare(a, b) in (MatchResult.PERFECT, MatchResult.PARTIAL, MatchResult.NONE)
            assert compare(a, b) == compare(a, b)
