from __future__ import annotations

from cwsim.morse import apply_cut_numbers, encode_words, normalize_text


def test_normalize_text_collapses_whitespace():
    assert normalize_text("  k1abc \t de  ea3ipx ") == "K1ABC DE EA3IPX"


def test_encode_words_one_pattern_per_character():
    assert encode_words("cq k") == [["-.-.", "--.-"], ["-.-"]]


def test_prosign_is_one_run_and_unknown_characters_drop():
    assert encode_words("<AR> E#") == [[".-.-."], ["."]]
    assert encode_words("### <>") == []


def test_cut_numbers_only_touch_mapped_digits():
    assert apply_cut_numbers("5NN 109", {"0": "T", "9": "N"}) == "5NN 1TN"
    assert apply_cut_numbers("5NN", {}) == "5NN"
