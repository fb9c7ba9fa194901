from __future__ import annotations

import re
from typing import Dict, List

MORSE_CODE: Dict[str, str] = {
    "A": ".-",
    "B": "-...",
    "C": "-.-.",
    "D": "-..",
    "E": ".",
    "F": "..-.",
    "G": "--.",
    "H": "....",
    "I": "..",
    "J": ".---",
    "K": "-.-",
    "L": ".-..",
    "M": "--",
    "N": "-.",
    "O": "---",
    "P": ".--.",
    "Q": "--.-",
    "R": ".-.",
    "S": "...",
    "T": "-",
    "U": "..-",
    "V": "...-",
    "W": ".--",
    "X": "-..-",
    "Y": "-.--",
    "Z": "--..",
    "0": "-----",
    "1": ".----",
    "2": "..---",
    "3": "...--",
    "4": "....-",
    "5": ".....",
    "6": "-....",
    "7": "--...",
    "8": "---..",
    "9": "----.",
    "/": "-..-.",
    "?": "..--..",
    "=": "-...-",
    ".": ".-.-.-",
    ",": "--..--",
    "-": "-....-",
}

# "<AR>" is a prosign; anything else up to whitespace is a plain word.
WORD_RE = re.compile(r"<([A-Z0-9]+)>|(\S+)")


def normalize_text(text: str) -> str:
    return " ".join(text.strip().upper().split())


def encode_words(text: str) -> List[List[str]]:
    """
    Element patterns for ``text``, one list per word and one pattern per keyed character.

    A prosign comes back as a single pattern so it is keyed without letter
    gaps. Characters with no Morse code are dropped, and so are words that end
    up empty.
    """
    words: List[List[str]] = []
    for prosign, plain in WORD_RE.findall(normalize_text(text)):
        if prosign:
            run = "".join(MORSE_CODE.get(ch, "") for ch in prosign)
            chars = [run] if run else []
        else:
            chars = [MORSE_CODE[ch] for ch in plain if ch in MORSE_CODE]
        if chars:
            words.append(chars)
    return words


def apply_cut_numbers(text: str, cut_map: Dict[str, str]) -> str:
    if not cut_map:
        return text
    return "".join(cut_map.get(ch, ch) if ch.isdigit() else ch for ch in text)
