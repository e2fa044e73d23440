"""Lookup tables for Portuguese natural-language values.

All keys are upper-case and accent-free; callers fold their input with
``fold_text`` before looking anything up.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Dict, List

MONTHS: Dict[str, int] = {
    "JANEIRO": 1,
    "FEVEREIRO": 2,
    "MARCO": 3,
    "ABRIL": 4,
    "MAIO": 5,
    "JUNHO": 6,
    "JULHO": 7,
    "AGOSTO": 8,
    "SETEMBRO": 9,
    "OUTUBRO": 10,
    "NOVEMBRO": 11,
    "DEZEMBRO": 12,
    # Abbreviations seen in scanned notices
    "JAN": 1,
    "FEV": 2,
    "MAR": 3,
    "ABR": 4,
    "MAI": 5,
    "JUN": 6,
    "JUL": 7,
    "AGO": 8,
    "SET": 9,
    "OUT": 10,
    "NOV": 11,
    "DEZ": 12,
}

_UNITS: Dict[int, List[str]] = {
    1: ["UM", "UMA"],
    2: ["DOIS", "DUAS"],
    3: ["TRES"],
    4: ["QUATRO"],
    5: ["CINCO"],
    6: ["SEIS"],
    7: ["SETE"],
    8: ["OITO"],
    9: ["NOVE"],
}

_TEENS: Dict[int, List[str]] = {
    10: ["DEZ"],
    11: ["ONZE"],
    12: ["DOZE"],
    13: ["TREZE"],
    14: ["QUATORZE", "CATORZE"],
    15: ["QUINZE"],
    16: ["DEZESSEIS", "DEZASSEIS"],
    17: ["DEZESSETE", "DEZASSETE"],
    18: ["DEZOITO"],
    19: ["DEZENOVE", "DEZANOVE"],
}

_TENS: Dict[int, List[str]] = {
    20: ["VINTE"],
    30: ["TRINTA"],
    40: ["QUARENTA"],
    50: ["CINQUENTA"],
    60: ["SESSENTA"],
    70: ["SETENTA"],
    80: ["OITENTA"],
    90: ["NOVENTA"],
}

_HUNDREDS: Dict[int, List[str]] = {
    100: ["CENTO"],
    200: ["DUZENTOS", "DUZENTAS"],
    300: ["TREZENTOS", "TREZENTAS"],
}

MAX_NUMBER_WORD = 365


def fold_text(text: str) -> str:
    """Strip accents, upper-case and collapse whitespace."""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.upper().split())


def _below_hundred(value: int) -> List[str]:
    if value in _UNITS:
        return _UNITS[value]
    if value in _TEENS:
        return _TEENS[value]
    tens, units = divmod(value, 10)
    tens_words = _TENS[tens * 10]
    if units == 0:
        return tens_words
    return [f"{t} E {u}" for t in tens_words for u in _UNITS[units]]


def _spell(value: int) -> List[str]:
    if value < 100:
        return _below_hundred(value)
    if value == 100:
        return ["CEM"]
    hundreds, rest = divmod(value, 100)
    hundred_words = _HUNDREDS[hundreds * 100]
    if rest == 0:
        # "CENTO" alone is not a number
        return [w for w in hundred_words if w != "CENTO"]
    return [f"{h} E {r}" for h in hundred_words for r in _below_hundred(rest)]


def _build_number_words() -> Dict[str, int]:
    table: Dict[str, int] = {}
    for value in range(1, MAX_NUMBER_WORD + 1):
        for phrase in _spell(value):
            table.setdefault(phrase, value)
    return table


NUMBER_WORDS: Dict[str, int] = _build_number_words()

# Longest phrases first so "TRINTA E SEIS" wins over "TRINTA" and "SEIS".
NUMBER_WORDS_RE = re.compile(
    r"\b(?:"
    + "|".join(re.escape(p) for p in sorted(NUMBER_WORDS, key=len, reverse=True))
    + r")\b"
)
