"""Canonicalization of free-form Portuguese values found in procurement notices.

Every function fails soft: input that matches no supported pattern yields
``None`` instead of raising, since upstream extraction quality is unreliable.
"""

from __future__ import annotations

import math
import re
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict

from licitagraph.normalization.tables import MONTHS, NUMBER_WORDS, NUMBER_WORDS_RE, fold_text

DEFAULT_DAYS_PER_MONTH = 30

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_NUMERIC_DATE_RE = re.compile(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})\b")
_SPELLED_DATE_RE = re.compile(r"\b(\d{1,2})\s*(?:º|O|°)?\s+DE\s+([A-Z]+)\s+DE\s+(\d{4})\b")

_COLON_TIME_RE = re.compile(r"(?<!\d)(\d{1,2}):(\d{2})\s*H?")
_H_TIME_RE = re.compile(r"(?<!\d)(\d{1,2})\s?H(\d{2})?\b")
_HOURS_TIME_RE = re.compile(r"(?<!\d)(\d{1,2})\s*HORAS?\b")

_CURRENCY_RE = re.compile(r"(R\$|US\$|\$|REAIS|REAL|BRL)", re.IGNORECASE)
_AMOUNT_TOKEN_RE = re.compile(r"-?\d[\d.,]*")
_BR_DECIMAL_RE = re.compile(r",\d{2}$")
_US_DECIMAL_RE = re.compile(r"\.\d{2}$")
_DOT_THOUSANDS_RE = re.compile(r"^-?\d{1,3}(\.\d{3}){2,}$")
_LEADING_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?")
_BUSINESS_DAYS_RE = re.compile(r"\b(UTEIS|UTIL)\b")

_PERCENT_RE = re.compile(r"(\d+(?:[,.]\d+)?)\s*%")
_PERIOD_RE = re.compile(r"(\d+)\s*(MESES|MES|ANOS|ANO|DIAS|DIA)\b")
_DAYS_RE = re.compile(r"(\d+)\s*DIAS?\b")
_DIGITS_RE = re.compile(r"(\d+)")


class DaysPeriod(BaseModel):
    """A day count with its counting convention."""

    model_config = ConfigDict(frozen=True)

    days: int
    is_business_days: bool = False

    def canonical(self) -> str:
        """Compact form used as a normalized value (``5DU`` / ``10DC``)."""
        return f"{self.days}{'DU' if self.is_business_days else 'DC'}"


def _safe_date(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_date(text: str | None) -> Optional[str]:
    """Normalize a date fragment to ``YYYY-MM-DD``.

    Supports ``DD/MM/YYYY`` (also ``-`` and ``.`` separators),
    ``DD DE <MES> DE YYYY`` and already-ISO ``YYYY-MM-DD``. Impossible calendar
    dates are treated as a miss.
    """
    if not text:
        return None

    cleaned = fold_text(text)

    iso = _ISO_DATE_RE.search(cleaned)
    if iso:
        return _safe_date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

    numeric = _NUMERIC_DATE_RE.search(cleaned)
    if numeric:
        day, month, year = (int(g) for g in numeric.groups())
        return _safe_date(year, month, day)

    spelled = _SPELLED_DATE_RE.search(cleaned)
    if spelled:
        month = MONTHS.get(spelled.group(2))
        if month:
            return _safe_date(int(spelled.group(3)), month, int(spelled.group(1)))

    return None


def normalize_time(text: str | None) -> Optional[str]:
    """Normalize a time fragment (``HH:MM``, ``HH:MMh``, ``HHhMM``, ``HH HORAS``) to ``HH:MM``."""
    if not text:
        return None

    cleaned = fold_text(text)

    for pattern in (_COLON_TIME_RE, _H_TIME_RE):
        match = pattern.search(cleaned)
        if match:
            hours = int(match.group(1))
            minutes = int(match.group(2) or 0)
            if hours < 24 and minutes < 60:
                return f"{hours:02d}:{minutes:02d}"

    match = _HOURS_TIME_RE.search(cleaned)
    if match:
        hours = int(match.group(1))
        if hours < 24:
            return f"{hours:02d}:00"

    return None


def normalize_monetary(text: str | None) -> Optional[float]:
    """Normalize a money amount to a float.

    Brazilian grouping (``1.234,56``) is recognised by a comma followed by exactly
    two trailing digits; US grouping (``1,234.56``) by a dot followed by two
    digits when commas are present.
    """
    if not text:
        return None

    stripped = re.sub(r"\s+", "", _CURRENCY_RE.sub("", text))
    token = _AMOUNT_TOKEN_RE.search(stripped)
    if not token:
        return None
    cleaned = token.group(0).rstrip(".,")

    if _BR_DECIMAL_RE.search(cleaned):
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif _US_DECIMAL_RE.search(cleaned) and "," in cleaned:
        cleaned = cleaned.replace(",", "")
    elif _DOT_THOUSANDS_RE.match(cleaned):
        cleaned = cleaned.replace(".", "")

    match = _LEADING_NUMBER_RE.match(cleaned)
    if not match:
        return None
    return float(match.group(0))


def normalize_percentage(text: str | None) -> Optional[float]:
    """Normalize ``5%``, ``0,5 %`` or ``cinco por cento`` to a fraction (5% -> 0.05)."""
    if not text:
        return None

    cleaned = fold_text(text)

    match = _PERCENT_RE.search(cleaned)
    if match:
        value = float(match.group(1).replace(",", "."))
        return round(value / 100, 10)

    if "POR CENTO" in cleaned:
        number = _spelled_number(cleaned)
        if number is not None:
            return round(number / 100, 10)

    return None


def normalize_warranty_period(
    text: str | None, *, days_per_month: int = DEFAULT_DAYS_PER_MONTH
) -> Optional[int]:
    """Normalize a period (``36 meses``, ``TRÊS ANOS``, ``90 dias``) to a month count.

    Spelled-out numbers are checked before digits. Days are approximated with
    ``days_per_month`` and rounded half up.
    """
    if not text:
        return None

    cleaned = fold_text(text)

    number = _spelled_number(cleaned)
    if number is not None:
        months = _to_months(number, cleaned, days_per_month)
        if months is not None:
            return months

    match = _PERIOD_RE.search(cleaned)
    if match:
        return _to_months(int(match.group(1)), match.group(2), days_per_month)

    return None


def normalize_days_period(text: str | None) -> Optional[DaysPeriod]:
    """Normalize ``5 dias úteis`` / ``DEZ DIAS CORRIDOS`` to a :class:`DaysPeriod`."""
    if not text:
        return None

    cleaned = fold_text(text)
    is_business = bool(_BUSINESS_DAYS_RE.search(cleaned))

    if "DIA" in cleaned:
        number = _spelled_number(cleaned)
        if number is not None:
            return DaysPeriod(days=number, is_business_days=is_business)

    match = _DAYS_RE.search(cleaned)
    if match:
        return DaysPeriod(days=int(match.group(1)), is_business_days=is_business)

    return None


def normalize_text(text: str | None) -> str:
    """Strip accents, upper-case and trim."""
    if not text:
        return ""
    return fold_text(text)


def extract_number(text: str | None) -> Optional[int]:
    """Pull the first quantity out of a fragment (spelled-out first, then digits)."""
    if not text:
        return None

    cleaned = fold_text(text)
    number = _spelled_number(cleaned)
    if number is not None:
        return number

    match = _DIGITS_RE.search(cleaned)
    return int(match.group(1)) if match else None


def parse_number(value: str | None) -> Optional[float]:
    """Parse a whole string as a finite float, or return None."""
    if value is None:
        return None
    try:
        number = float(value.strip())
    except (AttributeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _spelled_number(cleaned: str) -> Optional[int]:
    match = NUMBER_WORDS_RE.search(cleaned)
    if not match:
        return None
    return NUMBER_WORDS[match.group(0)]


def _to_months(value: int, unit_text: str, days_per_month: int) -> Optional[int]:
    if "ANO" in unit_text:
        return value * 12
    if "MES" in unit_text:
        return value
    if "DIA" in unit_text:
        return math.floor(value / days_per_month + 0.5)
    return None
