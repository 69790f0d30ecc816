# formatting.py
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from invoice_math import MONEY_CONTEXT, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "MMMM d, yyyy"

# (group separator, decimal separator) by language or language-region
_NUMBER_SEPARATORS = {
    "en": (",", "."),
    "ja": (",", "."),
    "zh": (",", "."),
    "de": (".", ","),
    "es": (".", ","),
    "it": (".", ","),
    "pt": (".", ","),
    "nl": (".", ","),
    "fr": (" ", ","),
    "sv": (" ", ","),
    "de-ch": ("’", "."),
}

_MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _separators(locale: str | None) -> tuple[str, str]:
    key = (locale or "en-US").strip().lower().replace("_", "-")
    if key in _NUMBER_SEPARATORS:
        return _NUMBER_SEPARATORS[key]
    return _NUMBER_SEPARATORS.get(key.split("-")[0], _NUMBER_SEPARATORS["en"])


def group_number(amount, decimal_places: int = 2, locale: str | None = "en-US") -> str:
    places = max(0, int(decimal_places))
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    q = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP, context=MONEY_CONTEXT)
    text = f"{abs(q):,.{places}f}"
    group, dec = _separators(locale)
    text = text.replace(",", "\x00").replace(".", dec).replace("\x00", group)
    return f"-{text}" if q < 0 else text


def format_currency(amount, currency) -> str:
    """
    Format money per a currency config (symbol, decimal_places, locale, placement).

    e.g. "$1,234.56" or "1.234,56€"
    """
    formatted = group_number(amount, currency.decimal_places, currency.locale)
    if (currency.placement or "before") == "after":
        return f"{formatted}{currency.symbol}"
    return f"{currency.symbol}{formatted}"


def format_quantity(value) -> str:
    return group_number(to_decimal(value, "quantity"), 2, "en-US").replace(",", "")


# -----------------------------
# Dates
# -----------------------------
_DATE_TOKEN = re.compile(r"'[^']*'|([A-Za-z])\1*|[^A-Za-z']+")


def _coerce_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _apply_date_pattern(d: date, pattern: str) -> str:
    out = []
    for m in _DATE_TOKEN.finditer(pattern):
        token = m.group(0)
        if token.startswith("'"):
            out.append(token[1:-1] if len(token) > 2 else "'")
        elif not token[0].isalpha():
            out.append(token)
        elif token == "yyyy":
            out.append(f"{d.year:04d}")
        elif token == "yy":
            out.append(f"{d.year % 100:02d}")
        elif token == "MMMM":
            out.append(_MONTHS[d.month - 1])
        elif token == "MMM":
            out.append(_MONTHS[d.month - 1][:3])
        elif token == "MM":
            out.append(f"{d.month:02d}")
        elif token == "M":
            out.append(str(d.month))
        elif token == "dd":
            out.append(f"{d.day:02d}")
        elif token == "d":
            out.append(str(d.day))
        elif token == "EEEE":
            out.append(_WEEKDAYS[d.weekday()])
        elif token in ("E", "EE", "EEE"):
            out.append(_WEEKDAYS[d.weekday()][:3])
        else:
            raise ValueError(f"Unsupported date format token: {token!r}")
    return "".join(out)


def format_invoice_date(value, pattern: str | None = DEFAULT_DATE_FORMAT, locale: str = "en-US") -> str:
    """
    Format a date with a date-fns style pattern (e.g. "MMMM d, yyyy").

    An invalid pattern falls back to DEFAULT_DATE_FORMAT with a warning.
    Month/weekday names are English whatever the locale.
    """
    d = _coerce_date(value)
    if d is None:
        if value not in (None, ""):
            logger.warning("Could not parse date value %r", value)
        return ""
    try:
        return _apply_date_pattern(d, pattern or DEFAULT_DATE_FORMAT)
    except ValueError as e:
        logger.warning("Invalid date format %r (%s), using default", pattern, e)
        return _apply_date_pattern(d, DEFAULT_DATE_FORMAT)


# -----------------------------
# Contact details
# -----------------------------
def format_phone(phone: str | None) -> str:
    raw = (phone or "").strip()
    if not raw:
        return ""
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    return re.sub(r"\)\s+", ") ", raw)


_NAME_PARTICLES = {"de", "da", "del", "della", "di", "du", "el", "la", "le", "van", "von", "der", "den"}
_NAME_SUFFIXES = {"jr", "sr", "ii", "iii", "iv", "v", "esq", "phd", "md", "dds"}


def format_name(value: str | None) -> str:
    if not value or not value.strip():
        return value or ""
    words = []
    for i, word in enumerate(value.strip().split()):
        low = word.lower()
        if (low in _NAME_PARTICLES and i > 0) or low in _NAME_SUFFIXES:
            words.append(low)
        else:
            words.append(word[:1].upper() + word[1:].lower())
    return " ".join(words)


_STATE_CODES = {
    "al", "ak", "az", "ar", "ca", "co", "ct", "de", "fl", "ga", "hi", "id", "il", "in", "ia", "ks",
    "ky", "la", "me", "md", "ma", "mi", "mn", "ms", "mo", "mt", "ne", "nv", "nh", "nj", "nm", "ny",
    "nc", "nd", "oh", "ok", "or", "pa", "ri", "sc", "sd", "tn", "tx", "ut", "vt", "va", "wa", "wv",
    "wi", "wy", "dc",
}
_DIRECTIONS = {"n", "s", "e", "w", "north", "south", "east", "west"}
_COMPOUND_DIRECTIONS = {"nw", "ne", "sw", "se", "nnw", "nne", "ene", "ese", "sse", "ssw", "wsw", "wnw"}


def _format_address_word(word: str, index: int, words: list[str]) -> str:
    low = re.sub(r"[.,]", "", word).lower()
    if low in _COMPOUND_DIRECTIONS:
        return word.upper()
    if low in _DIRECTIONS:
        return word.upper() if len(word) == 1 else word[:1].upper() + word[1:].lower()
    if low in _STATE_CODES and len(word) == 2:
        near_end = index >= len(words) - 3
        next_is_zip = index < len(words) - 1 and re.match(r"^\d{5}", words[index + 1]) is not None
        if near_end or next_is_zip:
            return word.upper()
    if re.match(r"^\d+(st|nd|rd|th)$", word, re.IGNORECASE):
        return word.lower()
    if re.match(r"^\d", word):
        return word
    return word[:1].upper() + word[1:].lower()


def format_address(value: str | None) -> str:
    """Normalize capitalization of a (multi-line) street address."""
    if not value:
        return value or ""
    lines = []
    for line in value.split("\n"):
        if not line.strip():
            lines.append(line)
            continue
        words = line.strip().split()
        lines.append(" ".join(_format_address_word(w, i, words) for i, w in enumerate(words)))
    return "\n".join(lines)


def address_lines(address: str | None) -> list[str]:
    if not address:
        return []
    return [ln.strip() for ln in re.split(r"\n|\\n", address) if ln.strip()]
