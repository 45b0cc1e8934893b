"""
Value helpers shared by the request builders and response parsers.

Provides:
- XML sanitization for Tally output
- Tally date formats (YYYYMMDD wire dates, DD-Mon-YY display dates)
- Numeric and boolean parsing
"""
from __future__ import annotations
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from lxml import etree
from loguru import logger

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

IST = timezone(timedelta(hours=5, minutes=30), name="IST")

# XML 1.0 only allows #x9 | #xA | #xD | [#x20-#xD7FF] | [#xE000-#xFFFD]
_INVALID_XML_CHARS = re.compile(r"[^\t\n\r\x20-\uD7FF\uE000-\uFFFD\U00010000-\U0010FFFF]")


def strip_invalid_chars(value: object) -> str:
    """Text safe to place in an XML document. None becomes an empty string."""
    if value is None:
        return ""
    return _INVALID_XML_CHARS.sub("", str(value))


def sanitize_xml(xml_text: str) -> str:
    """
    Remove invalid XML characters and fix common issues.

    Tally emits control characters and character references such as &#4;
    that lxml refuses to parse.
    """
    if not xml_text:
        return xml_text

    xml_text = xml_text.replace("\x00", "")

    # Character references for control chars (except tab, newline, CR)
    xml_text = re.sub(r"&#([0-8]|1[0-2]|1[4-9]|2[0-9]|3[01]);", "", xml_text)
    xml_text = re.sub(r"&#x([0-8bBcCeEfF]|1[0-9a-fA-F]);", "", xml_text)

    xml_text = strip_invalid_chars(xml_text)

    # Bare ampersands that are not entities
    xml_text = re.sub(r"&(?!(amp|lt|gt|apos|quot|#\d+|#x[\da-fA-F]+);)", "&amp;", xml_text)

    return xml_text


def to_tally_date(d: date) -> str:
    """20250416"""
    return d.strftime("%Y%m%d")


def to_display_date(yyyymmdd: str) -> str:
    """Convert 20251016 to 16-Oct-25. Anything else is returned unchanged."""
    s = (yyyymmdd or "").strip()
    if len(s) != 8 or not s.isdigit():
        return s
    month = int(s[4:6])
    if not 1 <= month <= 12:
        return s
    return f"{s[6:8]}-{MONTHS[month - 1]}-{s[2:4]}"


def to_query_date(d: date) -> str:
    """Date literal for TDL report variables, e.g. 16-Oct-25."""
    return f"{d.day:02d}-{MONTHS[d.month - 1]}-{d.strftime('%y')}"


def display_to_tally_date(value: str) -> str:
    """
    Convert a display date (16-Oct-25 or 16-Oct-2025) back to YYYYMMDD.

    Values already in YYYYMMDD pass through; unparseable values are
    returned as given.
    """
    s = (value or "").strip()
    if re.fullmatch(r"\d{8}", s):
        return s
    parts = s.split("-")
    if len(parts) == 3:
        day, mon, year = parts
        lowered = [m.lower() for m in MONTHS]
        if mon.lower() in lowered and day.isdigit() and year.isdigit():
            month = lowered.index(mon.lower()) + 1
            if len(year) == 2:
                year = f"20{year}"
            return f"{year}{month:02d}{int(day):02d}"
    parsed = parse_tally_date(s)
    return to_tally_date(parsed) if parsed else s


def parse_tally_date(s: str | None) -> Optional[date]:
    """
    Parse a Tally date string.

    Tally uses multiple date formats:
    - YYYYMMDD (most common)
    - YYYY-MM-DD
    - DD-MMM-YYYY / DD-MMM-YY (e.g., "01-Apr-2024", "01-Apr-24")

    Returns None for empty or unparseable strings.
    """
    if not s:
        return None

    s = str(s).strip()
    if not s or s.lower() in ("null", "none"):
        return None

    for fmt in ("%Y%m%d", "%Y-%m-%d", "%d-%b-%Y", "%d-%b-%y", "%d/%m/%Y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    logger.warning(f"Could not parse date: {s}")
    return None


def parse_float(s: str | None, default: float = 0.0) -> float:
    """
    Parse Tally numeric string to float.

    Handles comma separators, parentheses for negatives, currency symbols
    and Dr/Cr suffixes.
    """
    if not s:
        return default

    s = str(s).strip()
    if not s or s.lower() in ("null", "none"):
        return default

    is_negative = s.startswith("(") and s.endswith(")")
    if is_negative:
        s = s[1:-1]

    s = re.sub(r"[,₹$€£¥\s]", "", s)

    if s.endswith("Dr"):
        s = s[:-2]
    elif s.endswith("Cr"):
        s = s[:-2]
        is_negative = not is_negative

    try:
        val = float(s)
        return -val if is_negative else val
    except ValueError:
        logger.warning(f"Could not parse float: {s}")
        return default


def parse_int(s: str | None) -> Optional[int]:
    """
    Parse an integer id such as MasterID.

    Tally sometimes formats ids with spaces or commas ("1 234"). Returns
    None when the value is not numeric.
    """
    if s is None:
        return None
    cleaned = str(s).strip().replace(" ", "").replace(",", "")
    if not cleaned.isdigit():
        return None
    return int(cleaned)


def parse_bool(s: str | None, default: bool = False) -> bool:
    """Parse Tally Yes/No (also True/False, 1/0)."""
    if s is None:
        return default

    s = str(s).strip().lower()
    if s in ("yes", "true", "1", "y"):
        return True
    elif s in ("no", "false", "0", "n", ""):
        return False

    return default


def text(element: etree._Element | None, tag: str, default: str = "") -> str:
    """Stripped text of a child element, or default."""
    if element is None:
        return default

    child = element.find(tag)
    if child is None or child.text is None:
        return default

    return child.text.strip() or default
