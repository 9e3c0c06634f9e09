"""
Invoice number formatting and prefix validation.

Issued numbers always look like ``{prefix}{year}-{sequence}``, e.g.
``FA2026-00006``. The sequence is zero-padded to a minimum width and widens
past it (``FA2026-100000``) rather than being truncated.
"""
import re

from invoicing.services.exceptions import InvalidPrefixError

DEFAULT_WIDTH = 5

# patterns are unanchored; always use fullmatch
INVOICE_NUMBER_RE = re.compile(r"[A-Za-z]+\d{4}-\d{5,}")
_PREFIX_RE = re.compile(r"[A-Za-z]{1,10}")


def validate_prefix(prefix: str | None) -> str:
    if prefix is None or not _PREFIX_RE.fullmatch(prefix):
        raise InvalidPrefixError(
            f"Invoice prefix must be 1-10 ASCII letters, got {prefix!r}"
        )
    return prefix


def format_invoice_number(
    prefix: str,
    year: int,
    sequence: int,
    width: int = DEFAULT_WIDTH,
) -> str:
    validate_prefix(prefix)
    if not 1000 <= year <= 9999:
        raise ValueError(f"Year must have four digits, got {year}")
    if sequence < 1:
        raise ValueError(f"Sequence values start at 1, got {sequence}")
    return f"{prefix}{year}-{sequence:0{width}d}"
