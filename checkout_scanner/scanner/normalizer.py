"""
==============================================================================
Barcode Normalizer Module
==============================================================================

Recovers a canonical digit string from noisy or partially decoded text.

Strategies run in order and the first one that yields a code wins:

1. fast_path         - text is already 6-14 digits
2. standard_length   - exact EAN-13 / UPC-A / EAN-8 / UPC-E run, also after
                       collapsing digit-group separators ("89-0103-087507")
3. relaxed_length    - 11-13 or 7-9 digit run (one damaged boundary digit)
4. digit_run         - any run of 6 or more digits
5. strip_non_digits  - every digit in the text, if at least 6

Exact symbology lengths are preferred over recall; noisier extraction is
only used when no structure is available. Nothing shorter than 6 digits is
ever returned.

==============================================================================
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Tuple


# Module logger
logger = logging.getLogger(__name__)


MIN_DIGITS = 6
MAX_FAST_PATH_DIGITS = 14

Strategy = Callable[[str], Optional[str]]


_FAST_PATH = re.compile(r"^\d{6,14}$")

# Anchored so a run is never cut out of a longer digit sequence
_STANDARD_PATTERNS = (
    re.compile(r"(?<!\d)\d{13}(?!\d)"),     # EAN-13
    re.compile(r"(?<!\d)\d{12}(?!\d)"),     # UPC-A
    re.compile(r"(?<!\d)\d{8}(?!\d)"),      # EAN-8
    re.compile(r"(?<!\d)0\d{7}(?!\d)"),     # UPC-E
)

_RELAXED_PATTERNS = (
    re.compile(r"(?<!\d)\d{11,13}(?!\d)"),
    re.compile(r"(?<!\d)\d{7,9}(?!\d)"),
)

_DIGIT_RUN = re.compile(r"\d{6,}")
_NON_DIGIT = re.compile(r"\D")
_GROUP_SEPARATOR = re.compile(r"(?<=\d)[\s\-./]+(?=\d)")


def _first_match(patterns, text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


# =============================================================================
# STRATEGIES
# =============================================================================

def fast_path(text: str) -> Optional[str]:
    """Return text unchanged when it is already a clean 6-14 digit code."""
    return text if _FAST_PATH.match(text) else None


def standard_length(text: str) -> Optional[str]:
    """
    Find a run with an exact standard symbology length.

    The raw text is searched first. When that fails, separators between
    digit groups (spaces, dashes, dots, slashes) are collapsed and the
    search is repeated, so printed groupings still yield the full code.

    Example:
        >>> standard_length("89-0103-087507")
        '890103087507'
    """
    found = _first_match(_STANDARD_PATTERNS, text)
    if found:
        return found

    collapsed = _GROUP_SEPARATOR.sub("", text)
    if collapsed != text:
        return _first_match(_STANDARD_PATTERNS, collapsed)
    return None


def relaxed_length(text: str) -> Optional[str]:
    """Find a run one digit away from a standard length."""
    return _first_match(_RELAXED_PATTERNS, text)


def digit_run(text: str) -> Optional[str]:
    """Take the first run of at least six consecutive digits."""
    match = _DIGIT_RUN.search(text)
    return match.group(0) if match else None


def strip_non_digits(text: str) -> Optional[str]:
    """Concatenate every digit in the text."""
    digits = _NON_DIGIT.sub("", text)
    return digits if len(digits) >= MIN_DIGITS else None


STRATEGIES: List[Tuple[str, Strategy]] = [
    ("fast_path", fast_path),
    ("standard_length", standard_length),
    ("relaxed_length", relaxed_length),
    ("digit_run", digit_run),
    ("strip_non_digits", strip_non_digits),
]


# =============================================================================
# PUBLIC API
# =============================================================================

def normalize_with_strategy(raw_text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Normalize decoded text and report which strategy produced the code.

    Args:
        raw_text: Text reported by the decoding engine

    Returns:
        Tuple of (code, strategy name), or (None, None) on extraction failure
    """
    if not raw_text:
        return None, None

    text = raw_text.strip()

    for name, strategy in STRATEGIES:
        code = strategy(text)
        if code is not None and len(code) >= MIN_DIGITS:
            if name != "fast_path":
                logger.debug(f"Extracted {code} from {raw_text!r} via {name}")
            return code, name

    logger.debug(f"No usable barcode in {raw_text!r}")
    return None, None


def normalize(raw_text: Optional[str]) -> Optional[str]:
    """
    Convert decoded text into a canonical barcode string.

    Args:
        raw_text: Text reported by the decoding engine

    Returns:
        Digit string of at least 6 characters, or None

    Example:
        >>> normalize("8901030875071")
        '8901030875071'
        >>> normalize("lbl1234567end")
        '1234567'
        >>> normalize("no code") is None
        True
    """
    code, _ = normalize_with_strategy(raw_text)
    return code
