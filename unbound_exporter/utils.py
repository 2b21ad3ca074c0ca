"""Utility functions and constants for Unbound statistics parsing."""

import logging
import re
import sys
from decimal import Decimal
from typing import Optional

# First numeric token of a statistics value ("12", "0.000123", "1.5 seconds")
NUMBER_PATTERN = re.compile(r'[0-9]+(?:\.[0-9]+)?')

MICROSECONDS_PER_SECOND = Decimal(1000000)

LOG_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def extract_value(text: Optional[str]) -> Decimal:
    """Return the first numeric token found in text, or zero when there is none."""
    if not text:
        return Decimal(0)
    match = NUMBER_PATTERN.search(text)
    if not match:
        return Decimal(0)
    return Decimal(match.group(0))


def microseconds_to_seconds(value: str) -> Decimal:
    """Convert a microsecond bucket boundary to seconds."""
    return Decimal(value) / MICROSECONDS_PER_SECOND


def format_bound_for_label(value: Decimal) -> str:
    """Format a bucket boundary in seconds for the 'le' label.
    
    Always uses fixed six decimal notation, e.g. 0.1 -> "0.100000".
    """
    return f'{value:.6f}'


def format_sample_value(value: Decimal) -> str:
    """Render a sample value for the exposition format.
    
    Integral values drop the decimal point; fractional values keep the
    digits they were read with.
    """
    if value == value.to_integral_value():
        return str(int(value))
    return str(value)


def escape_label_value(value: str) -> str:
    """Escape a label value as required inside double quotes."""
    return value.replace('\\', '\\\\').replace('\n', '\\n').replace('"', '\\"')


def setup_logging(level: str = 'info') -> None:
    """Send diagnostics to stderr at the given level."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
    )
