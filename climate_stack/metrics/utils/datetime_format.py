"""
Joda-style datetime patterns.

Zonal statistics tables label each timestep with a datetime string written
from a Joda-style pattern such as ``YYYY-MM-dd HH:mm:ss`` or ``YYYYMM``. The
pattern is translated to ``strftime`` directives so the same pattern can both
format and parse.
"""

from datetime import datetime
from functools import lru_cache

import pandas as pd

# Longest tokens first so that e.g. 'MMMM' wins over 'MM'
_TOKENS = (
    ('YYYY', '%Y'), ('yyyy', '%Y'),
    ('MMMM', '%B'), ('MMM', '%b'), ('EEEE', '%A'), ('EEE', '%a'),
    ('DDD', '%j'),
    ('YY', '%y'), ('yy', '%y'),
    ('MM', '%m'), ('dd', '%d'),
    ('HH', '%H'), ('hh', '%I'), ('mm', '%M'), ('ss', '%S'),
    ('a', '%p'),
)


@lru_cache(maxsize=64)
def joda_to_strftime(pattern: str) -> str:
    """Translate a Joda-style pattern into a ``strftime`` format string.

    Text in single quotes is copied literally (``''`` is a quote).

    Raises:
        ValueError: on an unsupported pattern letter.
    """
    out = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "'":
            end = pattern.find("'", i + 1)
            if end == -1:
                raise ValueError(f"Unterminated quote in datetime pattern: {pattern!r}")
            literal = pattern[i + 1:end] or "'"
            out.append(literal.replace('%', '%%'))
            i = end + 1
            continue
        for token, directive in _TOKENS:
            if pattern.startswith(token, i):
                out.append(directive)
                i += len(token)
                break
        else:
            if char.isalpha():
                raise ValueError(f"Unsupported pattern letter '{char}' in {pattern!r}")
            out.append('%%' if char == '%' else char)
            i += 1
    return ''.join(out)


def format_datetime(value, pattern: str) -> str:
    """Format a timestamp with a Joda-style pattern."""
    return pd.Timestamp(value).strftime(joda_to_strftime(pattern))


def parse_datetime(text: str, pattern: str) -> pd.Timestamp:
    """Parse a string written by :func:`format_datetime` with the same pattern."""
    return pd.Timestamp(datetime.strptime(text, joda_to_strftime(pattern)))
