"""
Copy codes -- human-readable identifiers for physical copies.

Responsibility:
    Pure functions that turn an item's course and title plus a serial
    number into a label that can be written on the copy itself, e.g.
    ``1ESO-MAT-004`` or ``GEN-ATL-001``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Format:
    <course segment>-<title segment>-<serial>

    course segment  accents stripped, non-alphanumerics dropped, uppercased,
                    cut to ``segment_width`` characters; "GEN" when empty.
    title segment   same sanitizing with fallback "LIB", padded with "X"
                    and cut to exactly 3 characters whatever
                    ``segment_width`` is.
    serial          zero-padded to ``serial_width`` digits (wider serials
                    are written in full).
"""

import re
import unicodedata

DEFAULT_COURSE_SEGMENT = "GEN"
DEFAULT_TITLE_SEGMENT = "LIB"
DEFAULT_SEGMENT_WIDTH = 6
DEFAULT_SERIAL_WIDTH = 3
TITLE_SEGMENT_WIDTH = 3

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def sanitize_segment(
    value: str | None,
    fallback: str = DEFAULT_COURSE_SEGMENT,
    width: int = DEFAULT_SEGMENT_WIDTH,
) -> str:
    """
    Reduce free text to an uppercase ASCII alphanumeric segment.

    >>> sanitize_segment("1º ESO")
    '1ESO'
    >>> sanitize_segment("Ciencias Sociales")
    'CIENCI'
    >>> sanitize_segment("¿?")
    'GEN'
    """
    if not value or not isinstance(value, str):
        return fallback
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _NON_ALNUM.sub("", stripped).upper()[:width]
    return cleaned or fallback


def course_segment(course: str | None, width: int = DEFAULT_SEGMENT_WIDTH) -> str:
    return sanitize_segment(course or DEFAULT_COURSE_SEGMENT, DEFAULT_COURSE_SEGMENT, width)


def title_segment(title: str | None) -> str:
    # Independent of the course segment width.
    segment = sanitize_segment(
        title or DEFAULT_TITLE_SEGMENT, DEFAULT_TITLE_SEGMENT, DEFAULT_SEGMENT_WIDTH
    )
    return (segment + "XXX")[:TITLE_SEGMENT_WIDTH]


def build_copy_code(
    course: str | None,
    title: str | None,
    serial: int,
    segment_width: int = DEFAULT_SEGMENT_WIDTH,
    serial_width: int = DEFAULT_SERIAL_WIDTH,
) -> str:
    """
    Format the code for one copy.

    >>> build_copy_code(None, "Atlas", 1)
    'GEN-ATL-001'
    >>> build_copy_code("2º Bachillerato", "Física", 12)
    '2BACHI-FIS-012'
    """
    if serial < 1:
        raise ValueError(f"serial must be >= 1, got {serial}")
    return "-".join(
        (
            course_segment(course, segment_width),
            title_segment(title),
            str(serial).zfill(serial_width),
        )
    )
