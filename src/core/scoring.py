"""Bowling event, handicap and division rules."""
import math

EVENT_TEAM = 'team'
EVENT_DOUBLES = 'doubles'
EVENT_SINGLES = 'singles'
EVENT_TYPES = (EVENT_TEAM, EVENT_DOUBLES, EVENT_SINGLES)
EVENT_LABELS = {EVENT_TEAM: 'Team', EVENT_DOUBLES: 'Doubles', EVENT_SINGLES: 'Singles'}

GAMES_PER_EVENT = 3

HANDICAP_BASE_SCORE = 225
HANDICAP_MULTIPLIER = 0.9

DIVISION_LABELS = {
    'A': 'Division A',
    'B': 'Division B',
    'C': 'Division C',
    'D': 'Division D',
    'E': 'Division E',
}
DIVISION_ORDER = list(DIVISION_LABELS)
DIVISION_THRESHOLDS = [('A', 208), ('B', 190), ('C', 170), ('D', 150), ('E', 0)]


def calculate_handicap(book_average):
    """USBC handicap: floor((225 - average) * 0.9), never negative."""
    if book_average is None:
        return None
    return max(0, math.floor((HANDICAP_BASE_SCORE - book_average) * HANDICAP_MULTIPLIER))


def division_from_average(average):
    """Division letter for an entering average, or None when unknown."""
    if average is None or average == '':
        return None
    try:
        parsed = float(average)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    for division, minimum in DIVISION_THRESHOLDS:
        if parsed >= minimum:
            return division
    return None


def non_null(values) -> list:
    return [v for v in values if v is not None]


def sum_nullable(values):
    """Sum of the non-null values, or None when all are null."""
    present = non_null(values)
    return sum(present) if present else None


def to_int(value):
    """Parse an integer from CSV/XML text; None for blanks and junk."""
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None
