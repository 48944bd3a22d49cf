"""Name and slug helpers shared by rosters, imports and standings."""
import re


def to_team_slug(name: str) -> str:
    """Convert a team name to a URL-safe slug."""
    slug = (name or '').lower().strip()
    slug = re.sub(r'[^a-z0-9\s-]', '', slug)
    slug = re.sub(r'[\s-]+', '-', slug)
    return slug.strip('-')


def full_name(person: dict) -> str:
    return f"{person.get('first_name') or ''} {person.get('last_name') or ''}".strip()


def display_name(person: dict) -> str:
    """Nickname (or first name) plus last name."""
    first = person.get('nickname') or person.get('first_name') or ''
    return f"{first} {person.get('last_name') or ''}".strip()


def normalize_import_name(value) -> str:
    """Lowercase alphanumerics only, for matching names across sources.

    >>> normalize_import_name(" O'Connor ")
    'oconnor'
    """
    return re.sub(r'[^a-z0-9]', '', str(value or '').lower())
