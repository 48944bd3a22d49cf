"""
Registration import from the IGBO tournament software XML export.

The export lists one ``PEOPLE`` element per bowler. Teams, doubles pairs and
per-event score rows (entering average and handicap) are derived from it and
written in a single transaction.
"""
import math
import re
import xml.etree.ElementTree as ET

from core.admins import link_admins_to_people
from core.db import new_id, transaction, utcnow
from core.errors import ImportValidationError
from core.names import to_team_slug
from core.scoring import EVENT_TYPES, calculate_handicap, division_from_average

# Bidirectional marks, embeddings, isolates and the BOM, which the export
# carries around phone numbers and nicknames.
_INVISIBLE_FORMATTING = re.compile('[\u200e\u200f\u202a-\u202e\u2066-\u2069\ufeff]')

_RECORD_PATHS = {
    'IGBOTS': ('PEOPLES/PEOPLE', 'PEOPLE'),
    'PEOPLES': ('PEOPLE',),
}


def sanitize_text(value) -> str:
    return _INVISIBLE_FORMATTING.sub('', value or '')


def _text(person, *tags) -> str:
    """Stripped text of the first non-empty child among ``tags``."""
    for tag in tags:
        value = (person.findtext(tag) or '').strip()
        if value:
            return value
    return ''


def _number(value):
    if value in (None, ''):
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    if not math.isfinite(parsed):
        return None
    return int(parsed) if parsed.is_integer() else parsed


def parse_people(xml_text: str) -> list:
    """Return the ``PEOPLE`` elements of an export.

    Raises ImportValidationError for malformed XML.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ImportValidationError(f'Invalid XML: {e}')
    for path in _RECORD_PATHS.get(root.tag, ()):
        people = root.findall(path)
        if people:
            return people
    return []


def build_import_rows(people) -> dict:
    pids = {_text(p, 'ID') for p in people} - {''}
    teams = {}
    doubles = {}
    people_rows = []
    scores = []

    for person in people:
        pid = _text(person, 'ID')
        if not pid:
            continue

        book_average = _number(_text(person, 'BOOK_AVERAGE'))

        team_id = _text(person, 'TEAM_ID', 'TEAM_NUMBER')
        team_name = _text(person, 'TEAM_NAME')
        if team_id and team_name:
            teams[team_id] = {'tnmt_id': team_id, 'team_name': team_name,
                              'slug': to_team_slug(team_name)}

        doubles_id = _text(person, 'DOUBLES_EXTERNAL_ID')
        if doubles_id:
            doubles[doubles_id] = {
                'did': doubles_id,
                'pid': pid,
                'partner_pid': doubles_id if doubles_id != pid and doubles_id in pids else None,
                'partner_first_name': _text(person, 'DOUBLES_FIRST_NAME') or None,
                'partner_last_name': _text(person, 'DOUBLES_LAST_NAME') or None,
            }

        people_rows.append({
            'pid': pid,
            'first_name': _text(person, 'FIRST_NAME'),
            'last_name': _text(person, 'LAST_NAME'),
            'nickname': sanitize_text(_text(person, 'NICKNAME')),
            'email': _text(person, 'EMAIL'),
            'phone': sanitize_text(_text(person, 'PHONE_1', 'PHONE')),
            'birth_month': _number(_text(person, 'BIRTH_MONTH')),
            'birth_day': _number(_text(person, 'BIRTH_DAY')),
            'city': _text(person, 'CITY'),
            'region': _text(person, 'STATE', 'PROVINCE'),
            'country': _text(person, 'COUNTRY'),
            'tnmt_id': team_id or None,
            'did': doubles_id or None,
            'team_captain': 1 if _text(person, 'TEAM_CAPTAIN').upper() == 'YES' else 0,
            'team_order': _number(_text(person, 'TEAM_ORDER')),
            'division': division_from_average(book_average),
        })

        if book_average is not None:
            handicap = calculate_handicap(book_average)
            for event_type in EVENT_TYPES:
                scores.append({'pid': pid, 'event_type': event_type,
                               'entering_avg': book_average, 'handicap': handicap})

    return {
        'teams': list(teams.values()),
        'doubles': list(doubles.values()),
        'people': people_rows,
        'scores': scores,
    }


def summarize(rows: dict) -> dict:
    return {
        'people': len(rows['people']),
        'teams': len(rows['teams']),
        'doubles': len(rows['doubles']),
        'scores': len(rows['scores']),
    }


def write_import_rows(conn, rows: dict):
    now = utcnow()
    conn.executemany(
        """
        INSERT INTO teams (tnmt_id, team_name, slug) VALUES (?, ?, ?)
        ON CONFLICT(tnmt_id) DO UPDATE SET team_name = excluded.team_name, slug = excluded.slug
        """,
        [(t['tnmt_id'], t['team_name'], t['slug'] or None) for t in rows['teams']],
    )
    conn.executemany(
        """
        INSERT INTO people (pid, first_name, last_name, nickname, email, phone, birth_month,
                            birth_day, city, region, country, tnmt_id, did, team_captain,
                            team_order, division, updated_at)
        VALUES (:pid, :first_name, :last_name, :nickname, :email, :phone, :birth_month,
                :birth_day, :city, :region, :country, :tnmt_id, :did, :team_captain,
                :team_order, :division, :updated_at)
        ON CONFLICT(pid) DO UPDATE SET
            first_name = excluded.first_name,
            last_name = excluded.last_name,
            nickname = excluded.nickname,
            email = excluded.email,
            phone = excluded.phone,
            birth_month = excluded.birth_month,
            birth_day = excluded.birth_day,
            city = excluded.city,
            region = excluded.region,
            country = excluded.country,
            tnmt_id = excluded.tnmt_id,
            did = excluded.did,
            team_captain = excluded.team_captain,
            team_order = excluded.team_order,
            division = excluded.division,
            updated_at = excluded.updated_at
        """,
        [{**p, 'updated_at': now} for p in rows['people']],
    )
    conn.executemany(
        """
        INSERT INTO doubles_pairs (did, pid, partner_pid, partner_first_name, partner_last_name)
        VALUES (:did, :pid, :partner_pid, :partner_first_name, :partner_last_name)
        ON CONFLICT(did) DO UPDATE SET
            pid = excluded.pid,
            partner_pid = excluded.partner_pid,
            partner_first_name = excluded.partner_first_name,
            partner_last_name = excluded.partner_last_name
        """,
        rows['doubles'],
    )
    # Lanes and games already entered survive a re-import.
    conn.executemany(
        """
        INSERT INTO scores (id, pid, event_type, entering_avg, handicap, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(pid, event_type) DO UPDATE SET
            entering_avg = excluded.entering_avg,
            handicap = excluded.handicap,
            updated_at = excluded.updated_at
        """,
        [(new_id(), s['pid'], s['event_type'], s['entering_avg'], s['handicap'], now)
         for s in rows['scores']],
    )
    link_admins_to_people(conn)


def import_igbo_xml(conn, xml_text: str) -> dict:
    """Parse and import an export. Returns counts of what was written."""
    rows = build_import_rows(parse_people(xml_text))
    with transaction(conn):
        write_import_rows(conn, rows)
    return summarize(rows)
