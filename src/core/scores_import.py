"""
Game score import from the bowling center's scoring export.

The export has one row per bowler per game; rows are pivoted into three games
per bowler and matched to participants by name.
"""
import re

from core.audit import write_audit_entries
from core.csv_import import (build_person_name_index, validate_required_columns,
                             would_clobber_existing)
from core.db import fetch_all, new_id, utcnow
from core.errors import ImportValidationError
from core.scoring import EVENT_DOUBLES, EVENT_SINGLES, EVENT_TEAM, to_int

REQUIRED_COLUMNS = ['Bowler name', 'Scratch', 'Game number', 'Team name', 'Lane number']

EVENT_PREFIX_MAP = {'T': EVENT_TEAM, 'D': EVENT_DOUBLES, 'S': EVENT_SINGLES}
GAME_KEYS = ('game1', 'game2', 'game3')

_GAME_NAME_PATTERN = re.compile(r'([TDS])\d+-')
_LANE_IDENTIFIER = re.compile(r'^Lane \d+$', re.IGNORECASE)


def validate_columns(headers) -> dict:
    return validate_required_columns(headers, REQUIRED_COLUMNS)


def detect_csv_event_type(rows):
    """Event type from the first row's "Game name" (e.g. ``2/13/ 7:00 PM  T1-Teams 1``)."""
    if not rows:
        return None
    game_name = (rows[0].get('Game name') or '').strip()
    match = _GAME_NAME_PATTERN.search(game_name)
    if not match:
        return None
    return EVENT_PREFIX_MAP.get(match.group(1))


def check_event_type(rows, selected):
    detected = detect_csv_event_type(rows)
    if detected and detected != selected:
        raise ImportValidationError(
            f'event_type_mismatch: CSV contains {detected} scores but you selected {selected}. '
            'Please select the correct event type.'
        )


def pivot_rows_by_bowler(rows) -> dict:
    """Group rows by lowercase bowler name into game1..game3."""
    bowlers = {}
    for row in rows:
        name = (row.get('Bowler name') or '').strip()
        if not name:
            continue
        bowler = bowlers.setdefault(name.lower(), {
            'name': name,
            'csvTeamName': (row.get('Team name') or '').strip(),
            'csvLane': (row.get('Lane number') or '').strip(),
            'game1': None,
            'game2': None,
            'game3': None,
        })
        game_number = to_int(row.get('Game number'))
        if game_number in (1, 2, 3):
            bowler[f'game{game_number}'] = to_int(row.get('Scratch'))
    return bowlers


def is_lane_identifier(value) -> bool:
    """Doubles and singles exports put "Lane N" in the team name column."""
    return bool(_LANE_IDENTIFIER.match(value or ''))


def team_names_match(csv_team_name, db_team_name) -> bool:
    """Prefix match either way, since the scoring software truncates team names."""
    if not csv_team_name or not db_team_name:
        return True
    if is_lane_identifier(csv_team_name):
        return True
    csv_lower = csv_team_name.lower()
    db_lower = db_team_name.lower()
    return db_lower.startswith(csv_lower) or csv_lower.startswith(db_lower)


def resolve_matched_person(candidates, bowler):
    if not candidates:
        return None, 'Name not found in database'
    if len(candidates) == 1:
        return candidates[0], None
    team_matches = [c for c in candidates if team_names_match(bowler['csvTeamName'], c['team_name'])]
    if len(team_matches) == 1:
        return team_matches[0], None
    return None, 'Multiple matches found; team name did not disambiguate'


def build_cross_reference_warnings(bowler, person, event_type) -> list:
    warnings = []
    if not team_names_match(bowler['csvTeamName'], person.get('team_name')):
        warnings.append({
            'pid': person['pid'],
            'name': bowler['name'],
            'type': 'team_mismatch',
            'expected': person.get('team_name') or '',
            'actual': bowler['csvTeamName'],
        })
    if bowler['csvLane'] and person.get('lane') and str(bowler['csvLane']) != str(person['lane']):
        warnings.append({
            'pid': person['pid'],
            'name': bowler['name'],
            'type': 'lane_mismatch',
            'expected': str(person['lane']),
            'actual': bowler['csvLane'],
        })
    if event_type == EVENT_DOUBLES and not person.get('has_doubles_partner'):
        warnings.append({'pid': person['pid'], 'name': bowler['name'],
                         'type': 'no_doubles_partner'})
    return warnings


def match_participants(conn, bowlers: dict, event_type) -> dict:
    people = fetch_all(
        conn,
        """
        SELECT p.pid, p.first_name, p.last_name, p.nickname, t.team_name,
               s.lane, s.game1, s.game2, s.game3,
               (dp.partner_pid IS NOT NULL) AS has_doubles_partner
        FROM people p
        LEFT JOIN teams t ON p.tnmt_id = t.tnmt_id
        LEFT JOIN scores s ON s.pid = p.pid AND s.event_type = ?
        LEFT JOIN doubles_pairs dp ON dp.did = p.did
        """,
        (event_type,),
    )
    index = build_person_name_index(people, normalize=lambda v: str(v or '').lower().strip(),
                                    include_nickname=True)
    matched = []
    unmatched = []
    warnings = []
    for key, bowler in bowlers.items():
        person, reason = resolve_matched_person(index.get(key, []), bowler)
        if person is None:
            unmatched.append({'name': bowler['name'], 'csvTeamName': bowler['csvTeamName'],
                              'reason': reason})
            continue
        warnings.extend(build_cross_reference_warnings(bowler, person, event_type))
        matched.append({
            'pid': person['pid'],
            'firstName': person['first_name'],
            'lastName': person['last_name'],
            'dbTeamName': person.get('team_name') or '',
            'csvTeamName': bowler['csvTeamName'],
            'csvLane': bowler['csvLane'],
            'game1': bowler['game1'],
            'game2': bowler['game2'],
            'game3': bowler['game3'],
            'existingGame1': person.get('game1'),
            'existingGame2': person.get('game2'),
            'existingGame3': person.get('game3'),
        })
    return {'matched': matched, 'unmatched': unmatched, 'warnings': warnings}


def check_doubles_partners(warnings):
    missing = [w for w in warnings if w['type'] == 'no_doubles_partner']
    if missing:
        raise ImportValidationError(
            f'Cannot import doubles scores: {len(missing)} bowler(s) have no doubles partner '
            'assigned. Assign partners before importing.'
        )


def import_scores(conn, matched, event_type, admin_email) -> dict:
    """Write games for one event. Games missing from the CSV keep their stored value."""
    updated = 0
    skipped = 0
    for bowler in matched:
        changes = []
        for n, key in enumerate(GAME_KEYS, start=1):
            new_value = bowler[key]
            existing = bowler[f'existingGame{n}']
            if would_clobber_existing(new_value, existing):
                continue
            if new_value != existing:
                changes.append({
                    'field': f'score_{event_type}_game{n}',
                    'oldValue': '' if existing is None else existing,
                    'newValue': '' if new_value is None else new_value,
                })
        if not changes:
            skipped += 1
            continue

        conn.execute(
            """
            INSERT INTO scores (id, pid, event_type, game1, game2, game3, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(pid, event_type) DO UPDATE SET
                game1 = COALESCE(excluded.game1, game1),
                game2 = COALESCE(excluded.game2, game2),
                game3 = COALESCE(excluded.game3, game3),
                updated_at = excluded.updated_at
            """,
            (new_id(), bowler['pid'], event_type, bowler['game1'], bowler['game2'],
             bowler['game3'], utcnow()),
        )
        write_audit_entries(conn, admin_email, bowler['pid'], changes)
        updated += 1
    return {'updated': updated, 'skipped': skipped}
