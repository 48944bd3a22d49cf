"""
Lane assignment sheets: who bowls on each odd/even lane pair, per event.
"""
from core.db import fetch_all
from core.names import display_name, to_team_slug
from core.scoring import EVENT_DOUBLES, EVENT_SINGLES, EVENT_TEAM

EMPTY_SIDE = '—'


def parse_lane_number(lane):
    """Positive integer lane, or None."""
    text = str(lane if lane is not None else '').strip()
    if not text.isdigit():
        return None
    number = int(text)
    return number if number > 0 else None


def _display_entries(entries):
    if not entries:
        return [{'label': EMPTY_SIDE}]
    return sorted(entries.values(), key=lambda entry: entry['label'].casefold())


def build_lane_pairs(lane_entries: dict) -> list:
    odd_lanes = sorted({lane if lane % 2 else lane - 1 for lane in lane_entries})
    pairs = []
    for lane in odd_lanes:
        left_entries = _display_entries(lane_entries.get(lane))
        right_entries = _display_entries(lane_entries.get(lane + 1))
        left_members = [entry['label'] for entry in left_entries]
        right_members = [entry['label'] for entry in right_entries]
        pairs.append({
            'lane': lane,
            'leftEntries': left_entries,
            'rightEntries': right_entries,
            'leftMembers': left_members,
            'rightMembers': right_members,
            'left': ', '.join(left_members),
            'right': ', '.join(right_members),
        })
    return pairs


def _add_entry(lane_entries, lane, entry, key):
    number = parse_lane_number(lane)
    if not number or not entry or not entry.get('label'):
        return
    lane_entries.setdefault(number, {})[key] = entry


def build_team_assignments(rows) -> list:
    lane_entries = {}
    for row in rows:
        team_name = str(row.get('team_name') or '').strip()
        if not team_name:
            continue
        entry = {'label': team_name, 'teamSlug': row.get('team_slug') or to_team_slug(team_name)}
        _add_entry(lane_entries, row.get('lane'), entry, entry['teamSlug'] or team_name)
    return build_lane_pairs(lane_entries)


def build_person_assignments(rows) -> list:
    lane_entries = {}
    for row in rows:
        label = display_name(row)
        if not label:
            continue
        pid = str(row.get('pid') or '').strip()
        entry = {'label': label, 'pid': pid} if pid else {'label': label}
        _add_entry(lane_entries, row.get('lane'), entry, pid or label)
    return build_lane_pairs(lane_entries)


def build_lane_assignments(team_rows, doubles_rows, singles_rows) -> dict:
    return {
        EVENT_TEAM: build_team_assignments(team_rows),
        EVENT_DOUBLES: build_person_assignments(doubles_rows),
        EVENT_SINGLES: build_person_assignments(singles_rows),
    }


def _lane_rows(conn, columns, joins, event_type):
    return fetch_all(
        conn,
        f"""
        SELECT s.lane, {columns}
        FROM scores s
        JOIN people p ON p.pid = s.pid
        {joins}
        WHERE s.event_type = ? AND s.lane IS NOT NULL AND trim(s.lane) <> ''
        """,
        (event_type,),
    )


def fetch_lane_assignments(conn) -> dict:
    team_rows = _lane_rows(conn, 't.team_name, t.slug AS team_slug',
                           'LEFT JOIN teams t ON t.tnmt_id = p.tnmt_id', EVENT_TEAM)
    doubles_rows = _lane_rows(conn, 'p.pid, p.first_name, p.last_name, p.nickname', '',
                              EVENT_DOUBLES)
    singles_rows = _lane_rows(conn, 'p.pid, p.first_name, p.last_name, p.nickname', '',
                              EVENT_SINGLES)
    return build_lane_assignments(team_rows, doubles_rows, singles_rows)
