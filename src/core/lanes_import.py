"""
Lane assignment import: one CSV row per participant with a lane per event.
"""
from core.audit import write_audit_entries
from core.csv_import import validate_required_columns, would_clobber_existing
from core.db import new_id, utcnow
from core.scoring import EVENT_TEAM, EVENT_DOUBLES, EVENT_SINGLES

REQUIRED_COLUMNS = ['PID', 'T_Lane', 'D_Lane', 'S_Lane']

LANE_COLUMNS = {EVENT_TEAM: 'T_Lane', EVENT_DOUBLES: 'D_Lane', EVENT_SINGLES: 'S_Lane'}
LANE_AUDIT_FIELDS = {
    EVENT_TEAM: 'lane_team',
    EVENT_DOUBLES: 'lane_doubles',
    EVENT_SINGLES: 'lane_singles',
}


def normalize_lane_value(value):
    """Lane number from a CSV cell; blanks and ``#N/A`` mean no lane."""
    if value is None:
        return None
    text = str(value).strip()
    if text in ('', '#N/A'):
        return None
    return int(text) if text.isdigit() else text


def validate_columns(headers) -> dict:
    return validate_required_columns(headers, REQUIRED_COLUMNS)


def _unmatched(row, pid, reason) -> dict:
    return {
        'pid': pid,
        'email': row.get('Email') or '',
        'firstName': row.get('FirstName') or '',
        'lastName': row.get('LastName') or '',
        'teamName': row.get('Team_Name') or '',
        'reason': reason,
    }


def match_participants(conn, rows) -> dict:
    """Split CSV rows into known participants and rejects.

    When a PID appears more than once the last row wins.
    """
    matched = []
    unmatched = []
    rows_by_pid = {}
    duplicates = []
    for row in rows:
        pid = (row.get('PID') or '').strip()
        if not pid:
            unmatched.append(_unmatched(row, '', 'Missing PID'))
            continue
        if pid in rows_by_pid and pid not in duplicates:
            duplicates.append(pid)
        rows_by_pid[pid] = row

    for pid in duplicates:
        unmatched.append(_unmatched(rows_by_pid[pid], pid,
                                    'Duplicate PID in CSV; earlier occurrence skipped'))

    if not rows_by_pid:
        return {'matched': matched, 'unmatched': unmatched}

    pids = list(rows_by_pid)
    placeholders = ','.join('?' * len(pids))
    existing = {str(r['pid']) for r in
                conn.execute(f'SELECT pid FROM people WHERE pid IN ({placeholders})', pids)}

    for pid, row in rows_by_pid.items():
        if pid not in existing:
            unmatched.append(_unmatched(row, pid, 'PID not found'))
            continue
        matched.append({
            'pid': pid,
            'firstName': row.get('FirstName') or '',
            'lastName': row.get('LastName') or '',
            'teamName': row.get('Team_Name') or '',
            'lanes': {event: normalize_lane_value(row.get(column))
                      for event, column in LANE_COLUMNS.items()},
        })
    return {'matched': matched, 'unmatched': unmatched}


def _current_lanes(conn, pids) -> dict:
    if not pids:
        return {}
    placeholders = ','.join('?' * len(pids))
    lanes = {}
    for row in conn.execute(
            f'SELECT pid, event_type, lane FROM scores WHERE pid IN ({placeholders})', pids):
        lanes.setdefault(str(row['pid']), {})[row['event_type']] = row['lane'] or None
    return lanes


def compute_lane_changes(new_lanes: dict, current_lanes: dict) -> list:
    changes = []
    for event, field in LANE_AUDIT_FIELDS.items():
        new_lane = new_lanes.get(event)
        old_lane = current_lanes.get(event)
        if would_clobber_existing(new_lane, old_lane):
            continue
        if new_lane != old_lane:
            changes.append({'event': event, 'field': field, 'old': old_lane, 'new': new_lane})
    return changes


def import_lanes(conn, matched, admin_email) -> dict:
    updated = 0
    skipped = 0
    current = _current_lanes(conn, sorted({p['pid'] for p in matched}))
    for participant in matched:
        changes = compute_lane_changes(participant['lanes'], current.get(participant['pid'], {}))
        if not changes:
            skipped += 1
            continue
        for change in changes:
            conn.execute(
                """
                INSERT INTO scores (id, pid, event_type, lane, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(pid, event_type) DO UPDATE SET
                    lane = excluded.lane,
                    updated_at = excluded.updated_at
                """,
                (new_id(), participant['pid'], change['event'], change['new'], utcnow()),
            )
        write_audit_entries(conn, admin_email, participant['pid'], [
            {'field': c['field'],
             'oldValue': '' if c['old'] is None else c['old'],
             'newValue': '' if c['new'] is None else c['new']}
            for c in changes
        ])
        updated += 1
    return {'updated': updated, 'skipped': skipped}
