"""
Optional events entry import: per-participant flags for Best 3 of 9, Optional
Scratch and All Events Handicapped, keyed by EID (the participant PID).
"""
from core.audit import try_log_admin_action
from core.csv_import import (build_person_name_index, dedupe_rows_by_key,
                             validate_columns_with_aliases)
from core.db import fetch_all, fetch_one, utcnow
from core.errors import ImportValidationError
from core.names import normalize_import_name

REQUIRED_COLUMNS = ['EID', 'Last', 'First', 'Best 3 of 9', 'Optional Scratch', 'All Events Hdcp']
HEADER_ALIASES = {
    'EID': ['EID', '\ufeffEID'],
    'Last': ['Last', 'Last name', 'Last Name'],
    'First': ['First', 'First name', 'First Name'],
    'Best 3 of 9': ['Best 3 of 9'],
    'Optional Scratch': ['Optional Scratch'],
    'All Events Hdcp': ['All Events Hdcp', 'All Events Handicapped'],
}

FLAG_FIELDS = {
    'optionalBest3Of9': 'optional_best_3_of_9',
    'optionalScratch': 'optional_scratch',
    'optionalAllEventsHdcp': 'optional_all_events_hdcp',
    'optionalEvents': 'optional_events',
}


def validate_columns(headers) -> dict:
    return validate_columns_with_aliases(headers, REQUIRED_COLUMNS, HEADER_ALIASES)


def parse_flag(value) -> int:
    return 1 if str(value or '').strip() == '1' else 0


def _name_key(first, last, normalize):
    return f'{normalize(first)}|{normalize(last)}'


def _flags_conflict(a, b) -> bool:
    return any(a[key] != b[key]
               for key in ('optionalBest3Of9', 'optionalScratch', 'optionalAllEventsHdcp'))


def normalize_rows(rows, header_map) -> dict:
    def to_record(raw):
        eid = str(raw.get(header_map['EID']) or '').strip()
        last = str(raw.get(header_map['Last']) or '').strip()
        first = str(raw.get(header_map['First']) or '').strip()
        if not eid or not last or not first:
            return None
        record = {
            'eid': eid,
            'first': first,
            'last': last,
            'optionalBest3Of9': parse_flag(raw.get(header_map['Best 3 of 9'])),
            'optionalScratch': parse_flag(raw.get(header_map['Optional Scratch'])),
            'optionalAllEventsHdcp': parse_flag(raw.get(header_map['All Events Hdcp'])),
        }
        record['optionalEvents'] = 1 if (record['optionalBest3Of9'] or record['optionalScratch']
                                         or record['optionalAllEventsHdcp']) else 0
        return record

    return dedupe_rows_by_key(
        rows,
        to_record=to_record,
        get_key=lambda record: record['eid'],
        rows_conflict=_flags_conflict,
        missing_row_warning=lambda raw: 'Skipped row missing EID/Last/First values.',
        duplicate_conflict_message=lambda r: (
            f'EID "{r["eid"]}" has conflicting duplicate rows; import blocked.'),
        duplicate_warning_message=lambda r: (
            f'EID "{r["eid"]}" has duplicate identical rows; deduped.'),
    )


def match_participants(rows, people) -> dict:
    """Match by EID first, then by a unique first+last name."""
    validation = validate_columns(list(rows[0].keys()) if rows else [])
    if not validation['valid']:
        return {'matched': [], 'unmatched': [], 'updates': [], 'warnings': [],
                'errors': [f"Missing required columns: {', '.join(validation['missing'])}"]}

    normalized = normalize_rows(rows, validation['header_map'])
    if normalized['errors']:
        return {'matched': [], 'unmatched': [], 'updates': [],
                'warnings': normalized['warnings'], 'errors': normalized['errors']}

    by_pid = {str(p.get('pid') or '').strip(): p for p in people}
    by_name = build_person_name_index(people, composite_key=_name_key)

    matched = []
    unmatched = []
    warnings = list(normalized['warnings'])
    for row in normalized['rows']:
        person = by_pid.get(row['eid'])
        if person is None:
            candidates = by_name.get(_name_key(row['first'], row['last'], normalize_import_name),
                                     [])
            if len(candidates) == 1:
                person = candidates[0]
                warnings.append(f'Matched "{row["first"]} {row["last"]}" by name because '
                                f'EID "{row["eid"]}" was not found.')
        if person is None:
            unmatched.append({'name': f'{row["first"]} {row["last"]}',
                              'reason': 'EID/name not found'})
            continue
        matched.append({
            'pid': person['pid'],
            'name': f'{row["first"]} {row["last"]}'.strip(),
            **{key: row[key] for key in FLAG_FIELDS},
        })

    selected = {str(m['pid']): m for m in matched}
    updates = []
    for person in people:
        row = selected.get(str(person['pid']), {})
        updates.append({'pid': person['pid'], **{key: row.get(key, 0) for key in FLAG_FIELDS}})
    return {'matched': matched, 'unmatched': unmatched, 'updates': updates,
            'warnings': warnings, 'errors': []}


def fetch_people(conn) -> list:
    return fetch_all(
        conn,
        """
        SELECT pid, first_name, last_name,
               coalesce(optional_events, 0) AS optional_events,
               coalesce(optional_best_3_of_9, 0) AS optional_best_3_of_9,
               coalesce(optional_scratch, 0) AS optional_scratch,
               coalesce(optional_all_events_hdcp, 0) AS optional_all_events_hdcp
        FROM people
        ORDER BY last_name, first_name
        """,
    )


def build_preview(conn, rows) -> dict:
    preview = match_participants(rows, fetch_people(conn))
    if preview['errors']:
        raise ImportValidationError(' '.join(preview['errors']))
    return preview


def apply_updates(conn, updates) -> dict:
    updated = 0
    unchanged = 0
    for row in updates:
        current = fetch_one(
            conn,
            """
            SELECT coalesce(optional_events, 0) AS optional_events,
                   coalesce(optional_best_3_of_9, 0) AS optional_best_3_of_9,
                   coalesce(optional_scratch, 0) AS optional_scratch,
                   coalesce(optional_all_events_hdcp, 0) AS optional_all_events_hdcp
            FROM people WHERE pid = ?
            """,
            (row['pid'],),
        ) or {}
        if all(int(current.get(column) or 0) == int(row[key] or 0)
               for key, column in FLAG_FIELDS.items()):
            unchanged += 1
            continue
        conn.execute(
            """
            UPDATE people
            SET optional_best_3_of_9 = ?, optional_scratch = ?, optional_all_events_hdcp = ?,
                optional_events = ?, updated_at = ?
            WHERE pid = ?
            """,
            (row['optionalBest3Of9'], row['optionalScratch'], row['optionalAllEventsHdcp'],
             row['optionalEvents'], utcnow(), row['pid']),
        )
        updated += 1
    return {'updated': updated, 'unchanged': unchanged}


def import_optional_events(conn, preview, admin_email) -> dict:
    result = apply_updates(conn, preview['updates'])
    details = {
        'matched': len(preview['matched']),
        'unmatched': len(preview['unmatched']),
        'warnings': len(preview['warnings']),
        **result,
    }
    audit_logged = try_log_admin_action(conn, admin_email, 'import_optional_events', details)
    return {**result, 'auditLogged': audit_logged}
