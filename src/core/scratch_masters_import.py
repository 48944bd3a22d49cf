"""
Scratch Masters entry import: a bowler name and an ``SM?`` flag per row.

Every participant is rewritten on import: matched bowlers take the CSV flag
and everyone else is reset to 0.
"""
from core.audit import try_log_admin_action, write_audit_entries
from core.csv_import import (build_person_name_index, dedupe_rows_by_key,
                             validate_columns_with_aliases)
from core.db import fetch_all, fetch_one, utcnow
from core.errors import ImportValidationError
from core.names import normalize_import_name

REQUIRED_COLUMNS = ['Bowler Name', 'SM?']
HEADER_ALIASES = {
    'Bowler Name': ['Bowler Name', 'Bowler name'],
    'SM?': ['SM?', 'SM', 'Scratch Masters', 'ScratchMasters'],
}


def validate_columns(headers) -> dict:
    return validate_columns_with_aliases(headers, REQUIRED_COLUMNS, HEADER_ALIASES)


def parse_flag(value):
    text = str(value if value is not None else '').strip()
    if text == '1':
        return 1
    if text == '0':
        return 0
    return None


def _raw_rows_conflict(a, b) -> bool:
    for key in set(a) | set(b):
        if str(a.get(key) or '').strip() != str(b.get(key) or '').strip():
            return True
    return False


def pick_best_match(candidates):
    """A unique nickname match wins, then a unique first-name match."""
    if not candidates:
        return None
    nickname_matches = [c for c in candidates if c['source'] == 'nickname']
    if len(nickname_matches) == 1:
        return nickname_matches[0]['person']
    if nickname_matches:
        return None
    first_matches = [c for c in candidates if c['source'] == 'first']
    if len(first_matches) == 1:
        return first_matches[0]['person']
    return None


def normalize_rows(rows, header_map) -> dict:
    name_column = header_map['Bowler Name']
    flag_column = header_map['SM?']
    invalid = []

    def to_record(raw):
        bowler_name = str(raw.get(name_column) or '').strip()
        name_key = normalize_import_name(bowler_name)
        if not name_key:
            return None
        flag = parse_flag(raw.get(flag_column))
        if flag is None:
            invalid.append(f'Row for "{bowler_name}" has invalid SM? value; expected 0 or 1.')
            return None
        return {'bowlerName': bowler_name, 'nameKey': name_key, 'scratchMasters': flag,
                'raw': raw}

    def missing_row_warning(raw):
        if str(raw.get(name_column) or '').strip():
            return None
        return 'Skipped row with empty Bowler Name.'

    result = dedupe_rows_by_key(
        rows,
        to_record=to_record,
        get_key=lambda record: record['nameKey'],
        rows_conflict=lambda a, b: _raw_rows_conflict(a['raw'], b['raw']),
        missing_row_warning=missing_row_warning,
        duplicate_conflict_message=lambda r: (
            f'Bowler "{r["bowlerName"]}" has conflicting duplicate rows; import blocked.'),
        duplicate_warning_message=lambda r: (
            f'Bowler "{r["bowlerName"]}" has duplicate identical rows; deduped.'),
    )
    result['errors'] = result['errors'] + invalid
    return result


def match_participants(rows, people) -> dict:
    """Preview of the import against ``people``. Returns matched, unmatched,
    updates, warnings and errors."""
    validation = validate_columns(list(rows[0].keys()) if rows else [])
    if not validation['valid']:
        return {'matched': [], 'unmatched': [], 'updates': [], 'warnings': [],
                'errors': [f"Missing required columns: {', '.join(validation['missing'])}"]}

    normalized = normalize_rows(rows, validation['header_map'])
    if normalized['errors']:
        return {'matched': [], 'unmatched': [], 'updates': [],
                'warnings': normalized['warnings'], 'errors': normalized['errors']}

    index = build_person_name_index(people, include_nickname=True, with_source=True)
    matched = []
    unmatched = []
    for row in normalized['rows']:
        candidates = index.get(row['nameKey'], [])
        person = pick_best_match(candidates)
        if person is None:
            unmatched.append({
                'name': row['bowlerName'],
                'reason': 'Multiple participant matches' if len(candidates) > 1
                else 'Name not found',
            })
            continue
        matched.append({'pid': person['pid'], 'name': row['bowlerName'],
                        'scratchMasters': row['scratchMasters']})

    selected = {m['pid']: m['scratchMasters'] for m in matched}
    updates = [{'pid': p['pid'], 'scratchMasters': selected.get(p['pid'], 0)} for p in people]
    return {'matched': matched, 'unmatched': unmatched, 'updates': updates,
            'warnings': normalized['warnings'], 'errors': []}


def fetch_people(conn) -> list:
    return fetch_all(
        conn,
        'SELECT pid, first_name, last_name, nickname, scratch_masters FROM people '
        'ORDER BY last_name, first_name',
    )


def build_preview(conn, rows) -> dict:
    preview = match_participants(rows, fetch_people(conn))
    if preview['errors']:
        raise ImportValidationError(' '.join(preview['errors']))
    return preview


def apply_updates(conn, updates, admin_email) -> dict:
    updated = 0
    unchanged = 0
    for row in updates:
        current = fetch_one(conn, 'SELECT scratch_masters FROM people WHERE pid = ?',
                            (row['pid'],))
        current_flag = 1 if current and current['scratch_masters'] else 0
        if current_flag == row['scratchMasters']:
            unchanged += 1
            continue
        conn.execute('UPDATE people SET scratch_masters = ?, updated_at = ? WHERE pid = ?',
                     (row['scratchMasters'], utcnow(), row['pid']))
        write_audit_entries(conn, admin_email, row['pid'], [
            {'field': 'scratch_masters', 'oldValue': current_flag, 'newValue': row['scratchMasters']},
        ])
        updated += 1
    return {'updated': updated, 'unchanged': unchanged}


def import_scratch_masters(conn, preview, admin_email) -> dict:
    result = apply_updates(conn, preview['updates'], admin_email)
    details = {
        'matched': len(preview['matched']),
        'unmatched': len(preview['unmatched']),
        'warnings': len(preview['warnings']),
        **result,
    }
    audit_logged = try_log_admin_action(conn, admin_email, 'import_scratch_masters', details)
    return {**result, 'auditLogged': audit_logged}
