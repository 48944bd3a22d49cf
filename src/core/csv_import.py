"""
Shared pieces of the admin CSV imports: parsing, header validation, name
matching and duplicate handling.

Every import runs in two modes: ``preview`` matches rows against the database
and reports what would change, ``import`` applies the preview.
"""
import csv
import io

from core.errors import ImportValidationError, PayloadTooLargeError
from core.names import normalize_import_name

MAX_CSV_SIZE_BYTES = 2 * 1024 * 1024
IMPORT_MODE_PREVIEW = 'preview'
IMPORT_MODE_IMPORT = 'import'
IMPORT_MODES = (IMPORT_MODE_PREVIEW, IMPORT_MODE_IMPORT)

NO_PARTICIPANTS_MATCHED_ERROR = 'No participants matched. Nothing to import.'


def parse_csv(text: str) -> list:
    """Parse CSV text into row dicts keyed by the header line.

    Lines are trimmed and blank lines dropped before parsing. Short rows are
    padded with empty strings.
    """
    lines = [line.strip() for line in (text or '').splitlines()]
    lines = [line for line in lines if line]
    if not lines:
        return []
    reader = csv.reader(io.StringIO('\n'.join(lines)))
    records = list(reader)
    headers = records[0]
    rows = []
    for values in records[1:]:
        rows.append({header: values[i] if i < len(values) else ''
                     for i, header in enumerate(headers)})
    return rows


def validate_required_columns(headers, required) -> dict:
    missing = [column for column in required if column not in headers]
    return {'valid': not missing, 'missing': missing}


def resolve_header(headers, canonical, aliases=None):
    """First header present among the aliases of ``canonical``."""
    for candidate in (aliases or {}).get(canonical, [canonical]):
        if candidate in headers:
            return candidate
    return None


def validate_columns_with_aliases(headers, required, aliases) -> dict:
    header_map = {}
    missing = []
    for column in required:
        found = resolve_header(headers, column, aliases)
        if found is None:
            missing.append(column)
        else:
            header_map[column] = found
    return {'valid': not missing, 'missing': missing, 'header_map': header_map}


def would_clobber_existing(new_value, old_value) -> bool:
    """A missing import value must not erase an existing database value."""
    return new_value is None and old_value is not None


def build_person_name_index(people, normalize=normalize_import_name, include_nickname=False,
                            with_source=False, composite_key=None) -> dict:
    """Map normalized names to the people carrying them.

    Keys are ``normalize("first last")`` unless ``composite_key(first, last,
    normalize)`` is given. With ``include_nickname`` people are also indexed by
    nickname + last name. With ``with_source`` entries are
    ``{'person': ..., 'source': 'first' | 'nickname'}``.
    """
    def key_for(first, last):
        if composite_key:
            return composite_key(first, last, normalize)
        return normalize(f"{first or ''} {last or ''}".strip())

    index = {}

    def add(key, person, source):
        if not key:
            return
        entries = index.setdefault(key, [])
        if with_source:
            entries.append({'person': person, 'source': source})
        elif person not in entries:
            entries.append(person)

    for person in people:
        first_key = key_for(person.get('first_name'), person.get('last_name'))
        add(first_key, person, 'first')
        nickname = person.get('nickname')
        if include_nickname and nickname:
            nick_key = key_for(nickname, person.get('last_name'))
            if nick_key != first_key or with_source:
                add(nick_key, person, 'nickname')
    return index


def dedupe_rows_by_key(rows, to_record, get_key, rows_conflict, missing_row_warning=None,
                       duplicate_conflict_message=None, duplicate_warning_message=None) -> dict:
    """Collapse rows sharing a key.

    Identical duplicates produce a warning, conflicting duplicates an error.
    Rows ``to_record`` rejects (returns None) may produce a warning.
    """
    records = {}
    warnings = []
    errors = []
    for raw in rows:
        record = to_record(raw)
        if record is None:
            if missing_row_warning:
                message = missing_row_warning(raw)
                if message:
                    warnings.append(message)
            continue
        key = get_key(record)
        if key not in records:
            records[key] = record
            continue
        if rows_conflict(records[key], record):
            if duplicate_conflict_message:
                errors.append(duplicate_conflict_message(record))
        elif duplicate_warning_message:
            warnings.append(duplicate_warning_message(record))
    return {'rows': list(records.values()), 'warnings': warnings, 'errors': errors}


def read_import_request(body: dict) -> dict:
    """Validate the JSON body of an import request.

    Raises ImportValidationError for a missing CSV or an unknown mode and
    PayloadTooLargeError for an oversized CSV.
    """
    csv_text = body.get('csvText')
    if not csv_text or not isinstance(csv_text, str):
        raise ImportValidationError('csvText is required.')
    if len(csv_text.encode('utf-8')) > MAX_CSV_SIZE_BYTES:
        raise PayloadTooLargeError('CSV too large.')
    mode = body.get('mode')
    if mode not in IMPORT_MODES:
        raise ImportValidationError('mode must be "preview" or "import".')
    return {'csv_text': csv_text, 'mode': mode}


def load_rows(csv_text: str, validate_columns) -> list:
    """Parse the CSV and check its header. Raises ImportValidationError."""
    rows = parse_csv(csv_text)
    if not rows:
        raise ImportValidationError('CSV file is empty or has no data rows.')
    result = validate_columns(list(rows[0].keys()))
    if not result['valid']:
        raise ImportValidationError(f"Missing required columns: {', '.join(result['missing'])}")
    return rows
