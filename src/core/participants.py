"""
Participant records: formatting, change tracking and updates.

A participant is assembled from ``people`` plus its team, doubles pair and the
three per-event ``scores`` rows.
"""
from core.db import fetch_all, fetch_one, new_id, utcnow
from core.names import full_name, to_team_slug
from core.scoring import EVENT_TYPES, non_null

PARTICIPANT_EDITABLE_FIELDS = ('email', 'phone', 'city', 'region', 'country')
PARTICIPANT_LIST_LIMIT = 200


def _resolve_partner(conn, pid, doubles, person):
    """Partner by explicit pid, then by name, then by shared doubles id."""
    if doubles and doubles.get('partner_pid'):
        return fetch_one(conn, 'SELECT * FROM people WHERE pid = ?', (doubles['partner_pid'],))

    if doubles and doubles.get('partner_first_name') and doubles.get('partner_last_name'):
        partner = fetch_one(
            conn,
            'SELECT pid, first_name, last_name FROM people '
            'WHERE lower(first_name) = lower(?) AND lower(last_name) = lower(?) AND pid <> ? '
            'LIMIT 1',
            (doubles['partner_first_name'], doubles['partner_last_name'], pid),
        )
        if partner:
            return partner

    if person.get('did'):
        return fetch_one(
            conn,
            'SELECT pid, first_name, last_name FROM people WHERE did = ? AND pid <> ? LIMIT 1',
            (person['did'], pid),
        )
    return None


def _partner_name(partner, doubles) -> str:
    if partner:
        return full_name(partner)
    if doubles and (doubles.get('partner_first_name') or doubles.get('partner_last_name')):
        return (f"{doubles.get('partner_first_name') or ''} "
                f"{doubles.get('partner_last_name') or ''}").strip()
    return ''


def _first_present(rows, key):
    for row in rows:
        if row.get(key) is not None:
            return row[key]
    return None


def format_participant(conn, pid):
    """Full participant view for ``pid``, or None if unknown."""
    person = fetch_one(conn, 'SELECT * FROM people WHERE pid = ?', (pid,))
    if not person:
        return None

    team = None
    if person.get('tnmt_id'):
        team = fetch_one(conn, 'SELECT * FROM teams WHERE tnmt_id = ?', (person['tnmt_id'],))
    doubles = fetch_one(conn, 'SELECT * FROM doubles_pairs WHERE pid = ?', (pid,))
    partner = _resolve_partner(conn, pid, doubles, person)

    score_rows = {row['event_type']: row
                  for row in fetch_all(conn, 'SELECT * FROM scores WHERE pid = ?', (pid,))}
    ordered = [score_rows.get(event, {}) for event in EVENT_TYPES]
    is_admin = fetch_one(conn, 'SELECT 1 AS found FROM admins WHERE pid = ? LIMIT 1', (pid,))

    team_name = (team or {}).get('team_name') or ''
    return {
        'pid': person['pid'],
        'firstName': person['first_name'],
        'lastName': person['last_name'],
        'nickname': person.get('nickname'),
        'email': person['email'],
        'phone': person['phone'],
        'birthMonth': person['birth_month'],
        'birthDay': person['birth_day'],
        'city': person['city'],
        'region': person['region'],
        'country': person['country'],
        'isAdmin': bool(is_admin),
        'team': {
            'tnmtId': person['tnmt_id'],
            'name': team_name,
            'slug': (team or {}).get('slug') or (to_team_slug(team_name) if team_name else ''),
        },
        'doubles': {
            'did': person['did'],
            'partnerPid': (doubles or {}).get('partner_pid') or (partner or {}).get('pid') or '',
            'partnerName': _partner_name(partner, doubles),
        },
        'lanes': {event: score_rows.get(event, {}).get('lane') or '' for event in EVENT_TYPES},
        'averages': {
            'entering': _first_present(ordered, 'entering_avg'),
            'handicap': _first_present(ordered, 'handicap'),
        },
        'scores': {
            event: non_null([score_rows.get(event, {}).get(f'game{n}') for n in (1, 2, 3)])
            for event in EVENT_TYPES
        },
    }


def list_participants(conn, search=''):
    """People who are not admins, optionally filtered by pid, email or name."""
    search = (search or '').lower()
    sql = """
        SELECT p.pid, p.first_name, p.last_name, p.email, t.team_name
        FROM people p
        LEFT JOIN teams t ON p.tnmt_id = t.tnmt_id
        LEFT JOIN admins a ON p.pid = a.pid
        WHERE a.pid IS NULL
    """
    if search:
        like = f'%{search}%'
        sql += """
          AND (lower(p.pid) LIKE ? OR lower(p.email) LIKE ?
               OR lower(p.first_name || ' ' || p.last_name) LIKE ?)
        ORDER BY p.last_name, p.first_name
        """
        return fetch_all(conn, sql, (like, like, like))
    sql += ' ORDER BY p.last_name, p.first_name LIMIT ?'
    return fetch_all(conn, sql, (PARTICIPANT_LIST_LIMIT,))


def build_changes(current: dict, updates: dict) -> list:
    """Field-level differences between the current record and the updates."""
    changes = []

    def add(field, old, new):
        if old != new:
            changes.append({'field': field, 'oldValue': old, 'newValue': new})

    def nested(record, group, key):
        return (record.get(group) or {}).get(key)

    add('first_name', current.get('firstName'), updates.get('firstName'))
    add('last_name', current.get('lastName'), updates.get('lastName'))
    add('email', current.get('email'), updates.get('email'))
    add('phone', current.get('phone'), updates.get('phone'))
    add('birth_month', current.get('birthMonth'), updates.get('birthMonth'))
    add('birth_day', current.get('birthDay'), updates.get('birthDay'))
    add('city', current.get('city'), updates.get('city'))
    add('region', current.get('region'), updates.get('region'))
    add('country', current.get('country'), updates.get('country'))
    add('team_name', nested(current, 'team', 'name'), nested(updates, 'team', 'name'))
    add('team_id', nested(current, 'team', 'tnmtId'), nested(updates, 'team', 'tnmtId'))
    add('doubles_id', nested(current, 'doubles', 'did'), nested(updates, 'doubles', 'did'))
    add('partner_pid', nested(current, 'doubles', 'partnerPid'),
        nested(updates, 'doubles', 'partnerPid'))
    for event in EVENT_TYPES:
        add(f'lane_{event}', nested(current, 'lanes', event), nested(updates, 'lanes', event))
    add('avg_entering', nested(current, 'averages', 'entering'),
        nested(updates, 'averages', 'entering'))
    add('avg_handicap', nested(current, 'averages', 'handicap'),
        nested(updates, 'averages', 'handicap'))
    for event in EVENT_TYPES:
        add(f'scores_{event}', nested(current, 'scores', event), nested(updates, 'scores', event))
    return changes


def resolve_participant_updates(current: dict, raw_updates: dict, participant_only: bool) -> dict:
    """Participants may only change their contact fields; admins send full records."""
    if not participant_only:
        return raw_updates
    merged = dict(current)
    for field in PARTICIPANT_EDITABLE_FIELDS:
        if field in raw_updates:
            merged[field] = raw_updates[field]
    return merged


def upsert_person(conn, pid, updates):
    conn.execute(
        """
        INSERT INTO people (pid, first_name, last_name, email, phone, birth_month, birth_day,
                            city, region, country, tnmt_id, did, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(pid) DO UPDATE SET
            first_name = excluded.first_name,
            last_name = excluded.last_name,
            email = excluded.email,
            phone = excluded.phone,
            birth_month = excluded.birth_month,
            birth_day = excluded.birth_day,
            city = excluded.city,
            region = excluded.region,
            country = excluded.country,
            tnmt_id = excluded.tnmt_id,
            did = excluded.did,
            updated_at = excluded.updated_at
        """,
        (
            pid,
            updates.get('firstName'),
            updates.get('lastName'),
            updates.get('email'),
            updates.get('phone'),
            updates.get('birthMonth'),
            updates.get('birthDay'),
            updates.get('city'),
            updates.get('region'),
            updates.get('country'),
            (updates.get('team') or {}).get('tnmtId') or None,
            (updates.get('doubles') or {}).get('did') or None,
            utcnow(),
        ),
    )


def upsert_team(conn, team):
    if not team or not team.get('tnmtId') or not team.get('name'):
        return
    conn.execute(
        """
        INSERT INTO teams (tnmt_id, team_name, slug) VALUES (?, ?, ?)
        ON CONFLICT(tnmt_id) DO UPDATE SET
            team_name = excluded.team_name,
            slug = excluded.slug
        """,
        (team['tnmtId'], team['name'], to_team_slug(team['name'])),
    )


def upsert_doubles_pair(conn, pid, doubles):
    if not doubles or not doubles.get('did'):
        return
    conn.execute(
        """
        INSERT INTO doubles_pairs (did, pid, partner_pid) VALUES (?, ?, ?)
        ON CONFLICT(did) DO UPDATE SET
            pid = excluded.pid,
            partner_pid = excluded.partner_pid
        """,
        (doubles['did'], pid, doubles.get('partnerPid') or None),
    )


def upsert_scores(conn, pid, updates):
    averages = updates.get('averages') or {}
    lanes = updates.get('lanes') or {}
    scores = updates.get('scores') or {}
    now = utcnow()
    for event in EVENT_TYPES:
        games = list(scores.get(event) or [])
        games += [None] * (3 - len(games))
        conn.execute(
            """
            INSERT INTO scores (id, pid, event_type, lane, game1, game2, game3,
                                entering_avg, handicap, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(pid, event_type) DO UPDATE SET
                lane = excluded.lane,
                game1 = excluded.game1,
                game2 = excluded.game2,
                game3 = excluded.game3,
                entering_avg = excluded.entering_avg,
                handicap = excluded.handicap,
                updated_at = excluded.updated_at
            """,
            (new_id(), pid, event, lanes.get(event) or None, games[0], games[1], games[2],
             averages.get('entering'), averages.get('handicap'), now),
        )


def apply_participant_updates(conn, pid, updates, participant_only):
    upsert_person(conn, pid, updates)
    if not participant_only:
        upsert_team(conn, updates.get('team'))
        upsert_doubles_pair(conn, pid, updates.get('doubles'))
        upsert_scores(conn, pid, updates)


def check_partner_conflict(conn, partner_pid, pid):
    """Describe the conflict when ``partner_pid`` is already paired with someone else."""
    row = fetch_one(
        conn,
        """
        SELECT dp.partner_pid, p.first_name, p.last_name,
               cp.first_name AS current_partner_first, cp.last_name AS current_partner_last
        FROM doubles_pairs dp
        JOIN people p ON p.pid = dp.pid
        LEFT JOIN people cp ON cp.pid = dp.partner_pid
        WHERE dp.pid = ?
        LIMIT 1
        """,
        (partner_pid,),
    )
    if not row or not row['partner_pid'] or row['partner_pid'] == pid:
        return None
    return {
        'partnerPid': partner_pid,
        'partnerName': full_name(row),
        'currentPartnerPid': row['partner_pid'],
        'currentPartnerName': (f"{row['current_partner_first'] or ''} "
                               f"{row['current_partner_last'] or ''}").strip(),
    }


def upsert_reciprocal_partner(conn, partner_pid, pid):
    """Point ``partner_pid``'s doubles pair back at ``pid``.

    The partner's previous partner loses its reference to ``partner_pid``.
    """
    person = fetch_one(conn, 'SELECT did FROM people WHERE pid = ?', (partner_pid,))
    if not person or not person.get('did'):
        return
    existing = fetch_one(conn, 'SELECT partner_pid FROM doubles_pairs WHERE pid = ?',
                         (partner_pid,))
    previous = (existing or {}).get('partner_pid')
    if previous and previous != pid:
        conn.execute(
            'UPDATE doubles_pairs SET partner_pid = NULL WHERE pid = ? AND partner_pid = ?',
            (previous, partner_pid),
        )
    conn.execute(
        """
        INSERT INTO doubles_pairs (did, pid, partner_pid) VALUES (?, ?, ?)
        ON CONFLICT(did) DO UPDATE SET
            pid = excluded.pid,
            partner_pid = excluded.partner_pid
        """,
        (person['did'], partner_pid, pid),
    )
