"""
Data-quality report for the admin dashboard: registrations missing a team or
lanes, and inconsistent doubles partner mappings.
"""
from core.db import fetch_all, fetch_one
from core.names import full_name

MAX_ISSUE_DETAILS = 12
RELATED_SEPARATOR = ' | '

_NOT_ADMIN = 'NOT EXISTS (SELECT 1 FROM admins a WHERE a.pid = p.pid)'
_HAS_LANE = "s.lane IS NOT NULL AND trim(s.lane) <> ''"
_NO_TEAM = "(p.tnmt_id IS NULL OR trim(p.tnmt_id) = '')"


def participant_label(row) -> str:
    return full_name(row) or str(row.get('pid') or '') or 'Unknown'


def parse_participant_list(raw) -> list:
    """Parse ``"pid:name | pid:name"`` into ``[{'pid', 'name'}]``."""
    entries = []
    for value in str(raw or '').split('|'):
        value = value.strip()
        if not value:
            continue
        pid, _, name = value.partition(':')
        pid = pid.strip()
        if pid:
            entries.append({'pid': pid, 'name': name.strip() or pid})
    return entries


def format_participant_list(people) -> str:
    return RELATED_SEPARATOR.join(f"{p['pid']}:{full_name(p)}" for p in people)


def to_details(rows, describe, limit=MAX_ISSUE_DETAILS) -> list:
    return [{'pid': str(row.get('pid') or ''), 'name': participant_label(row),
             'detail': describe(row)}
            for row in rows[:limit]]


def should_show_section(total_participants) -> bool:
    return total_participants > 0


def build_issues(no_team_no_lane_no_partner=(), partner_target_multiple_owners=(),
                 participant_with_multiple_partners=(), non_reciprocal_partners=(),
                 lane_without_team=()) -> list:
    issues = []

    if no_team_no_lane_no_partner:
        issues.append({
            'key': 'no-team-no-lane-no-partner',
            'title': 'Participants with no team, no lane assignments, and no doubles partner',
            'count': len(no_team_no_lane_no_partner),
            'details': to_details(list(no_team_no_lane_no_partner),
                                  lambda row: 'Missing team, lanes, and doubles partner'),
        })

    if partner_target_multiple_owners:
        rows = list(partner_target_multiple_owners)
        details = to_details(rows, lambda row: f"Referenced by {row['affected_count']} participants")
        for detail, row in zip(details, rows):
            detail['relatedParticipants'] = parse_participant_list(row.get('affected_participants'))
        issues.append({
            'key': 'partner-target-multiple-owners',
            'title': 'Participants listed as doubles partner for multiple people',
            'count': len(rows),
            'details': details,
        })

    if participant_with_multiple_partners:
        rows = list(participant_with_multiple_partners)
        details = to_details(rows, lambda row: f"Has {row['affected_count']} partners")
        for detail, row in zip(details, rows):
            detail['relatedParticipants'] = parse_participant_list(row.get('partner_list'))
        issues.append({
            'key': 'participant-with-multiple-partners',
            'title': 'Participants assigned to multiple doubles partners',
            'count': len(rows),
            'details': details,
        })

    if non_reciprocal_partners:
        rows = list(non_reciprocal_partners)

        def describe(row):
            if not row.get('partner_pid'):
                return 'Missing partner PID in doubles pair mapping'
            return (f"Points to {row.get('partner_name') or 'unknown'} ({row['partner_pid']}) "
                    'but reverse mapping is missing')

        details = to_details(rows, describe)
        for detail, row in zip(details, rows):
            partner_pid = row.get('partner_pid')
            detail['relatedParticipants'] = (
                [{'pid': str(partner_pid), 'name': row.get('partner_name') or partner_pid}]
                if partner_pid else []
            )
        issues.append({
            'key': 'non-reciprocal-doubles-partners',
            'title': 'Non-reciprocal doubles partner mappings',
            'count': len(rows),
            'details': details,
        })

    if lane_without_team:
        issues.append({
            'key': 'lane-without-team',
            'title': 'Participants with lane assignments but no team',
            'count': len(lane_without_team),
            'details': to_details(list(lane_without_team),
                                  lambda row: f"Assigned lanes: {row.get('lanes') or 'unknown'}"),
        })

    return issues


def _group_related(rows, key_fields, related_fields, count_key, list_key) -> list:
    """Collapse (owner, related) rows into one row per owner with a count and
    a ``pid:name`` list of distinct related participants."""
    grouped = {}
    for row in rows:
        key = tuple(row[f] for f in key_fields)
        entry = grouped.setdefault(key, {**{f: row[f] for f in key_fields}, '_related': {}})
        related_pid = row[related_fields[0]]
        entry['_related'].setdefault(related_pid, {
            'pid': related_pid,
            'first_name': row.get(related_fields[1]),
            'last_name': row.get(related_fields[2]),
        })
    result = []
    for entry in grouped.values():
        related = sorted(entry.pop('_related').values(),
                         key=lambda p: ((p['last_name'] or ''), (p['first_name'] or '')))
        if len(related) <= 1:
            continue
        entry[count_key] = len(related)
        entry[list_key] = format_participant_list(related)
        result.append(entry)
    result.sort(key=lambda e: (-e[count_key], e.get('last_name') or '', e.get('first_name') or ''))
    return result


def fetch_coverage(conn) -> dict:
    total = fetch_one(conn, f'SELECT COUNT(*) AS count FROM people p WHERE {_NOT_ADMIN}')
    with_lane = fetch_one(
        conn,
        f"""
        SELECT COUNT(DISTINCT s.pid) AS count
        FROM scores s JOIN people p ON p.pid = s.pid
        WHERE {_NOT_ADMIN} AND {_HAS_LANE}
        """,
    )
    return {'totalParticipants': total['count'], 'participantsWithLane': with_lane['count']}


def fetch_no_team_no_lane_no_partner(conn) -> list:
    return fetch_all(
        conn,
        f"""
        SELECT p.pid, p.first_name, p.last_name
        FROM people p
        WHERE {_NOT_ADMIN} AND {_NO_TEAM}
          AND NOT EXISTS (SELECT 1 FROM scores s WHERE s.pid = p.pid AND {_HAS_LANE})
          AND NOT EXISTS (SELECT 1 FROM doubles_pairs dp
                          WHERE dp.pid = p.pid AND dp.partner_pid IS NOT NULL)
          AND NOT EXISTS (SELECT 1 FROM doubles_pairs dp WHERE dp.partner_pid = p.pid)
        ORDER BY p.last_name, p.first_name
        """,
    )


def fetch_partner_target_multiple_owners(conn) -> list:
    rows = fetch_all(
        conn,
        """
        SELECT dp.partner_pid AS pid, pp.first_name, pp.last_name,
               dp.pid AS owner_pid, p.first_name AS owner_first, p.last_name AS owner_last
        FROM doubles_pairs dp
        LEFT JOIN people pp ON pp.pid = dp.partner_pid
        LEFT JOIN people p ON p.pid = dp.pid
        WHERE dp.partner_pid IS NOT NULL
        """,
    )
    return _group_related(rows, ('pid', 'first_name', 'last_name'),
                          ('owner_pid', 'owner_first', 'owner_last'),
                          'affected_count', 'affected_participants')


def fetch_participant_with_multiple_partners(conn) -> list:
    rows = fetch_all(
        conn,
        """
        SELECT dp.pid, p.first_name, p.last_name,
               dp.partner_pid, pp.first_name AS partner_first, pp.last_name AS partner_last
        FROM doubles_pairs dp
        JOIN people p ON p.did = dp.did
        LEFT JOIN people pp ON pp.pid = dp.partner_pid
        WHERE dp.partner_pid IS NOT NULL
        """,
    )
    return _group_related(rows, ('pid', 'first_name', 'last_name'),
                          ('partner_pid', 'partner_first', 'partner_last'),
                          'affected_count', 'partner_list')


def fetch_non_reciprocal_partners(conn) -> list:
    return fetch_all(
        conn,
        """
        SELECT dp.pid, p.first_name, p.last_name, dp.partner_pid,
               trim(coalesce(pp.first_name, '') || ' ' || coalesce(pp.last_name, ''))
                   AS partner_name
        FROM doubles_pairs dp
        LEFT JOIN doubles_pairs rev ON rev.pid = dp.partner_pid AND rev.partner_pid = dp.pid
        LEFT JOIN people p ON p.pid = dp.pid
        LEFT JOIN people pp ON pp.pid = dp.partner_pid
        WHERE dp.partner_pid IS NOT NULL AND rev.pid IS NULL
        ORDER BY p.last_name, p.first_name
        """,
    )


def fetch_lane_without_team(conn) -> list:
    rows = fetch_all(
        conn,
        f"""
        SELECT p.pid, p.first_name, p.last_name, s.event_type, s.lane
        FROM people p
        JOIN scores s ON s.pid = p.pid AND {_HAS_LANE}
        WHERE {_NOT_ADMIN} AND {_NO_TEAM}
        ORDER BY p.last_name, p.first_name, s.event_type
        """,
    )
    grouped = {}
    for row in rows:
        entry = grouped.setdefault(row['pid'], {'pid': row['pid'], 'first_name': row['first_name'],
                                                'last_name': row['last_name'], 'lanes': []})
        lane = f"{row['event_type']}:{row['lane']}"
        if lane not in entry['lanes']:
            entry['lanes'].append(lane)
    for entry in grouped.values():
        entry['lanes'] = ', '.join(entry['lanes'])
    return list(grouped.values())


def build_report(conn) -> dict:
    coverage = fetch_coverage(conn)
    issues = build_issues(
        no_team_no_lane_no_partner=fetch_no_team_no_lane_no_partner(conn),
        partner_target_multiple_owners=fetch_partner_target_multiple_owners(conn),
        participant_with_multiple_partners=fetch_participant_with_multiple_partners(conn),
        non_reciprocal_partners=fetch_non_reciprocal_partners(conn),
        lane_without_team=fetch_lane_without_team(conn),
    )
    total = coverage['totalParticipants']
    with_lane = coverage['participantsWithLane']
    coverage['laneCoveragePct'] = round(with_lane * 100 / total, 2) if total else 0
    return {
        'showSection': should_show_section(total) and bool(issues),
        'coverage': coverage,
        'issues': issues,
    }
