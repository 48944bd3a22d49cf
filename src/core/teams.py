"""
Team pages: roster order, location and team game scores.
"""
from core.db import fetch_all, fetch_one
from core.names import full_name, to_team_slug
from core.scoring import EVENT_TEAM, non_null

_LAST = float('inf')


def _team_order_key(member):
    order = member.get('team_order')
    return (
        _LAST if order is None else order,
        (member.get('last_name') or '').casefold(),
        (member.get('first_name') or '').casefold(),
    )


def resolve_partner(member, by_pid, pids_by_did):
    """Teammate who bowls doubles with ``member``, if any."""
    partner_pid = member.get('partner_pid')
    if partner_pid and partner_pid in by_pid:
        return by_pid[partner_pid]
    did = member.get('did')
    if did:
        for pid in pids_by_did.get(did, []):
            if pid != member['pid'] and pid in by_pid:
                return by_pid[pid]
    first = member.get('partner_first_name')
    last = member.get('partner_last_name')
    if first and last:
        for person in by_pid.values():
            if (person['pid'] != member['pid']
                    and (person.get('first_name') or '').lower() == first.lower()
                    and (person.get('last_name') or '').lower() == last.lower()):
                return person
    return None


def order_roster(members) -> list:
    """Captain first, then the captain's partner, then by team order with
    each member followed by their doubles partner."""
    if not members:
        return []
    by_pid = {m['pid']: m for m in members}
    pids_by_did = {}
    for member in members:
        if member.get('did'):
            pids_by_did.setdefault(member['did'], []).append(member['pid'])

    partners = {m['pid']: resolve_partner(m, by_pid, pids_by_did) for m in members}

    captain = next((m for m in members if m.get('team_captain')), None)
    if captain is None:
        return [dict(m, partner=partners[m['pid']]) for m in sorted(members, key=_team_order_key)]

    ordered = []
    used = set()

    def take(member):
        ordered.append(dict(member, partner=partners[member['pid']]))
        used.add(member['pid'])

    take(captain)
    if partners[captain['pid']]:
        take(partners[captain['pid']])

    for member in sorted(members, key=_team_order_key):
        if member['pid'] in used:
            continue
        take(member)
        partner = partners[member['pid']]
        if partner and partner['pid'] not in used:
            take(partner)
    return ordered


def _has_location(member) -> bool:
    return bool(member.get('city') or member.get('region') or member.get('country'))


def team_location(members):
    source = (next((m for m in members if m.get('team_captain') and _has_location(m)), None)
              or next((m for m in members if _has_location(m)), None))
    if source is None:
        return None
    return {'city': source.get('city') or '', 'region': source.get('region') or '',
            'country': source.get('country') or ''}


def team_scores(members) -> list:
    source = next((m for m in members
                   if any(m.get(f'team_game{n}') is not None for n in (1, 2, 3))), None)
    if source is None:
        return []
    return non_null([source.get('team_game1'), source.get('team_game2'),
                     source.get('team_game3')])


def find_team(conn, slug):
    for team in fetch_all(conn, 'SELECT * FROM teams'):
        if team['slug'] == slug or to_team_slug(team['team_name']) == slug:
            return team
    return None


def participant_team_slug(conn, pid):
    row = fetch_one(
        conn,
        'SELECT t.team_name, t.slug FROM people p LEFT JOIN teams t ON p.tnmt_id = t.tnmt_id '
        'WHERE p.pid = ?',
        (pid,),
    )
    if not row:
        return None
    return row['slug'] or (to_team_slug(row['team_name']) if row['team_name'] else None)


def participant_may_view(conn, pid, slug) -> bool:
    own_slug = participant_team_slug(conn, pid)
    if not own_slug:
        return False
    return to_team_slug(slug or '') in {own_slug, to_team_slug(own_slug)}


def fetch_members(conn, tnmt_id) -> list:
    return fetch_all(
        conn,
        """
        SELECT p.pid, p.first_name, p.last_name, p.city, p.region, p.country, p.tnmt_id,
               p.did, p.team_captain, p.team_order,
               d.partner_pid, d.partner_first_name, d.partner_last_name,
               s.game1 AS team_game1, s.game2 AS team_game2, s.game3 AS team_game3
        FROM people p
        LEFT JOIN doubles_pairs d ON d.pid = p.pid
        LEFT JOIN scores s ON s.pid = p.pid AND s.event_type = ?
        WHERE p.tnmt_id = ?
        """,
        (EVENT_TEAM, tnmt_id),
    )


def build_team_page(team, members) -> dict:
    ordered = order_roster(members)
    roster = [{
        'pid': member['pid'],
        'name': full_name(member),
        'isCaptain': bool(member.get('team_captain')),
        'teamOrder': member.get('team_order'),
        'doublesPartnerPid': member['partner']['pid'] if member['partner'] else '',
        'doublesPartnerName': full_name(member['partner']) if member['partner'] else '',
    } for member in ordered]
    return {
        'team': {
            'tnmtId': team['tnmt_id'],
            'name': team['team_name'],
            'slug': team['slug'],
            'scores': team_scores(ordered),
            'location': team_location(ordered),
        },
        'roster': roster,
    }
