"""
Standings for the team, doubles and singles events, Scratch Masters and the
optional side events.

Builders take plain row dicts so they can be exercised without a database;
``fetch_*`` functions run the queries that feed them.
"""
from core.db import fetch_all
from core.names import display_name
from core.scoring import (DIVISION_LABELS, DIVISION_ORDER, EVENT_DOUBLES, EVENT_SINGLES,
                          EVENT_TEAM, EVENT_TYPES, GAMES_PER_EVENT, sum_nullable, to_int)

SCRATCH_EVENT_SCORE_KEYS = {
    EVENT_TEAM: ('t1', 't2', 't3'),
    EVENT_DOUBLES: ('d1', 'd2', 'd3'),
    EVENT_SINGLES: ('s1', 's2', 's3'),
}


def _by_total_nulls_last(field):
    def key(entry):
        value = entry.get(field)
        return (value is None, -(value or 0))
    return key


def _by_field_then_name(field):
    def key(entry):
        value = entry.get(field)
        return (value is None, -(value or 0), (entry.get('name') or '').casefold())
    return key


def assign_ranks(entries, field='total'):
    """Sort by ``field`` descending (missing totals last) and number from 1."""
    entries.sort(key=_by_total_nulls_last(field))
    for i, entry in enumerate(entries, start=1):
        entry['rank'] = i
    return entries


def rank_by_field_and_name(entries, field):
    entries.sort(key=_by_field_then_name(field))
    for i, entry in enumerate(entries, start=1):
        entry['rank'] = i
    return entries


def compute_totals(game1, game2, game3, hdcp):
    """Scratch and handicapped totals, only when all three games are in."""
    if game1 is None or game2 is None or game3 is None:
        return None, None
    total_scratch = game1 + game2 + game3
    return total_scratch, total_scratch + hdcp


def _has_game_data(entry) -> bool:
    return any(entry.get(f'game{n}') is not None for n in (1, 2, 3))


def build_team_standings(rows) -> list:
    teams = {}
    for row in rows:
        team = teams.setdefault(row['tnmt_id'], {
            'teamName': row['team_name'],
            'teamSlug': row['slug'],
            'members': [],
        })
        team['members'].append(row)

    entries = []
    for team in teams.values():
        members = team['members']
        games = [sum_nullable(m.get(f'game{n}') for m in members) for n in (1, 2, 3)]
        hdcp = sum(m.get('handicap') or 0 for m in members) * GAMES_PER_EVENT
        total_scratch, total = compute_totals(*games, hdcp)
        entries.append({
            'rank': 0,
            'teamName': team['teamName'],
            'teamSlug': team['teamSlug'],
            'game1': games[0],
            'game2': games[1],
            'game3': games[2],
            'totalScratch': total_scratch,
            'hdcp': hdcp,
            'total': total,
        })
    return assign_ranks([e for e in entries if _has_game_data(e)])


def _individual_entry(row) -> dict:
    hdcp = (row.get('handicap') or 0) * GAMES_PER_EVENT
    total_scratch, total = compute_totals(row.get('game1'), row.get('game2'), row.get('game3'),
                                          hdcp)
    return {
        'pid': row['pid'],
        'name': display_name(row),
        'game1': row.get('game1'),
        'game2': row.get('game2'),
        'game3': row.get('game3'),
        'totalScratch': total_scratch,
        'hdcp': hdcp,
        'total': total,
    }


def build_doubles_standings(rows) -> list:
    pairs = {}
    for row in rows:
        pairs.setdefault(row['did'], []).append(row)

    entries = []
    for raw_members in pairs.values():
        members = [_individual_entry(m) for m in raw_members]
        if not any(_has_game_data(m) for m in members):
            continue
        complete = all(m['totalScratch'] is not None for m in members)
        doubles_scratch = sum(m['totalScratch'] for m in members) if complete else None
        doubles_total = sum(m['total'] for m in members) if complete else None
        entries.append({
            'rank': 0,
            'pairName': ' & '.join(m['name'] for m in members),
            'members': members,
            'doublesScratch': doubles_scratch,
            'doublesTotal': doubles_total,
            'total': doubles_total,
        })
    return assign_ranks(entries)


def build_singles_standings(rows) -> list:
    entries = []
    for row in rows:
        entry = _individual_entry(row)
        entry['rank'] = 0
        entries.append(entry)
    return assign_ranks([e for e in entries if _has_game_data(e)])


def build_score_standings(team_rows, doubles_rows, singles_rows) -> dict:
    return {
        'team': build_team_standings(team_rows),
        'doubles': build_doubles_standings(doubles_rows),
        'singles': build_singles_standings(singles_rows),
    }


def fetch_score_standings(conn) -> dict:
    team_rows = fetch_all(
        conn,
        """
        SELECT t.tnmt_id, t.team_name, t.slug,
               p.pid, p.first_name, p.last_name, p.nickname,
               s.game1, s.game2, s.game3, s.handicap
        FROM teams t
        JOIN people p ON p.tnmt_id = t.tnmt_id
        LEFT JOIN scores s ON s.pid = p.pid AND s.event_type = ?
        ORDER BY t.team_name
        """,
        (EVENT_TEAM,),
    )
    doubles_rows = fetch_all(
        conn,
        """
        SELECT min(dp.pid, coalesce(dp.partner_pid, dp.pid)) AS did,
               p.pid, p.first_name, p.last_name, p.nickname,
               s.game1, s.game2, s.game3, s.handicap
        FROM doubles_pairs dp
        JOIN people p ON p.pid = dp.pid
        LEFT JOIN scores s ON s.pid = p.pid AND s.event_type = ?
        ORDER BY did
        """,
        (EVENT_DOUBLES,),
    )
    singles_rows = fetch_all(
        conn,
        """
        SELECT p.pid, p.first_name, p.last_name, p.nickname,
               s.game1, s.game2, s.game3, s.handicap
        FROM people p
        JOIN scores s ON s.pid = p.pid AND s.event_type = ?
        ORDER BY p.last_name, p.first_name
        """,
        (EVENT_SINGLES,),
    )
    return build_score_standings(team_rows, doubles_rows, singles_rows)


def clear_scores(conn):
    conn.execute('DELETE FROM scores')


# Scratch Masters

def empty_scratch_masters() -> dict:
    return {division: [] for division in DIVISION_ORDER}


def build_scratch_masters(rows) -> dict:
    """Per-division standings of cumulative scratch pins across all nine games."""
    grouped = {}
    for row in rows:
        division = row.get('division')
        if not division or division not in DIVISION_LABELS:
            continue
        entry = grouped.get(row['pid'])
        if entry is None:
            entry = grouped[row['pid']] = {
                'pid': row['pid'],
                'division': division,
                'name': display_name(row),
                'scratch': 0,
                'hasScores': False,
                **{key: None for keys in SCRATCH_EVENT_SCORE_KEYS.values() for key in keys},
            }
        keys = SCRATCH_EVENT_SCORE_KEYS.get(row.get('event_type'))
        if keys:
            for key, n in zip(keys, (1, 2, 3)):
                entry[key] = row.get(f'game{n}')
        games = [g for g in (row.get('game1'), row.get('game2'), row.get('game3')) if g is not None]
        if games:
            entry['hasScores'] = True
            entry['scratch'] += sum(games)

    standings = empty_scratch_masters()
    for entry in grouped.values():
        total = entry['scratch'] if entry['hasScores'] else None
        standing = {'rank': 0, 'pid': entry['pid'], 'division': entry['division'],
                    'name': entry['name']}
        for keys in SCRATCH_EVENT_SCORE_KEYS.values():
            for key in keys:
                standing[key] = entry[key]
        standing['totalScratch'] = total
        standing['total'] = total
        standings[entry['division']].append(standing)

    for division in DIVISION_ORDER:
        rank_by_field_and_name(standings[division], 'total')
    return standings


def fetch_scratch_masters(conn) -> dict:
    placeholders = ','.join('?' * len(EVENT_TYPES))
    rows = fetch_all(
        conn,
        f"""
        SELECT p.division, p.pid, p.first_name, p.last_name, p.nickname,
               s.event_type, s.game1, s.game2, s.game3
        FROM people p
        LEFT JOIN scores s ON s.pid = p.pid AND s.event_type IN ({placeholders})
        WHERE p.division IS NOT NULL AND p.division <> '' AND p.scratch_masters = 1
        ORDER BY p.division, p.last_name, p.first_name
        """,
        EVENT_TYPES,
    )
    return build_scratch_masters(rows)


def clear_scratch_masters(conn):
    conn.execute('UPDATE people SET scratch_masters = 0')


# Optional events

def empty_optional_events() -> dict:
    return {
        'bestOf3Of9': [],
        'allEventsHandicapped': [],
        'optionalScratch': {division: [] for division in DIVISION_ORDER},
    }


def build_optional_events(rows) -> dict:
    participants = {}
    for row in rows or []:
        if not row.get('pid'):
            continue
        participant = participants.get(row['pid'])
        if participant is None:
            participant = participants[row['pid']] = {
                'pid': row['pid'],
                'division': row.get('division') or None,
                'name': display_name(row),
                'best3Of9': to_int(row.get('optional_best_3_of_9')) == 1,
                'scratch': to_int(row.get('optional_scratch')) == 1,
                'allEventsHdcp': to_int(row.get('optional_all_events_hdcp')) == 1,
                'scratchGames': [],
                'hdcpGames': [],
            }
        handicap = to_int(row.get('handicap')) or 0
        for n in (1, 2, 3):
            scratch = to_int(row.get(f'game{n}'))
            if scratch is None:
                continue
            participant['scratchGames'].append(scratch)
            participant['hdcpGames'].append(scratch + handicap)

    standings = empty_optional_events()
    for participant in participants.values():
        if not participant['hdcpGames']:
            continue
        top3 = sorted(participant['hdcpGames'], reverse=True)[:3]
        if participant['best3Of9']:
            standings['bestOf3Of9'].append({
                'rank': 0,
                'pid': participant['pid'],
                'name': participant['name'],
                'bestGame1': top3[0] if len(top3) > 0 else None,
                'bestGame2': top3[1] if len(top3) > 1 else None,
                'bestGame3': top3[2] if len(top3) > 2 else None,
                'total': sum(top3),
            })

        total_scratch = sum(participant['scratchGames'])
        total = sum(participant['hdcpGames'])
        if participant['allEventsHdcp']:
            standings['allEventsHandicapped'].append({
                'rank': 0,
                'pid': participant['pid'],
                'name': participant['name'],
                'totalScratch': total_scratch,
                'totalHdcp': total - total_scratch,
                'total': total,
            })

        division = participant['division']
        if participant['scratch'] and division in standings['optionalScratch']:
            standings['optionalScratch'][division].append({
                'rank': 0,
                'pid': participant['pid'],
                'name': participant['name'],
                'totalScratch': total_scratch,
            })

    rank_by_field_and_name(standings['bestOf3Of9'], 'total')
    rank_by_field_and_name(standings['allEventsHandicapped'], 'total')
    for division in DIVISION_ORDER:
        rank_by_field_and_name(standings['optionalScratch'][division], 'totalScratch')
    return standings


def fetch_optional_events(conn) -> dict:
    placeholders = ','.join('?' * len(EVENT_TYPES))
    rows = fetch_all(
        conn,
        f"""
        SELECT p.pid, p.first_name, p.last_name, p.nickname, p.division,
               p.optional_events, p.optional_best_3_of_9, p.optional_scratch,
               p.optional_all_events_hdcp,
               s.event_type, s.game1, s.game2, s.game3, s.handicap
        FROM people p
        LEFT JOIN scores s ON s.pid = p.pid AND s.event_type IN ({placeholders})
        WHERE p.optional_best_3_of_9 = 1 OR p.optional_scratch = 1
           OR p.optional_all_events_hdcp = 1
        ORDER BY p.last_name, p.first_name
        """,
        EVENT_TYPES,
    )
    return build_optional_events(rows)
