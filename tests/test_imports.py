"""
Tests for the admin CSV imports: lanes, scores, Scratch Masters entries and
optional events entries.
"""
import sqlite3

import pytest

from core import lanes_import, optional_events_import, scores_import
from core.csv_import import MAX_CSV_SIZE_BYTES, NO_PARTICIPANTS_MATCHED_ERROR
from conftest import add_score

LANES_CSV = (
    'PID,FirstName,LastName,Team_Name,T_Lane,D_Lane,S_Lane\n'
    'P1,Alice,Anders,Pin Pals,12,#N/A,\n'
    'P9,Zed,Zero,,1,2,3\n'
    ',No,Pid,,1,1,1\n'
)

TEAM_GAME = '2/13/ 7:00 PM  T1-Teams 1'
SCORES_CSV = (
    'Game name,Bowler name,Scratch,Game number,Team name,Lane number\n'
    f'{TEAM_GAME},Alice Anders,180,1,Pin Pals,12\n'
    f'{TEAM_GAME},Alice Anders,190,2,Pin Pals,12\n'
    f'{TEAM_GAME},Alice Anders,200,3,Pin Pals,12\n'
    f'{TEAM_GAME},CC Cole,150,1,Split Hap,14\n'
    f'{TEAM_GAME},Nobody Known,99,1,Pin Pals,12\n'
)

SCRATCH_MASTERS_CSV = (
    'Bowler Name,SM?\n'
    'Alice Anders,1\n'
    'CC Cole,1\n'
    'Bob Baker,0\n'
    'Nobody Here,1\n'
)

OPTIONAL_EVENTS_CSV = (
    'EID,Last,First,Best 3 of 9,Optional Scratch,All Events Hdcp\n'
    'P1,Anders,Alice,1,0,1\n'
    'X99,Cole,Cara,0,1,0\n'
    'X98,Nobody,Some,1,1,1\n'
)


def score_row(conn, pid, event_type):
    row = conn.execute('SELECT * FROM scores WHERE pid = ? AND event_type = ?',
                       (pid, event_type)).fetchone()
    return dict(row) if row else None


def audit_fields(conn, pid):
    rows = conn.execute('SELECT field, old_value, new_value FROM audit_logs WHERE pid = ? '
                        'ORDER BY field', (pid,)).fetchall()
    return [tuple(row) for row in rows]


def logged_actions(conn):
    return [row[0] for row in conn.execute('SELECT action FROM admin_actions')]


class TestImportRequests:
    """Request validation shared by every CSV import."""

    @pytest.fixture(params=[
        '/api/portal/admin/import-lanes',
        '/api/portal/admin/scratch-masters/import',
        '/api/portal/admin/optional-events/import',
    ])
    def path(self, request):
        return request.param

    def test_requires_super_admin(self, client, tournament_admin, path):
        assert client.post(path, json={'csvText': 'a', 'mode': 'preview'}).status_code == 403

    def test_csv_required(self, client, super_admin, path):
        response = client.post(path, json={'mode': 'preview'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'csvText is required.'

    def test_mode_required(self, client, super_admin, path):
        response = client.post(path, json={'csvText': 'a,b\n1,2\n'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'mode must be "preview" or "import".'

    def test_too_large(self, client, super_admin, path):
        response = client.post(path, json={'csvText': 'x' * (MAX_CSV_SIZE_BYTES + 1),
                                           'mode': 'preview'})
        assert response.status_code == 413
        assert response.get_json()['error'] == 'CSV too large.'

    def test_header_only(self, client, super_admin, path):
        response = client.post(path, json={'csvText': 'PID,T_Lane,D_Lane,S_Lane\n',
                                           'mode': 'preview'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'CSV file is empty or has no data rows.'


class TestLaneImport:
    """Tests for POST /api/portal/admin/import-lanes."""

    def test_missing_columns(self, client, super_admin):
        response = client.post('/api/portal/admin/import-lanes',
                               json={'csvText': 'PID,T_Lane\nP1,3\n', 'mode': 'preview'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Missing required columns: D_Lane, S_Lane'

    def test_preview(self, client, conn, roster, super_admin):
        response = client.post('/api/portal/admin/import-lanes',
                               json={'csvText': LANES_CSV, 'mode': 'preview'})
        assert response.status_code == 200
        data = response.get_json()
        assert data['ok'] is True
        assert data['matched'] == [{
            'pid': 'P1', 'firstName': 'Alice', 'lastName': 'Anders', 'teamName': 'Pin Pals',
            'lanes': {'team': 12, 'doubles': None, 'singles': None},
        }]
        assert [u['reason'] for u in data['unmatched']] == ['Missing PID', 'PID not found']
        assert score_row(conn, 'P1', 'team') is None

    def test_import(self, client, conn, roster, super_admin):
        response = client.post('/api/portal/admin/import-lanes',
                               json={'csvText': LANES_CSV, 'mode': 'import'})
        assert response.get_json() == {'ok': True, 'summary': {'updated': 1, 'skipped': 0}}
        assert score_row(conn, 'P1', 'team')['lane'] == 12
        assert audit_fields(conn, 'P1') == [('lane_team', '', '12')]
        assert logged_actions(conn) == ['import_lanes']

    def test_blank_lane_keeps_existing(self, client, conn, roster, super_admin):
        add_score(conn, 'P2', 'singles', lane=5)
        csv_text = 'PID,T_Lane,D_Lane,S_Lane\nP2,,,\n'
        response = client.post('/api/portal/admin/import-lanes',
                               json={'csvText': csv_text, 'mode': 'import'})
        assert response.get_json()['summary'] == {'updated': 0, 'skipped': 1}
        assert score_row(conn, 'P2', 'singles')['lane'] == 5

    def test_duplicate_pid_last_row_wins(self, conn, roster):
        rows = [{'PID': 'P1', 'T_Lane': '1', 'D_Lane': '', 'S_Lane': ''},
                {'PID': 'P1', 'T_Lane': '2', 'D_Lane': '', 'S_Lane': ''}]
        result = lanes_import.match_participants(conn, rows)
        assert result['matched'][0]['lanes']['team'] == 2
        assert result['unmatched'][0]['reason'] == (
            'Duplicate PID in CSV; earlier occurrence skipped')

    def test_nothing_matched(self, client, roster, super_admin):
        csv_text = 'PID,T_Lane,D_Lane,S_Lane\nP99,1,2,3\n'
        response = client.post('/api/portal/admin/import-lanes',
                               json={'csvText': csv_text, 'mode': 'import'})
        assert response.status_code == 400
        assert response.get_json()['error'] == NO_PARTICIPANTS_MATCHED_ERROR

    def test_database_failure(self, client, conn, roster, super_admin, monkeypatch):
        def broken(*args, **kwargs):
            raise sqlite3.OperationalError('disk I/O error')

        monkeypatch.setattr(lanes_import, 'import_lanes', broken)
        response = client.post('/api/portal/admin/import-lanes',
                               json={'csvText': LANES_CSV, 'mode': 'import'})
        assert response.status_code == 500
        assert response.get_json()['error'] == 'Lane import failed.'
        assert logged_actions(conn) == []


class TestScoreImportHelpers:
    """Tests for score CSV parsing and matching rules."""

    def test_detect_event_type(self):
        assert scores_import.detect_csv_event_type([{'Game name': TEAM_GAME}]) == 'team'
        assert scores_import.detect_csv_event_type([{'Game name': 'D2-Doubles'}]) == 'doubles'
        assert scores_import.detect_csv_event_type([{'Game name': 'Practice'}]) is None

    def test_pivot(self):
        rows = [
            {'Bowler name': 'Alice Anders', 'Scratch': '180', 'Game number': '1',
             'Team name': 'Pin Pals', 'Lane number': '12'},
            {'Bowler name': 'alice anders', 'Scratch': '201', 'Game number': '3',
             'Team name': 'Pin Pals', 'Lane number': '12'},
            {'Bowler name': '', 'Scratch': '100', 'Game number': '1'},
        ]
        bowlers = scores_import.pivot_rows_by_bowler(rows)
        assert list(bowlers) == ['alice anders']
        assert bowlers['alice anders']['game1'] == 180
        assert bowlers['alice anders']['game2'] is None
        assert bowlers['alice anders']['game3'] == 201

    @pytest.mark.parametrize('csv_name,db_name,expected', [
        ('Pin', 'Pin Pals', True),
        ('Pin Pals Forever', 'Pin Pals', True),
        ('Lane 14', 'Pin Pals', True),
        ('Gutter Gang', 'Pin Pals', False),
        ('', 'Pin Pals', True),
    ])
    def test_team_names_match(self, csv_name, db_name, expected):
        assert scores_import.team_names_match(csv_name, db_name) is expected


class TestScoreImport:
    """Tests for POST /api/portal/admin/import-scores."""

    def test_event_type_required(self, client, super_admin):
        response = client.post('/api/portal/admin/import-scores',
                               json={'csvText': SCORES_CSV, 'mode': 'preview'})
        assert response.status_code == 400
        assert response.get_json()['error'] == (
            'eventType must be "team", "doubles", or "singles".')

    def test_event_type_mismatch(self, client, roster, super_admin):
        response = client.post('/api/portal/admin/import-scores', json={
            'csvText': SCORES_CSV, 'mode': 'preview', 'eventType': 'doubles'})
        assert response.status_code == 400
        assert response.get_json()['error'].startswith(
            'event_type_mismatch: CSV contains team scores but you selected doubles.')

    def test_preview(self, client, conn, roster, super_admin):
        add_score(conn, 'P3', 'team', lane=15)
        response = client.post('/api/portal/admin/import-scores', json={
            'csvText': SCORES_CSV, 'mode': 'preview', 'eventType': 'team'})
        data = response.get_json()
        assert [m['pid'] for m in data['matched']] == ['P1', 'P3']
        assert data['unmatched'] == [{'name': 'Nobody Known', 'csvTeamName': 'Pin Pals',
                                      'reason': 'Name not found in database'}]
        assert data['warnings'] == [{'pid': 'P3', 'name': 'CC Cole', 'type': 'lane_mismatch',
                                     'expected': '15', 'actual': '14'}]

    def test_team_mismatch_warning(self, client, roster, super_admin):
        csv_text = (
            'Game name,Bowler name,Scratch,Game number,Team name,Lane number\n'
            f'{TEAM_GAME},Alice Anders,180,1,Gutter Gang,12\n'
        )
        response = client.post('/api/portal/admin/import-scores', json={
            'csvText': csv_text, 'mode': 'preview', 'eventType': 'team'})
        data = response.get_json()
        assert [m['pid'] for m in data['matched']] == ['P1']
        assert data['warnings'] == [{'pid': 'P1', 'name': 'Alice Anders', 'type': 'team_mismatch',
                                     'expected': 'Pin Pals', 'actual': 'Gutter Gang'}]

    def test_non_finite_cells_are_blank(self, client, roster, super_admin):
        csv_text = (
            'Game name,Bowler name,Scratch,Game number,Team name,Lane number\n'
            f'{TEAM_GAME},Alice Anders,inf,1,Pin Pals,12\n'
            f'{TEAM_GAME},Alice Anders,1e999,2,Pin Pals,12\n'
            f'{TEAM_GAME},Alice Anders,200,3,Pin Pals,12\n'
        )
        response = client.post('/api/portal/admin/import-scores', json={
            'csvText': csv_text, 'mode': 'preview', 'eventType': 'team'})
        assert response.status_code == 200
        assert [m['pid'] for m in response.get_json()['matched']] == ['P1']

    def test_import_keeps_games_missing_from_csv(self, client, conn, roster, super_admin):
        add_score(conn, 'P3', 'team', games=(140, 145, 155))
        response = client.post('/api/portal/admin/import-scores', json={
            'csvText': SCORES_CSV, 'mode': 'import', 'eventType': 'team'})
        assert response.get_json()['summary'] == {'updated': 2, 'skipped': 0}

        alice = score_row(conn, 'P1', 'team')
        assert (alice['game1'], alice['game2'], alice['game3']) == (180, 190, 200)
        cara = score_row(conn, 'P3', 'team')
        assert (cara['game1'], cara['game2'], cara['game3']) == (150, 145, 155)
        assert audit_fields(conn, 'P3') == [('score_team_game1', '140', '150')]
        assert logged_actions(conn) == ['import_scores']

    def test_reimport_is_skipped(self, client, roster, super_admin):
        body = {'csvText': SCORES_CSV, 'mode': 'import', 'eventType': 'team'}
        client.post('/api/portal/admin/import-scores', json=body)
        response = client.post('/api/portal/admin/import-scores', json=body)
        assert response.get_json()['summary'] == {'updated': 0, 'skipped': 2}

    def test_doubles_require_partners(self, client, conn, roster, super_admin):
        csv_text = (
            'Game name,Bowler name,Scratch,Game number,Team name,Lane number\n'
            'D1-Doubles,Alice Anders,180,1,Lane 3,3\n'
            'D1-Doubles,Cara Cole,170,1,Lane 4,4\n'
        )
        body = {'csvText': csv_text, 'eventType': 'doubles'}
        preview = client.post('/api/portal/admin/import-scores',
                              json={**body, 'mode': 'preview'}).get_json()
        assert preview['warnings'] == [{'pid': 'P3', 'name': 'Cara Cole',
                                        'type': 'no_doubles_partner'}]

        response = client.post('/api/portal/admin/import-scores', json={**body, 'mode': 'import'})
        assert response.status_code == 400
        assert response.get_json()['error'].startswith(
            'Cannot import doubles scores: 1 bowler(s) have no doubles partner')
        assert score_row(conn, 'P1', 'doubles') is None


class TestScratchMastersImport:
    """Tests for POST /api/portal/admin/scratch-masters/import."""

    def test_preview(self, client, roster, super_admin):
        response = client.post('/api/portal/admin/scratch-masters/import',
                               json={'csvText': SCRATCH_MASTERS_CSV, 'mode': 'preview'})
        data = response.get_json()
        assert {m['pid']: m['scratchMasters'] for m in data['matched']} == {
            'P1': 1, 'P3': 1, 'P2': 0}
        assert data['unmatched'] == [{'name': 'Nobody Here', 'reason': 'Name not found'}]
        assert {u['pid']: u['scratchMasters'] for u in data['updates']} == {
            'P1': 1, 'P2': 0, 'P3': 1, 'P4': 0}

    def test_import_resets_unlisted_participants(self, client, conn, roster, super_admin):
        conn.execute("UPDATE people SET scratch_masters = 1 WHERE pid = 'P4'")
        response = client.post('/api/portal/admin/scratch-masters/import',
                               json={'csvText': SCRATCH_MASTERS_CSV, 'mode': 'import'})
        assert response.get_json()['summary'] == {'updated': 3, 'unchanged': 1,
                                                  'auditLogged': True}
        flags = dict(conn.execute('SELECT pid, scratch_masters FROM people').fetchall())
        assert flags == {'P1': 1, 'P2': 0, 'P3': 1, 'P4': 0}
        assert audit_fields(conn, 'P4') == [('scratch_masters', '1', '0')]
        assert logged_actions(conn) == ['import_scratch_masters']

    def test_header_alias(self, client, roster, super_admin):
        response = client.post('/api/portal/admin/scratch-masters/import',
                               json={'csvText': 'Bowler name,SM\nAlice Anders,1\n',
                                     'mode': 'preview'})
        assert response.get_json()['matched'][0]['pid'] == 'P1'

    def test_invalid_flag(self, client, roster, super_admin):
        response = client.post('/api/portal/admin/scratch-masters/import',
                               json={'csvText': 'Bowler Name,SM?\nAlice Anders,yes\n',
                                     'mode': 'preview'})
        assert response.status_code == 400
        assert response.get_json()['error'] == (
            'Row for "Alice Anders" has invalid SM? value; expected 0 or 1.')

    def test_conflicting_duplicates(self, client, roster, super_admin):
        csv_text = 'Bowler Name,SM?\nAlice Anders,1\nalice anders,0\n'
        response = client.post('/api/portal/admin/scratch-masters/import',
                               json={'csvText': csv_text, 'mode': 'preview'})
        assert response.status_code == 400
        assert 'conflicting duplicate rows' in response.get_json()['error']

    def test_ambiguous_name(self, client, conn, roster, super_admin):
        from conftest import add_person
        add_person(conn, 'P5', 'Alice', 'Anders')
        response = client.post('/api/portal/admin/scratch-masters/import',
                               json={'csvText': 'Bowler Name,SM?\nAlice Anders,1\n',
                                     'mode': 'preview'})
        assert response.get_json()['unmatched'] == [
            {'name': 'Alice Anders', 'reason': 'Multiple participant matches'}]


class TestOptionalEventsImport:
    """Tests for POST /api/portal/admin/optional-events/import."""

    def test_preview_matches_by_eid_then_name(self, client, roster, super_admin):
        response = client.post('/api/portal/admin/optional-events/import',
                               json={'csvText': OPTIONAL_EVENTS_CSV, 'mode': 'preview'})
        data = response.get_json()
        assert [m['pid'] for m in data['matched']] == ['P1', 'P3']
        assert data['warnings'] == [
            'Matched "Cara Cole" by name because EID "X99" was not found.']
        assert data['unmatched'] == [{'name': 'Some Nobody', 'reason': 'EID/name not found'}]

    def test_import(self, client, conn, roster, super_admin):
        response = client.post('/api/portal/admin/optional-events/import',
                               json={'csvText': OPTIONAL_EVENTS_CSV, 'mode': 'import'})
        assert response.get_json()['summary'] == {'updated': 2, 'unchanged': 2,
                                                  'auditLogged': True}
        rows = {row['pid']: dict(row) for row in conn.execute(
            'SELECT pid, optional_events, optional_best_3_of_9, optional_scratch, '
            'optional_all_events_hdcp FROM people')}
        assert rows['P1']['optional_best_3_of_9'] == 1
        assert rows['P1']['optional_all_events_hdcp'] == 1
        assert rows['P1']['optional_events'] == 1
        assert rows['P3']['optional_scratch'] == 1
        assert rows['P2']['optional_events'] == 0
        assert logged_actions(conn) == ['import_optional_events']

    def test_byte_order_mark_on_eid_header(self, client, roster, super_admin):
        assert optional_events_import.validate_columns(
            ['\ufeffEID', 'Last', 'First', 'Best 3 of 9', 'Optional Scratch',
             'All Events Hdcp'])['header_map']['EID'] == '\ufeffEID'
        response = client.post('/api/portal/admin/optional-events/import',
                               json={'csvText': '\ufeff' + OPTIONAL_EVENTS_CSV, 'mode': 'preview'})
        assert response.status_code == 200
        assert [m['pid'] for m in response.get_json()['matched']] == ['P1', 'P3']

    def test_conflicting_eid_rows(self, client, roster, super_admin):
        csv_text = (
            'EID,Last,First,Best 3 of 9,Optional Scratch,All Events Hdcp\n'
            'P1,Anders,Alice,1,0,0\n'
            'P1,Anders,Alice,0,0,0\n'
        )
        response = client.post('/api/portal/admin/optional-events/import',
                               json={'csvText': csv_text, 'mode': 'preview'})
        assert response.status_code == 400
        assert response.get_json()['error'] == (
            'EID "P1" has conflicting duplicate rows; import blocked.')


@pytest.mark.slow
class TestImportSequence:
    """Lanes, then scores, then standings, the way the tournament desk runs them."""

    def test_lanes_scores_standings(self, client, conn, roster, super_admin):
        lanes = 'PID,T_Lane,D_Lane,S_Lane\nP1,12,,\nP2,12,,\nP3,14,,\nP4,14,,\n'
        assert client.post('/api/portal/admin/import-lanes',
                           json={'csvText': lanes, 'mode': 'import'}).status_code == 200

        scores = (
            'Game name,Bowler name,Scratch,Game number,Team name,Lane number\n'
            f'{TEAM_GAME},Alice Anders,200,1,Pin Pals,12\n'
            f'{TEAM_GAME},Bob Baker,150,1,Pin Pals,12\n'
            f'{TEAM_GAME},CC Cole,170,1,Split Happens,14\n'
            f'{TEAM_GAME},Dan Diaz,160,1,Split Happens,14\n'
        )
        response = client.post('/api/portal/admin/import-scores', json={
            'csvText': scores, 'mode': 'import', 'eventType': 'team'})
        assert response.get_json()['summary'] == {'updated': 4, 'skipped': 0}

        standings = client.get('/api/portal/scores').get_json()
        assert [t['teamName'] for t in standings['team']] == ['Pin Pals', 'Split Happens']
        assert standings['team'][0]['game1'] == 350
        assert standings['team'][1]['game1'] == 330

        lanes_view = client.get('/api/portal/admin/lane-assignments').get_json()
        assert lanes_view['team']
