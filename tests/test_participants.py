"""
Tests for participant login links and participant records.
"""
from core.session import COOKIE_PARTICIPANT
from conftest import add_admin, add_score, cookie_header, login_participant


def audit_rows(conn, pid):
    rows = conn.execute('SELECT admin_email, field, old_value, new_value FROM audit_logs '
                        'WHERE pid = ? ORDER BY field', (pid,)).fetchall()
    return [dict(row) for row in rows]


class TestParticipantLogin:
    """Tests for the emailed one-time login link."""

    def test_email_required(self, client):
        response = client.post('/api/portal/participant/login', json={})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Email address is required.'

    def test_unknown_email_is_ok(self, client, conn, roster):
        response = client.post('/api/portal/participant/login',
                               json={'email': 'nobody@example.org'})
        assert response.get_json() == {'ok': True}
        assert conn.execute('SELECT COUNT(*) FROM participant_login_tokens').fetchone()[0] == 0

    def test_token_hidden_from_anonymous_callers(self, client, conn, roster):
        response = client.post('/api/portal/participant/login',
                               json={'identifier': 'Alice@Example.org'})
        assert response.get_json() == {'ok': True}
        row = conn.execute('SELECT pid FROM participant_login_tokens').fetchone()
        assert row['pid'] == 'P1'

    def test_token_returned_to_admins(self, client, roster, super_admin):
        response = client.post('/api/portal/participant/login',
                               json={'email': 'alice@example.org'})
        assert response.get_json()['token']

    def test_verify_logs_in_once(self, client, roster, super_admin):
        token = client.post('/api/portal/participant/login',
                            json={'email': 'alice@example.org'}).get_json()['token']

        response = client.get(f'/api/portal/participant/verify?token={token}')
        assert response.status_code == 302
        assert response.headers['Location'].endswith('/portal/participant/P1')
        assert 'Max-Age=172800' in cookie_header(response, COOKIE_PARTICIPANT)

        again = client.get(f'/api/portal/participant/verify?token={token}')
        assert again.status_code == 302
        assert again.headers['Location'].endswith('/portal/participant?expired=1')

    def test_verify_unknown_token(self, client):
        response = client.get('/api/portal/participant/verify?token=nope')
        assert response.headers['Location'].endswith('/portal/participant?expired=1')

    def test_logout(self, client, roster):
        login_participant(client, 'P1')
        response = client.post('/api/portal/participant/logout')
        assert 'Max-Age=0' in cookie_header(response, COOKIE_PARTICIPANT)


class TestParticipantList:
    """Tests for GET /api/portal/participants."""

    def test_requires_admin(self, client, roster):
        assert client.get('/api/portal/participants').status_code == 401
        login_participant(client, 'P1')
        assert client.get('/api/portal/participants').status_code == 401

    def test_lists_non_admins_by_last_name(self, client, conn, roster, super_admin):
        add_admin(conn, 'dan@example.org', pid='P4')
        data = client.get('/api/portal/participants').get_json()
        assert [row['pid'] for row in data] == ['P1', 'P2', 'P3']
        assert data[0]['team_name'] == 'Pin Pals'

    def test_search(self, client, roster, super_admin):
        data = client.get('/api/portal/participants?search=cole').get_json()
        assert [row['pid'] for row in data] == ['P3']


class TestGetParticipant:
    """Tests for GET /api/portal/participants/<pid>."""

    def test_requires_session(self, client, roster):
        assert client.get('/api/portal/participants/P1').status_code == 401

    def test_formatted_record(self, client, conn, roster):
        add_score(conn, 'P1', 'team', lane=12, games=(180, None, 201), entering_avg=190,
                  handicap=31)
        login_participant(client, 'P1')
        data = client.get('/api/portal/participants/P1').get_json()
        assert data['firstName'] == 'Alice'
        assert data['team'] == {'tnmtId': 'T1', 'name': 'Pin Pals', 'slug': 'pin-pals'}
        assert data['doubles'] == {'did': 'D1', 'partnerPid': 'P2', 'partnerName': 'Bob Baker'}
        assert data['lanes'] == {'team': 12, 'doubles': '', 'singles': ''}
        assert data['averages'] == {'entering': 190, 'handicap': 31}
        assert data['scores'] == {'team': [180, 201], 'doubles': [], 'singles': []}
        assert data['isAdmin'] is False

    def test_partner_found_by_shared_did(self, client, conn, roster, super_admin):
        conn.execute("UPDATE people SET did = 'D4' WHERE pid = 'P3'")
        conn.execute("DELETE FROM doubles_pairs WHERE pid = 'P3'")
        data = client.get('/api/portal/participants/P3').get_json()
        assert data['doubles']['partnerPid'] == 'P4'
        assert data['doubles']['partnerName'] == 'Dan Diaz'

    def test_unknown_pid(self, client, super_admin):
        response = client.get('/api/portal/participants/NOPE')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Participant not found.'


class TestUpdateParticipant:
    """Tests for PATCH /api/portal/participants/<pid>."""

    def test_participant_edits_contact_fields_only(self, client, conn, roster):
        login_participant(client, 'P1')
        response = client.patch('/api/portal/participants/P1', json={
            'email': 'alice@new.example.org',
            'city': 'Berkeley',
            'firstName': 'Mallory',
            'team': {'tnmtId': 'T2', 'name': 'Split Happens'},
        })
        assert response.status_code == 200
        data = response.get_json()
        assert data['email'] == 'alice@new.example.org'
        assert data['city'] == 'Berkeley'
        assert data['firstName'] == 'Alice'
        assert data['team']['tnmtId'] == 'T1'
        assert audit_rows(conn, 'P1') == [
            {'admin_email': 'participant:P1', 'field': 'city', 'old_value': 'Oakland',
             'new_value': 'Berkeley'},
            {'admin_email': 'participant:P1', 'field': 'email',
             'old_value': 'alice@example.org', 'new_value': 'alice@new.example.org'},
        ]

    def test_participant_cannot_edit_someone_else(self, client, roster):
        login_participant(client, 'P1')
        response = client.patch('/api/portal/participants/P2', json={'city': 'Reno'})
        assert response.status_code == 403

    def test_anonymous_rejected(self, client, roster):
        assert client.patch('/api/portal/participants/P1', json={}).status_code == 401

    def test_admin_full_update(self, client, conn, roster, super_admin):
        record = client.get('/api/portal/participants/P4').get_json()
        record['lanes'] = {'team': '7', 'doubles': '', 'singles': '9'}
        record['scores'] = {'team': [150, 160, 170], 'doubles': [], 'singles': []}
        record['averages'] = {'entering': 165, 'handicap': 54}
        response = client.patch('/api/portal/participants/P4', json=record)
        assert response.status_code == 200
        data = response.get_json()
        assert data['lanes']['team'] == 7
        assert data['lanes']['singles'] == 9
        assert data['scores']['team'] == [150, 160, 170]
        fields = {row['field'] for row in audit_rows(conn, 'P4')}
        assert fields == {'lane_team', 'lane_singles', 'scores_team', 'avg_entering',
                          'avg_handicap'}
        assert all(row['admin_email'] == 'root@example.org' for row in audit_rows(conn, 'P4'))

    def test_partner_conflict(self, client, roster, super_admin):
        record = client.get('/api/portal/participants/P3').get_json()
        record['doubles']['partnerPid'] = 'P1'
        response = client.patch('/api/portal/participants/P3', json=record)
        assert response.status_code == 409
        assert response.get_json() == {'conflict': {
            'partnerPid': 'P1',
            'partnerName': 'Alice Anders',
            'currentPartnerPid': 'P2',
            'currentPartnerName': 'Bob Baker',
        }}

    def test_force_reciprocal(self, client, conn, roster, super_admin):
        record = client.get('/api/portal/participants/P3').get_json()
        record['doubles']['partnerPid'] = 'P1'
        record['forceReciprocal'] = True
        response = client.patch('/api/portal/participants/P3', json=record)
        assert response.status_code == 200
        assert response.get_json()['doubles']['partnerPid'] == 'P1'

        pairs = {row['pid']: row['partner_pid']
                 for row in conn.execute('SELECT pid, partner_pid FROM doubles_pairs')}
        assert pairs == {'P1': 'P3', 'P2': None, 'P3': 'P1'}
        assert {'admin_email': 'root@example.org', 'field': 'partner_pid', 'old_value': 'P2',
                'new_value': 'P3'} in audit_rows(conn, 'P1')

    def test_unpaired_partner_needs_no_confirmation(self, client, conn, roster, super_admin):
        record = client.get('/api/portal/participants/P3').get_json()
        record['doubles']['partnerPid'] = 'P4'
        response = client.patch('/api/portal/participants/P3', json=record)
        assert response.status_code == 200
        row = conn.execute("SELECT pid, partner_pid FROM doubles_pairs WHERE did = 'D4'").fetchone()
        assert (row['pid'], row['partner_pid']) == ('P4', 'P3')

    def test_unknown_pid(self, client, super_admin):
        assert client.patch('/api/portal/participants/NOPE', json={}).status_code == 404


class TestParticipantAudit:
    """Tests for GET /api/portal/participants/<pid>/audit."""

    def test_newest_first(self, client, conn, roster):
        login_participant(client, 'P1')
        client.patch('/api/portal/participants/P1', json={'city': 'Berkeley'})
        client.patch('/api/portal/participants/P1', json={'city': 'Fresno'})
        data = client.get('/api/portal/participants/P1/audit').get_json()
        assert [row['new_value'] for row in data] == ['Fresno', 'Berkeley']

    def test_other_participant_forbidden(self, client, roster):
        login_participant(client, 'P2')
        assert client.get('/api/portal/participants/P1/audit').status_code == 403
