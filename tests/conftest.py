"""
Shared pytest fixtures for the portal tests.

Running tests:
    pytest tests/                  - full suite
    pytest tests/ -m "not slow"   - skip the slower end-to-end flows
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

# Keep the app from writing a secret file into the repository on import
os.environ.setdefault('ADMIN_SESSION_SECRET', 'test-session-secret')

from filelock import FileLock

from core.db import connect, new_id
from core.passwords import hash_password
from core.session import (COOKIE_ADMIN, COOKIE_PARTICIPANT, ROLE_PARTICIPANT,
                          ROLE_SUPER_ADMIN, ROLE_TOURNAMENT_ADMIN, build_session_token)

TEST_SECRET = 'test-session-secret'
TEST_PASSWORD = 'Corr3ct-Horse-Battery'


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the app at a temporary data directory and database."""
    import app as app_module

    path = str(tmp_path / 'portal.db')
    monkeypatch.setattr(app_module, 'DATA_DIR', str(tmp_path))
    monkeypatch.setattr(app_module, 'DATABASE_PATH', path)
    monkeypatch.setattr(app_module, 'PORTAL_SETTINGS_FILE', str(tmp_path / 'portal_settings.yaml'))
    monkeypatch.setattr(app_module, 'SESSION_SECRET', TEST_SECRET)
    monkeypatch.setattr(app_module, 'PORTAL_BASE_URL', 'https://portal.test')
    monkeypatch.setattr(app_module, '_import_lock',
                        FileLock(str(tmp_path / '.import.lock'), timeout=10))
    for name in ('SMTP_HOST', 'SMTP_USER', 'SMTP_PASS'):
        monkeypatch.delenv(name, raising=False)
    return path


@pytest.fixture
def conn(db_path):
    """Direct connection to the test database for seeding and assertions."""
    connection = connect(db_path)
    yield connection
    connection.close()


@pytest.fixture
def client(db_path):
    """Create a test client (unauthenticated by default)."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as c:
        yield c


def add_person(conn, pid, first_name, last_name, **fields):
    """Insert a row into ``people``; extra keyword arguments are column values."""
    values = {'pid': pid, 'first_name': first_name, 'last_name': last_name, **fields}
    columns = ', '.join(values)
    placeholders = ', '.join('?' * len(values))
    conn.execute(f'INSERT INTO people ({columns}) VALUES ({placeholders})', list(values.values()))
    return pid


def add_team(conn, tnmt_id, team_name, slug=None):
    conn.execute('INSERT INTO teams (tnmt_id, team_name, slug) VALUES (?, ?, ?)',
                 (tnmt_id, team_name, slug))


def add_pair(conn, did, pid, partner_pid=None):
    conn.execute('INSERT INTO doubles_pairs (did, pid, partner_pid) VALUES (?, ?, ?)',
                 (did, pid, partner_pid))


def add_score(conn, pid, event_type, lane=None, games=(None, None, None), entering_avg=None,
              handicap=None):
    conn.execute(
        'INSERT INTO scores (id, pid, event_type, lane, game1, game2, game3, entering_avg, '
        'handicap) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)',
        (new_id(), pid, event_type, lane, *games, entering_avg, handicap),
    )


def add_admin(conn, email, role=ROLE_SUPER_ADMIN, password=TEST_PASSWORD, phone=None,
              must_change_password=0, first_name='Ada', last_name='Admin', pid=None):
    admin_id = new_id()
    conn.execute(
        'INSERT INTO admins (id, email, first_name, last_name, phone, password_hash, role, '
        'must_change_password, pid) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)',
        (admin_id, email, first_name, last_name, phone, hash_password(password), role,
         must_change_password, pid),
    )
    return admin_id


def login_admin(client, email, role=ROLE_SUPER_ADMIN):
    client.set_cookie(COOKIE_ADMIN, build_session_token(TEST_SECRET, email, role))


def login_participant(client, pid):
    client.set_cookie(COOKIE_PARTICIPANT,
                      build_session_token(TEST_SECRET, None, ROLE_PARTICIPANT, pid=pid))


def cookie_header(response, name):
    """The Set-Cookie header the response sends for ``name``, or None."""
    for header in response.headers.getlist('Set-Cookie'):
        if header.startswith(f'{name}='):
            return header
    return None


@pytest.fixture
def super_admin(conn, client):
    """Logged-in super-admin; returns its id."""
    admin_id = add_admin(conn, 'root@example.org', ROLE_SUPER_ADMIN)
    login_admin(client, 'root@example.org', ROLE_SUPER_ADMIN)
    return admin_id


@pytest.fixture
def tournament_admin(conn, client):
    """Logged-in tournament-admin; returns its id."""
    admin_id = add_admin(conn, 'desk@example.org', ROLE_TOURNAMENT_ADMIN)
    login_admin(client, 'desk@example.org', ROLE_TOURNAMENT_ADMIN)
    return admin_id


@pytest.fixture
def roster(conn):
    """Two teams, a reciprocal doubles pair and a bowler with no partner."""
    add_team(conn, 'T1', 'Pin Pals', 'pin-pals')
    add_team(conn, 'T2', 'Split Happens', 'split-happens')
    add_person(conn, 'P1', 'Alice', 'Anders', email='alice@example.org', tnmt_id='T1',
               did='D1', team_captain=1, team_order=1, city='Oakland', region='CA',
               country='US')
    add_person(conn, 'P2', 'Bob', 'Baker', email='bob@example.org', tnmt_id='T1', did='D2',
               team_order=2)
    add_person(conn, 'P3', 'Cara', 'Cole', nickname='CC', email='cara@example.org',
               tnmt_id='T2', did='D3', team_order=1)
    add_person(conn, 'P4', 'Dan', 'Diaz', email='dan@example.org', tnmt_id='T2', did='D4',
               team_order=2)
    add_pair(conn, 'D1', 'P1', 'P2')
    add_pair(conn, 'D2', 'P2', 'P1')
    add_pair(conn, 'D3', 'P3', None)
    return ['P1', 'P2', 'P3', 'P4']
