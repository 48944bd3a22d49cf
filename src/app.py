"""
Flask web application for the Golden Gate Classic tournament portal.

JSON API under ``/api/portal/`` for admin and participant logins, participant
records, CSV/XML imports, standings and portal settings.
"""
import os
import smtplib
import sqlite3
from functools import wraps
from filelock import FileLock, Timeout
from flask import Flask, request, jsonify, redirect, g
from werkzeug.exceptions import HTTPException
from core.db import connect, transaction
from core.errors import PortalError, ImportValidationError, NotFoundError, PayloadTooLargeError
from core.session import (
    ADMIN_ROLES, ROLE_SUPER_ADMIN, ROLE_TOURNAMENT_ADMIN, ROLE_PARTICIPANT,
    ADMIN_SESSION_TTL, PARTICIPANT_SESSION_TTL, ADMIN_PASSWORD_RESET_TTL,
    COOKIE_ADMIN, COOKIE_PARTICIPANT, COOKIE_ADMIN_RESET,
    build_session_token, admin_from_token, participant_from_token, issued_after,
)
from core.passwords import validate_password, verify_password, generate_strong_password
from core.audit import (write_audit_entries, log_admin_action, participant_audit,
                        list_audit_log, clear_audit_log)
from core.participants import (format_participant, list_participants, build_changes,
                               resolve_participant_updates, apply_participant_updates,
                               check_partner_conflict, upsert_reciprocal_partner)
from core import admins as admin_store
from core.csv_import import (read_import_request, load_rows, IMPORT_MODE_PREVIEW,
                             NO_PARTICIPANTS_MATCHED_ERROR)
from core import lanes_import, scores_import, scratch_masters_import, optional_events_import
from core.scoring import EVENT_TYPES
from core.igbo_xml import import_igbo_xml
from core.standings import (fetch_score_standings, fetch_scratch_masters, fetch_optional_events,
                            clear_scores, clear_scratch_masters)
from core.settings import (VISIBILITY_SETTINGS, load_setting_defaults, normalize_boolean_setting,
                           get_boolean_setting, set_boolean_setting)
from core.lane_assignments import fetch_lane_assignments
from core.possible_issues import build_report
from core.teams import find_team, participant_may_view, fetch_members, build_team_page
from core.email_templates import seed_default_templates, list_templates, get_template, upsert_template
from core.mailer import send_templated_email

app = Flask(__name__)


def _get_or_create_session_secret() -> str:
    """Get ADMIN_SESSION_SECRET from env, or generate and persist to file."""
    env_secret = os.environ.get('ADMIN_SESSION_SECRET')
    if env_secret:
        return env_secret
    secret_file = os.path.join(DATA_DIR, '.session_secret')
    if os.path.exists(secret_file):
        with open(secret_file, 'r', encoding='utf-8') as f:
            return f.read().strip()
    secret = os.urandom(24).hex()
    os.makedirs(os.path.dirname(secret_file), exist_ok=True)
    with open(secret_file, 'w', encoding='utf-8') as f:
        f.write(secret)
    return secret


BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('PORTAL_DATA_DIR', os.path.join(BASE_DIR, 'data'))
DATABASE_PATH = os.environ.get('PORTAL_DATABASE_PATH', os.path.join(DATA_DIR, 'portal.db'))
PORTAL_SETTINGS_FILE = os.environ.get('PORTAL_SETTINGS_FILE',
                                      os.path.join(DATA_DIR, 'portal_settings.yaml'))
PORTAL_BASE_URL = os.environ.get('PORTAL_BASE_URL', 'http://localhost:5000').rstrip('/')
ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', 'admin@local')
PORTAL_ENV = os.environ.get('PORTAL_ENV', '')

SESSION_SECRET = _get_or_create_session_secret()

_import_lock = FileLock(os.path.join(DATA_DIR, '.import.lock'), timeout=10)
MAX_XML_UPLOAD_SIZE = 5 * 1024 * 1024  # 5 MB

PARTICIPANT_LOGIN_PATH = '/portal/participant'
ADMIN_LOGIN_PATH = '/portal/'
ADMIN_RESET_PATH = '/portal/admin/reset-password'

MAIL_ERRORS = (smtplib.SMTPException, OSError)


# ---------------------------------------------------------------------------
# Database and cookies
# ---------------------------------------------------------------------------

def get_db():
    """Connection for the current request, opened on first use."""
    if 'db' not in g:
        g.db = connect(DATABASE_PATH)
    return g.db


@app.teardown_appcontext
def close_db(exception=None):
    conn = g.pop('db', None)
    if conn is not None:
        conn.close()


def set_session_cookie(response, name, value, max_age):
    response.set_cookie(
        name,
        value,
        max_age=max_age,
        path='/',
        httponly=True,
        samesite='Lax',
        secure=PORTAL_ENV == 'production',
    )
    return response


def clear_session_cookie(response, name):
    return set_session_cookie(response, name, '', 0)


# ---------------------------------------------------------------------------
# Sessions and guards
# ---------------------------------------------------------------------------

def unauthorized():
    return jsonify({'error': 'Unauthorized'}), 401


def forbidden():
    return jsonify({'error': 'Forbidden'}), 403


def get_admin_session():
    return admin_from_token(SESSION_SECRET, request.cookies.get(COOKIE_ADMIN))


def get_participant_session():
    return participant_from_token(SESSION_SECRET, request.cookies.get(COOKIE_PARTICIPANT))


def validate_admin_session(admin):
    """The session only counts while its admin exists and was not revoked after login."""
    if not admin:
        return None
    record = admin_store.find_admin_by_email(get_db(), admin.get('email'))
    if not record:
        app.logger.info(f'Admin session for unknown admin {admin.get("email")}')
        return None
    if not issued_after(admin, record['sessions_revoked_at']):
        app.logger.info(f'Admin session for {admin.get("email")} was revoked')
        return None
    return admin


def get_auth_sessions() -> tuple:
    """(admin, participant) session payloads for the current request."""
    return validate_admin_session(get_admin_session()), get_participant_session()


def require_admin(f):
    """Require a valid admin session (any admin role)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin, _ = get_auth_sessions()
        if not admin:
            return unauthorized()
        g.admin = admin
        return f(*args, **kwargs)
    return decorated_function


def require_super_admin(f):
    """Require a valid super-admin session."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin, _ = get_auth_sessions()
        if not admin:
            return unauthorized()
        if admin.get('role') != ROLE_SUPER_ADMIN:
            return forbidden()
        g.admin = admin
        return f(*args, **kwargs)
    return decorated_function


def require_any_session(f):
    """Require an admin or a participant session."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin, participant = get_auth_sessions()
        if not admin and not participant:
            return unauthorized()
        g.admin = admin
        g.participant = participant
        return f(*args, **kwargs)
    return decorated_function


def require_participant_match_or_admin(f):
    """Allow admins, and participants whose pid matches the ``pid`` URL argument."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin, participant = get_auth_sessions()
        if admin:
            g.admin = admin
            g.participant = participant
            return f(*args, **kwargs)
        if participant and participant.get('pid') == kwargs.get('pid'):
            g.admin = None
            g.participant = participant
            return f(*args, **kwargs)
        if participant:
            return forbidden()
        return unauthorized()
    return decorated_function


def audit_identity(admin, participant) -> str:
    """Who an audit entry is attributed to."""
    if admin and admin.get('email'):
        return admin['email']
    if participant and participant.get('pid'):
        return f"participant:{participant['pid']}"
    return ADMIN_EMAIL or 'admin@local'


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

@app.errorhandler(PortalError)
def handle_portal_error(e):
    return jsonify({'error': str(e)}), e.status


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return e
    app.logger.exception(f'Unhandled error on {request.path}: {e}')
    return jsonify({'error': str(e) or 'Unexpected error.'}), 500


# ---------------------------------------------------------------------------
# Mail
# ---------------------------------------------------------------------------

def participant_verify_url(token: str) -> str:
    return f'{PORTAL_BASE_URL}/api/portal/participant/verify?token={token}'


def admin_reset_url(token: str) -> str:
    return f'{PORTAL_BASE_URL}/api/portal/admin/reset-verify?token={token}'


def admin_login_url() -> str:
    return f'{PORTAL_BASE_URL}{ADMIN_LOGIN_PATH}'


def send_email(to, slug, variables, button_url=None) -> bool:
    """Send a templated email. Delivery failures are logged, not raised."""
    try:
        return send_templated_email(get_db(), to, slug, variables, button_url)
    except MAIL_ERRORS as e:
        app.logger.warning(f'Failed to send "{slug}" email to {to}: {e}')
        return False


# ---------------------------------------------------------------------------
# Admin authentication
# ---------------------------------------------------------------------------

@app.route('/api/portal/admin/login', methods=['POST'])
def api_admin_login():
    """Log in with email or phone plus password."""
    data = request.get_json(silent=True) or {}
    identifier = str(data.get('email') or '').strip() or str(data.get('phone') or '').strip()
    password = data.get('password')
    if not identifier or not password:
        return jsonify({'error': 'Email or phone and password are required.'}), 400

    conn = get_db()
    admin = admin_store.find_admin_by_identifier(conn, identifier)
    if not admin or not verify_password(admin['password_hash'], password):
        app.logger.warning(f'Failed admin login for {identifier}')
        return jsonify({'error': 'Invalid credentials.'}), 401

    if admin['must_change_password']:
        token = admin_store.latest_reset_token(conn, admin['id'])
        if token is None:
            token = admin_store.create_reset_token(conn, admin['id'])
        response = jsonify({'ok': True, 'needsReset': True, 'email': admin['email']})
        return set_session_cookie(response, COOKIE_ADMIN_RESET, token, ADMIN_PASSWORD_RESET_TTL)

    token = build_session_token(SESSION_SECRET, admin['email'], admin['role'],
                                ttl=ADMIN_SESSION_TTL)
    app.logger.info(f'Admin {admin["email"]} logged in')
    response = jsonify({'ok': True, 'email': admin['email'], 'role': admin['role']})
    return set_session_cookie(response, COOKIE_ADMIN, token, ADMIN_SESSION_TTL)


@app.route('/api/portal/admin/logout', methods=['POST'])
def api_admin_logout():
    return clear_session_cookie(jsonify({'ok': True}), COOKIE_ADMIN)


@app.route('/api/portal/admin/session', methods=['GET'])
def api_admin_session():
    admin, _ = get_auth_sessions()
    if not admin:
        return jsonify({'ok': False}), 401
    return jsonify({'ok': True, 'admin': admin})


@app.route('/api/portal/admin/refresh', methods=['GET'])
def api_admin_refresh():
    """Reissue the admin cookie with a fresh lifetime."""
    admin, _ = get_auth_sessions()
    if not admin:
        return jsonify({'ok': False}), 401
    token = build_session_token(SESSION_SECRET, admin['email'], admin['role'],
                                ttl=ADMIN_SESSION_TTL)
    response = app.response_class(status=204)
    return set_session_cookie(response, COOKIE_ADMIN, token, ADMIN_SESSION_TTL)


@app.route('/api/portal/admin/request-reset', methods=['POST'])
def api_admin_request_reset():
    """Email a reset link to a known admin. Always answers ok."""
    data = request.get_json(silent=True) or {}
    email = str(data.get('email') or '').strip()
    if not email:
        return jsonify({'ok': True})

    conn = get_db()
    admin = admin_store.find_admin_by_email(conn, email)
    if admin:
        token = admin_store.create_reset_token(conn, admin['id'])
        reset_url = admin_reset_url(token)
        send_email(admin['email'], 'admin-password-reset', {
            'resetUrl': reset_url,
            'firstName': admin['first_name'] or '',
            'email': admin['email'],
        }, button_url=reset_url)
    return jsonify({'ok': True})


@app.route('/api/portal/admin/reset-verify', methods=['GET'])
def api_admin_reset_verify():
    """Landing URL of the reset email: stores the token in the reset cookie."""
    token = request.args.get('token', '')
    reset = admin_store.find_reset(get_db(), token) if token else None
    if not admin_store.reset_is_valid(reset):
        return redirect(f'{ADMIN_LOGIN_PATH}?reset=expired')
    response = redirect(ADMIN_RESET_PATH)
    return set_session_cookie(response, COOKIE_ADMIN_RESET, token, ADMIN_PASSWORD_RESET_TTL)


@app.route('/api/portal/admin/reset-password', methods=['POST'])
def api_admin_reset_password():
    data = request.get_json(silent=True) or {}
    password = data.get('password')
    confirm = data.get('confirmPassword')
    if not password or not confirm:
        return jsonify({'error': 'Password and confirmation are required.'}), 400
    if password != confirm:
        return jsonify({'error': 'Passwords do not match.'}), 400
    error = validate_password(password)
    if error:
        return jsonify({'error': error}), 400

    token = request.cookies.get(COOKIE_ADMIN_RESET)
    if not token:
        return unauthorized()

    conn = get_db()
    reset = admin_store.find_reset(conn, token)
    if not admin_store.reset_is_valid(reset):
        return jsonify({'error': 'Reset token is invalid or expired.'}), 401

    admin = admin_store.get_admin(conn, reset['admin_id'], columns='id, email, password_hash')
    if not admin:
        return jsonify({'error': 'Admin not found.'}), 404
    if verify_password(admin['password_hash'], password):
        return jsonify({'error': 'New password must be different from your current password.'}), 400

    with transaction(conn):
        admin_store.set_password(conn, admin['id'], password)
        admin_store.mark_resets_used(conn, admin['id'])
    app.logger.info(f'Admin {admin["email"]} reset their password')
    return clear_session_cookie(jsonify({'ok': True}), COOKIE_ADMIN_RESET)


# ---------------------------------------------------------------------------
# Participant authentication
# ---------------------------------------------------------------------------

@app.route('/api/portal/participant/login', methods=['POST'])
def api_participant_login():
    """Email a one-time login link to a registered participant."""
    data = request.get_json(silent=True) or {}
    identifier = data.get('identifier')
    email = data.get('email')
    value = ''
    if isinstance(identifier, str) and identifier.strip():
        value = identifier.strip()
    elif isinstance(email, str) and email.strip():
        value = email.strip()
    if not value:
        return jsonify({'error': 'Email address is required.'}), 400

    conn = get_db()
    participant = admin_store.find_participant_by_email(conn, value)
    if not participant:
        return jsonify({'ok': True})

    token = admin_store.create_participant_login_token(conn, participant['pid'])
    verify_url = participant_verify_url(token)
    send_email(value, 'participant-login', {'loginUrl': verify_url, 'email': value},
               button_url=verify_url)

    result = {'ok': True}
    admin, _ = get_auth_sessions()
    if admin:
        result['token'] = token
    return jsonify(result)


@app.route('/api/portal/participant/verify', methods=['GET'])
def api_participant_verify():
    token = request.args.get('token', '')
    pid = admin_store.consume_participant_login_token(get_db(), token)
    if not pid:
        return redirect(f'{PARTICIPANT_LOGIN_PATH}?expired=1')
    session_token = build_session_token(SESSION_SECRET, None, ROLE_PARTICIPANT, pid=pid,
                                        ttl=PARTICIPANT_SESSION_TTL)
    response = redirect(f'{PARTICIPANT_LOGIN_PATH}/{pid}')
    return set_session_cookie(response, COOKIE_PARTICIPANT, session_token, PARTICIPANT_SESSION_TTL)


@app.route('/api/portal/participant/logout', methods=['POST'])
def api_participant_logout():
    return clear_session_cookie(jsonify({'ok': True}), COOKIE_PARTICIPANT)


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------

@app.route('/api/portal/participants', methods=['GET'])
@require_admin
def api_participants():
    return jsonify(list_participants(get_db(), request.args.get('search', '').strip()))


@app.route('/api/portal/participants/<pid>', methods=['GET'])
@require_any_session
def api_get_participant(pid):
    participant = format_participant(get_db(), pid)
    if not participant:
        raise NotFoundError('Participant not found.')
    return jsonify(participant)


@app.route('/api/portal/participants/<pid>', methods=['PATCH'])
@require_participant_match_or_admin
def api_update_participant(pid):
    """Update a participant, auditing every changed field.

    An admin changing the doubles partner to someone already paired gets a
    409 with the conflict unless ``forceReciprocal`` is set.
    """
    conn = get_db()
    current = format_participant(conn, pid)
    if not current:
        raise NotFoundError('Participant not found.')

    raw_updates = request.get_json(silent=True) or {}
    force_reciprocal = raw_updates.get('forceReciprocal') is True
    participant_only = bool(g.participant and not g.admin)
    updates = resolve_participant_updates(current, raw_updates, participant_only)
    changed_by = audit_identity(g.admin, g.participant)

    new_partner = (updates.get('doubles') or {}).get('partnerPid')
    partner_changed = (not participant_only and bool(new_partner)
                       and new_partner != (current.get('doubles') or {}).get('partnerPid'))

    if partner_changed and not force_reciprocal:
        conflict = check_partner_conflict(conn, new_partner, pid)
        if conflict:
            return jsonify({'conflict': conflict}), 409

    with transaction(conn):
        apply_participant_updates(conn, pid, updates, participant_only)
        write_audit_entries(conn, changed_by, pid, build_changes(current, updates))
        if partner_changed:
            partner_current = format_participant(conn, new_partner)
            old_partner = ((partner_current or {}).get('doubles') or {}).get('partnerPid') or ''
            upsert_reciprocal_partner(conn, new_partner, pid)
            if old_partner != pid:
                write_audit_entries(conn, changed_by, new_partner, [
                    {'field': 'partner_pid', 'oldValue': old_partner, 'newValue': pid},
                ])

    return jsonify(format_participant(conn, pid))


@app.route('/api/portal/participants/<pid>/audit', methods=['GET'])
@require_participant_match_or_admin
def api_participant_audit(pid):
    return jsonify(participant_audit(get_db(), pid))


# ---------------------------------------------------------------------------
# Admin accounts
# ---------------------------------------------------------------------------

@app.route('/api/portal/admins', methods=['GET'])
@require_super_admin
def api_list_admins():
    return jsonify(admin_store.list_admins(get_db()))


@app.route('/api/portal/admins', methods=['POST'])
@require_super_admin
def api_create_admin():
    """Create an admin who must change the initial password on first login."""
    data = request.get_json(silent=True) or {}
    role = data.get('role') or ROLE_TOURNAMENT_ADMIN
    if role not in ADMIN_ROLES:
        return jsonify({'error': 'Invalid role.'}), 400

    first_name = data.get('firstName')
    last_name = data.get('lastName')
    email = str(data.get('email') or '').strip()
    phone = str(data.get('phone') or '').strip()
    initial_password = data.get('initialPassword')

    missing = []
    if not first_name:
        missing.append('first name')
    if not last_name:
        missing.append('last name')
    if not email and not phone:
        missing.append('email or phone')
    if not initial_password:
        missing.append('initial password')
    if missing:
        return jsonify({'error': f"Missing required fields: {', '.join(missing)}."}), 400

    conn = get_db()
    if admin_store.admin_exists(conn, email, phone):
        return jsonify({'error': 'Admin already exists.'}), 409

    with transaction(conn):
        admin_id = admin_store.insert_admin(conn, first_name, last_name, email, phone,
                                            initial_password, role, pid=data.get('pid'))
        admin_store.create_reset_token(conn, admin_id)
        log_admin_action(conn, g.admin['email'], 'create_admin',
                         {'adminId': admin_id, 'email': email, 'phone': phone, 'role': role})
    app.logger.info(f'Admin {g.admin["email"]} created {role} {email or phone}')

    if email:
        try:
            send_templated_email(conn, email, 'admin-welcome', {
                'firstName': first_name,
                'lastName': last_name,
                'email': email,
                'password': initial_password,
                'loginUrl': admin_login_url(),
            }, button_url=admin_login_url())
        except MAIL_ERRORS as e:
            app.logger.warning(f'Welcome email to {email} failed: {e}')
            return jsonify({'ok': True,
                            'warning': 'Account created but welcome email could not be sent.'})
    return jsonify({'ok': True, 'id': admin_id})


@app.route('/api/portal/admins/lookup', methods=['GET'])
@require_super_admin
def api_lookup_admin():
    return jsonify(admin_store.lookup(get_db(), request.args.get('q', '')))


def _load_admin(conn, admin_id) -> dict:
    admin = admin_store.get_admin(conn, admin_id)
    if not admin:
        raise NotFoundError('Admin not found.')
    return admin


@app.route('/api/portal/admins/<admin_id>', methods=['GET'])
@require_super_admin
def api_get_admin(admin_id):
    return jsonify(_load_admin(get_db(), admin_id))


@app.route('/api/portal/admins/<admin_id>', methods=['PATCH'])
@require_super_admin
def api_update_admin(admin_id):
    data = request.get_json(silent=True) or {}
    role = data.get('role')
    if role and role not in ADMIN_ROLES:
        return jsonify({'error': 'Invalid role.'}), 400

    conn = get_db()
    current = _load_admin(conn, admin_id)
    new_role = role or current['role']
    if (current['role'] == ROLE_SUPER_ADMIN and new_role != ROLE_SUPER_ADMIN
            and admin_store.count_super_admins(conn) <= 1):
        return jsonify({'error': 'Cannot demote the last super-admin.'}), 409

    after = {
        'firstName': data['firstName'] if 'firstName' in data else current['first_name'] or '',
        'lastName': data['lastName'] if 'lastName' in data else current['last_name'] or '',
        'email': str(data['email']).strip() if 'email' in data else current['email'] or '',
        'phone': str(data['phone']).strip() if 'phone' in data else current['phone'] or '',
        'role': new_role,
    }
    before = {
        'firstName': current['first_name'],
        'lastName': current['last_name'],
        'email': current['email'],
        'phone': current['phone'],
        'role': current['role'],
    }
    with transaction(conn):
        admin_store.update_admin(conn, admin_id, after['firstName'], after['lastName'],
                                 after['email'], after['phone'], new_role)
        log_admin_action(conn, g.admin['email'], 'modify_admin',
                         {'adminId': admin_id, 'before': before, 'after': after})
    return jsonify({'ok': True})


@app.route('/api/portal/admins/<admin_id>', methods=['DELETE'])
@require_super_admin
def api_delete_admin(admin_id):
    conn = get_db()
    target = _load_admin(conn, admin_id)
    if target['email'] and target['email'] == g.admin['email']:
        return jsonify({'error': 'Cannot revoke your own admin access.'}), 403
    if target['role'] == ROLE_SUPER_ADMIN and admin_store.count_super_admins(conn) <= 1:
        return jsonify({'error': 'Cannot revoke the last super-admin.'}), 409

    with transaction(conn):
        admin_store.delete_admin(conn, admin_id)
        log_admin_action(conn, g.admin['email'], 'revoke_admin', {
            'revokedEmail': target['email'],
            'revokedRole': target['role'],
            'revokedName': f"{target['first_name'] or ''} {target['last_name'] or ''}".strip(),
        })
    app.logger.info(f'Admin {g.admin["email"]} revoked {target["email"]}')
    return jsonify({'ok': True})


@app.route('/api/portal/admins/<admin_id>/force-password-change', methods=['POST'])
@require_super_admin
def api_force_password_change(admin_id):
    """Replace an admin's password with a temporary one and end their sessions.

    The email with the temporary password is sent inside the transaction, so a
    delivery failure leaves the account untouched.
    """
    conn = get_db()
    target = _load_admin(conn, admin_id)
    if target['email'] and target['email'] == g.admin['email']:
        return jsonify({'error': 'Cannot force password change on your own account.'}), 403

    temporary_password = generate_strong_password(16)
    with transaction(conn):
        admin_store.force_password_change(conn, admin_id, temporary_password)
        admin_store.create_reset_token(conn, admin_id)
        log_admin_action(conn, g.admin['email'], 'force_password_change',
                         {'targetAdminId': admin_id, 'targetAdminEmail': target['email']})
        if target['email']:
            send_templated_email(conn, target['email'], 'admin-forced-password-reset', {
                'firstName': target['first_name'] or '',
                'lastName': target['last_name'] or '',
                'email': target['email'],
                'temporaryPassword': temporary_password,
                'loginUrl': admin_login_url(),
            }, button_url=admin_login_url())
    app.logger.info(f'Admin {g.admin["email"]} forced a password change for {target["email"]}')
    return jsonify({
        'ok': True,
        'message': 'Password reset. Admin will receive email with temporary password.',
    })


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------

def run_csv_import(validate_columns, build_preview, run_import, failure_message):
    """Shared flow of the CSV imports.

    ``build_preview(conn, rows)`` matches rows against the database;
    ``run_import(conn, preview)`` applies it inside a transaction while the
    import lock is held.
    """
    payload = read_import_request(request.get_json(silent=True) or {})
    rows = load_rows(payload['csv_text'], validate_columns)
    conn = get_db()
    try:
        preview = build_preview(conn, rows)
        if payload['mode'] == IMPORT_MODE_PREVIEW:
            return jsonify({'ok': True, **preview})
        if not preview['matched']:
            raise ImportValidationError(NO_PARTICIPANTS_MATCHED_ERROR)
        with _import_lock:
            with transaction(conn):
                summary = run_import(conn, preview)
    except PortalError:
        raise
    except (sqlite3.Error, Timeout) as e:
        app.logger.exception(f'{failure_message} {e}')
        return jsonify({'error': failure_message}), 500
    app.logger.info(f'{request.path} by {g.admin["email"]}: {summary}')
    return jsonify({'ok': True, 'summary': summary})


@app.route('/api/portal/admin/import-lanes', methods=['POST'])
@require_super_admin
def api_import_lanes():
    def run(conn, preview):
        result = lanes_import.import_lanes(conn, preview['matched'], g.admin['email'])
        log_admin_action(conn, g.admin['email'], 'import_lanes', result)
        return result

    return run_csv_import(lanes_import.validate_columns, lanes_import.match_participants, run,
                          'Lane import failed.')


@app.route('/api/portal/admin/import-scores', methods=['POST'])
@require_super_admin
def api_import_scores():
    data = request.get_json(silent=True) or {}
    event_type = data.get('eventType')
    if data.get('csvText') and event_type not in EVENT_TYPES:
        return jsonify({'error': 'eventType must be "team", "doubles", or "singles".'}), 400

    def preview(conn, rows):
        scores_import.check_event_type(rows, event_type)
        return scores_import.match_participants(conn, scores_import.pivot_rows_by_bowler(rows),
                                                event_type)

    def run(conn, matched_preview):
        scores_import.check_doubles_partners(matched_preview['warnings'])
        result = scores_import.import_scores(conn, matched_preview['matched'], event_type,
                                             g.admin['email'])
        log_admin_action(conn, g.admin['email'], 'import_scores',
                         {**result, 'eventType': event_type})
        return result

    return run_csv_import(scores_import.validate_columns, preview, run, 'Score import failed.')


@app.route('/api/portal/admin/scratch-masters/import', methods=['POST'])
@require_super_admin
def api_import_scratch_masters():
    return run_csv_import(
        scratch_masters_import.validate_columns,
        scratch_masters_import.build_preview,
        lambda conn, preview: scratch_masters_import.import_scratch_masters(
            conn, preview, g.admin['email']),
        'Scratch Masters import failed due to a server error.',
    )


@app.route('/api/portal/admin/optional-events/import', methods=['POST'])
@require_super_admin
def api_import_optional_events():
    return run_csv_import(
        optional_events_import.validate_columns,
        optional_events_import.build_preview,
        lambda conn, preview: optional_events_import.import_optional_events(
            conn, preview, g.admin['email']),
        'Optional events import failed due to a server error.',
    )


@app.route('/api/portal/admin/import-xml', methods=['POST'])
@require_super_admin
def api_import_xml():
    """Import the IGBO registration export uploaded as multipart field ``xml``."""
    file = request.files.get('xml')
    if not file or file.filename == '':
        return jsonify({'error': 'XML file is required.'}), 400
    if not file.filename.lower().endswith('.xml'):
        return jsonify({'error': 'Only .xml files are allowed.'}), 400
    if file.mimetype and 'xml' not in file.mimetype and file.mimetype != 'application/octet-stream':
        return jsonify({'error': 'Unsupported file type.'}), 400

    file_bytes = file.read()
    if len(file_bytes) > MAX_XML_UPLOAD_SIZE:
        raise PayloadTooLargeError(f'File too large (max {MAX_XML_UPLOAD_SIZE} bytes)')
    try:
        xml_text = file_bytes.decode('utf-8-sig')
    except UnicodeDecodeError:
        return jsonify({'error': 'XML file must be UTF-8 encoded.'}), 400

    conn = get_db()
    with _import_lock:
        summary = import_igbo_xml(conn, xml_text)
    log_admin_action(conn, g.admin['email'], 'import_xml', summary)
    app.logger.info(f'XML import by {g.admin["email"]}: {summary}')
    return jsonify({'ok': True, 'summary': summary})


# ---------------------------------------------------------------------------
# Standings and visibility
# ---------------------------------------------------------------------------

def visibility_setting(conn, name) -> bool:
    """Current value of a visibility toggle, falling back to the settings file."""
    key, _ = VISIBILITY_SETTINGS[name]
    defaults = load_setting_defaults(PORTAL_SETTINGS_FILE)
    fallback = normalize_boolean_setting(defaults.get(key, defaults.get(name)), False)
    return get_boolean_setting(conn, key, fallback)


def standings_access(setting_name):
    """None when the caller may see a standings page, else the error response.

    Participants and anonymous callers need the visibility toggle on.
    """
    admin, participant = get_auth_sessions()
    if admin or visibility_setting(get_db(), setting_name):
        return None
    return forbidden() if participant else unauthorized()


@app.route('/api/portal/scores', methods=['GET'])
def api_scores():
    denied = standings_access('participantsCanViewScores')
    if denied:
        return denied
    return jsonify(fetch_score_standings(get_db()))


@app.route('/api/portal/admin/scratch-masters', methods=['GET'])
@require_any_session
def api_scratch_masters():
    conn = get_db()
    if not g.admin and not visibility_setting(conn, 'participantsCanViewScratchMasters'):
        return forbidden()
    return jsonify(fetch_scratch_masters(conn))


@app.route('/api/portal/admin/optional-events', methods=['GET'])
def api_optional_events():
    denied = standings_access('participantsCanViewOptionalEvents')
    if denied:
        return denied
    return jsonify(fetch_optional_events(get_db()))


def toggle_visibility(name):
    conn = get_db()
    if request.method == 'GET':
        return jsonify({name: visibility_setting(conn, name)})

    admin, _ = get_auth_sessions()
    if not admin:
        return unauthorized()
    data = request.get_json(silent=True) or {}
    value = data[name] if name in data else data.get('value')
    if not isinstance(value, bool):
        return jsonify({'error': f'{name} must be a boolean.'}), 400

    key, action = VISIBILITY_SETTINGS[name]
    with transaction(conn):
        set_boolean_setting(conn, key, value)
        log_admin_action(conn, admin['email'], action, {name: value})
    app.logger.info(f'Admin {admin["email"]} set {name} to {value}')
    return jsonify({'ok': True, name: value})


@app.route('/api/portal/admin/scores/visibility', methods=['GET', 'PUT'])
def api_scores_visibility():
    return toggle_visibility('participantsCanViewScores')


@app.route('/api/portal/admin/scratch-masters/visibility', methods=['GET', 'PUT'])
def api_scratch_masters_visibility():
    return toggle_visibility('participantsCanViewScratchMasters')


@app.route('/api/portal/admin/optional-events/visibility', methods=['GET', 'PUT'])
def api_optional_events_visibility():
    return toggle_visibility('participantsCanViewOptionalEvents')


def run_clear(clear, action, details):
    conn = get_db()
    with transaction(conn):
        clear(conn)
        log_admin_action(conn, g.admin['email'], action, details)
    app.logger.info(f'Admin {g.admin["email"]}: {action}')
    return jsonify({'ok': True})


@app.route('/api/portal/admin/scores/clear', methods=['POST'])
@require_super_admin
def api_clear_scores():
    return run_clear(clear_scores, 'clear_scores', {'scope': 'all'})


@app.route('/api/portal/admin/scratch-masters/clear', methods=['POST'])
@require_super_admin
def api_clear_scratch_masters():
    return run_clear(clear_scratch_masters, 'clear_scratch_masters', {'scope': 'all'})


@app.route('/api/portal/admin/audit/clear', methods=['POST'])
@require_super_admin
def api_clear_audit():
    return run_clear(clear_audit_log, 'clear_audit_log', {'scope': 'global'})


# ---------------------------------------------------------------------------
# Admin reports and team pages
# ---------------------------------------------------------------------------

@app.route('/api/portal/admin/audit', methods=['GET'])
@require_super_admin
def api_audit():
    return jsonify(list_audit_log(get_db(), request.args.get('q', ''),
                                  request.args.get('sort', 'desc')))


@app.route('/api/portal/admin/lane-assignments', methods=['GET'])
@require_admin
def api_lane_assignments():
    return jsonify(fetch_lane_assignments(get_db()))


@app.route('/api/portal/admin/possible-issues', methods=['GET'])
@require_admin
def api_possible_issues():
    return jsonify(build_report(get_db()))


@app.route('/api/portal/teams/<slug>', methods=['GET'])
@require_any_session
def api_team(slug):
    conn = get_db()
    if not g.admin and not participant_may_view(conn, g.participant['pid'], slug):
        return forbidden()
    team = find_team(conn, slug)
    if not team:
        raise NotFoundError('Team not found.')
    return jsonify(build_team_page(team, fetch_members(conn, team['tnmt_id'])))


# ---------------------------------------------------------------------------
# Email templates
# ---------------------------------------------------------------------------

@app.route('/api/portal/email-templates', methods=['GET'])
@require_super_admin
def api_email_templates():
    conn = get_db()
    seed_default_templates(conn)
    return jsonify(list_templates(conn))


@app.route('/api/portal/email-templates/<slug>', methods=['GET', 'PUT'])
@require_super_admin
def api_email_template(slug):
    conn = get_db()
    seed_default_templates(conn)
    if request.method == 'PUT':
        data = request.get_json(silent=True) or {}
        if not data.get('subject'):
            return jsonify({'error': 'Subject is required.'}), 400
        upsert_template(conn, {**data, 'slug': slug})
        app.logger.info(f'Admin {g.admin["email"]} updated email template {slug}')

    template = get_template(conn, slug)
    if not template:
        raise NotFoundError('Template not found.')
    return jsonify(template)


if __name__ == '__main__':
    app.run(debug=True, port=5000)
