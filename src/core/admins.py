"""
Admin accounts, password reset tokens and participant login tokens.
"""
from core.db import fetch_all, fetch_one, new_id, utc_in, utcnow
from core.passwords import hash_password
from core.session import (ADMIN_PASSWORD_RESET_TTL, PARTICIPANT_LINK_TTL, ROLE_SUPER_ADMIN,
                          generate_secure_token, revocation_timestamp)

ADMIN_PUBLIC_COLUMNS = 'id, email, first_name, last_name, phone, role, pid, created_at'


def find_admin_by_identifier(conn, identifier):
    """Admin whose email (case-insensitive) or phone matches ``identifier``."""
    return fetch_one(
        conn,
        'SELECT * FROM admins WHERE lower(email) = lower(?) OR phone = ? LIMIT 1',
        (identifier, identifier),
    )


def find_admin_by_email(conn, email):
    if not email:
        return None
    return fetch_one(conn, 'SELECT * FROM admins WHERE lower(email) = lower(?) LIMIT 1', (email,))


def get_admin(conn, admin_id, columns=ADMIN_PUBLIC_COLUMNS):
    return fetch_one(conn, f'SELECT {columns} FROM admins WHERE id = ?', (admin_id,))


def list_admins(conn) -> list:
    return fetch_all(conn, f'SELECT {ADMIN_PUBLIC_COLUMNS} FROM admins '
                           'ORDER BY created_at DESC, rowid DESC')


def admin_exists(conn, email, phone) -> bool:
    row = fetch_one(
        conn,
        """
        SELECT id FROM admins
        WHERE (? <> '' AND lower(email) = lower(?))
           OR (? <> '' AND phone = ?)
        LIMIT 1
        """,
        (email, email, phone, phone),
    )
    return row is not None


def count_super_admins(conn) -> int:
    row = fetch_one(conn, 'SELECT COUNT(*) AS cnt FROM admins WHERE role = ?', (ROLE_SUPER_ADMIN,))
    return row['cnt']


def insert_admin(conn, first_name, last_name, email, phone, password, role, pid=None,
                 must_change_password=True) -> str:
    admin_id = new_id()
    conn.execute(
        """
        INSERT INTO admins (id, email, first_name, last_name, phone, password_hash, role, name,
                            pid, must_change_password)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (admin_id, email or None, first_name, last_name, phone or None, hash_password(password),
         role, f'{first_name} {last_name}'.strip(), pid or None,
         1 if must_change_password else 0),
    )
    return admin_id


def update_admin(conn, admin_id, first_name, last_name, email, phone, role):
    conn.execute(
        """
        UPDATE admins
        SET first_name = ?, last_name = ?, email = ?, phone = ?, role = ?, name = ?
        WHERE id = ?
        """,
        (first_name, last_name, email or None, phone or None, role,
         f'{first_name} {last_name}'.strip(), admin_id),
    )


def delete_admin(conn, admin_id):
    conn.execute('DELETE FROM admin_password_resets WHERE admin_id = ?', (admin_id,))
    conn.execute('DELETE FROM admins WHERE id = ?', (admin_id,))


def set_password(conn, admin_id, password):
    conn.execute(
        'UPDATE admins SET password_hash = ?, must_change_password = 0 WHERE id = ?',
        (hash_password(password), admin_id),
    )


def force_password_change(conn, admin_id, temporary_password):
    """Replace the password, require a change at next login and revoke sessions."""
    conn.execute(
        """
        UPDATE admins
        SET password_hash = ?, must_change_password = 1, sessions_revoked_at = ?
        WHERE id = ?
        """,
        (hash_password(temporary_password), revocation_timestamp(), admin_id),
    )


def create_reset_token(conn, admin_id, ttl=ADMIN_PASSWORD_RESET_TTL) -> str:
    token = generate_secure_token()
    conn.execute(
        'INSERT INTO admin_password_resets (id, admin_id, token, expires_at, created_at) '
        'VALUES (?, ?, ?, ?, ?)',
        (new_id(), admin_id, token, utc_in(ttl), utcnow()),
    )
    return token


def latest_reset_token(conn, admin_id):
    row = fetch_one(
        conn,
        """
        SELECT token FROM admin_password_resets
        WHERE admin_id = ? AND used_at IS NULL AND expires_at > ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT 1
        """,
        (admin_id, utcnow()),
    )
    return row['token'] if row else None


def find_reset(conn, token):
    return fetch_one(
        conn,
        'SELECT id, admin_id, expires_at, used_at FROM admin_password_resets WHERE token = ? LIMIT 1',
        (token,),
    )


def reset_is_valid(reset) -> bool:
    return bool(reset) and not reset['used_at'] and reset['expires_at'] > utcnow()


def mark_resets_used(conn, admin_id):
    conn.execute(
        'UPDATE admin_password_resets SET used_at = ? WHERE admin_id = ? AND used_at IS NULL',
        (utcnow(), admin_id),
    )


def lookup(conn, value) -> dict:
    """Admin or participant whose email or phone equals ``value``."""
    value = (value or '').strip()
    if not value:
        return {'admin': None, 'participant': None}
    admin = fetch_one(
        conn,
        'SELECT id, email, first_name, last_name, phone, role FROM admins '
        'WHERE lower(email) = lower(?) OR phone = ? LIMIT 1',
        (value, value),
    )
    if admin:
        return {'admin': admin, 'participant': None}
    participant = fetch_one(
        conn,
        'SELECT pid, first_name, last_name, email, phone FROM people '
        'WHERE lower(email) = lower(?) OR phone = ? LIMIT 1',
        (value, value),
    )
    return {'admin': None, 'participant': participant}


def link_admins_to_people(conn):
    """Attach each unlinked admin to the person sharing its email or phone, then sync names."""
    conn.execute(
        """
        UPDATE admins
        SET pid = (
            SELECT p.pid FROM people p
            WHERE (admins.email IS NOT NULL AND lower(p.email) = lower(admins.email))
               OR (admins.phone IS NOT NULL AND p.phone = admins.phone)
            ORDER BY p.pid
            LIMIT 1
        )
        WHERE pid IS NULL
        """
    )
    conn.execute(
        """
        UPDATE admins
        SET first_name = (SELECT p.first_name FROM people p WHERE p.pid = admins.pid),
            last_name = (SELECT p.last_name FROM people p WHERE p.pid = admins.pid),
            name = (SELECT trim(coalesce(p.first_name, '') || ' ' || coalesce(p.last_name, ''))
                    FROM people p WHERE p.pid = admins.pid)
        WHERE pid IS NOT NULL AND EXISTS (SELECT 1 FROM people p WHERE p.pid = admins.pid)
        """
    )


def create_participant_login_token(conn, pid, ttl=PARTICIPANT_LINK_TTL) -> str:
    token = generate_secure_token()
    conn.execute(
        'INSERT INTO participant_login_tokens (token, pid, expires_at, created_at) '
        'VALUES (?, ?, ?, ?)',
        (token, pid, utc_in(ttl), utcnow()),
    )
    return token


def consume_participant_login_token(conn, token):
    """Mark a valid login token used and return its pid, or None if invalid."""
    if not token:
        return None
    row = fetch_one(
        conn,
        'SELECT pid FROM participant_login_tokens '
        'WHERE token = ? AND used_at IS NULL AND expires_at > ? LIMIT 1',
        (token, utcnow()),
    )
    if not row:
        return None
    conn.execute('UPDATE participant_login_tokens SET used_at = ? WHERE token = ?',
                 (utcnow(), token))
    return row['pid']


def find_participant_by_email(conn, email):
    return fetch_one(
        conn,
        'SELECT pid, email, first_name FROM people WHERE lower(email) = lower(?) LIMIT 1',
        (email,),
    )
