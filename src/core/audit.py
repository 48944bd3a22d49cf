"""
Audit trail for participant field changes and admin actions.
"""
import json
import logging
import sqlite3

from core.db import fetch_all, new_id

AUDIT_RESULTS_LIMIT = 500
PARTICIPANT_AUDIT_LIMIT = 20

logger = logging.getLogger(__name__)


def normalize_value(value) -> str:
    """Store strings as-is, None as '', everything else as JSON."""
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    return json.dumps(value)


def build_audit_entries(admin_email, pid, changes) -> list:
    return [
        {
            'admin_email': admin_email,
            'pid': pid,
            'field': change['field'],
            'old_value': normalize_value(change.get('oldValue')),
            'new_value': normalize_value(change.get('newValue')),
        }
        for change in changes
    ]


def write_audit_entries(conn, admin_email, pid, changes):
    """Insert one audit row per change. Empty change lists are a no-op."""
    if not changes:
        return
    entries = build_audit_entries(admin_email, pid, changes)
    conn.executemany(
        'INSERT INTO audit_logs (id, admin_email, pid, field, old_value, new_value) '
        'VALUES (?, ?, ?, ?, ?, ?)',
        [(new_id(), e['admin_email'], e['pid'], e['field'], e['old_value'], e['new_value'])
         for e in entries],
    )


def log_admin_action(conn, admin_email, action, details=None):
    conn.execute(
        'INSERT INTO admin_actions (id, admin_email, action, details) VALUES (?, ?, ?, ?)',
        (new_id(), admin_email, action, normalize_value(details)),
    )


def try_log_admin_action(conn, admin_email, action, details=None) -> bool:
    """Log an admin action without failing the surrounding import."""
    try:
        log_admin_action(conn, admin_email, action, details)
    except sqlite3.Error as e:
        logger.warning(f'Failed to write admin action "{action}": {e}')
        return False
    return True


def participant_audit(conn, pid, limit=PARTICIPANT_AUDIT_LIMIT) -> list:
    return fetch_all(
        conn,
        'SELECT * FROM audit_logs WHERE pid = ? ORDER BY changed_at DESC, rowid DESC LIMIT ?',
        (pid, limit),
    )


def list_audit_log(conn, search='', sort='desc', limit=AUDIT_RESULTS_LIMIT) -> list:
    """Field changes and admin actions merged into one timeline."""
    direction = 'ASC' if (sort or '').lower() == 'asc' else 'DESC'
    search = (search or '').strip()
    params = []
    change_where = ''
    action_where = ''
    if search:
        like = f'%{search.lower()}%'
        change_where = ('WHERE (lower(a.admin_email) LIKE ? OR lower(a.pid) LIKE ? '
                        'OR lower(p.first_name) LIKE ? OR lower(p.last_name) LIKE ? '
                        'OR lower(t.team_name) LIKE ? OR lower(a.field) LIKE ? '
                        'OR lower(a.old_value) LIKE ? OR lower(a.new_value) LIKE ?)')
        action_where = ('WHERE (lower(ev.admin_email) LIKE ? OR lower(ev.action) LIKE ? '
                        'OR lower(ev.details) LIKE ?)')
        params = [like] * 11
    sql = f"""
        SELECT a.id, a.admin_email, a.pid, a.field, a.old_value, a.new_value,
               a.changed_at, p.first_name, p.last_name, t.team_name
        FROM audit_logs a
        LEFT JOIN people p ON p.pid = a.pid
        LEFT JOIN teams t ON t.tnmt_id = p.tnmt_id
        {change_where}
        UNION ALL
        SELECT ev.id, ev.admin_email, NULL, ev.action, NULL, NULL,
               ev.created_at, NULL, NULL, NULL
        FROM admin_actions ev
        {action_where}
        ORDER BY changed_at {direction}
        LIMIT ?
    """
    params.append(limit)
    return fetch_all(conn, sql, params)


def clear_audit_log(conn):
    conn.execute('DELETE FROM audit_logs')
    conn.execute('DELETE FROM admin_actions')
