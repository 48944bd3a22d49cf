"""
Signed session tokens for admins and participants.

Tokens carry ``{email, role, pid, iat, exp}`` and are signed with the portal
session secret. Expiry is checked against ``exp`` so each cookie can have its
own lifetime.
"""
import hashlib
import secrets
import time
from datetime import datetime, timezone

from itsdangerous import BadSignature, URLSafeSerializer

ROLE_SUPER_ADMIN = 'super-admin'
ROLE_TOURNAMENT_ADMIN = 'tournament-admin'
ROLE_PARTICIPANT = 'participant'
ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_TOURNAMENT_ADMIN)

ADMIN_SESSION_TTL = 6 * 60 * 60
PARTICIPANT_SESSION_TTL = 48 * 60 * 60
PARTICIPANT_LINK_TTL = 30 * 60
ADMIN_PASSWORD_RESET_TTL = 60 * 60

COOKIE_ADMIN = 'portal_admin'
COOKIE_PARTICIPANT = 'portal_participant'
COOKIE_ADMIN_RESET = 'portal_admin_reset'

_SALT = 'portal-session'


def generate_secure_token() -> str:
    """Random 24-byte token, hex encoded."""
    return secrets.token_hex(24)


def _serializer(secret) -> URLSafeSerializer:
    if not secret:
        raise RuntimeError('ADMIN_SESSION_SECRET is not set.')
    return URLSafeSerializer(secret, salt=_SALT,
                             signer_kwargs={'digest_method': hashlib.sha256})


def build_session_token(secret, email, role, pid=None, ttl=ADMIN_SESSION_TTL) -> str:
    now = time.time()
    payload = {'email': email, 'role': role, 'iat': now, 'exp': now + ttl}
    if pid:
        payload['pid'] = pid
    return _serializer(secret).dumps(payload)


def verify_token(secret, token):
    """Return the payload of a valid, unexpired token, else None."""
    if not token:
        return None
    try:
        payload = _serializer(secret).loads(token)
    except BadSignature:
        return None
    if not isinstance(payload, dict):
        return None
    exp = payload.get('exp')
    if exp is not None and time.time() >= exp:
        return None
    return payload


def admin_from_token(secret, token):
    payload = verify_token(secret, token)
    if not payload or payload.get('role') not in ADMIN_ROLES:
        return None
    return payload


def participant_from_token(secret, token):
    payload = verify_token(secret, token)
    if not payload or payload.get('role') != ROLE_PARTICIPANT or not payload.get('pid'):
        return None
    return payload


def revocation_timestamp() -> str:
    """Value stored in ``admins.sessions_revoked_at`` when sessions are revoked."""
    return datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S.%f')


def issued_after(payload: dict, revoked_at) -> bool:
    """True when the token was issued after ``revoked_at`` (or nothing was revoked)."""
    if not revoked_at:
        return True
    revoked = datetime.fromisoformat(str(revoked_at)).replace(tzinfo=timezone.utc)
    issued = payload.get('iat')
    if issued is None:
        return False
    return issued > revoked.timestamp()
