"""Admin password policy and temporary password generation."""
import secrets

from werkzeug.security import check_password_hash, generate_password_hash

PASSWORD_MIN_LENGTH = 12
PASSWORD_WEAK_TOKENS = ('password', '123456', 'qwerty', 'letmein', 'admin', 'welcome')

PASSWORD_ERRORS = {
    'min_length': f'Password must be at least {PASSWORD_MIN_LENGTH} characters.',
    'lowercase': 'Password must include at least one lowercase letter.',
    'uppercase': 'Password must include at least one uppercase letter.',
    'number': 'Password must include at least one number.',
    'weak': 'Password is too common. Please choose a stronger password.',
}

UPPERCASE = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ'
LOWERCASE = 'abcdefghijklmnopqrstuvwxyz'
DIGITS = '0123456789'
SYMBOLS = '!@#$%^&*()_+-=[]{}|;:,.<>?'


def validate_password(value):
    """Return an error message for a weak password, or None."""
    if not value or len(value) < PASSWORD_MIN_LENGTH:
        return PASSWORD_ERRORS['min_length']
    if not any(c in LOWERCASE for c in value):
        return PASSWORD_ERRORS['lowercase']
    if not any(c in UPPERCASE for c in value):
        return PASSWORD_ERRORS['uppercase']
    if not any(c in DIGITS for c in value):
        return PASSWORD_ERRORS['number']
    lower = value.lower()
    if any(token in lower for token in PASSWORD_WEAK_TOKENS):
        return PASSWORD_ERRORS['weak']
    return None


def generate_strong_password(length: int = 16) -> str:
    """Random password with at least one upper, lower, digit and symbol."""
    if length < PASSWORD_MIN_LENGTH:
        raise ValueError(f'Password length must be at least {PASSWORD_MIN_LENGTH} characters')
    chars = [
        secrets.choice(UPPERCASE),
        secrets.choice(LOWERCASE),
        secrets.choice(DIGITS),
        secrets.choice(SYMBOLS),
    ]
    pool = UPPERCASE + LOWERCASE + DIGITS + SYMBOLS
    chars.extend(secrets.choice(pool) for _ in range(length - len(chars)))
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]
    return ''.join(chars)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash, password) -> bool:
    if not password_hash or not password:
        return False
    return check_password_hash(password_hash, password)
