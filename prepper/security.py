import hmac
import re
import bleach


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def sanitize_text(value) -> str:
    # Plain-text sanitize: strip tags and trim whitespace
    if value is None:
        return ""
    return bleach.clean(str(value), tags=[], strip=True).strip()


def normalize_email(value) -> str | None:
    """Lower-case and validate an email address; None when it is not one."""
    if not isinstance(value, str):
        return None
    email = value.strip().lower()
    if not EMAIL_RE.match(email):
        return None
    return email


def secret_matches(supplied, expected) -> bool:
    """Constant-time comparison; an unset expected secret never matches."""
    if not expected or not supplied:
        return False
    return hmac.compare_digest(str(supplied).encode(), str(expected).encode())


def bearer_token(header_value) -> str | None:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()
