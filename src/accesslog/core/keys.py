import hashlib
import hmac
import re
import secrets
import uuid

FINGERPRINT_LEN = 12
API_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{16,128}$")


def generate_api_key() -> str:
    # 32 random bytes, URL-safe base64
    return secrets.token_urlsafe(32)


def generate_id() -> str:
    return uuid.uuid4().hex


def looks_like_api_key(value: str) -> bool:
    return bool(API_KEY_RE.match(value))


def key_fingerprint(plain: str) -> str:
    """Short, non-reversible tag for a key; the only form of a key that may be logged."""
    return hashlib.sha256(plain.encode("utf-8")).hexdigest()[:FINGERPRINT_LEN]


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
