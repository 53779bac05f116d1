"""Password checks and stateless view tokens for protected shares.

Passwords are stored as an unsalted SHA-256 hex digest. This matches the
records already written by earlier deployments and is weaker than a salted
KDF; ``hash_password`` and ``verify_password`` must change together if that
is ever upgraded, since view tokens are derived from the stored hash.
"""
import hashlib
import hmac


def hash_password(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def verify_password(plaintext: str | None, password_hash: str | None) -> bool:
    """True if ``plaintext`` hashes to ``password_hash``."""
    if not plaintext or not password_hash:
        return False
    return hmac.compare_digest(hash_password(plaintext).encode("utf-8"), password_hash.encode("utf-8"))


def derive_view_token(share_id: str, password_hash: str, key: bytes) -> str:
    """HMAC-SHA256 over share_id + password_hash, keyed by the master key.

    Deterministic: the same pair always yields the same token, so it can be
    embedded in preview URLs without being stored anywhere.
    """
    message = (share_id + password_hash).encode("utf-8")
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def verify_view_token(
    token: str | None, share_id: str, password_hash: str | None, key: bytes
) -> bool:
    if not token or not password_hash:
        return False
    expected = derive_view_token(share_id, password_hash, key)
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
