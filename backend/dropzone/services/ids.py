"""Share and batch identifier generation."""
import base64
import secrets

# 6 bytes -> 8 base64url characters, no padding
ID_BYTES = 6


def _token(nbytes: int = ID_BYTES) -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(nbytes)).rstrip(b"=").decode("ascii")


def new_share_id() -> str:
    """Random URL-safe identifier for a single uploaded file."""
    return _token()


def new_batch_id() -> str:
    """Random URL-safe identifier grouping the files of one upload request."""
    return _token()
