"""Public URL construction for share links."""
import socket
from urllib.parse import quote, urlsplit, urlunsplit

LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


def network_ip() -> str:
    """Best-effort LAN address of this machine, so links work from other devices.

    Connecting a UDP socket sends nothing; it only makes the OS pick the
    outbound interface.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "localhost"
    finally:
        sock.close()


def resolve_base_url(request_base_url: str, host_override: str = "") -> str:
    """HOST_URL if configured, else the request's own base URL.

    A request made against localhost is rewritten to the LAN address.
    """
    if host_override:
        return host_override.rstrip("/")
    parts = urlsplit(request_base_url)
    host = parts.hostname or "localhost"
    if host in LOCAL_HOSTS:
        netloc = network_ip()
        if parts.port:
            netloc = f"{netloc}:{parts.port}"
        parts = parts._replace(netloc=netloc)
    return urlunsplit((parts.scheme, parts.netloc, "", "", "")).rstrip("/")


def share_url(base_url: str, share_id: str) -> str:
    return f"{base_url}/download/{share_id}"


def batch_url(base_url: str, batch_id: str) -> str:
    return f"{base_url}/download/batch/{batch_id}"


def preview_path(share_id: str, token: str | None = None) -> str:
    path = f"/content/{quote(share_id)}"
    if token:
        path += f"?token={token}"
    return path
