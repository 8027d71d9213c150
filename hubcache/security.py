"""Validation of request targets received by the proxy."""

import ipaddress
import logging
import socket
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Blocked ports (common internal services)
BLOCKED_PORTS = frozenset({
    22,  # SSH
    23,  # Telnet
    25,  # SMTP
    3306,  # MySQL
    5432,  # PostgreSQL
    6379,  # Redis
    27017,  # MongoDB
    9200,  # Elasticsearch
    9300,  # Elasticsearch
})

# Private IP ranges to block
PRIVATE_IP_RANGES = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("169.254.0.0/16"),  # Cloud metadata (AWS, etc.)
]

LOCALHOST_NAMES = frozenset({
    "localhost",
    "127.0.0.1",
    "::1",
    "0.0.0.0",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
})


class SSRFError(Exception):
    """Raised when a forward-proxy target fails validation."""

    pass


def validate_path(path: str) -> bool:
    """Check that an origin-form request target is safe to resolve.

    Args:
        path: Raw request target, e.g. '/index.html?tab=2'.

    Returns:
        True if the path starts with '/' and has no control characters.
    """
    if not path.startswith("/") or path.startswith("//"):
        return False
    if any(ord(c) < 32 or ord(c) == 127 for c in path):
        logger.warning("Control characters in request path: %r", path)
        return False
    return True


def validate_target_url(url: str, allow_private: bool = False) -> None:
    """Validate a cross-origin forward-proxy target to prevent SSRF.

    Args:
        url: Absolute target URL
        allow_private: If True, allow private IPs (for testing only)

    Raises:
        SSRFError: If URL is potentially dangerous
    """
    parsed = urlparse(url)

    # Only allow HTTP/HTTPS
    if parsed.scheme not in ("http", "https"):
        raise SSRFError(f"Scheme '{parsed.scheme}' not allowed. Only http:// and https:// are permitted.")

    try:
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
    except ValueError as e:
        raise SSRFError(f"Invalid port in URL: {e}")

    if port in BLOCKED_PORTS:
        raise SSRFError(f"Port {port} is blocked for security reasons")

    hostname = parsed.hostname
    if not hostname:
        raise SSRFError("No hostname in URL")

    if allow_private:
        return

    if hostname.lower() in LOCALHOST_NAMES:
        raise SSRFError(f"Localhost access not allowed: {hostname}")

    # Resolve hostname and check for private IPs
    try:
        ip = socket.gethostbyname(hostname)
    except socket.gaierror as e:
        raise SSRFError(f"Cannot resolve hostname '{hostname}': {e}")

    ip_obj = ipaddress.ip_address(ip)
    for private_range in PRIVATE_IP_RANGES:
        if ip_obj in private_range:
            raise SSRFError(f"Private IP address not allowed: {ip} (resolved from {hostname})")

    if ip_obj.is_multicast or ip_obj.is_reserved:
        raise SSRFError(f"Reserved IP address not allowed: {ip}")
