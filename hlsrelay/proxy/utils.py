"""
Utility functions for the HLS relay.
Client address lookup, URL helpers for outbound headers and logs, and
standardized logger naming.
"""

import logging
from urllib.parse import urlsplit


def get_client_ip(request) -> str:
    """
    Address used to key per-client limits.

    The relay usually sits behind a load balancer, so the first hop of
    X-Forwarded-For (or X-Real-IP) wins over the socket peer.

    Args:
        request: FastAPI Request object
    """
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        first_hop = forwarded.split(',')[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get('X-Real-IP')
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


def upstream_origin(url: str) -> str:
    """Return ``scheme://host[:port]`` of an absolute URL, or an empty string."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return ""
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def redact_url(url: str) -> str:
    """Strip query and fragment from a URL before it is logged.

    Signed CDN links carry their tokens in the query string.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<unparseable url>"
    return f"{parts.scheme}://{parts.netloc}{parts.path}" if parts.netloc else parts.path


def get_logger(component_name: str) -> logging.Logger:
    """Logger named ``hls_relay.<component_name>``."""
    return logging.getLogger(f"hls_relay.{component_name}")
