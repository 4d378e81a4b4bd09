"""
Content classification for proxied resources.

Decides what a fetched resource is (manifest, segment, subtitle, other) from
its URL and the upstream response headers, which content type the client gets,
and whether the body is buffered or streamed. Everything here is pure: no I/O,
and no input makes these functions raise.
"""

import re
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

from ..models.schemas import MediaKind, TransferMode
from .constants import (
    DEFAULT_CONTENT_TYPE,
    EXTENSION_CONTENT_TYPES,
    MANIFEST_MIME_TYPES,
    SEGMENT_MIME_TYPES,
    SUBTITLE_MIME_TYPES,
)

# Extension -> kind, checked in this order when a query carries several
_EXTENSION_KINDS = (
    (("m3u8",), MediaKind.MANIFEST),
    (("ts", "m2ts"), MediaKind.SEGMENT_BINARY),
    (("vtt", "srt", "ass", "ssa"), MediaKind.SUBTITLE_TEXT),
    (("mp4", "m4v", "m4s"), MediaKind.SEGMENT_BINARY),
)

_PATH_EXTENSION_RE = re.compile(r"\.([a-z0-9]+)$", re.IGNORECASE)
# Inside a query an extension must end a parameter value
_QUERY_EXTENSION_RE = re.compile(r"\.([a-z0-9]+)(?=$|[&;])", re.IGNORECASE)
_KIND_BY_EXTENSION = {ext: kind for extensions, kind in _EXTENSION_KINDS for ext in extensions}


def header_value(headers: Optional[Mapping[str, Any]], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for dicts and httpx.Headers."""
    if not headers:
        return None
    try:
        items = headers.items()
    except AttributeError:
        return None
    wanted = name.lower()
    for key, value in items:
        if isinstance(key, str) and key.lower() == wanted:
            return value if isinstance(value, str) else None
    return None


def _mime_type(headers: Optional[Mapping[str, Any]]) -> Optional[str]:
    raw = header_value(headers, "content-type")
    if not raw or not raw.strip():
        return None
    return raw.split(";", 1)[0].strip().lower() or None


def kind_from_mime(mime: Optional[str]) -> Optional[MediaKind]:
    if not mime:
        return None
    if mime in MANIFEST_MIME_TYPES:
        return MediaKind.MANIFEST
    if mime in SEGMENT_MIME_TYPES:
        return MediaKind.SEGMENT_BINARY
    if mime in SUBTITLE_MIME_TYPES:
        return MediaKind.SUBTITLE_TEXT
    return None


def url_extension(url: Optional[str]) -> Optional[str]:
    """Recognized media extension of ``url``, lowercase, or None.

    The path decides. Only when the path carries no recognized extension is the
    query searched, for links like ``/get?file=index.m3u8``.
    """
    if not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None

    match = _PATH_EXTENSION_RE.search(parts.path)
    if match and match.group(1).lower() in _KIND_BY_EXTENSION:
        return match.group(1).lower()

    in_query = {m.group(1).lower() for m in _QUERY_EXTENSION_RE.finditer(parts.query)}
    for extensions, _ in _EXTENSION_KINDS:
        for ext in extensions:
            if ext in in_query:
                return ext
    return None


def kind_from_url(url: Optional[str]) -> MediaKind:
    return _KIND_BY_EXTENSION.get(url_extension(url), MediaKind.OTHER)


def classify(url: Optional[str], headers: Optional[Mapping[str, Any]] = None) -> MediaKind:
    """Logical media kind of a resource.

    A recognized ``Content-Type`` wins; an absent or unrecognized one falls
    back to the URL extension.
    """
    kind = kind_from_mime(_mime_type(headers))
    if kind is not None:
        return kind
    return kind_from_url(url)


def content_type_for(url: Optional[str], headers: Optional[Mapping[str, Any]] = None) -> str:
    """Content-Type sent to the client.

    A present upstream value is trusted verbatim, even when unrecognized.
    """
    raw = header_value(headers, "content-type")
    if raw and raw.strip():
        return raw.strip()
    return EXTENSION_CONTENT_TYPES.get(url_extension(url), DEFAULT_CONTENT_TYPE)


def transfer_mode_for(kind: MediaKind) -> TransferMode:
    """Manifests and subtitles need the whole body for rewriting/decoding;
    everything else is piped through without buffering."""
    if kind in (MediaKind.MANIFEST, MediaKind.SUBTITLE_TEXT):
        return TransferMode.BUFFERED
    return TransferMode.STREAMED


def looks_like_manifest(body: Optional[bytes]) -> bool:
    """True when the first non-blank line of ``body`` is ``#EXTM3U``."""
    if not body:
        return False
    head = body[:64].lstrip(b"\xef\xbb\xbf").lstrip()
    return head.startswith(b"#EXTM3U")
