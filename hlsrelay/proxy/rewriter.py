"""
HLS playlist rewriter.

Rewrites every resource reference in an M3U8 manifest so the player fetches it
back through the proxy route. Lines are classified by an ordered list of
predicates (first match wins) and only reference lines are touched; tags,
comments, blank lines and unknown directives come out byte-for-byte, line
terminators included.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import quote, urljoin, urlsplit

import m3u8
from m3u8 import protocol

from ..core.errors import RewriteFailure
from .constants import PLAYLIST_REFERENCE_EXTENSIONS
from .utils import get_logger, redact_url

logger = get_logger("rewriter")

# Tags whose quoted URI attribute points at a fetchable resource
URI_BEARING_TAGS = frozenset({
    protocol.ext_x_map,
    protocol.ext_x_key,
    protocol.ext_x_session_key,
    protocol.ext_x_media,
    protocol.ext_x_i_frame_stream_inf,
})

_LINE_SPLIT_RE = re.compile(r"(\r\n|\r|\n)")
_URI_ATTR_RE = re.compile(r'(?<![A-Za-z0-9-])URI="([^"]*)"')
_ABSOLUTE_RE = re.compile(r"^(\s*)(https?://\S+?)(\s*)$", re.IGNORECASE)
_RELATIVE_RE = re.compile(
    r"^(\s*)([^\s#]\S*?\.(?:%s)(?:\?\S*)?)(\s*)$" % "|".join(PLAYLIST_REFERENCE_EXTENSIONS),
    re.IGNORECASE,
)


class LineKind(str, Enum):
    BLANK = "blank"
    ATTRIBUTE_TAG = "attribute_tag"
    COMMENT = "comment"
    ABSOLUTE_URL = "absolute_url"
    RELATIVE_URL = "relative_url"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class BaseResolutionContext:
    """Where relative references in one manifest resolve to."""
    scheme: str
    host: str
    directory_path: str

    @classmethod
    def from_url(cls, url: str) -> "BaseResolutionContext":
        """Derive the context from the manifest URL.

        Raises:
            ValueError: if ``url`` is not an absolute http(s) URL
        """
        if not isinstance(url, str):
            raise ValueError("base URL must be a string")
        parts = urlsplit(url.strip())
        if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
            raise ValueError(f"base URL is not absolute http(s): {url!r}")
        path = parts.path or "/"
        directory_path = path[: path.rfind("/") + 1]
        return cls(scheme=parts.scheme.lower(), host=parts.netloc, directory_path=directory_path)

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}{self.directory_path}"

    def resolve(self, reference: str) -> Optional[str]:
        """Absolute URL for ``reference``, or None when it is not http(s)."""
        resolved = urljoin(self.base_url, reference.strip())
        if urlsplit(resolved).scheme.lower() not in ("http", "https"):
            return None
        return resolved


def proxy_reference(url: str, proxy_path: str = "/proxy") -> str:
    return f"{proxy_path}?url={quote(url, safe='')}"


def _tag_name(line: str) -> str:
    return line.split(":", 1)[0].strip()


_LINE_RULES = (
    (LineKind.BLANK, lambda line: not line.strip()),
    (LineKind.ATTRIBUTE_TAG,
     lambda line: line.startswith("#") and _tag_name(line) in URI_BEARING_TAGS
     and _URI_ATTR_RE.search(line) is not None),
    (LineKind.COMMENT, lambda line: line.lstrip().startswith("#")),
    (LineKind.ABSOLUTE_URL, lambda line: _ABSOLUTE_RE.match(line) is not None),
    (LineKind.RELATIVE_URL, lambda line: _RELATIVE_RE.match(line) is not None),
)


def classify_line(line: str) -> LineKind:
    for kind, predicate in _LINE_RULES:
        if predicate(line):
            return kind
    return LineKind.PASSTHROUGH


def rewrite_line(line: str, context: BaseResolutionContext, proxy_path: str = "/proxy") -> str:
    """Rewrite a single manifest line (without its terminator)."""
    kind = classify_line(line)

    if kind == LineKind.ATTRIBUTE_TAG:
        match = _URI_ATTR_RE.search(line)
        resolved = context.resolve(match.group(1)) if match.group(1).strip() else None
        if resolved is None:
            return line
        return f'{line[:match.start(1)]}{proxy_reference(resolved, proxy_path)}{line[match.end(1):]}'

    if kind == LineKind.ABSOLUTE_URL:
        lead, url, trail = _ABSOLUTE_RE.match(line).groups()
        return f"{lead}{proxy_reference(url, proxy_path)}{trail}"

    if kind == LineKind.RELATIVE_URL:
        lead, reference, trail = _RELATIVE_RE.match(line).groups()
        resolved = context.resolve(reference)
        if resolved is None:
            return line
        return f"{lead}{proxy_reference(resolved, proxy_path)}{trail}"

    return line


def _rewrite_lines(manifest_text: str, context: BaseResolutionContext, proxy_path: str) -> str:
    # Split keeps the terminators at odd indices so they are re-emitted untouched
    parts = _LINE_SPLIT_RE.split(manifest_text)
    for i in range(0, len(parts), 2):
        try:
            parts[i] = rewrite_line(parts[i], context, proxy_path)
        except ValueError as e:
            raise RewriteFailure(f"line {i // 2 + 1}: {e}") from e
    return "".join(parts)


def rewrite(manifest_text: str, original_url: str, proxy_path: str = "/proxy") -> str:
    """Route every reference in ``manifest_text`` through ``proxy_path``.

    Never raises: an unusable base URL or any failure while rewriting returns
    the input unchanged.
    """
    if not isinstance(manifest_text, str):
        return manifest_text

    try:
        context = BaseResolutionContext.from_url(original_url)
    except ValueError as e:
        logger.warning(f"Manifest left unrewritten, unusable base URL: {e}")
        return manifest_text

    try:
        return _rewrite_lines(manifest_text, context, proxy_path)
    except RewriteFailure as e:
        logger.warning(f"Manifest rewrite failed for {redact_url(original_url)}, returning original: {e}")
        return manifest_text
    except Exception as e:
        logger.error(f"Unexpected rewrite error for {redact_url(original_url)}: {e}", exc_info=True)
        return manifest_text


def describe_manifest(manifest_text: str) -> Dict[str, Any]:
    """Short summary of a manifest for debug logging. Never raises."""
    try:
        playlist = m3u8.loads(manifest_text)
    except Exception as e:
        return {"parsed": False, "error": str(e)}

    summary: Dict[str, Any] = {"parsed": True, "variant": playlist.is_variant}
    if playlist.is_variant:
        summary["playlists"] = len(playlist.playlists)
        summary["media"] = len(playlist.media)
    else:
        summary["segments"] = len(playlist.segments)
        summary["target_duration"] = playlist.target_duration
        summary["endlist"] = playlist.is_endlist
    return summary

