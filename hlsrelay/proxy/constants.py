"""
Constants for the HLS relay.
MIME types, extension tables and header values shared by the classifier,
rewriter and forwarding pipeline.
"""

from typing import Final

# Outgoing content types
MANIFEST_CONTENT_TYPE: Final[str] = "application/vnd.apple.mpegurl"
DEFAULT_CONTENT_TYPE: Final[str] = "application/octet-stream"

# Recognized upstream MIME types (parameters stripped, lowercase)
MANIFEST_MIME_TYPES: Final[frozenset] = frozenset({
    "application/vnd.apple.mpegurl",
    "application/x-mpegurl",
    "audio/mpegurl",
    "audio/x-mpegurl",
})
SEGMENT_MIME_TYPES: Final[frozenset] = frozenset({
    "video/mp2t",
    "video/mp4",
    "video/iso.segment",
    "audio/mp4",
    "audio/aac",
})
SUBTITLE_MIME_TYPES: Final[frozenset] = frozenset({
    "text/vtt",
    "text/plain",
    "text/x-ass",
    "text/x-ssa",
    "application/x-subrip",
})

# URL extension -> outgoing content type when upstream sends none
EXTENSION_CONTENT_TYPES: Final[dict] = {
    "m3u8": MANIFEST_CONTENT_TYPE,
    "ts": "video/mp2t",
    "m2ts": "video/mp2t",
    "vtt": "text/vtt",
    "srt": "text/plain",
    "ass": "text/plain",
    "ssa": "text/plain",
    "mp4": "video/mp4",
    "m4v": "video/x-m4v",
    "m4s": "video/iso.segment",
}

# Extensions a bare playlist line must carry to be treated as a reference
PLAYLIST_REFERENCE_EXTENSIONS: Final[tuple] = (
    "m3u8", "ts", "m2ts", "m4s", "vtt", "srt", "ass", "ssa", "mp4", "m4v", "aac",
)

# Accept headers per expected media kind
ACCEPT_MANIFEST: Final[str] = "application/vnd.apple.mpegurl, application/x-mpegurl, */*;q=0.8"
ACCEPT_SEGMENT: Final[str] = "video/mp2t, video/mp4, */*;q=0.8"
ACCEPT_SUBTITLE: Final[str] = "text/vtt, text/plain, */*;q=0.8"
ACCEPT_ANY: Final[str] = "*/*"

# Browser fetch metadata some subtitle hosts insist on
SUBTITLE_EXTRA_HEADERS: Final[dict] = {
    "Accept-Language": "en-US,en;q=0.9",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "cross-site",
}

# Upstream headers copied onto relayed binary responses
RELAYED_BINARY_HEADERS: Final[tuple] = (
    "content-range",
    "accept-ranges",
    "content-length",
    "content-encoding",
    "etag",
    "last-modified",
)

# Never copied from upstream onto any response
HOP_BY_HOP_HEADERS: Final[frozenset] = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

MANIFEST_CACHE_CONTROL: Final[str] = "no-cache"
