from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, ValidationError, field_validator
from typing import Optional
from urllib.parse import urlsplit

from ..core.errors import InvalidRequest


class MediaKind(str, Enum):
    MANIFEST = "manifest"
    SEGMENT_BINARY = "segment_binary"
    SUBTITLE_TEXT = "subtitle_text"
    OTHER = "other"


class TransferMode(str, Enum):
    BUFFERED = "buffered"    # body fully materialized before responding
    STREAMED = "streamed"    # body relayed chunk by chunk


class ProxyRequest(BaseModel):
    """Inbound proxy call after query/header extraction."""
    target_url: str
    range_header: Optional[str] = None
    user_agent: Optional[str] = None

    @field_validator('target_url')
    @classmethod
    def validate_target_url(cls, v):
        v = v.strip()
        if any(ch.isspace() or ord(ch) < 0x20 for ch in v):
            raise ValueError('URL must not contain whitespace or control characters')
        try:
            parts = urlsplit(v)
            parts.port  # raises ValueError on a non-numeric port
        except ValueError as e:
            raise ValueError(f'URL could not be parsed: {e}')
        if parts.scheme.lower() not in ('http', 'https'):
            raise ValueError('URL scheme must be http or https')
        if not parts.hostname:
            raise ValueError('URL must be absolute and include a host')
        return v

    @classmethod
    def from_query(cls, url: Optional[str], range_header: Optional[str] = None,
                   user_agent: Optional[str] = None) -> "ProxyRequest":
        """Build a request from raw inbound values, raising InvalidRequest on bad input."""
        if url is None or not url.strip():
            raise InvalidRequest(error="Missing URL parameter", code="MISSING_URL")
        try:
            return cls(target_url=url, range_header=range_header or None, user_agent=user_agent or None)
        except ValidationError as e:
            first = e.errors()[0]
            message = str(first.get('msg', 'Invalid URL')).removeprefix('Value error, ')
            raise InvalidRequest(message) from None


class ErrorPayload(BaseModel):
    error: str
    message: Optional[str] = None
    code: Optional[str] = None


class ServiceStatus(BaseModel):
    status: str = "running"
    service: str = "hls-relay"
    version: str
