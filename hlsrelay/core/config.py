import os
from pydantic import BaseModel, field_validator, model_validator
from dotenv import load_dotenv
load_dotenv()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)


class Cfg(BaseModel):
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", os.getenv("PORT", 8080)))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Comma-separated list, "*" allows any origin
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "*")

    # Route served by the proxy, also the prefix written into rewritten playlists
    PROXY_ROUTE: str = os.getenv("PROXY_ROUTE", "/proxy")

    # Upstream fetch policy
    UPSTREAM_TIMEOUT_S: float = float(os.getenv("UPSTREAM_TIMEOUT_S", "15"))
    UPSTREAM_CONNECT_TIMEOUT_S: float = float(os.getenv("UPSTREAM_CONNECT_TIMEOUT_S", "10"))
    UPSTREAM_USER_AGENT: str = os.getenv("UPSTREAM_USER_AGENT", DEFAULT_USER_AGENT)
    FORWARD_CLIENT_USER_AGENT: bool = os.getenv("FORWARD_CLIENT_USER_AGENT", "false").lower() == "true"
    FORWARD_RANGE: bool = os.getenv("FORWARD_RANGE", "true").lower() == "true"
    FORWARD_ORIGIN_HEADERS: bool = os.getenv("FORWARD_ORIGIN_HEADERS", "true").lower() == "true"
    FOLLOW_REDIRECTS: bool = os.getenv("FOLLOW_REDIRECTS", "true").lower() == "true"

    # Shared connection pool
    MAX_CONNECTIONS: int = int(os.getenv("MAX_CONNECTIONS", 100))
    MAX_KEEPALIVE_CONNECTIONS: int = int(os.getenv("MAX_KEEPALIVE_CONNECTIONS", 20))
    STREAM_CHUNK_SIZE: int = int(os.getenv("STREAM_CHUNK_SIZE", 64 * 1024))

    # Cache-Control max-age for relayed content
    SUBTITLE_CACHE_MAX_AGE_S: int = int(os.getenv("SUBTITLE_CACHE_MAX_AGE_S", 3600))
    SEGMENT_CACHE_MAX_AGE_S: int = int(os.getenv("SEGMENT_CACHE_MAX_AGE_S", 86400))

    # Per-client rate limiting on the proxy route
    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    RATE_LIMIT_MAX_REQUESTS: int = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", 100))
    RATE_LIMIT_WINDOW_S: int = int(os.getenv("RATE_LIMIT_WINDOW_S", 15 * 60))
    RATE_LIMIT_EXEMPT_SUBTITLES: bool = os.getenv("RATE_LIMIT_EXEMPT_SUBTITLES", "false").lower() == "true"

    @field_validator('APP_PORT')
    @classmethod
    def validate_app_port(cls, v):
        if not (1 <= v <= 65535):
            raise ValueError('APP_PORT must be between 1-65535')
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f'LOG_LEVEL must be one of: {", ".join(valid_levels)}')
        return v

    @field_validator('PROXY_ROUTE')
    @classmethod
    def validate_proxy_route(cls, v):
        if not v.startswith('/') or v == '/':
            raise ValueError('PROXY_ROUTE must be an absolute path other than "/"')
        if '?' in v or '#' in v:
            raise ValueError('PROXY_ROUTE must not contain a query or fragment')
        return v.rstrip('/')

    @field_validator('UPSTREAM_TIMEOUT_S', 'UPSTREAM_CONNECT_TIMEOUT_S')
    @classmethod
    def validate_positive_timeouts(cls, v):
        if v <= 0:
            raise ValueError('Timeout values must be > 0')
        return v

    @field_validator('MAX_CONNECTIONS', 'MAX_KEEPALIVE_CONNECTIONS', 'STREAM_CHUNK_SIZE',
                     'RATE_LIMIT_MAX_REQUESTS', 'RATE_LIMIT_WINDOW_S')
    @classmethod
    def validate_positive_ints(cls, v):
        if v <= 0:
            raise ValueError('Value must be > 0')
        return v

    @field_validator('SUBTITLE_CACHE_MAX_AGE_S', 'SEGMENT_CACHE_MAX_AGE_S')
    @classmethod
    def validate_cache_max_age(cls, v):
        if v < 0:
            raise ValueError('Cache max-age must be >= 0')
        return v

    @model_validator(mode='after')
    def validate_timeouts(self):
        if self.UPSTREAM_CONNECT_TIMEOUT_S > self.UPSTREAM_TIMEOUT_S:
            raise ValueError('UPSTREAM_CONNECT_TIMEOUT_S must be <= UPSTREAM_TIMEOUT_S')
        return self

    @model_validator(mode='after')
    def validate_pool_limits(self):
        if self.MAX_KEEPALIVE_CONNECTIONS > self.MAX_CONNECTIONS:
            raise ValueError('MAX_KEEPALIVE_CONNECTIONS must be <= MAX_CONNECTIONS')
        return self

    def allowed_origins(self) -> list[str]:
        origins = [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]
        return origins or ["*"]

cfg = Cfg()
