"""Exception taxonomy for the forwarding pipeline."""

from typing import Dict, Optional

import httpx


class ProxyError(Exception):
    """Base class for failures that terminate a proxied request.

    Carries the status and payload the client receives.
    """

    status_code: int = 500
    error: str = "Proxy error"
    code: Optional[str] = None

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None):
        super().__init__(message or self.error)
        self.message = message
        if code is not None:
            self.code = code

    def to_payload(self) -> Dict[str, str]:
        payload = {"error": self.error}
        if self.message:
            payload["message"] = self.message
        if self.code:
            payload["code"] = self.code
        return payload

    def headers(self) -> Dict[str, str]:
        return {}


class InvalidRequest(ProxyError):
    """Missing or malformed target URL. Rejected before any upstream call."""

    status_code = 400
    error = "Invalid URL"
    code = "INVALID_URL"

    def __init__(self, message: Optional[str] = None, *, error: Optional[str] = None,
                 code: Optional[str] = None):
        super().__init__(message, code=code)
        if error is not None:
            self.error = error


class RateLimited(ProxyError):
    status_code = 429
    error = "Too many requests"
    code = "RATE_LIMITED"

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message or "Rate limit exceeded, try again later")
        self.retry_after = retry_after

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamHTTPError(ProxyError):
    """Origin answered with an error status.

    Never turned into a JSON payload: the pipeline relays the upstream
    status, headers and body as they are.
    """

    def __init__(self, response: httpx.Response):
        super().__init__(f"Upstream returned HTTP {response.status_code}")
        self.response = response
        self.status_code = response.status_code


class UpstreamNetworkError(ProxyError):
    """Timeout or connection failure with no upstream response."""

    status_code = 500
    error = "Proxy error"
    code = "UPSTREAM_UNREACHABLE"


class RewriteFailure(ProxyError):
    """Manifest could not be rewritten. Handled inside the rewriter."""

    code = "REWRITE_FAILED"
