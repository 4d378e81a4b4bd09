"""
Forwarding pipeline: one inbound proxy request, one upstream GET.

The URL alone picks the transfer mode (manifests and subtitles are buffered,
everything else is streamed), the upstream response headers decide the final
media kind, and the response is either rewritten text or the upstream bytes
relayed untouched.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional
from urllib.parse import urljoin, urlsplit

import httpx
from starlette.background import BackgroundTask
from starlette.responses import Response, StreamingResponse

from ..core.config import Cfg, cfg
from ..core.errors import UpstreamHTTPError, UpstreamNetworkError
from ..models.schemas import MediaKind, ProxyRequest, TransferMode
from ..services.metrics import (
    on_request_finished,
    on_upstream_error,
    relay_active_streams,
    relay_bytes_streamed,
    relay_manifest_rewrites,
)
from .classifier import (
    classify,
    content_type_for,
    kind_from_url,
    looks_like_manifest,
    transfer_mode_for,
)
from .constants import (
    ACCEPT_ANY,
    ACCEPT_MANIFEST,
    ACCEPT_SEGMENT,
    ACCEPT_SUBTITLE,
    HOP_BY_HOP_HEADERS,
    MANIFEST_CACHE_CONTROL,
    MANIFEST_CONTENT_TYPE,
    RELAYED_BINARY_HEADERS,
    SUBTITLE_EXTRA_HEADERS,
)
from .rewriter import describe_manifest, proxy_reference, rewrite
from .utils import get_logger, redact_url, upstream_origin

logger = get_logger("pipeline")

_ACCEPT_BY_KIND = {
    MediaKind.MANIFEST: ACCEPT_MANIFEST,
    MediaKind.SEGMENT_BINARY: ACCEPT_SEGMENT,
    MediaKind.SUBTITLE_TEXT: ACCEPT_SUBTITLE,
    MediaKind.OTHER: ACCEPT_ANY,
}


@dataclass
class UpstreamResponse:
    """An open upstream response and how its body is being transferred."""
    response: httpx.Response
    mode: TransferMode

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.response.headers

    @property
    def body(self) -> bytes:
        """Materialized body. Only valid in buffered mode."""
        return self.response.content

    @property
    def text(self) -> str:
        return self.response.text

    async def materialize(self):
        """Read the rest of a streamed body so it can be treated as buffered."""
        if self.mode == TransferMode.BUFFERED:
            return
        await _read_body(self.response)
        await self.response.aclose()
        self.mode = TransferMode.BUFFERED

    async def aclose(self):
        await self.response.aclose()


async def _read_body(response: httpx.Response) -> bytes:
    try:
        return await response.aread()
    except httpx.TimeoutException as e:
        await response.aclose()
        raise UpstreamNetworkError("Upstream timed out while sending the body", code="UPSTREAM_TIMEOUT") from e
    except httpx.HTTPError as e:
        await response.aclose()
        raise UpstreamNetworkError(f"Upstream body could not be read ({type(e).__name__})") from e


def _text_status(status_code: int) -> int:
    # Rewritten and re-encoded bodies are always complete
    return 200 if status_code == 206 else status_code


class ForwardingPipeline:
    """Fetches a target URL on behalf of a client and builds the client response.

    Holds no per-request state; one instance serves every request and only
    shares the ``httpx.AsyncClient`` connection pool.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Optional[Cfg] = None):
        self.client = client
        self.settings = settings or cfg

    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self.settings.UPSTREAM_TIMEOUT_S,
            connect=self.settings.UPSTREAM_CONNECT_TIMEOUT_S,
        )

    def build_upstream_headers(self, request: ProxyRequest, expected: MediaKind,
                               mode: TransferMode) -> Dict[str, str]:
        """Outbound headers for the upstream GET."""
        user_agent = self.settings.UPSTREAM_USER_AGENT
        if self.settings.FORWARD_CLIENT_USER_AGENT and request.user_agent:
            user_agent = request.user_agent

        headers = {
            "User-Agent": user_agent,
            "Accept": _ACCEPT_BY_KIND[expected],
        }

        if self.settings.FORWARD_ORIGIN_HEADERS:
            origin = upstream_origin(request.target_url)
            if origin:
                headers["Referer"] = f"{origin}/"
                headers["Origin"] = origin

        if expected == MediaKind.SUBTITLE_TEXT:
            headers.update(SUBTITLE_EXTRA_HEADERS)

        # Streamed bodies are relayed raw, so ask for them uncompressed
        if mode == TransferMode.STREAMED:
            headers["Accept-Encoding"] = "identity"

        # Byte ranges only make sense for bodies relayed untouched
        if mode == TransferMode.STREAMED and self.settings.FORWARD_RANGE and request.range_header:
            headers["Range"] = request.range_header

        return headers

    async def fetch(self, request: ProxyRequest, expected: MediaKind,
                    mode: TransferMode) -> UpstreamResponse:
        """Issue the single upstream GET.

        Raises:
            UpstreamHTTPError: upstream answered with status >= 400 (body read)
            UpstreamNetworkError: no usable response (timeout, DNS, refused...)

        A 3xx that was not followed comes back buffered.
        """
        headers = self.build_upstream_headers(request, expected, mode)
        upstream_request = self.client.build_request(
            "GET", request.target_url, headers=headers, timeout=self.timeout()
        )

        try:
            response = await self.client.send(
                upstream_request,
                stream=True,
                follow_redirects=self.settings.FOLLOW_REDIRECTS,
            )
        except httpx.TimeoutException as e:
            raise UpstreamNetworkError("Upstream request timed out", code="UPSTREAM_TIMEOUT") from e
        except httpx.HTTPError as e:
            raise UpstreamNetworkError(f"Upstream request failed ({type(e).__name__})") from e

        if response.status_code >= 400:
            await _read_body(response)
            await response.aclose()
            raise UpstreamHTTPError(response)

        if 300 <= response.status_code < 400:
            mode = TransferMode.BUFFERED

        upstream = UpstreamResponse(response=response, mode=mode)
        if mode == TransferMode.BUFFERED:
            await _read_body(response)
            await response.aclose()
        return upstream

    async def handle(self, request: ProxyRequest) -> Response:
        """Run the request through fetch, classification and response assembly."""
        expected = kind_from_url(request.target_url)
        mode = transfer_mode_for(expected)
        logger.debug(f"Proxying {redact_url(request.target_url)} as {expected.value} ({mode.value})")

        try:
            upstream = await self.fetch(request, expected, mode)
        except UpstreamHTTPError as e:
            logger.info(f"Relaying upstream HTTP {e.status_code} for {redact_url(request.target_url)}")
            on_request_finished(expected.value, "upstream_error")
            return self.relay_upstream_error(e)
        except UpstreamNetworkError as e:
            on_upstream_error(e.code.lower())
            on_request_finished(expected.value, "network_error")
            logger.error(f"Upstream fetch failed for {request.target_url}: {e}")
            raise

        if 300 <= upstream.status_code < 400:
            on_request_finished(expected.value, "redirect")
            return self.redirect_response(request, upstream)

        try:
            kind = classify(request.target_url, upstream.headers)

            if kind in (MediaKind.MANIFEST, MediaKind.SUBTITLE_TEXT):
                if upstream.status_code == 206:
                    # A partial playlist or subtitle cannot be decoded or rewritten
                    await upstream.aclose()
                    logger.debug(f"Partial {kind.value} for {redact_url(request.target_url)}, fetching it whole")
                    try:
                        # Buffered fetches never carry Range
                        upstream = await self.fetch(request, kind, TransferMode.BUFFERED)
                    except UpstreamHTTPError as e:
                        on_request_finished(kind.value, "upstream_error")
                        return self.relay_upstream_error(e)
                else:
                    await upstream.materialize()

            if (kind in (MediaKind.SUBTITLE_TEXT, MediaKind.OTHER)
                    and upstream.mode == TransferMode.BUFFERED
                    and looks_like_manifest(upstream.body)):
                kind = MediaKind.MANIFEST

            if kind == MediaKind.MANIFEST:
                response = self.manifest_response(request, upstream)
            elif kind == MediaKind.SUBTITLE_TEXT:
                response = self.subtitle_response(request, upstream)
            else:
                response = self.binary_response(request, upstream)
        except BaseException:
            await upstream.aclose()
            raise

        on_request_finished(kind.value, "ok")
        return response

    def manifest_response(self, request: ProxyRequest, upstream: UpstreamResponse) -> Response:
        rewritten = rewrite(upstream.text, request.target_url, self.settings.PROXY_ROUTE)
        relay_manifest_rewrites.inc()
        logger.debug(f"Rewrote manifest {redact_url(request.target_url)}: {describe_manifest(rewritten)}")
        return Response(
            content=rewritten,
            status_code=_text_status(upstream.status_code),
            media_type=MANIFEST_CONTENT_TYPE,
            headers={
                "Cache-Control": MANIFEST_CACHE_CONTROL,
                "Access-Control-Allow-Origin": "*",
            },
        )

    def subtitle_response(self, request: ProxyRequest, upstream: UpstreamResponse) -> Response:
        # Body is re-encoded as UTF-8, so the declared charset must follow
        mime = content_type_for(request.target_url, upstream.headers).split(";", 1)[0].strip()
        return Response(
            content=upstream.text,
            status_code=_text_status(upstream.status_code),
            media_type=f"{mime}; charset=utf-8",
            headers={
                "Cache-Control": f"public, max-age={self.settings.SUBTITLE_CACHE_MAX_AGE_S}",
                "Access-Control-Allow-Origin": "*",
            },
        )

    def binary_response(self, request: ProxyRequest, upstream: UpstreamResponse) -> Response:
        headers = {
            "Cache-Control": f"public, max-age={self.settings.SEGMENT_CACHE_MAX_AGE_S}",
            "Access-Control-Allow-Origin": "*",
        }
        media_type = content_type_for(request.target_url, upstream.headers)

        if upstream.mode == TransferMode.BUFFERED:
            # Decoded body: length and encoding are recomputed, not relayed
            for name in RELAYED_BINARY_HEADERS:
                if name in ("content-length", "content-encoding"):
                    continue
                if name in upstream.headers:
                    headers[name] = upstream.headers[name]
            return Response(
                content=upstream.body,
                status_code=upstream.status_code,
                media_type=media_type,
                headers=headers,
            )

        for name in RELAYED_BINARY_HEADERS:
            if name in upstream.headers:
                headers[name] = upstream.headers[name]
        return StreamingResponse(
            self.relay_stream(request, upstream),
            status_code=upstream.status_code,
            media_type=media_type,
            headers=headers,
            background=BackgroundTask(upstream.aclose),
        )

    async def relay_stream(self, request: ProxyRequest, upstream: UpstreamResponse) -> AsyncIterator[bytes]:
        """Pipe raw upstream bytes to the client as they arrive."""
        sent = 0
        relay_active_streams.inc()
        try:
            async for chunk in upstream.response.aiter_raw(self.settings.STREAM_CHUNK_SIZE):
                sent += len(chunk)
                yield chunk
        except asyncio.CancelledError:
            logger.debug(f"Client went away after {sent} bytes of {redact_url(request.target_url)}")
            raise
        except httpx.HTTPError as e:
            # Headers are already out, the only option left is ending the body early
            on_upstream_error("stream_interrupted")
            logger.warning(
                f"Upstream stream interrupted for {redact_url(request.target_url)} after {sent} bytes: {type(e).__name__}"
            )
        finally:
            relay_active_streams.dec()
            relay_bytes_streamed.inc(sent)
            await asyncio.shield(upstream.aclose())

    def relay_upstream_error(self, error: UpstreamHTTPError) -> Response:
        """Pass an upstream error status through with its body and headers."""
        upstream = error.response
        headers = {
            name: value
            for name, value in upstream.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
            and name.lower() not in ("content-length", "content-encoding")
        }
        headers["Access-Control-Allow-Origin"] = "*"
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers=headers,
        )

    def redirect_response(self, request: ProxyRequest, upstream: UpstreamResponse) -> Response:
        """Relay a 3xx that was not followed, keeping the client on the proxy route."""
        headers = {
            "Cache-Control": MANIFEST_CACHE_CONTROL,
            "Access-Control-Allow-Origin": "*",
        }
        location = upstream.headers.get("location")
        if location:
            resolved = urljoin(request.target_url, location.strip())
            if urlsplit(resolved).scheme.lower() in ("http", "https"):
                location = proxy_reference(resolved, self.settings.PROXY_ROUTE)
            headers["Location"] = location
        logger.debug(f"Relaying upstream HTTP {upstream.status_code} for {redact_url(request.target_url)}")
        return Response(status_code=upstream.status_code, headers=headers)
