from prometheus_client import Counter, Gauge

# Every finished proxy request, by classified media kind and outcome
relay_requests = Counter(
    "relay_requests_total",
    "Proxied requests by media kind and outcome",
    ["kind", "outcome"],
)

# Upstream failures that produced no usable response
relay_upstream_errors = Counter(
    "relay_upstream_errors_total",
    "Upstream fetch failures by reason",
    ["reason"],
)

relay_manifest_rewrites = Counter("relay_manifest_rewrites_total", "Manifests rewritten")
relay_bytes_streamed = Counter("relay_bytes_streamed_total", "Bytes piped from upstream to clients in streamed mode")
relay_active_streams = Gauge("relay_active_streams", "Streamed responses currently in flight")
relay_rate_limited = Counter("relay_rate_limited_total", "Requests rejected by the rate limiter")


def on_request_finished(kind: str, outcome: str):
    relay_requests.labels(kind=kind, outcome=outcome).inc()


def on_upstream_error(reason: str):
    relay_upstream_errors.labels(reason=reason).inc()
