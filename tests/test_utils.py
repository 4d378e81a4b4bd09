"""Tests for proxy utility helpers"""

from unittest.mock import Mock

from hlsrelay.proxy.utils import get_client_ip, get_logger, redact_url, upstream_origin


def make_request(headers=None, host="192.168.1.50"):
    request = Mock()
    request.headers = headers or {}
    request.client = Mock(host=host) if host else None
    return request


def test_client_ip_from_forwarded_for():
    request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
    assert get_client_ip(request) == "203.0.113.7"


def test_client_ip_from_real_ip():
    request = make_request({"X-Real-IP": " 203.0.113.9 "})
    assert get_client_ip(request) == "203.0.113.9"


def test_client_ip_falls_back_to_peer():
    assert get_client_ip(make_request()) == "192.168.1.50"
    assert get_client_ip(make_request({"X-Forwarded-For": " , 10.0.0.1"})) == "192.168.1.50"
    assert get_client_ip(make_request(host=None)) == "unknown"


def test_upstream_origin():
    assert upstream_origin("https://cdn.example:8443/a/b.m3u8?x=1") == "https://cdn.example:8443"
    assert upstream_origin("/relative") == ""
    assert upstream_origin("http://[::1") == ""


def test_redact_url_drops_tokens():
    assert redact_url("https://cdn.example/a/seg.ts?token=secret#t") == "https://cdn.example/a/seg.ts"
    assert redact_url("http://[::1") == "<unparseable url>"


def test_logger_naming():
    assert get_logger("pipeline").name == "hls_relay.pipeline"
