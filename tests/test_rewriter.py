"""Tests for HLS playlist rewriting"""

from unittest.mock import patch

import pytest

from hlsrelay.proxy import rewriter
from hlsrelay.proxy.rewriter import (
    BaseResolutionContext,
    LineKind,
    classify_line,
    describe_manifest,
    proxy_reference,
    rewrite,
)

BASE = "https://cdn.example/a/master.m3u8"

MASTER = (
    "#EXTM3U\n"
    "#EXT-X-VERSION:3\n"
    "#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360\n"
    "stream_0.m3u8\n"
    "#EXT-X-STREAM-INF:BANDWIDTH=1400000,RESOLUTION=1280x720\n"
    "https://other.cdn/hd/index.m3u8\n"
)


class TestBaseResolutionContext:

    def test_directory_of_manifest(self):
        context = BaseResolutionContext.from_url("https://host/path/to/manifest.m3u8")
        assert context.scheme == "https"
        assert context.host == "host"
        assert context.directory_path == "/path/to/"
        assert context.base_url == "https://host/path/to/"

    def test_query_is_not_part_of_directory(self):
        context = BaseResolutionContext.from_url("https://host/path/to/manifest.m3u8?sig=abc/def")
        assert context.directory_path == "/path/to/"

    def test_port_is_kept(self):
        context = BaseResolutionContext.from_url("http://host:8081/live/index.m3u8")
        assert context.base_url == "http://host:8081/live/"

    def test_bare_host(self):
        assert BaseResolutionContext.from_url("https://host").directory_path == "/"

    @pytest.mark.parametrize("url", ["not a url", "/relative/only.m3u8", "ftp://host/x.m3u8", "", None])
    def test_rejects_unusable_base(self, url):
        with pytest.raises(ValueError):
            BaseResolutionContext.from_url(url)

    def test_resolve(self):
        context = BaseResolutionContext.from_url("https://host/path/to/manifest.m3u8")
        assert context.resolve("seg1.ts") == "https://host/path/to/seg1.ts"
        assert context.resolve("sub/seg1.ts") == "https://host/path/to/sub/seg1.ts"
        assert context.resolve("../seg1.ts") == "https://host/path/seg1.ts"
        assert context.resolve("/live/seg1.ts") == "https://host/live/seg1.ts"
        assert context.resolve("skd://key-123") is None


class TestClassifyLine:

    @pytest.mark.parametrize("line,expected", [
        ("", LineKind.BLANK),
        ("   ", LineKind.BLANK),
        ('#EXT-X-MAP:URI="init.mp4"', LineKind.ATTRIBUTE_TAG),
        ('#EXT-X-KEY:METHOD=AES-128,URI="key.bin"', LineKind.ATTRIBUTE_TAG),
        ('#EXT-X-MEDIA:TYPE=SUBTITLES,GROUP-ID="subs",URI="subs/en.m3u8"', LineKind.ATTRIBUTE_TAG),
        ("#EXT-X-KEY:METHOD=NONE", LineKind.COMMENT),
        ("#EXT-X-MEDIA-SEQUENCE:42", LineKind.COMMENT),
        ("#EXTINF:10.0,", LineKind.COMMENT),
        ("# just a comment", LineKind.COMMENT),
        ("https://cdn.example/seg.ts", LineKind.ABSOLUTE_URL),
        ("http://cdn.example/anything", LineKind.ABSOLUTE_URL),
        ("seg1.ts", LineKind.RELATIVE_URL),
        ("seg1.ts?token=abc", LineKind.RELATIVE_URL),
        ("low/index.m3u8", LineKind.RELATIVE_URL),
        ("some-directive", LineKind.PASSTHROUGH),
        ("stream", LineKind.PASSTHROUGH),
    ])
    def test_line_kinds(self, line, expected):
        assert classify_line(line) == expected


class TestRewrite:

    def test_master_playlist(self):
        result = rewrite(MASTER, BASE, "/proxy")
        lines = result.split("\n")
        assert lines[0] == "#EXTM3U"
        assert lines[1] == "#EXT-X-VERSION:3"
        assert lines[2] == "#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360"
        assert lines[3] == "/proxy?url=https%3A%2F%2Fcdn.example%2Fa%2Fstream_0.m3u8"
        assert lines[5] == "/proxy?url=https%3A%2F%2Fother.cdn%2Fhd%2Findex.m3u8"
        assert result.endswith("\n")

    def test_absolute_url_is_encoded_as_is(self):
        result = rewrite("https://other.cdn/seg.ts?token=a&b=c\n", BASE)
        assert result == "/proxy?url=https%3A%2F%2Fother.cdn%2Fseg.ts%3Ftoken%3Da%26b%3Dc\n"

    def test_relative_resolution(self):
        manifest = "seg1.ts\n/live/seg2.ts\n../seg3.ts\nhi/seg4.ts?x=1\n"
        result = rewrite(manifest, "https://host/path/to/manifest.m3u8")
        assert result.split("\n")[:4] == [
            "/proxy?url=" + "https%3A%2F%2Fhost%2Fpath%2Fto%2Fseg1.ts",
            "/proxy?url=" + "https%3A%2F%2Fhost%2Flive%2Fseg2.ts",
            "/proxy?url=" + "https%3A%2F%2Fhost%2Fpath%2Fseg3.ts",
            "/proxy?url=" + "https%3A%2F%2Fhost%2Fpath%2Fto%2Fhi%2Fseg4.ts%3Fx%3D1",
        ]

    def test_tags_comments_and_blanks_untouched(self):
        manifest = (
            "#EXTM3U\n"
            "#EXT-X-TARGETDURATION:10\n"
            "#EXT-X-MEDIA-SEQUENCE:42\n"
            "\n"
            "# a free comment with https://example.com/in/it.ts\n"
            "#EXTINF:10.0,\n"
            "seg42.ts\n"
            "#EXT-X-ENDLIST\n"
        )
        result = rewrite(manifest, "https://host/v/index.m3u8")
        original_lines = manifest.split("\n")
        result_lines = result.split("\n")
        assert len(result_lines) == len(original_lines)
        for i, line in enumerate(original_lines):
            if i == 6:
                assert result_lines[i] == "/proxy?url=https%3A%2F%2Fhost%2Fv%2Fseg42.ts"
            else:
                assert result_lines[i] == line

    def test_crlf_terminators_preserved(self):
        manifest = "#EXTM3U\r\n#EXTINF:4,\r\nseg.ts\r\n\r\n#EXT-X-ENDLIST"
        result = rewrite(manifest, "https://host/v/index.m3u8")
        assert result == (
            "#EXTM3U\r\n#EXTINF:4,\r\n/proxy?url=https%3A%2F%2Fhost%2Fv%2Fseg.ts\r\n\r\n#EXT-X-ENDLIST"
        )

    def test_map_uri_replaced_rest_of_line_intact(self):
        manifest = '#EXT-X-MAP:URI="init.mp4",BYTERANGE="720@0"\n'
        result = rewrite(manifest, "https://host/v/index.m3u8")
        assert result == (
            '#EXT-X-MAP:URI="/proxy?url=https%3A%2F%2Fhost%2Fv%2Finit.mp4",BYTERANGE="720@0"\n'
        )

    def test_key_and_media_uris_rewritten(self):
        manifest = (
            '#EXT-X-KEY:METHOD=AES-128,URI="https://keys.example/k1",IV=0x1234\n'
            '#EXT-X-MEDIA:TYPE=SUBTITLES,GROUP-ID="subs",NAME="English",URI="subs/en.m3u8"\n'
        )
        lines = rewrite(manifest, BASE).split("\n")
        assert lines[0] == (
            '#EXT-X-KEY:METHOD=AES-128,URI="/proxy?url=https%3A%2F%2Fkeys.example%2Fk1",IV=0x1234'
        )
        assert lines[1] == (
            '#EXT-X-MEDIA:TYPE=SUBTITLES,GROUP-ID="subs",NAME="English",'
            'URI="/proxy?url=https%3A%2F%2Fcdn.example%2Fa%2Fsubs%2Fen.m3u8"'
        )

    @pytest.mark.parametrize("line", [
        '#EXT-X-KEY:METHOD=SAMPLE-AES,URI="skd://key-123",KEYFORMAT="com.apple.streamingkeydelivery"',
        '#EXT-X-KEY:METHOD=AES-128,URI="data:text/plain;base64,AAAA"',
        '#EXT-X-MAP:URI=""',
    ])
    def test_non_http_uris_left_alone(self, line):
        assert rewrite(line + "\n", BASE) == line + "\n"

    def test_unknown_lines_pass_through(self):
        manifest = "#EXTM3U\nsome-directive\nstream\n"
        assert rewrite(manifest, BASE) == manifest

    def test_custom_proxy_path(self):
        assert rewrite("seg.ts", BASE, "/hls/relay") == "/hls/relay?url=https%3A%2F%2Fcdn.example%2Fa%2Fseg.ts"

    @pytest.mark.parametrize("base", ["not a url", "ftp://host/x.m3u8", "", None])
    def test_malformed_base_returns_input(self, base):
        assert rewrite(MASTER, base) == MASTER

    def test_non_text_input_returned_as_is(self):
        assert rewrite(None, BASE) is None
        assert rewrite(b"#EXTM3U", BASE) == b"#EXTM3U"

    def test_empty_manifest(self):
        assert rewrite("", BASE) == ""

    def test_deterministic(self):
        assert rewrite(MASTER, BASE) == rewrite(MASTER, BASE)

    def test_line_failure_returns_original(self):
        with patch.object(rewriter, "rewrite_line", side_effect=ValueError("boom")):
            assert rewrite(MASTER, BASE) == MASTER

    def test_unexpected_failure_returns_original(self):
        with patch.object(rewriter, "rewrite_line", side_effect=RuntimeError("boom")):
            assert rewrite(MASTER, BASE) == MASTER


def test_proxy_reference_encodes_everything():
    assert proxy_reference("https://h/a b?c=d&e=f#g") == "/proxy?url=https%3A%2F%2Fh%2Fa%20b%3Fc%3Dd%26e%3Df%23g"


def test_describe_manifest_master():
    summary = describe_manifest(MASTER)
    assert summary["parsed"] is True
    assert summary["variant"] is True
    assert summary["playlists"] == 2


def test_describe_manifest_media():
    manifest = "#EXTM3U\n#EXT-X-TARGETDURATION:10\n#EXTINF:10.0,\nseg1.ts\n#EXTINF:10.0,\nseg2.ts\n#EXT-X-ENDLIST\n"
    summary = describe_manifest(manifest)
    assert summary["variant"] is False
    assert summary["segments"] == 2
    assert summary["endlist"] is True
