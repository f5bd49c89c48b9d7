"""
Unit tests for response compression.
"""

import base64
import gzip
import zlib

import brotli
import pytest

from lambda_api.compression import compress, compress_body, negotiate


BODY = '{"message":"' + "compress me " * 20 + '"}'


class TestNegotiate:
    """Tests for encoding negotiation."""

    def test_app_priority_wins(self):
        """Test that the app's order decides, not the client's."""
        assert negotiate(["br", "gzip"], {"gzip": 1.0, "br": 1.0}) == "br"

    def test_first_overlap(self):
        """Test skipping encodings the client does not accept."""
        assert negotiate(["br", "gzip", "deflate"], {"deflate": 1.0, "gzip": 1.0}) == "gzip"

    def test_no_overlap(self):
        """Test that no shared encoding means no compression."""
        assert negotiate(["br"], {"gzip": 1.0}) is None

    def test_wildcard(self):
        """Test that '*' accepts the app's first choice."""
        assert negotiate(["gzip", "br"], {"*": 1.0}) == "gzip"

    def test_refused_encoding_beats_wildcard(self):
        """Test that q=0 refuses an encoding even alongside '*'."""
        assert negotiate(["gzip"], {"gzip": 0.0, "*": 1.0}) is None
        assert negotiate(["br", "gzip"], {"br": 0.0, "*": 0.5}) == "gzip"

    def test_refused_wildcard(self):
        """Test that '*;q=0' accepts nothing beyond the listed encodings."""
        assert negotiate(["br", "gzip"], {"gzip": 1.0, "*": 0.0}) == "gzip"

    def test_compression_disabled(self):
        """Test an app without encodings."""
        assert negotiate([], {"gzip": 1.0}) is None


class TestCompress:
    """Tests for the codecs."""

    def test_gzip(self):
        """Test gzip output decodes to the input."""
        assert gzip.decompress(compress(b"hello", "gzip")) == b"hello"

    def test_gzip_is_deterministic(self):
        """Test that the gzip header carries no timestamp."""
        assert compress(b"hello", "gzip") == compress(b"hello", "gzip")

    def test_deflate(self):
        """Test that deflate is a zlib stream."""
        assert zlib.decompress(compress(b"hello", "deflate")) == b"hello"

    def test_brotli(self):
        """Test brotli output decodes to the input."""
        assert brotli.decompress(compress(b"hello", "br")) == b"hello"

    def test_unsupported(self):
        """Test an unknown encoding."""
        with pytest.raises(ValueError, match="Unsupported encoding: zstd"):
            compress(b"hello", "zstd")

    def test_compress_body_is_base64(self):
        """Test the payload-ready form."""
        out = compress_body(b"hello", "gzip")
        assert gzip.decompress(base64.b64decode(out)) == b"hello"


class TestCompressedResponses:
    """Tests for compression applied by res.send()."""

    def test_gzip_response(self, make_api, event):
        """Test a negotiated gzip body."""
        api = make_api(compression=["gzip"]).handle(lambda req, res, next: res.send(BODY))

        result = api(event(headers={"Accept-Encoding": "gzip, deflate"}))

        assert result["isBase64Encoded"] is True
        assert result["multiValueHeaders"]["content-encoding"] == ["gzip"]
        assert gzip.decompress(base64.b64decode(result["body"])).decode() == BODY

    def test_brotli_preferred(self, make_api, event):
        """Test that compression=True prefers br."""
        api = make_api(compression=True).handle(lambda req, res, next: res.send(BODY))

        result = api(event(headers={"Accept-Encoding": "gzip, deflate, br"}))

        assert result["multiValueHeaders"]["content-encoding"] == ["br"]
        assert brotli.decompress(base64.b64decode(result["body"])).decode() == BODY

    def test_deflate_response(self, make_api, event):
        """Test a negotiated deflate body."""
        api = make_api(compression=["deflate"]).handle(lambda req, res, next: res.send(BODY))

        result = api(event(headers={"Accept-Encoding": "deflate"}))

        assert zlib.decompress(base64.b64decode(result["body"])).decode() == BODY

    def test_no_overlap_sends_plain(self, make_api, event):
        """Test that a client without a shared encoding gets plain text."""
        api = make_api(compression=["br"]).handle(lambda req, res, next: res.send(BODY))

        result = api(event(headers={"Accept-Encoding": "gzip"}))

        assert result["isBase64Encoded"] is False
        assert "content-encoding" not in result["multiValueHeaders"]
        assert result["body"] == BODY

    def test_empty_body_not_compressed(self, make_api, event):
        """Test that empty bodies stay empty."""
        api = make_api(compression=True).handle(lambda req, res, next: res.send(""))

        result = api(event(headers={"Accept-Encoding": "gzip"}))

        assert result["body"] == ""
        assert "content-encoding" not in result["multiValueHeaders"]

    def test_errors_are_compressed(self, make_api, event):
        """Test that error bodies go through the same negotiation."""
        def handler(req, res, next):
            raise RuntimeError("compressed failure")

        api = make_api(compression=["gzip"]).handle(handler)

        result = api(event(headers={"Accept-Encoding": "gzip"}))

        assert result["statusCode"] == 500
        assert gzip.decompress(base64.b64decode(result["body"])) == (
            b'{"error":"compressed failure"}'
        )

    def test_refused_encoding_not_used(self, make_api, event):
        """Test that 'gzip;q=0, *' is sent uncompressed."""
        api = make_api(compression=["gzip"]).handle(lambda req, res, next: res.send(BODY))

        result = api(event(headers={"Accept-Encoding": "gzip;q=0, *"}))

        assert "content-encoding" not in result["multiValueHeaders"]
        assert result["isBase64Encoded"] is False
        assert result["body"] == BODY
