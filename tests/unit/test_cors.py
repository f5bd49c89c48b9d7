"""
Unit tests for the CORS middleware.
"""

from lambda_api import CORSMiddleware, cors


class TestCORSMiddleware:
    """Tests for CORSMiddleware."""

    def test_headers_added(self, make_api, event):
        """Test that regular requests get CORS headers and reach the handler."""
        api = make_api().use(cors(origin="https://app.com")).handle(lambda req, res, next: "ok")

        result = api(event())

        headers = result["multiValueHeaders"]
        assert result["body"] == "ok"
        assert headers["access-control-allow-origin"] == ["https://app.com"]
        assert headers["access-control-allow-methods"] == ["GET, PUT, POST, DELETE, OPTIONS"]

    def test_preflight(self, make_api, event):
        """Test that OPTIONS requests are answered without the handler."""
        calls = []
        api = make_api().use(cors(max_age=600000, credentials=True))
        api.handle(lambda req, res, next: calls.append("handler"))

        result = api(event("OPTIONS"))

        assert result["statusCode"] == 200
        assert result["body"] == ""
        assert result["multiValueHeaders"]["access-control-max-age"] == ["600"]
        assert result["multiValueHeaders"]["access-control-allow-credentials"] == ["true"]
        assert calls == []

    def test_preflight_disabled(self, make_api, event):
        """Test passing OPTIONS through to the handler."""
        api = make_api().use(CORSMiddleware(preflight=False))
        api.handle(lambda req, res, next: res.status(204).send(""))

        result = api(event("OPTIONS"))

        assert result["statusCode"] == 204
        assert result["multiValueHeaders"]["access-control-allow-origin"] == ["*"]

    def test_name(self):
        """Test the step name."""
        assert cors().name == "CORSMiddleware"
