"""
Unit tests for request parsing.
"""

import base64

import pytest

from lambda_api import Invocation, Request
from lambda_api.errors import EventParseError
from lambda_api.http.event import parse_request
from lambda_api.http.request import parse_auth


@pytest.fixture
def parse(make_api):
    """Parse an event into a fresh Request."""
    def factory(evt, context=None, **options):
        api = make_api(**options)
        request = Request(api, Invocation(event=evt, context=context, count=1, cold_start=True))
        return parse_request(request, evt, context)

    return factory


class TestParseRequest:
    """Tests for REST API (v1) events."""

    def test_basic_fields(self, parse, event):
        """Test method, path, query and headers."""
        req = parse(event("post", "/users", query={"page": "2"}, headers={"X-Custom": "abc"}))

        assert req.method == "POST"
        assert req.path == "/users"
        assert req.query == {"page": "2"}
        assert req.multi_value_query == {"page": ["2"]}
        assert req.headers["x-custom"] == "abc"
        assert req.get_header("X-Custom") == "abc"
        assert req.user_agent == "pytest"
        assert req.interface == "apigateway"

    def test_version_from_config(self, parse, event):
        """Test that the API version is copied onto the request."""
        req = parse(event(), version="v2")
        assert req.version == "v2"

    def test_multi_value_query_last_wins(self, parse, event):
        """Test that query uses the last of repeated values."""
        evt = event(multiValueQueryStringParameters={"tag": ["a", "b"]})
        req = parse(evt)

        assert req.query["tag"] == "b"
        assert req.multi_value_query["tag"] == ["a", "b"]

    def test_multi_value_headers_joined(self, parse, event):
        """Test that repeated headers are joined with commas."""
        evt = event(multiValueHeaders={"Accept": ["text/html", "application/json"]})
        req = parse(evt)

        assert req.headers["accept"] == "text/html, application/json"

    def test_missing_fields_default(self, parse):
        """Test that a nearly empty event still parses."""
        req = parse({})

        assert req.method == "GET"
        assert req.path == "/"
        assert req.query == {}
        assert req.headers == {}
        assert req.body is None
        assert req.auth == {"type": "none", "value": None}

    def test_invalid_event(self, parse):
        """Test that non-mapping events are rejected."""
        with pytest.raises(EventParseError, match="Invalid event") as exc_info:
            parse(["not", "a", "dict"])
        assert exc_info.value.status_code == 400

    def test_path_parameters_and_stage_variables(self, parse, event):
        """Test pass-through of pathParameters and stageVariables."""
        evt = event(pathParameters={"id": "42"}, stageVariables={"env": "dev"})
        req = parse(evt)

        assert req.params == {"id": "42"}
        assert req.stage_variables == {"env": "dev"}


class TestHTTPAPIEvents:
    """Tests for HTTP API (v2.0) and ALB events."""

    def test_v2_event(self, parse):
        """Test rawPath, http.method and the cookies array."""
        evt = {
            "version": "2.0",
            "rawPath": "/v2/items",
            "headers": {"user-agent": "agent"},
            "cookies": ["session=abc", "theme=dark"],
            "requestContext": {"http": {"method": "PUT", "sourceIp": "10.0.0.1"}},
        }
        req = parse(evt)

        assert req.method == "PUT"
        assert req.path == "/v2/items"
        assert req.cookies == {"session": "abc", "theme": "dark"}
        assert req.ip == "10.0.0.1"

    def test_alb_event(self, parse, event):
        """Test that requestContext.elb marks an ALB request."""
        req = parse(event(requestContext={"elb": {"targetGroupArn": "arn"}}))
        assert req.interface == "alb"


class TestClientInfo:
    """Tests for ip, device and country detection."""

    def test_ip_from_source(self, parse, event):
        """Test the requestContext source IP."""
        assert parse(event()).ip == "192.168.100.1"

    def test_ip_from_forwarded_for(self, parse, event):
        """Test that the first X-Forwarded-For entry wins."""
        req = parse(event(headers={"X-Forwarded-For": "12.34.56.78, 10.0.0.1"}))
        assert req.ip == "12.34.56.78"

    @pytest.mark.parametrize("viewer", ["desktop", "mobile", "tv", "tablet"])
    def test_client_type(self, parse, event, viewer):
        """Test CloudFront viewer headers."""
        req = parse(event(headers={f"CloudFront-Is-{viewer.title()}-Viewer": "true"}))
        assert req.client_type == viewer

    def test_client_type_unknown(self, parse, event):
        """Test the default client type."""
        assert parse(event()).client_type == "unknown"

    def test_client_country(self, parse, event):
        """Test that the viewer country is upper-cased."""
        req = parse(event(headers={"CloudFront-Viewer-Country": "us"}))
        assert req.client_country == "US"


class TestBody:
    """Tests for body decoding."""

    def test_json_body(self, parse, event):
        """Test that JSON bodies are decoded."""
        req = parse(event("POST", body='{"name":"John"}'))

        assert req.body == {"name": "John"}
        assert req.raw_body == '{"name":"John"}'

    def test_text_body(self, parse, event):
        """Test that non-JSON bodies stay strings."""
        req = parse(event("POST", body="plain text", headers={"content-type": "text/plain"}))
        assert req.body == "plain text"

    def test_form_body(self, parse, event):
        """Test urlencoded form bodies."""
        req = parse(event(
            "POST",
            body="name=John&tag=a&tag=b",
            headers={"content-type": "application/x-www-form-urlencoded"},
        ))
        assert req.body == {"name": "John", "tag": ["a", "b"]}

    def test_base64_json_body(self, parse, event):
        """Test that base64 bodies are decoded before parsing."""
        encoded = base64.b64encode(b'{"test":"123"}').decode()
        req = parse(event("POST", body=encoded, is_base64=True))

        assert req.is_base64_encoded is True
        assert req.body == {"test": "123"}

    def test_base64_binary_body(self, parse, event):
        """Test that undecodable bytes are left as bytes."""
        encoded = base64.b64encode(b"\xff\xfe\x00").decode()
        req = parse(event("POST", body=encoded, is_base64=True))
        assert req.body == b"\xff\xfe\x00"

    def test_invalid_base64_body(self, parse, event):
        """Test that malformed base64 is a parse error."""
        with pytest.raises(EventParseError, match="Invalid base64 body"):
            parse(event("POST", body="***", is_base64=True))

    def test_parsed_body_passthrough(self, parse, event):
        """Test that already-parsed bodies are kept as-is."""
        req = parse(event("POST", body={"already": "parsed"}))
        assert req.body == {"already": "parsed"}


class TestCookies:
    """Tests for cookie parsing."""

    def test_cookies(self, parse, event):
        """Test URL-decoding and JSON-decoding of cookie values."""
        req = parse(event(headers={
            "Cookie": "test=some%20value; obj=%7B%22foo%22%3A%22bar%22%7D",
        }))
        assert req.cookies == {"test": "some value", "obj": {"foo": "bar"}}

    def test_no_cookies(self, parse, event):
        """Test that a missing Cookie header gives an empty dict."""
        assert parse(event()).cookies == {}


class TestAuth:
    """Tests for Authorization header parsing."""

    def test_bearer(self):
        """Test Bearer tokens."""
        assert parse_auth("Bearer abc.def") == {"type": "Bearer", "value": "abc.def"}

    def test_basic(self):
        """Test Basic credentials."""
        token = base64.b64encode(b"test:testing").decode()
        assert parse_auth(f"Basic {token}") == {
            "type": "Basic",
            "value": token,
            "username": "test",
            "password": "testing",
        }

    def test_oauth(self):
        """Test OAuth parameter parsing."""
        auth = parse_auth('OAuth oauth_consumer_key="xyz", oauth_version="1.0"')

        assert auth["type"] == "OAuth"
        assert auth["oauth_consumer_key"] == "xyz"
        assert auth["oauth_version"] == "1.0"

    def test_digest(self):
        """Test Digest values are passed through."""
        assert parse_auth("Digest abc")["type"] == "Digest"

    @pytest.mark.parametrize("header", [None, "", "Unknown scheme", "Basic !!!"])
    def test_none(self, header):
        """Test missing and unrecognized headers."""
        assert parse_auth(header) == {"type": "none", "value": None}

    def test_auth_on_request(self, parse, event):
        """Test that the parsed header lands on req.auth."""
        req = parse(event(headers={"Authorization": "Bearer token"}))
        assert req.auth == {"type": "Bearer", "value": "token"}
