"""
=============================================================================
EVENT NORMALIZATION
=============================================================================

Turns a raw API Gateway (REST v1, HTTP v2.0) or ALB event into the fields
of a Request.

    ┌────────────────────────────┬──────────────────────────────────────┐
    │ Event field                │ Request field                        │
    ├────────────────────────────┼──────────────────────────────────────┤
    │ httpMethod / http.method   │ method (upper-cased, default GET)    │
    │ path / rawPath (v2.0)      │ path                                 │
    │ queryStringParameters +    │ query (last value wins)              │
    │ multiValueQuery...         │ multi_value_query                    │
    │ headers / multiValueHeaders│ headers (lowercase, joined by ", ")  │
    │ cookie header / cookies    │ cookies (URL + JSON decoded)         │
    │ body + isBase64Encoded     │ raw_body, body (form / JSON / text)  │
    │ x-forwarded-for / sourceIp │ ip                                   │
    │ cloudfront-is-*-viewer     │ client_type                          │
    │ cloudfront-viewer-country  │ client_country                       │
    │ requestContext.elb         │ interface ("alb" / "apigateway")     │
    │ authorization              │ auth                                 │
    │ context.aws_request_id     │ id                                   │
    └────────────────────────────┴──────────────────────────────────────┘

A malformed event raises EventParseError, which the engine routes through
the error protocol with a 400 status.

=============================================================================
"""

import base64
import binascii
import json
from typing import Any, Dict, List, Tuple
from urllib.parse import parse_qs

from ..errors import EventParseError
from .headers import parse_cookies
from .request import Request, parse_auth


# Checked in order, first "true" wins
_VIEWER_TYPES = ("desktop", "mobile", "tv", "tablet")


def _normalize_headers(event: Dict[str, Any]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for name, value in (event.get("headers") or {}).items():
        headers[name.lower()] = value

    for name, values in (event.get("multiValueHeaders") or {}).items():
        if isinstance(values, list):
            headers[name.lower()] = ", ".join(str(v) for v in values)
        elif values is not None:
            headers[name.lower()] = str(values)

    # HTTP API v2.0 moves cookies out of the headers
    cookies = event.get("cookies")
    if cookies and "cookie" not in headers:
        headers["cookie"] = "; ".join(cookies)

    return headers


def _normalize_query(event: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, List[str]]]:
    query: Dict[str, Any] = dict(event.get("queryStringParameters") or {})
    multi: Dict[str, List[str]] = {}

    multi_source = event.get("multiValueQueryStringParameters") or {}
    for name, values in multi_source.items():
        values = values if isinstance(values, list) else [values]
        multi[name] = list(values)
        if values:
            query[name] = values[-1]

    for name, value in query.items():
        multi.setdefault(name, [value])

    return query, multi


def _context_id(context: Any) -> Any:
    if context is None:
        return None
    if isinstance(context, dict):
        return context.get("awsRequestId", context.get("aws_request_id"))
    return getattr(context, "aws_request_id", None)


def _client_type(headers: Dict[str, str]) -> str:
    for viewer in _VIEWER_TYPES:
        if headers.get(f"cloudfront-is-{viewer}-viewer") == "true":
            return viewer
    return "unknown"


def _parse_body(raw: Any, is_base64: bool, content_type: str) -> Any:
    if raw is None:
        return None
    if not isinstance(raw, str):
        # Already-parsed payloads (test harnesses, direct invokes)
        return raw

    body = raw
    if is_base64:
        try:
            decoded = base64.b64decode(raw, validate=True)
        except binascii.Error as exc:
            raise EventParseError("Invalid base64 body") from exc
        try:
            body = decoded.decode("utf-8")
        except UnicodeDecodeError:
            return decoded

    if content_type.split(";")[0].strip().lower() == "application/x-www-form-urlencoded":
        form = parse_qs(body, keep_blank_values=True)
        return {key: values[0] if len(values) == 1 else values
                for key, values in form.items()}

    try:
        return json.loads(body)
    except ValueError:
        return body


def parse_request(request: Request, event: Any, context: Any = None) -> Request:
    """
    Populate `request` from a raw event and Lambda context.

    Raises:
        EventParseError: if the event is not a mapping or its body
                         cannot be decoded.
    """
    if not isinstance(event, dict):
        raise EventParseError("Invalid event")

    request.event = event
    request.context = context
    request.id = _context_id(context)

    request_context = event.get("requestContext") or {}
    request.request_context = request_context
    http = request_context.get("http") or {}

    request.method = str(event.get("httpMethod") or http.get("method") or "GET").upper()
    if event.get("version") == "2.0":
        request.path = event.get("rawPath") or http.get("path") or "/"
    else:
        request.path = event.get("path") or "/"

    request.query, request.multi_value_query = _normalize_query(event)

    request.raw_headers = event.get("multiValueHeaders") or event.get("headers") or {}
    request.headers = _normalize_headers(event)

    request.user_agent = request.headers.get("user-agent") or http.get("userAgent")
    request.cookies = parse_cookies(request.headers.get("cookie"))

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        request.ip = forwarded.split(",")[0].strip()
    else:
        identity = request_context.get("identity") or {}
        request.ip = identity.get("sourceIp") or http.get("sourceIp")

    request.interface = "alb" if request_context.get("elb") else "apigateway"
    request.client_type = _client_type(request.headers)
    country = request.headers.get("cloudfront-viewer-country")
    request.client_country = country.upper() if country else "unknown"

    request.params = event.get("pathParameters") or {}
    request.stage_variables = event.get("stageVariables") or {}
    request.is_base64_encoded = bool(event.get("isBase64Encoded"))
    request.raw_body = event.get("body")
    request.body = _parse_body(
        request.raw_body,
        request.is_base64_encoded,
        request.headers.get("content-type", ""),
    )

    request.auth = parse_auth(request.headers.get("authorization"))

    sampler = request.app.logger_config.sampler
    if sampler is not None:
        request.sample = sampler.sample(request.path, request.method)

    return request
