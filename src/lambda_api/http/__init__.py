"""
Request/response layer.

Everything here works on a single invocation: the Request and Response
models, event normalization, and the header, status and MIME helpers
they share.
"""

from .event import parse_request
from .headers import (
    build_cookie,
    cache_control,
    encode_uri_component,
    encode_url,
    escape_html,
    format_http_date,
    parse_accept_encoding,
    parse_cookies,
    parse_http_date,
)
from .mime_types import lookup, lookup_file
from .request import Request, RequestLog, parse_auth
from .response import PendingError, Response, ResponseState
from .status_codes import HTTPStatus, reason_phrase

__all__ = [
    # Models
    "Request",
    "RequestLog",
    "Response",
    "ResponseState",
    "PendingError",

    # Event normalization
    "parse_request",
    "parse_auth",

    # Header and cookie codec
    "build_cookie",
    "cache_control",
    "encode_uri_component",
    "encode_url",
    "escape_html",
    "format_http_date",
    "parse_accept_encoding",
    "parse_cookies",
    "parse_http_date",

    # Status codes and MIME types
    "HTTPStatus",
    "reason_phrase",
    "lookup",
    "lookup_file",
]
