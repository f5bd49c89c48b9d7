"""
=============================================================================
REQUEST MODEL
=============================================================================

A Request is created by the engine for every invocation and passed by
reference to every middleware, handler and error handler.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           Request                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │ Set by the engine:     app, version, request_count, cold_start      │
    │ Set by parse_request:  id, method, path, query, multi_value_query,  │
    │                        headers, cookies, body, raw_body, params,    │
    │                        ip, user_agent, client_type, client_country, │
    │                        interface, auth, context, sample, ...        │
    │ Logging:               req.log.info(...), req.log.error(...), ...   │
    │ Anything else:         middleware may annotate freely               │
    │                        (req.user = ..., req.tenant = ...)           │
    └─────────────────────────────────────────────────────────────────────┘

Fields are populated once, before the stack runs, and are read-mostly
afterwards.

=============================================================================
"""

import base64
import binascii
import time
from functools import partial
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from ..app import API, Invocation


def parse_auth(header: Optional[str]) -> Dict[str, Any]:
    """
    Parse an Authorization header.

        "Bearer abc"        → {"type": "Bearer", "value": "abc"}
        "Basic dXNlcjpwdw==" → {"type": "Basic", "value": ...,
                               "username": "user", "password": "pw"}
        "OAuth a=\\"1\\""     → {"type": "OAuth", "value": ..., "a": "1"}
        "Digest ..."        → {"type": "Digest", "value": ...}
        missing/other       → {"type": "none", "value": None}
    """
    if not header or not isinstance(header, str):
        return {"type": "none", "value": None}

    scheme, _, value = header.strip().partition(" ")
    scheme = scheme.lower()
    value = value.strip()

    if scheme == "bearer":
        return {"type": "Bearer", "value": value}

    if scheme == "basic":
        try:
            decoded = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return {"type": "none", "value": None}
        username, _, password = decoded.partition(":")
        return {
            "type": "Basic",
            "value": value,
            "username": username,
            "password": password,
        }

    if scheme == "oauth":
        params: Dict[str, Any] = {"type": "OAuth", "value": value}
        for part in value.split(","):
            key, sep, val = part.strip().partition("=")
            if sep:
                params[key.strip()] = val.strip().strip('"')
        return params

    if scheme == "digest":
        return {"type": "Digest", "value": value}

    return {"type": "none", "value": None}


class RequestLog:
    """
    Per-request logging facade.

    Exposes one callable per configured level, so custom levels work the
    same way as built-in ones:

        req.log.info("user loaded", {"userId": 42})
        req.log.fatal("boom")
        req.log.audit("custom level")   # with levels={"audit": 35}
    """

    def __init__(self, request: "Request", levels: List[str]):
        self._levels = list(levels)
        for level in self._levels:
            setattr(self, level, partial(request.logger, level))

    @property
    def levels(self) -> List[str]:
        return list(self._levels)


class Request:
    """
    Normalized view of one inbound event.

    Args:
        app: The API handling this invocation.
        invocation: Engine-owned invocation state (counter, cold start).
    """

    def __init__(self, app: "API", invocation: "Invocation"):
        self.app = app
        self.invocation = invocation
        self.version = app.config.version
        self.request_count = invocation.count
        self.cold_start = invocation.cold_start

        self.id: Optional[str] = None
        self.method = "GET"
        self.path = "/"
        self.query: Dict[str, Any] = {}
        self.multi_value_query: Dict[str, List[str]] = {}
        self.headers: Dict[str, str] = {}
        self.raw_headers: Dict[str, Any] = {}
        self.cookies: Dict[str, Any] = {}
        self.body: Any = None
        self.raw_body: Optional[str] = None
        self.is_base64_encoded = False
        self.params: Dict[str, str] = {}
        self.stage_variables: Dict[str, str] = {}
        self.request_context: Dict[str, Any] = {}
        self.ip: Optional[str] = None
        self.user_agent: Optional[str] = None
        self.client_type = "unknown"
        self.client_country = "unknown"
        self.interface = "apigateway"
        self.auth: Dict[str, Any] = {"type": "none", "value": None}
        self.context: Any = invocation.context
        self.event: Dict[str, Any] = {}

        # Sampled requests lower their threshold to this level
        self.sample: Optional[str] = None

        self._start = time.monotonic()
        self._logs: List[Dict[str, Any]] = []
        self.log = RequestLog(self, app.logger_config.all_levels)

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def logger(self, level: str, message: Any, custom: Any = None) -> None:
        """Buffer a record if `level` passes the threshold."""
        config = self.app.logger_config
        if not config.allows(level, self.sample):
            return
        self._logs.append(config.build(level, message, self, self.context, custom))

    def __repr__(self) -> str:
        return f"Request({self.method} {self.path})"
