"""
=============================================================================
RESPONSE MODEL
=============================================================================

A Response is created by the engine for every invocation. Middleware and
handlers mutate it through a fluent API and finish it with a terminal
send:

    res.status(201).header("X-Id", "42").cookie("seen", "1").json({"ok": True})
    ─────────────── ──────────────────── ──────────────────── ───────────────
        status           headers              cookies         terminal send

=============================================================================
STATE MACHINE
=============================================================================

    ┌────────────┐  send/json/...   ┌────────┐
    │ processing │ ───────────────► │  done  │
    └─────┬──────┘                  └────────┘
          │ error protocol               ▲
          ▼                              │ send/json/...
    ┌────────────┐                       │
    │   error    │ ──────────────────────┘
    └────────────┘

Once a response is done, body-mutating calls are no-ops. Headers can still
be changed until the payload is built.

=============================================================================
OUTBOUND PAYLOAD
=============================================================================

    {
      "statusCode": 200,
      "multiValueHeaders": {"content-type": ["application/json"]},
      "body": "{\"ok\":true}",
      "isBase64Encoded": false
    }

Header names are lowercase. Headers with no values are left out. ALB
targets additionally get "statusDescription" ("200 OK"), and HEAD requests
always get an empty body.

=============================================================================
"""

import asyncio
import base64
import hashlib
import inspect
import logging
import math
import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Union

from ..compression import compress_body, negotiate
from ..errors import FileError, ResponseError
from ..files import is_s3_path
from .headers import (
    EPOCH,
    build_cookie,
    cache_control,
    encode_url,
    escape_html,
    format_http_date,
    parse_accept_encoding,
    to_datetime,
    utcnow,
)
from .mime_types import lookup, lookup_file
from .status_codes import is_redirect_status, reason_phrase

if TYPE_CHECKING:
    from ..app import API
    from .request import Request


logger = logging.getLogger(__name__)

DEFAULT_LINK_EXPIRY = 900

_COOKIE_ALIASES = {
    "httpOnly": "http_only",
    "maxAge": "max_age",
    "sameSite": "same_site",
}

_FILE_ALIASES = {
    "cacheControl": "cache_control",
    "maxAge": "max_age",
    "lastModified": "last_modified",
}


class ResponseState(Enum):
    PROCESSING = "processing"
    ERROR = "error"
    DONE = "done"


@dataclass
class PendingError:
    """An error recorded by res.error(), waiting for the engine."""

    error: Any
    code: Optional[int] = None
    detail: Any = None


def _options(options: Optional[Dict[str, Any]], kwargs: Dict[str, Any],
             aliases: Dict[str, str]) -> Dict[str, Any]:
    merged = {**(options or {}), **kwargs}
    return {aliases.get(key, key): value for key, value in merged.items()}


def _header_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


async def _settle(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def resolve_error_args(args: Tuple[Any, ...]) -> Tuple[Optional[int], Any, Any]:
    """
    Resolve res.error() arguments to (code, message, detail).

    The rule is positional and has no other overloads:

        error(message)                   → (None, message, None)
        error(message, detail)           → (None, message, detail)
        error(code, message)             → (code, message, None)
        error(code, message, detail)     → (code, message, detail)

    A leading int (never a bool) is a status code. error(code) alone uses
    the reason phrase as the message.
    """
    if args and isinstance(args[0], int) and not isinstance(args[0], bool):
        code = args[0]
        message = args[1] if len(args) > 1 else reason_phrase(code)
        detail = args[2] if len(args) > 2 else None
        return code, message, detail
    message = args[0] if args else "Unknown error"
    detail = args[1] if len(args) > 1 else None
    return None, message, detail


class Response:
    """
    Mutable response for one invocation.

    Args:
        app: The API handling this invocation.
        request: The matching Request.
    """

    def __init__(self, app: "API", request: "Request"):
        self.app = app
        self.request = request
        self._status_code = 200
        self._headers: Dict[str, List[str]] = {}
        self._is_base64 = app.config.is_base64
        self._etag = False
        self._state = ResponseState.PROCESSING
        self._payload: Optional[Dict[str, Any]] = None
        self._pending_error: Optional[PendingError] = None
        self._waker: Optional[Callable[[], None]] = None

        self.header("content-type", "application/json")
        self.apply_default_headers()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> ResponseState:
        return self._state

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def payload(self) -> Optional[Dict[str, Any]]:
        """The gateway payload, set by the terminal send."""
        return self._payload

    @property
    def headers(self) -> Dict[str, List[str]]:
        return {name: list(values) for name, values in self._headers.items()}

    def enter_error_state(self) -> bool:
        """
        Move processing → error.

        Returns:
            True on the first call, False once already in error or done.
        """
        if self._state is not ResponseState.PROCESSING:
            return False
        self._state = ResponseState.ERROR
        return True

    def mark_done(self) -> None:
        self._state = ResponseState.DONE

    @property
    def has_pending_error(self) -> bool:
        return self._pending_error is not None

    def take_pending_error(self) -> Optional[PendingError]:
        pending, self._pending_error = self._pending_error, None
        return pending

    def force_base64(self, flag: bool) -> None:
        self._is_base64 = bool(flag)

    def set_waker(self, waker: Optional[Callable[[], None]]) -> None:
        self._waker = waker

    def _wake(self) -> None:
        if self._waker is not None:
            self._waker()

    # =========================================================================
    # HEADERS
    # =========================================================================

    def status(self, code: int) -> "Response":
        self._status_code = int(code)
        return self

    def header(self, name: str, value: Any = None, append: bool = False) -> "Response":
        """
        Set a header. Names are case-insensitive.

        Args:
            name: Header name.
            value: A value or a list of values.
            append: Add to existing values instead of replacing them.
        """
        key = name.lower()
        values = value if isinstance(value, (list, tuple)) else [value]
        values = [_header_value(v) for v in values]
        if append:
            self._headers[key] = self._headers.get(key, []) + values
        else:
            self._headers[key] = values
        return self

    def get_header(self, name: str, as_list: bool = False) -> Optional[Union[str, List[str]]]:
        values = self._headers.get(name.lower())
        if values is None:
            return None
        return list(values) if as_list else ", ".join(values)

    def has_header(self, name: str) -> bool:
        return name.lower() in self._headers

    def remove_header(self, name: str) -> "Response":
        self._headers.pop(name.lower(), None)
        return self

    def apply_default_headers(self) -> "Response":
        for name, value in self.app.config.headers.items():
            self.header(name, value)
        return self

    def strip_headers(self, allowed: List[str]) -> "Response":
        """Drop every header not in `allowed` (lowercase names)."""
        self._headers = {
            name: values for name, values in self._headers.items() if name in allowed
        }
        return self

    def type(self, mime: str) -> "Response":
        """Set Content-Type from a MIME type or an extension."""
        content_type = lookup(mime, self.app.config.mime_types, default=None)
        if content_type:
            self.header("content-type", content_type)
        return self

    def location(self, url: str) -> "Response":
        self.header("location", encode_url(url))
        return self

    def cors(
        self,
        origin: str = "*",
        methods: str = "GET, PUT, POST, DELETE, OPTIONS",
        headers: str = "Content-Type, Authorization, Content-Length, X-Requested-With",
        max_age: Optional[int] = None,
        credentials: bool = False,
        expose_headers: Optional[str] = None,
    ) -> "Response":
        """
        Set permissive cross-origin headers.

        Args:
            origin: Allowed origin.
            methods: Allowed methods.
            headers: Allowed request headers.
            max_age: Preflight cache lifetime in milliseconds.
            credentials: Allow credentials.
            expose_headers: Headers readable by the browser.
        """
        self.header("access-control-allow-origin", origin)
        self.header("access-control-allow-methods", methods)
        self.header("access-control-allow-headers", headers)
        if isinstance(max_age, (int, float)) and not isinstance(max_age, bool):
            self.header("access-control-max-age", int(max_age / 1000))
        if credentials:
            self.header("access-control-allow-credentials", "true")
        if expose_headers:
            self.header("access-control-expose-headers", expose_headers)
        return self

    # =========================================================================
    # COOKIES AND CACHING
    # =========================================================================

    def cookie(self, name: Any, value: Any, options: Optional[Dict[str, Any]] = None,
               **kwargs: Any) -> "Response":
        """
        Append a Set-Cookie header.

        Options may be passed as a dict (camelCase or snake_case keys) or
        as keyword arguments: domain, expires, http_only, max_age (ms),
        path, secure, same_site.
        """
        opts = _options(options, kwargs, _COOKIE_ALIASES)
        self.header("set-cookie", build_cookie(name, value, **opts), append=True)
        return self

    def clear_cookie(self, name: Any, options: Optional[Dict[str, Any]] = None,
                     **kwargs: Any) -> "Response":
        """Expire a cookie immediately."""
        opts = _options(options, kwargs, _COOKIE_ALIASES)
        opts.update(expires=EPOCH, max_age=-1000)
        return self.cookie(name, "", opts)

    def etag(self, enable: bool = True) -> "Response":
        self._etag = bool(enable)
        return self

    def cache(self, age: Any = None, private: Any = False) -> "Response":
        value, expires = cache_control(age, private)
        self.header("cache-control", value)
        if expires is not None:
            self.header("expires", expires)
        return self

    def modified(self, date: Any = None) -> "Response":
        """
        Set Last-Modified.

        None or True means now, False removes the header, unparsable
        values fall back to now.
        """
        if date is False:
            return self.remove_header("last-modified")
        parsed = None if date is None or date is True else to_datetime(date)
        self.header("last-modified", format_http_date(parsed or utcnow()))
        return self

    def attachment(self, filename: Optional[str] = None) -> "Response":
        name = filename.strip() if isinstance(filename, str) else ""
        if not name:
            return self.header("content-disposition", "attachment")

        base = posixpath.basename(name)
        self.header("content-disposition", f'attachment; filename="{base}"')
        self.header("content-type", lookup_file(base, self.app.config.mime_types))
        return self

    # =========================================================================
    # TERMINAL SENDS
    # =========================================================================

    def send(self, body: Any = None) -> "Response":
        """
        Serialize the body, build the payload and mark the response done.

        Strings pass through. bytes are base64-encoded. Everything else
        goes through the app serializer.
        """
        if self._state is ResponseState.DONE:
            return self

        binary = isinstance(body, (bytes, bytearray))
        if binary:
            raw = bytes(body)
            text = ""
        else:
            if body is None:
                text = ""
            elif isinstance(body, str):
                text = body
            else:
                text = self.app.config.serializer(body)
            raw = text.encode("utf-8")

        if self._etag:
            tag = f'"{hashlib.md5(raw).hexdigest()}"'
            self.header("etag", tag)
            if self.request.headers.get("if-none-match") == tag:
                self._status_code = 304
                raw, text, binary = b"", "", False

        if self.request.method == "HEAD":
            raw, text, binary = b"", "", False

        is_base64 = self._is_base64
        encoding = None
        if raw:
            encoding = negotiate(
                self.app.config.encodings,
                parse_accept_encoding(self.request.headers.get("accept-encoding")),
            )

        if encoding:
            out = compress_body(raw, encoding)
            self.header("content-encoding", encoding)
            is_base64 = True
        elif binary:
            out = base64.b64encode(raw).decode("ascii")
            is_base64 = True
        else:
            out = text

        payload: Dict[str, Any] = {
            "statusCode": self._status_code,
            "multiValueHeaders": {
                name: list(values) for name, values in self._headers.items() if values
            },
            "body": out,
            "isBase64Encoded": is_base64,
        }
        if self.request.interface == "alb":
            payload["statusDescription"] = (
                f"{self._status_code} {reason_phrase(self._status_code)}"
            )

        self._payload = payload
        self._state = ResponseState.DONE
        self._wake()
        return self

    def json(self, body: Any) -> "Response":
        self.header("content-type", "application/json")
        return self.send(self.app.config.serializer(body))

    def jsonp(self, body: Any) -> "Response":
        """
        Send JSON wrapped in a callback.

        The callback name comes from the query parameter named by the
        app's `callback_name` option, defaulting to "callback".
        """
        callback = self.request.query.get(self.app.config.callback_name)
        if not isinstance(callback, str) or not callback:
            callback = "callback"
        callback = callback.replace(" ", "_")
        self.header("content-type", "application/json")
        return self.send(f"{callback}({self.app.config.serializer(body)})")

    def html(self, body: Any) -> "Response":
        self.header("content-type", "text/html")
        return self.send(body)

    def send_status(self, code: int) -> "Response":
        return self.status(code).send(reason_phrase(code))

    def redirect(self, *args: Any) -> "Response":
        """
        Redirect to a URL: redirect(url) or redirect(status, url).

        s3:// targets are first turned into presigned URLs.

        Raises:
            ResponseError: for a status outside 300-399.
        """
        if len(args) == 1:
            status, url = 302, args[0]
        elif len(args) == 2:
            status, url = args
        else:
            raise TypeError("redirect() takes a url and an optional status")

        if isinstance(status, bool) or not isinstance(status, int) or not is_redirect_status(status):
            raise ResponseError(f"{status} is an invalid redirect status code", status)

        if is_s3_path(url):
            url = self.app.link_service.signed_url(url, DEFAULT_LINK_EXPIRY)

        escaped = escape_html(url)
        return (
            self.location(url)
            .status(status)
            .html(f'<p>{status} Redirecting to <a href="{escaped}">{escaped}</a></p>')
        )

    # =========================================================================
    # ERRORS
    # =========================================================================

    def error(self, *args: Any) -> "Response":
        """
        Hand an error to the engine's error protocol.

            res.error("Something went wrong")
            res.error(403, "Not allowed", {"user": 42})

        The first error recorded wins. Calls after the response is done
        are ignored.
        """
        code, message, detail = resolve_error_args(args)
        if self._state is ResponseState.DONE:
            logger.debug("Ignoring error() on a finished response: %s", message)
            return self
        if self._pending_error is None:
            self._pending_error = PendingError(message, code, detail)
        self._wake()
        return self

    # =========================================================================
    # FILES AND LINKS
    # =========================================================================

    async def get_link(self, path: str, expires: Any = None,
                       callback: Optional[Callable[..., Any]] = None) -> Optional[str]:
        """
        Presign an s3:// reference.

        Args:
            path: s3://bucket/key.
            expires: Seconds. Missing or invalid values mean 900, floats
                     are truncated.
            callback: Called with the error on failure, sync or async.
                      Without one the error is raised.
        """
        if (
            isinstance(expires, bool)
            or not isinstance(expires, (int, float))
            or not math.isfinite(expires)
            or expires < 1
        ):
            expires = DEFAULT_LINK_EXPIRY
        expires = int(expires)

        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(
                None, self.app.link_service.signed_url, path, expires
            )
        except FileError as exc:
            if callback is None:
                raise
            await _settle(callback(exc))
            return None

    async def send_file(self, file: Any, options: Optional[Dict[str, Any]] = None,
                        callback: Optional[Callable[..., Any]] = None,
                        **kwargs: Any) -> "Response":
        """
        Send a local file, bytes or an s3:// object as a base64 body.

        Options: root, headers, cache_control (False, a string or True),
        max_age (ms), private, last_modified (False, a date or True).
        """
        opts = _options(options, kwargs, _FILE_ALIASES)
        return await self._serve_file(file, opts, callback)

    async def download(self, file: Any, filename: Optional[str] = None,
                       options: Optional[Dict[str, Any]] = None,
                       callback: Optional[Callable[..., Any]] = None,
                       **kwargs: Any) -> "Response":
        """Like send_file() with a Content-Disposition: attachment header."""
        if isinstance(filename, str) and filename.strip():
            name = filename.strip()
        elif isinstance(file, str) and file.strip():
            name = posixpath.basename(file.strip())
        else:
            name = None
        self.header(
            "content-disposition",
            f'attachment; filename="{name}"' if name else "attachment",
        )
        opts = _options(options, kwargs, _FILE_ALIASES)
        return await self._serve_file(file, opts, callback)

    async def _serve_file(self, file: Any, opts: Dict[str, Any],
                          callback: Optional[Callable[..., Any]]) -> "Response":
        if self._state is ResponseState.DONE:
            return self

        try:
            if file is None or (isinstance(file, str) and not file.strip()):
                raise FileError("Invalid file", {"path": file})
            # S3 reads and disk reads block, keep them off the event loop
            loop = asyncio.get_running_loop()
            resolved = await loop.run_in_executor(
                None, self.app.file_resolver.resolve, file, opts.get("root")
            )
        except FileError as exc:
            if callback is not None:
                await _settle(callback(exc))
            if self._state is not ResponseState.DONE and self._pending_error is None:
                self.error(exc)
            return self

        content_type = resolved.content_type
        if not content_type and resolved.name:
            content_type = lookup_file(resolved.name, self.app.config.mime_types, default=None)
        if content_type:
            self.header("content-type", content_type)

        if resolved.etag:
            self.header("etag", resolved.etag)

        for name, value in (opts.get("headers") or {}).items():
            self.header(name, value)

        cache_option = opts.get("cache_control", True)
        if isinstance(cache_option, str):
            self.cache(cache_option)
        elif cache_option is not False:
            self.cache(opts.get("max_age") or 0, opts.get("private", False))

        last_modified = opts.get("last_modified", True)
        if last_modified is not False:
            if last_modified is True or last_modified is None:
                last_modified = resolved.last_modified
            self.modified(last_modified)

        if callback is not None:
            await _settle(callback(None))
            if self._pending_error is not None:
                return self

        return self.send(resolved.content)
