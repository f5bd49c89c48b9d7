"""
=============================================================================
EXECUTION ENGINE
=============================================================================

The API object owns the middleware stack, the terminal handler, the error
stack and the teardown hook, and drives one invocation per run() call.

=============================================================================
INVOCATION LIFECYCLE
=============================================================================

    event, context
         │
         ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 1. Invocation    counter++ (locked), cold start flag                │
    │ 2. Request       parse_request(event, context)  ──fail──┐           │
    │    Response      status 200, content-type json          │           │
    │                                                         │           │
    │ 3. Stack         [use(), use(), ..., handle()]          │           │
    │                  each step → ADVANCE | TERMINATE | FAIL │           │
    │                  stops once the response leaves         │           │
    │                  "processing"                  FAIL ────┤           │
    │                                                         ▼           │
    │ 4. Error protocol                                                   │
    │      strip headers to the whitelist, re-apply default headers       │
    │      status = explicit code or the invocation's error status        │
    │      log (fatal for exceptions, error for res.error messages)       │
    │      processing → error, run catch() stack once                     │
    │      still not done?  res.json({"error": message})                  │
    │                                                                     │
    │ 5. Finalize      done, finally_ hook, flush logs, access record     │
    └─────────────────────────────────────────────────────────────────────┘
         │
         ▼
    {"statusCode", "multiValueHeaders", "body", "isBase64Encoded"}

=============================================================================
USAGE
=============================================================================

    api = create_api(version="v1", compression=["gzip"])

    def auth(req, res, next):
        if req.auth["type"] != "Bearer":
            return res.error(401, "Not authorized")
        next()

    async def get_user(req, res, next):
        user = await load_user(req.params["id"])
        return {"user": user}

    api.use(auth).handle(get_user)

    def handler(event, context):
        return api(event, context)

=============================================================================
"""

import asyncio
import inspect
import logging
import sys
import threading
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .config import APIConfig, default_serializer
from .errors import ConfigurationError, EventParseError, ResponseError
from .files import FileResolver, LinkService
from .http.event import parse_request
from .http.request import Request
from .http.response import Response, ResponseState
from .logger import LoggerConfig, access_logger, default_sink
from .middleware.base import ErrorMiddleware, Step, StepKind


logger = logging.getLogger(__name__)

DEFAULT_ERROR_STATUS = 500


@dataclass
class Invocation:
    """
    Engine-owned state for one run() call.

    Attributes:
        event: Raw inbound event.
        context: Raw Lambda context.
        count: 1-based sequence number within this process.
        cold_start: True only for the first invocation.
        error_status: Status the error protocol uses when no explicit
            code is given. Scoped to this invocation, so it never leaks
            into the next one.
    """

    event: Any
    context: Any
    count: int
    cold_start: bool
    error_status: int = DEFAULT_ERROR_STATUS


class API:
    """
    Request/response engine for API Gateway and ALB events.

    Args:
        config: A ready APIConfig. When omitted, `options` are passed to
                APIConfig.from_dict().
        file_resolver: Resolves files for send_file()/download().
        link_service: Presigns s3:// references.
        **options: Configuration options (camelCase or snake_case).
    """

    def __init__(
        self,
        config: Optional[APIConfig] = None,
        *,
        file_resolver: Optional[FileResolver] = None,
        link_service: Optional[LinkService] = None,
        **options: Any,
    ):
        if config is not None and options:
            raise ConfigurationError("Pass either a config or options, not both")
        self.config = config or APIConfig.from_dict(options)
        self.logger_config = LoggerConfig.from_option(self.config.logger)
        self.file_resolver = file_resolver or FileResolver()
        self.link_service = link_service or LinkService()

        self._stack: List[Step] = []
        self._handler: Optional[Step] = None
        self._errors: List[Step] = []
        self._finally: Optional[Callable[..., Any]] = None

        self._request_count = 0
        self._count_lock = threading.Lock()

        self._setup_logging()

    def _setup_logging(self) -> None:
        """Give the default sink a stdout handler if nothing else did."""
        if self.logger_config.log is not default_sink or access_logger.handlers:
            return
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        access_logger.addHandler(handler)
        access_logger.setLevel(logging.INFO)
        access_logger.propagate = False

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def _check_registration(self, fn: Any, what: str) -> None:
        if not callable(fn):
            raise ConfigurationError(f"{what} must be a function")
        if self._request_count:
            logger.warning("Registering %s after the first invocation", what.lower())

    def use(self, *middleware: Callable[..., Any]) -> "API":
        """
        Add middleware, fn(req, res, next), ahead of the terminal handler.

        ErrorMiddleware instances go to the error stack instead.

        Raises:
            ConfigurationError: if an argument is not callable.
        """
        for fn in middleware:
            if isinstance(fn, ErrorMiddleware):
                self.catch(fn)
                continue
            self._check_registration(fn, "Middleware")
            step = Step(fn, StepKind.MIDDLEWARE)
            self._stack.append(step)
            logger.debug("Added middleware: %s", step.name)
        return self

    def handle(self, handler: Callable[..., Any]) -> "API":
        """Set or replace the terminal handler, fn(req, res, next)."""
        self._check_registration(handler, "Handler")
        self._handler = Step(handler, StepKind.HANDLER)
        logger.debug("Set handler: %s", self._handler.name)
        return self

    def catch(self, *handlers: Callable[..., Any]) -> "API":
        """Add error middleware, fn(err, req, res, next)."""
        for fn in handlers:
            self._check_registration(fn, "Error middleware")
            step = Step(fn, StepKind.ERROR)
            self._errors.append(step)
            logger.debug("Added error middleware: %s", step.name)
        return self

    def finally_(self, fn: Callable[..., Any]) -> "API":
        """
        Set the teardown hook, fn(req, res), run once per invocation
        after the response is final and before logs are flushed.
        """
        self._check_registration(fn, "Finally hook")
        self._finally = fn
        return self

    @property
    def steps(self) -> List[Step]:
        """Regular stack as run: middleware, then the terminal handler."""
        if self._handler is None:
            return list(self._stack)
        return [*self._stack, self._handler]

    @property
    def request_count(self) -> int:
        return self._request_count

    # =========================================================================
    # INVOCATION
    # =========================================================================

    def _begin(self, event: Any, context: Any) -> Invocation:
        with self._count_lock:
            cold_start = self._request_count == 0
            self._request_count += 1
            count = self._request_count
        return Invocation(event=event, context=context, count=count, cold_start=cold_start)

    def __call__(self, event: Any, context: Any = None) -> Dict[str, Any]:
        """Synchronous Lambda entry point."""
        return asyncio.run(self.run(event, context))

    async def run(self, event: Any, context: Any = None) -> Dict[str, Any]:
        """
        Process one event and return the gateway payload.

        Raises:
            ConfigurationError: if no handler or middleware is registered.
        """
        if not self._stack and self._handler is None:
            raise ConfigurationError("No handler or middleware specified.")

        invocation = self._begin(event, context)
        request = Request(self, invocation)
        response = Response(self, request)

        try:
            parse_request(request, event, context)
        except Exception as exc:
            if isinstance(exc, EventParseError):
                invocation.error_status = exc.status_code
            await self.catch_errors(exc, response)
        else:
            for step in self.steps:
                if response.state is not ResponseState.PROCESSING:
                    break
                result = await step.execute((request, response), response)
                if result.failed:
                    await self.catch_errors(
                        result.error, response, result.code, result.detail
                    )

            if response.state is ResponseState.PROCESSING:
                await self.catch_errors(
                    ResponseError("No response was sent", DEFAULT_ERROR_STATUS),
                    response,
                )

        await self._finalize(request, response)
        return response.payload

    # =========================================================================
    # ERROR PROTOCOL
    # =========================================================================

    async def catch_errors(
        self,
        error: Any,
        response: Response,
        code: Optional[int] = None,
        detail: Any = None,
    ) -> None:
        """
        Turn a failure into a response.

        Args:
            error: An exception, or a message from res.error().
            response: The invocation's response.
            code: Explicit status code.
            detail: Extra data for the log record.
        """
        request = response.request

        response.force_base64(self.config.is_base64)
        response.strip_headers(self.config.error_header_whitelist)
        response.apply_default_headers()
        response.status(code or request.invocation.error_status)

        is_exception = isinstance(error, BaseException)
        message = str(error) if is_exception else error

        if self.logger_config.error_logging:
            info = {
                "detail": detail,
                "statusCode": response.status_code,
                "coldStart": request.cold_start,
            }
            if self.logger_config.stack and is_exception:
                info["stack"] = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
            request.logger("fatal" if is_exception else "error", message, info)

        # One-shot guard: a failure inside the error stack lands here again
        # and goes straight to the default body
        if response.enter_error_state():
            for step in self._errors:
                if response.state is ResponseState.DONE:
                    break
                result = await step.execute((error, request, response), response)
                if result.failed:
                    await self.catch_errors(
                        result.error, response, result.code, result.detail
                    )
                    break

        if response.state is not ResponseState.DONE:
            try:
                response.json({"error": message})
            except Exception:
                logger.exception("Serializer failed on the error body")
                response.header("content-type", "application/json")
                response.send(default_serializer({"error": message}))

    # =========================================================================
    # FINALIZATION
    # =========================================================================

    async def _finalize(self, request: Request, response: Response) -> None:
        response.mark_done()

        if self._finally is not None:
            try:
                returned = self._finally(request, response)
                if inspect.isawaitable(returned):
                    await returned
            except Exception:
                logger.exception("finally hook failed")

        config = self.logger_config
        for record in request._logs:
            config.emit(config.format(record, request, response) if config.detail else record)

        if (config.access is True or request._logs) and config.access != "never":
            payload = response.payload or {}
            access = config.build("access", None, request, request.context)
            access.update(
                statusCode=payload.get("statusCode", response.status_code),
                coldStart=request.cold_start,
                count=request.request_count,
            )
            config.emit(config.format(access, request, response))


def create_api(**options: Any) -> API:
    """
    Create an API.

        api = create_api(version="v2", compression=True, logger={"access": True})
    """
    return API(**options)
