"""
=============================================================================
MIDDLEWARE AND STEP EXECUTION
=============================================================================

Every entry the engine runs is a Step: a callable plus an explicit role.
Roles come from the registration call, never from the callable's
signature.

    api.use(fn)        → Step(fn, StepKind.MIDDLEWARE)   fn(req, res, next)
    api.handle(fn)     → Step(fn, StepKind.HANDLER)      fn(req, res, next)
    api.catch(fn)      → Step(fn, StepKind.ERROR)        fn(err, req, res, next)

Class-based middleware subclasses Middleware or ErrorMiddleware; passing
an ErrorMiddleware instance to use() registers it as an error handler.

=============================================================================
STEP CONTRACT
=============================================================================

Running a step yields exactly one StepResult:

    ┌──────────────────────┬────────────────────────────────────────────┐
    │ What the step did    │ StepOutcome                                │
    ├──────────────────────┼────────────────────────────────────────────┤
    │ called next()        │ ADVANCE                                    │
    │ returned a value     │ TERMINATE  (the value is sent)             │
    │ sent the response    │ TERMINATE                                  │
    │ raised               │ FAIL       (error = the exception)         │
    │ called res.error()   │ FAIL       (error, code, detail recorded)  │
    └──────────────────────┴────────────────────────────────────────────┘

A step may return a coroutine; it is awaited. A middleware or handler step
that returns without doing any of the above is still pending: execution
suspends until next(), a send or res.error() happens, for example from a
scheduled callback:

    def delayed(req, res, next):
        asyncio.get_running_loop().call_later(0.1, next)

    def handler(req, res, next):
        asyncio.get_running_loop().call_later(0.1, res.send, "late")

A handler that calls next() without sending runs the stack out, which is
reported as "No response was sent". Error steps settle as soon as they
return: one that only logs falls through to the next error step.

=============================================================================
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Tuple

from ..http.response import ResponseState

if TYPE_CHECKING:
    from ..http.request import Request
    from ..http.response import Response


logger = logging.getLogger(__name__)

NextFunction = Callable[[], None]


class Middleware(ABC):
    """
    Class-based regular middleware.

        class RequireJSON(Middleware):
            def __call__(self, req, res, next):
                if req.get_header("content-type") != "application/json":
                    return res.status(415).json({"error": "JSON only"})
                next()
    """

    @abstractmethod
    def __call__(self, req: "Request", res: "Response", next: NextFunction) -> Any:
        ...

    @property
    def name(self) -> str:
        return self.__class__.__name__


class ErrorMiddleware(ABC):
    """Class-based error middleware, run only by the error protocol."""

    @abstractmethod
    def __call__(self, err: Any, req: "Request", res: "Response", next: NextFunction) -> Any:
        ...

    @property
    def name(self) -> str:
        return self.__class__.__name__


class StepKind(Enum):
    MIDDLEWARE = "middleware"
    HANDLER = "handler"
    ERROR = "error"


class StepOutcome(Enum):
    ADVANCE = "advance"
    TERMINATE = "terminate"
    FAIL = "fail"


@dataclass
class StepResult:
    """How a step settled."""

    outcome: StepOutcome
    error: Any = None
    code: Optional[int] = None
    detail: Any = None

    @property
    def failed(self) -> bool:
        return self.outcome is StepOutcome.FAIL


def step_name(fn: Callable[..., Any]) -> str:
    name = getattr(fn, "name", None)
    if isinstance(name, str):
        return name
    return getattr(fn, "__name__", fn.__class__.__name__)


@dataclass
class Step:
    """A registered callable and its role."""

    fn: Callable[..., Any]
    kind: StepKind

    @property
    def name(self) -> str:
        return step_name(self.fn)

    async def execute(self, args: Tuple[Any, ...], response: "Response") -> StepResult:
        """
        Run the step to settlement.

        Args:
            args: (req, res) or (err, req, res). The continuation is
                  appended here.
            response: The invocation's response, watched for sends and
                      res.error() calls.
        """
        loop = asyncio.get_running_loop()
        settled = asyncio.Event()
        advanced = False

        def wake() -> None:
            loop.call_soon_threadsafe(settled.set)

        def next_step() -> None:
            nonlocal advanced
            advanced = True
            wake()

        call_args = (*args, next_step)
        response.set_waker(wake)
        try:
            try:
                returned = self.fn(*call_args)
                if inspect.isawaitable(returned):
                    returned = await returned
                if (
                    returned is not None
                    and returned is not response
                    and response.state is not ResponseState.DONE
                    and not response.has_pending_error
                ):
                    response.send(returned)
            except Exception as exc:
                logger.debug("Step %s raised %r", self.name, exc)
                return StepResult(StepOutcome.FAIL, error=exc)

            while True:
                pending = response.take_pending_error()
                if pending is not None:
                    return StepResult(
                        StepOutcome.FAIL,
                        error=pending.error,
                        code=pending.code,
                        detail=pending.detail,
                    )
                if response.state is ResponseState.DONE:
                    return StepResult(StepOutcome.TERMINATE)
                # Error steps settle when they return
                if advanced or self.kind is StepKind.ERROR:
                    return StepResult(StepOutcome.ADVANCE)
                await settled.wait()
                settled.clear()
        finally:
            response.set_waker(None)
