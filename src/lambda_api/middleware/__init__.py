"""
Middleware building blocks.

Middleware, ErrorMiddleware:
    Base classes for class-based middleware.

Step, StepKind, StepOutcome, StepResult:
    How the engine runs each registered callable.

CORSMiddleware / cors():
    Cross-origin headers plus preflight handling.
"""

from .base import (
    ErrorMiddleware,
    Middleware,
    NextFunction,
    Step,
    StepKind,
    StepOutcome,
    StepResult,
)
from .cors import CORSMiddleware, cors

__all__ = [
    # Base classes
    "Middleware",
    "ErrorMiddleware",
    "NextFunction",

    # Step execution
    "Step",
    "StepKind",
    "StepOutcome",
    "StepResult",

    # Built-in middleware
    "CORSMiddleware",
    "cors",
]
