"""
=============================================================================
CORS MIDDLEWARE
=============================================================================

Adds cross-origin headers to every response and answers preflight
requests before they reach the handler.

    Browser                          API
       │  OPTIONS /users               │
       │  Origin: https://app.com      │
       │ ────────────────────────────► │  cors middleware:
       │                               │    set Access-Control-* headers
       │  200, empty body              │    OPTIONS → send("") and stop
       │ ◄──────────────────────────── │
       │                               │
       │  GET /users                   │
       │ ────────────────────────────► │  cors middleware:
       │                               │    set Access-Control-* headers
       │                               │    next() → handler
       │  200 + Access-Control-*       │
       │ ◄──────────────────────────── │

Register it first so preflights never touch auth middleware:

    api.use(cors(origin="https://app.com", credentials=True))

=============================================================================
"""

from typing import Any

from .base import Middleware


class CORSMiddleware(Middleware):
    """
    Apply res.cors() with fixed options.

    Args:
        preflight: Answer OPTIONS requests directly.
        **options: Passed to Response.cors() (origin, methods, headers,
                   max_age, credentials, expose_headers).
    """

    def __init__(self, preflight: bool = True, **options: Any):
        self.preflight = preflight
        self.options = options

    def __call__(self, req, res, next):
        res.cors(**self.options)
        if self.preflight and req.method == "OPTIONS":
            return res.status(200).send("")
        next()


def cors(**options: Any) -> CORSMiddleware:
    """Build a CORSMiddleware, e.g. api.use(cors(origin="*"))."""
    return CORSMiddleware(**options)
