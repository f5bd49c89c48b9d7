"""
=============================================================================
LAMBDA API
=============================================================================

A small request/response framework for AWS Lambda functions behind API
Gateway or an Application Load Balancer.

    from lambda_api import create_api

    api = create_api(version="v1")

    def hello(req, res, next):
        res.json({"hello": req.query.get("name", "world")})

    api.handle(hello)

    def handler(event, context):
        return api(event, context)

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    lambda_api/
    ├── app.py            API engine: stack, error protocol, finalization
    ├── config.py         APIConfig (options, environment, validation)
    ├── errors.py         ConfigurationError, ResponseError, FileError, ...
    ├── logger.py         Structured request logs and sampling
    ├── compression.py    br / gzip / deflate negotiation
    ├── files.py          Local and S3 file resolution, presigned links
    ├── http/             Request, Response, event parsing, codecs
    └── middleware/       Middleware base classes and CORS

=============================================================================
"""

__version__ = "1.0.0"

from .app import API, Invocation, create_api
from .config import APIConfig
from .errors import (
    ConfigurationError,
    EventParseError,
    FileError,
    LambdaAPIError,
    ResponseError,
)
from .http.request import Request
from .http.response import Response
from .middleware import CORSMiddleware, ErrorMiddleware, Middleware, cors

__all__ = [
    "API",
    "APIConfig",
    "Invocation",
    "create_api",
    "Request",
    "Response",
    "Middleware",
    "ErrorMiddleware",
    "CORSMiddleware",
    "cors",
    "LambdaAPIError",
    "ConfigurationError",
    "EventParseError",
    "FileError",
    "ResponseError",
    "__version__",
]
