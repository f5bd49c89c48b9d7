"""
=============================================================================
API CONFIGURATION
=============================================================================

Centralized configuration for an API instance.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      CONFIGURATION SOURCES                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   1. Keyword options        create_api(version="v2", ...)           │
    │   2. Option dicts           APIConfig.from_dict({"isBase64": True}) │
    │   3. Environment            LAMBDA_API_COMPRESSION=gzip,br          │
    │   4. Defaults               (this dataclass)                        │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Configuration is validated once, when the API is built. Invalid values
raise ConfigurationError immediately instead of failing on the first
request.

Configuration must not change after the first invocation; every
invocation of a warm container shares it.

=============================================================================
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .compression import SUPPORTED_ENCODINGS
from .errors import ConfigurationError


def default_serializer(body: Any) -> str:
    """Compact JSON, matching what browsers' JSON.stringify produces."""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False, default=str)


# camelCase option names accepted by from_dict()
_ALIASES = {
    "callbackName": "callback_name",
    "mimeTypes": "mime_types",
    "errorHeaderWhitelist": "error_header_whitelist",
    "isBase64": "is_base64",
}


@dataclass
class APIConfig:
    """
    Options for an API instance.

    Attributes:
        version: Reported as req.version and in access logs.
        base: Informational base path.
        callback_name: Query parameter read by res.jsonp().
        mime_types: Extension (no dot) → MIME type overrides.
        serializer: Turns non-string bodies into strings.
        error_header_whitelist: Headers kept when the error protocol
            strips a response. Matched case-insensitively.
        is_base64: Force isBase64Encoded on every response.
        headers: Default headers for every response.
        compression: False, True (all encodings) or a priority list.
        logger: True (defaults), False (silenced) or a dict of logger
            options.
    """

    version: str = "v1"
    base: str = ""
    callback_name: str = "callback"
    mime_types: Dict[str, str] = field(default_factory=dict)
    serializer: Callable[[Any], str] = default_serializer
    error_header_whitelist: List[str] = field(default_factory=list)
    is_base64: bool = False
    headers: Dict[str, Any] = field(default_factory=dict)
    compression: Union[bool, List[str]] = False
    logger: Union[bool, Dict[str, Any]] = True

    def __post_init__(self) -> None:
        if self.serializer is None:
            self.serializer = default_serializer
        self.error_header_whitelist = [
            str(name).lower() for name in (self.error_header_whitelist or [])
        ]
        self.validate()

    @property
    def encodings(self) -> List[str]:
        """Encodings the app may compress with, highest priority first."""
        if self.compression is True:
            return list(SUPPORTED_ENCODINGS)
        if not self.compression:
            return []
        return [str(enc).lower() for enc in self.compression]

    @classmethod
    def from_dict(cls, options: Optional[Dict[str, Any]] = None) -> "APIConfig":
        """
        Build a config from an options dict.

        Both camelCase (`callbackName`) and snake_case (`callback_name`)
        keys are accepted. Unknown keys are a configuration error.
        """
        options = dict(options or {})
        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            name = _ALIASES.get(key, key)
            if name not in cls.__dataclass_fields__:
                raise ConfigurationError(f"Unknown option: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_env(cls, prefix: str = "LAMBDA_API_") -> "APIConfig":
        """
        Build a config from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        LAMBDA_API_VERSION        API version (default: v1)
        LAMBDA_API_BASE           Base path (default: "")
        LAMBDA_API_CALLBACK_NAME  JSONP query parameter (default: callback)
        LAMBDA_API_IS_BASE64      "true" to base64 every body
        LAMBDA_API_COMPRESSION    "true", "false" or "br,gzip"
        LAMBDA_API_LOG_LEVEL      Minimum request log level (default: info)

        =====================================================================
        """
        def env(name: str, default: str = "") -> str:
            return os.getenv(f"{prefix}{name}", default)

        compression: Union[bool, List[str]]
        raw = env("COMPRESSION").strip().lower()
        if raw in ("", "false", "0", "no"):
            compression = False
        elif raw in ("true", "1", "yes"):
            compression = True
        else:
            compression = [enc.strip() for enc in raw.split(",") if enc.strip()]

        log_level = env("LOG_LEVEL").strip().lower()

        return cls(
            version=env("VERSION", "v1"),
            base=env("BASE"),
            callback_name=env("CALLBACK_NAME", "callback"),
            is_base64=env("IS_BASE64").strip().lower() in ("true", "1", "yes"),
            compression=compression,
            logger={"level": log_level} if log_level else True,
        )

    def validate(self) -> None:
        """Fail fast on invalid values."""
        if not callable(self.serializer):
            raise ConfigurationError("Serializer must be a function")

        if not isinstance(self.callback_name, str) or not self.callback_name:
            raise ConfigurationError("Callback name must be a non-empty string")

        if not isinstance(self.mime_types, dict):
            raise ConfigurationError("mime_types must be a dict")

        if not isinstance(self.headers, dict):
            raise ConfigurationError("headers must be a dict")

        if not isinstance(self.compression, (bool, list, tuple)):
            raise ConfigurationError("compression must be a boolean or a list")

        unknown = [enc for enc in self.encodings if enc not in SUPPORTED_ENCODINGS]
        if unknown:
            raise ConfigurationError(
                f"Unsupported compression: {', '.join(unknown)}"
            )

        if not isinstance(self.logger, (bool, dict)):
            raise ConfigurationError("logger must be a boolean or a dict")
