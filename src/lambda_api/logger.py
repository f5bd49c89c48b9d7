"""
=============================================================================
STRUCTURED REQUEST LOGGING
=============================================================================

Every request gets a logging facade (`req.log`). Calls are buffered on the
request and flushed as JSON lines after the response is finalized:

    ┌──────────────┐   req.log.info("msg")   ┌────────────────────────────┐
    │   handler    │ ──────────────────────► │ req._logs (buffer)         │
    └──────────────┘                         └─────────────┬──────────────┘
                                                           │ finalize
                                                           ▼
                                             ┌────────────────────────────┐
                                             │ sink(json.dumps(record))   │
                                             │ ... one line per record    │
                                             │ + one "access" record      │
                                             └────────────────────────────┘

The default sink writes to the `lambda_api.access` logger, which ends up
in CloudWatch via stdout.

=============================================================================
RECORD LAYOUT
=============================================================================

    {
      "level": "info",          severity name
      "time": 1533081600000,    epoch milliseconds (timestamp option)
      "id": "abc-123",          request id from the invocation context
      "method": "GET",
      "msg": "hello",           message key is configurable
      "timer": 3,               ms since the request started (timer option)
      "int": "apigateway",      interface: apigateway | alb
      "sample": true,           only present on sampled requests
      ...custom fields...       dicts merge in, other values go under "custom"
      "remaining": 2900,        context fields, under "context" when nested
      "function": "my-fn",
      "memory": "512"
    }

With `detail` enabled (and always for the access record) the record is
extended with request fields (path, ip, ua, version, device, country, qs)
and response serializer output.

=============================================================================
SAMPLING
=============================================================================

Sampling forces full-detail logging for a fraction of requests. A sampled
request lowers its threshold to the rule's level (default "trace").

    period 60s, target 1, rate 0.1
    ───────────────────────────────────────────────────────────►  time
    │req1 ✓│req2 │req3 │ ... │req11 ✓│ ... │req21 ✓│ ... │ new period: req ✓
     target  ────── rate: every 10th request ──────

=============================================================================
"""

import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import ConfigurationError


logger = logging.getLogger(__name__)

access_logger = logging.getLogger("lambda_api.access")

LOG_LEVELS: Dict[str, int] = {
    "trace": 10,
    "debug": 20,
    "info": 30,
    "warn": 40,
    "error": 50,
    "fatal": 60,
}

_LEVEL_NAME = re.compile(r"^[A-Za-z_]\w*$")


def default_sink(line: str) -> None:
    """Write a serialized record to the access logger."""
    access_logger.info(line)


def _context_value(context: Any, attr: str, key: str) -> Any:
    # Lambda passes an object; tests and local runners often pass a dict
    if context is None:
        return None
    if isinstance(context, dict):
        return context.get(key, context.get(attr))
    return getattr(context, attr, None)


def context_fields(context: Any) -> Dict[str, Any]:
    """Remaining time, function name and memory limit from a context."""
    remaining = None
    getter = (
        context.get("getRemainingTimeInMillis") if isinstance(context, dict)
        else getattr(context, "get_remaining_time_in_millis", None)
    )
    if callable(getter):
        remaining = getter()
    return {
        "remaining": remaining,
        "function": _context_value(context, "function_name", "functionName"),
        "memory": _context_value(context, "memory_limit_in_mb", "memoryLimitInMB"),
    }


def _default_req_serializer(req: Any, multi_value: bool) -> Dict[str, Any]:
    fields = {
        "path": req.path,
        "ip": req.ip,
        "ua": req.user_agent,
        "version": req.version,
        "device": req.client_type,
        "country": req.client_country,
    }
    query = req.multi_value_query if multi_value else req.query
    if query:
        fields["qs"] = query
    return fields


def _prune(record: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in record.items() if value is not None}


# =============================================================================
# SAMPLING
# =============================================================================

@dataclass
class SamplingRule:
    """One sampling rule. The default rule has no route."""

    route: Optional[str] = None
    target: int = 1
    rate: float = 0.1
    period: float = 60
    method: List[str] = field(default_factory=list)
    level: str = "trace"
    key: str = "default"

    def matches(self, path: str, method: str) -> bool:
        if self.route is None:
            return True
        if self.method and method.upper() not in self.method:
            return False
        if self.route.endswith("*"):
            return path.startswith(self.route[:-1])
        return path == self.route


@dataclass
class _Counter:
    start: float
    fixed: int = 0
    period: int = 0
    rated: int = 0
    total: int = 0


class Sampler:
    """
    Decides whether a request gets full-detail logging.

    Counters are process-wide per sampler and guarded by a lock, so a
    runtime that parallelizes invocations still sees consistent counts.
    """

    def __init__(self, options: Union[bool, Dict[str, Any]], levels: Dict[str, int]):
        if options is True:
            options = {}
        if not isinstance(options, dict):
            raise ConfigurationError("Invalid sampler configuration")

        self.default_rule = self._rule(options, "default", levels, route=None)
        self.rules: List[SamplingRule] = []
        for index, rule in enumerate(options.get("rules", []) or []):
            if not isinstance(rule, dict) or not isinstance(rule.get("route"), str):
                raise ConfigurationError("Invalid route specified in rule")
            self.rules.append(
                self._rule(rule, f"rule{index}", levels, route=rule["route"].strip())
            )

        self._counters: Dict[str, _Counter] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _rule(options: Dict[str, Any], key: str, levels: Dict[str, int],
              route: Optional[str]) -> SamplingRule:
        level = options.get("level", "trace")
        if level not in levels:
            raise ConfigurationError(f"Invalid sampling level: {level}")

        method = options.get("method") or []
        if isinstance(method, str):
            method = [m.strip() for m in method.split(",")]
        try:
            return SamplingRule(
                route=route,
                target=int(options.get("target", 1)),
                rate=float(options.get("rate", 0.1)),
                period=float(options.get("period", 60)),
                method=[m.upper() for m in method if m],
                level=level,
                key=key,
            )
        except (TypeError, ValueError):
            raise ConfigurationError("Invalid sampler configuration")

    def rule_for(self, path: str, method: str) -> SamplingRule:
        for rule in self.rules:
            if rule.matches(path, method):
                return rule
        return self.default_rule

    def sample(self, path: str, method: str, now: Optional[float] = None) -> Optional[str]:
        """
        Record one request and decide whether it is sampled.

        Returns:
            The level to lower the threshold to, or None.
        """
        rule = self.rule_for(path, method)
        now = time.monotonic() if now is None else now

        with self._lock:
            counter = self._counters.get(rule.key)
            if counter is None:
                counter = self._counters[rule.key] = _Counter(start=now)

            sampled = False
            if now - counter.start >= rule.period:
                # New period
                counter.start = now
                counter.period = 0
                counter.rated = 0
                counter.fixed = 1 if rule.target > 0 else 0
                sampled = rule.target > 0
            elif counter.fixed < rule.target:
                counter.fixed += 1
                sampled = True
            elif rule.rate > 0 and int((counter.period + 1) * rule.rate) > counter.rated:
                counter.rated += 1
                sampled = True

            counter.period += 1
            counter.total += 1

        return rule.level if sampled else None


# =============================================================================
# CONFIGURATION
# =============================================================================

_OPTION_ALIASES = {
    "messageKey": "message_key",
    "customKey": "custom_key",
    "multiValue": "multi_value",
    "errorLogging": "error_logging",
}


@dataclass
class LoggerConfig:
    """
    Request logging options.

    Attributes:
        level: Minimum level kept in the buffer, or "none".
        levels: Custom levels merged into LOG_LEVELS.
        message_key: Key holding the message in each record.
        custom_key: Key holding non-dict custom data.
        timestamp: False disables, a callable overrides epoch ms.
        timer: Include elapsed request time.
        nested: Nest req/res/context/custom fields under their own keys.
        access: True always emits an access record, "never" never does,
            False emits one only when other records were logged.
        detail: Add request/response fields to every record.
        stack: Include tracebacks in error records.
        multi_value: Log multi-value query strings.
        error_logging: Log errors handled by the error protocol.
        serializers: main/req/res/context/custom field builders.
        sampling: False, True or a sampling dict.
        log: The sink that receives each serialized record.
    """

    level: str = "info"
    levels: Dict[str, int] = field(default_factory=dict)
    message_key: str = "msg"
    custom_key: str = "custom"
    timestamp: Union[bool, Callable[[], Any]] = True
    timer: bool = True
    nested: bool = False
    access: Union[bool, str] = False
    detail: bool = False
    stack: bool = False
    multi_value: bool = False
    error_logging: bool = True
    serializers: Dict[str, Callable[..., Dict[str, Any]]] = field(default_factory=dict)
    sampling: Union[bool, Dict[str, Any]] = False
    log: Callable[[str], None] = default_sink

    def __post_init__(self) -> None:
        for name, value in (self.levels or {}).items():
            if (
                not isinstance(name, str)
                or not _LEVEL_NAME.match(name)
                or isinstance(value, bool)
                or not isinstance(value, (int, float))
            ):
                raise ConfigurationError("Invalid level configuration")
        self.all_levels: Dict[str, int] = {**LOG_LEVELS, **(self.levels or {})}

        if self.level != "none" and self.level not in self.all_levels:
            raise ConfigurationError(f"Invalid logging level: {self.level}")

        if not callable(self.log):
            raise ConfigurationError("Log sink must be a function")

        for name, serializer in (self.serializers or {}).items():
            if name not in ("main", "req", "res", "context", "custom") or not callable(serializer):
                raise ConfigurationError(f"Invalid serializer: {name}")

        self.sampler: Optional[Sampler] = (
            Sampler(self.sampling, self.all_levels) if self.sampling else None
        )

    @classmethod
    def from_option(cls, option: Union[bool, Dict[str, Any], None]) -> "LoggerConfig":
        """Build from the API's `logger` option."""
        if option is False:
            return cls(level="none", error_logging=False)
        if option is True or option is None:
            return cls()
        if not isinstance(option, dict):
            raise ConfigurationError("Invalid logger configuration")

        kwargs = {}
        for key, value in option.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in cls.__dataclass_fields__:
                raise ConfigurationError(f"Unknown logger option: {key}")
            kwargs[name] = value
        if kwargs.get("log") is None:
            kwargs.pop("log", None)
        return cls(**kwargs)

    # ─────────────────────────────────────────────────────────────────────
    # FILTERING
    # ─────────────────────────────────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        return self.level != "none"

    def allows(self, level: str, sample_level: Optional[str] = None) -> bool:
        """True when a record at `level` passes the current threshold."""
        if not self.enabled or level not in self.all_levels:
            return False
        threshold = self.all_levels[sample_level or self.level]
        return self.all_levels[level] >= threshold

    # ─────────────────────────────────────────────────────────────────────
    # RECORD BUILDING
    # ─────────────────────────────────────────────────────────────────────

    def _timestamp(self) -> Any:
        if self.timestamp is False:
            return None
        if callable(self.timestamp):
            return self.timestamp()
        return int(time.time() * 1000)

    def _serialize(self, name: str, default: Dict[str, Any], *args: Any) -> Dict[str, Any]:
        custom = self.serializers.get(name)
        if custom is None:
            return _prune(default)
        return _prune({**default, **(custom(*args) or {})})

    def build(self, level: str, message: Any, req: Any,
              context: Any = None, custom: Any = None) -> Dict[str, Any]:
        """Build one log record for a request."""
        record: Dict[str, Any] = {
            "level": level,
            "time": self._timestamp(),
            "id": req.id,
            "method": req.method,
            self.message_key: message,
            "timer": (
                int((time.monotonic() - req._start) * 1000) if self.timer else None
            ),
            "int": req.interface,
            "sample": True if req.sample else None,
        }
        record.update(self._serialize("main", {}, req))

        if custom is not None:
            if "custom" in self.serializers:
                custom = self.serializers["custom"](custom)
            if isinstance(custom, dict) and not self.nested:
                record.update(custom)
            else:
                record[self.custom_key] = custom

        ctx = self._serialize("context", context_fields(context), context)
        if self.nested:
            record["context"] = ctx
        else:
            record.update(ctx)

        return _prune(record)

    def format(self, record: Dict[str, Any], req: Any, res: Any) -> Dict[str, Any]:
        """Extend a record with request and response fields."""
        req_fields = self._serialize(
            "req", _default_req_serializer(req, self.multi_value), req
        )
        res_fields = self._serialize("res", {}, res)
        if self.nested:
            return {**record, "req": req_fields, "res": res_fields}
        return {**record, **req_fields, **res_fields}

    def emit(self, record: Dict[str, Any]) -> None:
        """Serialize a record and hand it to the sink."""
        self.log(json.dumps(record, default=str))
