"""
=============================================================================
HEADER AND COOKIE CODEC
=============================================================================

Pure functions that build and parse header values. Nothing here touches a
Response; the response model calls these and stores the results.

=============================================================================
SET-COOKIE LAYOUT
=============================================================================

Attributes are always written in the same order:

    name=value; Domain=d; Expires=date; HttpOnly; MaxAge=s; Path=/; Secure; SameSite=x
    ──────────  ────────  ────────────  ────────  ────────  ──────  ──────  ──────────
        │          │           │            │         │        │       │        │
        │          │           │            │         │        │       │        └ True → Strict
        │          │           │            │         │        │       │          False → Lax
        │          │           │            │         │        │       │          str → as-is
        │          │           │            │         │        │       └ flag
        │          │           │            │         │        └ default "/"
        │          │           │            │         └ max_age is milliseconds,
        │          │           │            │           emitted as seconds and
        │          │           │            │           followed by a derived
        │          │           │            │           Expires when none given
        │          │           │            └ flag
        │          │           └ explicit expiry (wins over max_age)
        │          └ optional
        └ value URL-encoded; dicts and lists JSON-encoded first

=============================================================================
CACHE-CONTROL MATRIX
=============================================================================

    cache()            → "max-age=0"                          + Expires
    cache(True)        → "max-age=0"                          + Expires
    cache(False)       → "no-cache, no-store, must-revalidate"
    cache(1000)        → "max-age=1"                          + Expires
    cache(1000, True)  → "private, max-age=1"                 + Expires
    cache("custom")    → "custom"

=============================================================================
"""

import json
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import quote, unquote


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

NO_CACHE = "no-cache, no-store, must-revalidate"

# Unreserved characters of encodeURIComponent
_COMPONENT_SAFE = "-_.!~*'()"

# encodeURI keeps URL structure characters; existing %XX escapes are kept
_URL_SAFE = ";,/?:@&=+$-_.!~*'()#%[]"

_HTML_ESCAPES = str.maketrans({
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
})

_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

_BAD_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")


# =============================================================================
# DATES
# =============================================================================

def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date.

    Naive datetimes are taken to be UTC already.

        >>> format_http_date(datetime(2018, 8, 1))
        'Wed, 01 Aug 2018 00:00:00 GMT'
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return (
        f"{_DAYS[dt.weekday()]}, "
        f"{dt.day:02d} {_MONTHS[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def parse_http_date(value: str) -> Optional[datetime]:
    """
    Parse an HTTP-date or ISO 8601 string into an aware UTC datetime.

    Returns None when the string is not a recognizable date.
    """
    value = (value or "").strip()
    if not value:
        return None

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
        if parsed is None:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_datetime(value: Union[datetime, str, int, float]) -> Optional[datetime]:
    """
    Coerce a datetime, date string or epoch-milliseconds number.

    Returns None for anything that cannot be read as a date.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return EPOCH + timedelta(milliseconds=value)
    if isinstance(value, str):
        return parse_http_date(value)
    return None


# =============================================================================
# ENCODING
# =============================================================================

def encode_uri_component(value: str) -> str:
    """
    Percent-encode everything except unreserved characters.

        >>> encode_uri_component("http:// [] foo;bar")
        'http%3A%2F%2F%20%5B%5D%20foo%3Bbar'
    """
    return quote(value, safe=_COMPONENT_SAFE)


def encode_url(url: str) -> str:
    """
    Encode a URL for a Location header.

    Spaces, angle brackets, quotes and non-ASCII characters are escaped.
    Structure characters and valid %XX sequences are left alone.

        >>> encode_url("http://www.github.com?foo=bar with space")
        'http://www.github.com?foo=bar%20with%20space'
    """
    url = _BAD_PERCENT.sub("%25", url)
    return quote(url, safe=_URL_SAFE)


def escape_html(value: str) -> str:
    """Escape &, <, >, quotes and apostrophes for an HTML body."""
    return str(value).translate(_HTML_ESCAPES)


def _encode_cookie_value(value: Any) -> str:
    if isinstance(value, str):
        return encode_uri_component(value)
    return encode_uri_component(json.dumps(value, separators=(",", ":")))


# =============================================================================
# COOKIES
# =============================================================================

def build_cookie(
    name: Any,
    value: Any,
    *,
    domain: Optional[str] = None,
    expires: Optional[Union[datetime, str, int, float]] = None,
    http_only: bool = False,
    max_age: Optional[Union[int, float]] = None,
    path: Optional[str] = None,
    secure: bool = False,
    same_site: Optional[Union[bool, str]] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Build one Set-Cookie value.

    Args:
        name: Cookie name; non-strings are converted with str().
        value: String (URL-encoded) or JSON-serializable value.
        domain: Domain attribute.
        expires: Explicit expiry date.
        http_only: Add the HttpOnly flag.
        max_age: Lifetime in milliseconds.
        path: Path attribute, "/" when omitted.
        secure: Add the Secure flag.
        same_site: True → Strict, False → Lax, a string verbatim.
        now: Reference time for a max_age-derived Expires.

    Returns:
        The header value, e.g. "test=value; Path=/".
    """
    parts = [f"{name}={_encode_cookie_value(value)}"]

    if domain:
        parts.append(f"Domain={domain}")

    expiry = to_datetime(expires) if expires is not None else None
    if expiry is not None:
        parts.append(f"Expires={format_http_date(expiry)}")

    if http_only:
        parts.append("HttpOnly")

    if max_age is not None and not isinstance(max_age, bool):
        parts.append(f"MaxAge={int(max_age / 1000)}")
        if expiry is None:
            reference = now or utcnow()
            parts.append(
                f"Expires={format_http_date(reference + timedelta(milliseconds=max_age))}"
            )

    parts.append(f"Path={path or '/'}")

    if secure:
        parts.append("Secure")

    if same_site is not None:
        if same_site is True:
            parts.append("SameSite=Strict")
        elif same_site is False:
            parts.append("SameSite=Lax")
        else:
            parts.append(f"SameSite={same_site}")

    return "; ".join(parts)


def parse_cookies(header: Optional[str]) -> Dict[str, Any]:
    """
    Parse a Cookie request header.

    Values are URL-decoded and then decoded as JSON when possible, so a
    cookie written with a dict value reads back as a dict.
    """
    cookies: Dict[str, Any] = {}
    if not header:
        return cookies

    for pair in header.split(";"):
        if "=" not in pair:
            continue
        name, _, raw = pair.partition("=")
        name = name.strip()
        if not name:
            continue
        decoded = unquote(raw.strip())
        try:
            cookies[name] = json.loads(decoded)
        except ValueError:
            cookies[name] = decoded
    return cookies


# =============================================================================
# CACHING
# =============================================================================

def cache_control(
    age: Optional[Union[bool, int, float, str]] = None,
    private: Any = False,
    now: Optional[datetime] = None,
) -> Tuple[str, Optional[str]]:
    """
    Build Cache-Control and Expires values.

    Args:
        age: None/True, False, milliseconds, or a literal directive string.
        private: Only exactly True adds the "private" directive.
        now: Reference time for Expires.

    Returns:
        (cache_control, expires) where expires is None when no Expires
        header should be set.
    """
    if isinstance(age, str):
        return age, None

    if age is False:
        return NO_CACHE, None

    seconds = 0
    if isinstance(age, (int, float)) and not isinstance(age, bool):
        seconds = int(age / 1000)

    value = f"max-age={seconds}"
    if private is True:
        value = f"private, {value}"

    reference = now or utcnow()
    return value, format_http_date(reference + timedelta(seconds=seconds))


# =============================================================================
# CONTENT NEGOTIATION
# =============================================================================

def parse_accept_encoding(header: Optional[str]) -> Dict[str, float]:
    """
    Encodings named by a client, in the order listed, with their quality.

    Entries with q=0 are kept so an explicit refusal can override "*".

        >>> parse_accept_encoding("gzip, deflate;q=0.5, br;q=0")
        {'gzip': 1.0, 'deflate': 0.5, 'br': 0.0}
    """
    qualities: Dict[str, float] = {}
    if not header:
        return qualities

    for entry in header.split(","):
        coding, _, params = entry.strip().partition(";")
        coding = coding.strip().lower()
        if not coding:
            continue
        quality = 1.0
        for param in params.split(";"):
            key, _, val = param.strip().partition("=")
            if key.strip().lower() == "q":
                try:
                    quality = float(val)
                except ValueError:
                    quality = 0.0
        qualities[coding] = quality
    return qualities
