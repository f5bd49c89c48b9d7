"""
=============================================================================
MIME TYPE LOOKUP
=============================================================================

Resolves Content-Type values for res.type(), res.attachment() and
res.send_file().

    lookup("text/plain")        → "text/plain"           (already a type)
    lookup("html")              → "text/html"            (bare extension)
    lookup(".png")              → "image/png"            (dotted extension)
    lookup_file("q1.pdf")       → "application/pdf"      (file name)
    lookup_file("a.test", {"test": "text/test"})
                                → "text/test"            (app override)

Per-app overrides come from the `mime_types` option and win over the
built-in table. Their keys are extensions without the leading dot.

=============================================================================
"""

import posixpath
from typing import Dict, Optional


# Extensions are lowercase with the leading dot.
MIME_TYPES: Dict[str, str] = {
    # text
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".json": "application/json",
    ".xml": "application/xml",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".yaml": "text/yaml",
    ".yml": "text/yaml",

    # images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",

    # fonts
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",

    # audio / video
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",

    # documents
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",

    # archives and binary data
    ".zip": "application/zip",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
    ".7z": "application/x-7z-compressed",
    ".wasm": "application/wasm",
    ".bin": "application/octet-stream",
}

DEFAULT_MIME_TYPE = "application/octet-stream"


def extension_of(value: str) -> str:
    """
    Lowercase extension (with dot) of a file name, or of a bare extension.

        >>> extension_of("photo.JPG")
        '.jpg'
        >>> extension_of("html")
        '.html'
    """
    value = value.strip().lower()
    ext = posixpath.splitext(value)[1]
    if ext:
        return ext
    return value if value.startswith(".") else f".{value}"


def lookup(
    value: str,
    overrides: Optional[Dict[str, str]] = None,
    default: Optional[str] = DEFAULT_MIME_TYPE,
) -> Optional[str]:
    """
    Resolve a MIME type from a type string or an extension.

    Args:
        value: "text/plain", "png" or ".png". Anything containing a
               slash is taken to be a MIME type already.
        overrides: App-level map of extension (no dot) to MIME type.
        default: Returned when nothing matches.

    Returns:
        The MIME type, or `default`.
    """
    if not value:
        return default

    if "/" in value:
        return value

    ext = extension_of(value)
    if overrides:
        custom = overrides.get(ext[1:])
        if custom:
            return custom

    return MIME_TYPES.get(ext, default)


def lookup_file(
    filename: str,
    overrides: Optional[Dict[str, str]] = None,
    default: Optional[str] = DEFAULT_MIME_TYPE,
) -> Optional[str]:
    """MIME type for a file name or path, by its extension."""
    ext = posixpath.splitext(filename.strip().lower())[1]
    if not ext:
        return default
    return lookup(ext, overrides, default)
