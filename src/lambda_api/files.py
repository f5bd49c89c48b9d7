"""
=============================================================================
FILE AND LINK SERVICES
=============================================================================

res.send_file(), res.download(), res.get_link() and s3:// redirects do not
read storage themselves. They go through two small services:

    ┌──────────────────┐  resolve(file)   ┌────────────────────────────┐
    │ Response         │ ───────────────► │ FileResolver               │
    │                  │ ◄─────────────── │   bytes    → as-is         │
    │                  │   ResolvedFile   │   "./x"    → local disk    │
    │                  │                  │   "s3://"  → get_object    │
    │                  │  signed_url()    ├────────────────────────────┤
    │                  │ ───────────────► │ LinkService                │
    │                  │ ◄─────────────── │   presigned getObject URL  │
    └──────────────────┘      str         └────────────────────────────┘

Both are injected into the API (`file_resolver=`, `link_service=`), so
tests can swap in fakes and never reach AWS. The boto3 client is created
lazily on first use, which keeps cold starts cheap for functions that
never touch S3.

Failures surface as FileError with the underlying exception in
`details`.

=============================================================================
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Tuple, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import FileError


logger = logging.getLogger(__name__)

_S3_PATH = re.compile(r"^s3://([^/]+)/?(.*)$", re.IGNORECASE)


def is_s3_path(value: Any) -> bool:
    return isinstance(value, str) and value.lower().startswith("s3://")


def parse_s3_path(path: str) -> Tuple[str, str]:
    """
    Split an s3://bucket/key reference.

    Raises:
        FileError: when the bucket or key is missing.
    """
    match = _S3_PATH.match(path.strip())
    if not match or not match.group(1) or not match.group(2):
        raise FileError("Invalid S3 path", {"path": path})
    return match.group(1), match.group(2)


def _s3_error_message(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code, message = error.get("Code"), error.get("Message")
        if code and message:
            return f"{code}: {message}"
        return message or code or str(exc)
    return str(exc)


@dataclass
class ResolvedFile:
    """File content plus the metadata the response needs."""

    content: bytes
    name: Optional[str] = None
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None


class FileResolver:
    """
    Resolve bytes, local paths and S3 references to ResolvedFile.

    Args:
        client: An S3 client. Created with boto3 on first S3 access
                when omitted.
    """

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def resolve(self, file: Union[str, bytes, bytearray], root: Optional[str] = None) -> ResolvedFile:
        if isinstance(file, (bytes, bytearray)):
            return ResolvedFile(content=bytes(file))

        if not isinstance(file, str) or not file.strip():
            raise FileError("Invalid file", {"path": file})

        if is_s3_path(file):
            return self._resolve_s3(file)
        return self._resolve_local(file, root)

    def _resolve_local(self, path: str, root: Optional[str]) -> ResolvedFile:
        full_path = os.path.join(root, path) if root else path
        try:
            with open(full_path, "rb") as handle:
                content = handle.read()
            stat = os.stat(full_path)
        except (FileNotFoundError, IsADirectoryError) as exc:
            raise FileError("No such file", exc) from exc
        except OSError as exc:
            raise FileError(exc.strerror or str(exc), exc) from exc

        return ResolvedFile(
            content=content,
            name=os.path.basename(full_path),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def _resolve_s3(self, path: str) -> ResolvedFile:
        bucket, key = parse_s3_path(path)
        logger.debug("Fetching s3://%s/%s", bucket, key)
        try:
            data = self.client.get_object(Bucket=bucket, Key=key)
            content = data["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise FileError(_s3_error_message(exc), exc) from exc

        return ResolvedFile(
            content=content,
            name=key.rsplit("/", 1)[-1],
            content_type=data.get("ContentType"),
            last_modified=data.get("LastModified"),
            etag=data.get("ETag"),
        )


class LinkService:
    """Presigned getObject URLs for S3 references."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def signed_url(self, path: str, expires: int = 900) -> str:
        """
        Presign an s3://bucket/key reference.

        Raises:
            FileError: for an invalid path or an S3 failure.
        """
        bucket, key = parse_s3_path(path)
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires,
            )
        except (BotoCoreError, ClientError) as exc:
            raise FileError(_s3_error_message(exc), exc) from exc
