"""
pytest configuration and fixtures.
"""

import io
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from lambda_api import API, Invocation, Request, Response
from lambda_api.files import FileResolver, LinkService
from lambda_api.http.event import parse_request


def build_event(
    method: str = "GET",
    path: str = "/test",
    *,
    query: Optional[Dict[str, str]] = None,
    headers: Optional[Dict[str, str]] = None,
    body: Any = None,
    is_base64: bool = False,
    **extra: Any,
) -> Dict[str, Any]:
    """REST API (v1) proxy event."""
    headers = {"content-type": "application/json", "user-agent": "pytest", **(headers or {})}
    event = {
        "httpMethod": method,
        "path": path,
        "headers": headers,
        "multiValueHeaders": {name: [value] for name, value in headers.items()},
        "queryStringParameters": query,
        "multiValueQueryStringParameters": (
            {name: [value] for name, value in query.items()} if query else None
        ),
        "pathParameters": None,
        "stageVariables": None,
        "requestContext": {
            "requestId": "c6af9ac6-7b61-11e6-9a41-93e8deadbeef",
            "identity": {"sourceIp": "192.168.100.1", "userAgent": "pytest"},
        },
        "body": body,
        "isBase64Encoded": is_base64,
    }
    event.update(extra)
    return event


class LambdaContext:
    """Stand-in for the object Lambda passes as `context`."""

    aws_request_id = "4d4a0b5e-request-id"
    function_name = "test-fn"
    memory_limit_in_mb = "128"

    def get_remaining_time_in_millis(self) -> int:
        return 2900


class FakeS3Client:
    """
    In-memory replacement for a boto3 S3 client.

    Only get_object and generate_presigned_url are implemented.
    """

    def __init__(self):
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.presign_calls: List[Dict[str, Any]] = []

    def put(self, bucket: str, key: str, content: bytes, **meta: Any) -> None:
        self.objects[f"{bucket}/{key}"] = {"content": content, **meta}

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        obj = self.objects.get(f"{Bucket}/{Key}")
        if obj is None:
            raise ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
                "GetObject",
            )
        return {
            "Body": io.BytesIO(obj["content"]),
            "ContentType": obj.get("content_type", "text/plain"),
            "LastModified": obj.get(
                "last_modified", datetime(2018, 8, 1, tzinfo=timezone.utc)
            ),
            "ETag": obj.get("etag", '"ae771fbbba6a74eeeb77754355831713"'),
        }

    def generate_presigned_url(self, operation: str, Params: Dict[str, Any],
                               ExpiresIn: int) -> str:
        self.presign_calls.append(
            {"operation": operation, "params": Params, "expires": ExpiresIn}
        )
        if Params["Bucket"] == "denied-bucket":
            raise ClientError(
                {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}},
                "GetObject",
            )
        return (
            f"https://s3.amazonaws.com/{Params['Bucket']}/{Params['Key']}"
            f"?AWSAccessKeyId=AKXYZ&Expires={ExpiresIn}&Signature=XYZ"
        )


@pytest.fixture
def event() -> Callable[..., Dict[str, Any]]:
    """Factory for API Gateway events."""
    return build_event


@pytest.fixture
def context() -> LambdaContext:
    return LambdaContext()


@pytest.fixture
def s3() -> FakeS3Client:
    client = FakeS3Client()
    client.put("my-test-bucket", "test/test.txt", b"Test file for sendFile\n")
    return client


@pytest.fixture
def log_lines() -> List[Dict[str, Any]]:
    """Records written by APIs built with make_api, decoded."""
    return []


@pytest.fixture
def make_api(s3: FakeS3Client, log_lines: List[Dict[str, Any]]) -> Callable[..., API]:
    """
    Factory for APIs wired to the fake S3 client.

    Unless `logger` is given, records are captured in `log_lines`.
    """
    def sink(line: str) -> None:
        log_lines.append(json.loads(line))

    def factory(**options: Any) -> API:
        logger_option = options.pop("logger", {})
        if isinstance(logger_option, dict):
            logger_option = {"log": sink, **logger_option}
        return API(
            file_resolver=FileResolver(client=s3),
            link_service=LinkService(client=s3),
            logger=logger_option,
            **options,
        )

    return factory


@pytest.fixture
def make_response(make_api: Callable[..., API]) -> Callable[..., Response]:
    """Factory for a Response bound to a parsed request, outside the engine."""
    def factory(evt: Optional[Dict[str, Any]] = None, **options: Any) -> Response:
        api = make_api(**options)
        evt = evt if evt is not None else build_event()
        request = Request(api, Invocation(event=evt, context=None, count=1, cold_start=True))
        parse_request(request, evt, None)
        return Response(api, request)

    return factory
