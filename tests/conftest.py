from __future__ import annotations

import io
import os
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

if TYPE_CHECKING:
    from collections.abc import Generator

    from botocore.client import BaseClient


class FakeObjectStore:
    """In-memory stand-in for a boto3 S3 client's ``get_object``."""

    def __init__(self, objects: dict[str, tuple[bytes, str | None]] | None = None):
        self.objects = dict(objects or {})
        self.calls: list[tuple[str, str]] = []
        self.unreachable = False
        self.gates: dict[str, threading.Event] = {}
        self.closed = False

    def put(self, key: str, body: bytes, content_type: str | None = None) -> None:
        self.objects[key] = (body, content_type)

    def hold(self, key: str) -> threading.Event:
        """Block fetches of ``key`` until the returned event is set."""
        gate = threading.Event()
        self.gates[key] = gate
        return gate

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:  # noqa: N803
        self.calls.append((Bucket, Key))
        gate = self.gates.get(Key)
        if gate is not None:
            gate.wait(timeout=10)
        if self.unreachable:
            raise EndpointConnectionError(endpoint_url="https://storage.invalid")
        if Key not in self.objects:
            raise ClientError(
                {
                    "Error": {"Code": "NoSuchKey", "Message": "Not Found"},
                    "ResponseMetadata": {"HTTPStatusCode": 404},
                },
                "GetObject",
            )
        body, content_type = self.objects[Key]
        result: dict[str, Any] = {"Body": io.BytesIO(body)}
        if content_type is not None:
            result["ContentType"] = content_type
        return result

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore(
        {
            "index.html": (b"<h1>root</h1>", "text/html"),
            "acme/index.html": (b"<h1>acme</h1>", "text/html"),
            "acme/about/index.html": (b"<h1>about acme</h1>", "text/html"),
            "acme/style.css": (b"body { color: red; }", "text/css"),
            "acme/blob.bin": (b"\x00\x01\xfe\xff", None),
        }
    )


@pytest.fixture
def gateway_env() -> Generator[dict[str, str]]:
    """Set up the environment variables the gateway needs to start."""
    env_vars = {
        "R2_BUCKET_NAME": "sites",
        "R2_ACCOUNT_ID": "abc123",
        "AWS_ACCESS_KEY_ID": "access",
        "AWS_SECRET_ACCESS_KEY": "secret",
    }

    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value

    yield env_vars

    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture
def settings(gateway_env):
    from tenant_gateway.proxy import load_settings_from_env

    return load_settings_from_env()


@dataclass
class MinioService:
    endpoint: str
    access_key: str
    secret_key: str


def _docker_available() -> bool:
    try:
        import docker

        docker.from_env().ping()
    except Exception:  # noqa: BLE001
        return False
    return True


@pytest.fixture(scope="session")
def minio_service(request: pytest.FixtureRequest) -> Generator[MinioService]:
    if not _docker_available():
        pytest.skip("docker is not available")

    from urllib.error import URLError
    from urllib.request import Request, urlopen

    from pytest_databases.types import ServiceContainer

    access_key = os.getenv("MINIO_ACCESS_KEY", "minio")
    secret_key = os.getenv("MINIO_SECRET_KEY", "minio123")

    def check(_service: ServiceContainer) -> bool:
        url = f"http://{_service.host}:{_service.port}/minio/health/ready"
        try:
            with urlopen(url=Request(url, method="GET"), timeout=10) as response:
                return response.status == 200
        except (URLError, ConnectionError):
            return False

    docker_service = request.getfixturevalue("docker_service")
    with docker_service.run(
        image="quay.io/minio/minio",
        name="tenant-gateway-minio",
        command="server /data",
        container_port=9000,
        timeout=20,
        pause=0.5,
        env={"MINIO_ROOT_USER": access_key, "MINIO_ROOT_PASSWORD": secret_key},
        check=check,
    ) as service:
        yield MinioService(
            endpoint=f"http://{service.host}:{service.port}",
            access_key=access_key,
            secret_key=secret_key,
        )


@pytest.fixture
def minio_client(minio_service: MinioService) -> BaseClient:
    import boto3
    from botocore.config import Config

    return boto3.client(
        "s3",
        endpoint_url=minio_service.endpoint,
        aws_access_key_id=minio_service.access_key,
        aws_secret_access_key=minio_service.secret_key,
        region_name="us-east-1",
        config=Config(s3={"addressing_style": "path"}),
    )
