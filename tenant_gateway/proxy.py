from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Literal, Protocol

from anyio import CapacityLimiter, to_thread
from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .keys import resolve

if TYPE_CHECKING:
    from collections.abc import Callable

LOG = logging.getLogger("tenant_gateway.proxy")

R2_ENDPOINT_TEMPLATE = "https://{account_id}.r2.cloudflarestorage.com"
NOT_FOUND_BODY = b"Not Found"

FETCH_ERRORS = (ClientError, BotoCoreError, OSError)


async def _run_sync(
    func: Callable[..., Any],
    /,
    *args: Any,
    limiter: CapacityLimiter | None = None,
    **kwargs: Any,
) -> Any:
    return await to_thread.run_sync(partial(func, *args, **kwargs), limiter=limiter)


class GatewaySettings(BaseSettings):
    """Configuration for the bucket the sites are served from."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    bucket_name: str = Field(validation_alias="R2_BUCKET_NAME")
    account_id: str | None = Field(default=None, validation_alias="R2_ACCOUNT_ID")
    access_key: str = Field(
        validation_alias=AliasChoices("R2_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID"),
    )
    secret_key: str = Field(
        validation_alias=AliasChoices(
            "R2_SECRET_ACCESS_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias="AWS_SESSION_TOKEN",
    )
    endpoint: str | None = Field(default=None, validation_alias="R2_ENDPOINT")
    region: str = Field(default="auto", validation_alias="R2_REGION")
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="virtual",
        validation_alias="R2_ADDRESSING_STYLE",
    )
    host: str = Field(default="localhost", validation_alias="GATEWAY_HOST")
    port: int = Field(default=5000, ge=0, le=65535, validation_alias="PORT")
    fetch_timeout: float = Field(
        default=30.0,
        gt=0,
        validation_alias="GATEWAY_FETCH_TIMEOUT",
    )
    fetch_concurrency: int = Field(
        default=256,
        ge=1,
        validation_alias="GATEWAY_FETCH_CONCURRENCY",
    )
    log_level: str = Field(default="INFO", validation_alias="GATEWAY_LOG_LEVEL")

    @model_validator(mode="after")
    def _require_endpoint_source(self) -> GatewaySettings:
        if not self.endpoint and not self.account_id:
            msg = "R2_ACCOUNT_ID must be set when R2_ENDPOINT is not given"
            raise ValueError(msg)
        return self

    @property
    def endpoint_url(self) -> str:
        if self.endpoint:
            return self.endpoint
        return R2_ENDPOINT_TEMPLATE.format(account_id=self.account_id)


def load_settings_from_env() -> GatewaySettings:
    """Load gateway settings from environment variables.

    Returns:
        GatewaySettings instance populated from environment variables.

    Raises:
        pydantic.ValidationError: A required variable is missing or invalid.
    """
    return GatewaySettings()


def build_storage_client(settings: GatewaySettings):
    session = Session(
        aws_access_key_id=settings.access_key,
        aws_secret_access_key=settings.secret_key,
        aws_session_token=settings.session_token,
        region_name=settings.region,
    )
    return session.client(
        "s3",
        endpoint_url=settings.endpoint_url,
        config=BotoConfig(
            signature_version="s3v4",
            retries={"total_max_attempts": 1, "mode": "standard"},
            connect_timeout=settings.fetch_timeout,
            read_timeout=settings.fetch_timeout,
            max_pool_connections=settings.fetch_concurrency,
            s3={"addressing_style": settings.addressing_style},
        ),
    )


class ObjectStore(Protocol):
    """The one storage operation the gateway depends on."""

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]: ...  # noqa: N803


@dataclass(frozen=True, slots=True)
class FetchSuccess:
    body: bytes
    content_type: str | None = None


@dataclass(frozen=True, slots=True)
class FetchFailure:
    cause: Exception


FetchResult = FetchSuccess | FetchFailure


@dataclass(slots=True)
class SiteResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class ObjectFetcher:
    """Reads whole objects from the store without blocking the event loop."""

    def __init__(self, client: ObjectStore, concurrency: int = 256):
        self._client = client
        self._concurrency = concurrency
        self._limiter: CapacityLimiter | None = None

    @property
    def limiter(self) -> CapacityLimiter:
        # Not anyio's shared default limiter (40 tokens).
        if self._limiter is None:
            self._limiter = CapacityLimiter(self._concurrency)
        return self._limiter

    async def fetch(self, bucket: str, key: str) -> FetchResult:
        limiter = self.limiter
        try:
            result = await _run_sync(
                self._client.get_object, Bucket=bucket, Key=key, limiter=limiter
            )
        except FETCH_ERRORS as error:
            return FetchFailure(error)

        streaming_body = result["Body"]
        try:
            body = await _run_sync(streaming_body.read, limiter=limiter)
        except FETCH_ERRORS as error:
            return FetchFailure(error)
        finally:
            await _run_sync(streaming_body.close, limiter=limiter)

        return FetchSuccess(body=body, content_type=result.get("ContentType"))


class TenantGateway:
    def __init__(self, settings: GatewaySettings, client: ObjectStore | None = None):
        self._settings = settings
        self._client = client if client is not None else build_storage_client(settings)
        self._fetcher = ObjectFetcher(self._client, settings.fetch_concurrency)

    @property
    def bucket(self) -> str:
        return self._settings.bucket_name

    @classmethod
    def from_env(cls) -> TenantGateway:
        """Create a TenantGateway instance from environment variables.

        Returns:
            TenantGateway configured from environment variables.
        """
        return cls(load_settings_from_env())

    async def handle(self, host_header: str | None, raw_path: str) -> SiteResponse:
        resolved = resolve(host_header, raw_path)
        key = resolved.key
        LOG.debug(
            "handle host=%s path=%s tenant=%r key=%s",
            host_header,
            raw_path,
            resolved.tenant,
            key,
        )

        result = await self._fetcher.fetch(self.bucket, key)
        if isinstance(result, FetchSuccess):
            LOG.debug(
                "GET hit for s3://%s/%s (%d bytes)", self.bucket, key, len(result.body)
            )
            return SiteResponse(
                status_code=200,
                headers={
                    "content-type": result.content_type or "",
                    "content-length": str(len(result.body)),
                },
                body=result.body,
            )

        LOG.warning(
            "error fetching s3://%s/%s: %s",
            self.bucket,
            key,
            result.cause,
        )
        return self._not_found()

    @staticmethod
    def _not_found() -> SiteResponse:
        return SiteResponse(
            status_code=404,
            headers={"content-length": str(len(NOT_FOUND_BODY))},
            body=NOT_FOUND_BODY,
        )

    def describe_storage(self) -> str:
        endpoint = self._settings.endpoint_url
        return f"s3://{self.bucket} at {endpoint} ({self._settings.region})"

    async def shutdown(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await _run_sync(close)
