"""S3-compatible storage client configuration.

Every provider is a preset over :func:`custom_client`: a hostname template,
a default region, an addressing style and the environment variables used as
fallbacks for omitted arguments. Missing parameters raise
:class:`StorageConfigError` at construction time so a misconfigured service
fails on start-up rather than on its first upload.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Mapping
from urllib.parse import quote, urlsplit

from directupload.core.constants import DEFAULT_REGION
from directupload.storage.exceptions import StorageConfigError
from directupload.storage.signer import Credentials

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageClient:
    """Normalized connection settings for one S3-compatible endpoint."""

    hostname: str
    credentials: Credentials
    force_path_style: bool = False
    secure: bool = True

    @property
    def region(self) -> str:
        return self.credentials.region

    def build_bucket_url(self, bucket_name: str) -> str:
        """Base URL of a bucket, path-style or virtual-host-style."""
        scheme = "https" if self.secure else "http"
        if self.force_path_style:
            return f"{scheme}://{self.hostname}/{bucket_name}"
        return f"{scheme}://{bucket_name}.{self.hostname}"

    def build_object_url(self, bucket_name: str, key: str) -> str:
        return f"{self.build_bucket_url(bucket_name)}/{quote(key, safe='/-_.~')}"


def custom_client(
    hostname: str,
    access_key_id: str | None = None,
    secret_access_key: str | None = None,
    region: str | None = None,
    force_path_style: bool = False,
    secure: bool = True,
    session_token: str | None = None,
) -> StorageClient:
    """Create a client for any S3-compatible service.

    Args:
        hostname: Endpoint host without scheme, e.g. ``s3.us-east-1.amazonaws.com``
        access_key_id: Falls back to ``AWS_ACCESS_KEY_ID``
        secret_access_key: Falls back to ``AWS_SECRET_ACCESS_KEY``
        region: Falls back to ``AWS_REGION``, then ``us-east-1``
        force_path_style: Address buckets as ``host/bucket`` instead of ``bucket.host``
        secure: Use HTTPS
        session_token: Falls back to ``AWS_SESSION_TOKEN``

    Raises:
        StorageConfigError: If the hostname or the key pair is missing
    """
    access_key_id = access_key_id or os.environ.get("AWS_ACCESS_KEY_ID")
    secret_access_key = secret_access_key or os.environ.get("AWS_SECRET_ACCESS_KEY")
    region = region or os.environ.get("AWS_REGION") or DEFAULT_REGION
    session_token = session_token or os.environ.get("AWS_SESSION_TOKEN") or None

    if not hostname or not access_key_id or not secret_access_key:
        raise StorageConfigError("Missing required parameters for custom S3 client.")

    if "://" in hostname:
        raise StorageConfigError(
            f"Hostname must not include a scheme: {hostname!r}"
        )

    return StorageClient(
        hostname=hostname,
        credentials=Credentials(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            region=region,
            session_token=session_token,
        ),
        force_path_style=force_path_style,
        secure=secure,
    )


@dataclass(frozen=True)
class ProviderPreset:
    """How one provider maps onto :func:`custom_client`.

    ``hostname`` receives the resolved parameters (``region`` and any
    ``extra_env`` keys) and returns the endpoint host. ``fixed_region``
    overrides the signing region for providers that ignore it.
    """

    label: str
    hostname: Callable[[Mapping[str, str | None]], str]
    region_env: tuple[str, ...] = ()
    access_key_env: tuple[str, ...] = ("AWS_ACCESS_KEY_ID",)
    secret_key_env: tuple[str, ...] = ("AWS_SECRET_ACCESS_KEY",)
    extra_env: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    required: tuple[str, ...] = ("region",)
    fixed_region: str | None = None
    force_path_style: bool = False
    secure: Callable[[Mapping[str, str | None]], bool] = lambda params: True


def _endpoint_host(endpoint: str | None) -> str:
    return urlsplit(endpoint or "").netloc


def _r2_host(params: Mapping[str, str | None]) -> str:
    jurisdiction = params.get("jurisdiction")
    prefix = f"{jurisdiction}." if jurisdiction else ""
    return f"{params['account_id']}.{prefix}r2.cloudflarestorage.com"


PROVIDERS: dict[str, ProviderPreset] = {
    "aws": ProviderPreset(
        label="AWS S3",
        hostname=lambda p: f"s3.{p['region']}.amazonaws.com",
        region_env=("AWS_REGION",),
    ),
    "cloudflare": ProviderPreset(
        label="Cloudflare R2",
        hostname=_r2_host,
        access_key_env=(
            "AWS_ACCESS_KEY_ID",
            "CLOUDFLARE_ACCESS_KEY_ID",
            "CLOUDFLARE_ACCESS_KEY",
        ),
        secret_key_env=(
            "AWS_SECRET_ACCESS_KEY",
            "CLOUDFLARE_SECRET_ACCESS_KEY",
            "CLOUDFLARE_SECRET_KEY",
        ),
        extra_env={
            "account_id": ("CLOUDFLARE_ACCOUNT_ID",),
            "jurisdiction": ("CLOUDFLARE_JURISDICTION", "CLOUDFLARE_R2_JURISDICTION"),
        },
        required=("account_id",),
        fixed_region="auto",
    ),
    "backblaze": ProviderPreset(
        label="Backblaze B2",
        hostname=lambda p: f"s3.{p['region']}.backblazeb2.com",
        region_env=("AWS_REGION", "B2_REGION", "BACKBLAZE_REGION"),
        access_key_env=("AWS_ACCESS_KEY_ID", "B2_APP_KEY_ID", "BACKBLAZE_APP_KEY_ID"),
        secret_key_env=("AWS_SECRET_ACCESS_KEY", "B2_APP_KEY", "BACKBLAZE_APP_KEY"),
    ),
    "digitalocean": ProviderPreset(
        label="DigitalOcean Spaces",
        hostname=lambda p: f"{p['region']}.digitaloceanspaces.com",
        region_env=("AWS_REGION", "SPACES_REGION"),
        access_key_env=("AWS_ACCESS_KEY_ID", "SPACES_KEY"),
        secret_key_env=("AWS_SECRET_ACCESS_KEY", "SPACES_SECRET"),
        fixed_region="us-east-1",
    ),
    "linode": ProviderPreset(
        label="Linode Object Storage",
        hostname=lambda p: f"{p['region']}.linodeobjects.com",
        region_env=("AWS_REGION", "LINODE_REGION"),
        access_key_env=("AWS_ACCESS_KEY_ID", "LINODE_ACCESS_KEY"),
        secret_key_env=("AWS_SECRET_ACCESS_KEY", "LINODE_SECRET_KEY"),
        fixed_region="us-east-1",
    ),
    "minio": ProviderPreset(
        label="MinIO",
        hostname=lambda p: _endpoint_host(p["endpoint"]),
        region_env=("AWS_REGION", "MINIO_REGION"),
        access_key_env=("AWS_ACCESS_KEY_ID", "MINIO_ACCESS_KEY_ID", "MINIO_ACCESS_KEY"),
        secret_key_env=(
            "AWS_SECRET_ACCESS_KEY",
            "MINIO_SECRET_ACCESS_KEY",
            "MINIO_SECRET_KEY",
        ),
        extra_env={"endpoint": ("AWS_ENDPOINT", "MINIO_ENDPOINT")},
        required=("region", "endpoint"),
        force_path_style=True,
        secure=lambda p: (p.get("endpoint") or "").startswith("https:"),
    ),
    "wasabi": ProviderPreset(
        label="Wasabi",
        hostname=lambda p: f"s3.{p['region']}.wasabisys.com",
        region_env=("AWS_REGION", "WASABI_REGION"),
        access_key_env=("AWS_ACCESS_KEY_ID", "WASABI_ACCESS_KEY_ID", "WASABI_ACCESS_KEY"),
        secret_key_env=(
            "AWS_SECRET_ACCESS_KEY",
            "WASABI_SECRET_ACCESS_KEY",
            "WASABI_SECRET_KEY",
        ),
    ),
    "tigris": ProviderPreset(
        label="Tigris",
        hostname=lambda p: _endpoint_host(p["endpoint"]) or "t3.storage.dev",
        access_key_env=("AWS_ACCESS_KEY_ID", "TIGRIS_ACCESS_KEY_ID", "TIGRIS_ACCESS_KEY"),
        secret_key_env=(
            "AWS_SECRET_ACCESS_KEY",
            "TIGRIS_SECRET_ACCESS_KEY",
            "TIGRIS_SECRET_KEY",
        ),
        extra_env={"endpoint": ("TIGRIS_ENDPOINT",)},
        required=(),
        fixed_region="auto",
    ),
}


def _first_env(names: tuple[str, ...]) -> str | None:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def provider_client(
    provider: str,
    *,
    access_key_id: str | None = None,
    secret_access_key: str | None = None,
    region: str | None = None,
    session_token: str | None = None,
    **extra: str | None,
) -> StorageClient:
    """Create a client from a provider preset.

    Explicit arguments win; anything omitted is looked up in the preset's
    environment variables in order.

    Raises:
        StorageConfigError: If the provider is unknown or a required
            parameter is still missing after the environment fallback
    """
    preset = PROVIDERS.get(provider)
    if preset is None:
        raise StorageConfigError(f"Unknown storage provider: {provider!r}")

    unknown = set(extra) - set(preset.extra_env)
    if unknown:
        raise StorageConfigError(
            f"Unexpected parameters for {preset.label} client: {', '.join(sorted(unknown))}"
        )

    params: dict[str, str | None] = {
        "region": region or _first_env(preset.region_env),
        "access_key_id": access_key_id or _first_env(preset.access_key_env),
        "secret_access_key": secret_access_key or _first_env(preset.secret_key_env),
    }
    for name, env_names in preset.extra_env.items():
        params[name] = extra.get(name) or _first_env(env_names)

    missing = [
        name
        for name in ("access_key_id", "secret_access_key", *preset.required)
        if not params.get(name)
    ]
    if missing:
        raise StorageConfigError(
            f"Missing required parameters for {preset.label} client: {', '.join(missing)}"
        )

    logger.debug(
        "Resolved storage provider",
        extra={"provider": provider, "region": params["region"]},
    )

    return custom_client(
        hostname=preset.hostname(params),
        access_key_id=params["access_key_id"],
        secret_access_key=params["secret_access_key"],
        region=preset.fixed_region or params["region"] or DEFAULT_REGION,
        force_path_style=preset.force_path_style,
        secure=preset.secure(params),
        session_token=session_token or os.environ.get("AWS_SESSION_TOKEN") or None,
    )


def aws(**kwargs: str | None) -> StorageClient:
    """AWS S3. Env: ``AWS_ACCESS_KEY_ID``, ``AWS_SECRET_ACCESS_KEY``, ``AWS_REGION``."""
    return provider_client("aws", **kwargs)


def cloudflare(**kwargs: str | None) -> StorageClient:
    """Cloudflare R2. Env: ``CLOUDFLARE_ACCOUNT_ID``, ``CLOUDFLARE_JURISDICTION`` and keys."""
    return provider_client("cloudflare", **kwargs)


def backblaze(**kwargs: str | None) -> StorageClient:
    """Backblaze B2. Env: ``B2_REGION``, ``B2_APP_KEY_ID``, ``B2_APP_KEY``."""
    return provider_client("backblaze", **kwargs)


def digitalocean(**kwargs: str | None) -> StorageClient:
    """DigitalOcean Spaces. Env: ``SPACES_REGION``, ``SPACES_KEY``, ``SPACES_SECRET``."""
    return provider_client("digitalocean", **kwargs)


def linode(**kwargs: str | None) -> StorageClient:
    """Linode Object Storage. Env: ``LINODE_REGION``, ``LINODE_ACCESS_KEY``, ``LINODE_SECRET_KEY``."""
    return provider_client("linode", **kwargs)


def minio(**kwargs: str | None) -> StorageClient:
    """MinIO, always path-style. Env: ``MINIO_ENDPOINT``, ``MINIO_REGION`` and keys."""
    return provider_client("minio", **kwargs)


def wasabi(**kwargs: str | None) -> StorageClient:
    """Wasabi. Env: ``WASABI_REGION`` and keys."""
    return provider_client("wasabi", **kwargs)


def tigris(**kwargs: str | None) -> StorageClient:
    """Tigris. Env: ``TIGRIS_ENDPOINT`` (optional) and keys."""
    return provider_client("tigris", **kwargs)


def build_client_from_settings() -> StorageClient:
    """Resolve the storage client described by the application settings.

    Raises:
        StorageConfigError: If the configured provider cannot be built
    """
    from directupload.core.config import settings

    provider = settings.S3_PROVIDER.lower()
    if provider == "custom":
        return custom_client(
            hostname=settings.S3_HOSTNAME,
            region=settings.S3_REGION or None,
            force_path_style=settings.S3_FORCE_PATH_STYLE,
            secure=settings.S3_SECURE,
        )
    return provider_client(provider, region=settings.S3_REGION or None)
