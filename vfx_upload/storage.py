"""Object-store access for the uploader, using boto3 against S3 (or an S3-compatible endpoint)."""
from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import boto3
from boto3.exceptions import Boto3Error
from boto3.s3.transfer import TransferConfig
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, ProfileNotFound

from .errors import StorageError

__all__ = [
    "CredentialStatus",
    "ObjectStore",
    "S3Config",
    "S3Storage",
    "StorageError",
    "s3_config_from_env",
]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

MULTIPART_THRESHOLD = 64 * 1024 * 1024  # 64 MB
MULTIPART_CHUNK_SIZE = 16 * 1024 * 1024  # 16 MB
_EXPIRED_TOKEN_CODES = {"ExpiredToken", "ExpiredTokenException", "RequestExpired", "InvalidClientTokenId"}


@dataclass(frozen=True)
class CredentialStatus:
    """Outcome of a credential check: valid, expired, not_configured or error."""

    state: str
    account: Optional[str] = None
    message: str = ""

    @property
    def is_valid(self) -> bool:
        return self.state == "valid"

    @classmethod
    def valid(cls, account: str) -> "CredentialStatus":
        return cls("valid", account=account)

    @classmethod
    def expired(cls) -> "CredentialStatus":
        return cls("expired")

    @classmethod
    def not_configured(cls) -> "CredentialStatus":
        return cls("not_configured")

    @classmethod
    def error(cls, message: str) -> "CredentialStatus":
        return cls("error", message=message)


class ObjectStore(ABC):
    """Operations the pipeline needs from a bucket-addressed object store."""

    @abstractmethod
    def list_prefix(self, bucket: str, prefix: str) -> List[str]:
        """Return folder markers (``name/``) and file names directly under *prefix*."""

    @abstractmethod
    def upload_file(
        self,
        local_path: Path,
        bucket: str,
        key: str,
        *,
        metadata: Optional[Mapping[str, str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None: ...

    @abstractmethod
    def download_file(self, bucket: str, key: str, local_path: Path) -> None: ...

    @abstractmethod
    def copy_object(self, bucket: str, source_key: str, destination_key: str) -> None: ...

    @abstractmethod
    def delete_object(self, bucket: str, key: str) -> None: ...

    @abstractmethod
    def object_exists(self, bucket: str, key: str) -> bool: ...

    @abstractmethod
    def check_credentials(self) -> CredentialStatus: ...


@dataclass(frozen=True)
class S3Config:
    """Configuration payload for wiring the boto3 S3 client."""

    profile: Optional[str] = None
    region: Optional[str] = None
    endpoint_url: Optional[str] = None


class _ProgressTracker:
    """Turns boto3's per-chunk byte counts into a 0..1 fraction."""

    def __init__(self, total_bytes: int, callback: ProgressCallback) -> None:
        self._total = max(total_bytes, 1)
        self._seen = 0
        self._callback = callback
        self._lock = threading.Lock()

    def __call__(self, bytes_amount: int) -> None:
        with self._lock:
            self._seen += bytes_amount
            fraction = min(self._seen / self._total, 1.0)
        self._callback(fraction)


class S3Storage(ObjectStore):
    """High-level helper around S3 listings and transfers."""

    def __init__(self, config: Optional[S3Config] = None, *, session=None, client=None) -> None:
        self._config = config or S3Config()
        self._session = session
        if client is None:
            self._session = session or boto3.session.Session(
                profile_name=self._config.profile,
                region_name=self._config.region,
            )
            client = self._session.client(
                "s3",
                endpoint_url=self._config.endpoint_url,
                config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"}),
            )
        self._client = client
        self._transfer_config = TransferConfig(
            multipart_threshold=MULTIPART_THRESHOLD,
            multipart_chunksize=MULTIPART_CHUNK_SIZE,
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def list_prefix(self, bucket: str, prefix: str) -> List[str]:
        entries: List[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix, Delimiter="/"):
                for common in page.get("CommonPrefixes", []):
                    name = _relative(common.get("Prefix", ""), prefix)
                    if name:
                        entries.append(name)
                for item in page.get("Contents", []):
                    name = _relative(item.get("Key", ""), prefix)
                    if name:
                        entries.append(name)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Unable to list s3://{bucket}/{prefix}: {exc}") from exc
        logger.debug("Listed %d entries under s3://%s/%s", len(entries), bucket, prefix)
        return entries

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------
    def upload_file(
        self,
        local_path: Path,
        bucket: str,
        key: str,
        *,
        metadata: Optional[Mapping[str, str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        local_path = Path(local_path)
        if not local_path.exists():
            raise StorageError(f"File not found: {local_path}")

        extra_args: Dict[str, Any] = {}
        if metadata:
            meta_filtered = {str(k): str(v) for k, v in metadata.items() if v is not None}
            if meta_filtered:
                extra_args["Metadata"] = meta_filtered

        callback = None
        if on_progress is not None:
            callback = _ProgressTracker(local_path.stat().st_size, on_progress)

        try:
            self._client.upload_file(
                str(local_path),
                bucket,
                key,
                ExtraArgs=extra_args or None,
                Callback=callback,
                Config=self._transfer_config,
            )
        except (ClientError, BotoCoreError, Boto3Error) as exc:
            raise StorageError(f"Upload of {local_path.name} to s3://{bucket}/{key} failed: {exc}") from exc

        if on_progress is not None:
            on_progress(1.0)
        logger.info("Uploaded %s -> s3://%s/%s", local_path.name, bucket, key)

    def download_file(self, bucket: str, key: str, local_path: Path) -> None:
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._client.download_file(bucket, key, str(local_path), Config=self._transfer_config)
        except (ClientError, BotoCoreError, Boto3Error) as exc:
            raise StorageError(f"Unable to download s3://{bucket}/{key}: {exc}") from exc

    # ------------------------------------------------------------------
    # Object management
    # ------------------------------------------------------------------
    def copy_object(self, bucket: str, source_key: str, destination_key: str) -> None:
        try:
            self._client.copy(
                {"Bucket": bucket, "Key": source_key},
                bucket,
                destination_key,
                Config=self._transfer_config,
            )
        except (ClientError, BotoCoreError, Boto3Error) as exc:
            raise StorageError(f"Unable to copy s3://{bucket}/{source_key} to {destination_key}: {exc}") from exc

    def delete_object(self, bucket: str, key: str) -> None:
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Unable to delete s3://{bucket}/{key}: {exc}") from exc

    def object_exists(self, bucket: str, key: str) -> bool:
        try:
            self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Unable to inspect s3://{bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Unable to inspect s3://{bucket}/{key}: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    def check_credentials(self) -> CredentialStatus:
        try:
            session = self._session or boto3.session.Session(profile_name=self._config.profile)
            identity = session.client("sts", region_name=self._config.region).get_caller_identity()
        except (NoCredentialsError, ProfileNotFound):
            return CredentialStatus.not_configured()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _EXPIRED_TOKEN_CODES:
                return CredentialStatus.expired()
            return CredentialStatus.error(str(exc))
        except BotoCoreError as exc:
            message = str(exc)
            if "expired" in message.lower() or "token" in message.lower():
                return CredentialStatus.expired()
            return CredentialStatus.error(message)
        return CredentialStatus.valid(identity.get("Account") or "unknown")


def _relative(key: str, prefix: str) -> str:
    if key.startswith(prefix):
        return key[len(prefix):]
    return key


# ----------------------------------------------------------------------
# Bootstrap helpers
# ----------------------------------------------------------------------
def s3_config_from_env(env: Optional[Mapping[str, str]] = None) -> S3Config:
    env_map: Mapping[str, str] = env if env is not None else os.environ
    profile = (env_map.get("VFX_UPLOAD_AWS_PROFILE") or env_map.get("AWS_PROFILE") or "").strip()
    return S3Config(
        profile=profile or None,
        region=(env_map.get("VFX_UPLOAD_S3_REGION") or "").strip() or None,
        endpoint_url=(env_map.get("VFX_UPLOAD_S3_ENDPOINT") or "").strip() or None,
    )
