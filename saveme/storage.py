"""
Blob storage abstraction: local disk, S3-compatible object storage and an
in-memory test double.

Locators returned by ``store`` are either absolute URLs (remote backends) or
``/uploads/<namespace>/<name>`` paths (local backend). ``is_remote_locator``
is the single switch that tells them apart.
"""

from __future__ import annotations

import logging
import os
import random
import re
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional, Protocol, Union
from urllib.parse import quote, urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

AVATARS = "avatars"
DOCUMENTS = "documents"
NAMESPACES = (AVATARS, DOCUMENTS)

LOCAL_URL_PREFIX = "/uploads"
VERSION_SEGMENT = re.compile(r"^v\d+$")


@dataclass(frozen=True)
class DeleteOutcome:
    """Result of a best-effort delete. Callers log it, they never branch on it."""

    deleted: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class RedirectTarget:
    url: str


@dataclass(frozen=True)
class LocalFileTarget:
    path: Path


RetrievalTarget = Union[RedirectTarget, LocalFileTarget]


class StorageBackend(Protocol):
    """Defines the operations the vault needs from blob storage."""

    def store(
        self,
        stream: BinaryIO,
        namespace: str,
        generated_name: str,
        content_type: Optional[str] = None,
    ) -> str:
        ...

    def delete(self, locator: str) -> DeleteOutcome:
        ...

    def resolve_retrieval_target(
        self, locator: str, download_name: Optional[str] = None
    ) -> Optional[RetrievalTarget]:
        ...


def is_remote_locator(locator: Optional[str]) -> bool:
    return bool(locator) and locator.startswith("http")


def generate_blob_name(original_filename: Optional[str], prefix: Optional[str] = None) -> str:
    """Unique blob name: time plus a random component, keeping the original extension."""
    extension = os.path.splitext(original_filename or "")[1].lower()
    unique = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    if prefix:
        unique = f"{prefix}-{unique}"
    return f"{unique}{extension}"


def extract_public_id(locator: Optional[str], marker: str = "upload") -> Optional[str]:
    """
    Derive the extension-less object identifier from a locator.

    Remote URLs look like ``<base>/<marker>/[v<digits>/]<namespace>/<name>.<ext>``;
    everything after the marker (and the optional version segment) minus the
    extension is the identifier. Any other shape yields ``None``.
    Local paths yield their basename without extension.
    """
    if not locator:
        return None
    if not is_remote_locator(locator):
        return os.path.splitext(os.path.basename(locator))[0] or None

    try:
        parts = urlparse(locator).path.split("/")
    except ValueError:
        logger.warning("Could not parse locator %r", locator)
        return None
    if marker not in parts:
        return None

    remainder = parts[parts.index(marker) + 1 :]
    if remainder and VERSION_SEGMENT.match(remainder[0]):
        remainder = remainder[1:]
    public_id = "/".join(remainder)
    dot = public_id.rfind(".")
    if dot != -1:
        public_id = public_id[:dot]
    return public_id or None


def _attachment_disposition(download_name: Optional[str]) -> str:
    if not download_name:
        return "attachment"
    return f"attachment; filename*=UTF-8''{quote(download_name)}"


class LocalStorageBackend:
    """Stores blobs under ``root/<namespace>/`` and serves them by relative path."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def prepare(self) -> None:
        for namespace in NAMESPACES:
            (self.root / namespace).mkdir(parents=True, exist_ok=True)

    def namespace_dir(self, namespace: str) -> Path:
        if namespace not in NAMESPACES:
            raise ValueError(f"Unknown storage namespace: {namespace}")
        return self.root / namespace

    def store(
        self,
        stream: BinaryIO,
        namespace: str,
        generated_name: str,
        content_type: Optional[str] = None,
    ) -> str:
        target = self.namespace_dir(namespace) / generated_name
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as out:
            shutil.copyfileobj(stream, out)
        return f"{LOCAL_URL_PREFIX}/{namespace}/{generated_name}"

    def _path_for(self, locator: str) -> Optional[Path]:
        relative = locator
        if relative.startswith(LOCAL_URL_PREFIX + "/"):
            relative = relative[len(LOCAL_URL_PREFIX) + 1 :]
        relative = relative.lstrip("/")
        if not relative:
            return None
        if "/" not in relative:
            # Bare filename: look in every namespace.
            for namespace in NAMESPACES:
                candidate = self.root / namespace / relative
                if candidate.exists():
                    return candidate
            return None
        candidate = (self.root / relative).resolve()
        if not candidate.is_relative_to(self.root):
            logger.warning("Rejected locator outside uploads root: %s", locator)
            return None
        return candidate

    def delete(self, locator: str) -> DeleteOutcome:
        if is_remote_locator(locator):
            logger.warning("Local backend cannot delete remote blob %s", locator)
            return DeleteOutcome(deleted=False, reason="remote locator")
        try:
            path = self._path_for(locator)
            if path is None or not path.exists():
                return DeleteOutcome(deleted=False, reason="not found")
            path.unlink()
            return DeleteOutcome(deleted=True)
        except OSError as exc:
            logger.warning("Error deleting local blob %s: %s", locator, exc)
            return DeleteOutcome(deleted=False, reason=str(exc))

    def resolve_retrieval_target(
        self, locator: str, download_name: Optional[str] = None
    ) -> Optional[RetrievalTarget]:
        if is_remote_locator(locator):
            return RedirectTarget(url=locator)
        path = self._path_for(locator)
        if path is None or not path.is_file():
            return None
        return LocalFileTarget(path=path)


@dataclass
class InMemoryStorageBackend:
    """Test double for storage interactions; produces remote-style locators."""

    base_url: str = "https://example.test/storage"
    marker: str = "upload"
    stored_objects: dict = None
    deleted_locators: list = field(default_factory=list)

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def store(
        self,
        stream: BinaryIO,
        namespace: str,
        generated_name: str,
        content_type: Optional[str] = None,
    ) -> str:
        key = f"{self.marker}/{namespace}/{generated_name}"
        self.stored_objects[key] = stream.read()
        return f"{self.base_url}/{key}"

    def get_bytes(self, locator: str) -> bytes:
        key = locator[len(self.base_url) + 1 :]
        stored = self.stored_objects.get(key)
        if stored is None:
            raise FileNotFoundError(locator)
        return stored

    def delete(self, locator: str) -> DeleteOutcome:
        self.deleted_locators.append(locator)
        public_id = extract_public_id(locator, self.marker)
        if not public_id:
            return DeleteOutcome(deleted=False, reason="no identifier")
        prefix = f"{self.marker}/{public_id}"
        matches = [
            key
            for key in self.stored_objects
            if os.path.splitext(key)[0] == prefix
        ]
        for key in matches:
            del self.stored_objects[key]
        return DeleteOutcome(deleted=bool(matches), reason=None if matches else "not found")

    def resolve_retrieval_target(
        self, locator: str, download_name: Optional[str] = None
    ) -> Optional[RetrievalTarget]:
        if not is_remote_locator(locator):
            return None
        return RedirectTarget(
            url=f"{locator}?response-content-disposition={quote(_attachment_disposition(download_name))}"
        )


@dataclass
class S3StorageBackend:
    """
    S3-compatible object storage. Locators are ``public_base_url/<key>``;
    uploads set no ACL, so public reads of avatar URLs depend on the bucket
    policy. Document downloads go through presigned URLs.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: Optional[str] = None
    key_prefix: str = "upload"

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )
        if not self.public_base_url:
            base = self.endpoint or f"https://s3.{self.region or 'us-east-1'}.amazonaws.com"
            self.public_base_url = f"{base.rstrip('/')}/{self.bucket}"
        self.public_base_url = self.public_base_url.rstrip("/")
        self.key_prefix = (self.key_prefix or "").strip("/")

    def _key_for(self, locator: str) -> Optional[str]:
        if not locator.startswith(self.public_base_url + "/"):
            return None
        return locator[len(self.public_base_url) + 1 :] or None

    def store(
        self,
        stream: BinaryIO,
        namespace: str,
        generated_name: str,
        content_type: Optional[str] = None,
    ) -> str:
        key = "/".join(part for part in (self.key_prefix, namespace, generated_name) if part)
        extra_args = {"ContentType": content_type} if content_type else None
        self._client.upload_fileobj(stream, self.bucket, key, ExtraArgs=extra_args)
        return f"{self.public_base_url}/{key}"

    def _object_stem(self, locator: str) -> Optional[str]:
        """Extension-less key for a locator, or None when it cannot be derived."""
        key = self._key_for(locator)
        if key is not None:
            return os.path.splitext(key)[0] or None
        # Foreign URL shape: look for the last prefix segment as a marker.
        marker = self.key_prefix.rsplit("/", 1)[-1] or "upload"
        public_id = extract_public_id(locator, marker)
        if not public_id:
            return None
        return "/".join(part for part in (self.key_prefix, public_id) if part)

    def delete(self, locator: str) -> DeleteOutcome:
        prefix = self._object_stem(locator)
        if not prefix:
            logger.warning("Cannot derive object id from %s; skipping remote delete", locator)
            return DeleteOutcome(deleted=False, reason="no identifier")

        try:
            response = self._client.list_objects_v2(Bucket=self.bucket, Prefix=prefix)
            keys = [
                item["Key"]
                for item in response.get("Contents", [])
                if os.path.splitext(item["Key"])[0] == prefix
            ]
            for key in keys:
                self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Error deleting remote blob %s: %s", locator, exc)
            return DeleteOutcome(deleted=False, reason=str(exc))
        if not keys:
            return DeleteOutcome(deleted=False, reason="not found")
        return DeleteOutcome(deleted=True)

    def presign_get(
        self, key: str, expires_in: int = 3600, download_name: Optional[str] = None
    ) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "ResponseContentDisposition": _attachment_disposition(download_name),
            },
            ExpiresIn=expires_in,
        )

    def resolve_retrieval_target(
        self, locator: str, download_name: Optional[str] = None
    ) -> Optional[RetrievalTarget]:
        if not is_remote_locator(locator):
            return None
        key = self._key_for(locator)
        if key is None:
            # Not one of ours; hand the URL back untouched.
            return RedirectTarget(url=locator)
        return RedirectTarget(url=self.presign_get(key, download_name=download_name))
