"""Storage backends: local filesystem, HDFS, and S3.

The URI scheme selects the backend:

    /data/images.seq, file:///data/images.seq   -> LocalBackend
    hdfs://namenode:8020/images/part-0.seq      -> HadoopBackend (pyarrow)
    s3n://bucket/images/part-0.seq, s3://...    -> S3Backend (boto3)

Backends only open streams and list directories. Authentication and retries
belong to the underlying clients.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol
from urllib.parse import urlsplit

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pyarrow import fs as pafs

from faceseq.errors import StorageUnavailable

if TYPE_CHECKING:
    from typing import BinaryIO

    from faceseq.config import Settings

logger = logging.getLogger(__name__)

S3_SCHEMES = frozenset({"s3", "s3n", "s3a"})


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class StorageBackend(Protocol):
    """Protocol for a container store addressed by URI."""

    def open(self, uri: str) -> BinaryIO:
        """Open ``uri`` for sequential binary reading."""
        ...

    def is_dir(self, uri: str) -> bool:
        """Return True if ``uri`` names a directory (or key prefix)."""
        ...

    def list_files(self, uri: str, extension: str) -> list[str]:
        """Return URIs of non-empty regular files under ``uri`` ending with ``extension``, sorted."""
        ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


def _local_path(uri: str) -> Path:
    parts = urlsplit(uri)
    if parts.scheme == "file":
        return Path(parts.path)
    return Path(uri)


class LocalBackend:
    """Plain local filesystem access."""

    def open(self, uri: str) -> BinaryIO:
        try:
            return _local_path(uri).open("rb")
        except OSError as exc:
            raise StorageUnavailable(f"Cannot open {uri}: {exc}") from exc

    def is_dir(self, uri: str) -> bool:
        return _local_path(uri).is_dir()

    def list_files(self, uri: str, extension: str) -> list[str]:
        directory = _local_path(uri)
        try:
            entries = list(directory.iterdir())
        except OSError as exc:
            raise StorageUnavailable(f"Cannot list {uri}: {exc}") from exc
        return sorted(
            str(entry)
            for entry in entries
            if entry.name.endswith(extension)
            and not entry.is_symlink()
            and entry.is_file()
            and entry.stat().st_size > 0
        )


class HadoopBackend:
    """HDFS access through ``pyarrow.fs.HadoopFileSystem`` (requires libhdfs)."""

    def __init__(self, settings: Settings, host: str | None = None, port: int | None = None) -> None:
        self._host = host or settings.hdfs_host
        self._port = port if port is not None else settings.hdfs_port
        self._user = settings.hdfs_user
        self._lock = threading.Lock()
        self._fs: pafs.HadoopFileSystem | None = None

    def open(self, uri: str) -> BinaryIO:
        try:
            stream: BinaryIO = self._filesystem().open_input_stream(urlsplit(uri).path)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read SequenceFile from HDFS: {uri}: {exc}") from exc
        return stream

    def is_dir(self, uri: str) -> bool:
        try:
            info = self._filesystem().get_file_info(urlsplit(uri).path)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot stat {uri}: {exc}") from exc
        return bool(info.type == pafs.FileType.Directory)

    def list_files(self, uri: str, extension: str) -> list[str]:
        parts = urlsplit(uri)
        try:
            infos = self._filesystem().get_file_info(pafs.FileSelector(parts.path))
        except OSError as exc:
            raise StorageUnavailable(f"Cannot list {uri}: {exc}") from exc
        return sorted(
            f"{parts.scheme}://{parts.netloc}{info.path}"
            for info in infos
            if info.type == pafs.FileType.File and info.base_name.endswith(extension) and (info.size or 0) > 0
        )

    def _filesystem(self) -> pafs.HadoopFileSystem:
        with self._lock:
            if self._fs is None:
                try:
                    self._fs = pafs.HadoopFileSystem(self._host, self._port, user=self._user)
                except OSError as exc:
                    raise StorageUnavailable(f"HDFS unreachable at {self._host}:{self._port}: {exc}") from exc
                logger.info("Connected to HDFS at %s:%s", self._host, self._port)
            return self._fs


class S3Backend:
    """S3 access through a ``boto3`` client. ``s3n://`` URIs are treated as ``s3://``."""

    def __init__(self, settings: Settings) -> None:
        self._client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
        )

    @staticmethod
    def _split(uri: str) -> tuple[str, str, str]:
        parts = urlsplit(uri)
        return parts.scheme, parts.netloc, parts.path.lstrip("/")

    def open(self, uri: str) -> BinaryIO:
        _, bucket, key = self._split(uri)
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailable(f"Cannot read SequenceFile from S3: {uri}: {exc}") from exc
        body: BinaryIO = response["Body"]
        return body

    def is_dir(self, uri: str) -> bool:
        _, bucket, key = self._split(uri)
        if not key or key.endswith("/"):
            return True
        try:
            self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") not in ("404", "NoSuchKey", "NotFound"):
                raise StorageUnavailable(f"Cannot stat {uri}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageUnavailable(f"Cannot stat {uri}: {exc}") from exc
        else:
            return False
        response = self._client.list_objects_v2(Bucket=bucket, Prefix=key.rstrip("/") + "/", MaxKeys=1)
        return response.get("KeyCount", 0) > 0

    def list_files(self, uri: str, extension: str) -> list[str]:
        scheme, bucket, key = self._split(uri)
        prefix = key.rstrip("/") + "/" if key else ""
        found: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix, Delimiter="/"):
                for obj in page.get("Contents", []):
                    if obj["Key"].endswith(extension) and obj.get("Size", 0) > 0:
                        found.append(f"{scheme}://{bucket}/{obj['Key']}")
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailable(f"Cannot list {uri}: {exc}") from exc
        return sorted(found)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class StorageResolver:
    """Maps URIs to backends, caching one backend per scheme and authority."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._lock = threading.Lock()
        self._backends: dict[tuple[str, str], StorageBackend] = {}

    def resolve(self, uri: str) -> StorageBackend:
        """Return the backend for ``uri``.

        Raises:
            StorageUnavailable: If the scheme is not recognized or the client cannot be created.
        """
        parts = urlsplit(uri)
        scheme = parts.scheme.lower()
        if scheme in S3_SCHEMES:
            cache_key = ("s3", "")
        elif scheme == "hdfs":
            cache_key = ("hdfs", parts.netloc)
        elif scheme in ("", "file"):
            cache_key = ("file", "")
        else:
            raise StorageUnavailable(f"Unsupported storage scheme '{parts.scheme}' in {uri}")
        try:
            port = parts.port
        except ValueError as exc:
            raise StorageUnavailable(f"Invalid port in {uri}") from exc

        with self._lock:
            backend = self._backends.get(cache_key)
            if backend is None:
                backend = self._create(cache_key[0], parts.hostname, port)
                self._backends[cache_key] = backend
            return backend

    def _create(self, kind: str, host: str | None, port: int | None) -> StorageBackend:
        if kind == "file":
            return LocalBackend()
        if kind == "hdfs":
            return HadoopBackend(self._settings, host=host, port=port)
        try:
            return S3Backend(self._settings)
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailable(f"Cannot create S3 client: {exc}") from exc
