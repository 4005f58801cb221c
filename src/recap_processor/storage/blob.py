"""
Blob-хранилище для текстов чанков и промежуточных результатов.

Локатор: scheme://bucket/key
- local_fs: файл <BLOB_ROOT_DIR>/<bucket>/<key> (защита от path traversal)
- s3: объект в S3 (boto3)
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.exceptions import ClientError

from recap_processor.common.config import Settings, get_settings
from recap_processor.common.errors import BlobNotFoundError, InvalidLocatorError
from recap_processor.common.logging import get_project_logger

log = get_project_logger()

_LOCATOR_RE = re.compile(r"^(?P<scheme>[a-z][a-z0-9+.-]*)://(?P<bucket>[^/]+)/(?P<key>.+)$")
_S3_MISSING_CODES = {"404", "403", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class Locator:
    scheme: str
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"{self.scheme}://{self.bucket}/{self.key}"


def parse_locator(value: Any) -> Locator:
    if not isinstance(value, str):
        raise InvalidLocatorError(value)
    m = _LOCATOR_RE.match(value.strip())
    if not m:
        raise InvalidLocatorError(value)
    return Locator(scheme=m.group("scheme"), bucket=m.group("bucket"), key=m.group("key"))


class BlobStore(Protocol):
    def put(self, locator: str, data: bytes, *, content_type: str | None = None) -> None: ...

    def get(self, locator: str) -> bytes: ...

    def exists(self, locator: str) -> bool: ...


class LocalBlobStore:
    """Файловое хранилище: схема локатора игнорируется, bucket -> каталог."""

    def __init__(self, root_dir: str | Path) -> None:
        self.root = Path(root_dir).resolve()

    def _path(self, locator: str) -> Path:
        loc = parse_locator(locator)
        key = loc.key.lstrip("/")
        if ".." in key.split("/") or loc.bucket in {".", ".."}:
            raise InvalidLocatorError(locator)
        return self.root / loc.bucket / key

    def put(self, locator: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(locator)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def get(self, locator: str) -> bytes:
        p = self._path(locator)
        try:
            return p.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(locator) from e

    def exists(self, locator: str) -> bool:
        return self._path(locator).is_file()


class S3BlobStore:
    def __init__(self, *, region: str | None = None, endpoint_url: str | None = None, client=None) -> None:
        self.client = client or boto3.client("s3", region_name=region, endpoint_url=endpoint_url)

    def put(self, locator: str, data: bytes, *, content_type: str | None = None) -> None:
        loc = parse_locator(locator)
        kwargs: dict[str, Any] = {"Bucket": loc.bucket, "Key": loc.key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        self.client.put_object(**kwargs)

    def get(self, locator: str) -> bytes:
        loc = parse_locator(locator)
        try:
            resp = self.client.get_object(Bucket=loc.bucket, Key=loc.key)
        except ClientError as e:
            if _client_error_code(e) in _S3_MISSING_CODES:
                raise BlobNotFoundError(locator) from e
            raise
        return resp["Body"].read()

    def exists(self, locator: str) -> bool:
        loc = parse_locator(locator)
        try:
            self.client.head_object(Bucket=loc.bucket, Key=loc.key)
        except ClientError as e:
            # 403 без s3:ListBucket означает "нет такого ключа"
            if _client_error_code(e) in _S3_MISSING_CODES:
                return False
            raise
        return True


def _client_error_code(err: ClientError) -> str:
    return str((getattr(err, "response", None) or {}).get("Error", {}).get("Code", ""))


# =============================================================================
# HELPERS
# =============================================================================
def get_text(store: BlobStore, locator: str) -> str:
    return store.get(locator).decode("utf-8")


def get_json(store: BlobStore, locator: str) -> Any:
    return json.loads(get_text(store, locator))


def put_json(store: BlobStore, locator: str, value: Any) -> None:
    data = json.dumps(value, ensure_ascii=False).encode("utf-8")
    store.put(locator, data, content_type="application/json")


def get_blob_store(s: Settings | None = None) -> BlobStore:
    s = s or get_settings()
    mode = (s.storage_mode or "local_fs").strip().lower()
    if mode == "s3":
        return S3BlobStore(region=s.aws_region, endpoint_url=s.aws_endpoint_url)
    if mode != "local_fs":
        log.warning("unknown_storage_mode", extra={"payload": {"storage_mode": mode}})
    return LocalBlobStore(s.blob_root_dir)
