from __future__ import annotations

from recap_processor.common.config import get_settings
from recap_processor.queue import transport
from recap_processor.services.context import ProcessorContext
from recap_processor.storage.blob import LocalBlobStore
from recap_processor.storage.db import get_engine


class _FakeRedis:
    def __init__(self, url: str) -> None:
        self.url = url


def test_from_settings_uses_given_settings(tmp_path, monkeypatch) -> None:
    seen_urls: list[str | None] = []

    def fake_client(url=None):
        seen_urls.append(url)
        return _FakeRedis(url)

    monkeypatch.setattr(transport, "redis_client", fake_client)
    dsn = f"sqlite:///{tmp_path / 'other' / 'table.db'}"
    s = get_settings().model_copy(
        update={
            "redis_url": "redis://other-host:6380/3",
            "queue_name": "q:other",
            "queue_visibility_timeout_sec": 45,
            "queue_max_receive_count": 3,
            "storage_mode": "local_fs",
            "blob_root_dir": str(tmp_path / "blobs"),
            "table_dsn": dsn,
            "rate_limit_rps": 2.0,
            "rate_limit_burst": 7.0,
            "max_attempts": 9,
        }
    )

    ctx = ProcessorContext.from_settings(s)

    assert seen_urls == ["redis://other-host:6380/3"]
    assert ctx.queue.name == "q:other"
    assert ctx.queue.k_dlq == "q:other:dlq"
    assert ctx.queue.visibility_timeout_sec == 45
    assert ctx.queue.max_receive_count == 3
    assert ctx.queue.r.url == "redis://other-host:6380/3"

    assert isinstance(ctx.blobs, LocalBlobStore)
    assert ctx.blobs.root == (tmp_path / "blobs").resolve()

    assert ctx.table.session_factory.kw["bind"] is get_engine(dsn)
    assert (tmp_path / "other").is_dir()

    assert ctx.rate_limiter.capacity == 7.0
    assert ctx.retry_policy.max_attempts == 9
    assert ctx.settings is s
