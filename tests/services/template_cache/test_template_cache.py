from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from templateflow.core.errors import FetchError, FetchTimeoutError, NotFoundError
from templateflow.services.storage import LocalObjectStore, StoreAuthError, StoreRetryableError, StoreTimeoutError
from templateflow.services.storage.keys import ORIGINAL_NAME_METADATA, encode_original_name
from templateflow.services.template_cache import TemplateCache, cache_identity


class StepClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class WallClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class CountingStore(LocalObjectStore):
    def __init__(self, root: Path) -> None:
        super().__init__(root, clock=StepClock())
        self.content_reads = 0

    def iter_content(self, key, *, chunk_size=128 * 1024, timeout=None):
        self.content_reads += 1
        return super().iter_content(key, chunk_size=chunk_size, timeout=timeout)


@pytest.fixture()
def store(tmp_path: Path) -> CountingStore:
    return CountingStore(tmp_path / "store")


def _put_template(store: LocalObjectStore, name: str, data: bytes, original: str | None = None) -> str:
    key = f"templates/UK/listing/{name}"
    metadata = {ORIGINAL_NAME_METADATA: encode_original_name(original)} if original else None
    store.put(key, data, metadata=metadata)
    return key


def _cache(store: LocalObjectStore, root: Path, clock: WallClock | None = None, **kwargs) -> TemplateCache:
    return TemplateCache(store, root, clock=clock or WallClock(), **kwargs)


def test_miss_then_hit_skips_content_read(store: CountingStore, tmp_path: Path) -> None:
    _put_template(store, "v1.xlsm", b"template-bytes", original="UK listing.xlsm")
    cache = _cache(store, tmp_path / "cache")

    first = cache.get_template("UK", "listing")
    second = cache.get_template("UK", "listing")

    assert first.from_cache is False
    assert second.from_cache is True
    assert second.content == first.content == b"template-bytes"
    assert second.file_name == "UK listing.xlsm"
    assert second.file_extension == "xlsm"
    assert store.content_reads == 1


def test_metadata_file_fields(store: CountingStore, tmp_path: Path) -> None:
    object_key = _put_template(store, "v1.xlsx", b"abc")
    clock = WallClock(1_000.5)
    cache = _cache(store, tmp_path / "cache", clock=clock)

    cache.get_template("UK", "listing")

    identity = cache_identity("UK", "listing", object_key)
    payload = json.loads(cache.meta_path(identity).read_text(encoding="utf-8"))
    assert payload["fileName"] == "v1.xlsx"
    assert payload["fileExtension"] == "xlsx"
    assert payload["cachedAt"] == 1_000_500
    assert payload["size"] == 3
    assert payload["objectKey"] == object_key
    assert datetime.fromisoformat(payload["lastModified"]).tzinfo is not None
    assert cache.content_path(identity).read_bytes() == b"abc"


def test_remote_modification_invalidates(store: CountingStore, tmp_path: Path) -> None:
    object_key = _put_template(store, "v1.xlsm", b"old")
    cache = _cache(store, tmp_path / "cache")
    cache.get_template("UK", "listing")

    store.put(object_key, b"new")
    refreshed = cache.get_template("UK", "listing")

    assert refreshed.from_cache is False
    assert refreshed.content == b"new"
    assert store.content_reads == 2


def test_touch_alone_invalidates(store: CountingStore, tmp_path: Path) -> None:
    object_key = _put_template(store, "v1.xlsm", b"same")
    cache = _cache(store, tmp_path / "cache")
    cache.get_template("UK", "listing")

    store.touch(object_key)

    assert cache.get_template("UK", "listing").from_cache is False


def test_ttl_expiry_refetches(store: CountingStore, tmp_path: Path) -> None:
    _put_template(store, "v1.xlsm", b"data")
    clock = WallClock()
    cache = _cache(store, tmp_path / "cache", clock=clock, ttl=timedelta(hours=24))
    cache.get_template("UK", "listing")

    clock.now += 24 * 3600 - 1
    assert cache.get_template("UK", "listing").from_cache is True

    clock.now += 1
    assert cache.get_template("UK", "listing").from_cache is False


def test_newest_version_wins(store: CountingStore, tmp_path: Path) -> None:
    _put_template(store, "a-new-looking-name.xlsm", b"older")
    _put_template(store, "b.xlsx", b"newer")
    cache = _cache(store, tmp_path / "cache")

    entry = cache.get_template("UK", "listing")
    descriptor = cache.resolve_descriptor("UK", "listing")

    assert entry.content == b"newer"
    assert descriptor.object_key == "templates/UK/listing/b.xlsx"
    assert entry.file_extension == "xlsx"


def test_name_without_extension_defaults_to_xlsm(store: CountingStore, tmp_path: Path) -> None:
    _put_template(store, "template", b"data")
    cache = _cache(store, tmp_path / "cache")

    assert cache.get_template("UK", "listing").file_extension == "xlsm"


def test_corrupt_metadata_is_a_miss(store: CountingStore, tmp_path: Path) -> None:
    object_key = _put_template(store, "v1.xlsm", b"data")
    cache = _cache(store, tmp_path / "cache")
    cache.get_template("UK", "listing")
    identity = cache_identity("UK", "listing", object_key)
    cache.meta_path(identity).write_text("{not json", encoding="utf-8")

    entry = cache.get_template("UK", "listing")

    assert entry.from_cache is False
    assert cache.get_template("UK", "listing").from_cache is True


def test_truncated_content_is_a_miss(store: CountingStore, tmp_path: Path) -> None:
    object_key = _put_template(store, "v1.xlsm", b"complete-data")
    cache = _cache(store, tmp_path / "cache")
    cache.get_template("UK", "listing")
    cache.content_path(cache_identity("UK", "listing", object_key)).write_bytes(b"compl")

    entry = cache.get_template("UK", "listing")

    assert entry.from_cache is False
    assert entry.content == b"complete-data"


def test_missing_template_raises_not_found(store: CountingStore, tmp_path: Path) -> None:
    cache = _cache(store, tmp_path / "cache")

    with pytest.raises(NotFoundError) as excinfo:
        cache.get_template("UK", "missing")

    assert excinfo.value.category == "UK"
    assert excinfo.value.key == "missing"


def test_listing_failure_is_fetch_error(tmp_path: Path) -> None:
    class BrokenListStore(LocalObjectStore):
        def list(self, prefix, *, timeout=None):
            raise StoreRetryableError("gateway down", status_code=503)

    cache = _cache(BrokenListStore(tmp_path / "store"), tmp_path / "cache")

    with pytest.raises(FetchError) as excinfo:
        cache.get_template("UK", "listing")

    assert excinfo.value.classification == "retryable"


def test_content_failure_keeps_classification(tmp_path: Path) -> None:
    class DeniedStore(LocalObjectStore):
        def iter_content(self, key, *, chunk_size=128 * 1024, timeout=None):
            raise StoreAuthError("denied", status_code=403)

    store = DeniedStore(tmp_path / "store")
    _put_template(store, "v1.xlsm", b"data")
    cache = _cache(store, tmp_path / "cache")

    with pytest.raises(FetchError) as excinfo:
        cache.get_template("UK", "listing")

    assert excinfo.value.classification == "permission"
    assert cache.stats().total_files == 0


class ManualClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class SlowStore(LocalObjectStore):
    """Local store that advances a monotonic clock while it works."""

    def __init__(self, root: Path, clock: ManualClock, *, list_delay: float = 0.0, chunk_delay: float = 0.0) -> None:
        super().__init__(root)
        self.clock = clock
        self.list_delay = list_delay
        self.chunk_delay = chunk_delay
        self.list_timeouts: list[float | None] = []
        self.content_timeouts: list[float | None] = []

    def list(self, prefix, *, timeout=None):
        self.list_timeouts.append(timeout)
        self.clock.now += self.list_delay
        return super().list(prefix, timeout=timeout)

    def iter_content(self, key, *, chunk_size=128 * 1024, timeout=None):
        self.content_timeouts.append(timeout)
        for chunk in super().iter_content(key, chunk_size=chunk_size, timeout=timeout):
            self.clock.now += self.chunk_delay
            yield chunk


def test_zero_timeout_fails_before_listing(tmp_path: Path) -> None:
    clock = ManualClock()
    store = SlowStore(tmp_path / "store", clock)
    _put_template(store, "v1.xlsm", b"data")
    cache = _cache(store, tmp_path / "cache", monotonic=clock)

    with pytest.raises(FetchTimeoutError) as excinfo:
        cache.get_template("UK", "listing", timeout=0)

    assert excinfo.value.classification == "timeout"
    assert store.list_timeouts == []


def test_slow_listing_exhausts_deadline_before_content_read(tmp_path: Path) -> None:
    clock = ManualClock()
    store = SlowStore(tmp_path / "store", clock, list_delay=5.0)
    _put_template(store, "v1.xlsm", b"data")
    cache = _cache(store, tmp_path / "cache", monotonic=clock)

    with pytest.raises(FetchTimeoutError):
        cache.get_template("UK", "listing", timeout=2.0)

    assert store.list_timeouts == [2.0]
    assert store.content_timeouts == []
    assert cache.stats().total_files == 0


def test_remaining_time_is_passed_to_content_read(tmp_path: Path) -> None:
    clock = ManualClock()
    store = SlowStore(tmp_path / "store", clock, list_delay=0.5)
    _put_template(store, "v1.xlsm", b"data")
    cache = _cache(store, tmp_path / "cache", monotonic=clock)

    entry = cache.get_template("UK", "listing", timeout=2.0)

    assert entry.content == b"data"
    assert store.content_timeouts == [pytest.approx(1.5)]


def test_deadline_exceeded_between_chunks(tmp_path: Path) -> None:
    clock = ManualClock()
    store = SlowStore(tmp_path / "store", clock, chunk_delay=1.0)
    _put_template(store, "v1.xlsm", b"x" * 64)
    cache = _cache(store, tmp_path / "cache", chunk_size=8, monotonic=clock)

    with pytest.raises(FetchTimeoutError) as excinfo:
        cache.get_template("UK", "listing", timeout=3.0)

    assert excinfo.value.classification == "timeout"
    assert cache.stats().total_files == 0


def test_store_timeout_maps_to_fetch_timeout(tmp_path: Path) -> None:
    class TimingOutStore(LocalObjectStore):
        def list(self, prefix, *, timeout=None):
            raise StoreTimeoutError("deadline", payload={"prefix": prefix})

    cache = _cache(TimingOutStore(tmp_path / "store"), tmp_path / "cache")

    with pytest.raises(FetchTimeoutError):
        cache.get_template("UK", "listing", timeout=1.0)


def test_local_write_failure_still_returns_bytes(
    store: CountingStore, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _put_template(store, "v1.xlsm", b"data")
    cache = _cache(store, tmp_path / "cache")

    def fail(path, data):
        raise OSError("disk full")

    monkeypatch.setattr("templateflow.services.template_cache.cache._atomic_write", fail)

    entry = cache.get_template("UK", "listing")

    assert entry.content == b"data"
    assert entry.from_cache is False
    assert cache.stats().total_files == 0


def test_clear_by_category_and_stats(tmp_path: Path) -> None:
    store = CountingStore(tmp_path / "store")
    store.put("templates/UK/listing/v1.xlsm", b"uk-data")
    store.put("templates/DE/listing/v1.xlsm", b"de")
    cache = _cache(store, tmp_path / "cache")
    cache.get_template("UK", "listing")
    cache.get_template("DE", "listing")

    stats = cache.stats()
    assert stats.entries == 2
    assert stats.total_files == 4

    removed = cache.clear("UK")

    assert removed == 2
    assert cache.stats().entries == 1
    assert cache.get_template("DE", "listing").from_cache is True
    assert cache.clear() == 2
    assert cache.stats().total_files == 0


def test_purge_expired_removes_old_entries(store: CountingStore, tmp_path: Path) -> None:
    store.put("templates/UK/listing/v1.xlsm", b"a")
    store.put("templates/UK/other/v1.xlsm", b"b")
    clock = WallClock()
    cache = _cache(store, tmp_path / "cache", clock=clock, ttl=timedelta(hours=1))
    cache.get_template("UK", "listing")
    clock.now += 1800
    cache.get_template("UK", "other")
    (cache.root / "orphan__x__000000000000.cache").write_bytes(b"orphan")

    clock.now += 1800

    assert cache.purge_expired() == 2
    assert cache.stats().entries == 1
    assert cache.get_template("UK", "other").from_cache is True


def test_constructor_rejects_invalid_ttl(store: CountingStore, tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        TemplateCache(store, tmp_path / "cache", ttl=timedelta(0))
