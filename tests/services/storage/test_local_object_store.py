from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from templateflow.config import StoreSettings
from templateflow.core.errors import ConfigError
from templateflow.services.storage import (
    HttpObjectStore,
    LocalObjectStore,
    StoreNotFound,
    StoreRequestError,
    store_from_settings,
)
from templateflow.services.storage.models import CompletedPart


class StepClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


def test_put_get_head_roundtrip(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path, clock=StepClock())

    info = store.put("templates/UK/listing/a.xlsm", b"abc", content_type="x/y", metadata={"k": "v"})

    assert store.get("templates/UK/listing/a.xlsm") == b"abc"
    head = store.head("templates/UK/listing/a.xlsm")
    assert head.size == 3
    assert head.metadata == {"k": "v"}
    assert head.content_type == "x/y"
    assert head.last_modified == info.last_modified


def test_list_filters_by_prefix(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)
    store.put("templates/UK/listing/a.xlsm", b"1")
    store.put("templates/UK/other/b.xlsm", b"2")
    store.put("templates/DE/listing/c.xlsm", b"3")

    keys = [info.key for info in store.list("templates/UK/")]

    assert keys == ["templates/UK/listing/a.xlsm", "templates/UK/other/b.xlsm"]


def test_touch_advances_last_modified(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path, clock=StepClock())
    first = store.put("t/a.xlsx", b"x")

    touched = store.touch("t/a.xlsx")

    assert touched.last_modified > first.last_modified
    assert store.head("t/a.xlsx").last_modified == touched.last_modified


def test_missing_object_and_invalid_key(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)

    with pytest.raises(StoreNotFound):
        store.get("nope.bin")
    with pytest.raises(StoreNotFound):
        store.delete("nope.bin")
    with pytest.raises(StoreRequestError):
        store.put("../escape.bin", b"x")


def test_multipart_invisible_until_complete(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)
    upload = store.create_multipart_upload("docs/big.bin", metadata={"owner": "ops"})
    parts = [
        store.upload_part(upload, 2, b"world"),
        store.upload_part(upload, 1, b"hello "),
    ]

    assert store.list("docs/") == []
    assert store.pending_uploads() == [upload.upload_id]

    info = store.complete_multipart_upload(upload, parts)

    assert store.get("docs/big.bin") == b"hello world"
    assert info.metadata == {"owner": "ops"}
    assert store.pending_uploads() == []


def test_complete_with_missing_part_fails(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)
    upload = store.create_multipart_upload("docs/x.bin")
    store.upload_part(upload, 1, b"a")

    with pytest.raises(StoreRequestError):
        store.complete_multipart_upload(upload, [CompletedPart(1, "e1"), CompletedPart(2, "e2")])

    store.abort_multipart_upload(upload)
    assert store.pending_uploads() == []


def test_corrupt_sidecar_falls_back_to_stat(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)
    store.put("t/a.xlsx", b"12345")
    (tmp_path / "meta" / "t" / "a.xlsx.json").write_text("{broken", encoding="utf-8")

    info = store.head("t/a.xlsx")

    assert info.size == 5
    assert info.last_modified.tzinfo is not None


def test_store_from_settings(tmp_path: Path) -> None:
    assert isinstance(store_from_settings(StoreSettings(root=tmp_path)), LocalObjectStore)
    assert isinstance(store_from_settings(StoreSettings(base_url="https://x.test")), HttpObjectStore)
    with pytest.raises(ConfigError):
        store_from_settings(StoreSettings())
