from __future__ import annotations

from pathlib import Path

import pytest

from ean_intake.errors import BlobNotFound, StorageError
from ean_intake.storage import (
    BlobStore,
    construct_storage_path,
    json_blob_candidates,
    json_blob_path,
    relocate_blob,
    sanitize_file_name,
    stage_path,
)


@pytest.fixture()
def bucket(tmp_path: Path) -> BlobStore:
    return BlobStore(tmp_path, "supplier-uploads")


def test_sanitize_file_name() -> None:
    assert sanitize_file_name("My File (v2).CSV") == "my-file-v2.csv"
    assert sanitize_file_name("../../etc.csv") == "etc.csv"
    assert sanitize_file_name("@#$.xlsx") == "file.xlsx"
    assert sanitize_file_name("") == "file"


def test_storage_paths() -> None:
    assert construct_storage_path("incoming", "k1", "Prijs Lijst.csv") == "incoming/k1/prijs-lijst.csv"
    assert stage_path("incoming/k1/prijs-lijst.csv", "approved", "other") == "approved/k1/prijs-lijst.csv"
    assert stage_path("", "rejected", "k2") == "rejected/k2/file"
    assert json_blob_path(7) == "approved/7-data.json.gz"
    assert json_blob_candidates(7)[0] == "approved/7-data.json.gz"
    assert "approved/7/data.json.gz" in json_blob_candidates(7)
    with pytest.raises(ValueError):
        construct_storage_path("archive", "k1", "a.csv")


def test_upload_refuses_overwrite_without_upsert(bucket: BlobStore) -> None:
    bucket.upload("incoming/k/a.csv", b"one")
    with pytest.raises(StorageError):
        bucket.upload("incoming/k/a.csv", b"two")
    bucket.upload("incoming/k/a.csv", b"two", upsert=True)
    assert bucket.download("incoming/k/a.csv") == b"two"


def test_path_traversal_is_rejected(bucket: BlobStore) -> None:
    with pytest.raises(StorageError) as exc:
        bucket.upload("../outside.csv", b"x")
    assert exc.value.code == "INVALID_PATH"


def test_delete_missing_is_not_an_error(bucket: BlobStore) -> None:
    assert bucket.delete("incoming/none/a.csv") is False
    bucket.upload("incoming/k/a.csv", b"x")
    assert bucket.delete("incoming/k/a.csv") is True
    assert bucket.list() == []
    with pytest.raises(BlobNotFound):
        bucket.download("incoming/k/a.csv")


def test_relocate_blob_moves_content(bucket: BlobStore) -> None:
    bucket.upload("incoming/k/a.csv", b"data")
    result = relocate_blob(bucket, "incoming/k/a.csv", "processing/k/a.csv")
    assert result.ok and result.path == "processing/k/a.csv"
    assert bucket.list() == ["processing/k/a.csv"]


def test_relocate_blob_failure_keeps_old_path(bucket: BlobStore) -> None:
    result = relocate_blob(bucket, "incoming/k/missing.csv", "processing/k/missing.csv")
    assert not result.ok
    assert result.path == "incoming/k/missing.csv"
    assert result.error


def test_relocate_blob_same_path_is_noop(bucket: BlobStore) -> None:
    result = relocate_blob(bucket, "approved/k/a.csv", "approved/k/a.csv")
    assert result.ok and result.path == "approved/k/a.csv"
