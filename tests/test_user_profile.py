from __future__ import annotations

import json

import pytest

from kemono_dl.errors import StorageError
from kemono_dl.models import ProfileSnapshot
from kemono_dl.user_profile import find_snapshot_file, save_profile, should_update_profile, snapshot_path


def _snap(updated="2024-05-01T10:00:00", name="alice"):
    return ProfileSnapshot.from_json({"id": "42", "name": name, "service": "patreon", "updated": updated})


def test_proceeds_when_directory_missing(tmp_path):
    assert should_update_profile(str(tmp_path / "patreon" / "42"), _snap()) is True


def test_proceeds_when_no_snapshot_file(tmp_path):
    d = tmp_path / "patreon" / "42"
    d.mkdir(parents=True)
    (d / "failed.json").write_text("[]", encoding="utf-8")
    assert should_update_profile(str(d), _snap()) is True


def test_skips_when_timestamp_matches(tmp_path):
    save_profile(str(tmp_path), _snap())
    d = tmp_path / "patreon" / "42"
    assert should_update_profile(str(d), _snap()) is False


def test_proceeds_when_timestamp_differs(tmp_path):
    save_profile(str(tmp_path), _snap("2024-05-01T10:00:00"))
    d = tmp_path / "patreon" / "42"
    assert should_update_profile(str(d), _snap("2024-06-01T00:00:00")) is True


def test_force_always_proceeds(tmp_path):
    save_profile(str(tmp_path), _snap())
    d = tmp_path / "patreon" / "42"
    assert should_update_profile(str(d), _snap(), force=True) is True


def test_corrupt_snapshot_proceeds(tmp_path):
    d = tmp_path / "patreon" / "42"
    d.mkdir(parents=True)
    (d / "alice.json").write_text("{not json", encoding="utf-8")
    assert should_update_profile(str(d), _snap()) is True


def test_renamed_profile_still_finds_old_snapshot(tmp_path):
    save_profile(str(tmp_path), _snap(name="old-name"))
    d = tmp_path / "patreon" / "42"
    assert should_update_profile(str(d), _snap(name="new-name")) is False


def test_path_that_is_a_file_is_a_storage_error(tmp_path):
    f = tmp_path / "42"
    f.write_text("x", encoding="utf-8")
    with pytest.raises(StorageError):
        should_update_profile(str(f), _snap())


def test_save_profile_writes_raw_payload(tmp_path):
    snap = ProfileSnapshot.from_json({"id": "42", "name": "alice", "service": "patreon", "updated": "u", "extra": 1})
    path = save_profile(str(tmp_path), snap)

    assert path == snapshot_path(str(tmp_path), snap)
    assert path.endswith("patreon/42/alice.json") or path.endswith("patreon\\42\\alice.json")
    with open(path, encoding="utf-8") as fh:
        assert json.load(fh)["extra"] == 1


def test_find_snapshot_file_ignores_failure_log_and_temp_files(tmp_path):
    (tmp_path / "failed.json").write_text("[]", encoding="utf-8")
    (tmp_path / ".tmp-abc.json").write_text("{}", encoding="utf-8")
    assert find_snapshot_file(str(tmp_path)) is None
