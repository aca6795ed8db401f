"""Tests for the discovery cache, operation log, and metadata stores."""

import json
import re
from pathlib import Path
from unittest.mock import MagicMock

from repo_radar.models import Action, DiscoveryCache, OperationLogEntry
from repo_radar.storage import RadarStore, new_entry_id


def test_new_entry_id_format() -> None:
    assert re.fullmatch(r"\d+-[0-9a-z]{6}", new_entry_id())


def test_cache_round_trip(store: RadarStore) -> None:
    store.write_cache(DiscoveryCache(root_folder="/src", repos=["/src/a", "/src/b"]))

    cache = store.read_cache()

    assert cache is not None
    assert cache.root_folder == "/src"
    assert cache.repos == ["/src/a", "/src/b"]
    assert json.loads(store.cache_file.read_text())["rootFolder"] == "/src"


def test_cache_write_leaves_no_temp_file(store: RadarStore) -> None:
    store.write_cache(DiscoveryCache(root_folder="/src", repos=[]))

    assert [p.name for p in store.data_dir.iterdir()] == ["repo-cache.json"]


def test_cache_missing_or_malformed_fails_open(store: RadarStore) -> None:
    assert store.read_cache() is None

    store.data_dir.mkdir(parents=True)
    store.cache_file.write_text("{not json")
    assert store.read_cache() is None

    store.cache_file.write_text(json.dumps({"rootFolder": "/src", "repos": "nope"}))
    assert store.read_cache() is None

    store.cache_file.write_text(json.dumps(["unexpected", "shape"]))
    assert store.read_cache() is None


def test_write_failure_is_logged_not_raised(
    store: RadarStore, mocker: MagicMock
) -> None:
    mocker.patch("repo_radar.storage.os.replace", side_effect=OSError("disk full"))

    store.write_cache(DiscoveryCache(root_folder="/src", repos=[]))

    assert store.read_cache() is None
    assert not store.cache_file.with_suffix(".json.tmp").exists()


def test_log_operation_appends_json_lines(store: RadarStore) -> None:
    first = store.log_operation("/src/a", Action.FETCH, True, "fetch completed.")
    store.log_operation("/src/a", Action.PUSH, False, "push failed.", "", "denied")

    lines = store.log_file.read_text().splitlines()

    assert len(lines) == 2
    assert json.loads(lines[0])["id"] == first.id
    assert json.loads(lines[1])["action"] == "push"
    assert json.loads(lines[1])["stderr"] == "denied"


def test_read_logs_newest_first_within_window(store: RadarStore) -> None:
    for i in range(10):
        store.log_operation(f"/src/{i}", Action.FETCH, True, f"entry {i}")

    entries = store.read_logs(max_entries=3)

    assert [e.message for e in entries] == ["entry 9", "entry 8", "entry 7"]
    # Older entries are ignored, not deleted.
    assert len(store.log_file.read_text().splitlines()) == 10


def test_read_logs_skips_malformed_lines(store: RadarStore) -> None:
    store.log_operation("/src/a", Action.FETCH, True, "good one")
    with open(store.log_file, "a", encoding="utf-8") as f:
        f.write("this is not json\n")
        f.write(json.dumps({"id": "1", "timestamp": "t"}) + "\n")
        f.write(
            json.dumps(
                {
                    "id": "2",
                    "timestamp": "t",
                    "repo": "/src/a",
                    "action": "teleport",
                    "success": True,
                }
            )
            + "\n"
        )
        f.write("\n")
    store.log_operation("/src/b", Action.PUSH, True, "good two")

    entries = store.read_logs()

    assert [e.message for e in entries] == ["good two", "good one"]


def test_read_logs_without_file(store: RadarStore) -> None:
    assert store.read_logs() == []


def test_log_entry_defaults_missing_output_fields() -> None:
    entry = OperationLogEntry.from_dict(
        {
            "id": "1-abcdef",
            "timestamp": "2026-01-01T00:00:00+00:00",
            "repo": "/src/a",
            "action": "scan",
            "success": True,
        }
    )

    assert entry.action == Action.SCAN
    assert entry.message == ""
    assert entry.stdout == ""


def test_record_action_overwrites_output_and_keeps_other_stamps(
    store: RadarStore,
) -> None:
    store.record_action("/src/a", Action.FETCH, "fetched", "t1")
    store.record_action("/src/a", Action.PUSH, "pushed", "t2")
    store.record_action("/src/b", Action.REBASE_PULL, "rebased", "t3")

    meta = store.read_metadata()

    assert meta["/src/a"].fetch_at == "t1"
    assert meta["/src/a"].push_at == "t2"
    assert meta["/src/a"].rebase_pull_at is None
    assert meta["/src/a"].last_command_output == "pushed"
    assert meta["/src/b"].rebase_pull_at == "t3"

    on_disk = json.loads(store.metadata_file.read_text())
    assert on_disk["/src/a"] == {
        "fetchAt": "t1",
        "pushAt": "t2",
        "lastCommandOutput": "pushed",
    }


def test_metadata_malformed_file_fails_open(store: RadarStore) -> None:
    store.data_dir.mkdir(parents=True)
    store.metadata_file.write_text("[]")

    assert store.read_metadata() == {}
    assert store.read_repo_metadata("/src/a") is None

    store.record_action("/src/a", Action.FETCH, "ok", "t1")
    assert store.read_repo_metadata("/src/a").fetch_at == "t1"


def test_store_defaults_to_state_directory(mocker: MagicMock, tmp_path: Path) -> None:
    mocker.patch("repo_radar.storage.DATA_DIR", tmp_path / "xdg")

    assert RadarStore().data_dir == tmp_path / "xdg"
