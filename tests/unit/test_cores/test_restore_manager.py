"""
Unit tests for SnapshotRestorer.

Snapshots are produced with the real SnapshotProducer on the FakeDaemon.
"""

import pytest

from vsnap.constants import RUNNER_EXIT_CORRUPT, SNAPSHOT_TAR
from vsnap.cores.restore_manager import SnapshotRestorer
from vsnap.cores.snapshot_manager import SnapshotProducer
from vsnap.errors import (
    SIDE_EFFECTS_CLEANED_UP,
    SIDE_EFFECTS_LEFT,
    SIDE_EFFECTS_NONE,
    Cancelled,
    CorruptSnapshot,
    DestinationExists,
    InUse,
    InvalidName,
    NotASnapshot,
    NotFound,
    SnapshotRestoreFailed,
)
from conftest import read_tree

SCENARIO_FILES = {"a.txt": "hello", "b/c.txt": "world"}


@pytest.fixture
def restorer(fake_daemon):
    return SnapshotRestorer(fake_daemon)


@pytest.fixture
def snapshot_of(fake_daemon):
    def make(files, name="snap-a", compress=False):
        fake_daemon.add_volume(f"{name}-src", files)
        SnapshotProducer(fake_daemon).create(f"{name}-src", name, compress=compress)
        return name

    return make


# =============================================================================
# Round trip
# =============================================================================


def test_snap_a_scenario_restores_into_fresh_volume(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)

    restorer.restore("snap-a", "dst")

    assert read_tree(fake_daemon.path("dst")) == {
        "a.txt": b"hello",
        "b/c.txt": b"world",
    }
    assert fake_daemon.live_containers == 0


@pytest.mark.parametrize("compress", [False, True])
def test_round_trip_with_overwrite(fake_daemon, restorer, snapshot_of, compress):
    files = {"a.txt": "hello", "deep/er/file.bin": "z" * 5000, "empty.txt": ""}
    snapshot_of(files, name="snap", compress=compress)
    fake_daemon.add_volume("dst", {"old.txt": "stale", "deep/other.txt": "stale"})

    restorer.restore("snap", "dst", overwrite=True)

    assert read_tree(fake_daemon.path("dst")) == read_tree(fake_daemon.path("snap-src"))
    assert "--clear" in fake_daemon.commands[-1]


def test_existing_empty_destination_is_used_without_overwrite(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)
    fake_daemon.add_volume("dst")

    restorer.restore("snap-a", "dst")

    assert read_tree(fake_daemon.path("dst"))["a.txt"] == b"hello"
    assert "--clear" not in fake_daemon.commands[-1]


def test_drop_snapshot_after_restore(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)

    restorer.restore("snap-a", "dst", drop_snapshot=True)

    assert "snap-a" not in fake_daemon.volumes
    assert restorer.dropped is True
    assert "dst" in fake_daemon.volumes


# =============================================================================
# Preconditions
# =============================================================================


def test_non_empty_destination_without_overwrite_is_untouched(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)
    fake_daemon.add_volume("dst", {"precious.txt": "do not touch", "sub/x.bin": "\x00\x01"})
    before = read_tree(fake_daemon.path("dst"))

    with pytest.raises(DestinationExists) as exc_info:
        restorer.restore("snap-a", "dst")

    assert exc_info.value.side_effects == SIDE_EFFECTS_NONE
    assert read_tree(fake_daemon.path("dst")) == before
    # only the read-only probe ran
    assert [c[0] for c in fake_daemon.commands[-1:]] == ["probe"]


def test_missing_snapshot(fake_daemon, restorer):
    with pytest.raises(NotFound, match="Snapshot ghost not found"):
        restorer.restore("ghost", "dst")

    assert "dst" not in fake_daemon.volumes


def test_plain_volume_is_not_a_snapshot(fake_daemon, restorer):
    fake_daemon.add_volume("plain", {"a": "b"})

    with pytest.raises(NotASnapshot):
        restorer.restore("plain", "dst")


def test_restore_onto_itself(restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)

    with pytest.raises(InvalidName):
        restorer.restore("snap-a", "snap-a")


# =============================================================================
# Failure handling
# =============================================================================


def test_failure_removes_destination_created_by_restore(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)
    fake_daemon.fail_helper = "restore"

    with pytest.raises(SnapshotRestoreFailed) as exc_info:
        restorer.restore("snap-a", "dst")

    assert "dst" not in fake_daemon.volumes
    assert exc_info.value.side_effects == SIDE_EFFECTS_CLEANED_UP
    assert "simulated helper failure" in exc_info.value.stderr


def test_failure_leaves_caller_owned_destination(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)
    fake_daemon.add_volume("dst", {"old.txt": "x"})
    fake_daemon.fail_helper = "restore"

    with pytest.raises(SnapshotRestoreFailed) as exc_info:
        restorer.restore("snap-a", "dst", overwrite=True)

    assert "dst" in fake_daemon.volumes
    assert exc_info.value.side_effects == SIDE_EFFECTS_LEFT


def test_corrupt_archive_layout(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)
    (fake_daemon.path("snap-a") / SNAPSHOT_TAR).unlink()

    with pytest.raises(CorruptSnapshot):
        restorer.restore("snap-a", "dst")

    assert "dst" not in fake_daemon.volumes


def test_corrupt_exit_code_maps_to_corrupt_snapshot(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)
    fake_daemon.fail_helper = "restore"
    fake_daemon.fail_exit_code = RUNNER_EXIT_CORRUPT

    with pytest.raises(CorruptSnapshot):
        restorer.restore("snap-a", "dst")


def test_interrupt_cancels_and_cleans_up(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)
    fake_daemon.interrupt_helper = "restore"

    with pytest.raises(Cancelled):
        restorer.restore("snap-a", "dst")

    assert "dst" not in fake_daemon.volumes
    assert fake_daemon.live_containers == 0


def test_lost_helper_stream_removes_created_destination(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)
    fake_daemon.broken_stream["restore"] = ConnectionResetError(104, "Connection reset by peer")

    with pytest.raises(SnapshotRestoreFailed) as exc_info:
        restorer.restore("snap-a", "dst")

    assert isinstance(exc_info.value.__cause__, ConnectionResetError)
    assert exc_info.value.side_effects == SIDE_EFFECTS_CLEANED_UP
    assert "dst" not in fake_daemon.volumes
    assert fake_daemon.live_containers == 0


def test_layout_corruption_leaves_owned_destination_untouched(fake_daemon, restorer, snapshot_of):
    snapshot_of(SCENARIO_FILES)
    (fake_daemon.path("snap-a") / SNAPSHOT_TAR).unlink()
    fake_daemon.add_volume("dst", {"keep.txt": "mine"})
    before = read_tree(fake_daemon.path("dst"))

    with pytest.raises(CorruptSnapshot) as exc_info:
        restorer.restore("snap-a", "dst", overwrite=True)

    assert exc_info.value.side_effects == SIDE_EFFECTS_NONE
    assert read_tree(fake_daemon.path("dst")) == before


def test_drop_failure_keeps_successful_restore(fake_daemon, restorer, snapshot_of, monkeypatch):
    snapshot_of(SCENARIO_FILES)

    def remove_volume(name, force=False):
        raise InUse(f"Cannot remove volume {name}: volume is in use")

    monkeypatch.setattr(fake_daemon, "remove_volume", remove_volume)

    snapshot = restorer.restore("snap-a", "dst", drop_snapshot=True)

    assert snapshot.name == "snap-a"
    assert restorer.dropped is False
    assert "snap-a" in fake_daemon.volumes
    assert read_tree(fake_daemon.path("dst")) == read_tree(fake_daemon.path("snap-a-src"))
