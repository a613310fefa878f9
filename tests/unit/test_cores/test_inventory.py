"""Unit tests for VolumeInventory."""

import pytest

from vsnap.constants import SNAPSHOT_COMPRESSION_LABEL, SNAPSHOT_TAR
from vsnap.cores.archive_codec import encode_labels
from vsnap.cores.inventory import VolumeInventory
from vsnap.cores.snapshot_manager import SnapshotProducer
from vsnap.errors import CorruptSnapshot, DaemonUnreachable, NotASnapshot, NotFound


@pytest.fixture
def inventory(fake_daemon):
    return VolumeInventory(fake_daemon, max_workers=2)


def make_snapshot(fake_daemon, name, files=None, compress=False):
    fake_daemon.add_volume(f"{name}-src", files or {"f.txt": "data " * 100})
    SnapshotProducer(fake_daemon).create(f"{name}-src", name, compress=compress)


def test_list_returns_only_marked_volumes(fake_daemon, inventory):
    make_snapshot(fake_daemon, "s1")
    make_snapshot(fake_daemon, "s2", compress=True)
    fake_daemon.add_volume("plain", {"x": "y"})
    fake_daemon.add_volume("lookalike", labels={"vsnap.snapshot": "false"})

    names = sorted(info.name for info in inventory.list())

    assert names == ["s1", "s2"]


def test_list_without_sizes_starts_no_helpers(fake_daemon, inventory):
    make_snapshot(fake_daemon, "s1")
    created = fake_daemon.containers_created

    infos = inventory.list()

    assert fake_daemon.containers_created == created
    assert infos[0].size_bytes is None
    assert infos[0].compressed is False
    assert infos[0].source_volume == "s1-src"


def test_list_with_sizes(fake_daemon, inventory):
    make_snapshot(fake_daemon, "s1")
    make_snapshot(fake_daemon, "s2", compress=True)
    make_snapshot(fake_daemon, "s3")

    infos = {info.name: info for info in inventory.list(compute_sizes=True)}

    assert set(infos) == {"s1", "s2", "s3"}
    archive = fake_daemon.path("s1") / SNAPSHOT_TAR
    assert infos["s1"].size_bytes == archive.stat().st_size
    assert all(i.size_bytes and i.size_error is None for i in infos.values())
    assert fake_daemon.live_containers == 0


def test_size_error_is_reported_per_snapshot(fake_daemon, inventory):
    make_snapshot(fake_daemon, "good")
    make_snapshot(fake_daemon, "broken")
    (fake_daemon.path("broken") / SNAPSHOT_TAR).unlink()

    infos = {info.name: info for info in inventory.list(compute_sizes=True)}

    assert infos["good"].size_bytes > 0
    assert infos["broken"].size_bytes is None
    assert "corrupt" in infos["broken"].size_error


def test_corrupt_labels_are_listed_with_error(fake_daemon, inventory):
    labels = encode_labels(True)
    labels[SNAPSHOT_COMPRESSION_LABEL] = "sometimes"
    fake_daemon.add_volume("weird", labels=labels)

    infos = inventory.list(compute_sizes=True)

    assert [i.name for i in infos] == ["weird"]
    assert "compression" in infos[0].size_error
    assert fake_daemon.containers_created == 0


def test_get_and_size(fake_daemon, inventory):
    make_snapshot(fake_daemon, "s1", compress=True)

    snapshot = inventory.get("s1")

    assert snapshot.compressed is True
    assert inventory.size(snapshot) > 0


def test_get_errors(fake_daemon, inventory):
    fake_daemon.add_volume("plain")
    labels = encode_labels(False)
    labels[SNAPSHOT_COMPRESSION_LABEL] = ""
    fake_daemon.add_volume("bad", labels=labels)

    with pytest.raises(NotFound):
        inventory.get("missing")
    with pytest.raises(NotASnapshot):
        inventory.get("plain")
    with pytest.raises(CorruptSnapshot):
        inventory.get("bad")


def test_drop_removes_snapshot(fake_daemon, inventory):
    make_snapshot(fake_daemon, "s1")

    inventory.drop("s1")

    assert "s1" not in fake_daemon.volumes


def test_drop_refuses_plain_volume(fake_daemon, inventory):
    fake_daemon.add_volume("plain", {"keep": "me"})

    with pytest.raises(NotASnapshot):
        inventory.drop("plain")

    assert "plain" in fake_daemon.volumes


def test_drop_missing(inventory):
    with pytest.raises(NotFound):
        inventory.drop("missing")


def test_lost_daemon_connection_is_reported_per_snapshot(fake_daemon, inventory):
    make_snapshot(fake_daemon, "s1")
    make_snapshot(fake_daemon, "s2")
    fake_daemon.broken_stream["size"] = DaemonUnreachable(
        "Cannot stream output of helper: connection to Docker daemon lost"
    )

    infos = {info.name: info for info in inventory.list(compute_sizes=True)}

    assert set(infos) == {"s1", "s2"}
    assert all(i.size_bytes is None for i in infos.values())
    assert all("connection to Docker daemon lost" in i.size_error for i in infos.values())
    assert fake_daemon.live_containers == 0
