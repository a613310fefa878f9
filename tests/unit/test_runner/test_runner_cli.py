"""Unit tests for the vsnap-runner command line."""

import json

import pytest

from vsnap.constants import RUNNER_EXIT_CORRUPT, RUNNER_EXIT_FAILURE, SNAPSHOT_TAR_ZST
from vsnap.runner.cli import app


@pytest.fixture
def volumes(tmp_path):
    source = tmp_path / "source"
    snapshot = tmp_path / "snapshot"
    restore = tmp_path / "restore"
    for d in (source, snapshot, restore):
        d.mkdir()
    (source / "data.txt").write_text("payload")
    return source, snapshot, restore


def json_lines(output):
    records = []
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("{"):
            records.append(json.loads(line))
    return records


def test_snapshot_and_restore_commands(cli_runner, volumes):
    source, snapshot, restore = volumes

    result = cli_runner.invoke(app, ["snapshot", "--compress", str(source), str(snapshot)])
    assert result.exit_code == 0
    assert (snapshot / SNAPSHOT_TAR_ZST).exists()
    assert any("progress" in r for r in json_lines(result.output))

    result = cli_runner.invoke(app, ["restore", "--compress", str(snapshot), str(restore)])
    assert result.exit_code == 0
    assert (restore / "data.txt").read_text() == "payload"


def test_size_prints_archive_size(cli_runner, volumes):
    source, snapshot, _ = volumes
    cli_runner.invoke(app, ["snapshot", str(source), str(snapshot)])

    result = cli_runner.invoke(app, ["size", str(snapshot)])

    assert result.exit_code == 0
    sizes = [r["size"] for r in json_lines(result.output) if "size" in r]
    assert sizes and sizes[0] > 0


def test_probe_reports_emptiness(cli_runner, volumes):
    source, _, restore = volumes

    empty = cli_runner.invoke(app, ["probe", str(restore)])
    full = cli_runner.invoke(app, ["probe", str(source)])

    assert json_lines(empty.output) == [{"empty": True}]
    assert json_lines(full.output) == [{"empty": False}]


def test_restore_of_corrupt_layout_exits_with_corrupt_code(cli_runner, volumes):
    _, snapshot, restore = volumes

    result = cli_runner.invoke(app, ["restore", str(snapshot), str(restore)])

    assert result.exit_code == RUNNER_EXIT_CORRUPT


def test_size_of_missing_directory_fails(cli_runner, tmp_path):
    result = cli_runner.invoke(app, ["size", str(tmp_path / "missing")])

    assert result.exit_code == RUNNER_EXIT_FAILURE


def test_snapshot_into_non_empty_target_fails(cli_runner, volumes):
    source, snapshot, _ = volumes
    (snapshot / "junk").write_text("x")

    result = cli_runner.invoke(app, ["snapshot", str(source), str(snapshot)])

    assert result.exit_code == RUNNER_EXIT_FAILURE
