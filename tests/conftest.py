"""
Shared pytest fixtures for vsnap tests.

Provides an in-memory fake Docker daemon whose helper containers run the
real archiver code against temporary directories, plus CLI and config
fixtures.
"""

import io
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import patch
from uuid import uuid4

import pytest
from typer.testing import CliRunner

from vsnap.constants import OWNER_TOKEN_LABEL, RUNNER_EXIT_CORRUPT, RUNNER_EXIT_FAILURE
from vsnap.errors import AlreadyExists, ImagePullFailed, InUse, NotFound
from vsnap.runner import archiver
from vsnap.types import ExitStatus, StderrChunk, StdoutChunk, Volume


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: tests against a real Docker daemon")
    config.addinivalue_line("markers", "requires_docker: tests that need the Docker daemon")


class FakeDaemon:
    """
    Stand-in for DockerClient.

    Volumes are directories below ``root``. Helper runs parse the runner
    command line and call ``vsnap.runner.archiver`` directly, with the
    container mount targets mapped onto those directories.
    """

    chunk_size = 64

    def __init__(self, root: Path):
        self.root = root
        self.volumes: Dict[str, Dict] = {}
        self.image_available = True
        self.running_users: Dict[str, List[str]] = {}

        self._lock = threading.Lock()
        self.containers_created = 0
        self.containers_removed = 0
        self.commands: List[List[str]] = []
        self.ensure_image_calls: List[str] = []

        # failure injection
        self.fail_helper: Optional[str] = None
        self.fail_exit_code = RUNNER_EXIT_FAILURE
        self.fail_stderr = b"simulated helper failure\n"
        self.interrupt_helper: Optional[str] = None
        # op -> exception raised after the first stdout chunk
        self.broken_stream: Dict[str, BaseException] = {}

    # ---- test helpers ----

    def add_volume(self, name: str, files: Optional[Dict[str, str]] = None,
                   labels: Optional[Dict[str, str]] = None) -> Path:
        path = self.root / name
        path.mkdir(parents=True)
        for rel, content in (files or {}).items():
            target = path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        self.volumes[name] = {"labels": dict(labels or {}), "path": path}
        return path

    def path(self, name: str) -> Path:
        return self.volumes[name]["path"]

    @property
    def live_containers(self) -> int:
        return self.containers_created - self.containers_removed

    # ---- DockerClient surface ----

    def connect(self):
        return self

    def close(self):
        pass

    def create_volume(self, name: str, labels: Optional[Dict[str, str]] = None) -> Volume:
        if name in self.volumes:
            raise AlreadyExists(f"Volume {name} already exists")
        all_labels = dict(labels or {})
        all_labels[OWNER_TOKEN_LABEL] = uuid4().hex
        self.add_volume(name, labels=all_labels)
        return self.inspect_volume(name)

    def remove_volume(self, name: str, force: bool = False):
        if name not in self.volumes:
            raise NotFound(f"Cannot remove volume {name}: no such volume")
        if self.running_users.get(name):
            raise InUse(f"Cannot remove volume {name}: volume is in use")
        shutil.rmtree(self.volumes.pop(name)["path"])

    def inspect_volume(self, name: str) -> Volume:
        if name not in self.volumes:
            raise NotFound(f"Cannot inspect volume {name}: no such volume")
        entry = self.volumes[name]
        return Volume(name=name, labels=dict(entry["labels"]), mountpoint=str(entry["path"]))

    def list_volumes(self, label_filter=None) -> List[Volume]:
        result = []
        for name in self.volumes:
            volume = self.inspect_volume(name)
            if all(
                key in volume.labels and (value is None or volume.labels[key] == value)
                for key, value in (label_filter or {}).items()
            ):
                result.append(volume)
        return result

    def containers_using_volume(self, name: str) -> List[str]:
        return list(self.running_users.get(name, []))

    def ensure_image(self, image: str, pull: bool = True):
        self.ensure_image_calls.append(image)
        if not self.image_available:
            raise ImagePullFailed(f"Cannot pull image {image}: not found")

    def run_helper(self, image, mounts, command, name_hint="helper"):
        for mount in mounts:
            if mount.volume not in self.volumes:
                raise NotFound(f"Cannot create helper container: volume {mount.volume} not found")
        targets = {m.target: self.path(m.volume) for m in mounts}
        with self._lock:
            self.containers_created += 1
            self.commands.append(list(command))
        try:
            op = command[0]
            if self.interrupt_helper == op:
                raise KeyboardInterrupt
            if self.fail_helper == op:
                yield StderrChunk(self.fail_stderr)
                yield ExitStatus(self.fail_exit_code)
                return

            stdout, stderr, code = self._execute(op, command[1:], targets)
            data = stdout.encode()
            for i in range(0, len(data), self.chunk_size):
                yield StdoutChunk(data[i:i + self.chunk_size])
                if op in self.broken_stream:
                    raise self.broken_stream[op]
            if stderr:
                yield StderrChunk(stderr.encode())
            yield ExitStatus(code)
        finally:
            with self._lock:
                self.containers_removed += 1

    def kill_and_remove(self, container_id: str):
        pass

    def _execute(self, op: str, args: List[str], targets: Dict[str, Path]):
        flags = {a for a in args if a.startswith("--")}
        paths = [targets[a] for a in args if not a.startswith("--")]
        compress = "--compress" in flags
        out = io.StringIO()
        try:
            if op == "snapshot":
                archiver.snapshot(paths[0], paths[1], compress, stream=out)
            elif op == "restore":
                archiver.restore(paths[0], paths[1], compress, clear="--clear" in flags, stream=out)
            elif op == "size":
                out.write('{"size": %d}\n' % archiver.archive_size(paths[0], compress))
            elif op == "probe":
                out.write('{"empty": %s}\n' % ("true" if archiver.is_empty(paths[0]) else "false"))
            else:
                return "", f"unknown command {op}", RUNNER_EXIT_FAILURE
        except archiver.CorruptLayout as e:
            return out.getvalue(), f"corrupt snapshot: {e}", RUNNER_EXIT_CORRUPT
        except (OSError, RuntimeError) as e:
            return out.getvalue(), f"{op} failed: {e}", RUNNER_EXIT_FAILURE
        return out.getvalue(), "", 0


def read_tree(path: Path) -> Dict[str, bytes]:
    """Map of relative file path to content below ``path``."""
    return {
        str(p.relative_to(path)): p.read_bytes()
        for p in sorted(path.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def fake_daemon(tmp_path):
    """In-memory Docker daemon backed by temporary directories."""
    return FakeDaemon(tmp_path / "volumes")


@pytest.fixture
def cli_runner():
    """Typer CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def tmp_config(tmp_path):
    """Create a temporary vsnap config file."""
    config_file = tmp_path / "vsnap.conf"
    config_file.write_text(
        "[docker]\n"
        "base_url = unix:///tmp/test-docker.sock\n"
        "timeout = 30\n"
        "helper_image = vsnap/runner:test\n"
        "pull_missing_image = false\n"
        "\n"
        "[snapshot]\n"
        "compression = false\n"
        "allow_in_use = false\n"
        "\n"
        "[inventory]\n"
        "parallel_workers = 2\n"
        "\n"
        "[logging]\n"
        "level = WARNING\n"
        "file =\n"
    )
    return config_file


@pytest.fixture
def clean_env(monkeypatch):
    """Remove VSNAP_* overrides from the environment."""
    import os

    for key in list(os.environ):
        if key.startswith("VSNAP_"):
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def mock_docker_sdk():
    """Patch docker.from_env with a MagicMock SDK client."""
    from unittest.mock import MagicMock

    mock_client = MagicMock()
    mock_client.volumes.list.return_value = []
    mock_client.containers.list.return_value = []
    with patch("docker.from_env", return_value=mock_client):
        yield mock_client
