################################################################################
# VSNAP
#
# @file:        docker_client.py
# @module:      vsnap.cores.docker_client
# @description: Thin adapter over the Docker Engine API (volumes, helpers).
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
# ==============================================================================
# Notes:
# - No retries and no business logic; every daemon error is re-raised as a
#   vsnap error kind with the daemon's own message
# - run_helper() is a generator; the helper container is removed in its
#   finally block, i.e. whenever the generator is exhausted or closed
################################################################################

"""
Docker daemon adapter for vsnap.

The adapter is the single owner of the daemon connection. It is constructed
explicitly, connected with ``connect()`` and released with ``close()`` (or
used as a context manager), then passed to every component that needs it.
"""

from __future__ import annotations

import queue
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Type
from uuid import uuid4

import docker
from docker.errors import APIError, DockerException
from docker.errors import NotFound as DockerNotFound
from docker.types import Mount as DockerMount
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout as RequestsTimeout
from urllib3.exceptions import ProtocolError

from ..constants import (
    DOCKER_API_TIMEOUT,
    HELPER_CONTAINER_LABEL,
    HELPER_STDERR_JOIN_TIMEOUT,
    OWNER_TOKEN_LABEL,
)
from ..errors import (
    AlreadyExists,
    ContainerCreateFailed,
    DaemonError,
    DaemonUnreachable,
    ImagePullFailed,
    InUse,
    NotFound,
    VsnapError,
)
from ..helpers.logging import get_logger
from ..types import ExitStatus, HelperEvent, Mount, StderrChunk, StdoutChunk, Volume

logger = get_logger(__name__)


def _explain(error: DockerException) -> str:
    explanation = getattr(error, "explanation", None)
    return str(explanation or error)


@contextmanager
def daemon_errors(
    action: str,
    not_found: Type[VsnapError] = NotFound,
    conflict: Type[VsnapError] = AlreadyExists,
    failure: Type[VsnapError] = DaemonError,
):
    """
    Translate docker SDK exceptions raised inside the block.

    Args:
        action: Description used as message prefix (e.g. "inspect volume x")
        not_found: Kind raised for HTTP 404
        conflict: Kind raised for HTTP 409
        failure: Kind raised for any other API error
    """
    try:
        yield
    except DockerNotFound as e:
        raise not_found(f"Cannot {action}: {_explain(e)}") from e
    except APIError as e:
        if e.status_code == 409:
            raise conflict(f"Cannot {action}: {_explain(e)}") from e
        raise failure(f"Cannot {action}: {_explain(e)}") from e
    except (RequestsConnectionError, RequestsTimeout) as e:
        raise DaemonUnreachable(f"Cannot {action}: Docker daemon unreachable ({e})") from e
    except DockerException as e:
        raise DaemonUnreachable(f"Cannot {action}: {e}") from e
    except (OSError, ProtocolError) as e:
        # raw socket failures while reading a streamed response
        raise DaemonUnreachable(f"Cannot {action}: connection to Docker daemon lost ({e})") from e


def _drain(chunks: "queue.Queue[bytes]") -> Iterator[StderrChunk]:
    while True:
        try:
            yield StderrChunk(chunks.get_nowait())
        except queue.Empty:
            return


class DockerClient:
    """
    Capability surface over the Docker daemon.

    Example:
        >>> with DockerClient().connect() as client:
        ...     client.inspect_volume("pgdata")
    """

    def __init__(self, base_url: Optional[str] = None,
                 timeout: int = DOCKER_API_TIMEOUT,
                 client: Optional[docker.DockerClient] = None):
        """
        Args:
            base_url: Daemon URL (e.g. unix:///var/run/docker.sock);
                      None uses DOCKER_HOST and friends from the environment
            timeout: API timeout in seconds for non-streaming calls
            client: Pre-built docker SDK client (mainly for tests)
        """
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_config(cls, config) -> "DockerClient":
        return cls(base_url=config.docker_base_url, timeout=config.docker_timeout)

    # ---- lifecycle ----

    def connect(self) -> "DockerClient":
        """Open the connection and verify the daemon answers."""
        if self._client is None:
            with daemon_errors("connect to Docker daemon", failure=DaemonUnreachable):
                if self.base_url:
                    self._client = docker.DockerClient(base_url=self.base_url, timeout=self.timeout)
                else:
                    self._client = docker.from_env(timeout=self.timeout)
        with daemon_errors("ping Docker daemon", failure=DaemonUnreachable):
            self._client.ping()
        logger.debug("Connected to Docker daemon", extra={"base_url": self.base_url or "env"})
        return self

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "DockerClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            raise DaemonUnreachable("Docker client is not connected")
        return self._client

    # ---- volumes ----

    def create_volume(self, name: str, labels: Optional[Dict[str, str]] = None) -> Volume:
        """
        Create a volume that must not exist yet.

        The daemon answers a create for an existing name with the existing
        volume, so the call is preceded by an existence check and followed by
        an ownership check on a token label unique to this call.

        Raises:
            AlreadyExists: The name is taken (also when a concurrent creator won)
        """
        token = uuid4().hex
        all_labels = dict(labels or {})
        all_labels[OWNER_TOKEN_LABEL] = token

        try:
            self.inspect_volume(name)
        except NotFound:
            pass
        else:
            raise AlreadyExists(f"Volume {name} already exists")

        with daemon_errors(f"create volume {name}"):
            volume = self.client.volumes.create(name=name, driver="local", labels=all_labels)

        attrs = volume.attrs or {}
        if (attrs.get("Labels") or {}).get(OWNER_TOKEN_LABEL) != token:
            raise AlreadyExists(f"Volume {name} already exists")

        logger.debug(f"Created volume {name}", extra={"volume": name})
        return Volume.from_attrs(attrs)

    def remove_volume(self, name: str, force: bool = False):
        """
        Raises:
            NotFound: No such volume
            InUse: A container still references the volume
        """
        with daemon_errors(f"remove volume {name}", conflict=InUse):
            self.client.volumes.get(name).remove(force=force)
        logger.debug(f"Removed volume {name}", extra={"volume": name})

    def inspect_volume(self, name: str) -> Volume:
        with daemon_errors(f"inspect volume {name}"):
            volume = self.client.volumes.get(name)
        return Volume.from_attrs(volume.attrs or {})

    def list_volumes(self, label_filter: Optional[Dict[str, Optional[str]]] = None) -> List[Volume]:
        """
        List volumes, optionally filtered by labels.

        Args:
            label_filter: ``{key: value}`` pairs; a value of None matches
                          any volume carrying the key
        """
        filters = {}
        if label_filter:
            filters["label"] = [
                key if value is None else f"{key}={value}"
                for key, value in label_filter.items()
            ]
        with daemon_errors("list volumes"):
            volumes = self.client.volumes.list(filters=filters)
        return [Volume.from_attrs(v.attrs or {}) for v in volumes]

    def containers_using_volume(self, name: str) -> List[str]:
        """Names of running containers that mount the volume."""
        with daemon_errors(f"list containers using volume {name}"):
            containers = self.client.containers.list(filters={"volume": name})
        return [c.name for c in containers]

    # ---- images ----

    def ensure_image(self, image: str, pull: bool = True):
        """
        Make sure the helper image is available locally.

        Raises:
            ImagePullFailed: Image missing and pulling disabled or failing
        """
        try:
            with daemon_errors(f"inspect image {image}"):
                self.client.images.get(image)
            return
        except NotFound:
            if not pull:
                raise ImagePullFailed(f"Helper image {image} is not available locally")

        logger.info(f"Pulling helper image {image}", extra={"image": image})
        with daemon_errors(f"pull image {image}", not_found=ImagePullFailed,
                           conflict=ImagePullFailed, failure=ImagePullFailed):
            self.client.images.pull(image)

    # ---- helper containers ----

    def run_helper(self, image: str, mounts: Sequence[Mount], command: Sequence[str],
                   name_hint: str = "helper") -> Iterator[HelperEvent]:
        """
        Run a helper container to completion and stream its output.

        Yields ``StdoutChunk`` items while the container runs, interleaved
        with ``StderrChunk`` items as stderr arrives (read by a side thread),
        then a final ``ExitStatus``. The container is removed when the
        generator finishes or is closed early, whatever the reason.

        Raises:
            ImagePullFailed: Image not present
            ContainerCreateFailed: Daemon refused to create/start the container
            DaemonUnreachable: Connection lost
        """
        docker_mounts = [
            DockerMount(target=m.target, source=m.volume, type="volume", read_only=m.read_only)
            for m in mounts
        ]
        container_name = f"vsnap-{name_hint}-{uuid4().hex[:12]}"

        with daemon_errors(f"create helper container {container_name}",
                           not_found=ImagePullFailed,
                           conflict=ContainerCreateFailed,
                           failure=ContainerCreateFailed):
            container = self.client.containers.create(
                image=image,
                command=list(command),
                name=container_name,
                mounts=docker_mounts,
                labels={HELPER_CONTAINER_LABEL: "true"},
                network_disabled=True,
                detach=True,
            )

        logger.debug(f"Created helper container {container_name}",
                     extra={"container": container_name, "command": " ".join(command)})
        try:
            with daemon_errors(f"start helper container {container_name}",
                               conflict=ContainerCreateFailed,
                               failure=ContainerCreateFailed):
                container.start()

            stderr_chunks: "queue.Queue[bytes]" = queue.Queue()
            stderr_reader = threading.Thread(
                target=self._follow_stderr,
                args=(container, container_name, stderr_chunks),
                name=f"{container_name}-stderr",
                daemon=True,
            )
            stderr_reader.start()

            with daemon_errors(f"stream output of {container_name}"):
                for chunk in container.logs(stdout=True, stderr=False, stream=True, follow=True):
                    if chunk:
                        yield StdoutChunk(chunk)
                    yield from _drain(stderr_chunks)

                result = container.wait()

            stderr_reader.join(HELPER_STDERR_JOIN_TIMEOUT)
            yield from _drain(stderr_chunks)
            yield ExitStatus(int(result.get("StatusCode", -1)))
        finally:
            self.kill_and_remove(container.id)

    @staticmethod
    def _follow_stderr(container, container_name: str, sink: "queue.Queue[bytes]"):
        """Forward the helper's stderr stream into ``sink`` until it ends."""
        try:
            for chunk in container.logs(stdout=False, stderr=True, stream=True, follow=True):
                if chunk:
                    sink.put(chunk)
        except (DockerException, RequestsConnectionError, RequestsTimeout,
                OSError, ProtocolError) as e:
            # the container is usually gone already; stdout carries the failure
            logger.debug(f"stderr stream of {container_name} ended: {e}",
                         extra={"container": container_name})

    def kill_and_remove(self, container_id: str):
        """Force-remove a container; best effort, a missing one is fine."""
        try:
            self.client.api.remove_container(container_id, force=True)
            logger.debug(f"Removed helper container {container_id[:12]}",
                         extra={"container": container_id[:12]})
        except DockerNotFound:
            pass
        except APIError as e:
            if e.status_code == 409:
                # removal already in progress
                return
            logger.warning(f"Failed to remove helper container {container_id[:12]}: {_explain(e)}")
        except (RequestsConnectionError, RequestsTimeout, DockerException) as e:
            logger.warning(f"Failed to remove helper container {container_id[:12]}: {e}")
