################################################################################
# VSNAP
#
# @file:        snapshot_manager.py
# @module:      vsnap.cores.snapshot_manager
# @description: Creates snapshot volumes from source volumes.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
# ==============================================================================
# Notes:
# - All preconditions are checked before the snapshot volume is created
# - Once it exists, any failure or Ctrl+C removes it again
################################################################################

"""
Snapshot creation.

Flow:
1. Validate names, source existence, source usage, name collision
2. Ensure the helper image
3. Create the labelled snapshot volume
4. Run the archive helper (source read-only, snapshot read-write)
5. On failure: remove the snapshot volume and raise SnapshotCreationFailed
"""

import time
from typing import Optional

from ..constants import DEFAULT_HELPER_IMAGE
from ..errors import (
    AlreadyExists,
    Cancelled,
    HelperProcessFailed,
    InUse,
    InvalidName,
    NotFound,
    SnapshotCreationFailed,
    VsnapError,
)
from ..helpers.logging import get_logger
from ..helpers.system_utils import SystemUtils
from ..types import Snapshot
from .archive_codec import (
    archive_command,
    decode_snapshot,
    encode_labels,
    snapshot_mounts,
    validate_volume_name,
)
from .helper_run import run_helper

logger = get_logger(__name__)


class SnapshotProducer:
    """Creates snapshots of Docker volumes."""

    def __init__(self, client, config=None, reporter=None):
        """
        Args:
            client: Connected DockerClient
            config: Optional Config (helper image, defaults)
            reporter: Optional ProgressReporter
        """
        self.client = client
        self.config = config
        self.reporter = reporter
        self.image = config.helper_image if config else DEFAULT_HELPER_IMAGE
        self.pull_missing_image = config.pull_missing_image if config else True

    def create(self, source_volume: str, snapshot_name: str,
               compress: Optional[bool] = None,
               allow_in_use: Optional[bool] = None) -> Snapshot:
        """
        Snapshot ``source_volume`` into a new volume named ``snapshot_name``.

        Args:
            compress: zstd-compress the archive (default from config)
            allow_in_use: Snapshot even if running containers mount the source

        Raises:
            InvalidName, NotFound, InUse, AlreadyExists: Precondition failures,
                nothing was changed
            ImagePullFailed: Helper image unavailable, nothing was changed
            SnapshotCreationFailed: Archiving failed (for any reason), snapshot
                volume removed
            Cancelled: Interrupted, snapshot volume removed
        """
        if compress is None:
            compress = self.config.default_compression if self.config else False
        if allow_in_use is None:
            allow_in_use = self.config.allow_in_use if self.config else False

        validate_volume_name(source_volume, "source volume")
        validate_volume_name(snapshot_name, "snapshot")
        if source_volume == snapshot_name:
            raise InvalidName("Snapshot name must differ from the source volume name")

        self._check_source(source_volume, allow_in_use)
        self._check_name_free(snapshot_name)
        self.client.ensure_image(self.image, pull=self.pull_missing_image)

        logger.info(
            f"Creating snapshot {snapshot_name} from {source_volume}",
            extra={"operation": "create", "volume": source_volume,
                   "snapshot": snapshot_name, "compress": compress},
        )
        volume = self.client.create_volume(
            snapshot_name, encode_labels(compress, source_volume=source_volume)
        )

        start = time.monotonic()
        try:
            result = run_helper(
                self.client,
                self.image,
                snapshot_mounts(source_volume, snapshot_name),
                archive_command(compress),
                reporter=self.reporter,
                operation="create",
                name_hint="snapshot",
            )
            if not result.ok:
                raise HelperProcessFailed(
                    f"Archive helper exited with status {result.exit_code}",
                    exit_status=result.exit_code,
                    stderr=result.stderr,
                )
        except KeyboardInterrupt:
            logger.warning("Snapshot creation interrupted", extra={"snapshot": snapshot_name})
            self._rollback(snapshot_name)
            raise Cancelled(f"Snapshot creation of {snapshot_name} cancelled") from None
        except VsnapError as e:
            logger.error(f"Snapshot creation failed: {e.message}", extra={"snapshot": snapshot_name})
            self._rollback(snapshot_name)
            raise SnapshotCreationFailed(
                f"Creating snapshot {snapshot_name} from {source_volume} failed: {e.message}",
                stderr=getattr(e, "stderr", ""),
            ) from e
        except Exception as e:
            logger.error(f"Snapshot creation failed: {e}", extra={"snapshot": snapshot_name})
            self._rollback(snapshot_name)
            raise SnapshotCreationFailed(
                f"Creating snapshot {snapshot_name} from {source_volume} failed: {e}",
            ) from e

        snapshot = decode_snapshot(volume)
        logger.info(
            f"Snapshot {snapshot_name} created in "
            f"{SystemUtils.format_duration(time.monotonic() - start)}",
            extra={"operation": "create", "snapshot": snapshot_name},
        )
        return snapshot

    def _check_source(self, source_volume: str, allow_in_use: bool):
        try:
            self.client.inspect_volume(source_volume)
        except NotFound as e:
            raise NotFound(f"Source volume {source_volume} not found") from e

        if allow_in_use:
            return
        users = self.client.containers_using_volume(source_volume)
        if users:
            raise InUse(
                f"Source volume {source_volume} is used by running container(s): "
                f"{', '.join(sorted(users))}. Stop them first or pass --force."
            )

    def _check_name_free(self, snapshot_name: str):
        try:
            self.client.inspect_volume(snapshot_name)
        except NotFound:
            return
        raise AlreadyExists(f"Volume {snapshot_name} already exists")

    def _rollback(self, snapshot_name: str):
        """Remove a partially created snapshot volume; errors are logged only."""
        try:
            self.client.remove_volume(snapshot_name, force=True)
            logger.info(f"Removed incomplete snapshot {snapshot_name}",
                        extra={"snapshot": snapshot_name})
        except NotFound:
            pass
        except VsnapError as e:
            logger.error(f"Could not remove incomplete snapshot {snapshot_name}: {e.message}",
                         extra={"snapshot": snapshot_name})
