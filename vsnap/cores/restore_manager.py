################################################################################
# VSNAP
#
# @file:        restore_manager.py
# @module:      vsnap.cores.restore_manager
# @description: Restores snapshot volumes into destination volumes.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
# ==============================================================================
# Notes:
# - A non-empty destination is only touched with overwrite=True, and then
#   wiped inside the extraction container before extracting
# - On failure the destination is removed only if this run created it
################################################################################

"""
Snapshot restore.

Flow:
1. Resolve and validate the snapshot (labels)
2. Inspect the destination; probe an existing one for content (read-only)
3. Refuse a non-empty destination without overwrite
4. Create the destination if missing
5. Run the extract helper (snapshot read-only, destination read-write)
6. Optionally drop the snapshot after success
"""

import time

from ..constants import DEFAULT_HELPER_IMAGE, RUNNER_EXIT_CORRUPT
from ..errors import (
    SIDE_EFFECTS_CLEANED_UP,
    SIDE_EFFECTS_LEFT,
    SIDE_EFFECTS_NONE,
    Cancelled,
    CorruptSnapshot,
    DestinationExists,
    HelperProcessFailed,
    InvalidName,
    NotFound,
    SnapshotRestoreFailed,
    VsnapError,
)
from ..helpers.logging import get_logger
from ..helpers.system_utils import SystemUtils
from ..types import ProbeReport, Snapshot
from .archive_codec import (
    decode_snapshot,
    extract_command,
    probe_command,
    probe_mounts,
    restore_mounts,
    validate_volume_name,
)
from .helper_run import first_record, run_helper

logger = get_logger(__name__)


class SnapshotRestorer:
    """Restores snapshots into Docker volumes."""

    def __init__(self, client, config=None, reporter=None):
        self.client = client
        self.config = config
        self.reporter = reporter
        self.image = config.helper_image if config else DEFAULT_HELPER_IMAGE
        self.pull_missing_image = config.pull_missing_image if config else True
        self.dropped = False

    def restore(self, snapshot_name: str, dest_volume: str,
                overwrite: bool = False, drop_snapshot: bool = False) -> Snapshot:
        """
        Restore ``snapshot_name`` into ``dest_volume``.

        Args:
            overwrite: Replace the contents of a non-empty destination
            drop_snapshot: Remove the snapshot volume after a successful restore.
                A failed drop is logged and leaves ``dropped`` False; the
                restore still counts as successful.

        Raises:
            InvalidName, NotFound, NotASnapshot, DestinationExists:
                Precondition failures, nothing was changed
            CorruptSnapshot: Labels or archive layout are invalid
            SnapshotRestoreFailed: Extraction failed
            Cancelled: Interrupted
        """
        validate_volume_name(snapshot_name, "snapshot")
        validate_volume_name(dest_volume, "destination volume")
        if snapshot_name == dest_volume:
            raise InvalidName("Cannot restore a snapshot onto itself")

        try:
            snapshot = decode_snapshot(self.client.inspect_volume(snapshot_name))
        except NotFound as e:
            if type(e) is NotFound:
                raise NotFound(f"Snapshot {snapshot_name} not found") from e
            raise

        self.client.ensure_image(self.image, pull=self.pull_missing_image)

        created = False
        clear = False
        if self._volume_exists(dest_volume):
            if not self._is_empty(dest_volume):
                if not overwrite:
                    raise DestinationExists(
                        f"Destination volume {dest_volume} is not empty; "
                        f"use --overwrite to replace its contents"
                    )
                clear = True
        else:
            self.client.create_volume(dest_volume)
            created = True

        logger.info(
            f"Restoring snapshot {snapshot_name} into {dest_volume}",
            extra={"operation": "restore", "snapshot": snapshot_name,
                   "volume": dest_volume, "overwrite": clear},
        )
        side_effects = SIDE_EFFECTS_CLEANED_UP if created else SIDE_EFFECTS_LEFT

        start = time.monotonic()
        try:
            result = run_helper(
                self.client,
                self.image,
                restore_mounts(snapshot_name, dest_volume),
                extract_command(snapshot.compressed, clear=clear),
                reporter=self.reporter,
                operation="restore",
                name_hint="restore",
            )
            if result.exit_code == RUNNER_EXIT_CORRUPT:
                if not created and first_record(result, "writing") is None:
                    # refused before the destination was touched
                    side_effects = SIDE_EFFECTS_NONE
                raise CorruptSnapshot(
                    f"Snapshot {snapshot_name} is corrupt: {result.stderr or 'invalid archive layout'}",
                    stderr=result.stderr,
                )
            if not result.ok:
                raise HelperProcessFailed(
                    f"Extract helper exited with status {result.exit_code}",
                    exit_status=result.exit_code,
                    stderr=result.stderr,
                )
        except KeyboardInterrupt:
            logger.warning("Restore interrupted", extra={"volume": dest_volume})
            self._rollback(dest_volume, created)
            raise Cancelled(f"Restore into {dest_volume} cancelled",
                            side_effects=side_effects) from None
        except CorruptSnapshot as e:
            logger.error(e.message, extra={"snapshot": snapshot_name})
            if side_effects != SIDE_EFFECTS_NONE:
                self._rollback(dest_volume, created)
            raise CorruptSnapshot(e.message, stderr=e.stderr, side_effects=side_effects) from e
        except VsnapError as e:
            logger.error(f"Restore failed: {e.message}", extra={"volume": dest_volume})
            self._rollback(dest_volume, created)
            raise SnapshotRestoreFailed(
                f"Restoring {snapshot_name} into {dest_volume} failed: {e.message}",
                stderr=getattr(e, "stderr", ""),
                side_effects=side_effects,
            ) from e
        except Exception as e:
            logger.error(f"Restore failed: {e}", extra={"volume": dest_volume})
            self._rollback(dest_volume, created)
            raise SnapshotRestoreFailed(
                f"Restoring {snapshot_name} into {dest_volume} failed: {e}",
                side_effects=side_effects,
            ) from e

        logger.info(
            f"Restored {snapshot_name} into {dest_volume} in "
            f"{SystemUtils.format_duration(time.monotonic() - start)}",
            extra={"operation": "restore", "snapshot": snapshot_name, "volume": dest_volume},
        )

        self.dropped = False
        if drop_snapshot:
            try:
                self.client.remove_volume(snapshot_name)
            except VsnapError as e:
                # the restore itself succeeded; keep the snapshot and say so
                logger.warning(f"Restore succeeded but snapshot {snapshot_name} "
                               f"could not be dropped: {e.message}",
                               extra={"snapshot": snapshot_name})
            else:
                self.dropped = True
                logger.info(f"Dropped snapshot {snapshot_name}", extra={"snapshot": snapshot_name})

        return snapshot

    def _volume_exists(self, name: str) -> bool:
        try:
            self.client.inspect_volume(name)
            return True
        except NotFound:
            return False

    def _is_empty(self, volume: str) -> bool:
        """Check for content with a read-only probe helper."""
        result = run_helper(
            self.client,
            self.image,
            probe_mounts(volume),
            probe_command(),
            name_hint="probe",
        )
        record = first_record(result, "empty")
        if not result.ok or record is None:
            raise HelperProcessFailed(
                f"Could not inspect destination volume {volume} "
                f"(probe exited with status {result.exit_code})",
                exit_status=result.exit_code,
                stderr=result.stderr,
            )
        return ProbeReport.model_validate(record).empty

    def _rollback(self, dest_volume: str, created: bool):
        if not created:
            logger.warning(f"Destination volume {dest_volume} left as-is for inspection",
                           extra={"volume": dest_volume})
            return
        try:
            self.client.remove_volume(dest_volume, force=True)
            logger.info(f"Removed partially restored volume {dest_volume}",
                        extra={"volume": dest_volume})
        except NotFound:
            pass
        except VsnapError as e:
            logger.error(f"Could not remove destination volume {dest_volume}: {e.message}",
                         extra={"volume": dest_volume})
