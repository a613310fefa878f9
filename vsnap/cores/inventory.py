################################################################################
# VSNAP
#
# @file:        inventory.py
# @module:      vsnap.cores.inventory
# @description: Lists, resolves and drops snapshot volumes.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
################################################################################

"""
Snapshot inventory.

Snapshots are found by their marker label. Archive sizes are measured by
short-lived read-only helpers, several at a time.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from ..constants import DEFAULT_HELPER_IMAGE, RUNNER_EXIT_CORRUPT, SNAPSHOT_MARKER_LABEL, MARKER_VALUE
from ..errors import Cancelled, CorruptSnapshot, HelperProcessFailed, NotASnapshot, NotFound, VsnapError
from ..helpers.logging import get_logger
from ..helpers.system_utils import SystemUtils
from ..types import SizeReport, Snapshot, SnapshotInfo
from .archive_codec import decode_snapshot, is_snapshot_volume, size_command, size_mounts
from .helper_run import first_record, run_helper

logger = get_logger(__name__)


class VolumeInventory:
    """Read access to the snapshots known to the daemon."""

    def __init__(self, client, config=None, max_workers: Optional[int] = None):
        self.client = client
        self.config = config
        self.image = config.helper_image if config else DEFAULT_HELPER_IMAGE
        self.pull_missing_image = config.pull_missing_image if config else True
        if max_workers is None:
            max_workers = config.parallel_workers if config else SystemUtils.get_optimal_workers()
        self.max_workers = max(1, max_workers)

    def list(self, compute_sizes: bool = False) -> List[SnapshotInfo]:
        """
        All snapshot volumes, in no particular order.

        Volumes whose labels are damaged are still listed, with ``size_error``
        explaining the problem.
        """
        volumes = [
            v for v in self.client.list_volumes({SNAPSHOT_MARKER_LABEL: MARKER_VALUE})
            if is_snapshot_volume(v)
        ]

        infos: List[SnapshotInfo] = []
        valid: Dict[str, Snapshot] = {}
        for volume in volumes:
            try:
                snapshot = decode_snapshot(volume)
            except CorruptSnapshot as e:
                infos.append(SnapshotInfo(name=volume.name, size_error=e.message))
                continue
            infos.append(SnapshotInfo.from_snapshot(snapshot))
            valid[snapshot.name] = snapshot

        logger.debug(f"Found {len(infos)} snapshot volume(s)")

        if compute_sizes and valid:
            self.client.ensure_image(self.image, pull=self.pull_missing_image)
            sizes = self._compute_sizes(list(valid.values()))
            for info in infos:
                if info.name in sizes:
                    info.size_bytes, info.size_error = sizes[info.name]

        return infos

    def get(self, snapshot_name: str) -> Snapshot:
        """
        Raises:
            NotFound: No such volume
            NotASnapshot: Volume lacks the marker label
            CorruptSnapshot: Labels are invalid
        """
        try:
            volume = self.client.inspect_volume(snapshot_name)
        except NotFound as e:
            raise NotFound(f"Snapshot {snapshot_name} not found") from e
        return decode_snapshot(volume)

    def size(self, snapshot: Snapshot) -> int:
        """Archive size in bytes, measured inside a read-only helper."""
        result = run_helper(
            self.client,
            self.image,
            size_mounts(snapshot.name),
            size_command(snapshot.compressed),
            name_hint="size",
        )
        if result.exit_code == RUNNER_EXIT_CORRUPT:
            raise CorruptSnapshot(
                f"Snapshot {snapshot.name} is corrupt: {result.stderr or 'invalid archive layout'}",
                stderr=result.stderr,
            )
        record = first_record(result, "size")
        if not result.ok or record is None:
            raise HelperProcessFailed(
                f"Size helper for {snapshot.name} exited with status {result.exit_code}",
                exit_status=result.exit_code,
                stderr=result.stderr,
            )
        return SizeReport.model_validate(record).size

    def drop(self, snapshot_name: str):
        """
        Remove a snapshot volume. Volumes without the marker label are refused.

        Raises:
            NotFound, NotASnapshot, InUse
        """
        try:
            volume = self.client.inspect_volume(snapshot_name)
        except NotFound as e:
            raise NotFound(f"Snapshot {snapshot_name} not found") from e
        if not is_snapshot_volume(volume):
            raise NotASnapshot(f"Volume {snapshot_name} is not a vsnap snapshot")

        self.client.remove_volume(snapshot_name)
        logger.info(f"Dropped snapshot {snapshot_name}",
                    extra={"operation": "drop", "snapshot": snapshot_name})

    def _compute_sizes(self, snapshots: List[Snapshot]) -> Dict[str, tuple]:
        results: Dict[str, tuple] = {}
        workers = min(self.max_workers, len(snapshots))
        logger.debug(f"Computing sizes of {len(snapshots)} snapshot(s) with {workers} worker(s)")

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vsnap-size")
        futures = {executor.submit(self.size, s): s.name for s in snapshots}
        try:
            for future in as_completed(futures):
                name = futures[future]
                try:
                    results[name] = (future.result(), None)
                except VsnapError as e:
                    logger.warning(f"Could not compute size of {name}: {e.message}",
                                   extra={"snapshot": name})
                    results[name] = (None, e.message)
        except KeyboardInterrupt:
            for future in futures:
                future.cancel()
            executor.shutdown(wait=True)
            raise Cancelled("Listing cancelled") from None
        executor.shutdown(wait=True)
        return results
