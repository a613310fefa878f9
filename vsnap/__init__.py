################################################################################
# VSNAP
#
# @file:        __init__.py
# @module:      vsnap
# @description: Exposes version, errors and the snapshot engine entry points.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
################################################################################

"""
vsnap: snapshot and restore Docker volumes.

A snapshot is a Docker volume labelled ``vsnap.snapshot=true`` that holds a
single tar archive (optionally zstd-compressed) of the source volume. All
file access happens inside short-lived helper containers.
"""

from .constants import VERSION

__version__ = VERSION

from .cores import (
    DockerClient,
    LoggingProgressSink,
    ProgressReporter,
    RichProgressSink,
    SnapshotProducer,
    SnapshotRestorer,
    VolumeInventory,
)
from .errors import VsnapError
from .helpers import Config, get_logger, log_manager
from .types import Snapshot, SnapshotInfo

__all__ = [
    "VERSION",
    "Config",
    "DockerClient",
    "SnapshotProducer",
    "SnapshotRestorer",
    "VolumeInventory",
    "ProgressReporter",
    "RichProgressSink",
    "LoggingProgressSink",
    "Snapshot",
    "SnapshotInfo",
    "VsnapError",
    "get_logger",
    "log_manager",
]
