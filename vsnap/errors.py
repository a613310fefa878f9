################################################################################
# VSNAP
#
# @file:        errors.py
# @module:      vsnap.errors
# @description: Error taxonomy shared by the daemon adapter and the engine.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
################################################################################

"""
Error kinds raised by vsnap.

Every error carries the CLI exit code for its kind and a ``side_effects``
marker telling the operator whether anything was changed:

- ``none``: a precondition failed before any mutating action
- ``cleaned_up``: partial effects occurred and were rolled back
- ``left_for_inspection``: partial effects were intentionally kept
"""

from typing import Optional

from .constants import (
    EXIT_CANCELLED,
    EXIT_CORRUPT_SNAPSHOT,
    EXIT_DAEMON_UNREACHABLE,
    EXIT_ERROR,
    EXIT_OPERATION_FAILED,
    EXIT_PRECONDITION,
)

SIDE_EFFECTS_NONE = "none"
SIDE_EFFECTS_CLEANED_UP = "cleaned_up"
SIDE_EFFECTS_LEFT = "left_for_inspection"


class VsnapError(Exception):
    """Base class for all vsnap errors."""

    exit_code = EXIT_ERROR

    def __init__(self, message: str, side_effects: str = SIDE_EFFECTS_NONE):
        super().__init__(message)
        self.message = message
        self.side_effects = side_effects


class DaemonUnreachable(VsnapError):
    """The Docker Engine API cannot be reached."""

    exit_code = EXIT_DAEMON_UNREACHABLE


class DaemonError(VsnapError):
    """The daemon answered with an error that has no more specific kind."""

    exit_code = EXIT_OPERATION_FAILED


class AlreadyExists(VsnapError):
    """A volume with the requested name already exists."""

    exit_code = EXIT_PRECONDITION


class NotFound(VsnapError):
    """A volume, container or image does not exist."""

    exit_code = EXIT_PRECONDITION


class NotASnapshot(NotFound):
    """A volume exists but does not carry the snapshot marker label."""


class InUse(VsnapError):
    """A volume is referenced by a container."""

    exit_code = EXIT_PRECONDITION


class InvalidName(VsnapError):
    """A volume name is not acceptable to the daemon or to vsnap."""

    exit_code = EXIT_PRECONDITION


class DestinationExists(VsnapError):
    """Restore target has content and overwrite was not requested."""

    exit_code = EXIT_PRECONDITION


class ImagePullFailed(VsnapError):
    """The helper image is missing locally and could not be pulled."""

    exit_code = EXIT_OPERATION_FAILED


class ContainerCreateFailed(VsnapError):
    """The daemon refused to create or start a helper container."""

    exit_code = EXIT_OPERATION_FAILED


class HelperProcessFailed(VsnapError):
    """The archive/extract helper exited with a nonzero status."""

    exit_code = EXIT_OPERATION_FAILED

    def __init__(self, message: str, exit_status: int, stderr: str = "",
                 side_effects: str = SIDE_EFFECTS_NONE):
        super().__init__(message, side_effects)
        self.exit_status = exit_status
        self.stderr = stderr


class CorruptSnapshot(VsnapError):
    """A marked volume does not hold exactly one well-formed archive."""

    exit_code = EXIT_CORRUPT_SNAPSHOT

    def __init__(self, message: str, stderr: str = "",
                 side_effects: str = SIDE_EFFECTS_NONE):
        super().__init__(message, side_effects)
        self.stderr = stderr


class SnapshotCreationFailed(VsnapError):
    """Creating a snapshot failed after the snapshot volume was created."""

    exit_code = EXIT_OPERATION_FAILED

    def __init__(self, message: str, stderr: str = "",
                 side_effects: str = SIDE_EFFECTS_CLEANED_UP):
        super().__init__(message, side_effects)
        self.stderr = stderr


class SnapshotRestoreFailed(VsnapError):
    """Extracting a snapshot into the destination volume failed."""

    exit_code = EXIT_OPERATION_FAILED

    def __init__(self, message: str, stderr: str = "",
                 side_effects: str = SIDE_EFFECTS_LEFT):
        super().__init__(message, side_effects)
        self.stderr = stderr


class Cancelled(VsnapError):
    """The operation was interrupted; created resources were released."""

    exit_code = EXIT_CANCELLED

    def __init__(self, message: str = "Operation cancelled",
                 side_effects: str = SIDE_EFFECTS_CLEANED_UP):
        super().__init__(message, side_effects)


def describe_side_effects(error: VsnapError) -> Optional[str]:
    """Human readable note about what an error left behind."""
    if error.side_effects == SIDE_EFFECTS_CLEANED_UP:
        return "Partial changes were rolled back."
    if error.side_effects == SIDE_EFFECTS_LEFT:
        return "The destination volume was left as-is for inspection."
    return None
