################################################################################
# VSNAP
#
# @file:        archive_codec.py
# @module:      vsnap.cores.archive_codec
# @description: Snapshot label schema, helper commands and runner output parsing.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
# ==============================================================================
# Notes:
# - The compression flag is always taken from the label, never sniffed from
#   the archive bytes
# - Command lists are arguments for the helper image entrypoint (vsnap-runner)
################################################################################

"""
On-volume shape of a snapshot and the helper invocations that produce it.

A snapshot is a volume carrying the ``vsnap.*`` labels and exactly one
archive file. This module translates between labels and ``Snapshot``
objects, builds the mount sets and command lines for the helper container,
and decodes the newline-delimited JSON the runner writes to stdout.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..constants import (
    MARKER_VALUE,
    RESTORE_DIR,
    SCHEMA_VERSION,
    SNAPSHOT_COMPRESSION_LABEL,
    SNAPSHOT_CREATED_AT_LABEL,
    SNAPSHOT_DIR,
    SNAPSHOT_MARKER_LABEL,
    SNAPSHOT_SCHEMA_LABEL,
    SNAPSHOT_SOURCE_LABEL,
    SOURCE_DIR,
    SUPPORTED_SCHEMA_VERSIONS,
    VOLUME_NAME_PATTERN,
)
from ..errors import CorruptSnapshot, InvalidName, NotASnapshot
from ..helpers.logging import get_logger
from ..types import Mount, Snapshot, Volume

logger = get_logger(__name__)

_BOOL_LABELS = {"true": True, "false": False}


# ---- Names ----

def validate_volume_name(name: str, role: str = "volume"):
    """
    Raises:
        InvalidName: If the daemon would reject ``name``
    """
    if not name or not VOLUME_NAME_PATTERN.match(name):
        raise InvalidName(
            f"Invalid {role} name '{name}': use letters, digits and _.- "
            f"(at least two characters, starting with a letter or digit)"
        )


# ---- Labels ----

def encode_labels(compress: bool, source_volume: Optional[str] = None,
                  created_at: Optional[datetime] = None) -> Dict[str, str]:
    """Labels identifying a snapshot volume."""
    created_at = created_at or datetime.now(timezone.utc)
    labels = {
        SNAPSHOT_MARKER_LABEL: MARKER_VALUE,
        SNAPSHOT_SCHEMA_LABEL: SCHEMA_VERSION,
        SNAPSHOT_COMPRESSION_LABEL: "true" if compress else "false",
        SNAPSHOT_CREATED_AT_LABEL: created_at.astimezone(timezone.utc).isoformat(),
    }
    if source_volume:
        labels[SNAPSHOT_SOURCE_LABEL] = source_volume
    return labels


def is_snapshot_volume(volume: Volume) -> bool:
    return volume.labels.get(SNAPSHOT_MARKER_LABEL) == MARKER_VALUE


def decode_snapshot(volume: Volume) -> Snapshot:
    """
    Interpret a volume's labels as a snapshot.

    Raises:
        NotASnapshot: The volume lacks the marker label
        CorruptSnapshot: The marker is present but other labels are invalid
    """
    labels = volume.labels
    if not is_snapshot_volume(volume):
        raise NotASnapshot(f"Volume {volume.name} is not a vsnap snapshot")

    schema = labels.get(SNAPSHOT_SCHEMA_LABEL)
    if schema not in SUPPORTED_SCHEMA_VERSIONS:
        raise CorruptSnapshot(
            f"Snapshot {volume.name} has unsupported schema version {schema!r}"
        )

    compression = labels.get(SNAPSHOT_COMPRESSION_LABEL)
    if compression not in _BOOL_LABELS:
        raise CorruptSnapshot(
            f"Snapshot {volume.name} has invalid compression label {compression!r}"
        )

    raw_created = labels.get(SNAPSHOT_CREATED_AT_LABEL) or ""
    try:
        created_at = datetime.fromisoformat(raw_created.replace("Z", "+00:00"))
    except ValueError:
        raise CorruptSnapshot(
            f"Snapshot {volume.name} has invalid creation timestamp {raw_created!r}"
        ) from None
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)

    return Snapshot(
        name=volume.name,
        compressed=_BOOL_LABELS[compression],
        created_at=created_at,
        schema_version=schema,
        source_volume=labels.get(SNAPSHOT_SOURCE_LABEL),
    )


# ---- Mounts ----

def snapshot_mounts(source_volume: str, snapshot_volume: str) -> List[Mount]:
    return [
        Mount(source_volume, SOURCE_DIR, read_only=True),
        Mount(snapshot_volume, SNAPSHOT_DIR),
    ]


def restore_mounts(snapshot_volume: str, dest_volume: str) -> List[Mount]:
    return [
        Mount(snapshot_volume, SNAPSHOT_DIR, read_only=True),
        Mount(dest_volume, RESTORE_DIR),
    ]


def size_mounts(snapshot_volume: str) -> List[Mount]:
    return [Mount(snapshot_volume, SNAPSHOT_DIR, read_only=True)]


def probe_mounts(volume: str) -> List[Mount]:
    return [Mount(volume, RESTORE_DIR, read_only=True)]


# ---- Commands ----

def archive_command(compress: bool) -> List[str]:
    command = ["snapshot"]
    if compress:
        command.append("--compress")
    return command + [SOURCE_DIR, SNAPSHOT_DIR]


def extract_command(compress: bool, clear: bool = False) -> List[str]:
    command = ["restore"]
    if compress:
        command.append("--compress")
    if clear:
        command.append("--clear")
    return command + [SNAPSHOT_DIR, RESTORE_DIR]


def size_command(compress: bool) -> List[str]:
    command = ["size"]
    if compress:
        command.append("--compress")
    return command + [SNAPSHOT_DIR]


def probe_command() -> List[str]:
    return ["probe", RESTORE_DIR]


# ---- Runner output ----

class OutputDecoder:
    """
    Incremental decoder for the runner's JSON-lines stdout.

    Chunks from the daemon do not respect line boundaries; partial lines
    are buffered until their newline arrives.
    """

    def __init__(self):
        self._buffer = b""

    def feed(self, data: bytes) -> List[Dict[str, Any]]:
        self._buffer += data
        *lines, self._buffer = self._buffer.split(b"\n")
        return self._parse(lines)

    def flush(self) -> List[Dict[str, Any]]:
        """Parse whatever is left once the stream has ended."""
        rest, self._buffer = self._buffer, b""
        return self._parse([rest])

    def _parse(self, lines: List[bytes]) -> List[Dict[str, Any]]:
        records = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                logger.debug(f"Ignoring non-JSON runner output: {line[:200]!r}")
                continue
            if isinstance(record, dict):
                records.append(record)
        return records
