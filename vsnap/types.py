################################################################################
# VSNAP
#
# @file:        types.py
# @module:      vsnap.types
# @description: Shared data models for volumes, snapshots and helper runs.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
# ==============================================================================
# Notes:
# - Volume mirrors the daemon's volume inspect payload
# - StdoutChunk / StderrChunk / ExitStatus form the helper event stream
# - ProgressEvent is parsed from the runner's JSON lines
################################################################################

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, model_validator

from .constants import RUNNER_EXIT_OK


# ---- Daemon DTOs ----

@dataclass
class Volume:
    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    driver: str = "local"
    created_at: Optional[str] = None
    mountpoint: Optional[str] = None

    @classmethod
    def from_attrs(cls, attrs: Dict) -> "Volume":
        """Build from a docker volume ``attrs`` dictionary."""
        return cls(
            name=attrs.get("Name", ""),
            labels=dict(attrs.get("Labels") or {}),
            driver=attrs.get("Driver", "local"),
            created_at=attrs.get("CreatedAt"),
            mountpoint=attrs.get("Mountpoint"),
        )


@dataclass(frozen=True)
class Mount:
    volume: str
    target: str
    read_only: bool = False


# ---- Helper event stream ----

@dataclass(frozen=True)
class StdoutChunk:
    data: bytes


@dataclass(frozen=True)
class StderrChunk:
    data: bytes


@dataclass(frozen=True)
class ExitStatus:
    code: int


HelperEvent = Union[StdoutChunk, StderrChunk, ExitStatus]


@dataclass
class HelperResult:
    exit_code: int
    stderr: str = ""
    records: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exit_code == RUNNER_EXIT_OK


# ---- Snapshots ----

@dataclass
class Snapshot:
    name: str
    compressed: bool
    created_at: datetime
    schema_version: str
    source_volume: Optional[str] = None


@dataclass
class SnapshotInfo:
    name: str
    compressed: Optional[bool] = None
    created_at: Optional[datetime] = None
    source_volume: Optional[str] = None
    size_bytes: Optional[int] = None
    size_error: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "SnapshotInfo":
        return cls(
            name=snapshot.name,
            compressed=snapshot.compressed,
            created_at=snapshot.created_at,
            source_volume=snapshot.source_volume,
        )


# ---- Runner wire models ----

class ProgressEvent(BaseModel):
    """Cumulative byte progress of one archive or extract run."""

    progress: int = Field(ge=0)
    total: int = Field(ge=0)
    operation: Optional[str] = None

    @model_validator(mode="after")
    def clamp_progress(self) -> "ProgressEvent":
        if self.progress > self.total:
            self.progress = self.total
        return self

    @property
    def fraction(self) -> float:
        if self.total == 0:
            return 1.0
        return self.progress / self.total


class SizeReport(BaseModel):
    size: int = Field(ge=0)


class ProbeReport(BaseModel):
    empty: bool
