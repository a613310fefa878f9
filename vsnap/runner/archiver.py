################################################################################
# VSNAP
#
# @file:        archiver.py
# @module:      vsnap.runner.archiver
# @description: Tar/zstd archiving and extraction executed inside the helper.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
################################################################################

"""
Archive operations of the helper container.

This code runs inside the helper image, with the volumes mounted at the
fixed paths from ``vsnap.constants``. It never talks to the daemon. Progress
is written to stdout as one JSON object per line; diagnostics go to stderr.

Snapshot volume layout: exactly one file, ``snapshot.tar`` or
``snapshot.tar.zst`` depending on the compression label. While an archive is
written it carries a ``.partial`` suffix, so an interrupted run never leaves
a file with the final name behind.
"""

import json
import os
import shutil
import stat
import sys
import tarfile
import time
from pathlib import Path
from typing import List, Optional, TextIO

import zstandard as zstd

from ..constants import (
    PARTIAL_SUFFIX,
    PROGRESS_MIN_BYTES,
    PROGRESS_MIN_INTERVAL,
    SNAPSHOT_TAR,
    SNAPSHOT_TAR_ZST,
    ZSTD_LEVEL,
)


class CorruptLayout(Exception):
    """Snapshot directory does not hold exactly one well-formed archive."""


class ProgressEmitter:
    """Writes throttled ``{"progress": n, "total": m}`` lines."""

    def __init__(self, total: int, stream: Optional[TextIO] = None,
                 min_bytes: int = PROGRESS_MIN_BYTES,
                 min_interval: float = PROGRESS_MIN_INTERVAL):
        self.total = max(0, total)
        self.progress = 0
        self.stream = stream if stream is not None else sys.stdout
        self.min_bytes = min_bytes
        self.min_interval = min_interval
        self._last_bytes = 0
        self._last_time = 0.0

    def advance(self, amount: int):
        if amount <= 0:
            return
        self.progress = min(self.progress + amount, self.total)
        now = time.monotonic()
        if (self.progress - self._last_bytes >= self.min_bytes
                or now - self._last_time >= self.min_interval):
            self._emit(now)

    def start(self):
        self._emit(time.monotonic())

    def finish(self):
        self.progress = self.total
        self._emit(time.monotonic())

    def _emit(self, now: float):
        self._last_bytes = self.progress
        self._last_time = now
        self.stream.write(json.dumps({"progress": self.progress, "total": self.total}) + "\n")
        self.stream.flush()


class ProgressWriter:
    """File-like sink that counts bytes passed on to ``inner``."""

    def __init__(self, inner, emitter: ProgressEmitter):
        self.inner = inner
        self.emitter = emitter

    def write(self, data) -> int:
        self.inner.write(data)
        self.emitter.advance(len(data))
        return len(data)

    def flush(self):
        self.inner.flush()


class ProgressReader:
    """File-like source that counts bytes read from ``inner``."""

    def __init__(self, inner, emitter: ProgressEmitter):
        self.inner = inner
        self.emitter = emitter

    def read(self, size: int = -1) -> bytes:
        data = self.inner.read(size)
        self.emitter.advance(len(data))
        return data


def archive_name(compress: bool) -> str:
    return SNAPSHOT_TAR_ZST if compress else SNAPSHOT_TAR


def calculate_total_size(path: Path) -> int:
    """Sum of regular file sizes below ``path`` (symlinks not followed)."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for filename in filenames:
            try:
                st = os.lstat(os.path.join(dirpath, filename))
            except OSError:
                continue
            if stat.S_ISREG(st.st_mode):
                total += st.st_size
    return total


def is_empty(path: Path) -> bool:
    with os.scandir(path) as entries:
        return next(entries, None) is None


def clear_directory(path: Path):
    """Remove everything below ``path`` but keep ``path`` (a mount point)."""
    with os.scandir(path) as entries:
        for entry in list(entries):
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path)
            else:
                os.unlink(entry.path)


def locate_archive(snapshot_dir: Path, compress: bool) -> Path:
    """
    Return the archive path, enforcing the one-file layout.

    Raises:
        CorruptLayout: If the directory holds anything but the expected file
    """
    expected = archive_name(compress)
    entries: List[str] = sorted(os.listdir(snapshot_dir))

    if not entries:
        raise CorruptLayout(f"No archive found in {snapshot_dir}")
    if entries != [expected]:
        raise CorruptLayout(
            f"Expected exactly one file '{expected}' in {snapshot_dir}, "
            f"found: {', '.join(entries)}"
        )

    archive = Path(snapshot_dir) / expected
    if archive.is_symlink() or not archive.is_file():
        raise CorruptLayout(f"{archive} is not a regular file")
    return archive


def archive_size(snapshot_dir: Path, compress: bool) -> int:
    return locate_archive(snapshot_dir, compress).stat().st_size


def snapshot(source_dir: Path, snapshot_dir: Path, compress: bool,
             stream: Optional[TextIO] = None) -> Path:
    """
    Archive ``source_dir`` into the single archive file of ``snapshot_dir``.

    The volume root itself is stored as ``.`` so its ownership and mode come
    back on restore. An empty source produces a valid, empty tar stream.

    Returns:
        Path of the written archive
    """
    source_dir = Path(source_dir)
    snapshot_dir = Path(snapshot_dir)

    if not is_empty(snapshot_dir):
        raise RuntimeError(f"Snapshot directory {snapshot_dir} is not empty")

    emitter = ProgressEmitter(calculate_total_size(source_dir), stream)
    emitter.start()

    final_path = snapshot_dir / archive_name(compress)
    partial_path = final_path.with_name(final_path.name + PARTIAL_SUFFIX)

    try:
        with open(partial_path, "wb") as f:
            if compress:
                cctx = zstd.ZstdCompressor(level=ZSTD_LEVEL)
                with cctx.stream_writer(f, closefd=False) as compressor:
                    _write_tar(source_dir, ProgressWriter(compressor, emitter))
            else:
                _write_tar(source_dir, ProgressWriter(f, emitter))
            f.flush()
            os.fsync(f.fileno())
        os.replace(partial_path, final_path)
    except BaseException:
        if partial_path.exists():
            partial_path.unlink()
        raise

    emitter.finish()
    return final_path


def _write_tar(source_dir: Path, sink):
    with tarfile.open(fileobj=sink, mode="w|", format=tarfile.PAX_FORMAT) as tar:
        tar.add(str(source_dir), arcname=".", recursive=False)
        for name in sorted(os.listdir(source_dir)):
            tar.add(str(source_dir / name), arcname=name, recursive=True)


def restore(snapshot_dir: Path, restore_dir: Path, compress: bool,
            clear: bool = False, stream: Optional[TextIO] = None):
    """
    Extract the archive of ``snapshot_dir`` into ``restore_dir``.

    Args:
        snapshot_dir: Mounted snapshot volume (read-only)
        restore_dir: Mounted destination volume
        compress: Compression flag taken from the snapshot label
        clear: Empty ``restore_dir`` before extracting

    Raises:
        CorruptLayout: Wrong layout or an unreadable archive
    """
    archive = locate_archive(Path(snapshot_dir), compress)
    restore_dir = Path(restore_dir)

    emitter = ProgressEmitter(archive.stat().st_size, stream)
    # restore_dir is modified from here on
    emitter.stream.write(json.dumps({"writing": True}) + "\n")
    emitter.stream.flush()

    if clear:
        clear_directory(restore_dir)

    emitter.start()

    # Archives are written by snapshot() above; keep modes and links verbatim.
    extract_kwargs = {"numeric_owner": True}
    if hasattr(tarfile, "fully_trusted_filter"):
        extract_kwargs["filter"] = "fully_trusted"

    try:
        with open(archive, "rb") as f:
            source = ProgressReader(f, emitter)
            if compress:
                dctx = zstd.ZstdDecompressor()
                with dctx.stream_reader(source) as decompressed:
                    with tarfile.open(fileobj=decompressed, mode="r|") as tar:
                        tar.extractall(str(restore_dir), **extract_kwargs)
            else:
                with tarfile.open(fileobj=source, mode="r|") as tar:
                    tar.extractall(str(restore_dir), **extract_kwargs)
    except (tarfile.TarError, zstd.ZstdError, EOFError) as e:
        raise CorruptLayout(f"Archive {archive.name} is unreadable: {e}") from e

    emitter.finish()
