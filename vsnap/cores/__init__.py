"""Core snapshot engine modules for vsnap."""

from .docker_client import DockerClient
from .inventory import VolumeInventory
from .progress import LoggingProgressSink, ProgressReporter, RichProgressSink
from .restore_manager import SnapshotRestorer
from .snapshot_manager import SnapshotProducer

__all__ = [
    'DockerClient',
    'VolumeInventory',
    'ProgressReporter',
    'RichProgressSink',
    'LoggingProgressSink',
    'SnapshotRestorer',
    'SnapshotProducer',
]
