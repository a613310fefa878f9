################################################################################
# VSNAP
#
# @file:        constants.py
# @module:      vsnap.constants
# @description: Label schema, container paths, archive names and exit codes.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
################################################################################

"""
Constants used throughout vsnap.

Everything that makes a snapshot volume interoperable (label keys, the
archive file names and the fixed mount paths inside the helper container)
lives here so that both the engine and the in-container runner agree on it.
"""

import re
from pathlib import Path

# Version information
VERSION = "0.6.0"

# Default paths
DEFAULT_CONFIG_PATHS = {
    'root': Path('/etc/vsnap.conf'),
    'user': Path.home() / '.config' / 'vsnap' / 'config.conf'
}

# Helper image
DEFAULT_HELPER_IMAGE = f'vsnap/runner:{VERSION}'

# Snapshot volume labels
SNAPSHOT_MARKER_LABEL = 'vsnap.snapshot'
SNAPSHOT_SCHEMA_LABEL = 'vsnap.schema'
SNAPSHOT_COMPRESSION_LABEL = 'vsnap.compression'
SNAPSHOT_CREATED_AT_LABEL = 'vsnap.created-at'
SNAPSHOT_SOURCE_LABEL = 'vsnap.source'
OWNER_TOKEN_LABEL = 'vsnap.token'
HELPER_CONTAINER_LABEL = 'vsnap.helper'

MARKER_VALUE = 'true'
SCHEMA_VERSION = '1'
SUPPORTED_SCHEMA_VERSIONS = ('1',)

# Mount points inside the helper container
SOURCE_DIR = '/mnt/source'
SNAPSHOT_DIR = '/mnt/snapshot'
RESTORE_DIR = '/mnt/restore'

# Archive layout inside a snapshot volume
SNAPSHOT_TAR = 'snapshot.tar'
SNAPSHOT_TAR_ZST = 'snapshot.tar.zst'
PARTIAL_SUFFIX = '.partial'
ZSTD_LEVEL = 3

# Docker volume names: first char alnum, then alnum or _.-
VOLUME_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9_.-]+$')

# Runner exit codes
RUNNER_EXIT_OK = 0
RUNNER_EXIT_FAILURE = 1
RUNNER_EXIT_CORRUPT = 3

# Progress emission throttling (runner side)
PROGRESS_MIN_BYTES = 1024 * 1024
PROGRESS_MIN_INTERVAL = 0.1

# Progress reporter queue
PROGRESS_QUEUE_SIZE = 256

# Kept tail of helper stderr attached to errors
STDERR_TAIL_BYTES = 64 * 1024

# Timeouts (in seconds)
DOCKER_API_TIMEOUT = 60
HELPER_STDERR_JOIN_TIMEOUT = 5.0

# Worker sizing for inventory size computation
RAM_WORKER_THRESHOLDS = [
    (2, 1),    # <= 2GB: 1 worker
    (4, 2),    # <= 4GB: 2 workers
    (8, 4),    # <= 8GB: 4 workers
    (float('inf'), 6)  # > 8GB: 6 workers
]
MAX_INVENTORY_WORKERS = 8

# CLI exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PRECONDITION = 2
EXIT_DAEMON_UNREACHABLE = 3
EXIT_OPERATION_FAILED = 4
EXIT_CORRUPT_SNAPSHOT = 5
EXIT_CANCELLED = 130

# Logging
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
