"""
Drive one helper container run to completion.

Consumes the adapter's event stream, turns progress lines into
``ProgressEvent``s for the reporter, logs stderr and keeps its tail for
error messages. The stream is always closed, which removes the container.
"""

from contextlib import closing
from typing import Optional, Sequence

from pydantic import ValidationError

from ..constants import STDERR_TAIL_BYTES
from ..errors import HelperProcessFailed
from ..helpers.logging import get_logger
from ..types import ExitStatus, HelperResult, Mount, ProgressEvent, StderrChunk, StdoutChunk
from .archive_codec import OutputDecoder

logger = get_logger(__name__)


def run_helper(client, image: str, mounts: Sequence[Mount], command: Sequence[str],
               reporter=None, operation: Optional[str] = None,
               name_hint: str = "helper") -> HelperResult:
    """
    Run a helper and collect its result.

    Args:
        client: Connected DockerClient
        reporter: Optional ProgressReporter receiving progress events
        operation: Tag stored on published progress events

    Returns:
        HelperResult with exit code, stderr tail and non-progress records
    """
    decoder = OutputDecoder()
    stderr_tail = bytearray()
    result = HelperResult(exit_code=-1)
    exit_code = None

    def dispatch(records):
        for record in records:
            if "progress" in record:
                try:
                    event = ProgressEvent.model_validate({**record, "operation": operation})
                except ValidationError:
                    logger.debug(f"Ignoring malformed progress record: {record}")
                    continue
                if reporter is not None:
                    reporter.publish(event)
            else:
                result.records.append(record)

    with closing(client.run_helper(image, mounts, command, name_hint=name_hint)) as events:
        for event in events:
            if isinstance(event, StdoutChunk):
                dispatch(decoder.feed(event.data))
            elif isinstance(event, StderrChunk):
                stderr_tail.extend(event.data)
                del stderr_tail[:-STDERR_TAIL_BYTES]
                for line in event.data.decode("utf-8", errors="replace").splitlines():
                    logger.debug(f"[{name_hint}] {line}", extra={"operation": operation})
            elif isinstance(event, ExitStatus):
                exit_code = event.code

    dispatch(decoder.flush())
    result.stderr = stderr_tail.decode("utf-8", errors="replace").strip()

    if exit_code is None:
        raise HelperProcessFailed("Helper container ended without an exit status",
                                  exit_status=-1, stderr=result.stderr)
    result.exit_code = exit_code
    return result


def first_record(result: HelperResult, key: str):
    """Return the first runner record carrying ``key``, or None."""
    for record in result.records:
        if key in record:
            return record
    return None
