"""Startup recovery for interrupted clip generation jobs.

A process killed while ffmpeg was running leaves its video IN_PROGRESS.
The sweep runs once at startup, before any job can be started, and moves
those records to FAILED so they can be retried. It does not touch clip
files or the outputs list; the retry's clean slate step removes leftovers.
"""

from __future__ import annotations

import logging

from clip_qa.logging import get_logger
from clip_qa.models.video import JobState
from clip_qa.store import RecordStore

INTERRUPTED_JOB_MESSAGE = "job was interrupted by process termination; retry required"


def recover_interrupted_jobs(
    store: RecordStore,
    logger: logging.Logger | None = None,
) -> list[str]:
    """Mark every IN_PROGRESS record as FAILED.

    Args:
        store: Record store to repair
        logger: Logger to use

    Returns:
        IDs of the records that were repaired
    """
    logger = logger or get_logger(__name__)

    recovered = []
    for record in store.list():
        if record.job_state != JobState.IN_PROGRESS:
            continue
        store.update(
            record.id,
            job_state=JobState.FAILED,
            last_error=INTERRUPTED_JOB_MESSAGE,
        )
        recovered.append(record.id)
        logger.warning("Recovered interrupted job", extra={"video_id": record.id})

    if recovered:
        logger.info(f"Recovery sweep repaired {len(recovered)} interrupted job(s)")
    return recovered
