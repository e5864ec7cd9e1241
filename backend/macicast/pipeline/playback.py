"""
Playback resolution.

Chooses which item a client should play next.

- Shuffle (provider_metadata.shuffle): uniform choice among READY items,
  current_item_index is left alone
- Sequential: move to the nearest READY item after the current one,
  wrapping around; the new index is written in one store transaction
- No READY items: None, nothing is written
- Stopped jobs resolve to None in both modes
"""

import logging
import random
from typing import Optional

from ..jobs.models import Job, Item, ItemStatus, JobStatus
from ..jobs.store import JobStore

logger = logging.getLogger(__name__)


def next_ready_index(job: Job) -> Optional[int]:
    """
    Index of the first READY item after current_item_index, wrapping.

    The current item itself is only chosen when it is the sole READY item.
    """
    count = len(job.items)
    for step in range(1, count + 1):
        index = (job.current_item_index + step) % count
        if job.items[index].status == ItemStatus.READY:
            return index
    return None


class PlaybackResolver:
    """
    Next-item selection for polling clients.

    Args:
        store: Job record store
        rng: Random source for shuffle mode (tests pass a seeded Random)
    """

    def __init__(self, store: JobStore, rng: Optional[random.Random] = None):
        self._store = store
        self._rng = rng or random.Random()

    def next_item(self, job_id: str) -> Optional[Item]:
        """
        Select the next item to serve.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self._store.get(job_id)
        if job.status == JobStatus.STOPPED:
            return None
        if job.shuffle:
            ready = [item for item in job.items if item.status == ItemStatus.READY]
            if not ready:
                return None
            return self._rng.choice(ready)

        chosen: dict = {}

        def advance(stored: Job) -> bool:
            index = next_ready_index(stored)
            if index is None:
                return False
            chosen["index"] = index
            if index == stored.current_item_index:
                return False
            stored.current_item_index = index
            stored.playback_url = stored.items[index].playback_url or stored.playback_url
            return True

        written = self._store.mutate(job_id, advance, skip_if_stopped=True)
        if "index" not in chosen:
            return None

        index = chosen["index"]
        if written is not None:
            logger.debug(f"Job {job_id} playback advanced to item {index}")
            return written.items[index]
        return self._store.get(job_id).items[index]

    def current_item(self, job_id: str) -> Optional[Item]:
        """Item under current_item_index."""
        return self._store.get(job_id).current_item
