"""
Reconnect sync: pushes entities that only exist on this device.

Cached entities with placeholder ids whose create was never sent (restored
from the local mirror, or added from an imported project) are created
remotely and re-keyed in the cache. The mirror is then rewritten so a
failed entity is tried again on the next reconnect.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sync.mutator import OptimisticMutator

logger = logging.getLogger(__name__)


@dataclass
class OfflineSyncResult:
    synced: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {"synced": self.synced, "failed": self.failed}


async def push_local_entities(
    mutator: OptimisticMutator, *, update_existing: bool = False
) -> OfflineSyncResult:
    """Sends every local-only entity of one kind and waits for the outcomes.

    An empty cache is seeded from the mirror first. With update_existing,
    entities the server already knows are also written back with their
    cached values, which overwrites newer remote edits.
    """
    result = OfflineSyncResult()
    mutator.seed_from_mirror()
    entity_ids = mutator.push_local(update_existing=update_existing)
    if not entity_ids:
        return result

    outcomes = await asyncio.gather(
        *(mutator.wait_settled(entity_id) for entity_id in entity_ids),
        return_exceptions=True,
    )
    for entity_id, outcome in zip(entity_ids, outcomes):
        if isinstance(outcome, Exception):
            logger.warning("Offline sync of %s %s failed: %s", mutator.kind, entity_id, outcome)
            result.failed += 1
        else:
            result.synced += 1

    mutator.write_mirror()
    logger.info("Offline sync of %s: %s", mutator.kind, result.as_dict())
    return result
