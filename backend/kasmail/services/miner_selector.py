"""
Miner reward target selection.

Picks one active address uniformly at random from the miner_addresses pool.
The pool is read fresh on every dispatch; an empty pool means "no miner
reward" rather than an error.
"""

import logging
import random
from typing import Awaitable, Callable, List, Optional

from fastapi.concurrency import run_in_threadpool

from kasmail.db import supabase_admin
from kasmail.models.dispatch import MinerAddress

logger = logging.getLogger(__name__)


def _list_active_miners_sync() -> List[MinerAddress]:
    if not supabase_admin:
        raise ValueError("SUPABASE_SERVICE_KEY is required to read the miner pool")

    result = (
        supabase_admin.table("miner_addresses")
        .select("address, rank, is_active")
        .eq("is_active", True)
        .execute()
    )
    return [
        MinerAddress(
            address=row["address"],
            rank=row.get("rank"),
            is_active=row.get("is_active", True),
        )
        for row in result.data or []
        if row.get("address")
    ]


async def list_active_miners() -> List[MinerAddress]:
    return await run_in_threadpool(_list_active_miners_sync)


async def select_miner(
    list_miners: Callable[[], Awaitable[List[MinerAddress]]] = list_active_miners,
    rng: Optional[random.Random] = None,
) -> Optional[MinerAddress]:
    """
    Return a uniformly random active miner, or None when none is available.

    Selection fairness is the goal, not unpredictability, so the default
    ``random`` module is used.
    """
    miners = [m for m in await list_miners() if m.is_active]
    if not miners:
        logger.info("Miner pool is empty; skipping miner reward")
        return None

    chooser = rng or random
    miner = miners[chooser.randrange(len(miners))]
    logger.info(f"Selected miner rank={miner.rank} from pool of {len(miners)}")
    return miner
