"""Escrow event subscription, run as a cron-invoked poll.

Each poll reads one batch of blocks past the stored checkpoint, applies the
escrow events in order and advances the checkpoint. Delivery is at-least-once:
when an event fails the checkpoint stops just before its block, so the next
poll repeats it (events already applied are no-ops the second time).
"""

from typing import Optional

from src.services.escrow_engine import EscrowEngine
from src.utils.errors import EscrowBackendError, LedgerUnavailable
from src.utils.logging import get_structured_logger, log_timing

logger = get_structured_logger(__name__)

CHECKPOINT_KEY = "escrow_events"


async def poll_escrow_events_once(
    engine: EscrowEngine,
    batch_blocks: int = 2000,
    checkpoint_key: str = CHECKPOINT_KEY,
) -> dict:
    """Apply the next batch of escrow events; returns a summary of the poll."""
    store = engine.store
    chain_tip = await engine.ledger.latest_block()
    last_seen: Optional[int] = await store.get_checkpoint(checkpoint_key)

    # First run starts one batch back from the tip
    watch_block = last_seen + 1 if last_seen is not None else max(chain_tip - batch_blocks + 1, 0)
    summary = {
        "from_block": watch_block,
        "to_block": chain_tip,
        "events": 0,
        "applied": 0,
        "failed": None,
        "checkpoint": last_seen,
    }
    if watch_block > chain_tip:
        return summary

    to_block = min(watch_block + batch_blocks - 1, chain_tip)
    summary["to_block"] = to_block

    with log_timing("escrow_events.poll", logger=logger, from_block=watch_block, to_block=to_block):
        events = await engine.get_events(watch_block, to_block)
        events.sort(key=lambda e: (e.block_number, e.log_index))
        summary["events"] = len(events)

        checkpoint = to_block
        for event in events:
            try:
                await engine.apply_ledger_event(event)
            except LedgerUnavailable:
                raise
            except EscrowBackendError as e:
                logger.error(
                    "Failed to apply escrow event, will retry",
                    event_name=event.name,
                    token_id=event.token_id,
                    transaction_hash=event.transaction_hash,
                    block_number=event.block_number,
                    error=e.message,
                )
                checkpoint = event.block_number - 1
                summary["failed"] = event.transaction_hash
                break
            summary["applied"] += 1

    if last_seen is None or checkpoint > last_seen:
        await store.set_checkpoint(checkpoint_key, checkpoint)
        summary["checkpoint"] = checkpoint

    logger.info(
        "Escrow event poll finished",
        from_block=watch_block,
        to_block=to_block,
        events=summary["events"],
        applied=summary["applied"],
        checkpoint=summary["checkpoint"],
    )
    return summary
