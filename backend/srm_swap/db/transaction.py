"""
Transaction management utilities.

Every state-machine operation runs inside atomic() so a rejected or failed
transition never leaves a partial write behind (for example an item marked
SOLD while its trade is still PROPOSED).
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from srm_swap.core.exceptions import TradeError

logger = structlog.get_logger()


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Execute operations atomically - all or nothing.

    Usage:
        async with atomic(db) as session:
            await session.execute(update_trade)
            await session.execute(update_item)
            # Auto-commits on success, auto-rollbacks on exception

    Domain errors (invalid state, permission) are expected outcomes and are
    logged at info level; anything else is a persistence failure and is
    logged as an error. Both are re-raised after rollback.
    """
    try:
        yield db
        await db.commit()
    except TradeError as e:
        await db.rollback()
        logger.info("Transaction rejected", reason=str(e), error_type=e.error_type)
        raise
    except Exception as e:
        await db.rollback()
        logger.error("Transaction rolled back", error=str(e), exc_info=True)
        raise
