"""Trade deletion guarded by the newest-first continuity rule."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.services.continuity import (
    NonContiguousSelectionError,
    group_by_fund_symbol,
    sort_newest_first,
    validate_bulk_selection,
)

logger = logging.getLogger(__name__)


class TradeNotFoundError(LookupError):
    pass


@dataclass
class DeleteOutcome:
    deleted_count: int
    requested_count: int
    deleted_ids: list[str] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)


class TradeService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find(self, trade_ids: list[str]) -> list:
        from fundledger.models.trade import Trade

        result = await self.db.execute(select(Trade).where(Trade.trade_id.in_(trade_ids)))
        return list(result.scalars().all())

    async def histories(self, groups: list[tuple[str, str]]) -> dict[tuple[str, str], list]:
        """Full trade history of every (fund, symbol) group, fetched in one query."""
        from fundledger.models.trade import Trade

        if not groups:
            return {}
        stmt = select(Trade).where(or_(*[
            and_(Trade.fund_id == uuid.UUID(fund_id), Trade.symbol_id == symbol_id)
            for fund_id, symbol_id in groups
        ]))
        result = await self.db.execute(stmt)
        history = group_by_fund_symbol(result.scalars().all())
        return {key: history.get(key, []) for key in groups}

    async def delete_trades(self, trade_ids: list[str]) -> DeleteOutcome:
        """Validate every (fund, symbol) group, then delete all requested trades or none."""
        from fundledger.models.trade import Trade

        requested_count = len(trade_ids)
        trade_ids = list(dict.fromkeys(trade_ids))
        selected = await self.find(trade_ids)
        if not selected:
            raise TradeNotFoundError("No trades found with the provided IDs")

        groups = list(group_by_fund_symbol(selected))
        histories = await self.histories(groups)
        issues = validate_bulk_selection(selected, lambda f, s: histories[(f, s)])
        if issues:
            for issue in issues:
                logger.info(f"Bulk delete rejected for {issue.fund_id}::{issue.symbol_id}: {issue.message}")
            raise NonContiguousSelectionError(issues)

        deleted_ids = [t.trade_id for t in sort_newest_first(selected)]
        result = await self.db.execute(
            delete(Trade).where(Trade.trade_id.in_(deleted_ids))
        )
        logger.info(f"Deleted {result.rowcount} trade(s) across {len(groups)} symbol group(s)")
        return DeleteOutcome(
            deleted_count=result.rowcount,
            requested_count=requested_count,
            deleted_ids=deleted_ids,
            groups=[f"{fund_id}::{symbol_id}" for fund_id, symbol_id in groups],
        )
