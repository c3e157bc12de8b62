"""D+1 payout settlement for processed transactions."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update

from surplus_api.domain.marketplace.clock import resolve_now
from surplus_api.models.notification import NotificationTypeEnum, RecipientTypeEnum
from surplus_api.models.transaction import Transaction, TransactionStatusEnum
from surplus_api.services.notifications import NotificationService
from surplus_api.services.notifications.templates import render_payout_sent

from ._session import SessionFactory, open_session


def settlement_cutoff(now: datetime) -> datetime:
    """Start of the current UTC day; anything processed before it is due."""

    return datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)


async def settle_payouts(*, session_factory: SessionFactory, now: datetime | None = None) -> Dict[str, Any]:
    """Advance ``processed`` transactions from previous days to ``paid``, one restaurant at a time.

    Transactions processed on any earlier day are included so a missed run is
    caught up by the next one.
    """

    current = resolve_now(now)
    cutoff = settlement_cutoff(current)
    session = await open_session(session_factory)
    async with session as managed_session:
        notifications = NotificationService(managed_session)
        rows = (
            await managed_session.execute(
                select(Transaction.id, Transaction.restaurant_id, Transaction.restaurant_amount).where(
                    Transaction.status == TransactionStatusEnum.PROCESSED,
                    Transaction.processed_at < cutoff,
                )
            )
        ).all()

        by_restaurant: dict[UUID, list[tuple[UUID, Decimal]]] = defaultdict(list)
        for transaction_id, restaurant_id, amount in rows:
            by_restaurant[restaurant_id].append((transaction_id, Decimal(amount)))

        paid_transactions = 0
        restaurants_paid = 0
        failures = 0
        for restaurant_id, entries in by_restaurant.items():
            try:
                settled = Decimal("0.00")
                count = 0
                for transaction_id, amount in entries:
                    result = await managed_session.execute(
                        update(Transaction)
                        .where(
                            Transaction.id == transaction_id,
                            Transaction.status == TransactionStatusEnum.PROCESSED,
                        )
                        .values(status=TransactionStatusEnum.PAID, paid_at=current)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        settled += amount
                        count += 1
                if count:
                    await notifications.emit(
                        recipient_type=RecipientTypeEnum.RESTAURANT,
                        recipient_id=restaurant_id,
                        notification_type=NotificationTypeEnum.PAYOUT_SENT,
                        rendered=render_payout_sent(amount=settled, orders=count),
                        dedup_key=f"payout:{restaurant_id}:{cutoff.date().isoformat()}",
                        now=current,
                    )
                await managed_session.commit()
            except Exception as exc:
                await managed_session.rollback()
                failures += 1
                logger.exception("Payout settlement failed", restaurant_id=str(restaurant_id), error=str(exc))
                continue
            if count:
                paid_transactions += count
                restaurants_paid += 1
                logger.info(
                    "Restaurant payout settled",
                    restaurant_id=str(restaurant_id),
                    transactions=count,
                    amount=str(settled),
                )

    summary = {
        "cutoff": cutoff.isoformat(),
        "transactions_paid": paid_transactions,
        "restaurants_paid": restaurants_paid,
        "failures": failures,
    }
    logger.bind(summary=summary).info("Payout settlement completed")
    return summary


__all__ = ["settle_payouts", "settlement_cutoff"]
