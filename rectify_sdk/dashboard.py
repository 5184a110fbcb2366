"""
Dashboard summary aggregation

Three independent account fetches (holdings, orders, transactions) feed one
``DashboardSummary``. Each fetch owns a disjoint set of summary fields:

- holdings: total_value, total_quantity, unique_facility_count, energy_type_count
- orders: active_order_count
- transactions: monthly_trading_quantity

A failed fetch leaves its fields at their previous values and never blocks
the other two. The summary object is immutable; the results of one refresh
are merged and swapped in with a single assignment.
"""

import asyncio
import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from .client import IdentityServiceClient
from .config import ClientSettings
from .exceptions import RectifyError
from .models import DashboardSummary, Transaction, User

logger = logging.getLogger(__name__)

ACTIVE_ORDER_STATUS = "active"
COMPLETED_STATUS = "completed"
DEFAULT_LOOKBACK_DAYS = 31  # covers month-to-date on the 31st

Clock = Callable[[], datetime]
Fields = Dict[str, Any]


def resolve_timezone(tz: Union[str, tzinfo]) -> tzinfo:
    if not isinstance(tz, str):
        return tz
    # UTC needs no zoneinfo database
    if tz.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(tz)


def month_start(now: datetime, tz: tzinfo) -> datetime:
    """First instant of the calendar month containing ``now`` in ``tz``"""
    local = now.astimezone(tz)
    return local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def monthly_quantity(transactions: List[Transaction], since: datetime) -> float:
    """Sum quantities of completed transactions completed at or after ``since``"""
    total = 0.0
    for transaction in transactions:
        if transaction.status not in (None, COMPLETED_STATUS):
            continue
        completed_at = transaction.completed_at
        if completed_at is None:
            continue
        if completed_at.tzinfo is None:
            completed_at = completed_at.replace(tzinfo=timezone.utc)
        if completed_at >= since:
            total += transaction.quantity
    return total


class DashboardAggregator:
    """Derives the dashboard summary from the user's account collections"""

    def __init__(self, client: IdentityServiceClient,
                 lookback_days: int = DEFAULT_LOOKBACK_DAYS,
                 tz: Union[str, tzinfo] = "UTC",
                 clock: Optional[Clock] = None):
        self.client = client
        self.lookback_days = lookback_days
        self.tz = resolve_timezone(tz)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._summary = DashboardSummary()
        # Per-fetch generation counters: issued vs. last applied
        self._issued = {"holdings": 0, "orders": 0, "transactions": 0}
        self._applied = {"holdings": 0, "orders": 0, "transactions": 0}
        self._closed = False

    @classmethod
    def from_settings(cls, client: IdentityServiceClient,
                      settings: ClientSettings) -> 'DashboardAggregator':
        return cls(
            client,
            lookback_days=settings.transaction_lookback_days,
            tz=settings.summary_timezone
        )

    @property
    def summary(self) -> DashboardSummary:
        return self._summary

    def close(self) -> None:
        """Stop applying results; fetches still in flight are discarded"""
        self._closed = True

    async def refresh(self, user: Optional[User]) -> DashboardSummary:
        """Run the three fetches concurrently and return the resulting summary"""
        if user is None:
            logger.debug("Dashboard refresh skipped: no active session")
            return self._summary
        if self._closed:
            return self._summary

        results = await asyncio.gather(
            self._run("holdings", self._fetch_holdings),
            self._run("orders", self._fetch_orders),
            self._run("transactions", self._fetch_transactions),
        )
        if self._closed:
            return self._summary

        update: Fields = {}
        for result in results:
            if result is None:
                continue
            name, generation, fields = result
            if generation < self._applied[name]:
                logger.debug(f"Dropping stale dashboard {name} result (generation {generation})")
                continue
            self._applied[name] = generation
            update.update(fields)

        # One swap per refresh
        if update:
            self._summary = self._summary.model_copy(
                update={**update, "updated_at": self._clock()}
            )
        return self._summary

    async def _run(self, name: str,
                   fetch: Callable[[], Awaitable[Fields]]) -> Optional[Tuple[str, int, Fields]]:
        self._issued[name] += 1
        generation = self._issued[name]

        try:
            fields = await fetch()
        except RectifyError as e:
            logger.warning(f"Dashboard {name} fetch failed, keeping previous values: {e.message}")
            return None
        except Exception:
            logger.exception(f"Dashboard {name} fetch failed unexpectedly")
            return None

        return name, generation, fields

    async def _fetch_holdings(self) -> Fields:
        holdings = await self.client.get_user_holdings()
        return {
            "total_value": holdings.total_value,
            "total_quantity": holdings.total_quantity,
            "unique_facility_count": len(set(holdings.unique_facilities)),
            "energy_type_count": len(set(holdings.energy_types)),
        }

    async def _fetch_orders(self) -> Fields:
        orders = await self.client.get_user_orders()
        return {
            "active_order_count": sum(
                1 for order in orders if order.status == ACTIVE_ORDER_STATUS
            )
        }

    async def _fetch_transactions(self) -> Fields:
        transactions = await self.client.get_user_transactions(
            self.lookback_days, COMPLETED_STATUS
        )
        since = month_start(self._clock(), self.tz)
        return {"monthly_trading_quantity": monthly_quantity(transactions, since)}
