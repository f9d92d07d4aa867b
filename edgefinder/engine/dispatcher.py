"""
Opportunity dispatcher.

Turns an approved opportunity into one BetOrder per leg, hands each order
to the execution mode and records what came back. A leg that cannot be
placed gives its stake back to the ledger, so failed placements never
hold exposure budget. Settlement feedback arrives through ``settle``.
"""

import asyncio
import uuid
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Optional

import structlog

from edgefinder.errors import PlacementError
from edgefinder.models.schemas import (
    EDGEFINDER_NAMESPACE,
    BetOrder,
    BetResult,
    BetStatus,
    BettingOpportunity,
    ZERO,
)
from edgefinder.modes.base import ExecutionMode
from edgefinder.risk.manager import RiskDecision, RiskManager
from edgefinder.storage.journal import Journal
from edgefinder.utils.alerts import AlertSink

logger = structlog.get_logger()

CENT = Decimal("0.01")


def split_stake(opportunity: BettingOpportunity, stake: Decimal) -> list[Decimal]:
    """
    Divide an approved stake over the legs by stake weight.

    Each leg is rounded down to cents; the rounding remainder goes to the
    last leg so the legs always add up to the approved stake.
    """
    stakes = [
        (stake * leg.stake_weight).quantize(CENT, rounding=ROUND_DOWN)
        for leg in opportunity.legs[:-1]
    ]
    stakes.append(stake - sum(stakes, ZERO))
    return stakes


def order_id_for(opportunity_id: str, leg_index: int) -> str:
    return str(uuid.uuid5(EDGEFINDER_NAMESPACE, f"{opportunity_id}:{leg_index}"))


class OpportunityDispatcher:
    """
    Routes approved opportunities to the execution boundary.

    Usage:
        dispatcher = OpportunityDispatcher(risk_manager, ShadowMode(), journal, LogAlertSink())
        orders = await dispatcher.dispatch(opportunity, decision)
        await dispatcher.settle(orders[0].order_id, BetResult.WIN)
    """

    def __init__(
        self,
        risk: RiskManager,
        mode: ExecutionMode,
        journal: Journal,
        alerts: Optional[AlertSink] = None,
        min_edge_for_alert: Decimal = ZERO,
    ):
        self.risk = risk
        self.mode = mode
        self.journal = journal
        self.alerts = alerts
        self.min_edge_for_alert = min_edge_for_alert
        self.logger = logger.bind(component="dispatcher", mode=mode.name)

        self._dispatched = 0
        self._placed = 0
        self._failed = 0
        self._settled = 0
        self._rejections = 0
        self._realized_pnl = ZERO

    async def _publish(self, event: dict) -> None:
        if self.alerts is None:
            return
        try:
            delivered = await self.alerts.publish(event)
        except Exception as e:
            self.logger.warning("Alert publish failed", alert_type=event.get("type"), error=str(e))
            return
        if not delivered:
            self.logger.debug("Alert not delivered", alert_type=event.get("type"))

    # =========================================================================
    # Dispatch
    # =========================================================================

    def record_rejection(self, opportunity: BettingOpportunity, decision: RiskDecision) -> None:
        """Journal a rejected opportunity for audit."""
        self._rejections += 1
        self.journal.append_decision(decision)

    async def dispatch(self, opportunity: BettingOpportunity, decision: RiskDecision) -> list[BetOrder]:
        """
        Place every leg of an approved opportunity.

        Returns:
            The orders created (PLACED or FAILED); empty if not approved
        """
        if not decision.approved:
            self.record_rejection(opportunity, decision)
            return []

        self._dispatched += 1
        self.journal.append_decision(decision)

        orders = []
        for index, (leg, stake) in enumerate(zip(opportunity.legs, split_stake(opportunity, decision.stake))):
            order = BetOrder(
                order_id=order_id_for(opportunity.opportunity_id, index),
                opportunity_id=opportunity.opportunity_id,
                strategy=opportunity.strategy,
                event_id=opportunity.event_id,
                sport=opportunity.sport,
                market=opportunity.market,
                provider=leg.provider,
                selection=leg.selection,
                stake=stake,
                odds=leg.odds,
                line=leg.line,
                status=BetStatus.APPROVED,
            )
            self.journal.append_order(order)
            orders.append(order)

        try:
            for order in orders:
                await self._place(order)
        except asyncio.CancelledError:
            # Legs never confirmed give their stake back before the cancel propagates
            for order in orders:
                if order.status == BetStatus.APPROVED:
                    await self._fail(order, "placement cancelled")
            raise

        if opportunity.edge >= self.min_edge_for_alert:
            await self._publish({
                "type": "opportunity_approved",
                "opportunity_id": opportunity.opportunity_id,
                "strategy": opportunity.strategy,
                "event_id": opportunity.event_id,
                "sport": opportunity.sport,
                "market": opportunity.market.value,
                "edge": str(opportunity.edge),
                "stake": str(decision.stake),
                "downsized": decision.downsized,
                "legs": [
                    {
                        "provider": o.provider,
                        "selection": o.selection,
                        "odds": str(o.odds),
                        "stake": str(o.stake),
                        "status": o.status.value,
                    }
                    for o in orders
                ],
            })
        return orders

    async def _place(self, order: BetOrder) -> None:
        try:
            confirmation = await self.mode.place_or_alert(order)
        except PlacementError as e:
            await self._fail(order, e.message)
            return
        except Exception as e:
            # Unexpected mode errors are failed placements, the batch carries on
            await self._fail(order, f"{type(e).__name__}: {e}")
            return

        order.mark_placed(confirmation)
        self._placed += 1
        self.journal.append_order(order)
        self.logger.info(
            "Order placed",
            order_id=order.order_id,
            provider=order.provider,
            channel=confirmation.channel,
            reference=confirmation.reference,
            stake=str(order.stake),
        )

    async def _fail(self, order: BetOrder, reason: str) -> None:
        order.mark_failed(reason)
        self._failed += 1
        released = await self.risk.release(order.opportunity_id, order.stake)
        self.journal.append_order(order)
        self.logger.warning(
            "Placement failed, stake released",
            order_id=order.order_id,
            provider=order.provider,
            released=str(released),
            error=reason,
        )

    # =========================================================================
    # Settlement
    # =========================================================================

    async def settle(
        self,
        order_id: str,
        result: BetResult,
        settled_at: Optional[datetime] = None,
    ) -> BetOrder:
        """
        Apply external settlement feedback to a placed order.

        Raises:
            KeyError: unknown order id
            InvalidTransitionError: the order is not PLACED
        """
        order = self.journal.get_order(order_id)
        if order is None:
            raise KeyError(f"unknown order {order_id}")

        pnl = order.settle(result, settled_at or self.risk.now())
        await self.risk.settle(order)
        self.journal.append_order(order)
        self._settled += 1
        self._realized_pnl += pnl

        self.logger.info(
            "Bet settled",
            order_id=order.order_id,
            result=result.value,
            stake=str(order.stake),
            profit_loss=str(pnl),
        )
        await self._publish({
            "type": "bet_settled",
            "order_id": order.order_id,
            "opportunity_id": order.opportunity_id,
            "strategy": order.strategy,
            "event_id": order.event_id,
            "provider": order.provider,
            "selection": order.selection,
            "odds": str(order.odds),
            "stake": str(order.stake),
            "result": result.value,
            "profit_loss": str(pnl),
        })
        return order

    def get_metrics(self) -> dict:
        return {
            "mode": self.mode.name,
            "dispatched": self._dispatched,
            "placed": self._placed,
            "failed": self._failed,
            "settled": self._settled,
            "rejections": self._rejections,
            "realized_pnl": str(self._realized_pnl),
        }
