from __future__ import annotations

from decimal import Decimal
from typing import Optional

from tradewatch.core.types import Position, TradeKind
from tradewatch.ledger.differ import BalanceChange


def classify(change: BalanceChange, position: Optional[Position], dust_threshold: Decimal) -> Optional[TradeKind]:
    """Decide what a significant balance change means for the asset's lot.

    Close vs partial is judged on the held quantity reported by the exchange,
    not on bought-minus-sold, so rounding in the ledger totals cannot keep a
    lot open forever. Returns None for a sell with no tracked position.
    """
    if change.delta > 0:
        return "buy"
    if change.delta < 0:
        if position is None:
            return None
        if change.held * change.price < dust_threshold:
            return "close"
        return "partial_sell"
    return None
