# rebalancer/decision_engine.py
from decimal import Decimal
from typing import Union
import logging

from .models import TradeDecision

Number = Union[Decimal, int, str]

NO_TRADE = TradeDecision(trade_needed=False)


def decide(token0_balance: Number, token1_balance: Number,
           token0_price_usd: Number, token1_price_usd: Number,
           rebalance_threshold: Number) -> TradeDecision:
    """
    Decides whether the pair needs a swap to get back to a 50/50 USD split.

    The tolerated band around the per-token target is
    [target * (1 - threshold), target * (1 + threshold)]. The four band
    checks run in a fixed order (token0 above, token0 below, token1 above,
    token1 below) and only the first match is acted on.

    Raises ValueError on a non-positive price: callers must only pass
    prices they have validated.
    """
    b0, b1 = Decimal(token0_balance), Decimal(token1_balance)
    p0, p1 = Decimal(token0_price_usd), Decimal(token1_price_usd)
    threshold = Decimal(rebalance_threshold)

    if p0 <= 0 or p1 <= 0:
        raise ValueError(f"prices must be positive (token0={p0}, token1={p1})")
    if b0 < 0 or b1 < 0:
        raise ValueError(f"balances must be non-negative (token0={b0}, token1={b1})")
    if threshold < 0:
        raise ValueError(f"rebalance threshold must be non-negative, got {threshold}")

    value0 = b0 * p0
    value1 = b1 * p1
    target = (value0 + value1) / 2

    band = target * threshold
    min_value = target - band
    max_value = target + band

    if value0 > max_value:
        # token0 overweight: sell the excess of token0
        return TradeDecision(True, amount_token0=(value0 - target) / p0)
    if value0 < min_value:
        # token0 underweight: fund the deficit with token1
        return TradeDecision(True, amount_token1=(target - value0) / p1)
    if value1 > max_value:
        return TradeDecision(True, amount_token1=(value1 - target) / p1)
    if value1 < min_value:
        return TradeDecision(True, amount_token0=(target - value1) / p0)

    return NO_TRADE


class RebalanceEngine:
    """
    Wraps `decide` with the configured threshold, price validation and a
    dust filter. Keeps the question 'should we trade?' apart from the
    plumbing that executes the trade.
    """
    def __init__(self, config: dict, logger: logging.Logger):
        self.cfg = config['strategy']
        self.logger = logger
        self.threshold = Decimal(str(self.cfg['rebalance_threshold']))
        self.min_trade_value_usd = Decimal(str(self.cfg.get('min_trade_value_usd', 0)))

    def validate_prices(self, label: str, price0: Decimal, price1: Decimal) -> bool:
        """
        Filter out prices the decision math cannot use.
        A zero price would mean dividing by zero inside `decide`.
        """
        if price0 <= 0 or price1 <= 0:
            self.logger.warning(f"⛔ {label}: unusable prices ({price0} / {price1}), skipping evaluation")
            return False
        return True

    def evaluate(self, label: str, balance0: Decimal, balance1: Decimal,
                 price0: Decimal, price1: Decimal) -> TradeDecision:
        decision = decide(balance0, balance1, price0, price1, self.threshold)

        value0 = balance0 * price0
        value1 = balance1 * price1
        self.logger.info(f"📊 {label} | value0: ${value0:.4f} | value1: ${value1:.4f}")

        if not decision.trade_needed:
            return decision

        # Dust filter
        trade_value = decision.amount_token0 * price0 + decision.amount_token1 * price1
        if trade_value < self.min_trade_value_usd:
            self.logger.info(f"{label}: trade worth ${trade_value:.4f} is below the ${self.min_trade_value_usd} minimum")
            return NO_TRADE

        return decision
