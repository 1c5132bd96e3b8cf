# rebalancer/strategy.py
import asyncio
import re
import time
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from .convert import to_minor_units
from .decision_engine import RebalanceEngine
from .exceptions import RebalancerError
from .execution import ExecutionService
from .inventory import InventoryEngine
from .jupiter import JupiterClient
from .models import PairSnapshot, SubmissionStatus, TokenDescriptor, TokenPair, TradeResult


def error_status(error: Exception) -> str:
    """QuoteError -> QUOTE_ERROR"""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", type(error).__name__).upper()


class RebalanceStrategy:
    """
    Rebalancing loop controller.
    Every `interval_seconds` it walks the configured pairs:
    balances -> USD prices -> decision -> (quote, swap, submit).
    A failing pair is logged and audited, never fatal to the loop.
    """
    def __init__(self, config: dict, pairs: List[TokenPair], reference: TokenDescriptor,
                 inventory: InventoryEngine, jupiter: JupiterClient, engine: RebalanceEngine,
                 execution: ExecutionService, logger, audit_logger=None):
        self.config = config
        self.pairs = pairs
        self.reference = reference
        self.inventory = inventory
        self.jupiter = jupiter
        self.engine = engine
        self.execution = execution
        self.logger = logger
        self.audit_logger = audit_logger

        self.interval = float(config['system']['interval_seconds'])
        self.enable_trading = bool(config['system']['enable_trading'])
        self.slippage_bps = int(config['strategy']['slippage_bps'])

        jup_cfg = config['jupiter']
        self.wrap_and_unwrap_sol = bool(jup_cfg.get('wrap_and_unwrap_sol', True))
        self.priority_fee_lamports = jup_cfg.get('priority_fee_lamports')
        self.fee_account = jup_cfg.get('fee_account')

        self.snapshots: Dict[str, PairSnapshot] = {p.label: PairSnapshot(p) for p in pairs}
        self.running = False

    async def run(self, on_cycle: Optional[Callable[[], None]] = None):
        """Runs forever (until `stop()`). `on_cycle` is called after every pass."""
        self.running = True
        while self.running:
            await self.run_once()
            if on_cycle is not None:
                on_cycle()
            self.logger.info(f"Waiting for {self.interval:.0f} seconds...")
            await asyncio.sleep(self.interval)

    def stop(self):
        self.running = False

    async def run_once(self):
        for pair in self.pairs:
            try:
                await self.evaluate_and_execute(pair)
            except RebalancerError as e:
                self.logger.error(f"⚠️ {pair.label}: cycle aborted: {e}")
                self.snapshots[pair.label].last_status = error_status(e)
            except Exception:
                # Unknown failures are logged with traceback, the loop carries on
                self.logger.exception(f"💥 {pair.label}: unexpected error")
                self.snapshots[pair.label].last_status = "ERROR"

    async def fetch_prices(self, pair: TokenPair):
        price0 = await self.jupiter.get_usd_price(pair.token0, self.reference, self.slippage_bps)
        price1 = await self.jupiter.get_usd_price(pair.token1, self.reference, self.slippage_bps)
        return price0, price1

    async def evaluate_and_execute(self, pair: TokenPair) -> Optional[TradeResult]:
        snapshot = self.snapshots[pair.label]

        held0, held1 = await self.inventory.fetch_pair(pair)
        balance0, balance1 = held0.amount, held1.amount
        price0, price1 = await self.fetch_prices(pair)

        snapshot.balance0, snapshot.balance1 = balance0, balance1
        snapshot.price0, snapshot.price1 = price0, price1
        snapshot.updated_at = time.time()

        if not self.engine.validate_prices(pair.label, price0, price1):
            snapshot.decision = None
            snapshot.last_status = "BAD_PRICE"
            return None

        decision = self.engine.evaluate(pair.label, balance0, balance1, price0, price1)
        snapshot.decision = decision

        if not decision.trade_needed:
            self.logger.info(f"{pair.label}: no trade needed")
            snapshot.last_status = "IN_BAND"
            return None

        if decision.amount_token0 > 0:
            sell, buy, amount = pair.token0, pair.token1, decision.amount_token0
        else:
            sell, buy, amount = pair.token1, pair.token0, decision.amount_token1

        result = await self.execute_trade(pair, sell, buy, amount, decision.direction)
        snapshot.last_status = result.status
        if self.audit_logger is not None:
            await self.audit_logger.log_trade(result)
        return result

    async def execute_trade(self, pair: TokenPair, sell: TokenDescriptor, buy: TokenDescriptor,
                            amount: Decimal, direction: str) -> TradeResult:
        """
        Quote, build and submit one swap. Every failure category is turned
        into a TradeResult, so the caller can log and audit it uniformly.
        """
        def result(status: str, signature: str = "", detail: str = "") -> TradeResult:
            return TradeResult(pair=pair.label, direction=direction, amount=amount,
                               input_symbol=sell.symbol, output_symbol=buy.symbol,
                               status=status, signature=signature, detail=detail)

        self.logger.info(f"🔄 {pair.label}: trade needed | {amount} {sell.symbol} -> {buy.symbol}")

        minor = to_minor_units(amount, sell.decimals)
        if minor <= 0:
            self.logger.info(f"{pair.label}: {amount} {sell.symbol} is below one minor unit, skipping")
            return result("DUST")

        try:
            quote = await self.jupiter.get_quote(sell.address, buy.address, minor, self.slippage_bps)
            swap = await self.jupiter.get_swap(
                quote,
                wrap_and_unwrap_sol=self.wrap_and_unwrap_sol,
                priority_fee_lamports=self.priority_fee_lamports,
                fee_account=self.fee_account,
            )
        except RebalancerError as e:
            self.logger.error(f"⚠️ {pair.label} {direction} {amount} {sell.symbol}: {type(e).__name__}: {e}")
            return result(error_status(e), detail=str(e))

        if not self.enable_trading:
            self.logger.info(f"🔵 DRY RUN: would swap {amount} {sell.symbol} -> ~{quote['outAmount']} {buy.symbol} (minor units)")
            return result("DRY_RUN", detail=f"outAmount={quote['outAmount']}")

        try:
            outcome = await self.execution.execute_swap(swap.transaction, swap.last_valid_block_height)
        except RebalancerError as e:
            self.logger.error(f"⚠️ {pair.label} {direction} {amount} {sell.symbol}: submission failed: {e}")
            return result(error_status(e), detail=str(e))

        msg = f"{pair.label} {direction} {amount} {sell.symbol} -> {buy.symbol} | {outcome.status.value} | {outcome.signature}"
        if outcome.status is SubmissionStatus.FINALIZED:
            self.logger.info(f"✅ SWAP CONFIRMED: {msg}")
        elif outcome.status is SubmissionStatus.TIMED_OUT:
            # Unknown: the swap may still land, do not assume either way
            self.logger.warning(f"❓ SWAP UNKNOWN: {msg}")
        else:
            self.logger.error(f"❌ SWAP NOT EXECUTED: {msg} | {outcome.error}")

        detail = "" if outcome.error is None else str(outcome.error)
        return result(outcome.status.value, signature=outcome.signature, detail=detail)
