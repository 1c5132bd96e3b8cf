from typing import Tuple
import asyncio
import logging

from .convert import to_human_units
from .models import TokenBalance, TokenDescriptor, TokenPair

# Wrapped SOL mint: held natively in the wallet, not in a token account.
NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"


class InventoryEngine:
    """
    Reads wallet balances through the ledger and converts them to
    human units. Balances are re-read every cycle, never cached.
    """
    def __init__(self, ledger, owner: str, logger: logging.Logger):
        self.ledger = ledger
        self.owner = owner
        self.logger = logger

    async def fetch_balance(self, token: TokenDescriptor) -> TokenBalance:
        if token.address == NATIVE_SOL_MINT:
            raw = await self.ledger.get_balance(self.owner)
        else:
            raw = await self.ledger.get_token_balance(self.owner, token.address)
        return TokenBalance(token, to_human_units(raw, token.decimals))

    async def fetch_pair(self, pair: TokenPair) -> Tuple[TokenBalance, TokenBalance]:
        held0, held1 = await asyncio.gather(
            self.fetch_balance(pair.token0),
            self.fetch_balance(pair.token1),
        )
        self.logger.info(f"💰 {pair.label} | {pair.token0.symbol}: {held0.amount} | {pair.token1.symbol}: {held1.amount}")
        return held0, held1
