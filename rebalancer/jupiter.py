# rebalancer/jupiter.py
import asyncio
import base64
import binascii
import json
import logging
from decimal import Decimal
from typing import Any, Optional, Tuple

import aiohttp

from .convert import to_human_units, to_minor_units
from .exceptions import QuoteError, SwapBuildError
from .models import Quote, SwapTransaction, TokenDescriptor

DEFAULT_BASE_URL = "https://lite-api.jup.ag/swap/v1"


class JupiterClient:
    """
    Typed facade over the Jupiter swap API: quotes and unsigned swap
    transactions. Never retries; the caller owns retry policy.
    """
    def __init__(self, user_public_key: str, logger: logging.Logger,
                 base_url: str = DEFAULT_BASE_URL, timeout: float = 10.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.user_public_key = user_public_key
        self.logger = logger
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def start(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _session_or_start(self) -> aiohttp.ClientSession:
        if self._session is None:
            await self.start()
        return self._session

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse) -> Tuple[Optional[Any], str]:
        text = await response.text()
        try:
            return json.loads(text), text
        except ValueError:
            return None, text

    async def get_quote(self, input_mint: str, output_mint: str,
                        amount: int, slippage_bps: int) -> Quote:
        """
        Quote `amount` minor units of `input_mint` into `output_mint`.
        Raises QuoteError with the service message on any rejection.
        """
        self.logger.info(f"Getting quote for {amount} {input_mint} -> {output_mint}")
        params = {
            'inputMint': input_mint,
            'outputMint': output_mint,
            'amount': str(int(amount)),
            'slippageBps': str(int(slippage_bps)),
        }
        session = await self._session_or_start()
        try:
            async with session.get(f"{self.base_url}/quote", params=params) as response:
                data, raw = await self._read_json(response)
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise QuoteError(f"quote request failed: {e}") from e

        if status >= 400:
            message = data.get('error', raw) if isinstance(data, dict) else raw
            self.logger.error(f"Failed to get quote: {message}")
            raise QuoteError(str(message), status=status)
        if isinstance(data, dict) and data.get('error') and 'outAmount' not in data:
            raise QuoteError(str(data['error']), status=status)
        if not isinstance(data, dict) or not str(data.get('outAmount', '')).isdigit():
            raise QuoteError(f"malformed quote response: {raw[:200]}", status=status)
        return data

    async def get_swap(self, quote: Quote, wrap_and_unwrap_sol: bool = True,
                       priority_fee_lamports: Optional[int] = 200_000,
                       fee_account: Optional[str] = None) -> SwapTransaction:
        """
        Builds the unsigned swap transaction for a quote, together with the
        last valid block height of the blockhash the service put in it.
        """
        body = {
            'quoteResponse': quote,
            'userPublicKey': self.user_public_key,
            'wrapAndUnwrapSol': wrap_and_unwrap_sol,
        }
        if fee_account:
            body['feeAccount'] = fee_account
        if priority_fee_lamports is not None:
            body['prioritizationFeeLamports'] = int(priority_fee_lamports)
            body['dynamicComputeUnitLimit'] = True

        session = await self._session_or_start()
        try:
            async with session.post(f"{self.base_url}/swap", json=body) as response:
                data, raw = await self._read_json(response)
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SwapBuildError(f"swap request failed: {e}") from e

        if status >= 400:
            message = data.get('error', raw) if isinstance(data, dict) else raw
            self.logger.error(f"Failed to get swap transaction: {message}")
            raise SwapBuildError(str(message), status=status)
        if isinstance(data, dict) and data.get('error') and not data.get('swapTransaction'):
            raise SwapBuildError(str(data['error']), status=status)
        if not isinstance(data, dict) or not data.get('swapTransaction'):
            raise SwapBuildError(f"swap response without swapTransaction: {raw[:200]}", status=status)

        try:
            transaction = base64.b64decode(data['swapTransaction'], validate=True)
        except (binascii.Error, ValueError) as e:
            raise SwapBuildError(f"swapTransaction is not valid base64: {e}", status=status) from e

        height = data.get('lastValidBlockHeight')
        return SwapTransaction(transaction, int(height) if height is not None else None)

    async def get_swap_transaction(self, quote: Quote, wrap_and_unwrap_sol: bool = True,
                                   priority_fee_lamports: Optional[int] = 200_000,
                                   fee_account: Optional[str] = None) -> bytes:
        """Decoded (still unsigned) VersionedTransaction bytes for a quote."""
        swap = await self.get_swap(quote, wrap_and_unwrap_sol, priority_fee_lamports, fee_account)
        return swap.transaction

    async def get_usd_price(self, token: TokenDescriptor, reference: TokenDescriptor,
                            slippage_bps: int) -> Decimal:
        """
        USD price of one full unit of `token`, read off a quote into the
        reference stablecoin.
        """
        if token.address == reference.address:
            return Decimal(1)
        quote = await self.get_quote(token.address, reference.address,
                                     to_minor_units(1, token.decimals), slippage_bps)
        return to_human_units(int(quote['outAmount']), reference.decimals)
