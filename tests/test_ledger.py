from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from rebalancer.exceptions import LedgerError, LedgerUnavailable
from rebalancer.ledger import SolanaLedger

OWNER = str(Pubkey.default())
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SIGNATURE = str(Signature.default())


def response(value):
    return SimpleNamespace(value=value)


@pytest.fixture
def ledger(logger):
    ledger = SolanaLedger("http://127.0.0.1:8899", logger)
    ledger.client = MagicMock()
    return ledger


@pytest.mark.asyncio
async def test_native_balance(ledger):
    ledger.client.get_balance = AsyncMock(return_value=response(6_000_000_000))
    assert await ledger.get_balance(OWNER) == 6_000_000_000


@pytest.mark.asyncio
async def test_token_balance_sums_accounts(ledger):
    def account(amount):
        info = {'info': {'tokenAmount': {'amount': str(amount), 'decimals': 6}}}
        return SimpleNamespace(account=SimpleNamespace(data=SimpleNamespace(parsed=info)))

    ledger.client.get_token_accounts_by_owner_json_parsed = AsyncMock(
        return_value=response([account(1_500_000), account(250_000)]))

    assert await ledger.get_token_balance(OWNER, USDC) == 1_750_000


@pytest.mark.asyncio
async def test_token_balance_without_accounts(ledger):
    ledger.client.get_token_accounts_by_owner_json_parsed = AsyncMock(return_value=response([]))
    assert await ledger.get_token_balance(OWNER, USDC) == 0


@pytest.mark.asyncio
async def test_latest_blockhash_lease(ledger):
    value = SimpleNamespace(blockhash="GHtXQBsoZHVnNFa9YevAzFr17DJjgHXk3ycTKD5xD3Zi", last_valid_block_height=280_000_150)
    ledger.client.get_latest_blockhash = AsyncMock(return_value=response(value))

    lease = await ledger.get_latest_blockhash()

    assert lease.blockhash == "GHtXQBsoZHVnNFa9YevAzFr17DJjgHXk3ycTKD5xD3Zi"
    assert lease.last_valid_block_height == 280_000_150


@pytest.mark.asyncio
async def test_send_skips_preflight(ledger):
    ledger.client.send_raw_transaction = AsyncMock(return_value=response(Signature.default()))

    assert await ledger.send_raw_transaction(b"tx") == SIGNATURE
    opts = ledger.client.send_raw_transaction.await_args.kwargs['opts']
    assert opts.skip_preflight is True


@pytest.mark.asyncio
async def test_unknown_signature_has_no_status(ledger):
    ledger.client.get_signature_statuses = AsyncMock(return_value=response([None]))
    assert await ledger.get_signature_status(SIGNATURE) is None


@pytest.mark.asyncio
async def test_signature_status_mapping(ledger):
    status = SimpleNamespace(confirmation_status=TransactionConfirmationStatus.Finalized, err=None)
    ledger.client.get_signature_statuses = AsyncMock(return_value=response([status]))

    result = await ledger.get_signature_status(SIGNATURE)

    assert result.is_finalized
    assert result.err is None


@pytest.mark.asyncio
async def test_signature_status_with_error(ledger):
    status = SimpleNamespace(confirmation_status=TransactionConfirmationStatus.Confirmed, err="InstructionError")
    ledger.client.get_signature_statuses = AsyncMock(return_value=response([status]))

    result = await ledger.get_signature_status(SIGNATURE)

    assert result.confirmation_status == "confirmed"
    assert result.err == "InstructionError"


@pytest.mark.asyncio
async def test_transaction_record(ledger):
    tx = SimpleNamespace(slot=321, transaction=SimpleNamespace(meta=SimpleNamespace(err=None, fee=5000)))
    ledger.client.get_transaction = AsyncMock(return_value=response(tx))

    record = await ledger.get_transaction(SIGNATURE)

    assert record.slot == 321
    assert record.fee == 5000
    assert record.err is None


@pytest.mark.asyncio
async def test_transaction_not_found(ledger):
    ledger.client.get_transaction = AsyncMock(return_value=response(None))
    assert await ledger.get_transaction(SIGNATURE) is None


@pytest.mark.asyncio
async def test_transport_failure_is_unavailable(ledger):
    ledger.client.get_block_height = AsyncMock(side_effect=SolanaRpcException("connection refused"))
    with pytest.raises(LedgerUnavailable):
        await ledger.get_block_height()


@pytest.mark.asyncio
async def test_rpc_error_is_not_transient(ledger):
    ledger.client.get_block_height = AsyncMock(side_effect=RPCException("Invalid params"))
    with pytest.raises(LedgerError) as exc_info:
        await ledger.get_block_height()
    assert not isinstance(exc_info.value, LedgerUnavailable)


@pytest.mark.asyncio
async def test_error_response_without_value(ledger):
    ledger.client.get_block_height = AsyncMock(return_value=SimpleNamespace(message="Node is behind"))
    with pytest.raises(LedgerError):
        await ledger.get_block_height()


@pytest.mark.asyncio
async def test_initialize_reports_instead_of_raising(ledger):
    ledger.client.get_latest_blockhash = AsyncMock(side_effect=SolanaRpcException("unreachable"))
    assert await ledger.initialize() is False
