# rebalancer/exceptions.py
from typing import Any, Optional


class RebalancerError(Exception):
    """Base class for every error raised by the rebalancer."""


class ConfigError(RebalancerError):
    """Missing or malformed configuration. Fatal at startup."""


class WalletError(RebalancerError):
    """Key material could not be loaded."""


class QuoteError(RebalancerError):
    """
    The swap service refused to quote.
    `message` is the service-reported error, verbatim.
    """
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class SwapBuildError(RebalancerError):
    """The swap service refused to build a transaction for a quote."""
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class LedgerError(RebalancerError):
    """The RPC node answered with an error."""


class LedgerUnavailable(LedgerError):
    """Transport-level failure talking to the RPC node (transient)."""


class SubmissionError(RebalancerError):
    """The initial send of a transaction failed. Fatal to the attempt."""


class OnChainFailure(RebalancerError):
    """The transaction landed but executed with an error."""
    def __init__(self, signature: str, err: Any):
        super().__init__(f"{signature} failed on-chain: {err}")
        self.signature = signature
        self.err = err


class LeaseExpired(RebalancerError):
    """The blockhash lease passed before the transaction was confirmed."""
    def __init__(self, signature: str, last_valid_block_height: int):
        super().__init__(f"{signature} has expired: block height exceeded {last_valid_block_height}")
        self.signature = signature
        self.last_valid_block_height = last_valid_block_height


class ConfirmationTimeout(RebalancerError):
    """Outcome unknown after the confirmation deadline."""
