# rebalancer/models.py
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import time

# Jupiter quotes are forwarded verbatim into the swap request.
Quote = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class TokenDescriptor:
    """
    Static description of a token (SPL mint).
    Built once from configuration and never mutated.
    """
    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True, slots=True)
class TokenPair:
    token0: TokenDescriptor
    token1: TokenDescriptor

    @property
    def label(self) -> str:
        return f"{self.token0.symbol}/{self.token1.symbol}"


@dataclass(slots=True)
class TokenBalance:
    """A human-unit balance tagged with its token. Lives for one cycle."""
    token: TokenDescriptor
    amount: Decimal


@dataclass(frozen=True, slots=True)
class TradeDecision:
    """
    Output of the rebalance decision engine.
    At most one of the two amounts is nonzero: the engine trades in a
    single direction per evaluation.
    """
    trade_needed: bool
    amount_token0: Decimal = Decimal(0)
    amount_token1: Decimal = Decimal(0)

    @property
    def direction(self) -> Optional[str]:
        if self.amount_token0 > 0:
            return "token0->token1"
        if self.amount_token1 > 0:
            return "token1->token0"
        return None


@dataclass(frozen=True, slots=True)
class BlockhashLease:
    """
    Validity window of a transaction. Once the chain height passes
    `last_valid_block_height` the transaction can never be included.
    """
    blockhash: str
    last_valid_block_height: int

    def shortened(self, margin: int) -> "BlockhashLease":
        return BlockhashLease(self.blockhash, self.last_valid_block_height - margin)


@dataclass(frozen=True, slots=True)
class SwapTransaction:
    """
    Unsigned swap built by the swap API. `last_valid_block_height` is the
    end of the window of the blockhash baked into the message, when the
    service reports it.
    """
    transaction: bytes
    last_valid_block_height: Optional[int] = None


@dataclass(slots=True)
class SignatureStatus:
    confirmation_status: Optional[str]  # "processed" | "confirmed" | "finalized"
    err: Any = None

    @property
    def is_finalized(self) -> bool:
        return self.confirmation_status == "finalized"


@dataclass(slots=True)
class TransactionRecord:
    signature: str
    slot: int
    err: Any = None
    fee: Optional[int] = None


class SubmissionStatus(Enum):
    """
    Terminal states of a submission attempt.
    """
    FINALIZED = "FINALIZED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    TIMED_OUT = "TIMED_OUT"


@dataclass(slots=True)
class SubmissionOutcome:
    """
    Result of TransactionSender.send_and_confirm. Exactly one is produced
    per submission attempt.
    """
    status: SubmissionStatus
    signature: str
    transaction: Optional[TransactionRecord] = None
    error: Any = None

    @classmethod
    def finalized(cls, signature: str, transaction: TransactionRecord) -> "SubmissionOutcome":
        return cls(SubmissionStatus.FINALIZED, signature, transaction=transaction)

    @classmethod
    def failed(cls, signature: str, error: Any, transaction: Optional[TransactionRecord] = None) -> "SubmissionOutcome":
        return cls(SubmissionStatus.FAILED, signature, transaction=transaction, error=error)

    @classmethod
    def expired(cls, signature: str) -> "SubmissionOutcome":
        return cls(SubmissionStatus.EXPIRED, signature, error="blockhash lease expired")

    @classmethod
    def timed_out(cls, signature: str) -> "SubmissionOutcome":
        return cls(SubmissionStatus.TIMED_OUT, signature, error="confirmation outcome unknown")

    @property
    def ok(self) -> bool:
        return self.status is SubmissionStatus.FINALIZED


@dataclass(slots=True)
class TradeResult:
    """
    One audited trade attempt, written to the CSV trade log.
    """
    pair: str
    direction: str
    amount: Decimal
    input_symbol: str
    output_symbol: str
    status: str  # a SubmissionStatus value, or DRY_RUN / QUOTE_ERROR / ...
    signature: str = ""
    detail: str = ""
    timestamp: float = field(default_factory=time.time)

    def as_row(self) -> list:
        return [
            time.strftime('%Y-%m-%d %H:%M:%S', time.gmtime(self.timestamp)),
            self.pair,
            self.direction,
            self.input_symbol,
            self.output_symbol,
            str(self.amount),
            self.status,
            self.signature,
            self.detail,
        ]


TRADE_LOG_HEADER = [
    "timestamp", "pair", "direction", "input", "output", "amount", "status", "signature", "detail",
]


@dataclass(slots=True)
class PairSnapshot:
    """Last evaluation of a pair, rendered by the dashboard."""
    pair: TokenPair
    balance0: Decimal = Decimal(0)
    balance1: Decimal = Decimal(0)
    price0: Decimal = Decimal(0)
    price1: Decimal = Decimal(0)
    decision: Optional[TradeDecision] = None
    last_status: str = "-"
    updated_at: float = 0.0

    @property
    def value0(self) -> Decimal:
        return self.balance0 * self.price0

    @property
    def value1(self) -> Decimal:
        return self.balance1 * self.price1
