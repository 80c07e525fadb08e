"""
Data models for the KRC transfer SDK.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .address import same_address
from .state import TransferState


class ProtocolTag(str, Enum):
    """Token protocols that can be inscribed with a transfer envelope."""
    KRC20 = "krc-20"
    KRC721 = "krc-721"


class Outpoint(BaseModel):
    """Reference to a transaction output"""
    transaction_id: str = Field(..., alias="transactionId")
    index: int = 0

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def __str__(self) -> str:
        return f"{self.transaction_id}:{self.index}"


class UtxoEntry(BaseModel):
    """Unspent output snapshot as returned by the ledger"""
    outpoint: Outpoint
    address: str
    amount: int
    script_public_key: str = Field("", alias="scriptPublicKey")
    block_daa_score: int = Field(0, alias="blockDaaScore")
    is_coinbase: bool = Field(False, alias="isCoinbase")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def transaction_id(self) -> str:
        return self.outpoint.transaction_id


class PaymentOutput(BaseModel):
    """Transaction output request"""
    address: str
    amount: int

    @field_validator("amount")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("output amount must be positive")
        return v


class AddressChange(BaseModel):
    """A UTXO change at one address, extracted from a notification"""
    address: str
    added_outpoint: Outpoint
    removed_outpoint: Outpoint
    transaction_id: str


class UtxoChangedEvent(BaseModel):
    """UTXO-changed notification, validated at the ledger client boundary"""
    added: List[UtxoEntry] = Field(default_factory=list)
    removed: List[UtxoEntry] = Field(default_factory=list)

    def match(self, address: str, transaction_id: Optional[str] = None) -> Optional[AddressChange]:
        """
        Find a change at ``address``.

        A change is reported only when both an added and a removed entry
        belong to the address. When ``transaction_id`` is given, the added
        entry must also originate from that transaction.

        Returns:
            AddressChange, or None if the notification is not relevant
        """
        removed = next((e for e in self.removed if same_address(e.address, address)), None)
        if removed is None:
            return None

        for added in self.added:
            if not same_address(added.address, address):
                continue
            if transaction_id is not None and added.transaction_id != transaction_id:
                continue
            return AddressChange(
                address=address,
                added_outpoint=added.outpoint,
                removed_outpoint=removed.outpoint,
                transaction_id=added.transaction_id,
            )
        return None


class TransactionInput(BaseModel):
    """Input of a pending transaction; an empty signature script means unsigned"""
    previous_outpoint: Outpoint
    amount: int = 0
    signature_script: bytes = b""


class PendingTransaction(BaseModel):
    """Fee-paying transaction produced by the ledger client, before submission"""
    id: str
    inputs: List[TransactionInput]
    outputs: List[PaymentOutput]
    change_address: str
    fee: int = 0

    def unsigned_input_index(self) -> int:
        """Index of the first input with an empty signature script, or -1."""
        for i, tx_input in enumerate(self.inputs):
            if not tx_input.signature_script:
                return i
        return -1


class KRC20TransferPayload(BaseModel):
    """KRC-20 transfer operation as inscribed in the envelope"""
    p: str = ProtocolTag.KRC20.value
    op: str = "transfer"
    tick: str
    amt: str
    to: str


class KRC721TransferPayload(BaseModel):
    """KRC-721 transfer operation as inscribed in the envelope"""
    op: str = "transfer"
    p: str = ProtocolTag.KRC721.value
    tick: str
    to: str
    token_id: str = Field(..., alias="tokenId")

    model_config = ConfigDict(populate_by_name=True)


OperationPayload = Union[KRC20TransferPayload, KRC721TransferPayload]


class FungibleTransferRequest(BaseModel):
    """Request to transfer KRC-20 tokens from the treasury"""
    protocol: ProtocolTag = ProtocolTag.KRC20
    ticker: str
    amount: str
    destination: str
    rebate_amount: int = 0
    full_rebate: bool = False

    @field_validator("ticker", "destination")
    @classmethod
    def _not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_str(cls, v: Any) -> str:
        v = str(v).strip()
        if not v.isdigit() or int(v) <= 0:
            raise ValueError(f"amount must be a positive integer string, got {v!r}")
        return v

    def payload(self) -> KRC20TransferPayload:
        return KRC20TransferPayload(tick=self.ticker, amt=self.amount, to=self.destination)

    def describe(self) -> str:
        return f"{self.amount} {self.ticker} to {self.destination}"


class NftTransferRequest(BaseModel):
    """Request to transfer one KRC-721 token from the treasury"""
    protocol: ProtocolTag = ProtocolTag.KRC721
    ticker: str
    token_id: str
    destination: str

    @field_validator("ticker", "token_id", "destination", mode="before")
    @classmethod
    def _not_empty(cls, v: Any) -> str:
        v = str(v).strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    def payload(self) -> KRC721TransferPayload:
        return KRC721TransferPayload(tick=self.ticker.lower(), to=self.destination, token_id=self.token_id)

    def describe(self) -> str:
        return f"NFT {self.ticker}:{self.token_id} to {self.destination}"


TransferRequest = Union[FungibleTransferRequest, NftTransferRequest]


class TransferResult(BaseModel):
    """Outcome of one transfer run"""
    request: Union[FungibleTransferRequest, NftTransferRequest]
    state: TransferState
    script_hash_address: Optional[str] = None
    commit_transaction_id: Optional[str] = None
    reveal_transaction_id: Optional[str] = None
    accepted: bool = False
    error: Optional[str] = None
    history: List[TransferState] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == TransferState.VERIFIED

    @property
    def pending(self) -> bool:
        """Reveal matured but not yet observed at the receiving address."""
        return self.succeeded and not self.accepted

    def summary(self) -> Dict[str, Any]:
        return {
            "transfer": self.request.describe(),
            "state": self.state.value,
            "commit": self.commit_transaction_id,
            "reveal": self.reveal_transaction_id,
            "accepted": self.accepted,
            "error": self.error,
        }
