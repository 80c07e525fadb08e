"""
TransferClient - Main entry point for KRC token transfers.
"""
import logging
from typing import Optional, Sequence

from .batch import BatchReport, BatchRunner, required_funds
from .bookkeeping import Bookkeeper
from .config import NetworkConfig, TransferSettings
from .keys import TreasuryIdentity
from .ledger.base import BalanceSource, LedgerClient
from .ledger.rest import KaspaRestApi, validate_https_url
from .models import FungibleTransferRequest, NftTransferRequest, TransferRequest, TransferResult
from .orchestrator import TransferOrchestrator


class TransferClient:
    """
    Client for commit-reveal KRC-20 and KRC-721 transfers.

    This client handles:
    1. Single KRC-20 and KRC-721 transfers from the treasury
    2. Sequential airdrops of many transfers

    To use this client, you'll need:
    - A connected ledger client
    - The treasury identity (see ``load_treasury``)
    - Optionally a REST API URL used as the balance source for polling
    """

    def __init__(
        self,
        ledger: LedgerClient,
        treasury: TreasuryIdentity,
        settings: Optional[TransferSettings] = None,
        bookkeeper: Optional[Bookkeeper] = None,
        rest_url: Optional[str] = None,
        balance_source: Optional[BalanceSource] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the TransferClient

        Args:
            ledger: Ledger client used for subscriptions, UTXOs and submission
            treasury: Treasury identity funding every commit
            settings: Transfer settings (defaults to mainnet settings)
            bookkeeper: Persistence collaborator (defaults to logging only)
            rest_url: Kaspa REST API URL for the poll signal
            balance_source: Explicit poll balance source; takes precedence
                over ``rest_url``
            logger: Optional logger instance

        Raises:
            ValueError: If rest_url doesn't use https (unless it's localhost/127.0.0.1)
        """
        self.settings = settings or TransferSettings()
        self.logger = logger or logging.getLogger(__name__)
        self.ledger = ledger
        self.treasury = treasury

        self.rest_api: Optional[KaspaRestApi] = None
        if balance_source is None and rest_url:
            validate_https_url("rest_url", rest_url)
            self.rest_api = KaspaRestApi(rest_url, logger=self.logger)
            balance_source = self.rest_api
        self.balance_source = balance_source

        self.orchestrator = TransferOrchestrator(
            ledger,
            self.settings,
            bookkeeper=bookkeeper,
            balance_source=balance_source,
            logger=self.logger,
        )

    @classmethod
    def for_network(
        cls,
        ledger: LedgerClient,
        treasury: TreasuryIdentity,
        network: str = "mainnet",
        **kwargs,
    ) -> "TransferClient":
        """
        Create a client using the packaged network settings and REST URL.

        Raises:
            ValueError: If the network is unknown
        """
        settings = kwargs.pop("settings", None) or TransferSettings(network=network)
        rest_url = kwargs.pop("rest_url", None) or NetworkConfig.get_rest_url(network)
        return cls(ledger, treasury, settings=settings, rest_url=rest_url, **kwargs)

    def transfer(self, request: TransferRequest) -> TransferResult:
        return self.orchestrator.run(request, self.treasury)

    def transfer_krc20(
        self,
        ticker: str,
        amount: str,
        destination: str,
        rebate_amount: int = 0,
        full_rebate: bool = False,
    ) -> TransferResult:
        """
        Transfer KRC-20 tokens from the treasury.

        Args:
            ticker: Token ticker
            amount: Token amount in its smallest unit, as an integer string
            destination: Recipient address
            rebate_amount: KAS rebate (sompi) booked against the recipient
            full_rebate: Book three times the rebate

        Returns:
            TransferResult
        """
        request = FungibleTransferRequest(
            ticker=ticker,
            amount=amount,
            destination=destination,
            rebate_amount=rebate_amount,
            full_rebate=full_rebate,
        )
        return self.transfer(request)

    def transfer_krc721(self, ticker: str, token_id: str, destination: str) -> TransferResult:
        """Transfer one KRC-721 token from the treasury."""
        return self.transfer(NftTransferRequest(ticker=ticker, token_id=token_id, destination=destination))

    def airdrop(self, requests: Sequence[TransferRequest]) -> BatchReport:
        """Run transfers sequentially with the configured delay between them."""
        runner = BatchRunner(self.orchestrator, self.treasury, self.settings, logger=self.logger)
        return runner.run(requests)

    def required_funds(self, count: int) -> int:
        """Funds in sompi needed for ``count`` transfers."""
        return required_funds(self.settings, count)

    def close(self) -> None:
        if self.rest_api is not None:
            self.rest_api.close()
