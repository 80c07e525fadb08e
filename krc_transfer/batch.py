"""
Sequential batch runner.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .config import TransferSettings
from .keys import TreasuryIdentity
from .models import TransferRequest, TransferResult
from .orchestrator import TransferOrchestrator
from .state import TransferState
from .utils import sompi_to_kaspa

logger = logging.getLogger(__name__)


@dataclass
class BatchItemFailure:
    """A request whose run raised instead of returning a result."""
    request: TransferRequest
    error: str


@dataclass
class BatchReport:
    results: List[TransferResult] = field(default_factory=list)
    errors: List[BatchItemFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> List[TransferResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failed(self) -> List[TransferResult]:
        return [r for r in self.results if r.state == TransferState.FAILED]

    @property
    def timed_out(self) -> List[TransferResult]:
        return [r for r in self.results if r.state == TransferState.TIMED_OUT]

    @property
    def all_succeeded(self) -> bool:
        return not self.errors and all(r.succeeded for r in self.results)

    def counts(self) -> dict:
        return {
            "total": len(self.results) + len(self.errors),
            "succeeded": len(self.succeeded),
            "pending": len([r for r in self.results if r.pending]),
            "failed": len(self.failed) + len(self.errors),
            "timed_out": len(self.timed_out),
        }


def required_funds(settings: TransferSettings, count: int) -> int:
    """Aggregate funds (sompi) a batch of ``count`` transfers needs."""
    return settings.required_funds_per_transfer * count


class BatchRunner:
    """
    Runs transfers strictly one after another.

    A fixed delay separates consecutive transfers so the next commit sees
    the treasury UTXO set left by the previous reveal. A failed transfer is
    logged and does not stop the batch.
    """

    def __init__(
        self,
        orchestrator: TransferOrchestrator,
        treasury: TreasuryIdentity,
        settings: Optional[TransferSettings] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.orchestrator = orchestrator
        self.treasury = treasury
        self.settings = settings or orchestrator.settings
        self.logger = logger or logging.getLogger(__name__)
        self.sleep = sleep

    def run(self, requests: Sequence[TransferRequest]) -> BatchReport:
        report = BatchReport()
        total = len(requests)
        if total == 0:
            self.logger.info("No transfers to process")
            return report

        needed = required_funds(self.settings, total)
        self.logger.info(
            f"Processing {total} transfer(s); required funds: {sompi_to_kaspa(needed)} KAS "
            f"({sompi_to_kaspa(self.settings.required_funds_per_transfer)} KAS each)"
        )

        for index, request in enumerate(requests, start=1):
            self.logger.info(f"Processing transfer {index}/{total}: {request.describe()}")
            try:
                result = self.orchestrator.run(request, self.treasury)
            except Exception as e:
                self.logger.error(f"Transfer {index}/{total} raised: {e}")
                report.errors.append(BatchItemFailure(request=request, error=str(e)))
            else:
                report.results.append(result)
                if result.succeeded:
                    self.logger.info(
                        f"Transfer {index}/{total} completed. Commit TX: {result.commit_transaction_id} "
                        f"Reveal TX: {result.reveal_transaction_id}"
                    )
                else:
                    self.logger.error(f"Transfer {index}/{total} ended in {result.state.value}: {result.error}")

            if index < total:
                self.logger.debug(f"Waiting {self.settings.batch_delay:g} seconds before the next transfer")
                (self.sleep or time.sleep)(self.settings.batch_delay)

        self.logger.info(f"Batch finished: {report.counts()}")
        return report
