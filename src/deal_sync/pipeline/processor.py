"""
Per-deal sync: decode -> transform -> reconcile -> ledger.

Shared by the batch scheduler and the retry/resync paths so both treat a
deal identically: a document that fails decoding or transformation is
quarantined (nothing written), a reconcile failure rolls back that deal
only, and either way the failure goes to the ledger under its loan code.
A document without a loan code cannot be looked up again, so it is only
reported, never recorded. A success resolves any open ledger entry for the
same loan code.
"""

from typing import Any

import structlog

from ..errors import DealSyncError, TransformError
from ..ledger import FailureLedger
from ..logging import PipelineTimer, logging_context
from ..models.rows import NormalizedRowSet
from ..models.source import extract_loan_code
from ..models.sync import SyncOutcome
from .reconciler import DealReconciler
from .transformer import transform_document

logger = structlog.get_logger(__name__)

UNKNOWN_LOAN_CODE = '<unknown>'


class DealProcessor:
    """Runs raw source documents through the pipeline. Never raises."""

    def __init__(self, reconciler: DealReconciler, ledger: FailureLedger):
        self.reconciler = reconciler
        self.ledger = ledger

    async def transform(
        self,
        partition_id: str | None,
        payload: Any,
        timer: PipelineTimer | None = None,
        record_failures: bool = True,
        retried: bool = False,
    ) -> NormalizedRowSet | SyncOutcome:
        """
        Decode and flatten one document.

        Returns:
            The row set, or a failed SyncOutcome if the document was quarantined
        """
        timer = timer or PipelineTimer()
        loan_code = extract_loan_code(payload) or UNKNOWN_LOAN_CODE
        with logging_context(loan_code=loan_code):
            try:
                with timer.stage('transform'):
                    return transform_document(payload, partition_id)
            except DealSyncError as exc:
                outcome = SyncOutcome.failed(loan_code, exc)
            except Exception as exc:
                outcome = SyncOutcome.failed(loan_code, TransformError(str(exc)))

            if record_failures:
                await self._settle_ledger(partition_id, outcome, retried)
            else:
                logger.warning('processor.deal_quarantined', error=outcome.error, error_type=outcome.error_type)
        return outcome

    async def reconcile(
        self,
        partition_id: str | None,
        row_set: NormalizedRowSet,
        timer: PipelineTimer | None = None,
        retried: bool = False,
    ) -> SyncOutcome:
        """Write one row set and settle its ledger entry."""
        timer = timer or PipelineTimer()
        with logging_context(loan_code=row_set.loan_code):
            with timer.stage('reconcile'):
                outcome = await self.reconciler.reconcile(partition_id, row_set)
            await self._settle_ledger(partition_id, outcome, retried)
        return outcome

    async def process(
        self,
        partition_id: str | None,
        payload: Any,
        timer: PipelineTimer | None = None,
        retried: bool = False,
    ) -> SyncOutcome:
        """
        Sync one raw deal document end to end.

        Args:
            partition_id: Owning partition
            payload: Undecoded deal document from the source
            timer: Optional timer receiving 'transform' / 'reconcile' durations
            retried: True when called from a retry pass (stamps retried_at)
        """
        prepared = await self.transform(partition_id, payload, timer, retried=retried)
        if isinstance(prepared, SyncOutcome):
            return prepared
        return await self.reconcile(partition_id, prepared, timer, retried=retried)

    async def _settle_ledger(self, partition_id: str | None, outcome: SyncOutcome, retried: bool) -> None:
        if outcome.loan_code == UNKNOWN_LOAN_CODE:
            # No natural key to look up again; the partition outcome keeps it
            logger.warning('processor.unkeyed_document_failed', error=outcome.error, error_type=outcome.error_type)
            return

        # Ledger trouble is logged, never allowed to change the deal's outcome
        try:
            if outcome.success:
                await self.ledger.resolve([outcome.loan_code])
            else:
                logger.warning(
                    'processor.deal_failed',
                    loan_code=outcome.loan_code,
                    error=outcome.error,
                    error_type=outcome.error_type,
                )
                await self.ledger.record(
                    outcome.loan_code, partition_id, outcome.error or 'unknown error', retried=retried
                )
        except DealSyncError as exc:
            logger.error(
                'processor.ledger_write_failed',
                loan_code=outcome.loan_code,
                error=exc.message,
            )
