"""Chunked, per-chunk atomic writes of transactions and outflow claims."""

from pydantic import BaseModel, Field

from splitsync.database import Database
from splitsync.logging_config import get_logger
from splitsync.schemas.outflow import OutflowPeriodUpdate
from splitsync.schemas.transaction import Transaction


logger = get_logger("services.batch_writer")


class WriteChunk(BaseModel):
    transactions: list[Transaction] = Field(default_factory=list)
    outflow_updates: list[OutflowPeriodUpdate] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.transactions) + len(self.outflow_updates)


def plan_chunks(
    transactions: list[Transaction],
    outflow_updates: list[OutflowPeriodUpdate],
    max_operations: int,
) -> list[WriteChunk]:
    """
    Partition writes into chunks of at most `max_operations` operations.

    Transactions fill chunks in order. Each outflow update goes into the
    first chunk with room left, and new chunks are opened only when every
    existing one is full.
    """
    if max_operations < 1:
        raise ValueError("max_operations must be at least 1")

    chunks = [
        WriteChunk(transactions=transactions[i:i + max_operations])
        for i in range(0, len(transactions), max_operations)
    ]

    for update in outflow_updates:
        target = next((c for c in chunks if c.size < max_operations), None)
        if target is None:
            target = WriteChunk()
            chunks.append(target)
        target.outflow_updates.append(update)

    return chunks


class BatchWriter:
    """Writes pipeline output through the store's atomic batch commit."""

    def __init__(self, db: Database, max_operations: int = 500):
        self.db = db
        self.max_operations = max_operations

    async def write(
        self,
        transactions: list[Transaction],
        outflow_updates: list[OutflowPeriodUpdate] | None = None,
    ) -> int:
        """
        Upsert transactions by transaction_id and apply outflow period claims.

        Each chunk commits atomically and chunks commit in order. A failure
        leaves earlier chunks applied and propagates to the caller, which
        retries the whole page on the next run.

        Returns:
            Number of transactions written.
        """
        chunks = plan_chunks(transactions, outflow_updates or [], self.max_operations)

        written = 0
        for index, chunk in enumerate(chunks, start=1):
            await self.db.commit_batch(
                [transaction.to_row() for transaction in chunk.transactions],
                [update.to_row() for update in chunk.outflow_updates],
            )
            written += len(chunk.transactions)
            logger.debug(
                f"[Batch] Committed chunk {index}/{len(chunks)}: "
                f"{len(chunk.transactions)} transactions, "
                f"{len(chunk.outflow_updates)} outflow updates"
            )

        if chunks:
            logger.info(
                f"[Batch] Wrote {written} transactions in {len(chunks)} chunk(s)"
            )
        return written
