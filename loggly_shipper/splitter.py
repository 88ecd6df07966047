"""Batch splitter — cuts drained batches into Loggly bulk-sized requests."""

import logging

logger = logging.getLogger(__name__)

# Loggly rejects bulk request bodies above 5 MB.
MAX_BULK_BYTES = 5 * 1024 * 1024


def join_documents(docs: list[str]) -> bytes:
    """Build a newline-delimited request body from encoded documents."""
    return "\n".join(docs).encode("utf-8")


def split_batch(
    docs: list[str],
    max_records: int,
    max_bytes: int = MAX_BULK_BYTES,
) -> list[list[str]]:
    """Split *docs* into chunks of at most *max_records* documents whose
    joined body is at most *max_bytes*.

    Count limits are applied first by slicing; any slice whose body is still
    too large is halved recursively. A single document that already exceeds
    *max_bytes* is returned alone with a warning. Document order is kept.
    """
    if not docs:
        return []

    chunks: list[list[str]] = []
    for start in range(0, len(docs), max_records):
        chunks.extend(_split_by_size(docs[start:start + max_records], max_bytes))
    return chunks


def _split_by_size(docs: list[str], max_bytes: int) -> list[list[str]]:
    size = len(join_documents(docs))
    if size <= max_bytes:
        return [docs]

    if len(docs) == 1:
        logger.warning(
            "Single document exceeds the bulk request limit (%d bytes > %d). "
            "Sending it on its own.",
            size,
            max_bytes,
        )
        return [docs]

    mid = len(docs) // 2
    return _split_by_size(docs[:mid], max_bytes) + _split_by_size(docs[mid:], max_bytes)
