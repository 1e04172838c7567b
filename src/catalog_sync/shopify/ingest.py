"""
Incremental NDJSON ingestion of bulk operation results.

Bytes arrive in arbitrary chunks. An incremental UTF-8 decoder handles
multi-byte characters split across chunks, and a line buffer keeps the
trailing partial line until the next chunk (or end of stream) completes
it. Only one line is held in memory at a time, so a 50k+ variant file
costs no more than the longest line.

A line that fails to decode is counted in `errors` and skipped. Database
errors from the reconciler are not swallowed; they abort ingestion.
"""
import codecs
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from catalog_sync.shopify.errors import ParseError
from catalog_sync.shopify.records import ChildRecord, PrimaryRecord, decode_line

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 100


@dataclass(frozen=True)
class IngestResult:
    processed: int
    errors: int
    ignored: int = 0


class StreamIngestor:
    """Feeds decoded records from a byte stream to a Reconciler."""

    def __init__(self, reconciler, progress_every: int = PROGRESS_EVERY):
        self.reconciler = reconciler
        self.progress_every = max(1, progress_every)

    def ingest(
        self,
        chunks: Iterable[bytes],
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> IngestResult:
        """
        Consume the stream and upsert every recognised record.

        Args:
            chunks: iterable of raw byte chunks, split anywhere.
            on_progress: called with the cumulative processed count every
                `progress_every` records.

        Returns:
            IngestResult with processed, errors and ignored counts.
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        state = _Counters()
        buffer = ""

        for chunk in chunks:
            buffer += decoder.decode(chunk)
            lines = buffer.split("\n")
            buffer = lines.pop()
            for line in lines:
                self._handle_line(line, state, on_progress)

        buffer += decoder.decode(b"", final=True)
        if buffer:
            self._handle_line(buffer, state, on_progress)

        return IngestResult(processed=state.processed, errors=state.errors, ignored=state.ignored)

    def _handle_line(self, line: str, state: "_Counters", on_progress) -> None:
        state.line_no += 1
        if not line.strip():
            return
        try:
            record = decode_line(line)
        except ParseError as exc:
            state.errors += 1
            logger.warning("Skipping malformed line %d: %s", state.line_no, exc)
            return

        if isinstance(record, PrimaryRecord):
            self.reconciler.upsert_primary(record)
        elif isinstance(record, ChildRecord):
            self.reconciler.upsert_child(record)
        else:
            state.ignored += 1
            return

        state.processed += 1
        if on_progress and state.processed % self.progress_every == 0:
            on_progress(state.processed)


class _Counters:
    __slots__ = ("processed", "errors", "ignored", "line_no")

    def __init__(self):
        self.processed = 0
        self.errors = 0
        self.ignored = 0
        self.line_no = 0
