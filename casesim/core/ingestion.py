"""Knowledge ingestion: documents and case fields into the case knowledge base.

Both ingestion paths run through one pipeline. A source reader turns its
input into chunk texts (document extraction plus chunking, or one labelled
chunk per case field); the pipeline then embeds every chunk and replaces the
prior chunks of the same (case, source) in one locked delete/insert step.
No lock is held while a provider is being called.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from casesim.core.chunking import KnowledgeChunker
from casesim.core.document_processing import ExtractionError, ExtractorRegistry, get_extension
from casesim.core.errors import (
    ChunkingFailure,
    ConfigurationMissing,
    ErrorCode,
    ExtractionFailure,
    PersistenceFailure,
    ProviderUnavailable,
)
from casesim.core.logging import get_logger, log_with_context
from casesim.core.providers.router import ProviderRouter
from casesim.core.schemas_cases import CaseFieldsSnapshot
from casesim.core.schemas_knowledge import (
    CASE_DATA_SOURCE,
    ChunkMetadata,
    IngestResult,
    KnowledgeChunk,
    SourceType,
    utc_now,
)
from casesim.db.cases import CaseRepository
from casesim.db.knowledge import KnowledgeStore

logger = get_logger(__name__)


@dataclass
class SourceChunk:
    """A chunk of text produced by a source reader, before embedding."""

    content: str
    page: int | None = None
    data_type: str | None = None


class SourceReader(ABC):
    """Turns one ingestion input into chunk texts."""

    source_type: SourceType = "document"

    @abstractmethod
    def read(self) -> list[SourceChunk]:
        """
        Produce chunks for this source.

        Raises:
            ExtractionFailure: Unsupported, unreadable or empty input
            ChunkingFailure: Internal chunking error
        """


class DocumentSourceReader(SourceReader):
    """Extracts text from an uploaded file and splits it with the chunker."""

    source_type: SourceType = "document"

    def __init__(
        self,
        registry: ExtractorRegistry,
        chunker: KnowledgeChunker,
        file_bytes: bytes,
        filename: str,
        mime_type: str | None,
    ):
        self.registry = registry
        self.chunker = chunker
        self.file_bytes = file_bytes
        self.filename = filename
        self.mime_type = mime_type

    def read(self) -> list[SourceChunk]:
        extractor = self.registry.get_extractor(self.mime_type, get_extension(self.filename))
        if extractor is None:
            raise ExtractionFailure(
                f"Unsupported file type: {self.mime_type or self.filename}",
                ErrorCode.UNSUPPORTED_TYPE,
            )

        try:
            result = extractor.extract(self.file_bytes, self.filename)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Failed to extract {self.filename}: {e}", extractor=extractor.name) from e

        text = result.raw_text.replace("\x00", "")
        if not text.strip():
            raise ExtractionFailure(f"No text could be extracted from {self.filename}", ErrorCode.EMPTY_TEXT)

        pieces = self.chunker.split(text)

        chunks: list[SourceChunk] = []
        offset = 0
        for piece in pieces:
            chunks.append(SourceChunk(content=piece, page=result.page_for_offset(offset)))
            offset += len(piece) - self.chunker.chunk_overlap
        return chunks


# (field, label, data_type) in the order chunks are produced
CASE_FIELD_SECTIONS: tuple[tuple[str, str, str], ...] = (
    ("presenting_complaint", "Presenting Complaint", "presenting_complaint"),
    ("history", "Medical History", "history"),
    ("physical_findings", "Physical Examination Findings", "physical_findings"),
    ("lab_results", "Laboratory Results", "lab_results"),
    ("imaging_results", "Imaging/Diagnostic Results", "imaging_results"),
    ("owner_background", "Owner/Client Information", "owner_background"),
    ("differential_diagnoses", "Differential Diagnoses", "differential_diagnoses"),
    ("treatment_plan", "Treatment Plan", "treatment_plan"),
)


def _clean(value: object) -> str:
    return str(value).strip() if value is not None else ""


def build_case_data_chunks(snapshot: CaseFieldsSnapshot) -> list[SourceChunk]:
    """One labelled chunk per non-empty case field, plus patient and case overviews."""
    chunks: list[SourceChunk] = []

    patient = [
        f"{label}: {_clean(getattr(snapshot, field))}"
        for field, label in (
            ("patient_name", "Patient Name"),
            ("patient_age", "Age"),
            ("patient_sex", "Sex"),
            ("species", "Species"),
            ("breed", "Breed"),
        )
        if _clean(getattr(snapshot, field))
    ]
    if patient:
        chunks.append(
            SourceChunk(
                content="[CASE_DATA - Patient Overview]\n" + ", ".join(patient),
                data_type="patient_overview",
            )
        )

    overview = []
    if _clean(snapshot.title):
        overview.append(f"Case: {_clean(snapshot.title)}")
    if _clean(snapshot.description):
        overview.append(f"Description: {_clean(snapshot.description)}")
    if overview:
        chunks.append(
            SourceChunk(
                content="[CASE_DATA - Case Information]\n" + "\n".join(overview),
                data_type="case_overview",
            )
        )

    for field, label, data_type in CASE_FIELD_SECTIONS:
        value = _clean(getattr(snapshot, field, None))
        if value:
            chunks.append(SourceChunk(content=f"[CASE_DATA - {label}]\n{value}", data_type=data_type))

    return chunks


class CaseFieldSourceReader(SourceReader):
    """Synthesizes labelled chunks from a case's own fields."""

    source_type: SourceType = "case_data"

    def __init__(self, snapshot: CaseFieldsSnapshot):
        self.snapshot = snapshot

    def read(self) -> list[SourceChunk]:
        chunks = build_case_data_chunks(self.snapshot)
        if not chunks:
            raise ExtractionFailure("Case has no populated fields to ingest", ErrorCode.EMPTY_TEXT)
        return chunks


class KnowledgeIngestionPipeline:
    """Ingests sources into the knowledge store, one source at a time per key."""

    def __init__(
        self,
        store: KnowledgeStore,
        cases: CaseRepository,
        router: ProviderRouter,
        chunker: KnowledgeChunker,
        registry: ExtractorRegistry,
    ):
        self.store = store
        self.cases = cases
        self.router = router
        self.chunker = chunker
        self.registry = registry
        # (case, source) -> (lock, number of callers using it)
        self._locks: dict[tuple[str, str], tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _exclusive(self, case_id: str, source: str) -> Iterator[None]:
        """Hold the (case, source) lock; the entry is dropped once no caller uses it."""
        key = (case_id, source)
        with self._locks_guard:
            lock, users = self._locks.get(key, (None, 0))
            lock = lock or threading.Lock()
            self._locks[key] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                lock, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    def active_locks(self) -> int:
        with self._locks_guard:
            return len(self._locks)

    def ingest(
        self,
        case_id: str,
        source: str,
        file_bytes: bytes,
        mime_type: str | None,
    ) -> IngestResult:
        """
        Ingest an uploaded document.

        Args:
            case_id: Case id or slug
            source: Source name, usually the file name
            file_bytes: Raw upload
            mime_type: Declared MIME type (the file extension is used when unknown)

        Returns:
            IngestResult; never raises
        """
        reader = DocumentSourceReader(self.registry, self.chunker, file_bytes, source, mime_type)
        return self.run(case_id, source, reader)

    def ingest_case_data(self, case_id: str, snapshot: CaseFieldsSnapshot | None = None) -> IngestResult:
        """
        Ingest a case's own fields under the CASE_DATA source.

        When no snapshot is given the stored case is loaded.
        """
        if snapshot is None:
            try:
                case = self.cases.find_case(case_id)
            except PersistenceFailure as e:
                return IngestResult.failure(ErrorCode.DATABASE_ERROR, e.message, case_id=case_id)
            if case is None:
                return IngestResult.failure(
                    ErrorCode.NOT_FOUND, f"Case {case_id} not found", case_id=case_id, source=CASE_DATA_SOURCE
                )
            snapshot = case.fields_snapshot()

        return self.run(case_id, CASE_DATA_SOURCE, CaseFieldSourceReader(snapshot))

    def run(self, case_id: str, source: str, reader: SourceReader) -> IngestResult:
        """Run one source through resolve, read, embed and replace. Never raises."""
        try:
            return self._run(case_id, source, reader)
        except Exception as e:
            logger.exception(f"Unexpected ingestion failure for {source}: {e}")
            return IngestResult.failure(ErrorCode.UNKNOWN_ERROR, str(e), case_id=case_id, source=source)

    def _run(self, case_id: str, source: str, reader: SourceReader) -> IngestResult:
        try:
            resolved_id = self.cases.resolve_case_id(case_id)
        except PersistenceFailure as e:
            return IngestResult.failure(ErrorCode.DATABASE_ERROR, e.message, case_id=case_id, source=source)

        log_with_context(logger, logging.INFO, f"Ingesting {source}", case_id=resolved_id, source=source)

        try:
            pieces = reader.read()
        except (ExtractionFailure, ChunkingFailure) as e:
            log_with_context(
                logger, logging.WARNING, f"Ingestion of {source} rejected: {e.message}",
                case_id=resolved_id, code=e.code.value,
            )
            return IngestResult.failure(e.code, e.message, case_id=resolved_id, source=source)

        embedded: list[tuple[SourceChunk, list[float], str]] = []
        try:
            for piece in pieces:
                result = self.router.call_embeddings([piece.content])[0]
                embedded.append((piece, result.embedding, result.model))
        except ConfigurationMissing as e:
            return self._embedding_failure(e.code, e.message, resolved_id, source, len(embedded), len(pieces))
        except ProviderUnavailable as e:
            code = ErrorCode.EMBEDDING_MODEL_ACCESS if e.fatal else ErrorCode.EMBEDDING_ERROR
            return self._embedding_failure(code, e.message, resolved_id, source, len(embedded), len(pieces))

        ingested_at = utc_now()
        chunks = [
            KnowledgeChunk(
                case_id=resolved_id,
                content=piece.content,
                embedding=vector,
                metadata=ChunkMetadata(
                    source=source,
                    source_type=reader.source_type,
                    page=piece.page,
                    chunk_index=index,
                    total_chunks=len(embedded),
                    ingested_at=ingested_at,
                    embedding_model=model,
                    data_type=piece.data_type,
                ),
            )
            for index, (piece, vector, model) in enumerate(embedded)
        ]

        return self._replace_source(resolved_id, source, chunks)

    def _embedding_failure(
        self,
        code: ErrorCode,
        message: str,
        case_id: str,
        source: str,
        done: int,
        total: int,
    ) -> IngestResult:
        log_with_context(
            logger, logging.ERROR, f"Embedding failed for {source} after {done}/{total} chunks: {message}",
            case_id=case_id, code=code.value,
        )
        return IngestResult.failure(code, message, case_id=case_id, source=source, embedded=done)

    def _replace_source(self, case_id: str, source: str, chunks: list[KnowledgeChunk]) -> IngestResult:
        inserted = 0
        with self._exclusive(case_id, source):
            try:
                deleted = self.store.delete_by_source(case_id, source)
                for chunk in chunks:
                    self.store.insert_chunk(chunk)
                    inserted += 1
            except PersistenceFailure as e:
                log_with_context(
                    logger, logging.ERROR,
                    f"Storage failed for {source} after {inserted}/{len(chunks)} rows: {e.message}",
                    case_id=case_id,
                )
                return IngestResult.failure(
                    ErrorCode.DATABASE_ERROR,
                    e.message,
                    case_id=case_id,
                    source=source,
                    chunks=inserted,
                    embedded=len(chunks),
                )

        log_with_context(
            logger, logging.INFO, f"Ingested {inserted} chunks from {source}",
            case_id=case_id, deleted=deleted,
        )
        return IngestResult(
            success=True,
            case_id=case_id,
            source=source,
            chunks=inserted,
            deleted=deleted,
            embedded=len(chunks),
        )
