"""Schemas for the case knowledge base (chunks, ingestion results, retrieval)."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from casesim.core.errors import ErrorCode
from casesim.core.schemas_base import CamelModel
from casesim.core.schemas_cases import CaseFieldsSnapshot

SourceType = Literal["document", "case_data"]

CASE_DATA_SOURCE = "CASE_DATA"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChunkMetadata(CamelModel):
    """Provenance stored alongside every chunk."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    source: str = Field(..., description="File name, or CASE_DATA for case-field chunks")
    source_type: SourceType = Field(default="document")
    page: int | None = Field(default=None, description="1-indexed page the chunk starts on")
    chunk_index: int = Field(..., ge=0)
    total_chunks: int = Field(..., ge=1)
    ingested_at: datetime = Field(default_factory=utc_now)
    embedding_model: str | None = None
    data_type: str | None = Field(default=None, description="Case field the chunk was built from")


class KnowledgeChunk(CamelModel):
    """A bounded fragment of case reference text with its embedding."""

    id: str | None = None
    case_id: str
    content: str
    embedding: list[float] | None = Field(default=None, repr=False)
    metadata: ChunkMetadata
    created_at: datetime | None = None


class RankedChunk(CamelModel):
    """A retrieval hit."""

    id: str | None
    content: str
    score: float
    metadata: ChunkMetadata


class RetrievalResult(CamelModel):
    """Ranked hits plus the strategy that produced them."""

    strategy: Literal["vector", "lexical"]
    results: list[RankedChunk] = Field(default_factory=list)


class IngestResult(CamelModel):
    """Discriminated ingestion result."""

    success: bool
    case_id: str | None = None
    source: str | None = None
    chunks: int = Field(default=0, description="Chunks inserted by this ingestion")
    deleted: int = Field(default=0, description="Prior chunks removed for the same source")
    embedded: int = Field(default=0, description="Chunks embedded before success or failure")
    error: str | None = None
    code: ErrorCode | None = None

    @property
    def chunks_inserted(self) -> int:
        return self.chunks

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        error: str,
        case_id: str | None = None,
        source: str | None = None,
        chunks: int = 0,
        embedded: int = 0,
    ) -> "IngestResult":
        return cls(
            success=False,
            code=code,
            error=error,
            case_id=case_id,
            source=source,
            chunks=chunks,
            embedded=embedded,
        )


class KnowledgeQueryRequest(CamelModel):
    query: str = Field(..., min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=50)


class KnowledgeDeleteRequest(CamelModel):
    ids: list[str] | None = None
    source: str | None = None


class CaseSyncRequest(CamelModel):
    case_fields_snapshot: CaseFieldsSnapshot | None = None
