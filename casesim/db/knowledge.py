"""Knowledge chunk storage (table ``case_knowledge``)."""

import json
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from supabase import Client

from casesim.core.errors import PersistenceFailure
from casesim.core.logging import get_logger
from casesim.core.schemas_knowledge import ChunkMetadata, KnowledgeChunk

logger = get_logger(__name__)

TABLE = "case_knowledge"


def summarize_sources(chunks: list[KnowledgeChunk]) -> list[dict[str, Any]]:
    """Distinct sources with chunk counts, in first-seen order."""
    summary: dict[str, dict[str, Any]] = {}
    for chunk in chunks:
        entry = summary.setdefault(
            chunk.metadata.source,
            {
                "source": chunk.metadata.source,
                "sourceType": chunk.metadata.source_type,
                "chunks": 0,
                "embeddingModel": chunk.metadata.embedding_model,
            },
        )
        entry["chunks"] += 1
    return list(summary.values())


class KnowledgeStore(ABC):
    """Case knowledge chunks. Shared read-mostly; written only by ingestion."""

    @abstractmethod
    def insert_chunk(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        """Insert one chunk and return it with its id."""

    @abstractmethod
    def delete_by_source(self, case_id: str, source: str) -> int:
        """Delete every chunk for (case_id, source). Returns rows removed."""

    @abstractmethod
    def delete_by_ids(self, case_id: str, ids: list[str]) -> int:
        """Delete chunks of a case by id. Returns rows removed."""

    @abstractmethod
    def list_chunks(self, case_id: str, source: str | None = None) -> list[KnowledgeChunk]:
        """Chunks of a case in ingestion order."""

    def list_sources(self, case_id: str) -> list[dict[str, Any]]:
        return summarize_sources(self.list_chunks(case_id))


class InMemoryKnowledgeStore(KnowledgeStore):
    """Process-local store used for tests and local runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: list[KnowledgeChunk] = []

    def insert_chunk(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        stored = chunk.model_copy(
            update={
                "id": chunk.id or str(uuid.uuid4()),
                "created_at": chunk.created_at or datetime.now(timezone.utc),
            }
        )
        with self._lock:
            self._rows.append(stored)
        return stored

    def delete_by_source(self, case_id: str, source: str) -> int:
        with self._lock:
            before = len(self._rows)
            self._rows = [
                r for r in self._rows if not (r.case_id == case_id and r.metadata.source == source)
            ]
            return before - len(self._rows)

    def delete_by_ids(self, case_id: str, ids: list[str]) -> int:
        wanted = set(ids)
        with self._lock:
            before = len(self._rows)
            self._rows = [r for r in self._rows if not (r.case_id == case_id and r.id in wanted)]
            return before - len(self._rows)

    def list_chunks(self, case_id: str, source: str | None = None) -> list[KnowledgeChunk]:
        with self._lock:
            return [
                r
                for r in self._rows
                if r.case_id == case_id and (source is None or r.metadata.source == source)
            ]


def _parse_embedding(value: Any) -> list[float] | None:
    # pgvector columns come back from PostgREST as a "[0.1,0.2]" string
    if value is None:
        return None
    if isinstance(value, str):
        return [float(v) for v in json.loads(value)]
    return [float(v) for v in value]


def _row_to_chunk(row: dict[str, Any]) -> KnowledgeChunk:
    return KnowledgeChunk(
        id=str(row["id"]),
        case_id=row["case_id"],
        content=row.get("content") or "",
        embedding=_parse_embedding(row.get("embedding")),
        metadata=ChunkMetadata.model_validate(row.get("metadata") or {}),
        created_at=row.get("created_at"),
    )


class SupabaseKnowledgeStore(KnowledgeStore):
    """Knowledge chunks stored in Supabase with a pgvector embedding column."""

    def __init__(self, client: Client):
        self.client = client

    def insert_chunk(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        """
        Insert one chunk row.

        Raises:
            PersistenceFailure: If the insert fails or returns no row
        """
        payload = {
            "case_id": chunk.case_id,
            "content": chunk.content,
            "embedding": chunk.embedding,
            "metadata": chunk.metadata.model_dump(mode="json", exclude_none=True),
        }
        try:
            response = self.client.table(TABLE).insert(payload).execute()
        except Exception as e:
            logger.error(f"Failed to insert knowledge chunk: {e}", extra={"case_id": chunk.case_id})
            raise PersistenceFailure(f"Failed to insert knowledge chunk: {e}") from e

        if not response.data:
            raise PersistenceFailure("No data returned from knowledge insert")
        return _row_to_chunk(response.data[0])

    def delete_by_source(self, case_id: str, source: str) -> int:
        try:
            response = (
                self.client.table(TABLE)
                .delete()
                .eq("case_id", case_id)
                .eq("metadata->>source", source)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to delete knowledge for source {source}: {e}", extra={"case_id": case_id})
            raise PersistenceFailure(f"Failed to delete prior chunks: {e}") from e
        return len(response.data or [])

    def delete_by_ids(self, case_id: str, ids: list[str]) -> int:
        if not ids:
            return 0
        try:
            response = (
                self.client.table(TABLE).delete().eq("case_id", case_id).in_("id", ids).execute()
            )
        except Exception as e:
            logger.error(f"Failed to delete knowledge chunks: {e}", extra={"case_id": case_id})
            raise PersistenceFailure(f"Failed to delete chunks: {e}") from e
        return len(response.data or [])

    def list_chunks(self, case_id: str, source: str | None = None) -> list[KnowledgeChunk]:
        try:
            query = self.client.table(TABLE).select("*").eq("case_id", case_id)
            if source is not None:
                query = query.eq("metadata->>source", source)
            response = query.order("created_at").execute()
        except Exception as e:
            logger.error(f"Failed to list knowledge: {e}", extra={"case_id": case_id})
            raise PersistenceFailure(f"Failed to list knowledge: {e}") from e

        chunks = [_row_to_chunk(row) for row in response.data or []]
        # Rows inserted in the same instant keep chunk order
        chunks.sort(key=lambda c: (c.created_at or datetime.min.replace(tzinfo=timezone.utc), c.metadata.chunk_index))
        return chunks
