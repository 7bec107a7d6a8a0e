"""API endpoints for case knowledge: ingestion, retrieval and audit."""

import asyncio

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse

from casesim.api.deps import EngineContext, get_engine
from casesim.api.errors import ingest_response
from casesim.core.logging import get_logger
from casesim.core.schemas_knowledge import (
    CaseSyncRequest,
    KnowledgeChunk,
    KnowledgeDeleteRequest,
    KnowledgeQueryRequest,
)

logger = get_logger(__name__)

router = APIRouter()


def _audit_view(chunk: KnowledgeChunk) -> dict:
    data = chunk.model_dump(by_alias=True, mode="json", exclude={"embedding"})
    data["hasEmbedding"] = bool(chunk.embedding)
    return data


@router.post("/cases/{case_id}/knowledge/ingest")
async def ingest_document(
    case_id: str,
    file: UploadFile = File(...),
    source: str | None = Form(default=None),
    background: bool = Form(default=False),
    engine: EngineContext = Depends(get_engine),
) -> JSONResponse:
    """
    Ingest an uploaded PDF, DOCX or text file into a case's knowledge base.

    Re-ingesting the same source replaces its chunks.

    Args:
        case_id: Case id or slug
        file: Uploaded document
        source: Source name (defaults to the file name)
        background: Queue the ingestion and return a job id

    Returns:
        IngestResult, or ``{jobId, status}`` with 202 when queued

    Raises:
        HTTPException 400: If the upload is empty
    """
    file_bytes = await file.read()
    if not file_bytes:
        raise HTTPException(status_code=400, detail="Empty file")

    source_name = source or file.filename or "upload"
    mime_type = file.content_type

    logger.info(
        f"Received {source_name} ({len(file_bytes)} bytes, {mime_type}) for ingestion",
        extra={"case_id": case_id},
    )

    if background:
        job, _ = await asyncio.to_thread(
            engine.job_queue.submit,
            "knowledge_ingest",
            lambda: engine.ingestion.ingest(case_id, source_name, file_bytes, mime_type).to_wire(),
            input_json={"caseId": case_id, "source": source_name, "mimeType": mime_type, "bytes": len(file_bytes)},
            case_id=case_id,
        )
        return JSONResponse(content={"jobId": job.id, "status": job.status}, status_code=202)

    result = await asyncio.to_thread(engine.ingestion.ingest, case_id, source_name, file_bytes, mime_type)
    return ingest_response(result)


@router.post("/cases/{case_id}/knowledge/sync")
async def sync_case_data(
    case_id: str,
    request: CaseSyncRequest | None = Body(default=None),
    background: bool = Query(default=False),
    engine: EngineContext = Depends(get_engine),
) -> JSONResponse:
    """Ingest a case's own fields under the CASE_DATA source."""
    snapshot = request.case_fields_snapshot if request else None

    if background:
        job, _ = await asyncio.to_thread(
            engine.job_queue.submit,
            "case_data_sync",
            lambda: engine.ingestion.ingest_case_data(case_id, snapshot).to_wire(),
            input_json={"caseId": case_id, "snapshot": snapshot is not None},
            case_id=case_id,
        )
        return JSONResponse(content={"jobId": job.id, "status": job.status}, status_code=202)

    result = await asyncio.to_thread(engine.ingestion.ingest_case_data, case_id, snapshot)
    return ingest_response(result)


@router.post("/cases/{case_id}/knowledge/query")
async def query_knowledge(
    case_id: str,
    request: KnowledgeQueryRequest,
    engine: EngineContext = Depends(get_engine),
) -> dict:
    """Rank a case's knowledge chunks against a query."""
    resolved = await asyncio.to_thread(engine.cases.resolve_case_id, case_id)
    result = await asyncio.to_thread(engine.retriever.query, resolved, request.query, request.top_k)
    return {"caseId": resolved, **result.to_wire()}


@router.get("/cases/{case_id}/knowledge")
async def list_knowledge(
    case_id: str,
    source: str | None = Query(default=None),
    engine: EngineContext = Depends(get_engine),
) -> dict:
    """List a case's chunks in ingestion order, optionally for one source."""
    resolved = await asyncio.to_thread(engine.cases.resolve_case_id, case_id)
    chunks = await asyncio.to_thread(engine.knowledge.list_chunks, resolved, source)
    return {"caseId": resolved, "count": len(chunks), "chunks": [_audit_view(c) for c in chunks]}


@router.get("/cases/{case_id}/knowledge/sources")
async def list_knowledge_sources(case_id: str, engine: EngineContext = Depends(get_engine)) -> dict:
    resolved = await asyncio.to_thread(engine.cases.resolve_case_id, case_id)
    sources = await asyncio.to_thread(engine.knowledge.list_sources, resolved)
    return {"caseId": resolved, "sources": sources}


@router.delete("/cases/{case_id}/knowledge")
async def delete_knowledge(
    case_id: str,
    request: KnowledgeDeleteRequest = Body(...),
    engine: EngineContext = Depends(get_engine),
) -> dict:
    """
    Delete chunks by id or by source.

    Raises:
        HTTPException 400: If neither ids nor source is given
    """
    if not request.ids and not request.source:
        raise HTTPException(status_code=400, detail="Provide ids or source to delete")

    resolved = await asyncio.to_thread(engine.cases.resolve_case_id, case_id)
    if request.ids:
        deleted = await asyncio.to_thread(engine.knowledge.delete_by_ids, resolved, request.ids)
    else:
        deleted = await asyncio.to_thread(engine.knowledge.delete_by_source, resolved, request.source)

    logger.info(f"Deleted {deleted} knowledge chunks", extra={"case_id": resolved})
    return {"success": True, "caseId": resolved, "deleted": deleted}
