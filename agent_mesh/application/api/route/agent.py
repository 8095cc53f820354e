from typing import Annotated, Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
import structlog

from agent_mesh.domain.models.errors import MeshBusyError, MeshError, StorageError
from agent_mesh.domain.models.records import DocumentMetadata, DocumentType, SearchMode
from agent_mesh.domain.orchestration.core.main_agent import AgentMesh
from agent_mesh.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1")


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)


class ChatResponse(BaseModel):
    response: str


class DocumentRequest(BaseModel):
    content: str = Field(min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    chunk: bool = False


class DocumentResponse(BaseModel):
    ids: List[str]


class SearchHit(BaseModel):
    id: str
    content: str
    score: float
    match_type: str
    metadata: Dict[str, Any]


class EvictionResponse(BaseModel):
    message: str


def get_mesh(request: Request) -> AgentMesh:
    return request.app.state.mesh


MeshDep = Annotated[AgentMesh, Depends(get_mesh)]


@router.post("/mesh/chat", response_model=ChatResponse)
async def chat_endpoint(request: ChatRequest, mesh: MeshDep):
    """Run a request through the mesh and return the synthesized answer"""
    try:
        response = await mesh.process_request(request.message)
    except MeshBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MeshError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error("Chat request failed", error=str(e))
        raise HTTPException(status_code=500, detail=f"Request failed: {e}")
    return ChatResponse(response=response)


@router.post("/documents", response_model=DocumentResponse, status_code=201)
async def add_document(request: DocumentRequest, mesh: MeshDep):
    metadata = DocumentMetadata.model_validate({"source": "user", "type": DocumentType.TEXT, **request.metadata})
    try:
        if request.chunk:
            documents = await mesh.store.add_document_with_chunking(request.content, metadata)
        else:
            documents = [await mesh.store.add_document(request.content, metadata)]
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return DocumentResponse(ids=[doc.id for doc in documents])


@router.get("/documents/search", response_model=List[SearchHit])
async def search_documents(
    mesh: MeshDep,
    q: str = Query(min_length=1),
    limit: int = Query(default=10, ge=1, le=100),
    mode: SearchMode = SearchMode.HYBRID,
    threshold: float = Query(default=0.0, ge=0.0, le=1.0),
    doc_type: Optional[DocumentType] = None,
):
    metadata_filter = {"type": doc_type.value} if doc_type else None
    results = await mesh.store.search(
        q,
        limit=limit,
        search_mode=mode,
        threshold=threshold,
        filter=metadata_filter,
    )
    return [
        SearchHit(
            id=result.document.id,
            content=result.document.content,
            score=result.score,
            match_type=result.match_type.value,
            metadata=result.document.metadata.model_dump(mode="json", exclude_none=True),
        )
        for result in results
    ]


@router.post("/context/evict", response_model=EvictionResponse)
async def evict_context(mesh: MeshDep):
    return EvictionResponse(message=await mesh.trigger_eviction())


@router.get("/context")
async def get_context(mesh: MeshDep):
    return {
        "summary": mesh.get_context_summary(),
        "messages": [m.model_dump() for m in mesh.get_context_for_llm()],
    }


@router.delete("/context", status_code=204)
async def clear_context(mesh: MeshDep):
    await mesh.clear_context()


@router.get("/mesh/state")
async def mesh_state(mesh: MeshDep):
    state = mesh.get_state()
    state["data"] = await mesh.get_data_stats()
    state["metrics"] = metrics.get_metrics_summary()
    return state
