from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum

from agent_mesh.domain.models.agent_state import new_id


class DocumentType(str, Enum):
    TEXT = "text"
    CODE = "code"
    CONVERSATION = "conversation"
    SUMMARY = "summary"
    MEMORY = "memory"
    TOOL_RESULT = "tool_result"
    USER_INPUT = "user_input"
    AGENT_OUTPUT = "agent_output"


class DocumentMetadata(BaseModel):
    """Descriptive metadata. Unknown keys are kept so callers can filter on them."""
    model_config = ConfigDict(extra="allow")

    source: str
    type: DocumentType
    title: Optional[str] = None
    author: Optional[str] = None
    tags: Optional[List[str]] = None
    language: Optional[str] = None
    parent_id: Optional[str] = None
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None


class Document(BaseModel):
    """A retrievable unit of text in the hybrid store"""
    id: str = Field(default_factory=new_id)
    content: str
    metadata: DocumentMetadata
    embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SearchMode(str, Enum):
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


class SearchResult(BaseModel):
    document: Document
    score: float
    match_type: SearchMode


class SearchOptions(BaseModel):
    limit: int = 10
    threshold: float = 0.0
    search_mode: SearchMode = SearchMode.HYBRID
    semantic_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    filter: Optional[Dict[str, Any]] = None


class ChunkConfig(BaseModel):
    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap: int = Field(default=50, ge=0)
    separator: str = "\n\n"


class MemoryType(str, Enum):
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"
    WORKING = "working"


class AgentMemoryEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    agent_id: str
    type: MemoryType
    content: str
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    access_count: int = 0
    last_accessed: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    embedding: Optional[List[float]] = None


class SliceMessage(BaseModel):
    role: str
    content: str


class ContextSlice(BaseModel):
    """Compressed record of evicted conversation turns"""
    id: str = Field(default_factory=new_id)
    summary: str
    original_token_count: int
    compressed_token_count: int
    embedding: List[float] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    messages: List[SliceMessage] = Field(default_factory=list)
