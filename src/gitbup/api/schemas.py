from typing import List, Optional
from pydantic import BaseModel, Field

class BundleResponse(BaseModel):
    id: str
    prefix: str
    tier: Optional[int] = None  # None for tier-less bundles
    reference_id: Optional[str] = None
    file_name: str
    meta_file_name: str
    exists: bool
    in_chain: bool

class ChainResponse(BaseModel):
    depth: int
    tiers: List[BundleResponse]

class PurgeResponse(BaseModel):
    files: List[str]

class MetadataResponse(BaseModel):
    id: str
    tip_ids: List[str]
    root_ids: List[str]
    commit_count: int
    missing_count: int = 0

class ChangesResponse(BaseModel):
    id: str
    ancestor_id: Optional[str] = None
    added: List[str]
    removed: List[str]

class CommitRecord(BaseModel):
    id: str
    parents: List[str] = Field(default_factory=list)

class GraphRequest(BaseModel):
    commits: List[CommitRecord]
    prune_missing: bool = False

class GraphNode(BaseModel):
    id: str
    parents: List[str]
    children: List[str]
    observed: bool

class GraphEdge(BaseModel):
    source: str
    target: str

class GraphResponse(BaseModel):
    nodes: List[GraphNode]
    edges: List[GraphEdge]
    # Node ids, children before parents
    order: List[str]
    tips: List[str]
    roots: List[str]
    missing: List[str]
    pruned: List[str] = Field(default_factory=list)
    complete: bool

class AnchorResponse(BaseModel):
    tag: str
    folder: str
    exists: bool
