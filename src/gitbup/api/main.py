from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List

from gitbup.api.service import BundleService
from gitbup.api.schemas import (
    AnchorResponse,
    BundleResponse,
    ChainResponse,
    ChangesResponse,
    GraphRequest,
    GraphResponse,
    MetadataResponse,
    PurgeResponse,
)
from gitbup.config import GitBupConfig, ServiceSettings
from gitbup.errors import ActiveChainError, BrokenChainError, DuplicateNodeError, InconsistentChainError

import logging

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = ServiceSettings.from_env()

app = FastAPI(title="Git Bundle Backup API")

# In production, set ALLOWED_ORIGINS to a comma-separated list of domains
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize Service
# Bundle folder and prefix come from GITBUP_FOLDER / GITBUP_PREFIX.
service = BundleService(settings.bundle_folder, settings.prefix, GitBupConfig.from_env())


@app.exception_handler(BrokenChainError)
@app.exception_handler(InconsistentChainError)
async def chain_error_handler(request, exc):
    # Folder needs operator attention; nothing to retry
    logger.error(f"Bundle chain integrity error: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# FormatError and malformed metadata files (pydantic ValidationError) are ValueErrors
@app.exception_handler(ValueError)
async def value_error_handler(request, exc):
    logger.warning(f"Rejected request: {exc}")
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.get("/api/bundles", response_model=List[BundleResponse])
def get_bundles():
    """List all bundles in the folder, oldest first."""
    return service.list_bundles()

@app.get("/api/bundles/next", response_model=BundleResponse)
def get_next_bundle(tier: int = Query(0, ge=0, le=9)):
    """Propose the identity of the next bundle for the desired tier."""
    return service.next_bundle(tier)

@app.post("/api/bundles/discard-unused", response_model=List[BundleResponse])
def discard_unused():
    """Discard all bundles that are not part of the active chain."""
    return service.discard_unused()

@app.get("/api/bundles/{bundle_id}", response_model=BundleResponse)
def get_bundle(bundle_id: str):
    bundle = service.get_bundle(bundle_id)
    if not bundle:
        raise HTTPException(status_code=404, detail="Bundle not found")
    return bundle

@app.delete("/api/bundles/{bundle_id}", response_model=BundleResponse)
def discard_bundle(bundle_id: str):
    """Soft-delete a bundle that is not part of the active chain."""
    try:
        bundle = service.discard(bundle_id)
    except ActiveChainError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not bundle:
        raise HTTPException(status_code=404, detail="Bundle not found")
    return bundle

@app.get("/api/bundles/{bundle_id}/metadata", response_model=MetadataResponse)
def get_metadata(bundle_id: str):
    meta = service.get_metadata(bundle_id)
    if not meta:
        raise HTTPException(status_code=404, detail="Bundle metadata not found")
    return meta

@app.get("/api/bundles/{bundle_id}/changes", response_model=ChangesResponse)
def get_changes(bundle_id: str):
    """Tips added and removed relative to the referenced bundle."""
    changes = service.get_changes(bundle_id)
    if not changes:
        raise HTTPException(status_code=404, detail="Bundle metadata not found")
    return changes

@app.get("/api/chain", response_model=ChainResponse)
def get_chain():
    """Get the active tier chain, root first."""
    return service.get_chain()

@app.post("/api/purge", response_model=PurgeResponse)
def purge():
    """Delete old discarded files, keeping one per tier."""
    return service.purge()

@app.post("/api/graph", response_model=GraphResponse)
def build_graph(req: GraphRequest):
    """Build a commit graph from (id, parents) records."""
    try:
        return service.build_graph(req)
    except DuplicateNodeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ValueError as e:
        # cycle in the posted records
        raise HTTPException(status_code=422, detail=str(e))

@app.get("/api/anchors", response_model=List[AnchorResponse])
def get_anchors():
    return service.list_anchors()

@app.get("/health")
def health_check():
    return {"status": "ok", "folder": str(service.folder), "prefix": service.prefix}
