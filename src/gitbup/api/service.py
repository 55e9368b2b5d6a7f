import logging
from pathlib import Path
from typing import List, Optional

from gitbup.api.schemas import (
    AnchorResponse,
    BundleResponse,
    ChainResponse,
    ChangesResponse,
    GraphEdge,
    GraphNode,
    GraphRequest,
    GraphResponse,
    MetadataResponse,
    PurgeResponse,
)
from gitbup.bundles.catalog import BundleCatalog
from gitbup.bundles.identity import BundleIdentity
from gitbup.bundles.metadata import BackupMetadata
from gitbup.config import GitBupConfig
from gitbup.dag.graph import CommitGraph, topological_sort

logger = logging.getLogger(__name__)


class BundleService:
    def __init__(self, folder: Path = Path("."), prefix: str = "repo", config: Optional[GitBupConfig] = None):
        self.folder = Path(folder).resolve()
        self.prefix = prefix
        self.config = config or GitBupConfig()
        self.catalog: Optional[BundleCatalog] = None

    def reset(self, folder: Path, prefix: str):
        """Point the service at another bundle folder and drop the cached catalog."""
        self.folder = Path(folder).resolve()
        self.prefix = prefix
        self.catalog = None

    def ensure_loaded(self) -> BundleCatalog:
        """Load the catalog, or pick up bundles added to the folder since."""
        if self.catalog is None:
            self.catalog = BundleCatalog(self.folder, self.prefix)
            logger.info(f"Loaded {len(self.catalog)} bundle(s) from {self.folder}")
        else:
            self.catalog.discover()
        return self.catalog

    def list_bundles(self) -> List[BundleResponse]:
        catalog = self.ensure_loaded()
        return [self._to_response(b) for b in sorted(catalog, key=lambda b: b.bundle_id)]

    def get_bundle(self, bundle_id: str) -> Optional[BundleResponse]:
        bundle = self.ensure_loaded().find(bundle_id)
        if not bundle:
            return None
        return self._to_response(bundle)

    def get_chain(self) -> ChainResponse:
        catalog = self.ensure_loaded()
        return ChainResponse(
            depth=catalog.chain.depth,
            tiers=[self._to_response(b) for b in catalog.chain],
        )

    def next_bundle(self, tier: int) -> BundleResponse:
        return self._to_response(self.ensure_loaded().next_bundle(tier))

    def discard(self, bundle_id: str) -> Optional[BundleResponse]:
        bundle = self.ensure_loaded().discard_by_id(bundle_id)
        if not bundle:
            return None
        return self._to_response(bundle)

    def discard_unused(self) -> List[BundleResponse]:
        discarded = self.ensure_loaded().discard_unused()
        return [self._to_response(b) for b in discarded]

    def purge(self) -> PurgeResponse:
        purged = self.ensure_loaded().purge()
        return PurgeResponse(files=[p.name for p in purged])

    def get_metadata(self, bundle_id: str) -> Optional[MetadataResponse]:
        bundle = self.ensure_loaded().find(bundle_id)
        if not bundle or not bundle.meta_path.is_file():
            return None
        meta = bundle.read_metadata()
        return MetadataResponse(
            id=bundle.bundle_id,
            tip_ids=sorted(meta.tip_ids),
            root_ids=sorted(meta.root_ids),
            commit_count=meta.commit_count,
            missing_count=meta.missing_count,
        )

    def get_changes(self, bundle_id: str) -> Optional[ChangesResponse]:
        """Tips gained and lost since the bundle this one references."""
        catalog = self.ensure_loaded()
        bundle = catalog.find(bundle_id)
        if not bundle or not bundle.meta_path.is_file():
            return None
        ancestor = catalog.find_referenced_bundle(bundle)
        if ancestor is not None and ancestor.meta_path.is_file():
            ancestor_meta = ancestor.read_metadata()
        else:
            # A root bundle: everything is new
            ancestor_meta = BackupMetadata()
        diff = bundle.read_metadata().compare_to_ancestor(ancestor_meta)
        return ChangesResponse(
            id=bundle.bundle_id,
            ancestor_id=ancestor.bundle_id if ancestor else None,
            added=sorted(diff.added),
            removed=sorted(diff.removed),
        )

    def build_graph(self, req: GraphRequest) -> GraphResponse:
        graph = CommitGraph()
        graph.ingest((c.id, c.parents) for c in req.commits)
        missing = sorted(n.oid for n in graph.missing)
        pruned: List[str] = []
        if req.prune_missing:
            pruned = sorted(n.oid for n in graph.prune_missing())

        nodes = []
        edges = []
        for oid, node in graph.nodes.items():
            nodes.append(GraphNode(
                id=oid,
                parents=list(node.parents),
                children=sorted(node.children),
                observed=node.observed,
            ))
            # Edge from child to parent (git style: new -> old)
            for parent in node.parents:
                edges.append(GraphEdge(source=oid, target=parent))

        return GraphResponse(
            nodes=nodes,
            edges=edges,
            order=[n.oid for n in topological_sort(graph)],
            tips=sorted(n.oid for n in graph.tips),
            roots=sorted(n.oid for n in graph.roots),
            missing=[] if req.prune_missing else missing,
            pruned=pruned,
            complete=graph.complete,
        )

    def list_anchors(self) -> List[AnchorResponse]:
        return [
            AnchorResponse(tag=tag, folder=folder, exists=Path(folder).is_dir())
            for tag, folder in sorted(self.config.anchor_folders.items())
        ]

    def _to_response(self, bundle: BundleIdentity) -> BundleResponse:
        in_chain = self.catalog.chain.contains(bundle) if self.catalog else False
        return BundleResponse(
            id=bundle.bundle_id,
            prefix=bundle.prefix,
            tier=bundle.tier,
            reference_id=bundle.reference_id,
            file_name=bundle.bundle_file_name,
            meta_file_name=bundle.meta_file_name,
            exists=bundle.exists(),
            in_chain=in_chain,
        )
