import logging
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from gitbup.bundles.metadata import BackupMetadata
from gitbup.dag.models import CommitId, CommitNode
from gitbup.errors import DuplicateNodeError

logger = logging.getLogger(__name__)


class CommitGraph:
    """Commit history as a DAG, built from (id, parent ids) records.

    A node exists as soon as any record mentions it. Nodes that were only
    mentioned as a parent are placeholders ("missing") until their own
    record arrives.
    """

    def __init__(self):
        self.nodes: Dict[CommitId, CommitNode] = {}

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, oid: CommitId) -> bool:
        return oid in self.nodes

    def __iter__(self) -> Iterator[CommitNode]:
        return iter(self.nodes.values())

    def get(self, oid: CommitId) -> CommitNode:
        """Get the node for the given id, creating a placeholder if needed."""
        node = self.nodes.get(oid)
        if node is None:
            node = CommitNode(oid=oid)
            self.nodes[oid] = node
        return node

    def find(self, oid: CommitId) -> Optional[CommitNode]:
        return self.nodes.get(oid)

    def insert(self, oid: CommitId, parent_oids: Sequence[CommitId]) -> CommitNode:
        """Insert an observed commit and register it as a child of each parent."""
        node = self.get(oid)
        if node.observed:
            raise DuplicateNodeError(f"Duplicate node: {oid}")
        node.observed = True
        node.parents = list(parent_oids)
        for parent_oid in node.parents:
            self.get(parent_oid).children.add(oid)
        return node

    def ingest(self, records: Iterable[Tuple[CommitId, Sequence[CommitId]]]) -> int:
        """Insert a stream of (id, parent ids) records. Returns the number inserted."""
        count = 0
        for oid, parent_oids in records:
            self.insert(oid, parent_oids)
            count += 1
        return count

    @property
    def roots(self) -> List[CommitNode]:
        return [n for n in self.nodes.values() if not n.parents]

    @property
    def tips(self) -> List[CommitNode]:
        return [n for n in self.nodes.values() if not n.children]

    @property
    def missing(self) -> List[CommitNode]:
        return [n for n in self.nodes.values() if not n.observed]

    @property
    def complete(self) -> bool:
        return all(n.observed for n in self.nodes.values())

    def prune_missing(self) -> List[CommitNode]:
        """Remove placeholder nodes and drop them from their children's parent lists.

        Used when the log source is known to be partial (e.g. a shallow clone).
        Returns the pruned nodes.
        """
        missing = self.missing
        for node in missing:
            for child_oid in node.children:
                child = self.nodes.get(child_oid)
                if child is not None:
                    child.parents = [p for p in child.parents if p != node.oid]
        for node in missing:
            del self.nodes[node.oid]
        if missing:
            logger.info(f"Pruned {len(missing)} missing commit(s) from the graph")
        return missing

    def snapshot(self) -> BackupMetadata:
        """Capture the current tips and roots as bundle metadata."""
        observed = sum(1 for n in self.nodes.values() if n.observed)
        return BackupMetadata(
            tip_ids=frozenset(str(n.oid) for n in self.tips),
            root_ids=frozenset(str(n.oid) for n in self.roots),
            commit_count=observed,
            missing_count=len(self.nodes) - observed,
        )


def topological_sort(graph: CommitGraph) -> List[CommitNode]:
    """Sorts commits topologically (children before parents, i.e. newest first)."""
    # Edges point child -> parent; a post-order walk along them emits
    # parents first, so the result is reversed at the end.
    result: List[CommitNode] = []
    visited: Set[CommitId] = set()
    temp_mark: Set[CommitId] = set()

    for start in sorted(graph.nodes):  # deterministic starting order
        if start in visited:
            continue
        temp_mark.add(start)
        stack = [(start, iter(graph.nodes[start].parents))]
        while stack:
            oid, parents = stack[-1]
            for parent in parents:
                if parent in visited or parent not in graph.nodes:
                    continue
                if parent in temp_mark:
                    raise ValueError("Cycle detected in commit graph")
                temp_mark.add(parent)
                stack.append((parent, iter(graph.nodes[parent].parents)))
                break
            else:
                stack.pop()
                temp_mark.remove(oid)
                visited.add(oid)
                result.append(graph.nodes[oid])

    return list(reversed(result))
