from dataclasses import dataclass, field
from typing import Hashable, List, Set

CommitId = Hashable


@dataclass
class CommitNode:
    oid: CommitId
    parents: List[CommitId] = field(default_factory=list)
    # Ids of the nodes that name this node as a parent (not owned)
    children: Set[CommitId] = field(default_factory=set)
    # False while the node is only known as somebody's parent
    observed: bool = False

    @property
    def is_root(self) -> bool:
        return not self.parents

    @property
    def is_tip(self) -> bool:
        return not self.children
