from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List

from pydantic import BaseModel, ConfigDict, Field, field_serializer


@dataclass(frozen=True)
class MetadataDiff:
    """Tips gained and lost between an ancestor snapshot and a newer one."""

    added: FrozenSet[str]
    removed: FrozenSet[str]

    @property
    def unchanged(self) -> bool:
        return not self.added and not self.removed


class BackupMetadata(BaseModel):
    """Contents of a bundle's ``.meta.json`` companion file.

    Records the tips (commits that are nobody's parent, i.e. the newest
    commits) and roots (commits without parents) of the repository at the
    time the bundle was captured.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tip_ids: FrozenSet[str] = Field(default_factory=frozenset, alias="git-bundle-tips")
    root_ids: FrozenSet[str] = Field(default_factory=frozenset, alias="git-repo-roots")
    commit_count: int = Field(default=0, ge=0, alias="commit-count")
    missing_count: int = Field(default=0, ge=0, alias="missing-count")

    @field_serializer("tip_ids", "root_ids")
    def serialize_ids(self, ids: FrozenSet[str]) -> List[str]:
        return sorted(ids)

    def to_dict(self) -> Dict[str, Any]:
        exclude = {"missing_count"} if self.missing_count == 0 else None
        return self.model_dump(by_alias=True, exclude=exclude)

    def to_json(self) -> str:
        exclude = {"missing_count"} if self.missing_count == 0 else None
        return self.model_dump_json(by_alias=True, exclude=exclude, indent=2)

    @classmethod
    def from_json(cls, text: str) -> "BackupMetadata":
        return cls.model_validate_json(text)

    @classmethod
    def load(cls, path: Path) -> "BackupMetadata":
        return cls.from_json(Path(path).read_text())

    def save(self, path: Path) -> None:
        Path(path).write_text(self.to_json())

    def compare_to_ancestor(self, ancestor: "BackupMetadata") -> MetadataDiff:
        """Tips added since the ancestor snapshot, and ancestor tips no longer present."""
        return MetadataDiff(
            added=self.tip_ids - ancestor.tip_ids,
            removed=ancestor.tip_ids - self.tip_ids,
        )
