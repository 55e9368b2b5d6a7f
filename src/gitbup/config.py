"""Configuration values for gitbup.

The bundle core never reads configuration itself: callers build these
values (from a JSON file or the environment) and pass them in.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

ANCHOR_FOLDERS_KEY = "anchorFolders"
GIT_PATH_KEY = "gitPath"


@dataclass
class GitBupConfig:
    """Global settings: named anchor folders and the git executable."""

    anchor_folders: Dict[str, str] = field(default_factory=dict)
    git_path: str = "git"
    # Unknown keys found in the file, written back unchanged on save
    other_fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GitBupConfig":
        other = {k: v for k, v in data.items() if k not in (ANCHOR_FOLDERS_KEY, GIT_PATH_KEY)}
        anchors = data.get(ANCHOR_FOLDERS_KEY) or {}
        if not isinstance(anchors, dict):
            raise ValueError(f"'{ANCHOR_FOLDERS_KEY}' must be an object, got {type(anchors).__name__}")
        return cls(
            anchor_folders={str(k): str(v) for k, v in anchors.items()},
            git_path=data.get(GIT_PATH_KEY) or "git",
            other_fields=other,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.other_fields)
        data[ANCHOR_FOLDERS_KEY] = dict(self.anchor_folders)
        data[GIT_PATH_KEY] = self.git_path
        return data

    @classmethod
    def load(cls, path: Path) -> "GitBupConfig":
        """Load from a JSON file. A missing or empty file gives the defaults."""
        path = Path(path)
        if not path.is_file():
            return cls()
        text = path.read_text()
        if not text.strip():
            return cls()
        return cls.from_dict(json.loads(text))

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))

    @classmethod
    def from_env(cls) -> "GitBupConfig":
        """Create config from environment variables (GITBUP_CONFIG, GITBUP_GIT_PATH)."""
        config_file = os.getenv("GITBUP_CONFIG")
        config = cls.load(Path(config_file)) if config_file else cls()
        git_path = os.getenv("GITBUP_GIT_PATH")
        if git_path:
            config.git_path = git_path
        return config

    def find_anchor(self, tag: str) -> Optional[str]:
        return self.anchor_folders.get(tag)

    def set_anchor(self, tag: str, folder: Optional[str]) -> None:
        """Register an existing folder under a tag, or remove the tag if folder is None."""
        if not folder:
            self.anchor_folders.pop(tag, None)
            return
        if not Path(folder).is_dir():
            raise FileNotFoundError(f"Directory not found: '{folder}'")
        self.anchor_folders[tag] = str(Path(folder).resolve())

    def anchored_folder(self, tag: str, label: str) -> Path:
        """The bundle folder for a repository label below an anchor (created if needed)."""
        anchor = self.find_anchor(tag)
        if anchor is None:
            raise KeyError(f"Unknown anchor folder tag: '{tag}'")
        if not Path(anchor).is_dir():
            raise FileNotFoundError(f"The anchor folder '{tag}' no longer exists: {anchor}")
        target = Path(anchor) / label
        if not target.is_dir():
            target.mkdir()
            logger.info(f"Created bundle folder {target}")
        return target


@dataclass(frozen=True)
class ServiceSettings:
    """Settings for the HTTP service."""

    bundle_folder: Path
    prefix: str = "repo"
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        origins = os.getenv("ALLOWED_ORIGINS", "*")
        return cls(
            bundle_folder=Path(os.getenv("GITBUP_FOLDER", ".")),
            prefix=os.getenv("GITBUP_PREFIX", "repo"),
            allowed_origins=[origin.strip() for origin in origins.split(",")],
        )
