from pathlib import Path
from typing import Optional

import pytest

from gitbup.bundles.identity import BundleIdentity
from gitbup.bundles.metadata import BackupMetadata


def write_bundle(
    folder: Path,
    prefix: str,
    bundle_id: str,
    reference_id: Optional[str] = None,
    tier: Optional[int] = 0,
    metadata: Optional[BackupMetadata] = None,
) -> BundleIdentity:
    """Create the bundle file and its metadata file on disk."""
    bundle = BundleIdentity(folder, prefix, bundle_id, reference_id, tier)
    bundle.bundle_path.write_bytes(b"# v2 git bundle\n")
    bundle.save_metadata(metadata or BackupMetadata(tip_ids={"a" * 40}, root_ids={"b" * 40}, commit_count=2))
    return bundle


@pytest.fixture
def bundle_folder(tmp_path):
    folder = tmp_path / "bundles"
    folder.mkdir()
    return folder.resolve()
