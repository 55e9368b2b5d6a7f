import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from gitbup.bundles.metadata import BackupMetadata
from gitbup.errors import FormatError

logger = logging.getLogger(__name__)

BUNDLE_EXTENSION = "bundle"
META_SUFFIX = ".meta.json"
STALE_SUFFIX = ".bak"
NO_REFERENCE = "-"
MAX_TIER = 9

ID_FORMAT = "%Y%m%d-%H%M%S"

# Fixed width and a leading "2": string order equals chronological order.
_ID_PATTERN = re.compile(r"2[0-9]{7}-[0-9]{6}")
_TIER_SEGMENT = re.compile(r"t([0-9])")


def is_valid_id(text: Optional[str]) -> bool:
    """Check if the text is a well-formed bundle id (UTC yyyyMMdd-HHmmss)."""
    if not text:
        return False
    return _ID_PATTERN.fullmatch(text) is not None


def make_bundle_id(stamp: Optional[datetime] = None) -> str:
    """Format a bundle id from the given instant (default: now). Naive stamps are taken as UTC."""
    if stamp is None:
        stamp = datetime.now(timezone.utc)
    elif stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp.astimezone(timezone.utc).strftime(ID_FORMAT)


def parse_bundle_id(bundle_id: str) -> datetime:
    """Inverse of make_bundle_id: the UTC instant a bundle id denotes."""
    if not is_valid_id(bundle_id):
        raise FormatError(f"Not a valid bundle id: {bundle_id!r}")
    return datetime.strptime(bundle_id, ID_FORMAT).replace(tzinfo=timezone.utc)


def encode_bundle_name(
    prefix: str, bundle_id: str, reference_id: Optional[str], tier: Optional[int]
) -> str:
    ref = reference_id or NO_REFERENCE
    if tier is None:
        return f"{prefix}.{bundle_id}.{ref}.{BUNDLE_EXTENSION}"
    return f"{prefix}.{bundle_id}.{ref}.t{tier}.{BUNDLE_EXTENSION}"


@dataclass(frozen=True)
class BundleIdentity:
    """Identity of one backup bundle, as encoded in its file name.

    ``tier`` is 0 for a full backup, 1-9 for an incremental backup that
    references a bundle of the previous tier, and ``None`` for a tier-less
    bundle that chains by id and reference id only.
    """

    folder: Path = field(compare=False)
    prefix: str
    bundle_id: str
    reference_id: Optional[str] = None
    tier: Optional[int] = 0
    # File name as found on disk; bundle_file_name is the lower-case canonical form
    disk_name: Optional[str] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "folder", Path(self.folder))
        if not self.reference_id:
            object.__setattr__(self, "reference_id", None)

        if not self.prefix:
            raise FormatError("A bundle prefix cannot be empty")
        if "/" in self.prefix or os.sep in self.prefix:
            raise FormatError(f"A bundle prefix cannot contain a path separator: {self.prefix!r}")
        if not is_valid_id(self.bundle_id):
            raise FormatError(f"The id ({self.bundle_id}) is not in the expected format")
        if self.tier is not None:
            if isinstance(self.tier, bool) or not isinstance(self.tier, int):
                raise FormatError(f"The tier must be an integer or None, got {self.tier!r}")
            if not 0 <= self.tier <= MAX_TIER:
                raise FormatError(f"Expecting a tier in the range 0-{MAX_TIER}, got {self.tier}")

        if self.reference_id is None:
            if self.tier is not None and self.tier > 0:
                raise FormatError(f"A tier {self.tier} bundle requires a reference id")
            return

        if not is_valid_id(self.reference_id):
            raise FormatError(f"The reference id ({self.reference_id}) is not in the expected format")
        if self.reference_id >= self.bundle_id:
            raise FormatError(
                f"The reference id ({self.reference_id}) is expected to be older "
                f"than the own id ({self.bundle_id})"
            )
        if self.tier == 0:
            raise FormatError("Expecting the reference id to be '-' for a tier 0 bundle")

    @classmethod
    def new_root(
        cls,
        folder: Path,
        prefix: str,
        stamp: Optional[datetime] = None,
        tierless: bool = False,
    ) -> "BundleIdentity":
        """Identity for a new full backup (the backing files do not exist yet)."""
        return cls(
            folder=folder or Path.cwd(),
            prefix=prefix,
            bundle_id=make_bundle_id(stamp),
            reference_id=None,
            tier=None if tierless else 0,
        )

    def derive(self, stamp: Optional[datetime] = None) -> "BundleIdentity":
        """Identity for the next bundle that references this one."""
        if self.tier == MAX_TIER:
            raise FormatError(f"Cannot derive a bundle beyond tier {MAX_TIER}: {self.bundle_file_name}")
        return BundleIdentity(
            folder=self.folder,
            prefix=self.prefix,
            bundle_id=make_bundle_id(stamp),
            reference_id=self.bundle_id,
            tier=None if self.tier is None else self.tier + 1,
        )

    @property
    def is_tierless(self) -> bool:
        return self.tier is None

    @property
    def is_root(self) -> bool:
        return self.reference_id is None

    @property
    def bundle_file_name(self) -> str:
        return encode_bundle_name(self.prefix, self.bundle_id, self.reference_id, self.tier)

    @property
    def meta_file_name(self) -> str:
        return self.bundle_file_name + META_SUFFIX

    @property
    def bundle_path(self) -> Path:
        return self.folder / (self.disk_name or self.bundle_file_name)

    @property
    def meta_path(self) -> Path:
        return self.folder / ((self.disk_name or self.bundle_file_name) + META_SUFFIX)

    def exists(self) -> bool:
        """True if both the bundle file and its metadata file exist."""
        return self.bundle_path.is_file() and self.meta_path.is_file()

    def is_referencing(self, parent: "BundleIdentity") -> bool:
        """Check if this bundle directly extends the given parent bundle."""
        if self.prefix != parent.prefix or self.reference_id != parent.bundle_id:
            return False
        if self.tier is None or parent.tier is None:
            return self.tier is None and parent.tier is None
        return self.tier == parent.tier + 1

    def read_metadata(self) -> BackupMetadata:
        return BackupMetadata.load(self.meta_path)

    def save_metadata(self, metadata: BackupMetadata) -> None:
        """Write the metadata file, overwriting existing metadata."""
        metadata.save(self.meta_path)

    def discard(self) -> None:
        """Soft-delete the bundle and metadata files by renaming them."""
        for path in (self.bundle_path, self.meta_path):
            if path.exists():
                stale = path.with_name(path.name + STALE_SUFFIX)
                path.replace(stale)
                logger.debug(f"Renamed {path.name} -> {stale.name}")


def decode_bundle_name(file_name: str) -> Optional[BundleIdentity]:
    """Parse a bundle file name (with directory part) into a BundleIdentity.

    Returns None if the name is not a bundle name: a bundle folder may hold
    unrelated files, and callers skip those.
    """
    if not file_name:
        return None
    full_path = Path(os.path.abspath(file_name))
    segments = full_path.name.split(".")
    # 4 segments minimum for tier-less names, 5 for tiered names
    if len(segments) < 4:
        return None
    if segments[-1].lower() != BUNDLE_EXTENSION:
        return None

    tier_match = _TIER_SEGMENT.fullmatch(segments[-2].lower())
    if tier_match:
        if len(segments) < 5:
            return None
        tier: Optional[int] = int(tier_match.group(1))
        ref_text, id_text, head = segments[-3], segments[-4], segments[:-4]
    else:
        tier = None
        ref_text, id_text, head = segments[-2], segments[-3], segments[:-3]

    if ref_text != NO_REFERENCE and not is_valid_id(ref_text):
        return None
    if not is_valid_id(id_text):
        return None
    if tier == 0 and ref_text != NO_REFERENCE:
        return None
    if tier is not None and tier > 0 and ref_text == NO_REFERENCE:
        return None

    try:
        return BundleIdentity(
            folder=full_path.parent,
            prefix=".".join(head),
            bundle_id=id_text,
            reference_id=None if ref_text == NO_REFERENCE else ref_text,
            tier=tier,
            disk_name=full_path.name,
        )
    except FormatError:
        # e.g. an empty prefix, or a reference that is not older than the id
        return None
