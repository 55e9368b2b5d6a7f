import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from gitbup.bundles.chain import TierChain
from gitbup.bundles.identity import (
    BUNDLE_EXTENSION,
    MAX_TIER,
    META_SUFFIX,
    STALE_SUFFIX,
    BundleIdentity,
    decode_bundle_name,
    make_bundle_id,
)
from gitbup.errors import ActiveChainError, InconsistentChainError

logger = logging.getLogger(__name__)


class BundleCatalog:
    """The bundles of one repository (prefix) in one folder.

    The catalog may hold bundles that do not form a valid tier chain;
    ``chain`` is the subset that does, rebuilt after every change.
    """

    def __init__(self, folder: Optional[Path] = None, prefix: str = ""):
        self.folder = Path(folder).resolve() if folder else Path.cwd().resolve()
        self.prefix = prefix
        self._bundles: Dict[str, BundleIdentity] = {}
        self.chain = TierChain(self)
        self.discover()

    @staticmethod
    def _key(bundle_id: str) -> str:
        return bundle_id.casefold()

    def __len__(self) -> int:
        return len(self._bundles)

    def __iter__(self) -> Iterator[BundleIdentity]:
        return iter(list(self._bundles.values()))

    def __contains__(self, item: Union[str, BundleIdentity]) -> bool:
        bundle_id = item.bundle_id if isinstance(item, BundleIdentity) else item
        return self._key(bundle_id) in self._bundles

    @property
    def bundles(self) -> List[BundleIdentity]:
        return list(self._bundles.values())

    def discover(self) -> List[BundleIdentity]:
        """Insert bundles found in the folder that are not in the catalog yet.

        Returns the newly inserted bundles.
        """
        added: List[BundleIdentity] = []
        if not self.folder.is_dir():
            logger.debug(f"Bundle folder {self.folder} does not exist")
            self.chain.rebuild()
            return added

        for path in self._list_files(f".{BUNDLE_EXTENSION}"):
            bundle = decode_bundle_name(str(path))
            if bundle is None:
                logger.debug(f"Skipping {path.name}: not a bundle name")
                continue
            if bundle.folder != self.folder or bundle.prefix != self.prefix:
                continue
            key = self._key(bundle.bundle_id)
            if key not in self._bundles:
                self._bundles[key] = bundle
                added.append(bundle)

        try:
            self.chain.rebuild()
        except Exception:
            for bundle in added:
                del self._bundles[self._key(bundle.bundle_id)]
            raise
        if added:
            logger.info(f"Discovered {len(added)} bundle(s) for '{self.prefix}' in {self.folder}")
        return added

    def _list_files(self, suffix: str) -> List[Path]:
        """Files in the folder whose name ends with suffix, ignoring case."""
        suffix = suffix.lower()
        return sorted(
            p for p in self.folder.iterdir() if p.is_file() and p.name.lower().endswith(suffix)
        )

    def find(self, bundle_id: Optional[str]) -> Optional[BundleIdentity]:
        if not bundle_id:
            return None
        return self._bundles.get(self._key(bundle_id))

    def add(self, bundle: BundleIdentity) -> bool:
        """Add a bundle whose files exist on disk.

        Does nothing if the files are missing or the id is already present.
        Consider calling discard_unused() afterwards.
        """
        if not bundle.exists():
            return False
        key = self._key(bundle.bundle_id)
        if key in self._bundles:
            return False
        self._bundles[key] = bundle
        try:
            self.chain.rebuild()
        except Exception:
            del self._bundles[key]
            raise
        logger.info(f"Added bundle {bundle.bundle_file_name}")
        return True

    def next_bundle(self, tier: int, stamp: Optional[datetime] = None) -> BundleIdentity:
        """Propose the identity for the next bundle (not persisted).

        The tier is lowered to the current chain depth if needed: a backup
        cannot skip a tier.
        """
        if not 0 <= tier <= MAX_TIER:
            raise ValueError(f"Expecting a tier in the range 0-{MAX_TIER}, got {tier}")
        tier = min(tier, self.chain.depth)
        bundle_id = make_bundle_id(stamp)
        if tier == 0:
            return BundleIdentity(self.folder, self.prefix, bundle_id, None, 0)
        reference = self.chain[tier - 1]
        return BundleIdentity(self.folder, self.prefix, bundle_id, reference.bundle_id, tier)

    def discard_by_id(self, bundle_id: str) -> Optional[BundleIdentity]:
        """Remove a bundle from the catalog and soft-delete its files.

        Raises ActiveChainError if the bundle is part of the tier chain.
        """
        bundle = self.find(bundle_id)
        if bundle is None:
            return None
        if self.chain.contains(bundle):
            raise ActiveChainError(
                f"Cannot discard a bundle that is still in active use: {bundle.bundle_file_name}"
            )
        del self._bundles[self._key(bundle.bundle_id)]
        bundle.discard()
        logger.info(f"Discarded bundle {bundle.bundle_file_name}")
        self.chain.rebuild()
        return bundle

    def discard(self, bundle: BundleIdentity) -> Optional[BundleIdentity]:
        return self.discard_by_id(bundle.bundle_id)

    def discard_unused(self) -> List[BundleIdentity]:
        """Discard every bundle that is not part of the tier chain."""
        unused = [b for b in self._bundles.values() if not self.chain.contains(b)]
        for bundle in unused:
            self.discard(bundle)
        return unused

    def purge(self) -> List[Path]:
        """Delete stale (discarded) files, keeping the newest one per tier.

        Works on the folder listing, not on the catalog. Returns the deleted paths.
        """
        if not self.folder.is_dir():
            return []

        # Stale bundle files and stale metadata files, keyed by bundle id;
        # either one may exist without the other.
        stale_bundles: Dict[str, BundleIdentity] = {}
        stale_files: Dict[str, List[Path]] = {}
        for suffix in (BUNDLE_EXTENSION + STALE_SUFFIX, BUNDLE_EXTENSION + META_SUFFIX + STALE_SUFFIX):
            for path in self._list_files("." + suffix):
                bundle = decode_bundle_name(str(path)[: -len(suffix) + len(BUNDLE_EXTENSION)])
                if bundle is None or bundle.folder != self.folder or bundle.prefix != self.prefix:
                    continue
                key = self._key(bundle.bundle_id)
                stale_bundles.setdefault(key, bundle)
                stale_files.setdefault(key, []).append(path)

        newest: Dict[Optional[int], BundleIdentity] = {}
        for bundle in stale_bundles.values():
            current = newest.get(bundle.tier)
            if current is None or bundle.bundle_id > current.bundle_id:
                newest[bundle.tier] = bundle

        purged: List[Path] = []
        for key, bundle in stale_bundles.items():
            if newest[bundle.tier] is bundle:
                continue
            for path in stale_files[key]:
                path.unlink()
                purged.append(path)
        if purged:
            logger.info(f"Purged {len(purged)} stale file(s) from {self.folder}")
        return purged

    def find_referenced_bundle(self, bundle: BundleIdentity) -> Optional[BundleIdentity]:
        """Find the bundle that ``bundle`` references (None if absent or a root).

        Raises InconsistentChainError if the referenced bundle's tier does not
        precede the bundle's tier.
        """
        referenced = self.find(bundle.reference_id)
        if referenced is None:
            return None
        if bundle.tier is None or referenced.tier is None:
            consistent = bundle.tier is None and referenced.tier is None
        else:
            consistent = referenced.tier + 1 == bundle.tier
        if not consistent:
            raise InconsistentChainError(
                f"Inconsistent tier linkage from {bundle.bundle_file_name} to {referenced.bundle_file_name}"
            )
        return referenced
