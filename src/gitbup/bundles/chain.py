import logging
from typing import TYPE_CHECKING, Iterator, List, Optional, Set, Tuple

from gitbup.bundles.identity import BundleIdentity
from gitbup.errors import BrokenChainError

if TYPE_CHECKING:
    from gitbup.bundles.catalog import BundleCatalog

logger = logging.getLogger(__name__)


class TierChain:
    """The active backup lineage of a catalog: one bundle per tier.

    Index 0 is the root (full backup); each following bundle references the
    one before it. The chain always ends at the newest bundle in the catalog.
    """

    def __init__(self, catalog: "BundleCatalog"):
        self.catalog = catalog
        self._tiers: Tuple[BundleIdentity, ...] = ()
        self._ids: Set[str] = set()

    def rebuild(self) -> None:
        """Recompute the chain by walking back from the newest bundle.

        Raises BrokenChainError if a referenced bundle is absent; the chain
        is left as it was in that case.
        """
        bundles = list(self.catalog)
        if not bundles:
            self._tiers = ()
            self._ids = set()
            return

        # Ids are fixed-width UTC stamps, so the max id is the newest bundle
        current = max(bundles, key=lambda b: b.bundle_id)
        walked: List[BundleIdentity] = [current]
        while current.reference_id is not None:
            previous = self.catalog.find_referenced_bundle(current)
            if previous is None:
                raise BrokenChainError(
                    f"The bundle referenced by '{current.bundle_file_name}' is missing"
                )
            walked.append(previous)
            current = previous
        walked.reverse()

        self._tiers = tuple(walked)
        self._ids = {b.bundle_id.casefold() for b in walked}
        logger.debug(f"Rebuilt tier chain of depth {len(walked)} ending at {walked[-1].bundle_file_name}")

    @property
    def depth(self) -> int:
        return len(self._tiers)

    @property
    def tiers(self) -> Tuple[BundleIdentity, ...]:
        return self._tiers

    @property
    def top(self) -> Optional[BundleIdentity]:
        return self._tiers[-1] if self._tiers else None

    def contains(self, bundle: BundleIdentity) -> bool:
        """Check if the chain holds a bundle with the same tier and id."""
        if bundle.tier is None:
            return bundle.bundle_id.casefold() in self._ids
        if bundle.tier < self.depth:
            return self._tiers[bundle.tier].bundle_id.casefold() == bundle.bundle_id.casefold()
        return False

    def __contains__(self, bundle: BundleIdentity) -> bool:
        return self.contains(bundle)

    def __len__(self) -> int:
        return len(self._tiers)

    def __iter__(self) -> Iterator[BundleIdentity]:
        return iter(self._tiers)

    def __getitem__(self, index: int) -> BundleIdentity:
        return self._tiers[index]
