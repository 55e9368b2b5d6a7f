from datetime import datetime, timezone

import pytest

from conftest import write_bundle
from gitbup.bundles.catalog import BundleCatalog
from gitbup.bundles.identity import BundleIdentity
from gitbup.errors import ActiveChainError, BrokenChainError, InconsistentChainError

T0 = "20230101-000000"
T1 = "20230102-000000"
T1B = "20230103-000000"
T2 = "20230104-000000"


def make_stack(folder, prefix="repo"):
    """t0 <- t1 <- t2"""
    b0 = write_bundle(folder, prefix, T0, None, 0)
    b1 = write_bundle(folder, prefix, T1, T0, 1)
    b2 = write_bundle(folder, prefix, T2, T1, 2)
    return b0, b1, b2


def test_empty_folder(bundle_folder):
    catalog = BundleCatalog(bundle_folder, "repo")
    assert len(catalog) == 0
    assert catalog.chain.depth == 0
    assert catalog.chain.top is None


def test_missing_folder(tmp_path):
    catalog = BundleCatalog(tmp_path / "nope", "repo")
    assert len(catalog) == 0
    assert catalog.purge() == []


def test_discover(bundle_folder):
    b0, b1, b2 = make_stack(bundle_folder)
    write_bundle(bundle_folder, "other", T0, None, 0)
    (bundle_folder / "notes.txt").write_text("unrelated")
    (bundle_folder / "broken.bundle").write_text("unrelated")

    catalog = BundleCatalog(bundle_folder, "repo")

    assert len(catalog) == 3
    assert catalog.bundles == [b0, b1, b2]
    assert all(b.folder == bundle_folder for b in catalog)
    # nothing new the second time
    assert catalog.discover() == []

    b3 = write_bundle(bundle_folder, "repo", "20230105-000000", T2, 3)
    assert catalog.discover() == [b3]
    assert catalog.chain.top == b3


def test_find(bundle_folder):
    b0, b1, _ = make_stack(bundle_folder)
    catalog = BundleCatalog(bundle_folder, "repo")
    assert catalog.find(T1) == b1
    assert catalog.find("20990101-000000") is None
    assert catalog.find(None) is None
    assert T0 in catalog
    assert b0 in catalog


def test_chain_in_tier_order(bundle_folder):
    b0, b1, b2 = make_stack(bundle_folder)
    sibling = write_bundle(bundle_folder, "repo", T1B, T0, 1)

    catalog = BundleCatalog(bundle_folder, "repo")
    chain = catalog.chain

    assert chain.depth == 3
    assert list(chain) == [b0, b1, b2]
    assert [b.tier for b in chain] == [0, 1, 2]
    for bundle in (b0, b1, b2):
        assert chain.contains(bundle)
        assert bundle in chain
    assert not chain.contains(sibling)


def test_contains_checks_tier_and_id(bundle_folder):
    b0, _, _ = make_stack(bundle_folder)
    catalog = BundleCatalog(bundle_folder, "repo")
    # same tier, different id
    other_root = BundleIdentity(bundle_folder, "repo", "20221231-000000", None, 0)
    assert not catalog.chain.contains(other_root)
    # tier beyond the chain
    t5 = BundleIdentity(bundle_folder, "repo", "20230106-000000", "20230105-000000", 5)
    assert not catalog.chain.contains(t5)


def test_chain_starts_at_newest_bundle(bundle_folder):
    b0, b1, b2 = make_stack(bundle_folder)
    newer = write_bundle(bundle_folder, "repo", "20230105-000000", T0, 1)

    catalog = BundleCatalog(bundle_folder, "repo")

    assert list(catalog.chain) == [b0, newer]
    assert not catalog.chain.contains(b2)


def test_broken_chain(bundle_folder):
    write_bundle(bundle_folder, "repo", T0, None, 0)
    write_bundle(bundle_folder, "repo", T2, T1, 2)
    with pytest.raises(BrokenChainError):
        BundleCatalog(bundle_folder, "repo")


def test_inconsistent_tier_linkage(bundle_folder):
    write_bundle(bundle_folder, "repo", T0, None, 0)
    write_bundle(bundle_folder, "repo", T2, T0, 2)
    with pytest.raises(InconsistentChainError):
        BundleCatalog(bundle_folder, "repo")


def test_tiered_and_tierless_do_not_link(bundle_folder):
    write_bundle(bundle_folder, "repo", T0, None, 0)
    write_bundle(bundle_folder, "repo", T1, T0, None)
    with pytest.raises(InconsistentChainError):
        BundleCatalog(bundle_folder, "repo")


def test_tierless_chain(bundle_folder):
    r = write_bundle(bundle_folder, "repo", T0, None, None)
    c1 = write_bundle(bundle_folder, "repo", T1, T0, None)
    c2 = write_bundle(bundle_folder, "repo", T2, T1, None)
    stray = write_bundle(bundle_folder, "repo", T1B, T0, None)

    catalog = BundleCatalog(bundle_folder, "repo")

    assert list(catalog.chain) == [r, c1, c2]
    assert catalog.chain.contains(c1)
    assert not catalog.chain.contains(stray)
    assert catalog.discard_unused() == [stray]


def test_find_referenced_bundle(bundle_folder):
    b0, b1, b2 = make_stack(bundle_folder)
    catalog = BundleCatalog(bundle_folder, "repo")
    assert catalog.find_referenced_bundle(b2) == b1
    assert catalog.find_referenced_bundle(b1) == b0
    assert catalog.find_referenced_bundle(b0) is None


def test_add(bundle_folder):
    b0 = write_bundle(bundle_folder, "repo", T0, None, 0)
    catalog = BundleCatalog(bundle_folder, "repo")

    not_on_disk = BundleIdentity(bundle_folder, "repo", T1, T0, 1)
    assert catalog.add(not_on_disk) is False
    assert len(catalog) == 1

    b1 = write_bundle(bundle_folder, "repo", T1, T0, 1)
    assert catalog.add(b1) is True
    assert catalog.add(b1) is False
    assert list(catalog.chain) == [b0, b1]


def test_add_broken_bundle_is_rolled_back(bundle_folder):
    b0 = write_bundle(bundle_folder, "repo", T0, None, 0)
    catalog = BundleCatalog(bundle_folder, "repo")

    dangling = write_bundle(bundle_folder, "repo", T2, T1, 2)
    with pytest.raises(BrokenChainError):
        catalog.add(dangling)

    assert dangling not in catalog
    assert list(catalog.chain) == [b0]


def test_discover_broken_bundle_is_rolled_back(bundle_folder):
    b0 = write_bundle(bundle_folder, "repo", T0, None, 0)
    catalog = BundleCatalog(bundle_folder, "repo")

    dangling = write_bundle(bundle_folder, "repo", T2, T1, 2)
    with pytest.raises(BrokenChainError):
        catalog.discover()

    assert dangling not in catalog
    assert list(catalog.chain) == [b0]
    # a failed scan must not make the new file look unused
    assert catalog.discard_unused() == []
    assert dangling.exists()


def test_discover_upper_case_names(bundle_folder):
    b0 = write_bundle(bundle_folder, "repo", T0, None, 0)
    name = "repo.20230102-000000.20230101-000000.T1.BUNDLE"
    (bundle_folder / name).write_bytes(b"# v2 git bundle\n")
    (bundle_folder / (name + ".meta.json")).write_text('{"git-bundle-tips": [], "git-repo-roots": []}')
    b1 = write_bundle(bundle_folder, "repo", T1B, T0, 1)

    catalog = BundleCatalog(bundle_folder, "repo")

    upper = catalog.find(T1)
    assert upper is not None
    assert upper.tier == 1
    assert upper.exists()
    assert upper.bundle_path.name == name
    assert upper.read_metadata().tip_ids == frozenset()
    assert list(catalog.chain) == [b0, b1]

    assert catalog.discard_unused() == [upper]
    assert not (bundle_folder / name).exists()
    assert (bundle_folder / (name + ".bak")).is_file()
    assert (bundle_folder / (name + ".meta.json.bak")).is_file()


def test_next_bundle(bundle_folder):
    catalog = BundleCatalog(bundle_folder, "test.prefix")
    stamp = datetime(2023, 7, 19, 1, 2, 3, tzinfo=timezone.utc)

    first = catalog.next_bundle(3, stamp)
    assert first.tier == 0
    assert first.bundle_file_name == "test.prefix.20230719-010203.-.t0.bundle"

    write_bundle(bundle_folder, "test.prefix", first.bundle_id, None, 0)
    catalog.discover()

    second = catalog.next_bundle(1, datetime(2023, 7, 19, 1, 44, 3, tzinfo=timezone.utc))
    assert second.bundle_file_name == "test.prefix.20230719-014403.20230719-010203.t1.bundle"
    assert not second.exists()


def test_next_bundle_clamps_to_depth(bundle_folder):
    b0, b1, b2 = make_stack(bundle_folder)
    catalog = BundleCatalog(bundle_folder, "repo")
    stamp = datetime(2023, 2, 1, tzinfo=timezone.utc)

    nb = catalog.next_bundle(9, stamp)
    assert nb.tier == 3
    assert nb.reference_id == b2.bundle_id

    nb = catalog.next_bundle(1, stamp)
    assert nb.tier == 1
    assert nb.reference_id == b0.bundle_id

    nb = catalog.next_bundle(0, stamp)
    assert nb.tier == 0
    assert nb.reference_id is None

    with pytest.raises(ValueError):
        catalog.next_bundle(10)
    with pytest.raises(ValueError):
        catalog.next_bundle(-1)


def test_next_bundle_uses_current_time(bundle_folder):
    catalog = BundleCatalog(bundle_folder, "repo")
    before = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    nb = catalog.next_bundle(0)
    after = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    assert before <= nb.bundle_id <= after


def test_discard_active_bundle_fails(bundle_folder):
    b0, b1, b2 = make_stack(bundle_folder)
    catalog = BundleCatalog(bundle_folder, "repo")

    for bundle in (b0, b1, b2):
        with pytest.raises(ActiveChainError):
            catalog.discard_by_id(bundle.bundle_id)

    assert len(catalog) == 3
    assert all(b.exists() for b in (b0, b1, b2))


def test_discard_unknown_id(bundle_folder):
    make_stack(bundle_folder)
    catalog = BundleCatalog(bundle_folder, "repo")
    assert catalog.discard_by_id("20990101-000000") is None
    assert len(catalog) == 3


def test_discard_unused(bundle_folder):
    b0 = write_bundle(bundle_folder, "repo", T0, None, 0)
    old = write_bundle(bundle_folder, "repo", T1, T0, 1)
    catalog = BundleCatalog(bundle_folder, "repo")

    new = write_bundle(bundle_folder, "repo", T1B, T0, 1)
    assert catalog.add(new)
    assert list(catalog.chain) == [b0, new]

    discarded = catalog.discard_unused()

    assert discarded == [old]
    assert old not in catalog
    assert not old.exists()
    assert (bundle_folder / (old.bundle_file_name + ".bak")).is_file()
    assert (bundle_folder / (old.meta_file_name + ".bak")).is_file()
    assert catalog.discard_unused() == []
    # a fresh scan does not pick up stale files
    assert len(BundleCatalog(bundle_folder, "repo")) == 2


def test_purge_keeps_newest_stale_per_tier(bundle_folder):
    write_bundle(bundle_folder, "repo", T0, None, 0)
    catalog = BundleCatalog(bundle_folder, "repo")

    generations = ["20230110-000000", "20230111-000000", "20230112-000000", "20230113-000000"]
    for bundle_id in generations:
        b = write_bundle(bundle_folder, "repo", bundle_id, T0, 1)
        catalog.add(b)
        catalog.discard_unused()
    other = write_bundle(bundle_folder, "other", "20230110-000000", None, 0)
    other.discard()
    other_old = write_bundle(bundle_folder, "other", "20230109-000000", None, 0)
    other_old.discard()

    purged = catalog.purge()

    remaining = sorted(p.name for p in bundle_folder.glob("repo.*.bak"))
    assert len(purged) == 4
    assert all(p.name.startswith("repo.2023011") for p in purged)
    assert remaining == [
        "repo.20230112-000000.20230101-000000.t1.bundle.bak",
        "repo.20230112-000000.20230101-000000.t1.bundle.meta.json.bak",
    ]
    # another prefix is not touched
    assert len(list(bundle_folder.glob("other.*.bak"))) == 4
    # the active chain is not touched
    assert [b.bundle_id for b in catalog.chain] == [T0, "20230113-000000"]
    assert catalog.purge() == []


def test_purge_groups_by_tier(bundle_folder):
    catalog = BundleCatalog(bundle_folder, "repo")
    for bundle_id, ref, tier in [
        ("20230101-000000", None, 0),
        ("20230102-000000", None, 0),
        ("20230103-000000", "20230101-000000", 1),
        ("20230104-000000", None, None),
        ("20230105-000000", None, None),
    ]:
        write_bundle(bundle_folder, "repo", bundle_id, ref, tier).discard()

    purged = {p.name for p in catalog.purge()}

    assert purged == {
        "repo.20230101-000000.-.t0.bundle.bak",
        "repo.20230101-000000.-.t0.bundle.meta.json.bak",
        "repo.20230104-000000.-.bundle.bak",
        "repo.20230104-000000.-.bundle.meta.json.bak",
    }


def test_purge_removes_orphan_stale_metadata(bundle_folder):
    catalog = BundleCatalog(bundle_folder, "repo")
    old = BundleIdentity(bundle_folder, "repo", "20230110-000000", T0, 1)
    orphan = bundle_folder / (old.meta_file_name + ".bak")
    orphan.write_text("{}")
    write_bundle(bundle_folder, "repo", "20230111-000000", T0, 1).discard()

    purged = catalog.purge()

    assert purged == [orphan]
    assert not orphan.exists()
    assert sorted(p.name for p in bundle_folder.iterdir()) == [
        "repo.20230111-000000.20230101-000000.t1.bundle.bak",
        "repo.20230111-000000.20230101-000000.t1.bundle.meta.json.bak",
    ]


def test_purge_upper_case_stale_files(bundle_folder):
    catalog = BundleCatalog(bundle_folder, "repo")
    names = [
        "repo.20230110-000000.-.T0.BUNDLE.BAK",
        "repo.20230110-000000.-.T0.BUNDLE.META.JSON.BAK",
    ]
    for name in names:
        (bundle_folder / name).write_text("")
    write_bundle(bundle_folder, "repo", "20230111-000000", None, 0).discard()

    purged = sorted(p.name for p in catalog.purge())

    assert purged == sorted(names)
