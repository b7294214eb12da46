from datetime import datetime, timedelta, timezone

import pytest

from app.models.catalog import PlantType, Variety
from app.models.dependents import GrowList, PlantInstance, PlantProfile
from app.services.catalog_store import CatalogLoadError, CatalogStore
from app.services.variety_dedup import (
    build_merge_changes,
    completeness,
    dedup_dry_run,
    group_duplicates,
    merge_duplicates,
    select_canonical,
    strict_dedup_dry_run,
    strict_duplicate_groups,
)

T0 = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _variety(v_id, name, code=None, created=T0, **fields):
    return Variety(
        id=v_id,
        variety_name=name,
        variety_code=code,
        plant_type_id=fields.pop("plant_type_id", "pt-tomato"),
        status=fields.pop("status", "active"),
        created_at=created,
        **fields,
    )


# ── Canonical selection ──────────────────────────────────────────────────────


def test_code_presence_outranks_completeness():
    a = _variety("a", "Sungold", code="TOM_CHERRY_SUNGOLD", description="Orange cherry", days_to_maturity=57)
    b = _variety(
        "b", "Sungold",
        description="Very sweet", days_to_maturity=60, flavor_profile="tropical",
        growth_habit="indeterminate", sun_requirement="full sun", species="Solanum lycopersicum",
    )
    assert completeness(a) == 3
    assert completeness(b) == 6

    canonical, duplicates = select_canonical([b, a])
    assert canonical is a
    assert duplicates == [b]


def test_completeness_counts_scalar_fields_only():
    variety = _variety("a", "Roma", description="Paste tomato", synonyms=["Roma VF"], images=["roma.jpg"])
    assert completeness(variety) == 1


def test_completeness_then_age_then_id():
    sparse = _variety("s", "Roma")
    rich = _variety("r", "Roma", description="Paste tomato")
    assert select_canonical([sparse, rich])[0] is rich

    older = _variety("z", "Roma", created=T0 - timedelta(days=30))
    newer = _variety("a", "Roma")
    assert select_canonical([newer, older])[0] is older

    first = _variety("a", "Roma")
    second = _variety("b", "Roma")
    assert select_canonical([second, first])[0] is first


# ── Grouping ─────────────────────────────────────────────────────────────────


def test_name_grouping_uses_light_normalization():
    varieties = [
        _variety("1", "Brandywine"),
        _variety("2", "brandywine."),
        _variety("3", "Brandywine (Organic)"),
        _variety("4", "Brandywine", plant_type_id="pt-other"),
    ]
    groups = group_duplicates(varieties, "name")
    assert len(groups) == 1
    assert groups[0].key == "pt-tomato:brandywine"
    assert {v.id for v in groups[0].varieties} == {"1", "2"}


def test_code_first_grouping_falls_back_to_name():
    varieties = [
        _variety("1", "Sungold", code="TOM_CHERRY_SUNGOLD"),
        _variety("2", "Sun Gold F1", code="TOM_CHERRY_SUNGOLD"),
        _variety("3", "Roma"),
        _variety("4", "roma"),
        _variety("5", "Roma", code="TOM_PLUM_ROMA"),
    ]
    groups = {g.key: {v.id for v in g.varieties} for g in group_duplicates(varieties, "code_first")}
    assert groups == {"code:TOM_CHERRY_SUNGOLD": {"1", "2"}, "pt-tomato:roma": {"3", "4"}}


def test_unknown_matching_mode_rejected():
    with pytest.raises(ValueError):
        group_duplicates([], "fuzzy")


def test_strict_groups_skip_records_already_grouped_by_code():
    varieties = [
        _variety("1", "Cherokee Purple", code="TOM_CP"),
        _variety("2", "Cherokee Purple (Organic)", code="TOM_CP"),
        _variety("3", "Cherokee Purple!"),
        _variety("4", "cherokee purple."),
    ]
    groups = strict_duplicate_groups(varieties)
    assert [(g.key, {v.id for v in g.varieties}) for g in groups] == [
        ("code:TOM_CP", {"1", "2"}),
        ("name:cherokee purple", {"3", "4"}),
    ]


# ── Merge planning ───────────────────────────────────────────────────────────


def test_merge_changes_fill_empty_scalars_and_union_arrays():
    canonical = _variety(
        "c", "Sungold", code="TOM_CHERRY_SUNGOLD",
        description="Keeps its own", images=["a.jpg"], traits={"color": "orange"},
    )
    dup = _variety(
        "d", "Sungold",
        description="Loses", days_to_maturity=57, images=["a.jpg", "b.jpg"], synonyms=["Sun Gold"],
        traits={"color": "gold", "habit": "indeterminate"},
        extended_data={"merged_into_variety_id": "x", "notes": "from seed list"},
    )
    changes = build_merge_changes(canonical, [dup])

    assert "description" not in changes
    assert changes["days_to_maturity"] == 57
    assert changes["images"] == ["a.jpg", "b.jpg"]
    assert changes["synonyms"] == ["Sun Gold"]
    assert changes["traits"] == {"color": "orange", "habit": "indeterminate"}
    assert changes["extended_data"] == {"notes": "from seed list"}


def test_merge_changes_empty_when_nothing_to_add():
    canonical = _variety("c", "Roma", description="Paste")
    dup = _variety("d", "roma")
    assert build_merge_changes(canonical, [dup]) == {}


# ── Merge routine ────────────────────────────────────────────────────────────


async def test_brandywine_pair_merged_into_fuller_record(db, seed, fetch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        _variety("v-sparse", "brandywine."),
        _variety("v-full", "Brandywine", description="Pink beefsteak", days_to_maturity=90),
    )

    stats = await merge_duplicates(CatalogStore(db), "pt-tomato", "name")

    assert stats["groupsMerged"] == 1
    assert stats["recordsMerged"] == 1
    assert stats["remainingDuplicates"] == 0
    assert stats["errors"] == []

    sparse = await fetch(Variety, "v-sparse")
    assert sparse.status == "removed"
    assert sparse.extended_data["merged_into_variety_id"] == "v-full"
    assert "merged_at" in sparse.extended_data
    full = await fetch(Variety, "v-full")
    assert full.status == "active"


async def test_merge_conserves_array_values(db, seed, fetch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        _variety("v-1", "Sungold", code="TOM_CHERRY_SUNGOLD", images=["1.jpg"], sources=[{"vendor": "Johnny's"}]),
        _variety("v-2", "Sun Gold", code="TOM_CHERRY_SUNGOLD", images=["2.jpg", "1.jpg"], synonyms=["Sun Gold"]),
        _variety(
            "v-3", "Sungold F1", code="TOM_CHERRY_SUNGOLD",
            synonyms=["Sungold F1"], sources=[{"vendor": "Baker Creek"}, {"vendor": "Johnny's"}],
        ),
    )
    before_images = {"1.jpg", "2.jpg"}
    before_synonyms = {"Sun Gold", "Sungold F1"}

    stats = await merge_duplicates(CatalogStore(db), matching_mode="code_first")
    assert stats["recordsMerged"] == 2

    survivors = [v for v in [await fetch(Variety, i) for i in ("v-1", "v-2", "v-3")] if v.status == "active"]
    assert len(survivors) == 1
    canonical = survivors[0]
    assert set(canonical.images) == before_images
    assert set(canonical.synonyms) == before_synonyms
    assert sorted(s["vendor"] for s in canonical.sources) == ["Baker Creek", "Johnny's"]

    for v_id in ("v-1", "v-2", "v-3"):
        record = await fetch(Variety, v_id)
        assert record is not None
        if record.id != canonical.id:
            assert record.status == "removed"
            assert record.extended_data["merged_into_variety_id"] == canonical.id


async def test_merge_repoints_dependents(db, seed, fetch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        _variety("v-keep", "Roma", description="Paste tomato"),
        _variety("v-drop", "roma"),
        PlantProfile(id="p-1", variety_id="v-drop"),
        PlantInstance(id="i-1", variety_id="v-drop", quantity=4),
        PlantInstance(id="i-2", variety_id="v-keep", quantity=1),
        GrowList(id="g-1", name="Spring", items=[{"variety_id": "v-drop", "quantity": 2}, {"variety_id": "v-keep"}]),
    )

    stats = await merge_duplicates(CatalogStore(db), "pt-tomato", "name")

    assert stats["referencesUpdated"] == 3
    assert (await fetch(PlantProfile, "p-1")).variety_id == "v-keep"
    assert (await fetch(PlantInstance, "i-1")).variety_id == "v-keep"
    grow_list = await fetch(GrowList, "g-1")
    assert grow_list.items == [{"variety_id": "v-keep", "quantity": 2}, {"variety_id": "v-keep"}]


async def test_merge_respects_max_groups(db, seed):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        _variety("v-1", "Roma"),
        _variety("v-2", "roma"),
        _variety("v-3", "Sungold"),
        _variety("v-4", "sungold"),
    )

    stats = await merge_duplicates(CatalogStore(db), "pt-tomato", "name", max_groups=1)

    assert stats["groupsMerged"] == 1
    assert stats["remainingDuplicates"] == 1


async def test_merge_dry_run_leaves_catalog_untouched(db, seed, fetch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        _variety("v-keep", "Roma", description="Paste tomato", days_to_maturity=75),
        _variety("v-drop", "roma", images=["roma.jpg"]),
        PlantProfile(id="p-1", variety_id="v-drop"),
    )

    store = CatalogStore(db, dry_run=True)
    stats = await merge_duplicates(store, "pt-tomato", "name")

    assert stats["groupsMerged"] == 1
    assert stats["referencesUpdated"] == 1
    assert store.writes == 0
    assert (await fetch(Variety, "v-drop")).status == "active"
    assert (await fetch(Variety, "v-keep")).images is None
    assert (await fetch(PlantProfile, "p-1")).variety_id == "v-drop"


async def test_merge_unknown_plant_type_aborts(db):
    with pytest.raises(CatalogLoadError):
        await merge_duplicates(CatalogStore(db), "pt-missing", "name")


def _fail_writes_to(store, failing_id):
    original = store._write

    async def flaky_write(model, record_id, changes):
        if record_id == failing_id:
            raise RuntimeError("disk full")
        await original(model, record_id, changes)

    return flaky_write


async def test_merge_skips_group_when_canonical_update_fails(db, seed, fetch, monkeypatch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        _variety("v-keep", "Roma", description="Paste tomato"),
        _variety("v-drop", "roma", images=["roma.jpg"]),
        _variety("v-3", "Sungold"),
        _variety("v-4", "sungold"),
        PlantProfile(id="p-1", variety_id="v-drop"),
    )
    store = CatalogStore(db)
    monkeypatch.setattr(store, "_write", _fail_writes_to(store, "v-keep"))

    stats = await merge_duplicates(store, "pt-tomato", "name")

    assert stats["errors"] == ["Roma: disk full"]
    assert stats["groupsMerged"] == 1
    assert stats["remainingDuplicates"] == 1
    assert (await fetch(Variety, "v-drop")).status == "active"
    assert (await fetch(PlantProfile, "p-1")).variety_id == "v-drop"


async def test_merge_failed_tombstone_keeps_dependents_on_that_duplicate(db, seed, fetch, monkeypatch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        _variety("v-keep", "Roma", description="Paste tomato"),
        _variety("v-a", "roma"),
        _variety("v-b", "ROMA"),
        PlantInstance(id="i-a", variety_id="v-a", quantity=1),
        PlantInstance(id="i-b", variety_id="v-b", quantity=1),
    )
    store = CatalogStore(db)
    monkeypatch.setattr(store, "_write", _fail_writes_to(store, "v-a"))

    stats = await merge_duplicates(store, "pt-tomato", "name")

    assert stats["errors"] == ["roma: disk full"]
    assert stats["recordsMerged"] == 1
    assert stats["referencesUpdated"] == 1
    assert stats["merged"][0]["merged_ids"] == ["v-b"]
    assert (await fetch(Variety, "v-a")).status == "active"
    assert (await fetch(PlantInstance, "i-a")).variety_id == "v-a"
    assert (await fetch(PlantInstance, "i-b")).variety_id == "v-keep"


async def test_merge_reports_failed_cascade_write(db, seed, fetch, monkeypatch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        _variety("v-keep", "Roma", description="Paste tomato"),
        _variety("v-drop", "roma"),
        PlantInstance(id="i-1", variety_id="v-drop", quantity=2),
        PlantInstance(id="i-2", variety_id="v-drop", quantity=1),
    )
    store = CatalogStore(db)
    monkeypatch.setattr(store, "_write", _fail_writes_to(store, "i-1"))

    stats = await merge_duplicates(store, "pt-tomato", "name")

    assert stats["errors"] == ["plant_instance i-1: disk full"]
    assert stats["groupsMerged"] == 1
    assert stats["referencesUpdated"] == 1
    assert (await fetch(Variety, "v-drop")).status == "removed"
    assert (await fetch(PlantInstance, "i-1")).variety_id == "v-drop"
    assert (await fetch(PlantInstance, "i-2")).variety_id == "v-keep"


# ── Previews ─────────────────────────────────────────────────────────────────


async def test_dedup_dry_run_reports_completeness(db, seed):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        _variety("v-1", "Sungold", code="TOM_CHERRY_SUNGOLD"),
        _variety("v-2", "Sun Gold", code="TOM_CHERRY_SUNGOLD", description="Sweet", days_to_maturity=57),
    )

    store = CatalogStore(db, dry_run=True)
    result = await dedup_dry_run(store)

    assert result["duplicate_groups"] == 1
    assert result["records_to_merge"] == 1
    group = result["groups"][0]
    assert group["canonical_id"] == "v-2"
    assert {r["id"]: r["completeness"] for r in group["records"]} == {"v-1": 1, "v-2": 3}
    assert store.planned == []


async def test_strict_dry_run_finds_plural_plant_type(db, seed):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomatoes"),
        _variety("v-1", "Cherokee Purple (Organic)"),
        _variety("v-2", "Cherokee Purple."),
        _variety("v-3", "Brandywine"),
    )

    result = await strict_dedup_dry_run(CatalogStore(db, dry_run=True))

    assert result["plant_type_id"] == "pt-tomato"
    assert result["duplicate_groups"] == 1
    assert result["total_duplicates"] == 1
    assert set(result["groups"][0]["varieties"]) == {"v-1", "v-2"}


async def test_strict_dry_run_missing_plant_type(db):
    with pytest.raises(CatalogLoadError):
        await strict_dedup_dry_run(CatalogStore(db, dry_run=True), "okra")
