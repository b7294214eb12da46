import pytest
from sqlalchemy import select

from app.models.catalog import PlantSubCategory, PlantType, Variety
from app.services.catalog_store import CatalogLoadError, CatalogStore
from app.services.subcategory_repair import (
    activate_subcategories,
    assign_subcategories_by_code,
    repair_carrots,
    repair_catalog_varieties,
    repair_plant_type,
)


@pytest.fixture
def tomato_catalog():
    return [
        PlantType(id="pt-tomato", common_name="Tomato"),
        PlantSubCategory(id="sc-cherry", plant_type_id="pt-tomato", subcat_code="PSC_TOM_CHERRY", name="Cherry", is_active=False),
        PlantSubCategory(id="sc-plum", plant_type_id="pt-tomato", subcat_code="PSC_TOM_PLUM", name="Plum", is_active=True),
        # primary id set, mirrors missing
        Variety(id="v-sungold", variety_name="Sungold", plant_type_id="pt-tomato", plant_subcategory_id="sc-cherry"),
        # code only, different casing and no prefix
        Variety(id="v-roma", variety_name="Roma", plant_type_id="pt-tomato", plant_subcategory_code="tom_plum"),
        # import hint only
        Variety(
            id="v-juliet", variety_name="Juliet", plant_type_id="pt-tomato",
            extended_data={"import_subcat_code": "PSC_TOM_CHERRY"},
        ),
        # dangling id and junk arrays
        Variety(
            id="v-ghost", variety_name="Ghost", plant_type_id="pt-tomato",
            plant_subcategory_id="sc-deleted", plant_subcategory_ids=["sc-deleted", "", None],
        ),
        # already consistent
        Variety(
            id="v-amish", variety_name="Amish Paste", plant_type_id="pt-tomato",
            plant_subcategory_id="sc-plum", plant_subcategory_code="PSC_TOM_PLUM",
            plant_subcategory_ids=["sc-plum"], plant_subcategory_codes=["PSC_TOM_PLUM"],
        ),
        Variety(id="v-gone", variety_name="Gone", plant_type_id="pt-tomato", status="removed"),
    ]


async def test_repair_plant_type_normalizes_varieties(db, seed, fetch, tomato_catalog):
    await seed(*tomato_catalog)

    stats = await repair_plant_type(CatalogStore(db), "pt-tomato")

    assert stats["subcats_activated"] == 1
    assert stats["varieties_normalized"] == 4
    assert stats["junk_cleared"] == 1
    assert stats["missing_code"] == 1
    assert stats["errors"] == []

    sungold = await fetch(Variety, "v-sungold")
    assert sungold.plant_subcategory_code == "PSC_TOM_CHERRY"
    assert sungold.plant_subcategory_ids == ["sc-cherry"]
    assert sungold.plant_subcategory_codes == ["PSC_TOM_CHERRY"]

    roma = await fetch(Variety, "v-roma")
    assert roma.plant_subcategory_id == "sc-plum"

    juliet = await fetch(Variety, "v-juliet")
    assert juliet.plant_subcategory_id == "sc-cherry"

    ghost = await fetch(Variety, "v-ghost")
    assert ghost.plant_subcategory_id is None
    assert ghost.plant_subcategory_ids == []

    cherry = await fetch(PlantSubCategory, "sc-cherry")
    assert cherry.is_active is True


async def test_repair_plant_type_is_idempotent(db, seed, tomato_catalog):
    await seed(*tomato_catalog)
    await repair_plant_type(CatalogStore(db), "pt-tomato")

    store = CatalogStore(db)
    stats = await repair_plant_type(store, "pt-tomato")

    assert stats["varieties_normalized"] == 0
    assert stats["junk_cleared"] == 0
    assert stats["subcats_activated"] == 0
    assert store.writes == 0


async def test_repair_plant_type_dry_run_writes_nothing(db, seed, fetch, tomato_catalog):
    await seed(*tomato_catalog)

    store = CatalogStore(db, dry_run=True)
    stats = await repair_plant_type(store, "pt-tomato")

    assert stats["varieties_normalized"] == 4
    assert store.writes == 0
    assert {p["id"] for p in store.planned} >= {"v-sungold", "v-roma", "v-juliet", "v-ghost", "sc-cherry"}

    sungold = await fetch(Variety, "v-sungold")
    assert sungold.plant_subcategory_ids is None
    cherry = await fetch(PlantSubCategory, "sc-cherry")
    assert cherry.is_active is False


async def test_repair_plant_type_unknown_type_aborts(db):
    with pytest.raises(CatalogLoadError):
        await repair_plant_type(CatalogStore(db), "pt-missing")


async def test_repair_carrots_cleans_malformed_canonical_records(db, seed, fetch):
    await seed(
        PlantType(id="pt-carrot", common_name="Carrots"),
        PlantSubCategory(id="sc-nantes", plant_type_id="pt-carrot", subcat_code="PSC_CARROT_NANTES", name="Nantes", is_active=False),
        PlantSubCategory(id="sc-danvers-bad", plant_type_id="pt-carrot", subcat_code='["PSC_CARROT_DANVERS"]', name='["Danvers"]', is_active=False),
        PlantSubCategory(id="sc-nantes-bad", plant_type_id="pt-carrot", subcat_code='"PSC_CARROT_NANTES"', name='"Nantes"', is_active=False),
        PlantSubCategory(id="sc-baby", plant_type_id="pt-carrot", subcat_code="PSC_CARROT_BABY", name="Baby", is_active=False),
        Variety(id="v-danvers", variety_name="Danvers 126", plant_type_id="pt-carrot", plant_subcategory_code="PSC_CARROT_DANVERS"),
    )

    stats = await repair_carrots(CatalogStore(db))

    assert stats["step1_subcats_cleaned"] == 1
    assert stats["subcats_activated"] == 1
    assert stats["varieties_normalized"] == 1

    danvers = await fetch(PlantSubCategory, "sc-danvers-bad")
    assert danvers.subcat_code == "PSC_CARROT_DANVERS"
    assert danvers.name == "Danvers"
    assert danvers.is_active is True

    # collides with the existing well-formed Nantes record, left alone
    nantes_bad = await fetch(PlantSubCategory, "sc-nantes-bad")
    assert nantes_bad.subcat_code == '"PSC_CARROT_NANTES"'

    baby = await fetch(PlantSubCategory, "sc-baby")
    assert baby.is_active is False

    variety = await fetch(Variety, "v-danvers")
    assert variety.plant_subcategory_id == "sc-danvers-bad"
    assert variety.plant_subcategory_ids == ["sc-danvers-bad"]


async def test_repair_carrots_without_carrot_type_aborts(db):
    with pytest.raises(CatalogLoadError):
        await repair_carrots(CatalogStore(db))


async def test_activate_subcategories(db, seed, fetch, tomato_catalog):
    await seed(
        *tomato_catalog,
        PlantSubCategory(id="sc-grape", plant_type_id="pt-tomato", subcat_code="PSC_TOM_GRAPE", name="Grape", is_active=False),
    )

    result = await activate_subcategories(CatalogStore(db), "pt-tomato")

    assert result["inactive_count"] == 2
    assert result["activated"] == 2
    assert {s["id"] for s in result["inactive_samples"]} == {"sc-cherry", "sc-grape"}
    grape = await fetch(PlantSubCategory, "sc-grape")
    assert grape.is_active is True


async def test_assign_by_code_uses_classification_rules(db, seed, fetch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        PlantSubCategory(id="sc-cherry", plant_type_id="pt-tomato", subcat_code="PSC_TOM_CHERRY", name="Cherry"),
        PlantSubCategory(id="sc-plum", plant_type_id="pt-tomato", subcat_code="PSC_TOM_PLUM", name="Plum"),
        Variety(id="v-1", variety_name="Sungold", variety_code="TOM_CHERRY_SUNGOLD", plant_type_id="pt-tomato", plant_type_name="Tomato"),
        Variety(id="v-2", variety_name="San Marzano", plant_type_id="pt-tomato", plant_type_name="Tomato"),
        Variety(id="v-3", variety_name="Mystery", plant_type_id="pt-tomato", plant_type_name="Tomato"),
        Variety(id="v-4", variety_name="Assigned", plant_type_id="pt-tomato", plant_subcategory_id="sc-plum"),
    )

    result = await assign_subcategories_by_code(CatalogStore(db), "pt-tomato")

    assert result["summary"] == {"total_missing": 3, "fixed": 2, "no_match": 1}
    assert {f["id"] for f in result["fixes"]} == {"v-1", "v-2"}
    assert result["no_match_sample"][0]["id"] == "v-3"

    sungold = await fetch(Variety, "v-1")
    assert sungold.plant_subcategory_id == "sc-cherry"
    assert sungold.plant_subcategory_codes == ["PSC_TOM_CHERRY"]
    marzano = await fetch(Variety, "v-2")
    assert marzano.plant_subcategory_id == "sc-plum"


async def test_assign_by_code_dry_run(db, seed, fetch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        PlantSubCategory(id="sc-cherry", plant_type_id="pt-tomato", subcat_code="PSC_TOM_CHERRY", name="Cherry"),
        Variety(id="v-1", variety_name="Sungold", variety_code="TOM_CHERRY_SUNGOLD", plant_type_id="pt-tomato"),
    )

    store = CatalogStore(db, dry_run=True)
    result = await assign_subcategories_by_code(store)

    assert result["summary"]["fixed"] == 1
    assert store.writes == 0
    assert (await fetch(Variety, "v-1")).plant_subcategory_id is None


async def test_repair_catalog_varieties_pages_and_scopes_by_type(db, seed, fetch):
    await seed(
        PlantType(id="pt-tomato", common_name="Tomato"),
        PlantType(id="pt-pepper", common_name="Pepper"),
        PlantSubCategory(id="sc-cherry", plant_type_id="pt-tomato", subcat_code="PSC_TOM_CHERRY", name="Cherry"),
        PlantSubCategory(id="sc-bell", plant_type_id="pt-pepper", subcat_code="PSC_PEP_BELL", name="Bell"),
        Variety(id="v-a", variety_name="A Sungold", plant_type_id="pt-tomato", plant_subcategory_id="sc-cherry"),
        # points at another plant type's subcategory
        Variety(id="v-b", variety_name="B Wrong", plant_type_id="pt-pepper", plant_subcategory_id="sc-cherry"),
        Variety(id="v-c", variety_name="C Bell", plant_type_id="pt-pepper", plant_subcategory_code="PSC_PEP_BELL"),
    )

    first = await repair_catalog_varieties(CatalogStore(db), offset=0, batch_size=2)
    assert first["total"] == 3
    assert first["has_more"] is True
    assert first["next_offset"] == 2
    assert first["varieties_normalized"] == 2
    assert first["missing_code"] == 1

    second = await repair_catalog_varieties(CatalogStore(db), offset=first["next_offset"], batch_size=2)
    assert second["has_more"] is False
    assert second["next_offset"] == 3
    assert second["varieties_normalized"] == 1

    wrong = await fetch(Variety, "v-b")
    assert wrong.plant_subcategory_id is None
    bell = await fetch(Variety, "v-c")
    assert bell.plant_subcategory_id == "sc-bell"


async def test_failed_write_is_recorded_and_processing_continues(db, seed, monkeypatch, tomato_catalog):
    await seed(*tomato_catalog)
    store = CatalogStore(db)
    original = store._write

    async def flaky_write(model, record_id, changes):
        if record_id == "v-roma":
            raise RuntimeError("disk full")
        await original(model, record_id, changes)

    monkeypatch.setattr(store, "_write", flaky_write)
    stats = await repair_plant_type(store, "pt-tomato")

    assert stats["errors"] == ["Roma: disk full"]
    assert stats["varieties_normalized"] == 3

    db.expunge_all()
    rows = (await db.execute(select(Variety).where(Variety.id == "v-juliet"))).scalars().all()
    assert rows[0].plant_subcategory_id == "sc-cherry"
