from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import AdminUser
from app.db.session import get_db
from app.models.reconciliation_run import ReconciliationRun
from app.schemas.catalog_admin import (
    ActivateSubcategoriesRequest,
    AssignByCodeRequest,
    DedupDryRunRequest,
    DryRunRequest,
    MergeRequest,
    RepairPlantTypeRequest,
    RepairVarietiesRequest,
    StrictDedupRequest,
)
from app.services.catalog_diagnostics import run_diagnostics
from app.services.catalog_store import CatalogLoadError, CatalogStore
from app.services.reconciliation_runs import record_run
from app.services.reference_cascade import find_survivor, repair_dangling_references
from app.services.subcategory_repair import (
    activate_subcategories,
    assign_subcategories_by_code,
    repair_carrots,
    repair_catalog_varieties,
    repair_plant_type,
)
from app.services.variety_dedup import dedup_dry_run, merge_duplicates, strict_dedup_dry_run

router = APIRouter(prefix="/admin/catalog", tags=["admin-catalog"])


async def _run(
    db: AsyncSession,
    admin_user,
    routine: str,
    dry_run: bool,
    body: Callable[[], Awaitable[dict[str, Any]]],
    plant_type_id: Optional[str] = None,
) -> dict:
    triggered_by = admin_user.email
    try:
        run, stats = await record_run(db, routine, triggered_by, dry_run, body, plant_type_id)
    except CatalogLoadError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True, "dry_run": dry_run, "run_id": run.id, **stats}


# ── Subcategory repair ───────────────────────────────────────────────────────


@router.post("/repair/plant-type")
async def repair_plant_type_subcategories(
    body: RepairPlantTypeRequest,
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> dict:
    store = CatalogStore(db, dry_run=body.dry_run)
    return await _run(
        db, admin_user, "repair_plant_type", body.dry_run,
        lambda: repair_plant_type(store, body.plant_type_id),
        plant_type_id=body.plant_type_id,
    )


@router.post("/repair/carrots")
async def repair_carrot_subcategories(
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
    body: DryRunRequest = DryRunRequest(),
) -> dict:
    store = CatalogStore(db, dry_run=body.dry_run)
    return await _run(db, admin_user, "repair_carrots", body.dry_run, lambda: repair_carrots(store))


@router.post("/repair/varieties")
async def repair_variety_classifications(
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
    body: RepairVarietiesRequest = RepairVarietiesRequest(),
) -> dict:
    store = CatalogStore(db, dry_run=body.dry_run)
    return await _run(
        db, admin_user, "repair_varieties", body.dry_run,
        lambda: repair_catalog_varieties(store, offset=body.offset, batch_size=body.batch_size),
    )


@router.post("/subcategories/activate")
async def activate_all_subcategories(
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
    body: ActivateSubcategoriesRequest = ActivateSubcategoriesRequest(),
) -> dict:
    store = CatalogStore(db, dry_run=body.dry_run)
    return await _run(
        db, admin_user, "activate_subcategories", body.dry_run,
        lambda: activate_subcategories(store, body.plant_type_id),
        plant_type_id=body.plant_type_id,
    )


@router.post("/subcategories/assign-by-code")
async def assign_subcategories(
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
    body: AssignByCodeRequest = AssignByCodeRequest(),
) -> dict:
    store = CatalogStore(db, dry_run=body.dry_run)
    return await _run(
        db, admin_user, "assign_by_code", body.dry_run,
        lambda: assign_subcategories_by_code(store, body.plant_type_id),
        plant_type_id=body.plant_type_id,
    )


# ── Duplicates ───────────────────────────────────────────────────────────────


@router.post("/merge")
async def merge_variety_duplicates(
    body: MergeRequest,
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> dict:
    store = CatalogStore(db, dry_run=body.dry_run)
    return await _run(
        db, admin_user, "merge_duplicates", body.dry_run,
        lambda: merge_duplicates(store, body.plant_type_id, body.matching_mode, body.max_groups),
        plant_type_id=body.plant_type_id,
    )


@router.post("/dedup/dry-run")
async def preview_duplicates(
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
    body: DedupDryRunRequest = DedupDryRunRequest(),
) -> dict:
    store = CatalogStore(db, dry_run=True)
    try:
        result = await dedup_dry_run(store, body.plant_type_id, body.matching_mode)
    except CatalogLoadError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True, "dry_run": True, **result}


@router.post("/dedup/strict-dry-run")
async def preview_strict_duplicates(
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
    body: StrictDedupRequest = StrictDedupRequest(),
) -> dict:
    store = CatalogStore(db, dry_run=True)
    try:
        result = await strict_dedup_dry_run(store, body.plant_type_name)
    except CatalogLoadError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True, "dry_run": True, **result}


# ── Diagnostics & references ─────────────────────────────────────────────────


@router.get("/diagnostics")
async def get_catalog_diagnostics(
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> dict:
    diagnostics = await run_diagnostics(CatalogStore(db, dry_run=True))
    return {"success": True, "diagnostics": diagnostics}


@router.post("/references/repair")
async def repair_references(
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
    body: DryRunRequest = DryRunRequest(),
) -> dict:
    store = CatalogStore(db, dry_run=body.dry_run)

    async def body_fn() -> dict[str, Any]:
        result = await repair_dangling_references(store)
        return {
            "references_updated": result.references_updated,
            "unresolved": result.unresolved,
            "errors": result.errors,
        }

    return await _run(db, admin_user, "repair_references", body.dry_run, body_fn)


@router.get("/varieties/{variety_id}/survivor")
async def get_variety_survivor(
    variety_id: str,
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        result = await find_survivor(CatalogStore(db, dry_run=True), variety_id)
    except CatalogLoadError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True, **result}


# ── Run history ──────────────────────────────────────────────────────────────


@router.get("/runs")
async def list_reconciliation_runs(
    admin_user: AdminUser,
    db: AsyncSession = Depends(get_db),
    routine: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
) -> dict:
    query = select(ReconciliationRun)
    count_query = select(func.count()).select_from(ReconciliationRun)

    if routine is not None:
        query = query.where(ReconciliationRun.routine == routine)
        count_query = count_query.where(ReconciliationRun.routine == routine)
    if status is not None:
        query = query.where(ReconciliationRun.status == status)
        count_query = count_query.where(ReconciliationRun.status == status)

    total = await db.scalar(count_query) or 0
    offset = (page - 1) * per_page
    result = await db.execute(
        query.order_by(ReconciliationRun.started_at.desc(), ReconciliationRun.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    runs = result.scalars().all()

    items = [
        {
            "id": r.id,
            "routine": r.routine,
            "status": r.status,
            "dry_run": r.dry_run,
            "plant_type_id": r.plant_type_id,
            "triggered_by": r.triggered_by,
            "started_at": r.started_at,
            "finished_at": r.finished_at,
            "stats": r.stats,
            "error_detail": r.error_detail,
        }
        for r in runs
    ]

    return {"items": items, "total": total, "page": page, "per_page": per_page}
