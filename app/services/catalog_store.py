"""
CatalogStore: the record-store seam the reconciliation routines work against.

Loads return detached ORM objects. ``update()`` is the only write primitive:
one single-row UPDATE, committed on its own, so a failed write rolls back that
record alone and the rest of the loaded batch stays usable. With
``dry_run=True`` the change is recorded in ``planned`` and nothing is written.
In both modes the detached record is updated in memory, so later steps of the
same routine decide on the same state.
"""
import logging
from typing import Any, Optional

from sqlalchemy import func, or_, select, update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.catalog import PlantSubCategory, PlantType, Variety
from app.models.dependents import GrowList, PlantInstance, PlantProfile

logger = logging.getLogger(__name__)


class CatalogLoadError(Exception):
    """Initial batch load failed; nothing has been written."""


class PlantTypeNotFound(CatalogLoadError):
    def __init__(self, ref: str):
        super().__init__(f"Plant type not found: {ref}")
        self.ref = ref


def _is_equal(current: Any, desired: Any) -> bool:
    if isinstance(desired, (list, tuple)):
        # an absent array already reads as empty
        if current is None:
            return len(desired) == 0
        if isinstance(current, (list, tuple)):
            return list(current) == list(desired)
        return False
    return current == desired


class CatalogStore:
    def __init__(self, db: AsyncSession, dry_run: bool = False, load_limit: Optional[int] = None):
        self.db = db
        self.dry_run = dry_run
        self.load_limit = load_limit or settings.CATALOG_LOAD_LIMIT
        self.writes = 0
        self.planned: list[dict[str, Any]] = []

    # ── Loads ────────────────────────────────────────────────────────────────

    async def _load(self, stmt, limit: Optional[int] = None) -> list[Any]:
        result = await self.db.execute(stmt.limit(limit if limit is not None else self.load_limit))
        records = list(result.scalars().all())
        for record in records:
            self.db.expunge(record)
        return records

    async def _load_all(self, stmt) -> list[Any]:
        """Page through ``stmt`` in ``load_limit`` batches until it is exhausted."""
        records: list[Any] = []
        while True:
            batch = await self._load(stmt.offset(len(records)))
            records.extend(batch)
            if len(batch) < self.load_limit:
                return records

    async def get_plant_type(self, plant_type_id: str) -> PlantType:
        plant_type = await self.db.get(PlantType, plant_type_id)
        if plant_type is None:
            raise PlantTypeNotFound(plant_type_id)
        self.db.expunge(plant_type)
        return plant_type

    async def find_plant_type_by_name(self, name: str) -> PlantType:
        """Case-insensitive common-name lookup accepting the singular or plural form."""
        wanted = name.strip().lower()
        forms = {wanted, wanted + "s", wanted + "es"}
        if wanted.endswith("s"):
            forms.add(wanted[:-1])
        if wanted.endswith("es"):
            forms.add(wanted[:-2])
        records = await self._load(
            select(PlantType).where(func.lower(PlantType.common_name).in_(sorted(forms))).order_by(PlantType.created_at)
        )
        if not records:
            raise PlantTypeNotFound(name)
        return records[0]

    async def list_subcategories(self, plant_type_id: Optional[str] = None) -> list[PlantSubCategory]:
        stmt = select(PlantSubCategory).order_by(PlantSubCategory.created_at, PlantSubCategory.id)
        if plant_type_id:
            stmt = stmt.where(PlantSubCategory.plant_type_id == plant_type_id)
        return await self._load(stmt)

    async def list_varieties(
        self,
        plant_type_id: Optional[str] = None,
        status: Optional[str] = "active",
        missing_subcategory: bool = False,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Variety]:
        stmt = select(Variety).order_by(Variety.variety_name, Variety.id)
        if plant_type_id:
            stmt = stmt.where(Variety.plant_type_id == plant_type_id)
        if status:
            stmt = stmt.where(Variety.status == status)
        if missing_subcategory:
            stmt = stmt.where(or_(Variety.plant_subcategory_id.is_(None), Variety.plant_subcategory_id == ""))
        if offset:
            stmt = stmt.offset(offset)
        return await self._load(stmt, limit)

    async def list_all_varieties(self, status: Optional[str] = None) -> list[Variety]:
        stmt = select(Variety).order_by(Variety.id)
        if status:
            stmt = stmt.where(Variety.status == status)
        return await self._load_all(stmt)

    async def count_varieties(self, status: Optional[str] = "active") -> int:
        stmt = select(func.count()).select_from(Variety)
        if status:
            stmt = stmt.where(Variety.status == status)
        return await self.db.scalar(stmt) or 0

    async def get_variety(self, variety_id: str) -> Optional[Variety]:
        variety = await self.db.get(Variety, variety_id)
        if variety is not None:
            self.db.expunge(variety)
        return variety

    async def list_profiles(self) -> list[PlantProfile]:
        return await self._load_all(select(PlantProfile).order_by(PlantProfile.id))

    async def list_instances(self) -> list[PlantInstance]:
        return await self._load_all(select(PlantInstance).order_by(PlantInstance.id))

    async def list_grow_lists(self) -> list[GrowList]:
        return await self._load_all(select(GrowList).order_by(GrowList.id))

    # ── Writes ───────────────────────────────────────────────────────────────

    @staticmethod
    def changed_fields(record: Any, desired: dict[str, Any]) -> dict[str, Any]:
        """Subset of ``desired`` that differs from the record's current values."""
        return {k: v for k, v in desired.items() if not _is_equal(getattr(record, k, None), v)}

    async def update(self, record: Any, changes: dict[str, Any]) -> None:
        if not changes:
            return
        model = type(record)
        logger.debug("update: %s %s fields=%s dry_run=%s", model.__tablename__, record.id, sorted(changes), self.dry_run)
        if self.dry_run:
            self.planned.append({"table": model.__tablename__, "id": record.id, "changes": changes})
        else:
            await self._write(model, record.id, changes)
        for key, value in changes.items():
            setattr(record, key, value)

    async def _write(self, model, record_id: str, changes: dict[str, Any]) -> None:
        try:
            await self.db.execute(
                sa_update(model)
                .where(model.id == record_id)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        self.writes += 1
