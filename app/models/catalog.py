from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


def new_id() -> str:
    return uuid4().hex


class PlantType(Base):
    __tablename__ = "plant_types"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    common_name: Mapped[str] = mapped_column(String(200), index=True)
    type_code: Mapped[Optional[str]] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class PlantSubCategory(Base):
    __tablename__ = "plant_subcategories"
    __table_args__ = (UniqueConstraint("plant_type_id", "subcat_code", name="uq_subcat_code_per_type"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    plant_type_id: Mapped[str] = mapped_column(ForeignKey("plant_types.id", ondelete="CASCADE"), index=True)
    subcat_code: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    name: Mapped[str] = mapped_column(String(200))
    # Soft-delete flag; inactive rows may still be referenced by corrupted varieties
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class Variety(Base):
    __tablename__ = "varieties"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    variety_name: Mapped[str] = mapped_column(String(300), index=True)
    variety_code: Mapped[Optional[str]] = mapped_column(String(150), index=True)
    plant_type_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("plant_types.id", ondelete="SET NULL"), index=True
    )
    plant_type_name: Mapped[Optional[str]] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)

    # Classification: primary pair + array mirrors (stored as JSON so corrupted shapes survive a load)
    plant_subcategory_id: Mapped[Optional[str]] = mapped_column(String(32), index=True)
    plant_subcategory_code: Mapped[Optional[str]] = mapped_column(String(100))
    plant_subcategory_ids: Mapped[Optional[Any]] = mapped_column(JSON)
    plant_subcategory_codes: Mapped[Optional[Any]] = mapped_column(JSON)

    # Descriptive
    description: Mapped[Optional[str]] = mapped_column(Text)
    days_to_maturity: Mapped[Optional[int]] = mapped_column(Integer)
    spacing_inches: Mapped[Optional[float]] = mapped_column(Float)
    flavor_profile: Mapped[Optional[str]] = mapped_column(Text)
    growth_habit: Mapped[Optional[str]] = mapped_column(String(100))
    sun_requirement: Mapped[Optional[str]] = mapped_column(String(50))
    water_requirement: Mapped[Optional[str]] = mapped_column(String(50))
    species: Mapped[Optional[str]] = mapped_column(String(200))
    seed_line_type: Mapped[Optional[str]] = mapped_column(String(50))
    breeder_or_origin: Mapped[Optional[str]] = mapped_column(String(300))
    grower_notes: Mapped[Optional[str]] = mapped_column(Text)

    # Fruit / heat attributes used by the classification rules
    fruit_shape: Mapped[Optional[str]] = mapped_column(String(100))
    fruit_size: Mapped[Optional[str]] = mapped_column(String(100))
    fruit_color: Mapped[Optional[str]] = mapped_column(String(100))
    scoville_min: Mapped[Optional[int]] = mapped_column(Integer)
    scoville_max: Mapped[Optional[int]] = mapped_column(Integer)

    images: Mapped[Optional[list]] = mapped_column(JSON)
    synonyms: Mapped[Optional[list]] = mapped_column(JSON)
    sources: Mapped[Optional[list]] = mapped_column(JSON)
    traits: Mapped[Optional[dict]] = mapped_column(JSON)
    extended_data: Mapped[Optional[dict]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
