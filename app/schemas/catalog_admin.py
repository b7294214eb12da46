from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class RepairPlantTypeRequest(BaseModel):
    plant_type_id: str
    dry_run: bool = False

    @field_validator("plant_type_id")
    @classmethod
    def plant_type_id_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("plant_type_id is required")
        return v


class DryRunRequest(BaseModel):
    dry_run: bool = False


class RepairVarietiesRequest(BaseModel):
    dry_run: bool = False
    offset: int = Field(0, ge=0)
    batch_size: int = Field(500, ge=1, le=5000)


class ActivateSubcategoriesRequest(BaseModel):
    plant_type_id: Optional[str] = None
    dry_run: bool = False


class AssignByCodeRequest(BaseModel):
    # Defaults to a dry run; pass false to write.
    dry_run: bool = True
    plant_type_id: Optional[str] = None


class MergeRequest(BaseModel):
    plant_type_id: Optional[str] = None
    matching_mode: Literal["code_first", "name"]
    dry_run: bool = False
    max_groups: Optional[int] = Field(None, ge=1)


class DedupDryRunRequest(BaseModel):
    plant_type_id: Optional[str] = None
    matching_mode: Literal["code_first", "name"] = "code_first"


class StrictDedupRequest(BaseModel):
    plant_type_name: str = "tomato"
