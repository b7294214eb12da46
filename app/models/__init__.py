from app.models.user import User
from app.models.catalog import PlantType, PlantSubCategory, Variety
from app.models.dependents import GrowList, PlantInstance, PlantProfile
from app.models.logs import ApiRequestLog
from app.models.reconciliation_run import ReconciliationRun

__all__ = [
    "User",
    "PlantType",
    "PlantSubCategory",
    "Variety",
    "PlantProfile",
    "PlantInstance",
    "GrowList",
    "ApiRequestLog",
    "ReconciliationRun",
]
