from fastapi import APIRouter

from app.api.v1.endpoints import catalog_admin

api_router = APIRouter()

api_router.include_router(catalog_admin.router)
