from fastapi import APIRouter

from jobportal.api.routes import admin
from jobportal.api.routes import apply
from jobportal.api.routes import files

api_router = APIRouter()
api_router.include_router(apply.router)
api_router.include_router(admin.router)
api_router.include_router(files.router)
