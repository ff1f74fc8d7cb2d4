from fastapi import APIRouter

from dbanchor.api.routes import backend, utils

api_router = APIRouter()
api_router.include_router(utils.router)
api_router.include_router(backend.router)
