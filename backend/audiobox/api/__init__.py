# Router aggregator – import each route module here and expose ``api_router``
# for convenient inclusion in the FastAPI app.

from fastapi import APIRouter

from . import routes_audio, routes_auth, routes_storage


api_router = APIRouter()
api_router.include_router(routes_auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(routes_audio.router, prefix="/audio", tags=["audio"])
api_router.include_router(routes_storage.router, prefix="/storage", tags=["storage"])
