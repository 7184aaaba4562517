from fastapi import APIRouter

from rtb_assets.modules.device_applications import router as applications_router
from rtb_assets.modules.devices import router as devices_router

api_router = APIRouter()

api_router.include_router(
    applications_router, prefix="/applications", tags=["Device Applications"]
)

api_router.include_router(devices_router, prefix="/devices", tags=["Devices"])
