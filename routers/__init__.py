from .deployments_api import router as deployments_api_router
from .deployments_ui import router as deployments_ui_router

ALL_ROUTERS = (
    deployments_api_router,
    deployments_ui_router,
)
