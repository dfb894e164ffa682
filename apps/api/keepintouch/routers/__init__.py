"""API routers."""

from keepintouch.routers.kit import router as kit_router
