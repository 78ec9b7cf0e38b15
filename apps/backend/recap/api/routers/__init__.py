"""API routers."""

from recap.api.routers.meta import router as meta_router
from recap.api.routers.transcribe import router as transcribe_router

__all__ = ["meta_router", "transcribe_router"]
