"""API layer module.

Contains FastAPI routers and response schemas.
"""

from channelsync.api.channels import router as channels_router
from channelsync.api.health import router as health_router

__all__ = [
    "channels_router",
    "health_router",
]
