from __future__ import annotations

from ratewall.api.routes.apis import router as apis_router
from ratewall.api.routes.health import router as health_router

__all__ = ["apis_router", "health_router"]
