from __future__ import annotations

from stockdash.api.routes.health import router as health_router
from stockdash.api.routes.rate_limit import router as rate_limit_router
from stockdash.api.routes.stocks import router as stocks_router

__all__ = ["health_router", "rate_limit_router", "stocks_router"]
