# newsagg/routers/__init__.py
from newsagg.routers.admin import router as admin_router
from newsagg.routers.feed import router as feed_router

__all__ = ["admin_router", "feed_router"]
