"""API routers."""

from splitsync.routers.plaid import router as plaid_router
from splitsync.routers.sync import router as sync_router

__all__ = [
    "plaid_router",
    "sync_router",
]
