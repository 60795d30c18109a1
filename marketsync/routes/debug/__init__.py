"""Debug route aggregation."""

from fastapi import APIRouter

from marketsync.routes.debug import diagnostics

router = APIRouter()

router.include_router(diagnostics.router)
