"""Aggregate all API routers."""

from fastapi import APIRouter

from . import items, owners, prices, queries, system, workers

api_router = APIRouter()
api_router.include_router(queries.router)
api_router.include_router(items.router)
api_router.include_router(owners.router)
api_router.include_router(prices.router)
api_router.include_router(workers.router)
api_router.include_router(system.router)
