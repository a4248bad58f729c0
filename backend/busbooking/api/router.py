"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from busbooking.api.routes import trips, bookings, payments, sales, boarding, companies

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(trips.router)
api_router.include_router(bookings.router)
api_router.include_router(payments.router)
api_router.include_router(sales.router)
api_router.include_router(boarding.router)
api_router.include_router(companies.router)
