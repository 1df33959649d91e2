# freightdesk/api/v1/router.py
from fastapi import APIRouter
from freightdesk.modules.requests.router import router as requests_router
from freightdesk.modules.pricing.router import router as pricing_router
from freightdesk.modules.matching.router import router as matching_router
from freightdesk.modules.offers.router import router as offers_router
from freightdesk.modules.coordination.router import router as coordination_router

# Main v1 router
api_router = APIRouter()

api_router.include_router(
    requests_router,
    prefix="/requests",
    tags=["Requests - Lifecycle"]
)

api_router.include_router(
    pricing_router,
    prefix="/pricing",
    tags=["Pricing"]
)

api_router.include_router(
    matching_router,
    prefix="/matching",
    tags=["Matching - Interest & Assignment"]
)

api_router.include_router(
    offers_router,
    prefix="/offers",
    tags=["Offers - Legacy"]
)

api_router.include_router(
    coordination_router,
    prefix="/coordination",
    tags=["Coordination"]
)
