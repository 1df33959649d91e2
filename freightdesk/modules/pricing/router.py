# freightdesk/modules/pricing/router.py
from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from freightdesk.config.database import get_db
from freightdesk.core.auth.dependencies import get_staff_user
from freightdesk.modules.requests.service import RequestService
from .engine import PricingEngine, get_pricing_engine
from .schemas import PricingPreviewResponse

router = APIRouter()


@router.get("/requests/{request_id}/estimate", response_model=PricingPreviewResponse)
async def preview_estimate(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    pricing_engine: PricingEngine = Depends(get_pricing_engine),
    db: Session = Depends(get_db)
):
    """
    Suggested price split for a request, without qualifying it

    **Includes:**
    - Client total, transporter fee and platform fee
    - Confidence and reasoning
    - Source: `ai` (external estimate) or `heuristic` (tariff fallback)
    """
    service = RequestService(db, pricing_engine=pricing_engine)
    transport_request = service.get_or_404(request_id)
    estimate = await service.estimate_price(transport_request)
    return PricingPreviewResponse(
        request_id=transport_request.id,
        reference_code=transport_request.reference_code,
        estimate=estimate,
        current_client_total=transport_request.client_total,
    )
