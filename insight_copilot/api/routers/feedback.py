"""POST /feedback -- thumbs up / down on a reply; feedback analytics."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from insight_copilot.copilot.schemas import FeedbackRequest, FeedbackResponse
from insight_copilot.copilot.service import CopilotService, get_service
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("", response_model=FeedbackResponse, response_model_by_alias=True)
async def feedback_endpoint(req: FeedbackRequest, service: CopilotService = Depends(get_service)):
    """Unknown responses come back as a 404 with ``status="error"`` in the body."""
    result = await service.process_feedback(req)
    if result.status == "error":
        return JSONResponse(status_code=404, content=result.model_dump(mode="json", by_alias=True))
    return result


@router.get("/stats")
def feedback_stats_endpoint(service: CopilotService = Depends(get_service)) -> dict:
    """Aggregate feedback counters plus negative feedback grouped by category."""
    return {
        **service.feedback.stats(),
        "patterns": service.feedback.negative_patterns(),
        "category_patterns": service.feedback.category_patterns(),
    }


@router.get("/review")
def review_queue_endpoint(service: CopilotService = Depends(get_service)) -> list[dict]:
    """Recent negative feedback, newest first."""
    return [item.to_dict() for item in service.feedback.review_queue()]
