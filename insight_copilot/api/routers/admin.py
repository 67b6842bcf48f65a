"""
GET/PUT/DELETE /admin/templates, DELETE /admin/cache, GET /admin/cache/stats --
semantic cache administration.
"""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from insight_copilot.copilot.service import CopilotService, get_service
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class TemplateUpdate(BaseModel):
    sql: str | None = None
    response: str | None = None


@router.get("/templates")
async def list_templates_endpoint(
    min_confidence: float | None = None,
    needs_review: bool | None = None,
    service: CopilotService = Depends(get_service),
) -> dict:
    """Cached answers, most recently updated first."""
    entries = await service.cache.list_templates(min_confidence=min_confidence, needs_review=needs_review)
    return {"templates": [e.to_template() for e in entries], "total": len(entries)}


@router.get("/templates/review")
async def review_templates_endpoint(
    threshold: float = 30.0, service: CopilotService = Depends(get_service),
) -> dict:
    """Templates whose negative feedback share (percent) reaches *threshold*, worst first."""
    entries = await service.cache.templates_for_review(threshold=threshold)
    return {"templates": [e.to_template() for e in entries], "total": len(entries)}


@router.put("/templates/{entry_id}")
async def update_template_endpoint(
    entry_id: str, body: TemplateUpdate, service: CopilotService = Depends(get_service),
) -> dict:
    if body.sql is None and body.response is None:
        raise HTTPException(status_code=400, detail="Nothing to update: provide sql and/or response")
    entry = await service.cache.update_template(entry_id, sql=body.sql, response=body.response)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Template {entry_id} not found")
    return entry.to_template()


@router.delete("/templates/{entry_id}")
async def delete_template_endpoint(entry_id: str, service: CopilotService = Depends(get_service)) -> dict:
    if not await service.cache.delete_template(entry_id):
        raise HTTPException(status_code=404, detail=f"Template {entry_id} not found")
    return {"deleted": entry_id}


@router.delete("/cache")
async def clear_cache_endpoint(
    older_than: datetime | None = None, service: CopilotService = Depends(get_service),
) -> dict:
    """Flush the semantic cache, optionally only entries older than *older_than*."""
    if older_than is not None and older_than.tzinfo is None:
        older_than = older_than.replace(tzinfo=timezone.utc)
    removed = await service.cache.clear(older_than=older_than)
    return {"cleared": removed}


@router.get("/cache/stats")
def cache_stats_endpoint(service: CopilotService = Depends(get_service)) -> dict:
    return {**service.cache.stats(), "conversations": len(service.sessions)}
