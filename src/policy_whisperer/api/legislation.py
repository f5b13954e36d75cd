"""Legislation endpoints: manual entry, search, and state impact analysis."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from policy_whisperer.api.deps import get_impact_service, get_legislation_store
from policy_whisperer.api.schemas import (
    AnalyzeImpactRequest,
    AnalyzeImpactResponse,
    ErrorResponse,
    ImpactResultResponse,
    LegislationCreateRequest,
    LegislationImpactResponse,
    LegislationResponse,
)
from policy_whisperer.pipeline.impact import ImpactAnalysisService
from policy_whisperer.storage.repository import LegislationStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["legislation"])


@router.post(
    "/analyze-legislation-impact",
    response_model=AnalyzeImpactResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid state code"},
        404: {"model": ErrorResponse, "description": "Legislation not found"},
    },
)
async def analyze_legislation_impact(
    request: AnalyzeImpactRequest,
    service: ImpactAnalysisService = Depends(get_impact_service),
):
    """Classify the legislation's impact per state and (optionally) store it."""
    assessments = await service.analyze(
        request.legislation_id,
        state_code=request.state_code,
        store_results=request.store_results,
    )
    return AnalyzeImpactResponse(
        success=True,
        results=[ImpactResultResponse(**asdict(a)) for a in assessments],
    )


@router.post("/legislation", response_model=LegislationResponse, status_code=201)
async def create_legislation(
    request: LegislationCreateRequest,
    store: LegislationStore = Depends(get_legislation_store),
):
    legislation = await store.create_legislation(
        title=request.title.strip(),
        content=request.content,
        level=request.level,
        state=request.state,
        description=request.description,
        source_url=request.source_url,
    )
    return LegislationResponse(**asdict(legislation))


@router.get("/legislation", response_model=list[LegislationResponse])
async def search_legislation(
    q: str = Query("", max_length=200),
    limit: int = Query(50, ge=1, le=200),
    store: LegislationStore = Depends(get_legislation_store),
):
    """Case-insensitive title search, newest first."""
    results = await store.search_legislation(q, limit=limit)
    return [LegislationResponse(**asdict(item)) for item in results]


@router.get("/legislation/{legislation_id}", response_model=LegislationResponse)
async def get_legislation(legislation_id: str, store: LegislationStore = Depends(get_legislation_store)):
    return LegislationResponse(**asdict(await store.get_legislation(legislation_id)))


@router.get("/legislation/{legislation_id}/impacts", response_model=list[LegislationImpactResponse])
async def list_legislation_impacts(legislation_id: str, store: LegislationStore = Depends(get_legislation_store)):
    await store.get_legislation(legislation_id)
    impacts = await store.list_impacts(legislation_id)
    return [LegislationImpactResponse(**asdict(i)) for i in impacts]


@router.get(
    "/legislation/{legislation_id}/impacts/{state_code}",
    response_model=LegislationImpactResponse,
    responses={404: {"model": ErrorResponse, "description": "No analysis for this state"}},
)
async def get_legislation_impact(
    legislation_id: str,
    state_code: str,
    store: LegislationStore = Depends(get_legislation_store),
):
    impact = await store.get_impact(legislation_id, state_code.upper())
    return LegislationImpactResponse(**asdict(impact))
