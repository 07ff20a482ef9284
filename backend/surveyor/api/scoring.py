from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..models.assessment import VulnerabilityAssessment
from ..services.registry_client import RemoteServiceError
from ..services.scoring_service import VulnerabilityScoringService
from ..services.vulnerability_engine import InvalidRecordError
from .deps import get_scoring_service

router = APIRouter(prefix="/scoring", tags=["scoring"])


class LocalScoringRequest(BaseModel):
    person: Dict[str, Any]
    household: Dict[str, Any]


class BulkScoringRequest(BaseModel):
    person_ids: List[str]


@router.post("/local", response_model=VulnerabilityAssessment)
async def score_local(
    body: LocalScoringRequest,
    service: VulnerabilityScoringService = Depends(get_scoring_service),
):
    """Score on-device with the active weighting profile; never calls the scoring endpoint."""
    profile = await service.get_weighting_profile()
    try:
        return service.calculate_local(body.person, body.household, profile)
    except InvalidRecordError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/assess", response_model=VulnerabilityAssessment)
async def assess(
    body: LocalScoringRequest,
    force_recalculate: bool = False,
    service: VulnerabilityScoringService = Depends(get_scoring_service),
):
    """Remote when online, local otherwise; the result replaces the cached assessment."""
    try:
        return await service.calculate(body.person, body.household, force_recalculate)
    except InvalidRecordError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/persons/{person_id}/calculate", response_model=VulnerabilityAssessment)
async def calculate_remote(
    person_id: str,
    force_recalculate: bool = False,
    service: VulnerabilityScoringService = Depends(get_scoring_service),
):
    try:
        return await service.calculate_remote(person_id, force_recalculate)
    except RemoteServiceError as e:
        raise HTTPException(status_code=502, detail=f"Scoring service unavailable: {e}")


@router.get("/persons/{person_id}", response_model=VulnerabilityAssessment)
async def get_cached_assessment(
    person_id: str,
    service: VulnerabilityScoringService = Depends(get_scoring_service),
):
    assessment = await service.get_cached(person_id)
    if assessment is None:
        raise HTTPException(status_code=404, detail="No assessment cached for this person")
    return assessment


@router.post("/bulk", response_model=List[VulnerabilityAssessment])
async def bulk_calculate(
    body: BulkScoringRequest,
    service: VulnerabilityScoringService = Depends(get_scoring_service),
):
    try:
        return await service.bulk_calculate(body.person_ids)
    except RemoteServiceError as e:
        raise HTTPException(status_code=502, detail=f"Bulk scoring failed: {e}")


@router.get("/weighting-profile")
async def weighting_profile(service: VulnerabilityScoringService = Depends(get_scoring_service)):
    profile = await service.get_weighting_profile()
    return profile.to_dict()
