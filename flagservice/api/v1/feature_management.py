"""
Feature management API endpoints
Per-subject feature lists, override toggles and the opt-in flow.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from flagservice.api.dependencies import get_current_user_id, get_feature_management_service
from flagservice.core.errors import FeatureNotInAllowlistError
from flagservice.core.feature_management import FeatureManagementService
from flagservice.utils.metrics import feature_management_requests_total

logger = logging.getLogger(__name__)
router = APIRouter()


class FeatureWithStatusResponse(BaseModel):
    """Effective status of one feature for one subject"""
    slug: str = Field(..., description="Feature slug")
    enabled: bool = Field(..., description="Subject override, False when none exists")
    globally_enabled: bool = Field(..., description="Global switch of the feature")
    description: Optional[str] = Field(None, description="Feature description")
    type: str = Field(..., description="Feature category")


class EligibleOptInFeatureResponse(BaseModel):
    slug: str
    title_i18n_key: str
    description_i18n_key: str
    learn_more_url: Optional[str] = None


class SetFeatureEnabledRequest(BaseModel):
    feature_slug: str = Field(..., min_length=1, description="Feature slug")
    enabled: bool = Field(..., description="New override value")


class OptInRequest(BaseModel):
    feature_slug: str = Field(..., min_length=1, description="Allowlisted feature slug")


class SuccessResponse(BaseModel):
    success: bool = True


def _assigned_by(user_id: int) -> str:
    return f"user:{user_id}"


def _statuses(items) -> List[FeatureWithStatusResponse]:
    return [FeatureWithStatusResponse(**item.to_dict()) for item in items]


@router.get("/user", response_model=List[FeatureWithStatusResponse])
async def list_for_user(
    user_id: int = Depends(get_current_user_id),
    service: FeatureManagementService = Depends(get_feature_management_service),
):
    """List every feature with the caller's own override status."""
    items = await service.list_features_for_user(user_id)
    feature_management_requests_total.labels(operation="list_for_user", status="ok").inc()
    return _statuses(items)


@router.get("/teams/{team_id}", response_model=List[FeatureWithStatusResponse])
async def list_for_team(
    team_id: int = Path(..., gt=0),
    user_id: int = Depends(get_current_user_id),
    service: FeatureManagementService = Depends(get_feature_management_service),
):
    items = await service.list_features_for_team(team_id)
    feature_management_requests_total.labels(operation="list_for_team", status="ok").inc()
    return _statuses(items)


@router.get("/organizations/{organization_id}", response_model=List[FeatureWithStatusResponse])
async def list_for_organization(
    organization_id: int = Path(..., gt=0),
    user_id: int = Depends(get_current_user_id),
    service: FeatureManagementService = Depends(get_feature_management_service),
):
    items = await service.list_features_for_organization(organization_id)
    feature_management_requests_total.labels(operation="list_for_organization", status="ok").inc()
    return _statuses(items)


@router.put("/user", response_model=SuccessResponse)
async def set_user_feature(
    body: SetFeatureEnabledRequest,
    user_id: int = Depends(get_current_user_id),
    service: FeatureManagementService = Depends(get_feature_management_service),
):
    """Users can always control their own features."""
    await service.set_user_feature_enabled(
        user_id, body.feature_slug, body.enabled, _assigned_by(user_id)
    )
    feature_management_requests_total.labels(operation="set_user_feature", status="ok").inc()
    return SuccessResponse()


@router.put("/teams/{team_id}", response_model=SuccessResponse)
async def set_team_feature(
    body: SetFeatureEnabledRequest,
    team_id: int = Path(..., gt=0),
    user_id: int = Depends(get_current_user_id),
    service: FeatureManagementService = Depends(get_feature_management_service),
):
    """Team permission checks happen upstream of this service."""
    await service.set_team_feature_enabled(
        team_id, body.feature_slug, body.enabled, _assigned_by(user_id)
    )
    feature_management_requests_total.labels(operation="set_team_feature", status="ok").inc()
    return SuccessResponse()


@router.put("/organizations/{organization_id}", response_model=SuccessResponse)
async def set_organization_feature(
    body: SetFeatureEnabledRequest,
    organization_id: int = Path(..., gt=0),
    user_id: int = Depends(get_current_user_id),
    service: FeatureManagementService = Depends(get_feature_management_service),
):
    await service.set_organization_feature_enabled(
        organization_id, body.feature_slug, body.enabled, _assigned_by(user_id)
    )
    feature_management_requests_total.labels(
        operation="set_organization_feature", status="ok"
    ).inc()
    return SuccessResponse()


@router.get("/opt-in/eligible", response_model=List[EligibleOptInFeatureResponse])
async def get_eligible_opt_ins(
    user_id: int = Depends(get_current_user_id),
    service: FeatureManagementService = Depends(get_feature_management_service),
):
    """Allowlisted, globally enabled features the caller has not opted into."""
    items = await service.get_eligible_opt_in_features(user_id)
    feature_management_requests_total.labels(operation="get_eligible_opt_ins", status="ok").inc()
    return [EligibleOptInFeatureResponse(**item.to_dict()) for item in items]


@router.get("/opt-in/status", response_model=bool)
async def has_opted_in(
    feature_slug: str = Query(..., min_length=1, description="Feature slug"),
    user_id: int = Depends(get_current_user_id),
    service: FeatureManagementService = Depends(get_feature_management_service),
):
    opted_in = await service.has_user_opted_in(user_id, feature_slug)
    feature_management_requests_total.labels(operation="has_opted_in", status="ok").inc()
    return opted_in


@router.post("/opt-in", response_model=SuccessResponse)
async def opt_in(
    body: OptInRequest,
    user_id: int = Depends(get_current_user_id),
    service: FeatureManagementService = Depends(get_feature_management_service),
):
    """
    Opt the caller into an allowlisted feature.

    Raises:
        HTTPException: 400 if the feature is not available for opt-in
    """
    try:
        await service.opt_in_to_feature(user_id, body.feature_slug)
    except FeatureNotInAllowlistError as e:
        feature_management_requests_total.labels(operation="opt_in", status="rejected").inc()
        raise HTTPException(status_code=400, detail=e.to_dict())
    feature_management_requests_total.labels(operation="opt_in", status="ok").inc()
    return SuccessResponse()
