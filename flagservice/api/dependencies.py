"""API dependencies: caller identity and service wiring."""

from fastapi import HTTPException, Request

from flagservice.core.config import get_settings
from flagservice.core.errors import ErrorCode, build_error
from flagservice.core.feature_management import (
    FeatureManagementService,
    get_features_repository,
    get_opt_in_allowlist,
)


async def get_current_user_id(request: Request) -> int:
    """
    Authenticated caller id, taken from the identity header set by the
    authenticating gateway in front of this service.

    Raises:
        HTTPException: 401 if the header is missing or not a positive integer
    """
    header = get_settings().USER_ID_HEADER
    raw = request.headers.get(header)
    if not raw:
        raise HTTPException(
            status_code=401,
            detail=build_error(
                ErrorCode.UNAUTHORIZED,
                "authentication",
                "Missing caller identity",
                hint=f"Provide {header} header",
            ),
        )
    try:
        user_id = int(raw)
    except ValueError:
        user_id = 0
    if user_id <= 0:
        raise HTTPException(
            status_code=401,
            detail=build_error(
                ErrorCode.UNAUTHORIZED,
                "authentication",
                "Invalid caller identity",
                hint=f"{header} must be a positive integer",
            ),
        )
    return user_id


def get_feature_management_service() -> FeatureManagementService:
    return FeatureManagementService(get_features_repository(), get_opt_in_allowlist())
