"""Controller layer for role login and logout."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from canteen.controllers.dependencies import bearer_scheme, get_auth_service
from canteen.domain.roles import Role, capabilities_for
from canteen.services.auth_service import (
    AccessCodeNotConfiguredError,
    AuthService,
    InvalidAccessCodeError,
)
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    role: Role
    access_code: str = Field(min_length=1)
    student_id: Optional[str] = Field(default=None, min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Role
    capabilities: list[str]


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        bearer = auth_service.login(payload.role, payload.access_code, subject=payload.student_id)
        return LoginResponse(
            access_token=bearer,
            role=payload.role,
            capabilities=sorted(cap.value for cap in capabilities_for(payload.role)),
        )
    except (AccessCodeNotConfiguredError, InvalidAccessCodeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected login failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to login",
        ) from exc


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Response:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    auth_service.logout(credentials.credentials)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
