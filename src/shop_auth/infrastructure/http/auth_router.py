"""FastAPI router exposing sign-up, session and password endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response

from shop_auth.application.dto.auth_models import (
    AuthInfoResponse,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    ResetPasswordRequest,
    SignUpRequest,
    TokenPairModel,
    UpdatePasswordRequest,
    UserInfoResponse,
    VerifyEmailRequest,
)
from shop_auth.application.ports.user_repository_port import UserProfile, UserRecord
from shop_auth.application.request_context import RequestContext
from shop_auth.application.services.auth_service import (
    AccessRequirement,
    AuthInfo,
    AuthOperation,
    AuthService,
    SignUpInput,
    TokenPair,
    UserInfo,
)
from shop_auth.domain.auth.roles import Role
from shop_auth.infrastructure.http.auth_guard import build_principal_dependency
from shop_auth.infrastructure.http.errors import translate_core_errors
from shop_auth.infrastructure.http.request_context import get_request_context

ContextDependency = Annotated[RequestContext, Depends(get_request_context)]


def build_auth_router(*, auth_service: AuthService) -> APIRouter:
    """Build router exposing the auth core over HTTP."""

    router = APIRouter(prefix="/auth", tags=["auth"])
    require_signed_in = build_principal_dependency(
        auth_service=auth_service,
        requirement=AccessRequirement.any_role(),
    )
    require_signing_out = build_principal_dependency(
        auth_service=auth_service,
        requirement=AccessRequirement.any_role(),
        operation=AuthOperation.SIGN_OUT,
    )

    @router.post("/signup", response_model=AuthInfoResponse, status_code=201)
    async def sign_up(payload: SignUpRequest, context: ContextDependency) -> AuthInfoResponse:
        with translate_core_errors():
            auth_info = await auth_service.sign_up(
                SignUpInput(
                    email=payload.email,
                    password=payload.password,
                    role=Role(payload.role),
                    profile=UserProfile(
                        first_name=payload.first_name,
                        last_name=payload.last_name,
                        store_name=payload.store_name,
                    ),
                ),
                context=context,
            )
        return _auth_info_response(auth_info)

    @router.post("/login", response_model=AuthInfoResponse)
    async def sign_in(payload: LoginRequest, context: ContextDependency) -> AuthInfoResponse:
        with translate_core_errors():
            auth_info = await auth_service.sign_in(
                email=payload.email,
                password=payload.password,
                context=context,
            )
        return _auth_info_response(auth_info)

    @router.post("/logout", status_code=204)
    async def sign_out(
        payload: TokenPairModel,
        context: ContextDependency,
        principal: UserRecord = Depends(require_signing_out),
    ) -> Response:
        _ = principal
        with translate_core_errors():
            await auth_service.sign_out(
                TokenPair(
                    access_token=payload.access_token,
                    refresh_token=payload.refresh_token,
                ),
                context=context,
            )
        return Response(status_code=204)

    @router.post("/refresh", response_model=TokenPairModel)
    async def refresh(payload: RefreshTokenRequest, context: ContextDependency) -> TokenPairModel:
        with translate_core_errors():
            tokens = await auth_service.refresh_access_token(payload.refresh_token, context=context)
        return _token_pair_model(tokens)

    @router.post("/verify-email", status_code=204)
    async def verify_email(payload: VerifyEmailRequest) -> Response:
        with translate_core_errors():
            await auth_service.verify_email(payload.token)
        return Response(status_code=204)

    @router.post("/password/forgot", status_code=202)
    async def forgot_password(
        payload: ForgotPasswordRequest,
        context: ContextDependency,
    ) -> Response:
        with translate_core_errors():
            await auth_service.send_password_reset_link(payload.email, context=context)
        return Response(status_code=202)

    @router.post("/password/reset", status_code=204)
    async def reset_password(payload: ResetPasswordRequest) -> Response:
        with translate_core_errors():
            await auth_service.reset_password(
                token=payload.token,
                new_password=payload.new_password,
            )
        return Response(status_code=204)

    @router.put("/password", status_code=204)
    async def update_password(
        payload: UpdatePasswordRequest,
        context: ContextDependency,
        principal: UserRecord = Depends(require_signed_in),
    ) -> Response:
        _ = principal
        with translate_core_errors():
            await auth_service.update_password(
                current_password=payload.current_password,
                new_password=payload.new_password,
                context=context,
            )
        return Response(status_code=204)

    @router.get("/me", response_model=UserInfoResponse)
    async def me(
        context: ContextDependency,
        principal: UserRecord = Depends(require_signed_in),
    ) -> UserInfoResponse:
        _ = principal
        with translate_core_errors():
            user_info = auth_service.me(context=context)
        return _user_info_response(user_info)

    return router


def _auth_info_response(auth_info: AuthInfo) -> AuthInfoResponse:
    return AuthInfoResponse(
        user_info=_user_info_response(auth_info.user_info),
        tokens=_token_pair_model(auth_info.tokens),
    )


def _user_info_response(user_info: UserInfo) -> UserInfoResponse:
    return UserInfoResponse(id=user_info.id, email=user_info.email, role=user_info.role.value)


def _token_pair_model(tokens: TokenPair) -> TokenPairModel:
    return TokenPairModel(access_token=tokens.access_token, refresh_token=tokens.refresh_token)
