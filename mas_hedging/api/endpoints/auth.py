from fastapi import APIRouter, Depends, status

from mas_hedging.api.deps import client_ip
from mas_hedging.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenRequest,
    TokenResponse,
    UserResponse,
)
from mas_hedging.services import auth_service
from mas_hedging.services.users import serialize_user

router = APIRouter()


@router.post("/auth/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED, summary="Register")
def register(payload: RegisterRequest, ip: str = Depends(client_ip)) -> RegisterResponse:
    user = auth_service.register_user(
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        company=payload.company,
        phone=payload.phone,
        ip=ip,
    )
    return RegisterResponse(message="User registered successfully", user_id=user.id)


@router.post("/auth/login", response_model=TokenResponse, summary="Login")
def login(payload: LoginRequest, ip: str = Depends(client_ip)) -> TokenResponse:
    token, user = auth_service.authenticate_user(payload.email, payload.password, ip=ip)
    return TokenResponse(access_token=token, user=UserResponse(**serialize_user(user)))


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(payload: TokenRequest, ip: str = Depends(client_ip)) -> MessageResponse:
    auth_service.verify_email(payload.token, ip=ip)
    return MessageResponse(message="Email verified successfully")


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(payload: ForgotPasswordRequest, ip: str = Depends(client_ip)) -> MessageResponse:
    auth_service.request_password_reset(payload.email, ip=ip)
    # same answer whether or not the account exists
    return MessageResponse(message="If the email exists, a reset link has been sent")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(payload: ResetPasswordRequest, ip: str = Depends(client_ip)) -> MessageResponse:
    auth_service.reset_password(payload.token, payload.new_password, ip=ip)
    return MessageResponse(message="Password reset successfully")


@router.post("/auth/refresh-token", response_model=TokenResponse)
def refresh_token(payload: TokenRequest) -> TokenResponse:
    return TokenResponse(access_token=auth_service.refresh_token(payload.token))
