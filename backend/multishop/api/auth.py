from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from pydantic import EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.api.deps import Actor, get_actor, http_error, require_owner
from multishop.api.schemas import CamelModel
from multishop.api.serializers import serialize_tenant, serialize_user
from multishop.db.database import get_db
from multishop.services import tenants as tenant_service
from multishop.services.errors import ServiceError

router = APIRouter()


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    tenant_name: str = Field(..., min_length=1, max_length=200)
    subdomain: str = Field(..., min_length=3, max_length=63, pattern=r"^[a-zA-Z0-9-]+$")
    phone: Optional[str] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str
    subdomain: Optional[str] = None


class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = None
    avatar: Optional[str] = None


class PasswordChange(CamelModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class TenantUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    phone: Optional[str] = None
    address: Optional[str] = None
    logo: Optional[str] = None
    theme: Optional[dict[str, Any]] = None
    settings: Optional[dict[str, Any]] = None


def _session_body(message: str, user, tenant, token: str) -> dict:
    return {
        "message": message,
        "token": token,
        "token_type": "bearer",
        "user": serialize_user(user),
        "tenant": serialize_tenant(tenant),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: AsyncSession = Depends(get_db)):
    try:
        user, tenant, token = await tenant_service.register(
            db,
            email=request.email,
            password=request.password,
            first_name=request.first_name,
            last_name=request.last_name,
            tenant_name=request.tenant_name,
            subdomain=request.subdomain,
            phone=request.phone,
        )
    except ServiceError as e:
        raise http_error(e)
    return _session_body("Registration successful", user, tenant, token)


@router.post("/login")
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    try:
        user, tenant, token = await tenant_service.login(
            db, request.email, request.password, subdomain=request.subdomain,
        )
    except ServiceError as e:
        raise http_error(e)
    return _session_body("Login successful", user, tenant, token)


@router.get("/profile")
async def get_profile(actor: Actor = Depends(get_actor)):
    return {"user": serialize_user(actor.user), "tenant": serialize_tenant(actor.tenant)}


@router.put("/profile")
async def update_profile(
    payload: ProfileUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    user = await tenant_service.update_profile(db, actor.user, payload.model_dump(exclude_unset=True))
    return {"message": "Profile updated successfully", "user": serialize_user(user)}


@router.put("/change-password")
async def change_password(
    payload: PasswordChange,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        await tenant_service.change_password(db, actor.user, payload.current_password, payload.new_password)
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Password changed successfully"}


@router.put("/tenant")
async def update_tenant(
    payload: TenantUpdate,
    actor: Actor = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    tenant = await tenant_service.update_tenant(db, actor.user, actor.tenant, payload.model_dump(exclude_unset=True))
    return {"message": "Shop updated successfully", "tenant": serialize_tenant(tenant)}
