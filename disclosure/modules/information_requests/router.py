from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from disclosure.core.cache import CachePort
from disclosure.core.db import SessionLocal
from disclosure.core.errors import AuthorizationError
from disclosure.core.resilience import retry_transient
from disclosure.core.security import get_principal, require_scopes, Principal
from disclosure.modules.information_requests.schemas import (
    InformationRequestCreate, InformationRequestOut, InformationRequestRespond,
    EffectivePermissionSet, SharedProfileOut,
)
from disclosure.modules.information_requests.service import InformationRequestService

router = APIRouter()
users_router = APIRouter()

async def get_session():
    async with SessionLocal() as session:
        yield session

def get_cache(request: Request) -> CachePort:
    return request.app.state.cache

def svc(session: AsyncSession = Depends(get_session), cache: CachePort = Depends(get_cache)) -> InformationRequestService:
    return InformationRequestService(session, cache)

def _require_party(req: InformationRequestOut, principal: Principal, *, target_only: bool = False) -> None:
    if principal.user_id == req.target_id:
        return
    if not target_only and principal.user_id == req.requester_id:
        return
    raise AuthorizationError("Not a party to this information request", request_id=req.id)

@router.post("", response_model=InformationRequestOut, status_code=201, dependencies=[Depends(require_scopes("privacy:write"))])
async def create_request(
    payload: InformationRequestCreate,
    principal: Principal = Depends(get_principal),
    service: InformationRequestService = Depends(svc),
):
    return await service.create_request(
        principal.user_id, payload.target_id, payload.requested_fields,
        reason=payload.reason, expires_at=payload.expires_at,
    )

@router.get("/pending", response_model=list[InformationRequestOut], dependencies=[Depends(require_scopes("privacy:read"))])
async def list_pending(
    principal: Principal = Depends(get_principal),
    service: InformationRequestService = Depends(svc),
):
    return await retry_transient(lambda: service.get_pending_requests(principal.user_id))

@router.get("/sent", response_model=list[InformationRequestOut], dependencies=[Depends(require_scopes("privacy:read"))])
async def list_sent(
    principal: Principal = Depends(get_principal),
    service: InformationRequestService = Depends(svc),
):
    return await retry_transient(lambda: service.get_sent_requests(principal.user_id))

@router.get("/{request_id}", response_model=InformationRequestOut, dependencies=[Depends(require_scopes("privacy:read"))])
async def get_request(
    request_id: str,
    principal: Principal = Depends(get_principal),
    service: InformationRequestService = Depends(svc),
):
    req = await retry_transient(lambda: service.get_request(request_id))
    _require_party(req, principal)
    return req

@router.post("/{request_id}/respond", response_model=InformationRequestOut, dependencies=[Depends(require_scopes("privacy:write"))])
async def respond(
    request_id: str,
    payload: InformationRequestRespond,
    principal: Principal = Depends(get_principal),
    service: InformationRequestService = Depends(svc),
):
    req = await retry_transient(lambda: service.get_request(request_id))
    _require_party(req, principal, target_only=True)
    # responding is idempotent, so a retry after a timeout is safe
    return await retry_transient(lambda: service.respond_to_request(
        request_id, payload.approved, payload.shared_fields, expires_at=payload.expires_at,
    ))

@router.post("/{request_id}/revoke", response_model=InformationRequestOut, dependencies=[Depends(require_scopes("privacy:write"))])
async def revoke(
    request_id: str,
    principal: Principal = Depends(get_principal),
    service: InformationRequestService = Depends(svc),
):
    req = await retry_transient(lambda: service.get_request(request_id))
    _require_party(req, principal, target_only=True)
    return await retry_transient(lambda: service.revoke_access(request_id))

@users_router.get("/{target_id}/permissions", response_model=EffectivePermissionSet, dependencies=[Depends(require_scopes("privacy:read"))])
async def viewer_permissions(
    target_id: str,
    include_expired: bool = Query(False),
    principal: Principal = Depends(get_principal),
    service: InformationRequestService = Depends(svc),
):
    return await retry_transient(lambda: service.get_viewer_permissions(target_id, principal.user_id, include_expired))

@users_router.get("/{target_id}/shared-profile", response_model=SharedProfileOut, dependencies=[Depends(require_scopes("privacy:read"))])
async def shared_profile(
    target_id: str,
    include_expired: bool = Query(False),
    principal: Principal = Depends(get_principal),
    service: InformationRequestService = Depends(svc),
):
    return await retry_transient(lambda: service.get_shared_profile(target_id, principal.user_id, include_expired))
