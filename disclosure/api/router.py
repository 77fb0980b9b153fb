from fastapi import APIRouter
from disclosure.modules.information_requests.router import router as information_requests_router
from disclosure.modules.information_requests.router import users_router

api_router = APIRouter()
api_router.include_router(information_requests_router, prefix="/information-requests", tags=["information-requests"])
api_router.include_router(users_router, prefix="/users", tags=["permissions"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
