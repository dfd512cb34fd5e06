from fastapi import APIRouter

from helpshelf.api.v1 import onboarding

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(onboarding.router)
