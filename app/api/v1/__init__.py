from fastapi import APIRouter
from app.api.v1.endpoints import postback

# Create the main router for API version 1
api_router_v1 = APIRouter()

# Include the inbound postback router
api_router_v1.include_router(
    postback.router,
    tags=["Async Postbacks"]
)
