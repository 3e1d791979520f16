from fastapi import APIRouter
from app.routers import ai, notifications, reviews, sentiment

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(reviews.router, tags=["Reviews"])
api_router.include_router(sentiment.router, tags=["Sentiment"])
api_router.include_router(ai.router, tags=["AI Monitoring"])
api_router.include_router(notifications.router, tags=["Notifications"])
