"""
FastAPI application for Review Feed Service
"""
from fastapi import FastAPI, Depends, HTTPException, Request, status, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import List, Optional
import logging

from .config import settings
from .database import mongodb
from .cache import InMemoryFeedPageCache, RedisFeedPageCache
from .service_client import service_client, get_service_client, ServiceClient
from .kafka_producer import kafka_producer
from .dependencies import get_current_user, get_token, get_feed_service, get_quality_service
from .exceptions import InvalidCursorError, ReviewFeedError, StoreAuthError
from .pipeline import Pipeline, pipeline, get_pipeline
from .scoring import QualityScoreService
from .service import ReviewFeedService
from .store import MongoReviewStore
from .schemas import (
    User,
    FeedResponse,
    LiveFeedResponse,
    QualityScoreResponse,
    VisitedRestaurant,
    CacheStatsResponse,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

redis_page_cache = RedisFeedPageCache()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Review Feed Service...")

    # Connect to MongoDB
    await mongodb.connect()
    logger.info("MongoDB connected")

    # Connect to Redis, falling back to a process-local page cache
    await redis_page_cache.connect()
    page_cache = redis_page_cache if redis_page_cache.is_connected else InMemoryFeedPageCache()
    logger.info(f"Feed page cache initialized ({type(page_cache).__name__})")

    # Start service client
    await service_client.start()

    # Start Kafka producer
    await kafka_producer.start()

    # Build the pipeline and start the live feed
    pipeline.build(MongoReviewStore(mongodb), page_cache, service_client, kafka_producer)
    await pipeline.start()
    logger.info("Review pipeline started")

    logger.info(f"Review Feed Service started successfully on port {settings.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down Review Feed Service...")

    # Stop live feed and background work
    await pipeline.stop()

    # Stop Kafka producer
    await kafka_producer.stop()

    # Stop service client
    await service_client.stop()

    # Disconnect Redis
    await redis_page_cache.disconnect()

    # Disconnect database
    await mongodb.disconnect()

    logger.info("Review Feed Service shut down successfully")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Review feed aggregation and restaurant quality scoring",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreAuthError)
async def store_auth_error_handler(request: Request, exc: StoreAuthError):
    logger.error(f"Store session rejected on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": "Review store session is no longer valid"},
    )


@app.exception_handler(InvalidCursorError)
async def invalid_cursor_handler(request: Request, exc: InvalidCursorError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc)},
    )


async def get_following_ids(
    current_user: User = Depends(get_current_user),
    token: str = Depends(get_token),
    client: ServiceClient = Depends(get_service_client),
) -> List[str]:
    """Ids the viewer follows, used to decorate posts"""
    return await client.get_following_ids(current_user.id, token)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION
    }


# Feed endpoints
@app.get(
    "/api/v1/feed",
    response_model=FeedResponse,
    tags=["Feed"],
    summary="Get review feed",
)
async def get_feed(
    limit: int = Query(
        settings.DEFAULT_PAGE_SIZE,
        ge=1,
        le=settings.MAX_PAGE_SIZE,
        description="Posts per page (pages after the first)"
    ),
    cursor: Optional[str] = Query(None, description="Cursor from the previous page"),
    following_ids: List[str] = Depends(get_following_ids),
    service: ReviewFeedService = Depends(get_feed_service),
):
    """
    Get the community review feed

    - Without a cursor, returns the first page cache-first and revalidates it in the background
    - With a cursor, returns the next page straight from the store
    - `status` tells an empty feed apart from a failed or timed out load
    """
    try:
        if cursor:
            return await service.get_page(limit, cursor, following_ids)
        return await service.get_first_page(following_ids)

    except ReviewFeedError:
        raise
    except Exception as e:
        logger.error(f"Error getting feed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve feed"
        )


@app.get(
    "/api/v1/feed/live",
    response_model=LiveFeedResponse,
    tags=["Feed"],
    summary="Get live feed",
)
async def get_live_feed(
    following_ids: List[str] = Depends(get_following_ids),
    service: ReviewFeedService = Depends(get_feed_service),
):
    """
    Current contents of the live-synchronized feed buffer

    `version` increases with every change applied to the buffer.
    """
    return service.live_feed(following_ids)


@app.post(
    "/api/v1/feed/refresh",
    response_model=FeedResponse,
    tags=["Feed"],
    summary="Refresh feed",
)
async def refresh_feed(
    following_ids: List[str] = Depends(get_following_ids),
    service: ReviewFeedService = Depends(get_feed_service),
):
    """
    Force a server read of the first page

    - Bypasses the cached page and replaces it on success
    """
    try:
        return await service.refresh(following_ids)

    except ReviewFeedError:
        raise
    except Exception as e:
        logger.error(f"Error refreshing feed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refresh feed"
        )


# Restaurant endpoints
@app.get(
    "/api/v1/restaurants/{restaurant_id}/quality-score",
    response_model=QualityScoreResponse,
    tags=["Restaurants"],
    summary="Get restaurant quality score",
)
async def get_quality_score(
    restaurant_id: str,
    current_user: User = Depends(get_current_user),
    service: QualityScoreService = Depends(get_quality_service),
):
    """
    Quality score (0-100) computed from every review of the restaurant

    `quality_score` is null when the restaurant has no valid reviews.
    """
    score = await service.score_restaurant(restaurant_id)
    return QualityScoreResponse(restaurant_id=restaurant_id, quality_score=score)


@app.post(
    "/api/v1/restaurants/{restaurant_id}/quality-score/recompute",
    response_model=QualityScoreResponse,
    tags=["Restaurants"],
    summary="Recompute and store restaurant quality score",
)
async def recompute_quality_score(
    restaurant_id: str,
    current_user: User = Depends(get_current_user),
    service: QualityScoreService = Depends(get_quality_service),
):
    """
    Recompute the quality score, write it back and publish an update event
    """
    score = await service.score_restaurant(restaurant_id, persist=True)
    return QualityScoreResponse(restaurant_id=restaurant_id, quality_score=score)


# User endpoints
@app.get(
    "/api/v1/users/{user_id}/reviews",
    response_model=FeedResponse,
    tags=["Users"],
    summary="Get a user's reviews",
)
async def get_user_reviews(
    user_id: str,
    limit: int = Query(
        settings.DEFAULT_PAGE_SIZE,
        ge=1,
        le=settings.MAX_PAGE_SIZE,
        description="Maximum number of reviews"
    ),
    following_ids: List[str] = Depends(get_following_ids),
    service: ReviewFeedService = Depends(get_feed_service),
):
    """
    A user's visible reviews as feed posts, newest first
    """
    return await service.get_user_reviews(user_id, limit, following_ids)


@app.get(
    "/api/v1/users/{user_id}/restaurants",
    response_model=List[VisitedRestaurant],
    tags=["Users"],
    summary="Get a user's dining history",
)
async def get_visited_restaurants(
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: ReviewFeedService = Depends(get_feed_service),
):
    """
    Restaurants the user has reviewed, most recent visit first
    """
    return await service.get_dining_history(user_id)


# Internal endpoints
@app.get(
    "/api/v1/cache/stats",
    response_model=CacheStatsResponse,
    tags=["Internal"],
    summary="Get lookup cache statistics",
)
async def get_cache_stats(
    current_user: User = Depends(get_current_user),
    p: Pipeline = Depends(get_pipeline),
):
    """
    Hit/miss statistics of the restaurant and profile caches
    """
    return CacheStatsResponse(
        restaurants=p.restaurant_cache.stats(),
        profiles=p.profile_cache.stats(),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reviewfeed_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
