"""
Configuration settings for Review Feed Service
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Tip Review Feed Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8005

    # MongoDB (review document store)
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "tip"
    MONGODB_REVIEWS_COLLECTION: str = "reviews"
    MONGODB_RESTAURANTS_COLLECTION: str = "restaurants"
    MONGODB_MENU_ITEMS_COLLECTION: str = "menuItems"

    # Redis (for caching the feed's first page)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 2
    REDIS_PASSWORD: str = ""
    REDIS_ENABLED: bool = True

    # Auth
    JWT_SECRET_KEY: str = "your-secret-key-change-this-in-production"
    JWT_ALGORITHM: str = "HS256"

    # Other Services
    USER_SERVICE_URL: str = "http://localhost:8001"
    GRAPH_SERVICE_URL: str = "http://localhost:8003"

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_ENABLED: bool = True

    # Kafka Topics - Produce
    KAFKA_TOPIC_QUALITY_SCORE_UPDATED: str = "restaurant.quality_score.updated"

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Feed Settings
    FETCH_OVERFETCH_FACTOR: int = 3  # Absorbs client-side filtering loss
    FIRST_PAGE_SIZE: int = 50
    LIVE_FEED_ENABLED: bool = True
    LIVE_FEED_QUERY_LIMIT: int = 50
    LIVE_FEED_EMIT_LIMIT: int = 12
    FEED_LOAD_TIMEOUT_SECONDS: float = 10.0
    LOOKUP_TIMEOUT_SECONDS: float = 5.0
    PLACEHOLDER_DISH_IMAGE_URL: str = "https://source.unsplash.com/500x500/?food,{dish}"

    # Cache TTL (seconds)
    RESTAURANT_CACHE_TTL_SECONDS: int = 300  # 5 minutes
    PROFILE_CACHE_TTL_SECONDS: int = 300  # 5 minutes
    PROFILE_CACHE_MAX_SIZE: int = 10
    PROFILE_CACHE_ACCESS_ORDER: bool = False  # True = evict least recently read
    FEED_PAGE_CACHE_TTL_SECONDS: int = 600  # 10 minutes

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
