"""
Service mesh client for inter-service communication
"""
import httpx
from typing import Optional, List, Dict, Any
import logging

from .config import settings
from .models import UserProfile

logger = logging.getLogger(__name__)


class ServiceClient:
    """HTTP client for the user-profile and social-graph services"""

    def __init__(self):
        self.timeout = httpx.Timeout(10.0, connect=5.0)
        self.client: Optional[httpx.AsyncClient] = None

    async def start(self):
        """Initialize HTTP client"""
        self.client = httpx.AsyncClient(timeout=self.timeout)
        logger.info("Service client initialized")

    async def stop(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            logger.info("Service client closed")

    async def _make_request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> Optional[Dict[str, Any]]:
        """Make HTTP request to a service"""
        if not self.client:
            logger.error("Service client not initialized")
            return None

        try:
            response = await self.client.request(
                method,
                url,
                headers=headers,
                **kwargs
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error {e.response.status_code} for {url}: {e}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Request failed for {url}: {e}")
            return None

    # User Service API
    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        """Profile of a review author, None when it cannot be resolved"""
        url = f"{settings.USER_SERVICE_URL}/api/v1/users/{user_id}"

        response = await self._make_request("GET", url)
        if not response or not response.get("username"):
            return None

        return UserProfile(
            id=str(response.get("id") or user_id),
            username=response["username"],
            display_name=response.get("display_name") or response.get("displayName"),
            avatar_url=response.get("avatar_url") or response.get("avatarUrl"),
            verified=bool(response.get("is_verified") or response.get("isVerified")),
        )

    # Graph Service API
    async def get_following_ids(
        self,
        user_id: str,
        token: str
    ) -> List[str]:
        """Get list of user IDs that the user is following"""
        url = f"{settings.GRAPH_SERVICE_URL}/api/v1/graph/following/{user_id}"
        headers = {"Authorization": f"Bearer {token}"}

        all_following_ids = []
        page = 1
        has_more = True

        while has_more:
            response = await self._make_request(
                "GET",
                url,
                headers=headers,
                params={"page": page, "page_size": 100}
            )

            if not response:
                break

            following_list = response.get("following", [])
            all_following_ids.extend([str(f["user_id"]) for f in following_list if "user_id" in f])

            has_more = response.get("has_more", False)
            page += 1

        logger.info(f"Fetched {len(all_following_ids)} following IDs for user {user_id}")
        return all_following_ids


# Global service client instance
service_client = ServiceClient()


async def get_service_client() -> ServiceClient:
    """Dependency for getting service client instance"""
    return service_client
