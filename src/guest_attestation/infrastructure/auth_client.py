"""Auth service client for resolving staff bearer tokens."""

from typing import Optional

import httpx
import structlog

from guest_attestation.domain.errors import Unauthorized

logger = structlog.get_logger(__name__)


class StaffAuthClient:
    """
    Client for the auth service's user endpoint.

    Exchanges a staff bearer token for the authenticated user's id by
    calling GET {base_url}/auth/v1/user. Any failure to confirm the token
    is treated as unauthenticated.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 3.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the auth service client.

        Args:
            base_url: Base URL of the auth service
            api_key: Project API key sent in the "apikey" header
            timeout_seconds: Request timeout in seconds (default: 3.0)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http_client = httpx.Client(timeout=timeout_seconds, transport=transport)

    def close(self) -> None:
        """Close the HTTP client connection pool."""
        self.http_client.close()

    def get_user_id(self, access_token: str) -> str:
        """
        Resolve a staff access token to a user id.

        Raises:
            Unauthorized: If the token is missing, rejected, or the auth
                service cannot be reached
        """
        if not access_token:
            raise Unauthorized("Missing access token")

        headers = {"Authorization": f"Bearer {access_token}"}
        if self.api_key:
            headers["apikey"] = self.api_key

        try:
            response = self.http_client.get(f"{self.base_url}/auth/v1/user", headers=headers)
        except httpx.TimeoutException as e:
            logger.error("auth_service_timeout", error=str(e))
            raise Unauthorized("Auth service timeout") from e
        except httpx.RequestError as e:
            logger.error("auth_service_request_error", error=str(e))
            raise Unauthorized(f"Auth service request error: {e}") from e

        if response.status_code != 200:
            logger.warning("staff_token_rejected", status_code=response.status_code)
            raise Unauthorized("Invalid access token")

        try:
            user = response.json()
        except ValueError as e:
            raise Unauthorized("Unreadable auth service response") from e

        user_id = user.get("id") if isinstance(user, dict) else None
        if not user_id:
            logger.warning("auth_service_user_without_id")
            raise Unauthorized("Invalid access token")

        return str(user_id)
