"""Etsy API v3 client for shop lookup and draft listing management."""
from __future__ import annotations

import logging
import time
from typing import Dict, Any, Optional, List

import requests

from ..errors import ProviderError
from ..utils import ImageInput

logger = logging.getLogger(__name__)

# Etsy API v3 base URL
ETSY_API_BASE = "https://api.etsy.com/v3/application"

# Rate limit: 10 requests/second per shop
RATE_LIMIT_DELAY = 0.11  # seconds between requests


class EtsyAPIError(ProviderError):
    """Base exception for Etsy API errors."""
    pass


class EtsyRateLimitError(EtsyAPIError):
    """Rate limit exceeded error."""

    status_code = 429


class EtsyAuthenticationError(EtsyAPIError):
    """Authentication error."""

    status_code = 401


class EtsyAPIClient:
    """Etsy API v3 client bound to one OAuth access token."""

    def __init__(
        self,
        api_key: str,
        access_token: str,
        *,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize Etsy API client.

        Args:
            api_key: Etsy API key (keystring)
            access_token: OAuth 2.0 access token
            timeout: Per-request timeout in seconds
            session: Optional ``requests.Session`` (injectable for tests)
        """
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()

        self._last_request_time = 0.0

    def _wait_for_rate_limit(self) -> None:
        """Wait to respect rate limit (10 req/sec)."""
        elapsed = time.time() - self._last_request_time
        if elapsed < RATE_LIMIT_DELAY:
            time.sleep(RATE_LIMIT_DELAY - elapsed)
        self._last_request_time = time.time()

    def _get_headers(self) -> Dict[str, str]:
        headers = {"x-api-key": self.api_key}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _handle_response(self, response: requests.Response) -> Dict[Any, Any]:
        """Handle API response and errors.

        Args:
            response: requests Response object

        Returns:
            Parsed JSON response

        Raises:
            EtsyRateLimitError: Rate limit exceeded
            EtsyAuthenticationError: Authentication failed
            EtsyAPIError: Other API errors
        """
        # Rate limit
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "60")
            raise EtsyRateLimitError(
                f"Rate limit exceeded. Retry after {retry_after} seconds.",
                details=response.text,
            )

        # Authentication errors
        if response.status_code == 401:
            raise EtsyAuthenticationError(
                "Authentication failed. Access token may be expired.",
                details=response.text,
            )

        # Other errors
        if response.status_code >= 400:
            try:
                error_data = response.json()
                error_msg = error_data.get("error", response.text)
            except ValueError:
                error_msg = response.text

            raise EtsyAPIError(
                f"API request failed (status {response.status_code}): {error_msg}",
                details=response.text,
            )

        # Success
        try:
            return response.json()
        except ValueError as exc:
            raise EtsyAPIError("Etsy returned a non-JSON response", details=response.text) from exc

    def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        files: Optional[Dict] = None,
        form: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict[Any, Any]:
        """Make API request with rate limiting and error handling.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint (e.g., "/shops/{shop_id}/listings")
            data: JSON data for request body
            files: Files for multipart upload
            form: Plain form fields sent alongside ``files``
            params: URL query parameters

        Returns:
            Parsed JSON response

        Raises:
            EtsyAPIError: API request failed
        """
        self._wait_for_rate_limit()

        url = f"{ETSY_API_BASE}{endpoint}"
        logger.debug(f"{method} {url}")

        # For multipart uploads requests sets Content-Type with the boundary
        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=self._get_headers(),
                json=data if not files else None,
                data=form if files else None,
                files=files,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise EtsyAPIError(f"Could not reach Etsy: {exc}") from exc

        return self._handle_response(response)

    def ping(self) -> Dict[Any, Any]:
        """Check that the API key is accepted (``/openapi-ping``)."""
        return self._request("GET", "/openapi-ping")

    def get_me(self) -> Dict[Any, Any]:
        """Return the authenticated user (``user_id``, ``shop_id``)."""
        return self._request("GET", "/users/me")

    def get_user_shops(self, user_id: int) -> Dict[Any, Any]:
        """Return the shop(s) owned by ``user_id``."""
        return self._request("GET", f"/users/{user_id}/shops")

    def get_shipping_profiles(self, shop_id: int) -> List[Dict[Any, Any]]:
        result = self._request("GET", f"/shops/{shop_id}/shipping-profiles")
        return result.get("results") or []

    def get_shop_sections(self, shop_id: int) -> List[Dict[Any, Any]]:
        result = self._request("GET", f"/shops/{shop_id}/sections")
        return result.get("results") or []

    def create_draft_listing(self, shop_id: int, listing_data: Dict[str, Any]) -> Dict[Any, Any]:
        """Create a draft listing.

        Args:
            shop_id: Shop ID
            listing_data: createDraftListing body (title, description, price,
                quantity, who_made, when_made, taxonomy_id, ...)

        Returns:
            Created listing data including listing_id

        Raises:
            EtsyAPIError: Failed to create listing
        """
        result = self._request("POST", f"/shops/{shop_id}/listings", data=listing_data)
        logger.info(f"Created draft listing: {result.get('listing_id')}")
        return result

    def upload_listing_image(
        self,
        shop_id: int,
        listing_id: int,
        image: ImageInput,
        *,
        rank: Optional[int] = None,
        alt_text: Optional[str] = None,
    ) -> Dict[Any, Any]:
        """Upload an image to a listing.

        Args:
            shop_id: Shop ID
            listing_id: Listing ID
            image: Image payload
            rank: Image rank/position (1 = first/main image); Etsy appends when omitted
            alt_text: Optional alt text stored with the image

        Returns:
            Uploaded image data

        Raises:
            EtsyAPIError: Failed to upload image
        """
        files = {"image": (image.filename, image.data, image.mime_type)}
        form: Dict[str, Any] = {}
        if rank is not None:
            form["rank"] = rank
        if alt_text:
            form["alt_text"] = alt_text

        result = self._request(
            "POST",
            f"/shops/{shop_id}/listings/{listing_id}/images",
            files=files,
            form=form,
        )
        logger.debug(f"Uploaded image: {image.filename} (rank {rank})")
        return result

    @staticmethod
    def get_listing_url(listing_id: int) -> str:
        return f"https://www.etsy.com/listing/{listing_id}"


__all__ = [
    "EtsyAPIClient",
    "EtsyAPIError",
    "EtsyRateLimitError",
    "EtsyAuthenticationError",
]
