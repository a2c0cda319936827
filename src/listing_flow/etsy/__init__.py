"""Etsy API integration.

This module handles:
- OAuth 2.0 + PKCE authorization (cookie or server-side storage)
- Etsy API v3 client (shops, shipping profiles, sections, listings, images)
- Draft listing publishing
"""

from .api_client import EtsyAPIClient, EtsyAPIError
from .listing_metadata import ListingSubmission
from .oauth import PKCEFlow, TokenPair
from .publisher import DraftListing, EtsyPublisher

__all__ = [
    "EtsyAPIClient",
    "EtsyAPIError",
    "ListingSubmission",
    "PKCEFlow",
    "TokenPair",
    "EtsyPublisher",
    "DraftListing",
]
