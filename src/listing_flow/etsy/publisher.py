"""Etsy draft listing publisher.

Resolves the seller's shop and shipping profile, creates the draft listing
and attaches images to it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import ListingDefaults
from ..errors import ProviderError, ShopNotFound
from ..utils import ImageInput
from .api_client import EtsyAPIClient, EtsyAPIError
from .listing_metadata import ListingSubmission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DraftListing:
    listing_id: int
    url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"listing_id": self.listing_id, "url": self.url}


class EtsyPublisher:
    """Creates Etsy draft listings for the authenticated seller."""

    def __init__(self, client: EtsyAPIClient, defaults: Optional[ListingDefaults] = None):
        self.client = client
        self.defaults = defaults or ListingDefaults()

    def resolve_shop(self) -> int:
        """Return the shop id of the authenticated user.

        Raises:
            ShopNotFound: If the user owns no shop.
            EtsyAPIError: If a lookup request fails.
        """
        user = self.client.get_me()
        user_id = user.get("user_id")
        if not user_id:
            raise ProviderError("Etsy did not return a user id", details=str(user))

        shop_data = self.client.get_user_shops(user_id)
        shop_id = shop_data.get("shop_id")
        if not shop_id:
            results = shop_data.get("results") or []
            shop_id = results[0].get("shop_id") if results else None
        if not shop_id:
            raise ShopNotFound("No Etsy shop found for this user")

        logger.debug(f"Resolved shop {shop_id} for user {user_id}")
        return shop_id

    def resolve_default_shipping(self, shop_id: int) -> Optional[int]:
        """First shipping profile of the shop, or ``None`` if none is available."""
        try:
            profiles = self.client.get_shipping_profiles(shop_id)
        except EtsyAPIError as e:
            logger.warning(f"Could not fetch shipping profiles: {e}")
            return None
        if not profiles:
            return None
        return profiles[0].get("shipping_profile_id")

    def create_draft(
        self,
        shop_id: int,
        submission: ListingSubmission,
        shipping_profile_id: Optional[int],
    ) -> DraftListing:
        """Create the draft listing.

        Without a shipping profile the configured placeholder id is used.

        Raises:
            ProviderError: No shipping profile and no placeholder configured.
            EtsyAPIError: Listing creation failed.
        """
        if shipping_profile_id is None:
            placeholder = self.defaults.placeholder_shipping_profile_id
            if placeholder is None:
                raise ProviderError(
                    "No shipping profile found for this shop",
                    details="Create a shipping profile on Etsy or set ETSY_PLACEHOLDER_SHIPPING_PROFILE_ID.",
                    status_code=400,
                )
            logger.warning(
                f"No shipping profile found; using placeholder {placeholder}. "
                "Etsy may reject the listing or it will not be shippable."
            )
            shipping_profile_id = placeholder

        listing_data = {
            **submission.to_etsy_fields(),
            "who_made": self.defaults.who_made,
            "when_made": self.defaults.when_made,
            "taxonomy_id": self.defaults.taxonomy_id,
            "shipping_profile_id": shipping_profile_id,
            "type": self.defaults.listing_type,
        }

        listing = self.client.create_draft_listing(shop_id, listing_data)
        listing_id = listing.get("listing_id")
        if not listing_id:
            raise ProviderError("Etsy did not return a listing id", details=str(listing))
        url = listing.get("url") or self.client.get_listing_url(listing_id)
        return DraftListing(listing_id=listing_id, url=url)

    def attach_image(
        self,
        listing_id: int,
        image: ImageInput,
        *,
        alt_text: Optional[str] = None,
        rank: Optional[int] = None,
    ) -> Dict[str, Any]:
        shop_id = self.resolve_shop()
        return self.client.upload_listing_image(shop_id, listing_id, image, rank=rank, alt_text=alt_text)

    def list_sections(self) -> List[Dict[str, Any]]:
        return self.client.get_shop_sections(self.resolve_shop())

    def publish(self, submission: ListingSubmission) -> DraftListing:
        """Resolve shop and shipping, then create the draft listing."""
        logger.info("Creating Etsy draft listing...")
        logger.info(f"  Title: {submission.title}")
        logger.info(f"  Price: ${submission.price}")

        shop_id = self.resolve_shop()
        shipping_profile_id = self.resolve_default_shipping(shop_id)
        draft = self.create_draft(shop_id, submission, shipping_profile_id)

        logger.info(f"  Created listing: {draft.listing_id} ({draft.url})")
        return draft


__all__ = ["EtsyPublisher", "DraftListing"]
