"""Configuration loader: environment settings and category prompt templates."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_CATEGORIES_PATH = Path(__file__).parent / "templates" / "categories.yaml"
DEFAULT_REDIRECT_URI = "http://localhost:3000/api/etsy/callback"
DEFAULT_SCOPES = ("listings_w", "listings_r", "shops_r")

DEFAULT_SHOP_NAME = "[YOUR SHOP NAME]"
DEFAULT_SHOP_URL = "[YOUR SHOP URL]"


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass
class ListingDefaults:
    """Fixed Etsy listing attributes not edited in the review form."""

    taxonomy_id: int = 1296  # Prints
    who_made: str = "i_did"
    when_made: str = "2020_2024"
    listing_type: str = "physical"
    placeholder_shipping_profile_id: Optional[int] = None


@dataclass
class AppSettings:
    """Process-wide settings for the web app and CLI."""

    etsy_api_key: Optional[str] = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    secure_cookies: bool = False
    http_timeout: float = 30.0
    categories_path: Path = DEFAULT_CATEGORIES_PATH
    listing: ListingDefaults = field(default_factory=ListingDefaults)

    @classmethod
    def from_env(cls) -> "AppSettings":
        """Load settings from environment variables or .env.

        Raises:
            ValueError: If a numeric setting cannot be parsed.
        """

        load_dotenv()

        scopes = DEFAULT_SCOPES
        scope_env = os.getenv("ETSY_SCOPES")
        if scope_env:
            scopes = tuple(s for s in scope_env.replace(",", " ").split() if s) or DEFAULT_SCOPES

        listing = ListingDefaults(placeholder_shipping_profile_id=_env_int("ETSY_PLACEHOLDER_SHIPPING_PROFILE_ID"))
        taxonomy_id = _env_int("ETSY_TAXONOMY_ID")
        if taxonomy_id is not None:
            listing.taxonomy_id = taxonomy_id
        listing.who_made = os.getenv("ETSY_WHO_MADE", listing.who_made)
        listing.when_made = os.getenv("ETSY_WHEN_MADE", listing.when_made)
        listing.listing_type = os.getenv("ETSY_LISTING_TYPE", listing.listing_type)

        categories_env = os.getenv("LISTING_FLOW_CATEGORIES")

        return cls(
            etsy_api_key=os.getenv("ETSY_API_KEY") or None,
            redirect_uri=os.getenv("ETSY_REDIRECT_URI", DEFAULT_REDIRECT_URI),
            scopes=scopes,
            secure_cookies=os.getenv("LISTING_FLOW_ENV", "").lower() == "production",
            http_timeout=float(os.getenv("ETSY_HTTP_TIMEOUT", "30")),
            categories_path=Path(categories_env) if categories_env else DEFAULT_CATEGORIES_PATH,
            listing=listing,
        )


@dataclass
class CategoryTemplate:
    """Boilerplate injected into the full-listing prompt for one category."""

    id: str
    label: str
    context: str = ""

    def render(self, shop_name: str = DEFAULT_SHOP_NAME, shop_url: str = DEFAULT_SHOP_URL) -> str:
        # str.replace keeps stray braces in the boilerplate intact
        return self.context.replace("{shop_name}", shop_name).replace("{shop_url}", shop_url).strip()


@dataclass
class CategoryTemplates:
    """Versioned set of category templates keyed by category id."""

    version: int
    categories: Dict[str, CategoryTemplate]

    def get(self, category_id: Optional[str]) -> Optional[CategoryTemplate]:
        if not category_id:
            return None
        return self.categories.get(category_id.strip().lower())

    @classmethod
    def load(cls, path: Path = DEFAULT_CATEGORIES_PATH) -> "CategoryTemplates":
        """Load category templates YAML into a ``CategoryTemplates`` instance.

        Args:
            path: Path to the categories YAML file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If mandatory fields are missing.
        """

        if not path.exists():
            raise FileNotFoundError(f"Category templates not found: {path}")

        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}

        try:
            version = int(raw["version"])
            categories = {
                str(cat_id): CategoryTemplate(
                    id=str(cat_id),
                    label=entry["label"],
                    context=entry.get("context") or "",
                )
                for cat_id, entry in (raw.get("categories") or {}).items()
            }
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Invalid category templates in {path}: {exc}") from exc

        return cls(version=version, categories=categories)


__all__ = [
    "AppSettings",
    "ListingDefaults",
    "CategoryTemplate",
    "CategoryTemplates",
    "DEFAULT_SHOP_NAME",
    "DEFAULT_SHOP_URL",
]
