"""Listing content generation built on top of the Gemini model chain.

Three mutually exclusive modes are supported:

``full_listing``
    One image (plus optional category context) to a :class:`GeneratedListing`.
``alt_text``
    One image to a single :class:`AltTextResult`.
``batch_alt_text``
    N images to N :class:`AltTextResult` entries, in input order.
"""
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .config import DEFAULT_SHOP_NAME, DEFAULT_SHOP_URL, CategoryTemplates
from .errors import ListingFlowError, ParseFailed, ValidationError
from .etsy.listing_metadata import MAX_TAGS, normalize_price, split_tags
from .gemini_client import ModelChain, build_contents
from .utils import ImageInput, chunked

logger = logging.getLogger(__name__)

MAX_ALT_TEXT_CHARS = 150
ALT_TEXT_BATCH_SIZE = 5
ALT_TEXT_BATCH_DELAY = 2.0  # seconds between batches
DRY_RUN_MODEL = "dry-run"

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class Mode(str, Enum):
    FULL_LISTING = "full_listing"
    ALT_TEXT = "alt_text"
    BATCH_ALT_TEXT = "batch_alt_text"

    @classmethod
    def from_flag(cls, value: Optional[str]) -> "Mode":
        """Map a form ``mode`` flag to a Mode; anything unknown is a full listing."""
        if value:
            for mode in cls:
                if mode.value == value.strip().lower():
                    return mode
        return cls.FULL_LISTING


@dataclass(frozen=True)
class CategoryContext:
    """Category id and shop attribution used to build the full-listing prompt."""

    category: Optional[str] = None
    shop_name: str = DEFAULT_SHOP_NAME
    shop_url: str = DEFAULT_SHOP_URL


@dataclass(frozen=True)
class GeneratedListing:
    title: str
    description: str
    tags: str
    price: str

    @classmethod
    def from_payload(cls, payload: Any, raw_text: str = "") -> "GeneratedListing":
        """Build a listing from parsed model JSON; all four fields are required.

        Raises:
            ParseFailed: If any field is missing, empty or unparsable.
        """

        if not isinstance(payload, dict):
            raise ParseFailed("Model response is not a JSON object", raw_text)

        missing = [
            k for k in ("title", "description", "tags", "price")
            if payload.get(k) is None or not str(payload[k]).strip() or payload[k] == []
        ]
        if missing:
            raise ParseFailed(f"Model response is missing fields: {', '.join(missing)}", raw_text)

        tags = split_tags(payload["tags"])[:MAX_TAGS]
        if not tags:
            raise ParseFailed("Model response has no usable tags", raw_text)
        try:
            price = normalize_price(payload["price"])
        except ValueError as exc:
            raise ParseFailed(f"Model response has an invalid price: {exc}", raw_text) from exc

        return cls(
            title=str(payload["title"]).strip(),
            description=str(payload["description"]).strip(),
            tags=", ".join(tags),
            price=price,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AltTextResult:
    alt: str

    @classmethod
    def create(cls, text: Any) -> "AltTextResult":
        alt = " ".join(str(text).split())
        return cls(alt=alt[:MAX_ALT_TEXT_CHARS].rstrip())

    def to_dict(self) -> Dict[str, Any]:
        return {"alt": self.alt}


Content = Union[GeneratedListing, AltTextResult, List[AltTextResult]]


@dataclass
class GenerationResult:
    """Generator output plus the model candidate that produced it."""

    content: Content
    model: str

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.content, list):
            body: Dict[str, Any] = {"results": [r.to_dict() for r in self.content]}
        else:
            body = self.content.to_dict()
        body["usedModel"] = self.model
        return body


def strip_code_fence(text: str) -> str:
    """Remove markdown fence markers and surrounding whitespace.

    Applying it twice gives the same result as applying it once.
    """

    return _FENCE_RE.sub("", text).strip()


def parse_json_payload(text: str) -> Any:
    """Parse model text as JSON after fence stripping.

    Raises:
        json.JSONDecodeError: If the remainder is not valid JSON.
    """

    return json.loads(strip_code_fence(text))


def build_full_listing_prompt(context_text: str = "") -> str:
    parts = [
        "Analyze this product image and generate a high-quality Etsy listing.",
    ]
    if context_text:
        parts.extend([
            "",
            "Category context: the description MUST contain the following template text",
            "reproduced verbatim (keep its line breaks and wording), preceded by a 2-3 sentence",
            "description of what is visible in the image (subject, colors, style, mood).",
            "<<<TEMPLATE",
            context_text,
            "TEMPLATE>>>",
        ])
    parts.extend([
        "",
        "Return ONLY a raw JSON object (no markdown formatting) with these fields:",
        "- title: SEO optimized, catchy title (max 140 chars)",
        "- description: Detailed, persuasive description (markdown supported). Include specific details "
        "relevant to the category (e.g. sizing for wall art, resolution for frame TV).",
        f"- tags: A comma-separated string of {MAX_TAGS} relevant tags",
        '- price: An estimated price in USD (number as string, e.g. "29.99")',
    ])
    return "\n".join(parts)


ALT_TEXT_PROMPT = "\n".join([
    "Analyze this product image and generate a short, descriptive alt text for Etsy SEO.",
    f"Focus on visual details and keywords. Max {MAX_ALT_TEXT_CHARS} characters.",
    "Return ONLY a raw JSON object with one field:",
    "- alt: The generated alt text string",
])


def build_batch_alt_text_prompt(count: int) -> str:
    return "\n".join([
        f"Analyze these {count} product images.",
        "Generate a short, descriptive alt text for EACH image for Etsy SEO.",
        f"Focus on visual details and keywords. Max {MAX_ALT_TEXT_CHARS} characters per text.",
        "",
        'Return ONLY a raw JSON object with a single field "results", which is an array of objects.',
        'Each object in the array must have an "alt" field.',
        f"The array MUST contain exactly {count} entries and its order MUST match the order of the images provided.",
        'Example: { "results": [ { "alt": "..." }, { "alt": "..." } ] }',
    ])


class ListingGenerator:
    """Produces listing content from product photos via a :class:`ModelChain`."""

    def __init__(
        self,
        chain: Optional[ModelChain],
        templates: CategoryTemplates,
        *,
        dry_run: bool = False,
    ):
        if chain is None and not dry_run:
            raise ValueError("A model chain is required unless dry_run is set")
        self.chain = chain
        self.templates = templates
        self.dry_run = dry_run

    def category_context_text(self, context: Optional[CategoryContext]) -> str:
        if context is None:
            return ""
        template = self.templates.get(context.category)
        if template is None:
            if context.category:
                logger.debug("Unknown category %r, no extra context", context.category)
            return ""
        return template.render(shop_name=context.shop_name, shop_url=context.shop_url)

    def generate(
        self,
        images: Sequence[ImageInput],
        mode: Mode = Mode.FULL_LISTING,
        context: Optional[CategoryContext] = None,
    ) -> GenerationResult:
        """Generate content for ``images`` in the requested mode.

        Raises:
            ValidationError: If no image (or several for a single-image mode) is given.
            GenerationFailed: If every model candidate fails.
            ParseFailed: If structured output is required and cannot be extracted.
        """

        if not images:
            raise ValidationError("No image provided")
        if mode is not Mode.BATCH_ALT_TEXT and len(images) != 1:
            raise ValidationError(f"Mode {mode.value} takes exactly one image, got {len(images)}")

        if mode is Mode.FULL_LISTING:
            prompt = build_full_listing_prompt(self.category_context_text(context))
        elif mode is Mode.ALT_TEXT:
            prompt = ALT_TEXT_PROMPT
        else:
            prompt = build_batch_alt_text_prompt(len(images))

        if self.dry_run:
            logger.info("[dry-run] Would send %s prompt with %d image(s)", mode.value, len(images))
            return GenerationResult(content=_dry_run_content(mode, len(images)), model=DRY_RUN_MODEL)

        result = self.chain.run(build_contents(prompt, images))
        return GenerationResult(content=self._parse(mode, result.text, len(images)), model=result.model)

    def _parse(self, mode: Mode, text: str, image_count: int) -> Content:
        try:
            payload = parse_json_payload(text)
        except json.JSONDecodeError as exc:
            if mode is Mode.ALT_TEXT:
                logger.info("Alt text response is not JSON, using raw text")
                return AltTextResult.create(text.strip())
            logger.error("Failed to parse %s response as JSON: %s", mode.value, exc)
            logger.debug("Raw response: %s", text[:500])
            raise ParseFailed("Failed to parse AI response", text) from exc

        if mode is Mode.FULL_LISTING:
            return GeneratedListing.from_payload(payload, text)

        if mode is Mode.ALT_TEXT:
            if not isinstance(payload, dict) or not payload.get("alt"):
                raise ParseFailed("Alt text response has no 'alt' field", text)
            return AltTextResult.create(payload["alt"])

        entries = payload.get("results") if isinstance(payload, dict) else payload
        if not isinstance(entries, list):
            raise ParseFailed("Batch response has no 'results' array", text)
        if len(entries) != image_count:
            raise ParseFailed(f"Batch response has {len(entries)} results for {image_count} images", text)

        results = []
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict) or not entry.get("alt"):
                raise ParseFailed(f"Batch result {idx} has no 'alt' field", text)
            results.append(AltTextResult.create(entry["alt"]))
        return results


def _dry_run_content(mode: Mode, image_count: int) -> Content:
    if mode is Mode.FULL_LISTING:
        return GeneratedListing(
            title="Sample Vintage Camera Listing (Mock)",
            description=(
                "This is a beautiful vintage camera in excellent condition. Perfect for collectors "
                "or photography enthusiasts. Lens is clear and shutter fires correctly."
            ),
            tags=(
                "vintage, camera, photography, retro, analogue, collector, rare, lens, film, "
                "old school, antique, decoration, gift"
            ),
            price="150.00",
        )
    if mode is Mode.ALT_TEXT:
        return AltTextResult.create("Sample product photo (mock alt text)")
    return [AltTextResult.create(f"Sample product photo {i} (mock alt text)") for i in range(1, image_count + 1)]


def generate_alt_text_in_batches(
    generator: ListingGenerator,
    images: Sequence[ImageInput],
    *,
    batch_size: int = ALT_TEXT_BATCH_SIZE,
    delay: float = ALT_TEXT_BATCH_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    on_batch: Optional[Callable[[int, int], None]] = None,
) -> List[Optional[AltTextResult]]:
    """Generate alt text for many images in fixed-size, paced batches.

    Batches run sequentially with a fixed ``delay`` between them. A failed
    batch is logged and its positions are left as ``None``; later batches
    still run.

    Args:
        generator: Generator used for each ``batch_alt_text`` call.
        images: Images in display order.
        batch_size: Images per request.
        delay: Seconds to wait between batches.
        sleep: Sleep function (injectable for tests).
        on_batch: Optional progress callback ``(processed, total)``.

    Returns:
        One entry per input image, aligned with ``images``.
    """

    results: List[Optional[AltTextResult]] = []
    batches = list(chunked(images, batch_size))
    for idx, batch in enumerate(batches):
        if idx:
            sleep(delay)
        try:
            outcome = generator.generate(batch, Mode.BATCH_ALT_TEXT)
            results.extend(outcome.content)
        except ListingFlowError as exc:
            logger.error("Batch %d/%d failed: %s", idx + 1, len(batches), exc)
            results.extend([None] * len(batch))
        if on_batch is not None:
            on_batch(len(results), len(images))
    return results


__all__ = [
    "Mode",
    "CategoryContext",
    "GeneratedListing",
    "AltTextResult",
    "GenerationResult",
    "ListingGenerator",
    "strip_code_fence",
    "parse_json_payload",
    "generate_alt_text_in_batches",
]
