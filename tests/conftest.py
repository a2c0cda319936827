from __future__ import annotations

from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest
from PIL import Image

from listing_flow.config import CategoryTemplates
from listing_flow.etsy.api_client import EtsyAPIClient, EtsyAPIError
from listing_flow.gemini_client import ModelChain
from listing_flow.generator import ListingGenerator
from listing_flow.utils import ImageInput


def make_png(color=(200, 80, 40)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (8, 8), color=color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def image(png_bytes) -> ImageInput:
    return ImageInput.from_bytes(png_bytes, filename="photo.png")


@pytest.fixture
def templates() -> CategoryTemplates:
    return CategoryTemplates.load()


class FakeCandidate:
    """Model candidate returning canned text or raising a canned error."""

    def __init__(self, name: str, outcome: Union[str, Exception]):
        self.name = name
        self.outcome = outcome
        self.calls: List[Sequence[Any]] = []

    def generate(self, contents: Sequence[Any]) -> str:
        self.calls.append(contents)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def make_generator(templates: CategoryTemplates, *outcomes: Union[str, Exception]) -> ListingGenerator:
    candidates = [FakeCandidate(f"model-{i}", outcome) for i, outcome in enumerate(outcomes, start=1)]
    return ListingGenerator(ModelChain(candidates), templates)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ("" if payload is None else str(payload))
        self.headers: Dict[str, str] = {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Stands in for ``requests.Session`` in the token exchange and Etsy calls."""

    def __init__(self, response: Union[FakeResponse, Exception, None] = None):
        self.response = response
        self.posts: List[Dict[str, Any]] = []
        self.requests: List[Dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        if isinstance(self.response, Exception):
            raise self.response
        assert self.response is not None, "unexpected API request"
        return self.response

    def post(self, url: str, data: Optional[Dict] = None, timeout: Optional[float] = None) -> FakeResponse:
        self.posts.append({"url": url, "data": data, "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        assert self.response is not None, "unexpected token request"
        return self.response


class FakeEtsyClient(EtsyAPIClient):
    """Etsy client answering from in-memory data instead of HTTP."""

    def __init__(
        self,
        shops: Optional[Dict[str, Any]] = None,
        shipping_profiles: Optional[List[Dict[str, Any]]] = None,
        sections: Optional[List[Dict[str, Any]]] = None,
        shipping_error: bool = False,
    ):
        super().__init__("test-key", "test-token")
        self.shops = shops if shops is not None else {"count": 1, "results": [{"shop_id": 555}]}
        self.shipping_profiles = shipping_profiles if shipping_profiles is not None else [{"shipping_profile_id": 77}]
        self.sections = sections or []
        self.shipping_error = shipping_error
        self.created: List[Dict[str, Any]] = []
        self.uploads: List[Dict[str, Any]] = []

    def get_me(self):
        return {"user_id": 42, "shop_id": None}

    def get_user_shops(self, user_id):
        assert user_id == 42
        return self.shops

    def get_shipping_profiles(self, shop_id):
        if self.shipping_error:
            raise EtsyAPIError("API request failed (status 403): forbidden")
        return self.shipping_profiles

    def get_shop_sections(self, shop_id):
        return self.sections

    def create_draft_listing(self, shop_id, listing_data):
        self.created.append({"shop_id": shop_id, **listing_data})
        return {"listing_id": 1001, "url": "https://www.etsy.com/listing/1001/sample"}

    def upload_listing_image(self, shop_id, listing_id, image, *, rank=None, alt_text=None):
        self.uploads.append({"shop_id": shop_id, "listing_id": listing_id, "rank": rank, "alt_text": alt_text})
        return {"listing_image_id": 9, "listing_id": listing_id}
