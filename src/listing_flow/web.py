"""Flask application exposing generation, OAuth and listing endpoints."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import requests
from flask import Flask, Response, current_app, g, jsonify, redirect, request, url_for
from werkzeug.exceptions import HTTPException

from .config import DEFAULT_SHOP_NAME, DEFAULT_SHOP_URL, AppSettings, CategoryTemplates
from .errors import AuthError, ListingFlowError, ValidationError
from .etsy.api_client import EtsyAPIClient
from .etsy.listing_metadata import ListingSubmission
from .etsy.oauth import PKCEFlow, access_token_from
from .etsy.publisher import EtsyPublisher
from .gemini_client import GeminiSettings, ModelChain, list_models
from .generator import CategoryContext, ListingGenerator, Mode
from .session_store import CookieStore
from .utils import ImageInput

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], EtsyAPIClient]


@dataclass
class Services:
    """Process-wide collaborators shared by all requests."""

    settings: AppSettings
    client_factory: ClientFactory
    http_session: requests.Session = field(default_factory=requests.Session)
    generator: Optional[ListingGenerator] = None

    def get_generator(self) -> ListingGenerator:
        if self.generator is None:
            gemini = GeminiSettings.from_env()
            templates = CategoryTemplates.load(self.settings.categories_path)
            chain = None if gemini.dry_run else ModelChain.from_settings(gemini)
            self.generator = ListingGenerator(chain, templates, dry_run=gemini.dry_run)
        return self.generator


def _services() -> Services:
    return current_app.extensions["listing_flow"]


def _uploaded_images() -> List[ImageInput]:
    images = []
    for upload in request.files.getlist("image"):
        if not upload or not upload.filename:
            continue
        images.append(ImageInput.from_bytes(upload.read(), filename=upload.filename, mime_type=upload.mimetype))
    return images


def _publisher() -> EtsyPublisher:
    services = _services()
    token = access_token_from(g.store)
    api_key = services.settings.etsy_api_key
    if not token or not api_key:
        raise AuthError("Not authenticated with Etsy")
    return EtsyPublisher(services.client_factory(api_key, token), services.settings.listing)


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    generator: Optional[ListingGenerator] = None,
    client_factory: Optional[ClientFactory] = None,
    http_session: Optional[requests.Session] = None,
) -> Flask:
    """Build the Flask app.

    Args:
        settings: App settings (loaded from the environment when omitted).
        generator: Listing generator; built lazily from ``GeminiSettings`` when omitted.
        client_factory: ``(api_key, access_token) -> EtsyAPIClient``.
        http_session: Session used for the OAuth token exchange.
    """

    settings = settings or AppSettings.from_env()
    if client_factory is None:
        def client_factory(api_key: str, token: str) -> EtsyAPIClient:
            return EtsyAPIClient(api_key, token, timeout=settings.http_timeout)

    app = Flask(__name__)
    app.extensions["listing_flow"] = Services(
        settings=settings,
        client_factory=client_factory,
        http_session=http_session or requests.Session(),
        generator=generator,
    )

    @app.before_request
    def _open_store() -> None:
        g.store = CookieStore(request.cookies, secure=settings.secure_cookies)

    @app.after_request
    def _flush_store(response: Response) -> Response:
        store = g.get("store")
        if store is not None:
            store.apply(response)
        return response

    @app.errorhandler(ListingFlowError)
    def _handle_listing_error(exc: ListingFlowError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log("%s %s failed: %s", request.method, request.path, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal Server Error"}), 500

    @app.get("/")
    def index():
        return jsonify({"status": "ok", "connected": bool(access_token_from(g.store))})

    @app.post("/api/analyze")
    def analyze():
        images = _uploaded_images()
        if not images:
            raise ValidationError("No image provided")

        mode = Mode.from_flag(request.form.get("mode"))
        if mode is not Mode.BATCH_ALT_TEXT:
            images = images[:1]
        context = CategoryContext(
            category=request.form.get("category") or "other",
            shop_name=request.form.get("shopName") or DEFAULT_SHOP_NAME,
            shop_url=request.form.get("shopUrl") or DEFAULT_SHOP_URL,
        )

        result = _services().get_generator().generate(images, mode, context)
        return jsonify(result.to_dict())

    @app.get("/api/etsy/auth")
    def etsy_auth():
        flow = PKCEFlow(settings, g.store, session=_services().http_session)
        return redirect(flow.authorize())

    @app.get("/api/etsy/callback")
    def etsy_callback():
        flow = PKCEFlow(settings, g.store, session=_services().http_session)
        flow.callback(
            code=request.args.get("code"),
            state=request.args.get("state"),
            error=request.args.get("error"),
        )
        return redirect(url_for("index"))

    @app.post("/api/etsy/listing")
    def create_listing():
        publisher = _publisher()
        # The review form posts JSON without a JSON content type
        payload = request.get_json(force=True, silent=True)
        submission = ListingSubmission.from_payload(payload)
        draft = publisher.publish(submission)
        return jsonify(draft.to_dict())

    @app.post("/api/etsy/image")
    def attach_image():
        publisher = _publisher()
        raw_listing_id = request.form.get("listing_id", "")
        images = _uploaded_images()
        if not raw_listing_id or not images:
            raise ValidationError("Missing listing_id or image")
        try:
            listing_id = int(raw_listing_id)
        except ValueError as exc:
            raise ValidationError("listing_id must be an integer", details=raw_listing_id) from exc
        rank = request.form.get("rank", type=int)

        result = publisher.attach_image(
            listing_id,
            images[0],
            alt_text=request.form.get("alt_text") or None,
            rank=rank,
        )
        return jsonify(result)

    @app.get("/api/etsy/sections")
    def shop_sections():
        return jsonify({"sections": _publisher().list_sections()})

    @app.get("/api/debug/models")
    def debug_models():
        return jsonify({"models": list_models(GeminiSettings.from_env())})

    return app


__all__ = ["create_app", "Services"]
