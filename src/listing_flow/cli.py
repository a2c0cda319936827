"""Command line interface for Listing Flow."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv

from .config import DEFAULT_SHOP_NAME, DEFAULT_SHOP_URL, AppSettings, CategoryTemplates
from .errors import ListingFlowError
from .etsy.api_client import EtsyAPIClient
from .gemini_client import GeminiSettings, ModelChain, list_models
from .generator import (
    ALT_TEXT_BATCH_DELAY,
    ALT_TEXT_BATCH_SIZE,
    CategoryContext,
    ListingGenerator,
    Mode,
    generate_alt_text_in_batches,
)
from .utils import ImageInput, setup_logging

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(help="Turn product photos into Etsy draft listings with Gemini.")


@app.callback()
def _init(ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")) -> None:
    """Initialize logging for all commands."""

    setup_logging(level=logging.DEBUG if verbose else logging.INFO)
    ctx.obj = {}


def _build_generator(dry_run: bool) -> ListingGenerator:
    settings = AppSettings.from_env()
    templates = CategoryTemplates.load(settings.categories_path)
    if dry_run:
        return ListingGenerator(None, templates, dry_run=True)
    gemini = GeminiSettings.from_env()
    chain = None if gemini.dry_run else ModelChain.from_settings(gemini)
    return ListingGenerator(chain, templates, dry_run=gemini.dry_run)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(3000, help="Port to listen on (must match ETSY_REDIRECT_URI)."),
    debug: bool = typer.Option(False, help="Run Flask in debug mode."),
) -> None:
    """Run the web server."""

    from .web import create_app

    create_app().run(host=host, port=port, debug=debug)


@app.command()
def draft(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, help="Product photo."),
    category: str = typer.Option("other", help="Category id (frame-tv, wall-art, clipart, other)."),
    shop_name: str = typer.Option(DEFAULT_SHOP_NAME, help="Shop name used in category boilerplate."),
    shop_url: str = typer.Option(DEFAULT_SHOP_URL, help="Shop URL used in category boilerplate."),
    dry_run: bool = typer.Option(False, help="Log actions without calling the API."),
) -> None:
    """Generate a listing draft for one photo and print it as JSON."""

    generator = _build_generator(dry_run)
    context = CategoryContext(category=category, shop_name=shop_name, shop_url=shop_url)
    try:
        result = generator.generate([ImageInput.from_path(image)], Mode.FULL_LISTING, context)
    except ListingFlowError as exc:
        typer.echo(json.dumps(exc.to_dict(), indent=2), err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


@app.command(name="alt-text")
def alt_text(
    images: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Product photos in display order."),
    batch_size: int = typer.Option(ALT_TEXT_BATCH_SIZE, help="Images per request."),
    delay: float = typer.Option(ALT_TEXT_BATCH_DELAY, help="Seconds to wait between batches."),
    dry_run: bool = typer.Option(False, help="Log actions without calling the API."),
) -> None:
    """Generate alt text for many photos in paced batches."""

    generator = _build_generator(dry_run)
    inputs = [ImageInput.from_path(path) for path in images]

    def progress(done: int, total: int) -> None:
        typer.echo(f"Processed {done}/{total}", err=True)

    results = generate_alt_text_in_batches(
        generator,
        inputs,
        batch_size=batch_size,
        delay=delay,
        on_batch=progress,
    )

    failed = 0
    for path, result in zip(images, results):
        if result is None:
            failed += 1
            typer.echo(f"{path.name}\t[FAILED]")
        else:
            typer.echo(f"{path.name}\t{result.alt}")

    if failed:
        raise typer.Exit(code=1)


@app.command()
def ping() -> None:
    """Check that ETSY_API_KEY is accepted by the Etsy API."""

    settings = AppSettings.from_env()
    if not settings.etsy_api_key:
        typer.echo("ETSY_API_KEY not found in .env", err=True)
        raise typer.Exit(code=1)

    client = EtsyAPIClient(settings.etsy_api_key, access_token="", timeout=settings.http_timeout)
    try:
        response = client.ping()
    except ListingFlowError as exc:
        typer.echo(f"Etsy API check failed: {exc.message}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"API key is valid: {response}")


@app.command()
def models(show_chain: bool = typer.Option(False, "--chain", help="Show the configured fallback order instead.")) -> None:
    """List Gemini models visible to the API key."""

    settings = GeminiSettings.from_env()
    names = list(settings.models) if show_chain else list_models(settings)
    for name in names:
        typer.echo(name)


if __name__ == "__main__":  # pragma: no cover
    app()
