"""Thin wrapper around Google Gemini vision models with ordered fallback.

This module isolates the HTTP client so other code can stay framework-agnostic.
The implementation uses the official ``google-genai`` package.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence

from dotenv import load_dotenv
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .errors import ConfigurationError, GenerationFailed
from .utils import ImageInput

logger = logging.getLogger(__name__)

# Default priority: newest preview first, then stable flash releases
DEFAULT_TEXT_MODELS = (
    "gemini-3-flash-preview",
    "gemini-2.0-flash",
    "gemini-1.5-flash",
)


@dataclass
class GeminiSettings:
    """Runtime settings required to call the Gemini API."""

    api_key: str
    models: tuple[str, ...] = DEFAULT_TEXT_MODELS
    dry_run: bool = False

    @classmethod
    def from_env(cls) -> "GeminiSettings":
        """Load settings from environment variables or .env.

        Raises:
            ConfigurationError: If no API key is available and dry-run is off.
        """

        load_dotenv()
        dry_run = os.getenv("GEMINI_DRY_RUN", "").lower() in ("1", "true", "yes")
        api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""
        if not api_key and not dry_run:
            raise ConfigurationError(
                "GEMINI_API_KEY is not set",
                details="Create a .env or export GEMINI_API_KEY (GOOGLE_API_KEY is also accepted).",
            )

        model_env = os.getenv("GEMINI_TEXT_MODELS")
        models: tuple[str, ...] = DEFAULT_TEXT_MODELS
        if model_env:
            models = tuple(m.strip() for m in model_env.split(",") if m.strip()) or DEFAULT_TEXT_MODELS

        return cls(api_key=api_key, models=models, dry_run=dry_run)


CLIENTS: dict[str, genai.Client] = {}


def get_client(settings: GeminiSettings) -> genai.Client:
    """Return the cached client for ``settings.api_key``, creating it once."""
    client = CLIENTS.get(settings.api_key)
    if client is None:
        client = CLIENTS[settings.api_key] = genai.Client(api_key=settings.api_key)
    return client


def _get_error_json(exc: genai_errors.APIError) -> dict:
    """Extract JSON error data from an APIError (version-compatible)."""
    for attr in ["details", "response_json", "json", "error_data", "data"]:
        data = getattr(exc, attr, None)
        if isinstance(data, dict) and data:
            return data
    return {}


def _suggested_retry_delay(exc: genai_errors.APIError) -> Optional[float]:
    """Return retry delay seconds if provided by the API (RetryInfo)."""

    data = _get_error_json(exc)
    details = data.get("error", {}).get("details", []) if isinstance(data.get("error"), dict) else []
    for detail in details:
        if isinstance(detail, dict) and detail.get("@type", "").endswith("RetryInfo"):
            delay = detail.get("retryDelay")
            if isinstance(delay, str) and delay.endswith("s"):
                try:
                    return float(delay[:-1])
                except ValueError:
                    return None
    return None


def build_contents(prompt: str, images: Sequence[ImageInput]) -> List[Any]:
    """Prompt text followed by one inline part per image, in order."""

    contents: List[Any] = [prompt]
    for image in images:
        contents.append(types.Part.from_bytes(data=image.data, mime_type=image.mime_type))
    return contents


class Candidate(Protocol):
    """A single generation strategy tried by :class:`ModelChain`."""

    name: str

    def generate(self, contents: Sequence[Any]) -> str:
        ...


class ModelCandidate:
    """Generates text with one Gemini model identifier."""

    def __init__(self, client: genai.Client, name: str):
        self.client = client
        self.name = name

    def generate(self, contents: Sequence[Any]) -> str:
        response = self.client.models.generate_content(model=self.name, contents=list(contents))
        text = getattr(response, "text", None)
        if not text or not text.strip():
            raise RuntimeError(f"Model {self.name} returned no text")
        return text

    def __repr__(self) -> str:
        return f"ModelCandidate({self.name!r})"


@dataclass
class ChainResult:
    """Text produced by the first candidate that succeeded."""

    text: str
    model: str
    attempts: List[str] = field(default_factory=list)


class ModelChain:
    """Ordered list of candidates tried in turn with first-success semantics.

    Candidates are called strictly one after another; at most one request is
    in flight at a time.
    """

    def __init__(self, candidates: Sequence[Candidate]):
        if not candidates:
            raise ValueError("ModelChain needs at least one candidate")
        self.candidates = list(candidates)

    @classmethod
    def from_settings(cls, settings: GeminiSettings, client: Optional[genai.Client] = None) -> "ModelChain":
        client = client or get_client(settings)
        return cls([ModelCandidate(client, model) for model in settings.models])

    @property
    def model_names(self) -> List[str]:
        return [c.name for c in self.candidates]

    def run(self, contents: Sequence[Any]) -> ChainResult:
        """Try each candidate until one returns text.

        Raises:
            GenerationFailed: If every candidate fails; carries the last error.
        """

        attempts: List[str] = []
        last_error: Exception | None = None

        for candidate in self.candidates:
            attempts.append(candidate.name)
            logger.info("Calling Gemini model: %s", candidate.name)
            try:
                text = candidate.generate(contents)
            except genai_errors.APIError as exc:
                last_error = exc
                error_data = _get_error_json(exc)
                payload = json.dumps(error_data, ensure_ascii=False) if error_data else str(exc)
                if getattr(exc, "code", None) == 429:
                    logger.warning("Quota hit on %s: %s", candidate.name, payload)
                    delay = _suggested_retry_delay(exc)
                    if delay:
                        logger.info("Server suggested retry after %.1fs; moving to next model", delay)
                else:
                    logger.warning("Gemini API error on %s: %s", candidate.name, payload)
                continue
            except Exception as exc:
                last_error = exc
                logger.warning("Model %s failed: %s", candidate.name, exc)
                continue

            logger.info("Model %s succeeded after %d attempt(s)", candidate.name, len(attempts))
            return ChainResult(text=text, model=candidate.name, attempts=attempts)

        raise GenerationFailed(
            f"All Gemini models failed ({', '.join(attempts)})",
            attempts=attempts,
            last_error=last_error,
        )


def list_models(settings: GeminiSettings) -> List[str]:
    """Names of the models visible to the configured API key."""

    client = get_client(settings)
    return [model.name for model in client.models.list()]


__all__ = [
    "DEFAULT_TEXT_MODELS",
    "GeminiSettings",
    "ModelCandidate",
    "ModelChain",
    "ChainResult",
    "build_contents",
    "list_models",
]
