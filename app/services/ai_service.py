"""
Gemini text generation for the tutor personas.
Uses the google-genai client: Developer API key when configured, otherwise Vertex AI.
Single attempt per call; no retry and no timeout override.
"""
import logging
from pathlib import Path

from app.config import get_settings

logger = logging.getLogger(__name__)

# Lazy client to avoid import/credentials errors at import time
_gemini_client = None


def _get_client():
    global _gemini_client
    if _gemini_client is not None:
        return _gemini_client
    try:
        from google import genai
        from google.oauth2 import service_account
    except ImportError as e:
        raise RuntimeError(
            "Google GenAI not installed. pip install google-genai google-auth"
        ) from e

    settings = get_settings()
    if settings.gemini_api_key:
        _gemini_client = genai.Client(api_key=settings.gemini_api_key)
        logger.info("Gemini client ready (Developer API)")
        return _gemini_client

    if not settings.vertex_project_id:
        raise RuntimeError("Neither gemini_api_key nor vertex_project_id is configured")

    credentials = None
    if settings.vertex_credentials_path:
        path = Path(settings.vertex_credentials_path)
        if path.is_file():
            credentials = service_account.Credentials.from_service_account_file(
                str(path),
                scopes=["https://www.googleapis.com/auth/cloud-platform"],
            )

    _gemini_client = genai.Client(
        vertexai=True,
        project=settings.vertex_project_id,
        location=settings.vertex_location,
        credentials=credentials,
    )
    logger.info("Gemini client ready (Vertex AI, %s)", settings.vertex_location)
    return _gemini_client


class EmptyResponseError(ValueError):
    """The model answered, but without any reply text."""


def generate_content(model: str, prompt: str) -> str:
    """
    Send one prompt to the model and return the reply text.
    Raises on API or model errors, and EmptyResponseError when the reply has no text.
    """
    client = _get_client()
    response = client.models.generate_content(model=model, contents=prompt)

    if not response or not response.candidates:
        raise EmptyResponseError("Empty response from model")
    candidate = response.candidates[0]
    if not candidate.content or not candidate.content.parts:
        raise EmptyResponseError("No text in model response")
    text = getattr(response, "text", None) or candidate.content.parts[0].text
    if not text:
        raise EmptyResponseError("No text in model response")
    return text
