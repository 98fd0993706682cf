import logging

import httpx
from pydantic import ValidationError

from .config import settings
from .models import SuggestMovieInput

logger = logging.getLogger(__name__)

DETAIL_MESSAGE = "Please provide a more detailed description."
FAILURE_MESSAGE = "AI failed to suggest a movie. Please try again."

SYSTEM_PROMPT = (
    "You recommend movies. Reply with the title of exactly one existing movie "
    "that best matches the user's description, and nothing else."
)


async def suggest_movie(prompt: str) -> str:
    """Ask the chat model for a single movie title."""
    if not settings.openai_api_key:
        raise RuntimeError("missing_openai_api_key")

    async with httpx.AsyncClient() as client:
        response = await client.post(
            f"{settings.openai_base_url}/chat/completions",
            headers={"Authorization": f"Bearer {settings.openai_api_key}"},
            json={
                "model": settings.openai_model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.7,
            },
            timeout=60.0,
        )
    response.raise_for_status()
    data = response.json()
    title = (
        data.get("choices", [{}])[0]
        .get("message", {})
        .get("content", "")
        .strip()
        .strip('"')
    )
    if not title:
        raise RuntimeError("empty_suggestion")
    return title


async def suggest_movie_action(values: dict) -> dict:
    """Validate the prompt and return a suggestion or a user-facing error."""
    try:
        validated = SuggestMovieInput.model_validate(values)
    except ValidationError:
        return {"success": False, "message": DETAIL_MESSAGE}

    try:
        title = await suggest_movie(validated.prompt)
    except (httpx.HTTPError, RuntimeError, ValueError, IndexError, AttributeError) as e:
        logger.error(f"Movie suggestion failed: {e}")
        return {"success": False, "message": FAILURE_MESSAGE}
    return {"success": True, "movie_title": title}
