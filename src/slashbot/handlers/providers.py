"""Thin async clients for the public APIs the fun commands draw from.

Every call carries its own bounded timeout; failures are raised as
``ProviderError`` and never retried or cached.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..core.exceptions import TransientError
from ..core.logging_utils import log_event

CAT_IMAGE_URL = "https://api.thecatapi.com/v1/images/search"
DOG_IMAGE_URL = "https://dog.ceo/api/breeds/image/random"
FOX_IMAGE_URL = "https://randomfox.ca/floof/"
DUCK_IMAGE_URL = "https://random-d.uk/api/random"
SOME_RANDOM_API_ANIMAL_URL = "https://some-random-api.com/animal/{animal}"
CAT_FACT_URL = "https://catfact.ninja/fact"
DOG_FACT_URL = "https://dog-api.kinduff.com/api/facts"
MEME_URL = "https://meme-api.com/gimme"
JOKE_URL = "https://official-joke-api.appspot.com/random_joke"
ADVICE_URL = "https://api.adviceslip.com/advice"
USELESS_FACT_URL = "https://uselessfacts.jsph.pl/api/v2/facts/random"
TRIVIA_URL = "https://opentdb.com/api.php"

ANIMAL_TYPES = ("cat", "dog", "fox", "duck", "bird", "koala", "panda", "red_panda")


class ProviderError(TransientError):
    """A third-party data provider could not be reached or answered badly."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


@dataclass(frozen=True)
class Meme:
    title: str
    url: str
    post_link: str
    subreddit: str
    author: str
    ups: int


@dataclass(frozen=True)
class Joke:
    setup: str
    punchline: str


@dataclass(frozen=True)
class TriviaQuestion:
    category: str
    difficulty: str
    question: str
    correct_answer: str
    incorrect_answers: tuple[str, ...]


def _require_str(provider: str, payload: Any, key: str) -> str:
    value = payload.get(key) if isinstance(payload, dict) else None
    if not isinstance(value, str) or not value:
        raise ProviderError(provider, f"response missing {key!r}")
    return value


class ProviderClient:
    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        user_agent: str = "slashbot",
        logger: Optional[logging.Logger] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._logger = logger or logging.getLogger(__name__)
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    async def _get_json(
        self, provider: str, url: str, *, params: Optional[dict[str, Any]] = None
    ) -> Any:
        try:
            response = await self._client.get(
                url, params=params, timeout=self._timeout_seconds
            )
        except httpx.HTTPError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "provider.request.failed",
                provider=provider,
                url=url,
                exc=exc,
            )
            raise ProviderError(provider, f"request failed: {exc}") from exc
        if response.status_code < 200 or response.status_code >= 300:
            log_event(
                self._logger,
                logging.WARNING,
                "provider.request.status",
                provider=provider,
                url=url,
                status_code=response.status_code,
            )
            raise ProviderError(provider, f"HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(provider, "response was not valid JSON") from exc

    async def animal_image(self, animal: str) -> str:
        if animal == "cat":
            return await self.cat_image()
        if animal == "dog":
            payload = await self._get_json("dog.ceo", DOG_IMAGE_URL)
            return _require_str("dog.ceo", payload, "message")
        if animal == "fox":
            payload = await self._get_json("randomfox", FOX_IMAGE_URL)
            return _require_str("randomfox", payload, "image")
        if animal == "duck":
            payload = await self._get_json("random-d.uk", DUCK_IMAGE_URL)
            return _require_str("random-d.uk", payload, "url")
        if animal in ANIMAL_TYPES:
            payload = await self._get_json(
                "some-random-api", SOME_RANDOM_API_ANIMAL_URL.format(animal=animal)
            )
            return _require_str("some-random-api", payload, "image")
        raise ProviderError("animal", f"unknown animal type {animal!r}")

    async def cat_image(self) -> str:
        payload = await self._get_json("thecatapi", CAT_IMAGE_URL)
        if not isinstance(payload, list) or not payload:
            raise ProviderError("thecatapi", "no image found")
        return _require_str("thecatapi", payload[0], "url")

    async def dog_image(self) -> str:
        return await self.animal_image("dog")

    async def cat_fact(self) -> str:
        payload = await self._get_json("catfact", CAT_FACT_URL)
        return _require_str("catfact", payload, "fact")

    async def dog_fact(self) -> str:
        payload = await self._get_json("dog-api", DOG_FACT_URL)
        facts = payload.get("facts") if isinstance(payload, dict) else None
        if not isinstance(facts, list) or not facts or not isinstance(facts[0], str):
            raise ProviderError("dog-api", "response missing 'facts'")
        return facts[0]

    async def meme(self) -> Meme:
        payload = await self._get_json("meme-api", MEME_URL)
        ups = payload.get("ups") if isinstance(payload, dict) else None
        return Meme(
            title=_require_str("meme-api", payload, "title"),
            url=_require_str("meme-api", payload, "url"),
            post_link=str(payload.get("postLink") or ""),
            subreddit=str(payload.get("subreddit") or ""),
            author=str(payload.get("author") or ""),
            ups=ups if isinstance(ups, int) else 0,
        )

    async def joke(self) -> Joke:
        payload = await self._get_json("joke-api", JOKE_URL)
        return Joke(
            setup=_require_str("joke-api", payload, "setup"),
            punchline=_require_str("joke-api", payload, "punchline"),
        )

    async def advice(self) -> str:
        payload = await self._get_json("adviceslip", ADVICE_URL)
        slip = payload.get("slip") if isinstance(payload, dict) else None
        return _require_str("adviceslip", slip, "advice")

    async def useless_fact(self) -> str:
        payload = await self._get_json(
            "uselessfacts", USELESS_FACT_URL, params={"language": "en"}
        )
        return _require_str("uselessfacts", payload, "text")

    async def trivia(
        self, *, category: str = "", difficulty: str = ""
    ) -> TriviaQuestion:
        params: dict[str, Any] = {"amount": 1, "type": "multiple"}
        if category:
            params["category"] = category
        if difficulty:
            params["difficulty"] = difficulty
        payload = await self._get_json("opentdb", TRIVIA_URL, params=params)
        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            raise ProviderError("opentdb", "no trivia question returned")
        item = results[0]
        incorrect = item.get("incorrect_answers")
        if not isinstance(incorrect, list):
            incorrect = []
        # opentdb HTML-escapes all of its text fields.
        return TriviaQuestion(
            category=html.unescape(str(item.get("category") or "")),
            difficulty=str(item.get("difficulty") or ""),
            question=html.unescape(_require_str("opentdb", item, "question")),
            correct_answer=html.unescape(_require_str("opentdb", item, "correct_answer")),
            incorrect_answers=tuple(html.unescape(str(answer)) for answer in incorrect),
        )
