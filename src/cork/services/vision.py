"""Wine label recognition.

A recognizer turns a label photo into draft catalog fields.  The result is
a suggestion for the user to review, never a stored record, so every
failure here degrades to a demo record plus a notice instead of an error.
"""

from __future__ import annotations

import json
import logging
import math
import os
import random
import re
from collections.abc import Mapping
from typing import NamedTuple, Protocol

import httpx

from cork.core.errors import CorkError
from cork.core.records import CHARACTERISTICS, WINE_TYPES

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a sommelier reading wine labels. Reply with a single JSON object "
    "with the keys name, producer, type (one of red, white, rosé, sparkling, "
    "dessert), year, region, grape, boldness, tannins, acidity (integers 1-5), "
    "price (estimated retail price in euros) and description (one sentence of "
    "tasting notes). Use null for anything you cannot determine."
)

DEMO_WINES: tuple[dict, ...] = (
    {
        "name": "Grand Vin",
        "producer": "Château Margaux",
        "type": "red",
        "year": 2015,
        "region": "Margaux, Bordeaux, France",
        "grape": "Cabernet Sauvignon, Merlot",
        "boldness": 4,
        "tannins": 4,
        "acidity": 3,
        "price": 450,
        "description": "Elegant with blackcurrant, violet, and cedar notes.",
    },
    {
        "name": "Sauvignon Blanc",
        "producer": "Cloudy Bay",
        "type": "white",
        "year": 2022,
        "region": "Marlborough, New Zealand",
        "grape": "Sauvignon Blanc",
        "boldness": 2,
        "tannins": 1,
        "acidity": 4,
        "price": 28,
        "description": "Crisp with citrus and passion fruit.",
    },
    {
        "name": "Whispering Angel",
        "producer": "Château d'Esclans",
        "type": "rosé",
        "year": 2023,
        "region": "Provence, France",
        "grape": "Grenache, Cinsault",
        "boldness": 2,
        "tannins": 1,
        "acidity": 3,
        "price": 22,
        "description": "Delicate strawberry and peach flavors.",
    },
    {
        "name": "Tignanello",
        "producer": "Antinori",
        "type": "red",
        "year": 2019,
        "region": "Tuscany, Italy",
        "grape": "Sangiovese, Cabernet Sauvignon",
        "boldness": 5,
        "tannins": 4,
        "acidity": 4,
        "price": 120,
        "description": "Rich with cherry, plum, and spicy oak.",
    },
    {
        "name": "Brut Vintage",
        "producer": "Dom Pérignon",
        "type": "sparkling",
        "year": 2012,
        "region": "Champagne, France",
        "grape": "Chardonnay, Pinot Noir",
        "boldness": 3,
        "tannins": 1,
        "acidity": 4,
        "price": 200,
        "description": "Fine bubbles with brioche and citrus.",
    },
)

NOTICE_RECOGNIZED = "Wine recognized. Check the details."
NOTICE_DEMO = "Demo mode: label recognition is not configured."
NOTICE_UNAUTHORIZED = "Not authorized. Sign in again. Showing a demo record."
NOTICE_RATE_LIMITED = "Too many requests. Try again later. Showing a demo record."
NOTICE_FAILED = "Could not analyze the image. Showing a demo record; edit it manually."

_TYPE_ALIASES = {"rose": "rosé", "rosado": "rosé", "rosato": "rosé", "champagne": "sparkling"}
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_YEAR_RE = re.compile(r"\b(1[89]\d\d|20\d\d)\b")
_PRICE_RE = re.compile(r"\d+(?:[.,]\d+)?")


class RecognitionError(CorkError):
    """Label recognition failed."""


class RecognitionAuthError(RecognitionError):
    """The recognition service rejected our credentials (401/403)."""


class RecognitionRateLimitError(RecognitionError):
    """The recognition service is throttling us (429)."""


class MalformedRecognitionError(RecognitionError):
    """The recognition service replied with something that is not a wine."""


class LabelRecognizer(Protocol):
    async def recognize(self, image: str) -> dict: ...


class RecognitionOutcome(NamedTuple):
    fields: dict
    notice: str
    demo: bool


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------


def extract_json_payload(text: str) -> dict:
    """Pull the JSON object out of a model reply.

    Handles bare JSON, markdown code fences and JSON surrounded by prose.

    Raises:
        MalformedRecognitionError: If no JSON object can be found.
    """
    if not isinstance(text, str) or not text.strip():
        raise MalformedRecognitionError("empty reply")

    fenced = _FENCE_RE.search(text)
    candidate = fenced.group(1) if fenced else text
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start < 0 or end <= start:
        raise MalformedRecognitionError("no JSON object in reply")
    try:
        data = json.loads(candidate[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedRecognitionError(f"invalid JSON in reply: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedRecognitionError("reply JSON is not an object")
    return data


def _text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v).strip() for v in value if str(v).strip())
    text = str(value).strip()
    return text or None


def _wine_type(value: object) -> str:
    text = (_text(value) or "").lower()
    text = _TYPE_ALIASES.get(text, text)
    return text if text in WINE_TYPES else "red"


def _year(value: object) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    match = _YEAR_RE.search(str(value)) if value is not None else None
    return int(match.group(1)) if match else None


def _scale(value: object) -> int:
    try:
        number = round(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return 3
    return min(5, max(1, number))


def _price(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) and number >= 0 else None
    match = _PRICE_RE.search(str(value))
    if not match:
        return None
    return float(match.group(0).replace(",", "."))


def normalize_recognition(data: Mapping) -> dict:
    """Coerce a recognizer reply into valid descriptive wine fields.

    Raises:
        MalformedRecognitionError: If the reply has no usable name.
    """
    name = _text(data.get("name"))
    if not name:
        raise MalformedRecognitionError("reply has no wine name")
    fields: dict = {
        "name": name,
        "producer": _text(data.get("producer")),
        "type": _wine_type(data.get("type")),
        "year": _year(data.get("year")),
        "region": _text(data.get("region")),
        "grape": _text(data.get("grape")),
        "price": _price(data.get("price")),
        "notes": _text(data.get("description") or data.get("notes")),
    }
    for field in CHARACTERISTICS:
        fields[field] = _scale(data.get(field))
    return fields


# ---------------------------------------------------------------------------
# Recognizers
# ---------------------------------------------------------------------------


def as_data_url(image: str, mime: str = "image/jpeg") -> str:
    """Return *image* as a data URL, wrapping bare base64 when needed."""
    if image.startswith("data:"):
        return image
    return f"data:{mime};base64,{image}"


class StubRecognizer:
    """Returns a random canned wine; used when no service is configured."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    async def recognize(self, image: str) -> dict:  # noqa: ARG002
        return dict(self._rng.choice(DEMO_WINES))


class OpenAIVisionRecognizer:
    """Recognizer backed by an OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        endpoint: str = "https://api.openai.com/v1/chat/completions",
        model: str = "gpt-4o",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.model = model
        self.timeout = timeout
        self._client = client

    def _payload(self, image: str) -> dict:
        return {
            "model": self.model,
            "max_tokens": 500,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Identify the wine on this label."},
                        {"type": "image_url", "image_url": {"url": as_data_url(image)}},
                    ],
                },
            ],
        }

    async def recognize(self, image: str) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.endpoint, json=self._payload(image), headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.endpoint, json=self._payload(image), headers=headers
                    )
        except httpx.HTTPError as exc:
            raise RecognitionError(f"recognition request failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise RecognitionAuthError(f"HTTP {response.status_code}")
        if response.status_code == 429:
            raise RecognitionRateLimitError("HTTP 429")
        if response.status_code != 200:
            raise RecognitionError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise MalformedRecognitionError(f"unexpected response shape: {exc}") from exc
        return extract_json_payload(content)


def make_recognizer(
    config: Mapping,
    env: Mapping[str, str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> LabelRecognizer:
    """Build the recognizer selected by the ``recognition`` config section."""
    env = os.environ if env is None else env
    section = config.get("recognition", {})
    if section.get("provider") != "openai":
        return StubRecognizer()

    api_key = env.get(section.get("api_key_env") or "OPENAI_API_KEY")
    if not api_key:
        logger.warning(
            "Recognition provider 'openai' selected but %s is not set; using demo records",
            section.get("api_key_env"),
        )
        return StubRecognizer()
    return OpenAIVisionRecognizer(
        api_key,
        endpoint=section.get("endpoint") or "https://api.openai.com/v1/chat/completions",
        model=section.get("model") or "gpt-4o",
        timeout=float(section.get("timeout_seconds") or 30.0),
        client=client,
    )


async def recognize_label(
    recognizer: LabelRecognizer,
    image: str,
    fallback: LabelRecognizer | None = None,
) -> RecognitionOutcome:
    """Recognize *image*, never failing.

    Any :class:`RecognitionError` is logged and answered with a record from
    *fallback* (a :class:`StubRecognizer` by default) and a notice saying
    what went wrong.
    """
    fallback = fallback or StubRecognizer()
    if isinstance(recognizer, StubRecognizer):
        fields = normalize_recognition(await recognizer.recognize(image))
        return RecognitionOutcome(fields, NOTICE_DEMO, True)

    try:
        fields = normalize_recognition(await recognizer.recognize(image))
    except RecognitionAuthError as exc:
        logger.warning("Label recognition unauthorized: %s", exc)
        notice = NOTICE_UNAUTHORIZED
    except RecognitionRateLimitError as exc:
        logger.warning("Label recognition rate limited: %s", exc)
        notice = NOTICE_RATE_LIMITED
    except RecognitionError as exc:
        logger.warning("Label recognition failed: %s", exc)
        notice = NOTICE_FAILED
    else:
        return RecognitionOutcome(fields, NOTICE_RECOGNIZED, False)

    demo = normalize_recognition(await fallback.recognize(image))
    return RecognitionOutcome(demo, notice, True)
