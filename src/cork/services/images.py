"""Product photo lookup and image encoding.

Images travel inside records as ``data:<mime>;base64,...`` URLs, so every
helper here ends in one.  Nothing in this module raises on a failed
lookup: no photo is always an acceptable answer.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import os
from collections.abc import Mapping
from pathlib import Path

import httpx

from cork.core.errors import CorkError

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPT_TIMEOUT = 8.0


class ImageSearchError(CorkError):
    """The image search service could not be queried."""


def to_data_url(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def encode_image_file(path: Path) -> str:
    """Read an image file into a data URL.

    Raises:
        ValueError: If the file does not look like an image.
    """
    mime, _ = mimetypes.guess_type(path.name)
    if mime is None or not mime.startswith("image/"):
        raise ValueError(f"Not an image file: {path.name}")
    return to_data_url(path.read_bytes(), mime)


class GoogleImageSearch:
    """Google Custom Search JSON API, image mode."""

    def __init__(
        self,
        api_key: str,
        engine_id: str,
        *,
        endpoint: str = "https://www.googleapis.com/customsearch/v1",
        max_candidates: int = 5,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.engine_id = engine_id
        self.endpoint = endpoint
        self.max_candidates = max_candidates
        self.timeout = timeout
        self._client = client

    async def search(self, query: str) -> list[str]:
        """Return candidate image URLs for *query*, best first.

        Raises:
            ImageSearchError: On transport errors or a non-200 reply.
        """
        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": query,
            "searchType": "image",
            "num": self.max_candidates,
        }
        try:
            if self._client is not None:
                response = await self._client.get(
                    self.endpoint, params=params, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.endpoint, params=params)
        except httpx.HTTPError as exc:
            raise ImageSearchError(f"image search failed: {exc}") from exc

        if response.status_code != 200:
            raise ImageSearchError(f"image search returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ImageSearchError(f"image search reply is not JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ImageSearchError("image search reply is not an object")
        items = payload.get("items") or []
        if not isinstance(items, list):
            raise ImageSearchError("image search items are not a list")
        return [
            item["link"]
            for item in items
            if isinstance(item, dict) and isinstance(item.get("link"), str) and item["link"]
        ]


def make_image_search(
    config: Mapping,
    env: Mapping[str, str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> GoogleImageSearch | None:
    """Build the image search from config, or ``None`` when not configured."""
    env = os.environ if env is None else env
    section = config.get("image_search", {})
    api_key = env.get(section.get("api_key_env") or "GOOGLE_API_KEY")
    engine_id = section.get("engine_id")
    if not api_key or not engine_id:
        return None
    return GoogleImageSearch(
        api_key,
        engine_id,
        endpoint=section.get("endpoint") or "https://www.googleapis.com/customsearch/v1",
        max_candidates=int(section.get("max_candidates") or 5),
        client=client,
    )


async def _fetch_image(client: httpx.AsyncClient, url: str, timeout: float) -> str:
    response = await asyncio.wait_for(
        client.get(url, timeout=timeout, follow_redirects=True), timeout
    )
    response.raise_for_status()
    mime = response.headers.get("content-type", "").split(";")[0].strip().lower()
    if not mime.startswith("image/"):
        raise ValueError(f"not an image: {mime or 'no content type'}")
    if not response.content:
        raise ValueError("empty image")
    return to_data_url(response.content, mime)


async def fetch_first_image(
    candidates: list[str],
    timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
    client: httpx.AsyncClient | None = None,
) -> str | None:
    """Download the first candidate that loads within *timeout* seconds.

    Candidates are tried in order and the first success wins.  Returns a
    data URL, or ``None`` when every candidate fails.
    """
    if not candidates:
        return None
    owned = client is None
    client = client or httpx.AsyncClient()
    try:
        for url in candidates:
            try:
                return await _fetch_image(client, url, timeout)
            except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as exc:
                logger.info("Skipping product image %s: %s", url, exc)
    finally:
        if owned:
            await client.aclose()
    return None


async def find_product_image(
    search: GoogleImageSearch | None,
    wine: Mapping,
    *,
    timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
    client: httpx.AsyncClient | None = None,
) -> str | None:
    """Look up a product photo for *wine* by ``"<producer> <name>"``."""
    if search is None or not wine.get("name"):
        return None
    query = " ".join(part for part in (wine.get("producer"), wine.get("name")) if part)
    try:
        candidates = await search.search(query)
    except ImageSearchError as exc:
        logger.warning("Product image search unavailable: %s", exc)
        return None
    logger.debug("Image search %r returned %d candidate(s)", query, len(candidates))
    return await fetch_first_image(candidates, timeout=timeout, client=client)
