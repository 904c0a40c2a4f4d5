"""Page fetchers used by the health checker."""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from linkguard.config import settings
from linkguard.errors import (
    VerificationError,
    VerificationNetworkError,
    VerificationTimeoutError,
)
from linkguard.links.regions import country_code_for_url

logger = logging.getLogger(__name__)


@dataclass
class FetchedPage:
    """Result of resolving a link to its final destination."""

    url: str
    http_status: int
    final_url: str
    html: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def redirected(self) -> bool:
        return self.final_url.rstrip("/") != self.url.rstrip("/")


def _browser_headers(user_agent: str) -> dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
    }


class LinkFetcher(ABC):
    """Abstract base class for link fetchers."""

    name = "base"

    @abstractmethod
    async def fetch(self, url: str) -> FetchedPage:
        """
        Resolve a URL, following redirects, and return the final page.

        Args:
            url: Link to resolve

        Returns:
            FetchedPage for the final destination (any HTTP status)

        Raises:
            VerificationTimeoutError: If the request timed out
            VerificationNetworkError: On transport failure
            VerificationError: For other request failures
        """

    async def close(self) -> None:
        pass


class _HttpxFetcher(LinkFetcher):
    """Shared client handling for httpx-based fetchers."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or settings.link_check_timeout_seconds
        self._transport = transport
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=settings.max_redirects,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._get_client().get(url, **kwargs)
        except httpx.TimeoutException as e:
            raise VerificationTimeoutError(f"Timed out fetching {url}") from e
        except httpx.TooManyRedirects as e:
            raise VerificationError(f"Redirect loop for {url}") from e
        except httpx.TransportError as e:
            raise VerificationNetworkError(f"{type(e).__name__} fetching {url}: {e}") from e
        except httpx.HTTPError as e:
            raise VerificationError(f"Request failed for {url}: {e}") from e


class DirectFetcher(_HttpxFetcher):
    """Plain HTTP fetch with redirect following and user-agent rotation."""

    name = "direct"

    def __init__(self, *args, user_agents: Optional[list[str]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_agents = user_agents or settings.user_agents

    async def fetch(self, url: str) -> FetchedPage:
        response = await self._get(url, headers=_browser_headers(random.choice(self.user_agents)))
        return FetchedPage(
            url=url,
            http_status=response.status_code,
            final_url=str(response.url),
            html=response.text,
            headers=dict(response.headers),
        )


class ScrapingBeeFetcher(_HttpxFetcher):
    """
    Fetch through ScrapingBee with a premium proxy in the link's marketplace.

    The target's own status code is passed through and the resolved URL is
    read from the spb-resolved-url header.
    """

    name = "scrapingbee"

    def __init__(self, *args, api_key: Optional[str] = None, endpoint: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_key = api_key or settings.scrapingbee_api_key
        self.endpoint = endpoint or settings.scrapingbee_endpoint
        if not self.api_key:
            raise ValueError("ScrapingBee API key is not configured")

    async def fetch(self, url: str) -> FetchedPage:
        params = {
            "api_key": self.api_key,
            "url": url,
            "premium_proxy": "true",
            "country_code": country_code_for_url(url),
            "render_js": "false",
            "transparent_status_code": "true",
        }
        response = await self._get(self.endpoint, params=params)
        final_url = response.headers.get("spb-resolved-url") or url
        return FetchedPage(
            url=url,
            http_status=response.status_code,
            final_url=final_url,
            html=response.text,
            headers=dict(response.headers),
        )


def build_fetcher() -> LinkFetcher:
    """ScrapingBee when an API key is configured, otherwise direct fetch."""
    if settings.scrapingbee_api_key:
        logger.info("Using ScrapingBee fetcher for link verification")
        return ScrapingBeeFetcher()
    return DirectFetcher()
