"""Bounded-concurrency link verification.

Links are pulled from a queue by a fixed number of worker coroutines, so no
more than ``concurrency`` external checks are ever in flight. Each check has a
hard timeout and every per-link failure resolves to UNKNOWN locally. Results
are keyed by normalized URL, so completion order does not matter.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping, Optional

from linkguard import metrics
from linkguard.config import settings
from linkguard.errors import (
    VerificationError,
    VerificationNetworkError,
    VerificationTimeoutError,
    VerificationUnavailableError,
)
from linkguard.links.types import HealthCheckResult, LinkStatus, Network, ParsedLink
from linkguard.revenue.impact import SEVERITY_FACTORS
from linkguard.verify.cache import VerificationCache
from linkguard.verify.fetchers import LinkFetcher, build_fetcher
from linkguard.verify.page_analyzer import PageVerdict, analyze_page, rejudge_tag

logger = logging.getLogger(__name__)


@dataclass
class _BatchState:
    """Per-batch breaker and in-flight bookkeeping."""

    threshold: int
    consecutive_failures: int = 0
    successful_fetches: int = 0
    tripped: bool = False
    # cache_key -> future resolved by the first check of that product
    inflight: dict = field(default_factory=dict)

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.successful_fetches += 1

    def record_transport_failure(self) -> None:
        self.consecutive_failures += 1
        if not self.tripped and self.consecutive_failures >= self.threshold:
            self.tripped = True
            logger.error(
                f"Verification transport failed {self.consecutive_failures} times in a row; "
                f"skipping remaining links in this batch"
            )


class HealthChecker:
    """Verify links against their live destinations with a shared cache."""

    def __init__(
        self,
        fetcher: Optional[LinkFetcher] = None,
        cache: Optional[VerificationCache] = None,
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        max_consecutive_failures: Optional[int] = None,
        expected_tag: Optional[str] = None,
        severity: Optional[Mapping[LinkStatus, float]] = None,
    ):
        """
        Initialize the health checker.

        Args:
            fetcher: Page fetcher (defaults to ScrapingBee or direct fetch)
            cache: Verification cache (defaults to in-memory)
            concurrency: Max external checks in flight
            timeout: Hard timeout per check in seconds
            max_consecutive_failures: Transport failures in a row before the breaker trips
            expected_tag: Affiliate tag expected on Amazon links
            severity: Status -> severity factor attached to results
        """
        self.fetcher = fetcher or build_fetcher()
        self.cache = cache or VerificationCache()
        self.concurrency = max(1, concurrency or settings.link_check_concurrency)
        self.timeout = timeout or settings.link_check_timeout_seconds
        self.max_consecutive_failures = (
            max_consecutive_failures or settings.max_consecutive_transport_failures
        )
        self.expected_tag = expected_tag
        self.severity = severity or SEVERITY_FACTORS

    def _result(self, link: ParsedLink, status: LinkStatus, reason: str, **kwargs) -> HealthCheckResult:
        return HealthCheckResult(
            url=link.url,
            status=status,
            reason=reason,
            severity=self.severity.get(status, 0.0),
            identifier=link.identifier,
            **kwargs,
        )

    async def _verify(self, link: ParsedLink) -> HealthCheckResult:
        """Fetch and classify one link. Raises VerificationError subclasses."""
        try:
            page = await asyncio.wait_for(self.fetcher.fetch(link.url), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise VerificationTimeoutError(f"Verification of {link.url} exceeded {self.timeout}s") from e

        verdict = analyze_page(link, page, self.expected_tag)
        return self._result(
            link,
            verdict.status,
            verdict.reason,
            http_status=page.http_status,
            final_url=page.final_url,
            product_title=verdict.product_title,
        )

    def _for_link(self, shared: HealthCheckResult, link: ParsedLink) -> HealthCheckResult:
        """Rebind a result verified through another link to the same product."""
        status, reason = shared.status, shared.reason
        if link.network is Network.AMAZON:
            verdict = rejudge_tag(
                link, PageVerdict(status, reason, shared.product_title), self.expected_tag
            )
            status, reason = verdict.status, verdict.reason
        return replace(
            shared,
            url=link.url,
            status=status,
            reason=reason,
            identifier=link.identifier,
            severity=self.severity.get(status, 0.0),
            from_cache=True,
        )

    async def _check(self, link: ParsedLink, state: _BatchState) -> HealthCheckResult:
        cache_key = link.cache_key
        if not cache_key:
            return await self._check_guarded(link, state)

        pending = state.inflight.get(cache_key)
        if pending is not None:
            shared = await pending
            result = self._for_link(shared, link)
            metrics.record_link_check(link.network.value, result.status.value, from_cache=True)
            return result

        pending = asyncio.get_running_loop().create_future()
        state.inflight[cache_key] = pending
        try:
            result = await self._check_guarded(link, state)
        except BaseException:
            pending.cancel()
            raise
        pending.set_result(result)
        return result

    async def _check_guarded(self, link: ParsedLink, state: _BatchState) -> HealthCheckResult:
        try:
            return await self._check_one(link, state)
        except Exception as e:
            logger.exception(f"Check of {link.url} failed: {e}")
            return self._result(link, LinkStatus.UNKNOWN, f"Verification error: {type(e).__name__}")

    async def _check_one(self, link: ParsedLink, state: _BatchState) -> HealthCheckResult:
        cache_key = link.cache_key
        network = link.network.value

        if cache_key:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                result = self._for_link(cached, link)
                metrics.record_link_check(network, result.status.value, from_cache=True)
                return result

        if state.tripped:
            return self._result(link, LinkStatus.UNKNOWN, "Skipped - verification service unavailable")

        start = time.monotonic()
        cacheable = True
        try:
            result = await self._verify(link)
            state.record_success()
        except VerificationTimeoutError as e:
            logger.warning(str(e))
            metrics.record_check_error(network, "timeout")
            state.record_transport_failure()
            result = self._result(link, LinkStatus.UNKNOWN, "Verification timed out")
            cacheable = False
        except VerificationNetworkError as e:
            logger.warning(f"Network error verifying {link.url}: {e}")
            metrics.record_check_error(network, "network")
            state.record_transport_failure()
            result = self._result(link, LinkStatus.UNKNOWN, f"Network error: {e}")
            cacheable = False
        except VerificationError as e:
            logger.warning(f"Could not verify {link.url}: {e}")
            metrics.record_check_error(network, "verification")
            result = self._result(link, LinkStatus.UNKNOWN, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error verifying {link.url}: {e}")
            metrics.record_check_error(network, type(e).__name__)
            result = self._result(link, LinkStatus.UNKNOWN, f"Verification error: {type(e).__name__}")
            cacheable = False
        finally:
            metrics.link_check_duration_seconds.labels(network=network).observe(time.monotonic() - start)

        metrics.record_link_check(network, result.status.value, from_cache=False)

        if cache_key and cacheable:
            await self.cache.put(cache_key, result)

        return result

    async def check_link(self, link: ParsedLink) -> HealthCheckResult:
        """Verify a single link. Never raises for per-link failures."""
        state = _BatchState(threshold=self.max_consecutive_failures)
        return await self._check(link, state)

    async def check_links(
        self,
        links: Iterable[ParsedLink],
        deadline: Optional[float] = None,
    ) -> dict[str, HealthCheckResult]:
        """
        Verify a batch of links under the worker pool.

        Args:
            links: Links to verify (deduplicated by normalized URL)
            deadline: Overall batch deadline in seconds

        Returns:
            Mapping of normalized URL to result; every submitted link is present

        Raises:
            VerificationUnavailableError: If the breaker tripped before any fetch succeeded
        """
        unique: dict[str, ParsedLink] = {}
        for link in links:
            unique.setdefault(link.url, link)
        if not unique:
            return {}

        deadline = deadline if deadline is not None else settings.batch_deadline_seconds
        state = _BatchState(threshold=self.max_consecutive_failures)
        results: dict[str, HealthCheckResult] = {}

        queue: asyncio.Queue = asyncio.Queue()
        for link in unique.values():
            queue.put_nowait(link)

        async def worker(name: str) -> None:
            while True:
                try:
                    link = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    results[link.url] = await self._check(link, state)
                finally:
                    queue.task_done()

        pool_size = min(self.concurrency, len(unique))
        workers = [asyncio.create_task(worker(f"checker-{i}")) for i in range(pool_size)]
        logger.info(f"Verifying {len(unique)} links with {pool_size} workers")

        _, pending = await asyncio.wait(workers, timeout=deadline)
        if pending:
            logger.warning(
                f"Batch deadline of {deadline}s exceeded; "
                f"{len(unique) - len(results)} links reported as UNKNOWN"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for url, link in unique.items():
            if url not in results:
                results[url] = self._result(link, LinkStatus.UNKNOWN, "Batch deadline exceeded")
                metrics.record_link_check(link.network.value, LinkStatus.UNKNOWN.value, from_cache=False)

        if state.tripped and state.successful_fetches == 0:
            raise VerificationUnavailableError(
                "Verification service unreachable for this batch", results=results
            )

        return results

    async def close(self) -> None:
        await self.cache.drain()
        await self.fetcher.close()
