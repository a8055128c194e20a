"""
WAF Checker - Scan engine
Runs a test matrix through the probe executor in one of two modes:

- paginated: rebuild the whole matrix on every call and execute one slice
- streaming: build once, run fixed-size parallel batches one after another,
  emitting an event per settled probe

Events are handed to an async `emit(event_type, data)` callback; the API
layer turns them into Server-Sent Events.
"""

import asyncio
import random
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from wafcheck.config import ProbeConfig
from wafcheck.detector import DetectionResult, WAFDetector
from wafcheck.errors import InternalError
from wafcheck.executor import ProbeContext, TestOutcome, execute_probe
from wafcheck.logger import log_error, log_info
from wafcheck.matrix import (
    ScanConfig,
    TestMatrix,
    build_payload_source,
    build_test_matrix,
    matrix_seed,
    resolve_vendor,
)
from wafcheck.payloads import PayloadStore
from wafcheck.variations import DefaultVariationGateway, VariationGateway


EmitFn = Callable[[str, Dict[str, Any]], Awaitable[None]]

_DONE = object()


class ScanEngine:
    """Matrix construction plus bounded-concurrency execution."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: Optional[PayloadStore] = None,
        gateway: Optional[VariationGateway] = None,
        probe_cfg: Optional[ProbeConfig] = None,
    ):
        self.client = client
        self.store = store or PayloadStore()
        self.gateway = gateway or DefaultVariationGateway()
        self.probe_cfg = probe_cfg or ProbeConfig()

    # ── Building ─────────────────────────────────────────────────

    async def detect(self, url: str) -> DetectionResult:
        return await WAFDetector(self.client, self.probe_cfg).detect(url)

    def build_matrix(
        self,
        url: str,
        config: ScanConfig,
        detection: Optional[DetectionResult] = None,
        rng: Optional[random.Random] = None,
    ) -> Tuple[TestMatrix, ProbeContext]:
        vendor = resolve_vendor(config, detection)
        try:
            matrix = build_test_matrix(
                url,
                config,
                build_payload_source(config, self.store),
                self.gateway,
                vendor=vendor,
                rng=rng,
            )
        except Exception as e:
            raise InternalError(f"Test matrix construction failed: {e}") from e
        context = ProbeContext(
            waf_detected=bool(detection and detection.detected),
            waf_type=vendor or "Unknown",
            follow_redirect=config.follow_redirect,
            payload_template=config.payload_template,
            timeout=self.probe_cfg.timeout,
        )
        return matrix, context

    async def _run_bounded(self, matrix: TestMatrix, context: ProbeContext, start: int, end: int) -> List[TestOutcome]:
        sem = asyncio.Semaphore(max(1, self.probe_cfg.page_concurrency))

        async def _one(spec):
            async with sem:
                return await execute_probe(self.client, spec, context)

        return list(await asyncio.gather(*(_one(s) for s in matrix.requests[start:end])))

    # ── Paginated mode ───────────────────────────────────────────

    async def scan_page(
        self,
        url: str,
        page: int,
        config: ScanConfig,
        limit: Optional[int] = None,
        detection: Optional[DetectionResult] = None,
    ) -> List[TestOutcome]:
        """Outcomes for matrix indices [page*limit, page*limit+limit).

        Case randomisation is seeded from (url, config) so every page sees
        the same matrix.
        """
        limit = limit or self.probe_cfg.page_limit
        if detection is None and config.auto_detect_waf:
            detection = await self.detect(url)
        rng = random.Random(matrix_seed(url, config)) if config.case_sensitive_test else None
        matrix, context = self.build_matrix(url, config, detection, rng=rng)
        start = max(0, page) * limit
        return await self._run_bounded(matrix, context, start, start + limit)

    async def scan_all(
        self,
        url: str,
        config: ScanConfig,
        max_pages: int,
        max_results: int,
        detection: Optional[DetectionResult] = None,
        should_continue: Callable[[], bool] = lambda: True,
    ) -> List[TestOutcome]:
        """Page through a target until a page is empty or a limit is hit."""
        if detection is None and config.auto_detect_waf:
            detection = await self.detect(url)
        results: List[TestOutcome] = []
        for page in range(max_pages):
            if not should_continue():
                break
            outcomes = await self.scan_page(url, page, config, detection=detection)
            if not outcomes:
                break
            results.extend(outcomes)
            if len(results) >= max_results:
                break
        return results

    # ── Streaming mode ───────────────────────────────────────────

    async def stream(self, url: str, config: ScanConfig, emit: EmitFn):
        """Emit waf-detected?, total, result*, then complete (or error)."""
        try:
            detection = None
            if config.auto_detect_waf:
                detection = await self.detect(url)
                await emit("waf-detected", {"waf": detection.to_dict()})
            matrix, context = self.build_matrix(url, config, detection)
        except Exception as e:
            log_error("Engine", f"Matrix construction failed for {url}: {e}")
            await emit("error", {"message": str(e) or type(e).__name__})
            return

        total = len(matrix.requests)
        await emit("total", {"count": total})
        log_info("Engine", f"Streaming {total} probes against {matrix.url}")

        batch_size = max(1, self.probe_cfg.stream_batch_size)
        completed = 0
        for offset in range(0, total, batch_size):
            batch = matrix.requests[offset:offset + batch_size]
            tasks = [asyncio.ensure_future(execute_probe(self.client, spec, context)) for spec in batch]
            try:
                for next_done in asyncio.as_completed(tasks):
                    outcome = await next_done
                    completed += 1
                    await emit("result", {"result": outcome.to_dict(), "completed": completed, "total": total})
            except Exception as e:
                for task in tasks:
                    task.cancel()
                log_error("Engine", f"Streaming aborted: {e}")
                await emit("error", {"message": str(e) or type(e).__name__})
                return
            except asyncio.CancelledError:
                for task in tasks:
                    task.cancel()
                raise

        await emit("complete", {})

    async def iter_events(self, url: str, config: ScanConfig) -> AsyncIterator[Dict[str, Any]]:
        """Async iterator over stream() events as {"type": ..., **data} dicts."""
        queue: asyncio.Queue = asyncio.Queue()

        async def _emit(event_type: str, data: Dict[str, Any]):
            await queue.put({"type": event_type, **data})

        async def _produce():
            try:
                await self.stream(url, config, _emit)
            finally:
                await queue.put(_DONE)

        producer = asyncio.ensure_future(_produce())
        try:
            while True:
                event = await queue.get()
                if event is _DONE:
                    break
                yield event
        finally:
            if not producer.done():
                producer.cancel()
