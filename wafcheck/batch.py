"""
WAF Checker - Batch job scheduler
Scans many targets in the background under a per-job semaphore.

Job records are read by status polls while workers update them. All
mutations happen synchronously between awaits on the event loop, so a
reader never sees completed_urls and progress out of step.
"""

import asyncio
import random
import secrets
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Protocol, Set, Tuple
from urllib.parse import urlsplit

from wafcheck.config import BatchConfig
from wafcheck.errors import ValidationError
from wafcheck.executor import TestOutcome
from wafcheck.logger import log_error, log_info, log_warning
from wafcheck.matrix import ScanConfig


RUNNING = "running"
COMPLETED = "completed"
STOPPED = "stopped"
ERROR = "error"
TERMINAL_STATES = (COMPLETED, STOPPED, ERROR)

DEFAULT_BATCH_CATEGORIES = ["SQL Injection", "XSS"]

ScanFn = Callable[[str, ScanConfig, Callable[[], bool]], Awaitable[List[TestOutcome]]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def percent(part: int, whole: int) -> int:
    """Whole-number percentage, halves rounded up."""
    return int(100 * part / whole + 0.5) if whole else 0


@dataclass
class BatchJob:
    id: str
    total_urls: int
    status: str = RUNNING
    progress: int = 0
    current_url: str = ""
    start_time: str = field(default_factory=_now_iso)
    started_at: float = field(default_factory=time.time)
    results: List[dict] = field(default_factory=list)
    completed_urls: int = 0
    error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status == RUNNING

    def transition(self, status: str, error: Optional[str] = None) -> bool:
        """Move out of running. Terminal states never change again."""
        if self.status != RUNNING or status == RUNNING:
            return False
        self.status = status
        if error is not None:
            self.error = error
        return True

    def record(self, entry: dict, current_url: str):
        """Append a per-URL entry and advance progress in one step."""
        self.results.append(entry)
        self.completed_urls += 1
        self.progress = percent(self.completed_urls, self.total_urls) if self.total_urls else 100
        self.current_url = current_url

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "progress": self.progress,
            "current_url": self.current_url,
            "start_time": self.start_time,
            "results": list(self.results),
            "total_urls": self.total_urls,
            "completed_urls": self.completed_urls,
            "error": self.error,
        }


class JobStore(Protocol):
    def get(self, job_id: str) -> Optional[BatchJob]: ...

    def set(self, job: BatchJob) -> None: ...

    def delete(self, job_id: str) -> None: ...

    def items(self) -> Iterator[Tuple[str, BatchJob]]: ...


class InMemoryJobStore:
    def __init__(self):
        self._jobs: Dict[str, BatchJob] = {}

    def get(self, job_id: str) -> Optional[BatchJob]:
        return self._jobs.get(job_id)

    def set(self, job: BatchJob) -> None:
        self._jobs[job.id] = job

    def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def items(self) -> Iterator[Tuple[str, BatchJob]]:
        # Snapshot so callers may delete while iterating
        return iter(list(self._jobs.items()))

    def __len__(self):
        return len(self._jobs)


def validate_urls(urls: Any, max_urls: int = 100) -> List[str]:
    """All-or-nothing validation of a batch submission."""
    if not urls or not isinstance(urls, (list, tuple)):
        raise ValidationError("No URLs provided")
    if len(urls) > max_urls:
        raise ValidationError(f"Maximum {max_urls} URLs allowed")

    valid: List[str] = []
    invalid: List[str] = []
    for url in urls:
        if not isinstance(url, str) or not url.strip():
            invalid.append(f"{url} (invalid URL format)")
            continue
        try:
            parts = urlsplit(url.strip())
            host = parts.hostname
        except ValueError:
            invalid.append(f"{url} (invalid URL format)")
            continue
        if not parts.scheme or not parts.netloc or not host:
            invalid.append(f"{url} (invalid URL format)")
        elif parts.scheme.lower() not in ("http", "https"):
            invalid.append(f"{url} (unsupported protocol: {parts.scheme}:)")
        else:
            valid.append(url.strip())

    if invalid:
        raise ValidationError(f"Invalid URLs found: {', '.join(invalid)}", invalid=invalid)
    return valid


def summarize(url: str, outcomes: List[TestOutcome]) -> dict:
    bypassed = sum(1 for o in outcomes if o.status == 200)
    total = len(outcomes)
    return {
        "url": url,
        "success": True,
        "results": [o.to_dict() for o in outcomes],
        "timestamp": _now_iso(),
        "total_tests": total,
        "bypassed_tests": bypassed,
        "bypass_rate": percent(bypassed, total),
    }


def failure_entry(url: str, message: str) -> dict:
    return {
        "url": url,
        "success": False,
        "error": message,
        "results": [],
        "timestamp": _now_iso(),
        "total_tests": 0,
        "bypassed_tests": 0,
        "bypass_rate": 0,
    }


class BatchScheduler:
    """Creates, runs, stops and sweeps batch jobs."""

    def __init__(
        self,
        engine=None,
        batch_cfg: Optional[BatchConfig] = None,
        store: Optional[JobStore] = None,
        scan_fn: Optional[ScanFn] = None,
        rng: Optional[random.Random] = None,
    ):
        self.engine = engine
        self.cfg = batch_cfg or BatchConfig()
        self.store: JobStore = store if store is not None else InMemoryJobStore()
        self._scan_fn = scan_fn
        self._rng = rng or random.Random()
        self._tasks: Set[asyncio.Task] = set()
        self._job_tasks: Dict[str, asyncio.Task] = {}

    # ── Public operations ────────────────────────────────────────

    def start(self, urls: Any, config: Optional[ScanConfig] = None, max_concurrent: Optional[int] = None) -> BatchJob:
        self.sweep()
        valid = validate_urls(urls, self.cfg.max_urls)

        config = config or ScanConfig()
        if not config.categories:
            config = replace(config, categories=list(DEFAULT_BATCH_CATEGORIES))

        job_id = f"batch_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
        job = BatchJob(id=job_id, total_urls=len(valid))
        self.store.set(job)

        limit = self._concurrency(max_concurrent)
        task = asyncio.ensure_future(self._run_job(job_id, valid, config, limit))
        self._tasks.add(task)
        self._job_tasks[job_id] = task
        task.add_done_callback(self._tasks.discard)
        log_info("Batch", f"Job {job_id} started with {len(valid)} URLs (concurrency {limit})")
        return job

    def status(self, job_id: str) -> Optional[dict]:
        if self._rng.random() < self.cfg.sweep_probability:
            self.sweep()
        job = self.store.get(job_id)
        return job.to_dict() if job else None

    def stop(self, job_id: str) -> bool:
        """Stop a running job. Returns False only when the job is unknown."""
        job = self.store.get(job_id)
        if job is None:
            return False
        if job.transition(STOPPED, error="Stopped by user"):
            log_info("Batch", f"Job {job_id} stopped by user")
        return True

    def sweep(self, now: Optional[float] = None) -> int:
        """Delete terminal jobs that started more than the retention window ago."""
        cutoff = (now if now is not None else time.time()) - self.cfg.retention_seconds
        removed = 0
        for job_id, job in self.store.items():
            if job.status != RUNNING and job.started_at < cutoff:
                self.store.delete(job_id)
                self._job_tasks.pop(job_id, None)
                removed += 1
        if removed:
            log_info("Batch", f"Swept {removed} old batch job(s)")
        return removed

    async def wait(self, job_id: str):
        task = self._job_tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self):
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ── Internals ────────────────────────────────────────────────

    def _concurrency(self, requested: Optional[int]) -> int:
        try:
            value = int(requested) if requested else self.cfg.default_concurrency
        except (TypeError, ValueError):
            value = self.cfg.default_concurrency
        return max(1, min(value, self.cfg.max_concurrency))

    def _running(self, job_id: str) -> bool:
        job = self.store.get(job_id)
        return job is not None and job.is_running

    async def _scan(self, url: str, config: ScanConfig, should_continue: Callable[[], bool]) -> List[TestOutcome]:
        if self._scan_fn is not None:
            return await self._scan_fn(url, config, should_continue)
        return await self.engine.scan_all(
            url,
            config,
            max_pages=self.cfg.max_pages,
            max_results=self.cfg.max_results,
            should_continue=should_continue,
        )

    async def _process_url(self, job_id: str, url: str, config: ScanConfig, sem: asyncio.Semaphore):
        if not self._running(job_id):
            return
        async with sem:
            job = self.store.get(job_id)
            if job is None or not job.is_running:
                return
            job.current_url = url
            try:
                outcomes = await asyncio.wait_for(
                    self._scan(url, config, lambda: self._running(job_id)),
                    timeout=self.cfg.per_url_timeout,
                )
                entry = summarize(url, outcomes)
            except asyncio.TimeoutError:
                log_warning("Batch", f"{url}: URL test timeout")
                entry = failure_entry(url, "URL test timeout")
            except Exception as e:
                log_error("Batch", f"Error processing {url}: {e}")
                entry = failure_entry(url, str(e) or type(e).__name__)

            job = self.store.get(job_id)
            if job is not None and job.is_running:
                job.record(entry, url)

    async def _run_job(self, job_id: str, urls: List[str], config: ScanConfig, limit: int):
        sem = asyncio.Semaphore(limit)
        try:
            await asyncio.gather(*(self._process_url(job_id, url, config, sem) for url in urls))
        except asyncio.CancelledError:
            job = self.store.get(job_id)
            if job is not None:
                job.transition(STOPPED, error="Cancelled on shutdown")
            raise
        except Exception as e:
            log_error("Batch", f"Job {job_id} failed: {e}")
            job = self.store.get(job_id)
            if job is not None:
                job.transition(ERROR, error=str(e) or type(e).__name__)
            return

        job = self.store.get(job_id)
        if job is not None:
            job.transition(COMPLETED)
            job.current_url = ""
            log_info("Batch", f"Job {job_id} finished with status: {job.status}")
