"""Phase 2: Dispatch one batch across a bounded pool of workers.

Each batch owns its slot queue, progress counter and cancel token. Workers
claim slots until the queue drains or the token fires, run the provider
through the retry policy, and stream results to the caller's callbacks.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING, Literal

from aster.cancel import CancelToken
from aster.config import MAX_CONCURRENT_REQUESTS
from aster.errors import APIError, BatchCancelled, ConfigurationError, SafetyBlockedError
from aster.models import GeneratedImage
from aster.providers.models import ProviderRequest, ProviderResponse
from aster.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable

    from aster.providers.base import Provider
    from aster.request import BatchRequest

logger = logging.getLogger(__name__)

BatchState = Literal["idle", "running", "draining", "completed", "cancelled"]
SlotOutcome = Literal["success", "text", "error"]


def _ignore(*_args: object) -> None:
    return None


@dataclass
class BatchEvents:
    """Callbacks invoked directly by workers as slots resolve.

    Arrival order across slots is unspecified; ``on_progress`` counts are
    strictly increasing and end at the batch size when not cancelled.
    Exceptions raised by a callback are logged and do not affect the batch.
    """

    on_image: Callable[[GeneratedImage], None] = _ignore
    on_text: Callable[[str], None] = _ignore
    on_progress: Callable[[int, int], None] = _ignore


@dataclass(frozen=True)
class BatchSummary:
    """What a finished (or cancelled) batch did."""

    total: int
    completed: int
    succeeded: int
    failed: int
    text_only: int
    state: BatchState
    duration_s: float


class SlotQueue:
    """Task slots ``0..size-1``; each index is handed out at most once."""

    def __init__(self, size: int) -> None:
        self._slots: deque[int] = deque(range(size))

    def claim(self) -> int | None:
        """Return the next unclaimed slot, or None once drained."""
        # No await between the check and the pop: atomic on the event loop.
        if not self._slots:
            return None
        return self._slots.popleft()

    def __len__(self) -> int:
        return len(self._slots)


@dataclass
class _Tally:
    completed: int = 0
    succeeded: int = 0
    failed: int = 0
    text_only: int = 0

    def resolve(self, outcome: SlotOutcome) -> int:
        self.completed += 1
        if outcome == "success":
            self.succeeded += 1
        elif outcome == "text":
            self.text_only += 1
        else:
            self.failed += 1
        return self.completed


@dataclass
class Batch:
    """One dispatch of a normalized request against a provider."""

    request: BatchRequest
    provider: Provider
    events: BatchEvents = field(default_factory=BatchEvents)
    cancel: CancelToken = field(default_factory=CancelToken)
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    concurrency: int = MAX_CONCURRENT_REQUESTS
    state: BatchState = "idle"

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigurationError(
                f"concurrency must be ≥ 1, got {self.concurrency}",
                hint="This controls how many generation calls run in parallel.",
            )
        self.total = self.request.batch_size
        self.queue = SlotQueue(self.total)
        self._tally = _Tally()
        settings = self.request.settings
        self._provider_request = ProviderRequest(
            model=settings.provider_config.model,
            parts=self.request.parts,
            aspect_ratio=settings.aspect_ratio,
            resolution=settings.resolution,
        )

    @property
    def worker_count(self) -> int:
        return min(self.concurrency, self.total)

    async def run(self) -> BatchSummary:
        """Run all workers and return once every one of them has returned."""
        if self.state != "idle":
            raise RuntimeError(f"Batch already {self.state}")
        self.state = "running"
        start = time.perf_counter()
        logger.debug(
            "Dispatching %d slot(s) workers=%d model=%s",
            self.total,
            self.worker_count,
            self._provider_request.model,
        )

        tasks = [
            asyncio.create_task(self._worker(worker_id))
            for worker_id in range(1, self.worker_count + 1)
        ]
        # Collect every outcome before raising so no worker is left running.
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for item in results:
            if isinstance(item, BaseException):
                self.state = "cancelled" if self.cancel.cancelled else "completed"
                raise item

        tally = self._tally
        if self.cancel.cancelled and tally.completed < self.total:
            self.state = "cancelled"
        else:
            self.state = "completed"

        summary = BatchSummary(
            total=self.total,
            completed=tally.completed,
            succeeded=tally.succeeded,
            failed=tally.failed,
            text_only=tally.text_only,
            state=self.state,
            duration_s=time.perf_counter() - start,
        )
        logger.debug(
            "Batch %s: %d/%d resolved (%d ok, %d failed, %d text-only) in %.2fs",
            summary.state,
            summary.completed,
            summary.total,
            summary.succeeded,
            summary.failed,
            summary.text_only,
            summary.duration_s,
        )
        return summary

    async def _worker(self, worker_id: int) -> None:
        while not self.cancel.cancelled:
            slot = self.queue.claim()
            if slot is None:
                if self.state == "running":
                    self.state = "draining"
                return

            try:
                response = await self._run_slot(worker_id, slot)
            except BatchCancelled:
                return

            # A slot resolved after cancellation is dropped silently.
            if self.cancel.cancelled:
                return

            outcome = self._emit(response)
            completed = self._tally.resolve(outcome)
            _notify(self.events.on_progress, completed, self.total)

    async def _run_slot(self, worker_id: int, slot: int) -> ProviderResponse | None:
        """Return the provider response, or None once retries are exhausted."""
        policy = self.policy
        attempt = 0
        for attempt in range(1, policy.max_attempts + 1):
            self.cancel.raise_if_cancelled()
            try:
                return await self.cancel.guard(self.provider.generate(self._provider_request))
            except BatchCancelled:
                raise
            except Exception as exc:
                if self.cancel.cancelled:
                    raise BatchCancelled from exc
                if isinstance(exc, APIError) and exc.slot is None:
                    exc.slot = slot
                _log_attempt_failure(worker_id, slot, attempt, policy.max_attempts, exc)
                decision = policy.should_retry(attempt, exc)
                if not decision.retry:
                    break
                await self.cancel.sleep(decision.wait_s)

        logger.warning(
            "Worker %d - image %d failed after %d attempt(s)",
            worker_id,
            slot + 1,
            attempt,
        )
        return None

    def _emit(self, response: ProviderResponse | None) -> SlotOutcome:
        if response is None:
            _notify(self.events.on_image, GeneratedImage.error())
            return "error"
        for image in response.images:
            _notify(self.events.on_image, GeneratedImage.success(image.data, image.mime_type))
        for text in response.texts:
            _notify(self.events.on_text, text)
        return "success" if response.images else "text"


async def run_batch(
    request: BatchRequest,
    provider: Provider,
    events: BatchEvents | None = None,
    *,
    cancel: CancelToken | None = None,
    policy: RetryPolicy | None = None,
    concurrency: int = MAX_CONCURRENT_REQUESTS,
) -> BatchSummary:
    """Generate ``request.batch_size`` results, streaming them to *events*.

    Per-slot failures never abort the batch: a slot that exhausts its retries
    yields one error-status image. Cancellation stops further events and
    returns once in-flight calls have been abandoned.
    """
    batch = Batch(
        request=request,
        provider=provider,
        events=events or BatchEvents(),
        cancel=cancel or CancelToken(),
        policy=policy or RetryPolicy(),
        concurrency=concurrency,
    )
    return await batch.run()


def _notify(callback: Callable[..., None], *args: object) -> None:
    """Invoke a caller callback, logging its failure instead of raising."""
    try:
        callback(*args)
    except Exception as e:
        logger.warning(
            "Batch callback %s failed: %s",
            getattr(callback, "__name__", repr(callback)),
            e,
            exc_info=True,
        )


def _log_attempt_failure(
    worker_id: int, slot: int, attempt: int, max_attempts: int, exc: BaseException
) -> None:
    if isinstance(exc, SafetyBlockedError):
        logger.warning(
            "Worker %d - image %d attempt %d/%d blocked by safety filters: %s",
            worker_id,
            slot + 1,
            attempt,
            max_attempts,
            exc,
        )
        return
    kind = exc.kind if isinstance(exc, APIError) else type(exc).__name__
    logger.warning(
        "Worker %d - image %d attempt %d/%d failed (%s): %s",
        worker_id,
        slot + 1,
        attempt,
        max_attempts,
        kind,
        exc,
    )
