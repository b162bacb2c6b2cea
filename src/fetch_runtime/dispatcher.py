"""Dispatcher - per-queue-key FIFO scheduling, retry, dedupe and offline replay.

Each queue key owns a FIFO of entries and moves between idle and running.
Every added request gets a PendingRequest that resolves exactly once with
the final envelope: success, error after retries, or abort.

Flow:
    add(request) -> request_id
    _flush_queue  -> starts entries (queued ones only when the queue is idle)
    _run          -> attempts via the adapter, retries on error
    _finish       -> cache write, events, resolves the pending request
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

from . import events
from .bus import EventDefinition
from .envelope import ResponseDetails, ResponseEnvelope
from .errors import AbortError, TransportError

if TYPE_CHECKING:
    from .client.client import Client
    from .command import Command

logger = logging.getLogger(__name__)

QueueState = Literal["idle", "running"]


@dataclass
class PendingRequest:
    """Request-level completion, resolved exactly once."""

    request_id: str
    future: asyncio.Future[ResponseEnvelope]
    settled: bool = False


@dataclass(eq=False)
class QueueEntry:
    """A materialized request waiting in, or running from, a queue."""

    request: Command
    request_id: str
    timestamp: float = field(default_factory=time.monotonic)
    retries: int = 0
    task: asyncio.Task[None] | None = None
    started: bool = False
    in_flight: bool = False
    aborted: bool = False
    finished: bool = False


@dataclass
class DispatcherQueue:
    """FIFO of entries for one queue key."""

    queue_key: str
    entries: list[QueueEntry] = field(default_factory=list)
    stopped: bool = False

    @property
    def state(self) -> QueueState:
        return "running" if any(entry.task is not None for entry in self.entries) else "idle"


@runtime_checkable
class DispatcherStorage(Protocol):
    """Persistence for requests parked while offline, in insertion order."""

    def add(self, entry: QueueEntry) -> None: ...

    def remove(self, request_id: str) -> QueueEntry | None: ...

    def entries(self) -> list[QueueEntry]: ...


class MemoryDispatcherStorage:
    """Default in-memory offline storage."""

    def __init__(self) -> None:
        self._entries: dict[str, QueueEntry] = {}

    def add(self, entry: QueueEntry) -> None:
        self._entries[entry.request_id] = entry

    def remove(self, request_id: str) -> QueueEntry | None:
        return self._entries.pop(request_id, None)

    def entries(self) -> list[QueueEntry]:
        return list(self._entries.values())


def _abort_envelope() -> ResponseEnvelope:
    return ResponseEnvelope.failure(AbortError(), status=0)


class Dispatcher:
    """Schedules requests of one dispatcher kind (fetch or submit)."""

    def __init__(
        self,
        client: Client,
        storage: DispatcherStorage | None = None,
        name: str = "fetch",
    ) -> None:
        self.client = client
        self.name = name
        self.storage: DispatcherStorage = storage if storage is not None else MemoryDispatcherStorage()
        self._queues: dict[str, DispatcherQueue] = {}
        self._pending: dict[str, PendingRequest] = {}
        client.bus.subscribe(events.AppOnline, self._on_online)

    # =========================================================================
    # Adding requests
    # =========================================================================

    async def add(self, request: Command) -> str:
        """Schedule a materialized request.

        Returns:
            Request id. A deduplicated request returns the in-flight id.
        """
        if request.deduplicate:
            duplicate = self._find_duplicate(request)
            if duplicate is not None:
                logger.debug(f"Deduplicated {request.cache_key} onto {duplicate.request_id}")
                return duplicate.request_id

        request_id = f"req_{uuid.uuid4().hex[:12]}"
        loop = asyncio.get_running_loop()
        self._pending[request_id] = PendingRequest(request_id, loop.create_future())
        entry = QueueEntry(request=request, request_id=request_id)

        if request.offline and not self.client.app_manager.is_online:
            self.storage.add(entry)
            logger.debug(f"Stored {request_id} until connectivity returns")
            await self._publish(events.RequestOffline, entry)
            return request_id

        queue = self._queues.setdefault(request.queue_key, DispatcherQueue(request.queue_key))
        if request.cancelable:
            for other in list(queue.entries):
                await self._abort_entry(other)
            queue = self._queues.setdefault(request.queue_key, DispatcherQueue(request.queue_key))

        queue.entries.append(entry)
        # No await after this point: callers subscribe before the entry runs
        self._flush_queue(request.queue_key)
        return request_id

    def _find_duplicate(self, request: Command) -> QueueEntry | None:
        now = time.monotonic()
        for queue in self._queues.values():
            for entry in queue.entries:
                if (
                    entry.request.cache_key == request.cache_key
                    and not entry.aborted
                    and now - entry.timestamp <= request.deduplicate_time
                ):
                    return entry
        return None

    # =========================================================================
    # Execution
    # =========================================================================

    def _flush_queue(self, queue_key: str) -> None:
        queue = self._queues.get(queue_key)
        if queue is None or queue.stopped:
            return
        for entry in list(queue.entries):
            if entry.task is not None:
                continue
            # Queued entries run one at a time, strictly in order
            if entry.request.queued and queue.state == "running":
                continue
            entry.task = asyncio.create_task(self._run(entry))

    async def _run(self, entry: QueueEntry) -> None:
        entry.started = True
        request = entry.request
        adapter = self.client.get_adapter(request)

        try:
            while True:
                entry.in_flight = True
                try:
                    envelope = await adapter(request, entry.request_id)
                except Exception as e:
                    logger.exception(f"Request {entry.request_id} failed unexpectedly")
                    envelope = ResponseEnvelope.failure(TransportError(f"Request failed: {e}"))
                finally:
                    entry.in_flight = False

                if entry.aborted or isinstance(envelope.error, AbortError):
                    await self._finish(entry, _abort_envelope(), canceled=True)
                    return
                if envelope.is_success:
                    break
                if self._is_offline_failure(request, envelope):
                    await self._park(entry)
                    return
                if entry.retries >= request.retry:
                    break

                entry.retries += 1
                logger.info(
                    f"Retrying {entry.request_id} ({entry.retries}/{request.retry}) "
                    f"in {request.retry_time}s: {envelope.error}"
                )
                await self.client.bus.publish(
                    events.RequestRetry,
                    events.RetryProps(
                        **events.request_identity(entry.request_id, request),
                        attempt=entry.retries,
                        delay=request.retry_time,
                    ),
                    scopes=events.request_scopes(entry.request_id, request),
                )
                await asyncio.sleep(request.retry_time)
        except asyncio.CancelledError:
            await self._finish(entry, _abort_envelope(), canceled=True)
            raise

        await self._finish(entry, envelope)

    def _is_offline_failure(self, request: Command, envelope: ResponseEnvelope) -> bool:
        return (
            envelope.status == 0
            and request.offline
            and not self.client.app_manager.is_online
        )

    async def _park(self, entry: QueueEntry) -> None:
        """Move a failed entry to offline storage; it resolves after replay."""
        self._remove_from_queue(entry)
        entry.task = None
        entry.started = False
        self.storage.add(entry)
        logger.info(f"Request {entry.request_id} failed while offline, stored for replay")
        await self._publish(events.RequestOffline, entry)
        await self._after_removal(entry.request.queue_key)

    async def _finish(
        self, entry: QueueEntry, envelope: ResponseEnvelope, canceled: bool = False
    ) -> None:
        if entry.finished:
            return
        entry.finished = True
        self._remove_from_queue(entry)
        self.storage.remove(entry.request_id)

        request = entry.request
        if envelope.is_success and request.cache and not self.client.is_long_lived(request):
            self.client.cache.set(
                request.cache_key, envelope, request.cache_time, request.garbage_collection
            )

        pending = self._pending.pop(entry.request_id, None)
        if pending is not None and not pending.settled:
            pending.settled = True
            details = ResponseDetails(
                retries=entry.retries,
                is_canceled=canceled,
                is_offline=not self.client.app_manager.is_online,
            )
            if canceled:
                await self._publish(events.RequestAbort, entry)
            await self.client.bus.publish(
                events.Response,
                events.ResponseProps(
                    **events.request_identity(entry.request_id, request),
                    response=envelope,
                    details=details,
                ),
                scopes=events.request_scopes(entry.request_id, request),
            )
            await self._publish(events.RequestRemove, entry)
            if not pending.future.done():
                pending.future.set_result(envelope)
        else:
            await self._publish(events.RequestRemove, entry)

        logger.debug(f"Finished {entry.request_id} with status {envelope.status}")
        await self._after_removal(request.queue_key)

    def _remove_from_queue(self, entry: QueueEntry) -> None:
        queue = self._queues.get(entry.request.queue_key)
        if queue is not None and entry in queue.entries:
            queue.entries.remove(entry)

    async def _after_removal(self, queue_key: str) -> None:
        queue = self._queues.get(queue_key)
        if queue is None:
            return
        if queue.entries:
            self._flush_queue(queue_key)
            return
        if not queue.stopped:
            del self._queues[queue_key]
        await self.client.bus.publish(
            events.QueueDrained, events.QueueProps(queue_key=queue_key), scopes=[queue_key]
        )

    async def _publish(self, event_def: EventDefinition, entry: QueueEntry) -> None:
        await self.client.bus.publish(
            event_def,
            events.RequestEventProps(**events.request_identity(entry.request_id, entry.request)),
            scopes=events.request_scopes(entry.request_id, entry.request),
        )

    # =========================================================================
    # Abort and removal
    # =========================================================================

    async def _abort_entry(self, entry: QueueEntry) -> None:
        if entry.finished:
            return
        entry.aborted = True
        if entry.task is None or not entry.started:
            # Waiting, parked offline, or scheduled but not yet running
            if entry.task is not None:
                entry.task.cancel()
            await self._finish(entry, _abort_envelope(), canceled=True)
            return
        if entry.in_flight and self.client.abort_manager.abort_by_request_id(entry.request_id):
            return
        # Sleeping between retries, or still building the attempt
        entry.task.cancel()

    def _all_entries(self) -> list[QueueEntry]:
        entries = [entry for queue in self._queues.values() for entry in queue.entries]
        entries.extend(self.storage.entries())
        return entries

    async def abort_by_key(self, abort_key: str) -> int:
        """Abort every entry with the abort key, in every queue and in storage.

        Returns:
            Number of entries aborted
        """
        matched = [e for e in self._all_entries() if e.request.abort_key == abort_key]
        for entry in matched:
            await self._abort_entry(entry)
        return len(matched)

    async def abort_by_request_id(self, request_id: str) -> bool:
        for entry in self._all_entries():
            if entry.request_id == request_id:
                await self._abort_entry(entry)
                return True
        return False

    async def delete(self, queue_key: str, request_id: str) -> bool:
        """Remove one request from a queue (or storage), resolving it as aborted."""
        for entry in self._all_entries():
            if entry.request.queue_key == queue_key and entry.request_id == request_id:
                await self._abort_entry(entry)
                return True
        return False

    async def clear(self) -> None:
        """Abort everything, including stored offline requests."""
        for entry in self._all_entries():
            await self._abort_entry(entry)

    # =========================================================================
    # Queue control and inspection
    # =========================================================================

    def stop(self, queue_key: str) -> None:
        """Pause draining; running entries finish, waiting ones stay."""
        queue = self._queues.setdefault(queue_key, DispatcherQueue(queue_key))
        queue.stopped = True

    def start(self, queue_key: str) -> None:
        """Resume draining a stopped queue."""
        queue = self._queues.get(queue_key)
        if queue is None:
            return
        queue.stopped = False
        if queue.entries:
            self._flush_queue(queue_key)
        else:
            del self._queues[queue_key]

    def get_queue(self, queue_key: str) -> list[QueueEntry]:
        queue = self._queues.get(queue_key)
        return list(queue.entries) if queue is not None else []

    def get_queue_state(self, queue_key: str) -> QueueState:
        queue = self._queues.get(queue_key)
        return queue.state if queue is not None else "idle"

    def is_running(self, queue_key: str) -> bool:
        return self.get_queue_state(queue_key) == "running"

    def is_stopped(self, queue_key: str) -> bool:
        queue = self._queues.get(queue_key)
        return queue is not None and queue.stopped

    def get_pending(self, request_id: str) -> PendingRequest | None:
        return self._pending.get(request_id)

    # =========================================================================
    # Offline replay
    # =========================================================================

    async def _on_online(self, payload: dict) -> None:
        await self.flush_offline()

    async def flush_offline(self) -> int:
        """Re-add stored requests in their original order, keeping ids and keys.

        Returns:
            Number of requests replayed
        """
        stored = self.storage.entries()
        touched: list[str] = []
        for entry in stored:
            self.storage.remove(entry.request_id)
            entry.timestamp = time.monotonic()
            queue_key = entry.request.queue_key
            self._queues.setdefault(queue_key, DispatcherQueue(queue_key)).entries.append(entry)
            if queue_key not in touched:
                touched.append(queue_key)
        for queue_key in touched:
            self._flush_queue(queue_key)
        if stored:
            logger.info(f"Replaying {len(stored)} offline request(s) on {self.name} dispatcher")
        return len(stored)
