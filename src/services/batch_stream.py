"""
Streaming Progress Reporter for batch generation (Server-Sent Events)

One long-lived response per batch. Items run concurrently (bounded by a
semaphore) and report through a queue, so events for different indices
arrive in any order; every payload carries its explicit `index`.

Event sequence:
    batch_started{batchId,total}
    progress{index,phase}              (any number, any order)
    result|image{index,status,...}     (exactly one per index)
    complete{summary}                  or  error{error} (aborts)

Chaining (storyboard): an item may declare `depends_on` (an earlier index).
It receives that item's published output image as its input; when the
dependency fails it receives None and falls back to its own input, so one
failed frame never breaks the rest of the chain.
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from config.config import BATCH_CONCURRENCY, POLL_INTERVAL_SECONDS
from src.core.enums import GenerationStatus, ToolName
from src.core.exceptions import NoCapacityError, QuotaExceededError, ToolUnavailableError
from src.database.models import User
from src.services import generation_service
from src.services.storage_service import MediaStorage
from src.services.veo_service import VeoClient
from src.utils.error_categories import categorize_error

# How often the disconnect watcher checks the client
DISCONNECT_CHECK_SECONDS = 1.0

# Errors whose message is already user-facing
USER_FACING_ERRORS = (QuotaExceededError, ToolUnavailableError, ValueError)


def sse_event(event: str, data: Dict[str, Any]) -> str:
    """Format one SSE frame (`event:` + `data:` lines, blank-line terminated)"""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


@dataclass
class BatchItem:
    """One unit of work; `index` is its identity for the whole stream"""

    index: int
    prompt: str
    depends_on: Optional[int] = None
    start_image_url: Optional[str] = None
    end_image_url: Optional[str] = None


@dataclass
class ItemOutcome:
    """Terminal result of one item"""

    status: str  # GenerationStatus value: completed | failed
    data: Dict[str, Any] = field(default_factory=dict)


class ItemContext:
    """Handle passed to workers: progress reporting and chain wiring"""

    def __init__(self, streamer: "BatchStreamer", item: BatchItem):
        self._streamer = streamer
        self.item = item

    async def progress(self, phase: str, **extra) -> None:
        await self._streamer._emit("progress", {"index": self.item.index, "phase": phase, **extra})

    def publish_output(self, image_url: Optional[str]) -> None:
        """Make this item's output image available to its dependents"""
        future = self._streamer._outputs[self.item.index]
        if not future.done():
            future.set_result(image_url)

    async def chained_input(self) -> Optional[str]:
        """Output image of the item this one depends on (None if none/failed)"""
        if self.item.depends_on is None:
            return None
        return await self._streamer._outputs[self.item.depends_on]


Worker = Callable[[BatchItem, ItemContext], Awaitable[ItemOutcome]]

_DISCONNECTED = object()


class BatchStreamer:
    """
    Run a batch and yield SSE frames

    Args:
        items: Work items (indices must be unique; depends_on must point backwards)
        worker: Coroutine producing an ItemOutcome per item
        result_event: Name of the per-item terminal event ("result" or "image")
        concurrency: Max items in flight
        is_disconnected: Async callable returning True once the client is gone
        batch_id: Reuse an id (defaults to a new uuid)
        batch_size / batch_delay: Stagger starts, `batch_size` items per `batch_delay` seconds
    """

    def __init__(
        self,
        items: List[BatchItem],
        worker: Worker,
        result_event: str = "result",
        concurrency: int = BATCH_CONCURRENCY,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
        batch_id: Optional[str] = None,
        batch_size: int = 0,
        batch_delay: float = 0,
    ):
        indices = [item.index for item in items]
        if len(set(indices)) != len(indices):
            raise ValueError("Batch item indices must be unique")
        for item in items:
            if item.depends_on is not None and (
                item.depends_on not in indices or item.depends_on >= item.index
            ):
                raise ValueError(f"Item {item.index} has invalid dependency {item.depends_on}")

        self.items = sorted(items, key=lambda i: i.index)
        self.worker = worker
        self.result_event = result_event
        self.batch_id = batch_id or str(uuid.uuid4())
        self.is_disconnected = is_disconnected
        self.batch_size = batch_size
        self.batch_delay = batch_delay

        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._queue: asyncio.Queue = asyncio.Queue()
        self._outputs: Dict[int, asyncio.Future] = {}
        self._finished: set = set()
        self.cancelled = False

    async def _emit(self, event: str, data: Dict[str, Any]) -> None:
        await self._queue.put((event, data))

    async def _finish(self, item: BatchItem, outcome: ItemOutcome) -> None:
        if item.index in self._finished:
            logger.warning(f"Batch {self.batch_id}: duplicate terminal event for index {item.index} dropped")
            return
        self._finished.add(item.index)
        payload = {"index": item.index, "status": outcome.status, **outcome.data}
        await self._emit(self.result_event, payload)

    async def _run_item(self, item: BatchItem) -> None:
        ctx = ItemContext(self, item)

        if self.batch_size and self.batch_delay:
            wave = self.items.index(item) // self.batch_size
            if wave:
                await asyncio.sleep(wave * self.batch_delay)

        # FIFO semaphore + backward-only dependencies: a dependency always
        # holds a slot before its dependents wait on it.
        async with self._semaphore:
            if self.cancelled:
                return
            await ctx.progress("started")
            try:
                outcome = await self.worker(item, ctx)
            except asyncio.CancelledError:
                raise
            except NoCapacityError as e:
                ctx.publish_output(None)
                await self._emit("error", {"error": str(e), "index": item.index, "fatal": True})
                return
            except USER_FACING_ERRORS as e:
                outcome = ItemOutcome(GenerationStatus.FAILED.value, {"error": str(e)})
            except Exception as e:
                logger.exception(f"Batch {self.batch_id} item {item.index} crashed: {e}")
                outcome = ItemOutcome(GenerationStatus.FAILED.value, {"error": categorize_error(str(e))})

        ctx.publish_output(None)  # no-op if the worker already published
        await self._finish(item, outcome)

    async def _watch_disconnect(self) -> None:
        while not self.cancelled:
            await asyncio.sleep(DISCONNECT_CHECK_SECONDS)
            if await self.is_disconnected():
                self.cancelled = True
                await self._queue.put(_DISCONNECTED)
                return

    async def stream(self) -> AsyncIterator[str]:
        """Yield SSE frames until every item is terminal, a fatal error, or disconnect"""
        loop = asyncio.get_running_loop()
        self._outputs = {item.index: loop.create_future() for item in self.items}

        yield sse_event("batch_started", {"batchId": self.batch_id, "total": len(self.items)})

        tasks = [asyncio.create_task(self._run_item(item)) for item in self.items]
        watcher = asyncio.create_task(self._watch_disconnect()) if self.is_disconnected else None

        completed = failed = 0
        try:
            while len(self._finished) < len(self.items) or not self._queue.empty():
                message = await self._queue.get()
                if message is _DISCONNECTED:
                    logger.info(f"Batch {self.batch_id}: client disconnected, cancelling remaining items")
                    return

                event, data = message
                yield sse_event(event, data)

                if event == "error":
                    logger.error(f"Batch {self.batch_id} aborted: {data.get('error')}")
                    return
                if event == self.result_event:
                    if data["status"] == GenerationStatus.COMPLETED.value:
                        completed += 1
                    else:
                        failed += 1

            yield sse_event("complete", {
                "batchId": self.batch_id,
                "summary": {"total": len(self.items), "completed": completed, "failed": failed},
                "message": f"Batch finished: {completed} completed, {failed} failed",
            })
            logger.info(f"Batch {self.batch_id} finished: {completed}/{len(self.items)} completed")
        finally:
            self.cancelled = True
            if watcher:
                tasks.append(watcher)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)


# ===========================
# WORKERS
# ===========================


def _video_data(video) -> Dict[str, Any]:
    return {
        "historyId": video.id,
        "sceneNumber": video.scene_number,
        "videoUrl": video.video_url,
        "error": video.error_message,
    }


def make_video_worker(
    session_factory: async_sessionmaker,
    user_id: int,
    batch_id: str,
    aspect_ratio: str = "landscape",
    tool: ToolName = ToolName.BULK,
    client: Optional[VeoClient] = None,
    storage: Optional[MediaStorage] = None,
    poll_interval: float = POLL_INTERVAL_SECONDS,
) -> Worker:
    """Worker for prompt-per-item video batches"""

    async def worker(item: BatchItem, ctx: ItemContext) -> ItemOutcome:
        async with session_factory() as session:
            user = await session.get(User, user_id)
            video = await generation_service.start_video_generation(
                session,
                user,
                item.prompt,
                aspect_ratio=aspect_ratio,
                batch_id=batch_id,
                scene_number=item.index + 1,
                reference_image_url=item.start_image_url,
                end_image_url=item.end_image_url,
                tool=tool,
                client=client,
                storage=storage,
            )
            if video.status == GenerationStatus.PROCESSING.value:
                await ctx.progress("processing", historyId=video.id)
                await generation_service.wait_for_completion(
                    session, video, client, interval=poll_interval, storage=storage
                )
            return ItemOutcome(video.status, _video_data(video))

    return worker


def make_image_worker(
    session_factory: async_sessionmaker,
    user_id: int,
    batch_id: str,
    aspect_ratio: str = "landscape",
    client: Optional[VeoClient] = None,
    storage: Optional[MediaStorage] = None,
) -> Worker:
    """Worker for prompt-per-item image batches"""

    async def worker(item: BatchItem, ctx: ItemContext) -> ItemOutcome:
        async with session_factory() as session:
            user = await session.get(User, user_id)
            image = await generation_service.generate_image(
                session,
                user,
                item.prompt,
                aspect_ratio=aspect_ratio,
                batch_id=batch_id,
                scene_number=item.index + 1,
                client=client,
                storage=storage,
            )
            return ItemOutcome(image.status, {
                "historyId": image.id,
                "imageUrl": image.image_url,
                "error": image.error_message,
            })

    return worker


def make_storyboard_worker(
    session_factory: async_sessionmaker,
    user_id: int,
    batch_id: str,
    aspect_ratio: str = "landscape",
    client: Optional[VeoClient] = None,
    storage: Optional[MediaStorage] = None,
    poll_interval: float = POLL_INTERVAL_SECONDS,
) -> Worker:
    """
    Storyboard worker: frame image per scene, then a video from the previous
    scene's frame (start) to this scene's frame (end)
    """

    async def worker(item: BatchItem, ctx: ItemContext) -> ItemOutcome:
        async with session_factory() as session:
            user = await session.get(User, user_id)

            await ctx.progress("frame")
            frame = await generation_service.generate_image(
                session,
                user,
                item.prompt,
                aspect_ratio=aspect_ratio,
                batch_id=batch_id,
                scene_number=item.index + 1,
                client=client,
                storage=storage,
            )
            if frame.status != GenerationStatus.COMPLETED.value:
                ctx.publish_output(None)
                return ItemOutcome(GenerationStatus.FAILED.value, {
                    "imageUrl": None,
                    "error": frame.error_message,
                })

            ctx.publish_output(frame.image_url)
            await ctx.progress("frame_ready", imageUrl=frame.image_url)

            previous_frame = await ctx.chained_input()
            if previous_frame:
                start_url, end_url = previous_frame, frame.image_url
            else:
                start_url, end_url = item.start_image_url or frame.image_url, None

            video = await generation_service.start_video_generation(
                session,
                user,
                item.prompt,
                aspect_ratio=aspect_ratio,
                batch_id=batch_id,
                scene_number=item.index + 1,
                reference_image_url=start_url,
                end_image_url=end_url,
                tool=ToolName.SCRIPT_TO_FRAMES,
                client=client,
                storage=storage,
            )
            if video.status == GenerationStatus.PROCESSING.value:
                await ctx.progress("processing", historyId=video.id)
                await generation_service.wait_for_completion(
                    session, video, client, interval=poll_interval, storage=storage
                )

            data = _video_data(video)
            data["imageUrl"] = frame.image_url
            return ItemOutcome(video.status, data)

    return worker
