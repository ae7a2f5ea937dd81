"""Bounded-concurrency upload queue.

There are no worker threads: a counter of in-flight uploads and a pending
deque are drained every time something is enqueued and every time an upload
finishes, starting at most ``concurrency`` asyncio tasks at once. All state
is touched only from the event loop, so nothing is locked.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from copyparty_bridge import paths
from copyparty_bridge.config import Settings
from copyparty_bridge.exceptions import (
    AlreadyExistsError,
    CopypartyError,
    MutationError,
    PartialSuccessError,
)
from copyparty_bridge.models import FileHandle, PlannedUpload, TransferItem, TransferStatus

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Upload cancelled."
DEFAULT_ENQUEUE_CHUNK = 200


class UploadStore(Protocol):
    """What the queue needs from the backend; CopypartyClient provides it."""

    def upload_url(self, directory_path: str, request_origin: str | None = None) -> str: ...

    async def mkdir(self, parent_path: str, folder_name: str) -> str: ...

    async def delete(self, path: str) -> None: ...

    async def relocate(self, source_path: str, destination_path: str) -> str: ...

    async def upload(
        self,
        file: FileHandle,
        target_name: str,
        upload_url: str,
        *,
        on_progress: Callable[[int], None] | None = None,
    ) -> Any: ...


def default_concurrency(settings: Settings, *, mobile: bool = False) -> int:
    """Concurrency limit for a client; constrained (mobile/touch) clients get less."""
    return settings.mobile_upload_concurrency if mobile else settings.upload_concurrency


class ChangeNotifier:
    """Debounces change notifications to at most one per ``min_interval`` seconds.

    :meth:`notify` calls the callback right away when the interval has passed
    and otherwise schedules one trailing call. :meth:`flush` with
    ``force=True`` calls it immediately regardless.
    """

    def __init__(
        self,
        callback: Callable[[], None] | None,
        *,
        min_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._callback = callback
        self.min_interval = min_interval
        self._clock = clock
        self._last: float | None = None
        self._scheduled: asyncio.TimerHandle | None = None

    def notify(self) -> None:
        if self._callback is None:
            return
        now = self._clock()
        if self._last is None or now - self._last >= self.min_interval:
            self.flush(force=True)
            return
        if self._scheduled is None:
            delay = self.min_interval - (now - self._last)
            self._scheduled = asyncio.get_running_loop().call_later(delay, self.flush)

    def flush(self, force: bool = False) -> None:
        if self._scheduled is not None:
            self._scheduled.cancel()
            self._scheduled = None
        elif not force:
            return
        if self._callback is None:
            return
        self._last = self._clock()
        self._callback()


class TransferQueue:
    """Upload queue with conflict-aware items, progress, cancel and history.

    Args:
        store: Backend used for mkdir, delete, move and the upload itself
        concurrency: Maximum number of simultaneous uploads
        history_limit: Finished items kept before the oldest are pruned
        flatten_uploads: Send files bound for nested folders to the upload
            directory's URL and move them into place afterwards
        on_change: Called (debounced) whenever item state changes
        min_refresh_interval: Debounce interval for ``on_change``
    """

    def __init__(
        self,
        store: UploadStore,
        *,
        concurrency: int = 4,
        history_limit: int = 200,
        flatten_uploads: bool = False,
        on_change: Callable[[], None] | None = None,
        min_refresh_interval: float = 0.1,
        enqueue_chunk_size: int = DEFAULT_ENQUEUE_CHUNK,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._store = store
        self.concurrency = concurrency
        self.history_limit = history_limit
        self.flatten_uploads = flatten_uploads
        self.notifier = ChangeNotifier(on_change, min_interval=min_refresh_interval)
        self._enqueue_chunk_size = max(enqueue_chunk_size, 1)

        self.items: list[TransferItem] = []
        self._pending: deque[TransferItem] = deque()
        self._in_flight = 0
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._confirmed_dirs: set[str] = {paths.ROOT}
        self._dir_creations: dict[str, asyncio.Future[None]] = {}
        self._taken_upload_names: dict[str, set[str]] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def uploading_count(self) -> int:
        return sum(1 for item in self.items if item.status is TransferStatus.UPLOADING)

    def get(self, item_id: str) -> TransferItem | None:
        return next((item for item in self.items if item.id == item_id), None)

    def counts(self) -> dict[str, int]:
        result = {status.value: 0 for status in TransferStatus}
        for item in self.items:
            result[item.status.value] += 1
        return result

    def confirm_directory(self, path: str) -> None:
        """Record that ``path`` and its ancestors exist, e.g. the folder being browsed."""
        self._confirmed_dirs.update(paths.ancestors(path))

    def build_item(self, plan: PlannedUpload, upload_directory: str) -> TransferItem:
        """Turn a planned upload into a queued TransferItem."""
        destination = paths.normalize(plan.destination_path)
        upload_dir = paths.normalize(upload_directory)
        if not (self.flatten_uploads and paths.is_within(destination, upload_dir)):
            upload_dir = destination

        item_id = uuid.uuid4().hex
        upload_name = plan.target_name
        if upload_dir != destination:
            upload_name = self._flattened_name(plan.candidate.relative_path, item_id, upload_dir)

        file = plan.candidate.file
        return TransferItem(
            file=file,
            source_name=plan.source_name,
            target_name=plan.target_name,
            target_path=paths.join(destination, plan.target_name),
            destination_path=destination,
            upload_url=self._store.upload_url(upload_dir),
            upload_directory=upload_dir,
            size=file.size,
            replace_existing=plan.replace_existing,
            upload_name=upload_name,
            id=item_id,
        )

    def _flattened_name(self, relative_path: str, item_id: str, upload_dir: str) -> str:
        """Temporary name for a nested file parked in the upload folder.

        It encodes the relative path and the item id, and never matches a
        name known to exist in ``upload_dir`` or given to another item.
        """
        stem = "__".join(paths.normalize_relative(relative_path).split("/"))
        taken = self._taken_upload_names.setdefault(upload_dir, set())
        name = f"{stem}.{item_id[:8]}"
        if name in taken:
            name = f"{stem}.{item_id}"
        taken.add(name)
        return name

    async def enqueue(
        self,
        plans: Iterable[PlannedUpload],
        upload_directory: str = paths.ROOT,
        existing_names: Iterable[str] = (),
    ) -> list[TransferItem]:
        """Queue planned uploads and start as many as the limit allows.

        Items are created in chunks with a yield to the event loop between
        them, so very large batches do not starve other tasks.

        Args:
            plans: Output of :func:`copyparty_bridge.conflicts.resolve`
            upload_directory: Folder the user is uploading into; it is assumed
                to exist
            existing_names: Names already listed in ``upload_directory``.
                Flattened uploads are parked under names that avoid them.

        Returns:
            The created items, in order
        """
        self.confirm_directory(upload_directory)
        self._taken_upload_names.setdefault(paths.normalize(upload_directory), set()).update(
            existing_names
        )
        created: list[TransferItem] = []
        chunk: list[TransferItem] = []
        for plan in plans:
            chunk.append(self.build_item(plan, upload_directory))
            if len(chunk) >= self._enqueue_chunk_size:
                self._push(chunk)
                created.extend(chunk)
                chunk = []
                await asyncio.sleep(0)
        if chunk:
            self._push(chunk)
            created.extend(chunk)
        if created:
            logger.info(f"Queued {len(created)} upload(s) into {paths.normalize(upload_directory)}")
        return created

    def cancel(self, item_id: str) -> bool:
        """Cancel one item. Returns False if it is unknown or already finished."""
        item = self.get(item_id)
        if item is None:
            return False

        if item.status is TransferStatus.QUEUED:
            self._pending.remove(item)
            self._fail(item, CANCELLED_MESSAGE)
            self._after_state_change()
            return True

        if item.status is TransferStatus.UPLOADING:
            task = self._tasks.get(item.id)
            if task is not None and not task.done():
                # _run's cancellation handler marks the item.
                task.cancel()
                return True
        return False

    def cancel_all(self) -> int:
        """Cancel every queued and uploading item; returns how many were cancelled."""
        return sum(1 for item in list(self.items) if item.status.active and self.cancel(item.id))

    def dismiss(self, item_id: str) -> bool:
        """Remove a finished item from the history."""
        item = self.get(item_id)
        if item is None or item.status.active:
            return False
        self.items.remove(item)
        self.notifier.notify()
        return True

    def prune_history(self) -> None:
        """Drop the oldest finished items beyond ``history_limit``; active items stay."""
        finished = [item for item in self.items if not item.status.active]
        excess = len(finished) - self.history_limit
        if excess <= 0:
            return
        dropped = {item.id for item in finished[:excess]}
        self.items = [item for item in self.items if item.id not in dropped]

    async def join(self) -> None:
        """Wait until nothing is pending or in flight."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _push(self, items: list[TransferItem]) -> None:
        self.items.extend(items)
        self._pending.extend(items)
        self._idle.clear()
        self._drain()
        self.notifier.notify()

    def _drain(self) -> None:
        while self._in_flight < self.concurrency and self._pending:
            item = self._pending.popleft()
            self._in_flight += 1
            item.status = TransferStatus.UPLOADING
            task = asyncio.create_task(self._run(item), name=f"upload-{item.id}")
            self._tasks[item.id] = task
            task.add_done_callback(functools.partial(self._on_done, item))
        if self._in_flight == 0 and not self._pending:
            self._idle.set()

    def _on_done(self, item: TransferItem, task: asyncio.Task[None]) -> None:
        self._tasks.pop(item.id, None)
        self._in_flight -= 1
        if task.cancelled() and item.status.active:
            # Cancelled before _run got a chance to start.
            self._fail(item, CANCELLED_MESSAGE)
        self._after_state_change()

    def _after_state_change(self) -> None:
        self.prune_history()
        self._drain()
        if self._in_flight == 0 and not self._pending:
            self.notifier.flush(force=True)
        else:
            self.notifier.notify()

    # ------------------------------------------------------------------
    # Per-item upload sequence
    # ------------------------------------------------------------------

    async def _run(self, item: TransferItem) -> None:
        try:
            try:
                await self.ensure_directory(item.destination_path)
            except CopypartyError as e:
                self._fail(item, f"Could not create folder {item.destination_path}: {e}", e)
                return

            if item.replace_existing:
                try:
                    await self._store.delete(item.target_path)
                except MutationError as e:
                    if e.status_code != 404:
                        self._fail(item, f"Could not replace {item.target_path}: {e}", e)
                        return

            await self._store.upload(
                item.file,
                item.upload_name or item.target_name,
                item.upload_url,
                on_progress=functools.partial(self._on_progress, item),
            )

            if item.flattened:
                uploaded_path = item.uploaded_path
                try:
                    await self._store.relocate(uploaded_path, item.target_path)
                except CopypartyError as e:
                    item.placed = False
                    failure = PartialSuccessError(
                        f"Uploaded to {uploaded_path} but not placed: {e}", uploaded_path
                    )
                    self._fail(item, str(failure), failure)
                    return

            item.loaded = item.size
            item.progress = 100
            item.status = TransferStatus.COMPLETE
            logger.info(f"Upload complete: {item.target_path}")
        except asyncio.CancelledError:
            self._fail(item, CANCELLED_MESSAGE)
            raise
        except Exception as e:
            logger.error(f"Upload of {item.target_path} failed: {e}")
            self._fail(item, str(e) or type(e).__name__, e)

    def _on_progress(self, item: TransferItem, loaded: int) -> None:
        if item.status is TransferStatus.UPLOADING:
            item.report_progress(loaded)
            self.notifier.notify()

    def _fail(
        self, item: TransferItem, message: str, failure: Exception | None = None
    ) -> None:
        item.status = TransferStatus.ERROR
        item.error = message
        item.failure = failure
        if message != CANCELLED_MESSAGE:
            logger.warning(f"{item.target_path}: {message}")

    async def ensure_directory(self, path: str) -> None:
        """Create every missing ancestor of ``path``, outermost first.

        Each folder is created at most once per queue, including when several
        uploads need it at the same moment. A folder that already exists
        counts as created.
        """
        for directory in paths.ancestors(path):
            if directory in self._confirmed_dirs:
                continue
            creation = self._dir_creations.get(directory)
            if creation is None:
                creation = asyncio.ensure_future(self._create_directory(directory))
                self._dir_creations[directory] = creation
                creation.add_done_callback(functools.partial(self._forget_creation, directory))
            await asyncio.shield(creation)

    def _forget_creation(self, directory: str, creation: asyncio.Future[None]) -> None:
        # Runs even when every waiter was cancelled.
        if self._dir_creations.get(directory) is creation:
            del self._dir_creations[directory]
        if not creation.cancelled() and creation.exception() is not None:
            logger.debug(f"Folder creation failed: {directory}: {creation.exception()}")

    async def _create_directory(self, directory: str) -> None:
        parent = paths.parent(directory) or paths.ROOT
        name = paths.leaf_name(directory) or ""
        try:
            await self._store.mkdir(parent, name)
        except AlreadyExistsError:
            logger.debug(f"Folder already exists: {directory}")
        self._confirmed_dirs.add(directory)
