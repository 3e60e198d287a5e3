"""
Content-changed notifications.

Listeners in the same process are called directly. Other tabs hear about a
change through the local storage area: writing the ``lastSync`` key (or a
collection key) raises a storage event in every tab except the writer.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Callable, FrozenSet, List, Optional, Set, Tuple

from shared.models import ALL_CONTENT, ContentType, SyncAction, SyncSignal
from services.site_client.local_store import (
    COLLECTION_KEYS,
    LAST_SYNC_KEY,
    LocalStore,
    StorageEvent,
)

logger = logging.getLogger(__name__)

Listener = Callable[[SyncSignal], Any]


def _normalize_types(content_types) -> FrozenSet[str]:
    """Accept "all", a ContentType, a storage key, or an iterable of those."""
    if isinstance(content_types, (str, ContentType)):
        content_types = [content_types]
    return frozenset(
        value.value if isinstance(value, ContentType) else str(value)
        for value in content_types
    )


class InProcessChannel:
    """Delivers signals to listeners registered in this process."""

    def __init__(self):
        self._listeners: List[Tuple[FrozenSet[str], Listener]] = []

    def subscribe(self, content_types, callback: Listener) -> Callable[[], None]:
        entry = (_normalize_types(content_types), callback)
        self._listeners.append(entry)

        def unsubscribe():
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    async def publish(self, signal: SyncSignal):
        for content_types, callback in list(self._listeners):
            if not signal.matches(content_types):
                continue
            try:
                result = callback(signal)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Sync listener failed for {signal.content_type}: {e}", exc_info=True)


class StorageChannel:
    """Cross-tab channel built on local storage change events."""

    def __init__(self, local_store: LocalStore):
        self.local_store = local_store
        self._pending: Set[asyncio.Task] = set()

    def publish(self, signal: SyncSignal):
        self.local_store.set_last_sync(signal.to_dict())

    def subscribe(self, content_types, callback: Listener) -> Callable[[], None]:
        types = _normalize_types(content_types)

        def on_storage(event: StorageEvent):
            signal = self._signal_from_event(event, types)
            if signal is not None:
                self._invoke(callback, signal)

        self.local_store.storage.add_listener(on_storage)
        return lambda: self.local_store.storage.remove_listener(on_storage)

    @staticmethod
    def _signal_from_event(event: StorageEvent, types: FrozenSet[str]) -> Optional[SyncSignal]:
        if event.key == LAST_SYNC_KEY:
            if event.new_value is None:
                return None
            try:
                signal = SyncSignal.from_dict(json.loads(event.new_value))
            except (ValueError, TypeError, AttributeError) as e:
                logger.error(f"Error parsing sync data: {e}")
                return None
            return signal if signal.matches(types) else None

        # A collection written directly by another tab
        if event.key in COLLECTION_KEYS and (event.key in types or ALL_CONTENT in types):
            return SyncSignal(content_type=event.key, action=SyncAction.UNKNOWN)

        return None

    def _invoke(self, callback: Listener, signal: SyncSignal):
        try:
            result = callback(signal)
        except Exception as e:
            logger.error(f"Sync listener failed for {signal.content_type}: {e}", exc_info=True)
            return

        if not inspect.isawaitable(result):
            return

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping sync listener for {signal.content_type}")
            if inspect.iscoroutine(result):
                result.close()
            return

        task = asyncio.ensure_future(result)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Sync listener failed: {task.exception()}")

    async def drain(self):
        """Wait for listener coroutines started by storage events."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class SyncBus:
    """Publishes one signal per mutation on both channels."""

    def __init__(
        self,
        local_store: LocalStore,
        in_process: Optional[InProcessChannel] = None,
        storage_channel: Optional[StorageChannel] = None
    ):
        self.in_process = in_process or InProcessChannel()
        self.storage_channel = storage_channel or StorageChannel(local_store)

    async def trigger_sync(self, content_type, action, item: Optional[dict] = None) -> SyncSignal:
        """
        Record ``lastSync`` for other tabs and notify local listeners.

        Never raises; a failed ``lastSync`` write is logged and local
        listeners are still notified.
        """
        signal = SyncSignal(
            content_type=content_type.value if isinstance(content_type, ContentType) else str(content_type),
            action=SyncAction(action),
            item=item,
        )

        try:
            self.storage_channel.publish(signal)
        except Exception as e:
            logger.error(f"Error triggering sync: {e}")

        await self.in_process.publish(signal)

        label = (item or {}).get("title") or (item or {}).get("id") or ""
        logger.info(f"Sync event triggered: {signal.action.value} {signal.content_type} {label}".rstrip())
        return signal

    def subscribe(self, content_types, callback: Listener) -> Callable[[], None]:
        """
        Listen on both channels.

        Returns:
            A callable that removes the listener from both channels
        """
        remove_local = self.in_process.subscribe(content_types, callback)
        remove_storage = self.storage_channel.subscribe(content_types, callback)

        def unsubscribe():
            remove_local()
            remove_storage()

        return unsubscribe

    async def drain(self):
        await self.storage_channel.drain()
