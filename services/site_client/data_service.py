"""
Data service: the single facade pages use to read and write content.

Reads try the Remote Content API first and fall back to the local store.
Mutations go to the remote API and, when ``fallback_to_local`` is on, are
also written to the local store. Every successful mutation publishes one
sync signal.
"""

import logging
from dataclasses import replace
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple, runtime_checkable
from uuid import uuid4

from shared.models import (
    ALL_CONTENT,
    ContentType,
    SyncAction,
    generate_local_id,
    is_published,
    normalize_content_type,
    utc_now_iso,
)
from services.site_client.config import DataServiceConfig
from services.site_client.local_store import LocalStore, LocalStoreError
from services.site_client.remote_client import (
    AuthenticationRequired,
    RemoteContentClient,
    RemoteError,
    RemoteHTTPError,
)
from services.site_client.sync_bus import SyncBus

logger = logging.getLogger(__name__)


@runtime_checkable
class ContentSource(Protocol):
    """What a page renderer needs from its data dependency."""

    async def get_all(self, content_type) -> List[dict]:
        ...

    async def get_published(self, content_type) -> List[dict]:
        ...

    async def get_by_id(self, content_type, item_id: str) -> Optional[dict]:
        ...


class DataService:
    """Remote-first content access with local fallback and dual-write."""

    def __init__(
        self,
        config: DataServiceConfig,
        local_store: LocalStore,
        sync_bus: SyncBus,
        remote: Optional[RemoteContentClient] = None
    ):
        """
        Initialize the data service.

        Args:
            config: Explicit service configuration
            local_store: Local persistent store adapter for this tab
            sync_bus: Bus that change signals are published on
            remote: Remote API client; built from ``config`` when omitted
        """
        self.config = config
        self.local_store = local_store
        self.sync_bus = sync_bus
        self.remote = remote
        if self.remote is None and config.use_api:
            self.remote = RemoteContentClient(config)

    # Configuration

    def set_api_mode(self, use_api: bool):
        """Switch between remote-first and local-only operation."""
        self.config = replace(self.config, use_api=use_api)
        if use_api and self.remote is None:
            self.remote = RemoteContentClient(self.config)
        logger.info(f"API mode {'enabled' if use_api else 'disabled'}")

    def get_config(self) -> DataServiceConfig:
        """A copy of the current configuration."""
        return replace(self.config)

    def _remote_enabled(self) -> bool:
        return self.config.use_api and self.remote is not None

    def _handle_unauthorized(self):
        if self.config.on_unauthorized is None:
            return
        try:
            self.config.on_unauthorized()
        except Exception as e:
            logger.error(f"Unauthorized handler failed: {e}")

    async def _call_remote(self, description: str, call: Callable[[], Awaitable]) -> Tuple[bool, object]:
        """
        Run a remote call, converting failures into a fallback.

        Returns:
            (succeeded, value)
        """
        if not self._remote_enabled():
            return False, None

        try:
            return True, await call()
        except AuthenticationRequired as e:
            logger.warning(f"API {description} rejected, authentication required: {e}")
            self._handle_unauthorized()
        except RemoteError as e:
            logger.warning(f"API {description} failed, using local store: {e}")

        return False, None

    def _read_local(self, content_type: ContentType) -> List[dict]:
        try:
            return self.local_store.read_collection(content_type)
        except Exception as e:
            logger.error(f"Error reading local {content_type.value}: {e}")
            return []

    async def _signal(self, content_type, action: SyncAction, item: Optional[dict]):
        if self.config.enable_sync:
            await self.sync_bus.trigger_sync(content_type, action, item)

    # Reads

    async def get_all(self, content_type) -> List[dict]:
        """All records of a type, drafts included. Never raises."""
        content_type = normalize_content_type(content_type)

        ok, items = await self._call_remote(
            f"getAll {content_type.value}",
            lambda: self.remote.list(content_type)
        )
        if ok:
            return items

        return self._read_local(content_type)

    async def get_published(self, content_type) -> List[dict]:
        """Published records only. Never raises."""
        content_type = normalize_content_type(content_type)

        ok, items = await self._call_remote(
            f"getPublished {content_type.value}",
            lambda: self.remote.list(content_type, published=True)
        )
        if not ok:
            items = self._read_local(content_type)

        return [item for item in items if is_published(item)]

    async def get_by_id(self, content_type, item_id: str) -> Optional[dict]:
        """One record, or None when it exists in neither source."""
        content_type = normalize_content_type(content_type)

        ok, item = await self._call_remote(
            f"getById {content_type.value}/{item_id}",
            lambda: self.remote.get(content_type, item_id)
        )
        if ok:
            return item

        try:
            return self.local_store.find(content_type, item_id)
        except Exception as e:
            logger.error(f"Error reading local {content_type.value}/{item_id}: {e}")
            return None

    # Mutations

    async def create(self, content_type, data: dict) -> dict:
        """
        Create a record.

        Returns:
            The server's record when the remote call succeeded, otherwise the
            locally stored one

        Raises:
            LocalStoreError: If the remote call failed and the local write failed
        """
        content_type = normalize_content_type(content_type)
        attempted = self._remote_enabled()

        ok, created = await self._call_remote(
            f"create {content_type.value}",
            lambda: self.remote.create(content_type, data)
        )
        if not ok:
            created = None

        local_item = None
        if created is None or self.config.fallback_to_local:
            record = dict(created or data)
            record["id"] = record.get("id") or generate_local_id()
            record.setdefault("createdAt", utc_now_iso())
            record.setdefault("updatedAt", record["createdAt"])

            try:
                local_item = self.local_store.append(content_type, record)
            except LocalStoreError as e:
                logger.error(f"Local create of {content_type.value} failed: {e}")
                if created is None:
                    raise
            else:
                if created is None and attempted:
                    self._record_intent(content_type, SyncAction.CREATE, local_item["id"], data)

        result = created if created is not None else local_item
        await self._signal(content_type, SyncAction.CREATE, result)
        return result

    async def update(self, content_type, item_id: str, data: dict) -> Optional[dict]:
        """
        Merge ``data`` into a record.

        Returns:
            The updated record, or None if neither sink knows ``item_id``
        """
        content_type = normalize_content_type(content_type)
        attempted = self._remote_enabled()

        ok, updated = await self._call_remote(
            f"update {content_type.value}/{item_id}",
            lambda: self.remote.update(content_type, item_id, data)
        )
        if not ok:
            updated = None

        local_item = None
        if updated is None or self.config.fallback_to_local:
            try:
                local_item = self.local_store.update(content_type, item_id, data)
            except LocalStoreError as e:
                logger.error(f"Local update of {content_type.value}/{item_id} failed: {e}")
                if updated is None:
                    raise
            else:
                if updated is None and local_item is not None and attempted:
                    self._record_intent(content_type, SyncAction.UPDATE, item_id, data)

        result = updated if updated is not None else local_item
        if result is not None:
            await self._signal(content_type, SyncAction.UPDATE, result)
        return result

    async def delete(self, content_type, item_id: str) -> bool:
        """
        Delete a record from both sinks.

        Returns:
            True if either sink deleted it
        """
        content_type = normalize_content_type(content_type)
        attempted = self._remote_enabled()

        ok, remote_item = await self._call_remote(
            f"delete {content_type.value}/{item_id}",
            lambda: self.remote.delete(content_type, item_id)
        )

        local_item = None
        if not ok or self.config.fallback_to_local:
            try:
                local_item = self.local_store.remove(content_type, item_id)
            except LocalStoreError as e:
                logger.error(f"Local delete of {content_type.value}/{item_id} failed: {e}")
                if not ok:
                    raise
            else:
                if not ok and local_item is not None and attempted:
                    self._record_intent(content_type, SyncAction.DELETE, item_id, None)

        if not ok and local_item is None:
            return False

        await self._signal(content_type, SyncAction.DELETE, remote_item if ok else local_item)
        return True

    # Pending intents

    def _record_intent(self, content_type: ContentType, action: SyncAction, record_id: str, data: Optional[dict]):
        intent = {
            "intentId": uuid4().hex,
            "contentType": content_type.value,
            "action": action.value,
            "recordId": record_id,
            "data": data,
            "createdAt": utc_now_iso(),
        }
        try:
            self.local_store.add_intent(intent)
        except LocalStoreError as e:
            logger.warning(f"Could not record pending {action.value} for {content_type.value}: {e}")

    def pending_intents(self) -> List[dict]:
        """Mutations that only reached the local store, oldest first."""
        return self.local_store.pending_intents()

    async def replay_pending(self) -> dict:
        """
        Push locally recorded mutations to the remote API in order.

        Replayed intents are dropped from the log; failed ones stay for the
        next attempt. An intent the API rejects with a 4xx other than 401 is
        dropped as well. A 401 stops the replay.

        Returns:
            {"total": n, "replayed": n, "failed": n}
        """
        intents = self.local_store.pending_intents()
        summary = {"total": len(intents), "replayed": 0, "failed": 0}

        if not intents:
            return summary
        if not self._remote_enabled():
            logger.info(f"API disabled, {len(intents)} pending changes not replayed")
            return summary

        id_map = {}
        remaining = []

        for index, intent in enumerate(intents):
            record_id = id_map.get(intent.get("recordId"), intent.get("recordId"))
            intent = {**intent, "recordId": record_id}

            try:
                content_type = normalize_content_type(intent.get("contentType"))
                action = SyncAction(intent.get("action"))
            except ValueError as e:
                logger.error(f"Dropping malformed pending change {intent.get('intentId')}: {e}")
                summary["failed"] += 1
                continue

            try:
                if action == SyncAction.CREATE:
                    created = await self.remote.create(content_type, intent.get("data") or {})
                    if created and created.get("id") and created["id"] != record_id:
                        id_map[record_id] = created["id"]
                        self.local_store.rekey(content_type, record_id, created["id"])
                elif action == SyncAction.UPDATE:
                    await self.remote.update(content_type, record_id, intent.get("data") or {})
                elif action == SyncAction.DELETE:
                    await self.remote.delete(content_type, record_id)

            except AuthenticationRequired as e:
                logger.warning(f"Replay stopped, authentication required: {e}")
                self._handle_unauthorized()
                remaining.append(intent)
                remaining.extend(
                    {**rest, "recordId": id_map.get(rest.get("recordId"), rest.get("recordId"))}
                    for rest in intents[index + 1:]
                )
                summary["failed"] += 1
                break

            except RemoteError as e:
                if isinstance(e, RemoteHTTPError) and e.is_rejection:
                    logger.error(
                        f"Dropping pending {action.value} {content_type.value}/{record_id}, "
                        f"rejected by the API: {e}"
                    )
                else:
                    logger.warning(f"Replay of {action.value} {content_type.value}/{record_id} failed: {e}")
                    remaining.append(intent)
                summary["failed"] += 1
                continue

            except LocalStoreError as e:
                logger.error(f"Replayed {action.value} {content_type.value} but local re-key failed: {e}")

            summary["replayed"] += 1

        self.local_store.write_intents(remaining)
        logger.info(
            f"Replayed {summary['replayed']}/{summary['total']} pending changes "
            f"({summary['failed']} failed)"
        )

        if summary["replayed"]:
            await self._signal(ALL_CONTENT, SyncAction.UPDATE, None)

        return summary

    async def aclose(self):
        if self.remote is not None:
            await self.remote.aclose()
