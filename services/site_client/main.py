"""
Site client entry point.

Wires one tab (local storage handle, local store, sync bus, data service and
page renderers) and keeps the renderers up to date until interrupted.
"""

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional

from shared.models import ContentType
from services.site_client.config import DataServiceConfig
from services.site_client.data_service import DataService
from services.site_client.local_store import LocalStorage, LocalStore, StorageArea
from services.site_client.remote_client import RemoteContentClient
from services.site_client.renderers import (
    AdminTableRenderer,
    BlogListRenderer,
    EventListRenderer,
    PageRenderer,
    SermonListRenderer,
)
from services.site_client.sync_bus import SyncBus

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)


@dataclass
class Site:
    """Everything one open tab owns."""
    config: DataServiceConfig
    storage: LocalStorage
    local_store: LocalStore
    sync_bus: SyncBus
    data_service: DataService
    renderers: List[PageRenderer] = field(default_factory=list)

    async def start(self, poll_interval: Optional[float] = None):
        for renderer in self.renderers:
            await renderer.start()
            if poll_interval:
                renderer.start_polling(poll_interval)

    async def close(self):
        for renderer in self.renderers:
            await renderer.stop()
        await self.sync_bus.drain()
        await self.data_service.aclose()
        self.storage.close()


def build_site(
    config: DataServiceConfig,
    area: StorageArea,
    remote: Optional[RemoteContentClient] = None,
    admin: bool = False
) -> Site:
    """
    Build one tab on a shared storage area.

    Args:
        config: Data service configuration
        area: Storage area shared with the other tabs
        remote: Optional remote client (defaults to one built from config)
        admin: Add admin table renderers for every content type

    Returns:
        The wired Site
    """
    storage = area.open_tab()
    local_store = LocalStore(storage, cleanup_keep=config.cleanup_keep, image_max_kb=config.image_max_kb)
    sync_bus = SyncBus(local_store)
    data_service = DataService(config, local_store, sync_bus, remote=remote)

    renderers: List[PageRenderer] = [
        BlogListRenderer(data_service, sync_bus),
        EventListRenderer(data_service, sync_bus),
        SermonListRenderer(data_service, sync_bus),
    ]
    if admin:
        renderers.extend(
            AdminTableRenderer(data_service, sync_bus, content_type)
            for content_type in ContentType
        )

    return Site(
        config=config,
        storage=storage,
        local_store=local_store,
        sync_bus=sync_bus,
        data_service=data_service,
        renderers=renderers,
    )


async def run(config: DataServiceConfig, area: StorageArea):
    site = build_site(config, area)

    try:
        summary = await site.data_service.replay_pending()
        if summary["total"]:
            logger.info(f"Pending changes: {summary}")

        await site.start(poll_interval=config.poll_interval)
        logger.info(f"Site client started, polling every {config.poll_interval}s")

        while True:
            await asyncio.sleep(3600)
    finally:
        await site.close()


def main():
    config = DataServiceConfig.from_env()
    area = StorageArea(quota=config.storage_quota)

    try:
        asyncio.run(run(config, area))
    except KeyboardInterrupt:
        logger.info("Site client stopped")


if __name__ == "__main__":
    main()
