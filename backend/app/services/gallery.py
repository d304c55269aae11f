"""Gallery reconciler - hides artifacts whose stored object no longer resolves.

Metadata and durable storage drift apart (objects expire or are removed
out-of-band, deletes only touch metadata), so each page is probed before
display.  Dead items are dropped silently.  ``total_pages`` is carried over
from the metadata count unchanged, so a page may hold fewer than
``page_size`` items.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from app.models.artifact import Artifact
from app.services.batching import gather_in_batches
from app.services.metadata_store import ArtifactPage

logger = logging.getLogger(__name__)

PROBE_BATCH_SIZE = 5


@dataclass
class GalleryPage:
    items: list[Artifact]
    page: int
    page_size: int
    total_pages: int
    # Rows the metadata store counted, before liveness filtering
    total: int = 0
    excluded: int = 0


class GalleryReconciler:
    def __init__(
        self,
        probe: Callable[[str], Awaitable[bool]],
        *,
        batch_size: int = PROBE_BATCH_SIZE,
    ) -> None:
        self._probe = probe
        self.batch_size = batch_size

    async def _alive(self, artifact: Artifact) -> bool:
        url = artifact.source_url
        if not url:
            return False
        try:
            return await self._probe(url)
        except httpx.HTTPError:
            return False

    async def filter_live(self, page: ArtifactPage) -> GalleryPage:
        """Probe every item on ``page`` in batches and keep the live ones."""
        results = await gather_in_batches(page.items, self._alive, self.batch_size)
        live = [item for item, ok in zip(page.items, results) if ok]
        excluded = len(page.items) - len(live)
        if excluded:
            logger.info(
                "Gallery page %d: %d of %d items no longer resolve",
                page.page,
                excluded,
                len(page.items),
            )
        return GalleryPage(
            items=live,
            page=page.page,
            page_size=page.page_size,
            total_pages=page.total_pages,
            total=page.total,
            excluded=excluded,
        )

    async def live_items(self, items: list[Artifact]) -> list[Artifact]:
        """Probe a plain list of artifacts and keep the live ones, in order."""
        results = await gather_in_batches(items, self._alive, self.batch_size)
        return [item for item, ok in zip(items, results) if ok]
