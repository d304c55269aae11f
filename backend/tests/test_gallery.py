"""Tests for batched liveness probing and gallery reconciliation."""

import asyncio

import httpx
import pytest

from app.models.artifact import Artifact
from app.services.batching import gather_in_batches
from app.services.gallery import GalleryReconciler
from app.services.metadata_store import ArtifactPage, total_pages_for
from app.services.storage import StorageService


def _artifacts(n: int) -> list[Artifact]:
    return [
        Artifact(id=i, user_id="u1", kind="image", public_id=f"p{i}", secure_url=f"https://cdn/{i}.png")
        for i in range(n)
    ]


class _ConcurrencyProbe:
    """Probe that records peak concurrency and which URLs are dead."""

    def __init__(self, dead: set[str] = frozenset(), raises: set[str] = frozenset()):
        self.dead = dead
        self.raises = raises
        self.in_flight = 0
        self.peak = 0
        self.calls: list[str] = []

    async def __call__(self, url: str) -> bool:
        self.calls.append(url)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        if url in self.raises:
            raise httpx.ConnectTimeout("timed out")
        return url not in self.dead


@pytest.mark.asyncio
async def test_gather_in_batches_preserves_order_and_width():
    in_flight = 0
    peak = 0

    async def work(x: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1
        return x * 2

    results = await gather_in_batches(list(range(12)), work, batch_size=5)

    assert results == [x * 2 for x in range(12)]
    assert peak == 5


@pytest.mark.asyncio
async def test_gather_in_batches_rejects_zero_width():
    with pytest.raises(ValueError):
        await gather_in_batches([1], lambda x: x, batch_size=0)


@pytest.mark.asyncio
async def test_filter_live_drops_dead_items_and_keeps_total_pages():
    items = _artifacts(12)
    dead = {"https://cdn/2.png", "https://cdn/5.png", "https://cdn/11.png"}
    probe = _ConcurrencyProbe(dead=dead)
    page = ArtifactPage(items=items, total=25, page=1, page_size=12, total_pages=total_pages_for(25, 12))

    result = await GalleryReconciler(probe, batch_size=5).filter_live(page)

    assert len(result.items) == 9
    assert [a.id for a in result.items] == [0, 1, 3, 4, 6, 7, 8, 9, 10]
    assert result.total_pages == 3
    assert result.total == 25
    assert result.excluded == 3
    assert probe.peak <= 5
    assert len(probe.calls) == 12


@pytest.mark.asyncio
async def test_probe_network_error_counts_as_dead():
    items = _artifacts(3)
    probe = _ConcurrencyProbe(raises={"https://cdn/1.png"})
    page = ArtifactPage(items=items, total=3, page=1, page_size=12, total_pages=1)

    result = await GalleryReconciler(probe).filter_live(page)

    assert [a.id for a in result.items] == [0, 2]


@pytest.mark.asyncio
async def test_item_without_url_is_excluded_without_probe():
    items = _artifacts(2)
    items[0].secure_url = ""
    items[0].url = ""
    probe = _ConcurrencyProbe()

    live = await GalleryReconciler(probe).live_items(items)

    assert [a.id for a in live] == [1]
    assert probe.calls == ["https://cdn/1.png"]


@pytest.mark.asyncio
async def test_storage_probe_uses_head():
    methods = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        return httpx.Response(404 if request.url.path.endswith("gone.png") else 200)

    storage = StorageService("demo", transport=httpx.MockTransport(handler))
    reconciler = GalleryReconciler(storage.probe)
    items = _artifacts(2)
    items[1].secure_url = "https://cdn/gone.png"

    live = await reconciler.live_items(items)

    assert [a.id for a in live] == [0]
    assert methods == ["HEAD", "HEAD"]
