"""AssetStorage tests against an httpx MockTransport."""

import json
from uuid import uuid4

import httpx
import pytest

from lumina.services.exceptions import StorageTransferFailedError
from lumina.services.storage.asset_storage import AssetStorage

BASE_URL = "https://project.supabase.test"
SOURCE_URL = "https://replicate.delivery/out.png"


def make_storage(handler) -> AssetStorage:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AssetStorage(BASE_URL, "service-key", bucket="images", client=client)


@pytest.mark.asyncio
async def test_transfer_uploads_to_deterministic_path():
    user_id, job_id = uuid4(), uuid4()
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url == SOURCE_URL:
            return httpx.Response(200, content=b"PNGDATA", headers={"content-type": "image/png"})
        return httpx.Response(200, json={"Key": "ok"})

    storage = make_storage(handler)

    url = await storage.transfer(SOURCE_URL, user_id, job_id)

    path = f"generations/{user_id}/{job_id}.png"
    assert url == f"{BASE_URL}/storage/v1/object/public/images/{path}"
    upload = seen[1]
    assert upload.method == "POST"
    assert upload.url == f"{BASE_URL}/storage/v1/object/images/{path}"
    assert upload.headers["x-upsert"] == "true"
    assert upload.headers["authorization"] == "Bearer service-key"
    assert upload.content == b"PNGDATA"


@pytest.mark.asyncio
async def test_transfer_fails_when_source_download_fails():
    storage = make_storage(lambda request: httpx.Response(404))

    with pytest.raises(StorageTransferFailedError):
        await storage.transfer(SOURCE_URL, uuid4(), uuid4())


@pytest.mark.asyncio
async def test_transfer_reports_rejected_credentials():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url == SOURCE_URL:
            return httpx.Response(200, content=b"PNGDATA")
        return httpx.Response(403, json={"error": "forbidden"})

    storage = make_storage(handler)

    with pytest.raises(StorageTransferFailedError, match="SUPABASE_SERVICE_KEY"):
        await storage.transfer(SOURCE_URL, uuid4(), uuid4())


@pytest.mark.asyncio
async def test_transfer_wraps_network_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    storage = make_storage(handler)

    with pytest.raises(StorageTransferFailedError, match="Network error"):
        await storage.transfer(SOURCE_URL, uuid4(), uuid4())


@pytest.mark.asyncio
async def test_transfer_wraps_malformed_source_url():
    seen = []
    storage = make_storage(lambda request: seen.append(request) or httpx.Response(200))

    with pytest.raises(StorageTransferFailedError, match="Invalid URL"):
        await storage.transfer("http://exa\x00mple.com/img.png", uuid4(), uuid4())

    assert seen == []


@pytest.mark.asyncio
async def test_transfer_wraps_unexpected_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise ValueError("decoder exploded")

    storage = make_storage(handler)

    with pytest.raises(StorageTransferFailedError, match="Unexpected error: decoder exploded"):
        await storage.transfer(SOURCE_URL, uuid4(), uuid4())


@pytest.mark.asyncio
async def test_remove_deletes_object_prefix():
    user_id, job_id = uuid4(), uuid4()
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    storage = make_storage(handler)

    await storage.remove(user_id, job_id)

    [request] = seen
    assert request.method == "DELETE"
    assert request.url == f"{BASE_URL}/storage/v1/object/images"
    assert json.loads(request.content) == {"prefixes": [f"generations/{user_id}/{job_id}.png"]}


@pytest.mark.asyncio
async def test_remove_raises_on_error_status():
    storage = make_storage(lambda request: httpx.Response(500, text="oops"))

    with pytest.raises(StorageTransferFailedError, match="500"):
        await storage.remove(uuid4(), uuid4())


@pytest.mark.asyncio
async def test_remove_wraps_unexpected_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise ValueError("decoder exploded")

    storage = make_storage(handler)

    with pytest.raises(StorageTransferFailedError, match="Unexpected error"):
        await storage.remove(uuid4(), uuid4())
