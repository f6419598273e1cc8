import httpx
import pytest
import pytest_asyncio

from core.cache import CacheManager
from core.config import Settings
from services.duplicate_check import (
    DuplicateChecker,
    DuplicateCheckError,
    InvalidURLError,
    display_url,
    normalize_website_url,
)
from services.supabase import SupabaseError

TOOL_ROW = {
    "id": "7f1c",
    "name": "Speckle",
    "tagline": None,
    "website_url": "speckle.systems",
    "status": "published",
    "logo_url": None,
    "created_at": "2024-05-01T10:00:00Z",
    "categories": ["bim"],
}


class FakePostgrest:
    def __init__(self, rows=None, status=200):
        self.rows = rows or []
        self.status = status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json={"message": "relation does not exist"})
        wanted = request.url.params.get("website_url")
        return httpx.Response(200, json=[r for r in self.rows if f"eq.{r['website_url']}" == wanted])


@pytest_asyncio.fixture
async def make_checker(settings):
    clients = []

    def factory(backend, config=None):
        client = httpx.AsyncClient(transport=httpx.MockTransport(backend))
        clients.append(client)
        return DuplicateChecker(CacheManager(), config or settings, http_client=client)

    yield factory
    for client in clients:
        await client.aclose()


@pytest.mark.parametrize("raw,expected", [
    ("https://www.Speckle.systems/", "speckle.systems"),
    ("speckle.systems", "speckle.systems"),
    ("http://app.speckle.systems/docs/?ref=x#top", "app.speckle.systems/docs"),
    ("  WWW.example.com/Tools  ", "example.com/tools"),
    ("localhost", "localhost"),
])
def test_normalize_website_url(raw, expected):
    assert normalize_website_url(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "ab", "nodot", "https://"])
def test_normalize_rejects_invalid_urls(raw):
    with pytest.raises(InvalidURLError):
        normalize_website_url(raw)


def test_display_url():
    assert display_url("https://www.example.com/") == "www.example.com"
    assert display_url("example.com/pricing") == "example.com/pricing"
    assert display_url("nodot") == "nodot"


@pytest.mark.asyncio
async def test_existing_tool_is_found_and_cached(make_checker):
    backend = FakePostgrest(rows=[TOOL_ROW])
    checker = make_checker(backend)

    first = await checker.check("https://www.speckle.systems/")
    second = await checker.check("SPECKLE.systems")

    assert first["exists"] is True
    assert first["cached"] is False
    assert first["tool"]["name"] == "Speckle"
    assert first["tool"]["tagline"] == ""
    assert first["normalized_url"] == "speckle.systems"

    assert second["cached"] is True
    assert second["tool"] == first["tool"]
    assert len(backend.requests) == 1

    request = backend.requests[0]
    assert request.url.path == "/rest/v1/tools"
    assert request.url.params["limit"] == "1"
    assert request.headers["apikey"] == "service-key"


@pytest.mark.asyncio
async def test_unknown_url_result_is_cached(make_checker):
    backend = FakePostgrest(rows=[TOOL_ROW])
    checker = make_checker(backend)

    assert (await checker.check("new-tool.io"))["exists"] is False
    again = await checker.check("https://new-tool.io")

    assert again["exists"] is False
    assert again["tool"] is None
    assert again["cached"] is True
    assert len(backend.requests) == 1


@pytest.mark.asyncio
async def test_forget_forces_fresh_lookup(make_checker):
    backend = FakePostgrest()
    checker = make_checker(backend)

    await checker.check("speckle.systems")
    backend.rows.append(TOOL_ROW)
    assert await checker.forget("https://speckle.systems") == 1

    assert (await checker.check("speckle.systems"))["exists"] is True
    assert len(backend.requests) == 2


@pytest.mark.asyncio
async def test_database_errors_are_not_cached(make_checker):
    backend = FakePostgrest(status=500)
    checker = make_checker(backend)

    with pytest.raises(SupabaseError):
        await checker.check("speckle.systems")

    backend.status = 200
    backend.rows.append(TOOL_ROW)
    assert (await checker.check("speckle.systems"))["exists"] is True


@pytest.mark.asyncio
async def test_missing_configuration(make_checker):
    checker = make_checker(FakePostgrest(), Settings(_env_file=None))

    with pytest.raises(DuplicateCheckError):
        await checker.check("speckle.systems")
