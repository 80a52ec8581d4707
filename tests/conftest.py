import asyncio
import io
import os
from typing import Awaitable, Callable, Dict, Iterable, List, Tuple

os.environ.setdefault("AERIAL_IMAGERY_DATABASE_URL", "sqlite://")

import httpx
import pytest
from PIL import Image
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

import aerial_imagery.database as database
import aerial_imagery.services.usage as usage
from aerial_imagery.config import ImageryConfig

Handler = Callable[[httpx.Request], httpx.Response]

TILE_COLOR = (200, 120, 40)


def jpeg_bytes(size: int = 256, color: Tuple[int, int, int] = TILE_COLOR) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (size, size), color=color).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


def token_handler(token: str = "test-token", expires_in: int = 3600, status: int = 200) -> Handler:
    def handle(request: httpx.Request) -> httpx.Response:
        if status != 200:
            return httpx.Response(status, json={"error_description": "invalid client"})
        return httpx.Response(
            200,
            json={
                "access_token": token,
                "token_type": "Bearer",
                "expires_in": expires_in,
                "scope": "imagery",
            },
        )

    return handle


def json_handler(payload: object, status: int = 200) -> Handler:
    def handle(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=payload)

    return handle


def tile_position(request: httpx.Request) -> Tuple[int, int, int]:
    z, x, y = request.url.path.rsplit("/", 3)[1:]
    return int(z), int(x), int(y)


def tile_handler(
    failing: Iterable[Tuple[int, int]] = (), payload: bytes | None = None
) -> Handler:
    failing = set(failing)
    body = payload if payload is not None else jpeg_bytes()

    def handle(request: httpx.Request) -> httpx.Response:
        _, x, y = tile_position(request)
        if (x, y) in failing:
            return httpx.Response(404, text="tile not found")
        return httpx.Response(200, content=body, headers={"Content-Type": "image/jpeg"})

    return handle


def capture_payload(urn: str = "abc", gsd: float = 0.018, max_zoom: int = 21) -> Dict:
    return {
        "captures": [
            {
                "capture": {
                    "urn": "urn:capture:1",
                    "start_date": "2024-03-01",
                    "end_date": "2024-03-02",
                    "labels": ["ortho"],
                },
                "orthos": {
                    "images": [
                        {
                            "urn": urn,
                            "calculated_gsd": {"value": gsd, "units": "METERS"},
                            "zoom_range": {"minimum_zoom_level": 10, "maximum_zoom_level": max_zoom},
                        }
                    ]
                },
            }
        ]
    }


class FakeProviderClient:
    """Scripted stand-in for ``httpx.AsyncClient`` routing requests by path."""

    def __init__(
        self,
        routes: Dict[str, Handler],
        *,
        before_get: Callable[[httpx.Request], Awaitable[None]] | None = None,
    ) -> None:
        self.routes = routes
        self.before_get = before_get
        self.requests: List[httpx.Request] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def post(self, url, *, data=None, json=None, headers=None):
        request = httpx.Request("POST", url, data=data, json=json, headers=headers)
        return await self._dispatch(request)

    async def get(self, url, *, params=None, headers=None):
        request = httpx.Request("GET", url, params=params, headers=headers)
        if self.before_get is not None:
            await self.before_get(request)
        return await self._dispatch(request)

    async def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        await asyncio.sleep(0)
        for fragment, handler in self.routes.items():
            if fragment in request.url.path:
                response = handler(request)
                response.request = request
                return response
        return httpx.Response(404, text=f"no route for {request.url.path}", request=request)

    def requests_to(self, fragment: str) -> List[httpx.Request]:
        return [request for request in self.requests if fragment in request.url.path]


def provider_routes(
    *,
    token: Handler | None = None,
    discovery: Handler | None = None,
    orthomosaics: Handler | None = None,
    tiles: Handler | None = None,
) -> Dict[str, Handler]:
    return {
        "/oauth2/v1/token": token or token_handler(),
        "/discovery/rank/location": discovery or json_handler(capture_payload()),
        "/orthomosaics/search": orthomosaics or json_handler({"orthomosaics": []}),
        "/tiles/": tiles or tile_handler(),
    }


@pytest.fixture
def config() -> ImageryConfig:
    return ImageryConfig(client_id="client-id", client_secret="client-secret")


@pytest.fixture(autouse=True)
def usage_db(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(usage, "_usage_initialized", False)
    yield engine
    engine.dispose()


@pytest.fixture
def unwritable_usage_db(monkeypatch, tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'usage.db'}")
    monkeypatch.setattr(database, "engine", engine)
    yield engine
    engine.dispose()
