import json
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from tinydb.storages import MemoryStorage

from deskboard.cache_store import CacheStore
from deskboard.credentials import StaticCredentials
from deskboard.gateway import TemplateGateway
from deskboard.store import TemplateStore

BASE_URL = "https://api.test/templates"


def external_template(template_id: int, name: str, template_type: str = "g31", display_order: int = 1, **extra) -> Dict[str, Any]:
    record = {
        "CustomDashboardID": template_id,
        "TemplateName": name,
        "UpdatedOn": "2024-05-01T10:00:00",
        "IsFavorite": 0,
        "isFreeFloating": 0,
        "icon": "Star",
        "isActiveTab": 0,
        "DisplayOrder": display_order,
        "templateType": template_type,
        "layoutType": "grid",
    }
    record.update(extra)
    return record


def external_widget(widget_id: int, title: str, position: Optional[str] = None, **extra) -> Dict[str, Any]:
    record = {
        "CustomDashboardWidgetID": widget_id,
        "WidgetTitle": title,
        "Module": "Forex",
        "Symbols": "EURUSD",
        "AdditionalSettings": "selectAll",
        "TopPos": 0,
        "LeftPos": 0,
        "Height": 300,
        "Width": 400,
    }
    if position is not None:
        record["position"] = position
    record.update(extra)
    return record


class FakeBackend:
    """
    In-memory stand-in for the remote template service, served through
    httpx.MockTransport. Every request is recorded as (method, endpoint, body).
    """

    def __init__(self):
        self.templates: List[Dict[str, Any]] = []
        self.widgets: Dict[int, List[Dict[str, Any]]] = {}
        self.requests: List[tuple] = []
        self.overrides: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.next_id = 100

    def calls(self, endpoint: str) -> List[tuple]:
        return [r for r in self.requests if r[1] == endpoint]

    def bodies(self, endpoint: str) -> List[Any]:
        return [r[2] for r in self.calls(endpoint)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, endpoint, body))

        override = self.overrides.get(endpoint)
        if override is not None:
            return override(request)

        if endpoint == "getTemplatesByUserWeb":
            return httpx.Response(200, json={"Status": "Success", "Templates": self.templates})
        if endpoint == "getWidgetsByTemplateWeb":
            return httpx.Response(200, json={"Status": "Success", "Widgets": self.widgets.get(body["templateId"], [])})
        if endpoint == "createNewTemplateWithWidgetsWeb":
            self.next_id += 1
            self.templates.append(
                external_template(self.next_id, body["TemplateName"], body["templateType"], body["displayOrder"])
            )
            return httpx.Response(
                200,
                json={"Status": "Success", "Message": "Template created successfully", "templateId": self.next_id},
            )
        if endpoint == "createDetailsTemplateWeb":
            self.next_id += 1
            template_id = self.next_id
            self.templates.append(
                external_template(template_id, body["symbol"], "g34", body["displayOrder"], layoutType="Details")
            )
            self.widgets[template_id] = [
                external_widget(template_id * 10 + i, title, CustomDashboardID=template_id)
                for i, title in enumerate(["Price Chart", "Information"], start=1)
            ]
            return httpx.Response(200, json={"Status": "Success", "Widgets": self.widgets[template_id]})
        if endpoint == "addWidgetToTemplateWeb":
            self.next_id += 1
            return httpx.Response(
                200,
                json={"Status": "Success", "Message": "Widget added", "CustomDashboardWidgetID": self.next_id},
            )
        return httpx.Response(200, json={"Status": "Success", "Message": "OK"})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def http_client(backend):
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend.handler)) as client:
        yield client


@pytest.fixture
def cache():
    store = CacheStore(storage=MemoryStorage)
    yield store
    store.close()


@pytest.fixture
def credentials():
    return StaticCredentials("test-token")


@pytest.fixture
def gateway(http_client, credentials, cache):
    return TemplateGateway(BASE_URL, credentials, cache, client=http_client, cache_clear_key="clear-key")


@pytest.fixture
def symbols():
    validator = MagicMock()
    validator.is_reserved = AsyncMock(return_value=False)
    return validator


@pytest.fixture
def store(gateway, credentials, cache, symbols):
    return TemplateStore(gateway, credentials, cache, symbols=symbols)
