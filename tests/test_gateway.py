import httpx
import pytest

from deskboard.cache_store import TEMPLATES_KEY
from deskboard.credentials import StaticCredentials
from deskboard.errors import AuthRequired, DuplicateName, TemplateStillInitializing, TransportError, UpstreamError
from deskboard.gateway import AddWidgetOutcome, TemplateGateway
from deskboard.models import WidgetCoordinates
from deskboard.wire import CreateTemplateRequest, TemplateFieldsUpdate, WidgetFieldsUpdate

from conftest import BASE_URL, external_template, external_widget


def _seed(backend):
    backend.templates = [
        external_template(1, "Morning", "g22", display_order=2, filledAreas="g22_1,g22_2"),
        external_template(2, "Evening", "g31", display_order=1, IsFavorite=1),
    ]
    backend.widgets = {
        1: [external_widget(11, "Price Chart"), external_widget(12, "Supertrend", accessStatus="  No Access ")],
        2: [external_widget(21, "Currency Strength", position="g31_3")],
    }


async def test_list_templates_maps_and_sorts(gateway, backend):
    _seed(backend)
    templates = await gateway.list_templates()

    assert [t.name for t in templates] == ["Evening", "Morning"]
    evening, morning = templates
    assert evening.id == "2"
    assert evening.layout == "3-grid-rows"
    assert evening.is_favorite is True
    assert evening.saved is True
    assert evening.widgets[0].position == "g31_3"

    assert morning.layout == "2-grid-horizontal"
    assert morning.template_type == "g22"
    assert [w.position for w in morning.widgets] == ["g22_1", "g22_2"]
    assert morning.widgets[0].id == "1-11"
    assert morning.widgets[0].name == "price-chart"
    assert morning.widgets[1].settings.access_status == "no access"
    assert morning.widgets[1].settings.restricted


async def test_list_templates_uses_cache(gateway, backend):
    _seed(backend)
    await gateway.list_templates()
    await gateway.list_templates()

    assert len(backend.calls("getTemplatesByUserWeb")) == 1
    assert len(backend.calls("getWidgetsByTemplateWeb")) == 2


async def test_force_refresh_bypasses_template_cache(gateway, backend):
    _seed(backend)
    await gateway.list_templates()
    await gateway.list_templates(force_refresh=True)
    assert len(backend.calls("getTemplatesByUserWeb")) == 2
    # widgets stay cache-first
    assert len(backend.calls("getWidgetsByTemplateWeb")) == 2


async def test_one_failing_widget_fetch_yields_empty_widgets(gateway, backend):
    _seed(backend)

    def widgets(request: httpx.Request) -> httpx.Response:
        if b'"templateId": 1' in request.content:
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"Status": "Success", "Widgets": backend.widgets[2]})

    backend.overrides["getWidgetsByTemplateWeb"] = widgets
    templates = await gateway.list_templates()

    by_name = {t.name: t for t in templates}
    assert by_name["Morning"].widgets == []
    assert len(by_name["Evening"].widgets) == 1


async def test_missing_display_order_sorts_last(gateway, backend):
    backend.templates = [
        external_template(1, "Unordered", display_order=None),
        external_template(2, "Second", display_order=2),
    ]
    templates = await gateway.list_templates()
    assert [t.name for t in templates] == ["Second", "Unordered"]


async def test_no_token_raises_before_network(http_client, cache, backend):
    gateway = TemplateGateway(BASE_URL, StaticCredentials(None), cache, client=http_client)
    with pytest.raises(AuthRequired):
        await gateway.list_templates()
    with pytest.raises(AuthRequired):
        await gateway.delete_template(1)
    assert backend.requests == []


async def test_non_success_envelope_raises_upstream_error(gateway, backend):
    backend.overrides["getTemplatesByUserWeb"] = lambda r: httpx.Response(
        200, json={"Status": "Error", "Message": "Session expired"}
    )
    with pytest.raises(UpstreamError) as exc:
        await gateway.list_templates()
    assert exc.value.message == "Session expired"
    assert TEMPLATES_KEY not in gateway.cache.keys()


async def test_transport_failure_raises_transport_error(gateway, backend):
    def fail(request):
        raise httpx.ConnectError("connection refused", request=request)

    backend.overrides["getTemplatesByUserWeb"] = fail
    with pytest.raises(TransportError):
        await gateway.list_templates()


async def test_create_template_sends_external_code_and_clears_both_tiers(gateway, backend, cache):
    _seed(backend)
    await gateway.list_templates()
    assert len(cache.keys()) == 3

    result = await gateway.create_template(CreateTemplateRequest(
        template_name="Scalping",
        template_type="3-grid-left-large",
        layout_type="grid",
        display_order=3,
    ))

    body = backend.bodies("createNewTemplateWithWidgetsWeb")[0]
    assert body["templateType"] == "g34"
    assert body["TemplateName"] == "Scalping"
    assert result.template_id == backend.next_id
    assert cache.keys() == []


async def test_create_duplicate_name_is_promoted(gateway, backend):
    backend.overrides["createNewTemplateWithWidgetsWeb"] = lambda r: httpx.Response(
        200, json={"Status": "Error", "Message": "You already have a template named Morning"}
    )
    with pytest.raises(DuplicateName):
        await gateway.create_template(CreateTemplateRequest(
            template_name="Morning", template_type="1-grid", layout_type="grid", display_order=1,
        ))


async def test_flag_icon_encoding_failure_retries_with_fallback(gateway, backend):
    responses = [
        httpx.Response(500, text="Incorrect string value: could not encode character"),
        httpx.Response(200, json={"Status": "Success", "Message": "Template created successfully", "templateId": 9}),
    ]
    backend.overrides["createNewTemplateWithWidgetsWeb"] = lambda r: responses.pop(0)

    result = await gateway.create_template(CreateTemplateRequest(
        template_name="Euro Desk", template_type="1-grid", layout_type="grid", display_order=1, icon="🇪🇺",
    ))

    bodies = backend.bodies("createNewTemplateWithWidgetsWeb")
    assert [b["icon"] for b in bodies] == ["🇪🇺", "Globe"]
    assert result.icon_replaced
    assert result.template_id == 9
    assert "Globe" in result.message


async def test_plain_icon_failure_is_not_retried(gateway, backend):
    backend.overrides["createNewTemplateWithWidgetsWeb"] = lambda r: httpx.Response(500, text="Internal error")
    with pytest.raises(UpstreamError) as exc:
        await gateway.create_template(CreateTemplateRequest(
            template_name="Euro Desk", template_type="1-grid", layout_type="grid", display_order=1,
        ))
    assert exc.value.status_code == 500
    assert len(backend.calls("createNewTemplateWithWidgetsWeb")) == 1


async def test_create_details_template_reads_id_from_widgets_and_clears_both_tiers(gateway, backend, cache):
    _seed(backend)
    await gateway.list_templates()

    result = await gateway.create_details_template("EURUSD", 3)

    assert backend.bodies("createDetailsTemplateWeb") == [{"symbol": "EURUSD", "displayOrder": 3}]
    assert result.template_id == backend.next_id
    assert cache.keys() == []


@pytest.mark.parametrize("payload, message", [
    ({"Status": "Error", "Message": "Unknown symbol"}, "Unknown symbol"),
    ({"Widgets": []}, "Failed to create details template"),
])
async def test_create_details_template_rejects_non_success_envelope(gateway, backend, cache, payload, message):
    _seed(backend)
    await gateway.list_templates()
    backend.overrides["createDetailsTemplateWeb"] = lambda r: httpx.Response(200, json=payload)

    with pytest.raises(UpstreamError) as exc:
        await gateway.create_details_template("EURUSD", 3)

    assert exc.value.message == message
    assert TEMPLATES_KEY in cache.keys()


async def test_layout_type_is_normalized(gateway, backend):
    backend.templates = [
        external_template(1, "EURUSD", "g34", display_order=1, layoutType="Details"),
        external_template(2, "Canvas", "free", display_order=2, layoutType=None, isFreeFloating=1),
    ]
    details, canvas = await gateway.list_templates()

    assert details.layout_type == "grid"
    assert canvas.layout_type == "free-floating"


async def test_rename_invalidates_only_that_template(gateway, backend, cache):
    _seed(backend)
    await gateway.list_templates()

    await gateway.rename_template("1", "Morning Desk")

    assert backend.bodies("renameTemplateWeb") == [{"templateId": 1, "newTemplateName": "Morning Desk"}]
    assert cache.get_templates() is None
    assert cache.get_widgets(1) is None
    assert cache.get_widgets(2) is not None


async def test_update_fields_sends_only_set_fields(gateway, backend):
    await gateway.update_template_fields(4, TemplateFieldsUpdate(display_order=3))
    await gateway.set_favorite(4, True)
    assert backend.bodies("updateTemplateFieldsWeb") == [
        {"templateId": 4, "displayOrder": 3},
        {"templateId": 4, "isFavorite": True},
    ]


async def test_delete_purges_every_widget_entry(gateway, backend, cache):
    _seed(backend)
    await gateway.list_templates()

    await gateway.delete_template(1)

    assert backend.calls("deleteTemplateWeb")[0][0] == "DELETE"
    assert cache.keys() == []


async def test_pending_id_is_rejected_without_network(gateway, backend):
    with pytest.raises(TemplateStillInitializing):
        await gateway.add_widget("temp-123", "price-chart", "Price Chart")
    with pytest.raises(TemplateStillInitializing):
        await gateway.rename_template("fresh-5", "Local")
    assert backend.requests == []


async def test_add_widget_fills_kind_defaults(gateway, backend):
    result = await gateway.add_widget(
        7, "supertrend", "Supertrend", position="g22_1", coordinates=WidgetCoordinates(top=10, left=20),
    )

    body = backend.bodies("addWidgetToTemplateWeb")[0]
    assert body["TemplateId"] == 7
    assert body["WidgetTitle"] == ["Supertrend"]
    assert body["Module"] == "Forex"
    assert body["Symbols"] == "EURUSD"
    assert body["AdditionalSettings"] == "4h"
    assert (body["TopPos"], body["LeftPos"], body["Height"], body["Width"]) == (10, 20, 300, 400)
    assert body["position"] == "g22_1"
    assert body["zIndex"] == 10
    assert result.outcome == AddWidgetOutcome.ADDED
    assert result.widget_id == backend.next_id


async def test_add_widget_no_access_is_a_restricted_success(gateway, backend):
    backend.overrides["addWidgetToTemplateWeb"] = lambda r: httpx.Response(
        200, json={"Status": "Success", "Message": "No Access"}
    )
    result = await gateway.add_widget(7, "cot-table-view", "Cot Table View")
    assert result.restricted
    body = backend.bodies("addWidgetToTemplateWeb")[0]
    assert body["AdditionalSettings"] == "EUR|Dealer"
    assert body["position"] == "absolute"


async def test_remove_widget_clears_server_cache_best_effort(gateway, backend):
    backend.overrides["cleanUserWidgetCacheWeb"] = lambda r: httpx.Response(503, text="unavailable")

    await gateway.remove_widget(7, "55")

    method, _, body = backend.calls("removeWidgetByIDWeb")[0]
    assert method == "DELETE"
    assert body == {"templateID": 7, "widgetID": 55}
    assert len(backend.calls("cleanUserWidgetCacheWeb")) == 1


async def test_server_cache_clear_sends_api_key(gateway, backend):
    seen = {}

    def clean(request):
        seen["key"] = request.headers.get("x-api-key")
        return httpx.Response(200, json={"Status": "Success"})

    backend.overrides["cleanUserWidgetCacheWeb"] = clean
    assert await gateway.clear_server_widget_cache() is True
    assert seen["key"] == "clear-key"


async def test_update_widget_fields_payload(gateway, backend):
    await gateway.update_widget_fields(7, 55, WidgetFieldsUpdate(top_pos=12, z_index=14))
    assert backend.bodies("updateWidgetFieldsWeb") == [{"widgetId": 55, "templateId": 7, "topPos": 12, "zIndex": 14}]


async def test_refresh_one_template_skips_list_fetch_when_cached(gateway, backend, cache):
    _seed(backend)
    await gateway.list_templates()
    backend.widgets[2].append(external_widget(22, "Session Ranges", position="g31_1"))

    refreshed = await gateway.refresh_template_widgets("2")

    assert len(backend.calls("getTemplatesByUserWeb")) == 1
    assert [w.name for w in refreshed.widgets] == ["currency-strength", "session-ranges"]
    assert cache.get_widgets(2).widgets[1].widget_title == "Session Ranges"
