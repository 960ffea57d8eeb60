"""
Remote template gateway: translates between the internal Template/Widget
model and the remote template service, and keeps the local cache in step.

Every call needs a bearer token from the credential provider; without one
``AuthRequired`` is raised before any network attempt.
"""

import asyncio
import json
import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from deskboard.cache_store import CacheStore
from deskboard.credentials import CredentialProvider
from deskboard.errors import (
    AuthRequired,
    DuplicateName,
    TemplateError,
    TemplateNotFound,
    TransportError,
    UpstreamError,
)
from deskboard.identifiers import require_durable
from deskboard.layouts import from_external, normalize_layout_type, parse_filled_areas, resolve_widget_area, to_external
from deskboard.models import Template, Widget, WidgetCoordinates, WidgetSettings
from deskboard.widget_kinds import canonical_widget_name, defaults_for
from deskboard.wire import (
    SUCCESS,
    AddWidgetRequest,
    CreateTemplateRequest,
    ExternalTemplate,
    ExternalWidget,
    TemplateFieldsUpdate,
    TemplatesEnvelope,
    WidgetFieldsUpdate,
    WidgetsEnvelope,
)

logger = logging.getLogger(__name__)

DUPLICATE_MARKER = "already have a template named"
NO_ACCESS_MESSAGE = "no access"
# Regional indicator symbols (flag emoji) the backend sometimes fails to encode
_FLAG_EMOJI = re.compile("[\U0001F1E0-\U0001F1FF]")
_ENCODING_HINTS = ("encode", "character", "UTF")


class AddWidgetOutcome(str, Enum):
    ADDED = "added"
    ADDED_RESTRICTED = "added_restricted"  # added, but the user's plan does not cover it


class AddWidgetResult(BaseModel):
    outcome: AddWidgetOutcome = AddWidgetOutcome.ADDED
    message: str = ""
    widget_id: Optional[int] = None

    @property
    def restricted(self) -> bool:
        return self.outcome == AddWidgetOutcome.ADDED_RESTRICTED


class CreateResult(BaseModel):
    message: str = ""
    template_id: Optional[int] = None
    icon_replaced: bool = False


def _first_int(data: Dict[str, Any], *keys: str) -> Optional[int]:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


class TemplateGateway:
    """
    Wraps the remote template endpoints. Reads are cache-first; every
    successful mutation invalidates exactly the cache scope it affects.
    """

    def __init__(
        self,
        base_url: str,
        credentials: CredentialProvider,
        cache: CacheStore,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        cache_clear_key: Optional[str] = None,
        fallback_icon: str = "Globe",
        default_icon: str = "Star",
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.cache = cache
        self.cache_clear_key = cache_clear_key
        self.fallback_icon = fallback_icon
        self.default_icon = default_icon
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    # ── Transport ─────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        token = self.credentials.get_token()
        if not token:
            raise AuthRequired()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json; charset=utf-8",
        }

    async def _send(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        headers = self._headers()
        if extra_headers:
            headers.update(extra_headers)
        url = f"{self.base_url}/{endpoint}"
        try:
            if payload is None:
                return await self._client.request(method, url, headers=headers)
            # DELETE endpoints also take a JSON body
            content = json.dumps(payload, ensure_ascii=False).encode("utf-8")
            return await self._client.request(method, url, headers=headers, content=content)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {endpoint} failed: {e}") from e

    @staticmethod
    def _parse(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = json.loads(response.text)
        except ValueError as e:
            raise TransportError("Invalid response format from server") from e
        if not isinstance(data, dict):
            raise TransportError("Invalid response format from server")
        return data

    async def _call(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]], failure: str) -> Dict[str, Any]:
        """Send, reject non-2xx responses and non-success envelopes, return the JSON body."""
        response = await self._send(method, endpoint, payload)
        if not response.is_success:
            raise UpstreamError(f"{failure}: {response.reason_phrase} - {response.text}", response.status_code)
        data = self._parse(response)
        status = data.get("Status")
        if status and status != SUCCESS:
            raise UpstreamError(data.get("Message") or failure, response.status_code)
        return data

    @staticmethod
    def _message(data: Dict[str, Any], default: str) -> str:
        return data.get("message") or data.get("Message") or default

    # ── Reads ─────────────────────────────────────────

    async def _fetch_templates_envelope(self) -> TemplatesEnvelope:
        data = await self._call("POST", "getTemplatesByUserWeb", {}, "Failed to fetch templates")
        try:
            envelope = TemplatesEnvelope.model_validate(data)
        except ValueError as e:
            raise UpstreamError("Failed to fetch templates from API") from e
        if envelope.status != SUCCESS:
            raise UpstreamError("Failed to fetch templates from API")
        self.cache.set_templates(envelope)
        return envelope

    async def list_templates(self, force_refresh: bool = False) -> List[Template]:
        """
        All templates for the user, widgets included, sorted by display order.

        The metadata comes from the cache unless ``force_refresh``; widgets
        always come cache-first per template.
        """
        envelope = None if force_refresh else self.cache.get_templates()
        if envelope is None:
            envelope = await self._fetch_templates_envelope()
            logger.info(f"Fetched {len(envelope.templates)} templates from remote")
        return await self._build_templates(envelope)

    async def _build_templates(self, envelope: TemplatesEnvelope) -> List[Template]:
        results = await asyncio.gather(
            *(self._widgets_or_empty(t.custom_dashboard_id) for t in envelope.templates)
        )
        templates = [self._to_template(t, widgets) for t, widgets in zip(envelope.templates, results)]
        templates.sort(key=lambda t: t.display_order or 999)
        return templates

    async def _widgets_or_empty(self, template_id: int) -> List[ExternalWidget]:
        try:
            return await self.list_widgets(template_id)
        except TemplateError as e:
            # the other templates still load
            logger.error(f"[{template_id}] Failed to fetch widgets: {e.message}")
            return []

    async def list_widgets(self, template_id: int | str, force_refresh: bool = False) -> List[ExternalWidget]:
        """Widgets of one template, cache-first."""
        numeric_id = require_durable(template_id)
        if not force_refresh:
            cached = self.cache.get_widgets(numeric_id)
            if cached is not None:
                return cached.widgets

        data = await self._call("POST", "getWidgetsByTemplateWeb", {"templateId": numeric_id}, "Failed to fetch widgets")
        try:
            envelope = WidgetsEnvelope.model_validate(data)
        except ValueError as e:
            raise UpstreamError("Failed to fetch widgets from API") from e
        if envelope.status != SUCCESS:
            raise UpstreamError("Failed to fetch widgets from API")
        self.cache.set_widgets(numeric_id, envelope)
        return envelope.widgets

    async def refresh_template_widgets(self, template_id: int | str) -> Template:
        """
        Re-fetch one template's widgets, bypassing its widget cache. The
        template list is only fetched when its cache entry is gone.
        """
        numeric_id = require_durable(template_id)
        envelope = self.cache.get_templates()
        if envelope is None:
            envelope = await self._fetch_templates_envelope()

        external = envelope.find(numeric_id)
        if external is None:
            raise TemplateNotFound(str(template_id))

        widgets = await self.list_widgets(numeric_id, force_refresh=True)
        return self._to_template(external, widgets)

    # ── Mapping ───────────────────────────────────────

    def _to_template(self, external: ExternalTemplate, widgets: List[ExternalWidget]) -> Template:
        filled_areas = parse_filled_areas(external.filled_areas)
        template_id = external.custom_dashboard_id
        return Template(
            id=str(template_id),
            name=external.template_name,
            layout=from_external(external.template_type),
            saved=True,
            icon=external.icon or self.default_icon,
            is_favorite=external.is_favorite == 1,
            display_order=external.display_order,
            template_type=external.template_type,
            layout_type=normalize_layout_type(external.layout_type, bool(external.is_free_floating)),
            widgets=[
                self._to_widget(template_id, w, index, external.template_type, filled_areas)
                for index, w in enumerate(widgets)
            ],
            created_at=external.updated_on,
            updated_at=external.updated_on,
        )

    @staticmethod
    def _to_widget(
        template_id: int,
        external: ExternalWidget,
        index: int,
        layout_type: str,
        filled_areas: List[str],
    ) -> Widget:
        access_status = external.access_status.strip().lower() if isinstance(external.access_status, str) else None
        widget_id = external.resolved_id
        return Widget(
            id=f"{template_id}-{widget_id}",
            name=canonical_widget_name(external.widget_title),
            position=resolve_widget_area(external, layout_type, index, filled_areas),
            settings=WidgetSettings(
                module=external.module,
                symbols=external.symbols,
                additional_settings=external.additional_settings,
                coordinates=WidgetCoordinates(
                    top=external.top_pos,
                    left=external.left_pos,
                    width=external.width,
                    height=external.height,
                ),
                z_index=external.z_index,
                widget_id=widget_id,
                tab_group_id=external.custom_tabs_id,
                access_status=access_status or None,
            ),
        )

    # ── Template mutations ────────────────────────────

    async def create_template(self, request: CreateTemplateRequest) -> CreateResult:
        """
        Create a template with its widget placements. When the backend fails
        to encode a flag-emoji icon, retry once with the fallback icon.
        """
        mapped = request.model_copy(update={"template_type": to_external(request.template_type)})
        response = await self._send("POST", "createNewTemplateWithWidgetsWeb", mapped.to_wire())
        icon_replaced = False

        if not response.is_success:
            error_text = response.text
            encoding_failure = response.status_code == 500 or any(h in error_text for h in _ENCODING_HINTS)
            if not (_FLAG_EMOJI.search(request.icon or "") and encoding_failure):
                raise UpstreamError(
                    f"Failed to create template: {response.reason_phrase} - {error_text}", response.status_code
                )
            logger.warning(f"Icon {request.icon!r} rejected by backend, retrying with {self.fallback_icon}")
            retry = mapped.model_copy(update={"icon": self.fallback_icon})
            response = await self._send("POST", "createNewTemplateWithWidgetsWeb", retry.to_wire())
            if not response.is_success:
                raise UpstreamError(
                    f"Failed to create template: {response.reason_phrase} - {response.text}", response.status_code
                )
            icon_replaced = True

        data = self._parse(response)
        if data.get("Status") != SUCCESS:
            message = data.get("Message") or "Failed to create template"
            if DUPLICATE_MARKER in message:
                raise DuplicateName(request.template_name)
            raise UpstreamError(message, response.status_code)

        # a new template changes both tiers
        self.cache.clear_templates()
        self.cache.clear_all_widgets()

        message = data.get("Message") or "Template created successfully"
        if icon_replaced:
            message = f"{message} (Note: Flag emoji was replaced with {self.fallback_icon} icon due to backend limitations)"
        template_id = _first_int(data, "templateId", "TemplateId", "TemplateID", "CustomDashboardID")
        logger.info(f"Template '{request.template_name}' created (id={template_id})")
        return CreateResult(message=message, template_id=template_id, icon_replaced=icon_replaced)

    async def create_details_template(self, symbol: str, display_order: int) -> CreateResult:
        """
        Let the backend build its standard details template for ``symbol``.
        The new template id is read from the first widget it returns.
        """
        data = await self._call(
            "POST",
            "createDetailsTemplateWeb",
            {"symbol": symbol, "displayOrder": display_order},
            "Failed to create details template",
        )
        if data.get("Status") != SUCCESS:
            raise UpstreamError(data.get("Message") or "Failed to create details template")

        self.cache.clear_templates()
        self.cache.clear_all_widgets()

        widgets = data.get("Widgets") or []
        first = widgets[0] if widgets and isinstance(widgets[0], dict) else {}
        template_id = _first_int(first, "CustomDashboardID")
        logger.info(f"Details template for '{symbol}' created (id={template_id})")
        message = self._message(data, "Details template created successfully")
        return CreateResult(message=message, template_id=template_id)

    def _invalidate_template(self, numeric_id: int):
        self.cache.clear_templates()
        self.cache.clear_widgets(numeric_id)

    async def rename_template(self, template_id: int | str, new_name: str) -> str:
        numeric_id = require_durable(template_id)
        try:
            data = await self._call(
                "POST",
                "renameTemplateWeb",
                {"templateId": numeric_id, "newTemplateName": new_name},
                "Failed to rename template",
            )
        except UpstreamError as e:
            if DUPLICATE_MARKER in e.message:
                raise DuplicateName(new_name) from e
            raise
        self._invalidate_template(numeric_id)
        logger.info(f"[{numeric_id}] Renamed to '{new_name}'")
        return self._message(data, "Template renamed successfully")

    async def update_template_fields(self, template_id: int | str, fields: TemplateFieldsUpdate) -> str:
        numeric_id = require_durable(template_id)
        payload = {"templateId": numeric_id, **fields.to_wire()}
        data = await self._call("POST", "updateTemplateFieldsWeb", payload, "Failed to update template fields")
        self._invalidate_template(numeric_id)
        logger.debug(f"[{numeric_id}] Fields updated: {sorted(fields.to_wire())}")
        return self._message(data, "Template fields updated successfully")

    async def set_favorite(self, template_id: int | str, is_favorite: bool) -> str:
        return await self.update_template_fields(template_id, TemplateFieldsUpdate(is_favorite=is_favorite))

    async def set_display_order(self, template_id: int | str, display_order: int) -> str:
        return await self.update_template_fields(template_id, TemplateFieldsUpdate(display_order=display_order))

    async def delete_template(self, template_id: int | str) -> str:
        numeric_id = require_durable(template_id)
        data = await self._call("DELETE", "deleteTemplateWeb", {"templateId": numeric_id}, "Failed to delete template")
        self.cache.clear_templates()
        self.cache.clear_widgets(numeric_id)
        # deleting shifts the implicit order of the remaining templates
        self.cache.clear_all_widgets()
        logger.info(f"[{numeric_id}] Template deleted")
        return self._message(data, "Template deleted successfully")

    # ── Widget mutations ──────────────────────────────

    async def add_widget(
        self,
        template_id: int | str,
        widget_kind: str,
        widget_title: str,
        position: Optional[str] = None,
        coordinates: Optional[WidgetCoordinates] = None,
        tab_group_id: Optional[int] = None,
        module: Optional[str] = None,
        symbols: Optional[str] = None,
        additional_settings: Optional[str] = None,
    ) -> AddWidgetResult:
        """
        Add a widget to a saved template. Kind defaults fill in whatever the
        caller leaves out. A "No Access" success still adds the widget.
        """
        numeric_id = require_durable(template_id)
        defaults = defaults_for(widget_kind)

        request = AddWidgetRequest(
            template_id=numeric_id,
            widget_title=[widget_title],
            module=module if module is not None else defaults.module,
            symbols=symbols if symbols is not None else defaults.symbols,
            additional_settings=additional_settings or defaults.additional_settings,
            position=position or "absolute",
            custom_tabs_id=tab_group_id,
        )
        if coordinates is not None:
            request.top_pos = coordinates.top or 500
            request.left_pos = coordinates.left or 50
            request.height = coordinates.height or 300
            request.width = coordinates.width or 400

        data = await self._call("POST", "addWidgetToTemplateWeb", request.to_wire(), "Failed to add widget to template")
        self._invalidate_template(numeric_id)

        message = self._message(data, "Widget added to template successfully")
        outcome = AddWidgetOutcome.ADDED
        if data.get("Status") == SUCCESS and str(data.get("Message", "")).strip().lower() == NO_ACCESS_MESSAGE:
            outcome = AddWidgetOutcome.ADDED_RESTRICTED
            logger.info(f"[{numeric_id}] Widget '{widget_kind}' added without access")
        widget_id = _first_int(data, "CustomDashboardWidgetID", "widgetId", "WidgetID")
        return AddWidgetResult(outcome=outcome, message=message, widget_id=widget_id)

    async def update_widget_fields(self, template_id: int | str, widget_id: int | str, updates: WidgetFieldsUpdate) -> str:
        numeric_id = require_durable(template_id)
        payload = {"widgetId": int(widget_id), "templateId": numeric_id, **updates.to_wire()}
        data = await self._call("POST", "updateWidgetFieldsWeb", payload, "Failed to update widget fields")
        self._invalidate_template(numeric_id)
        return self._message(data, "Widget fields updated successfully")

    async def remove_widget(self, template_id: int | str, widget_id: int | str) -> str:
        numeric_id = require_durable(template_id)
        data = await self._call(
            "DELETE",
            "removeWidgetByIDWeb",
            {"templateID": numeric_id, "widgetID": int(widget_id)},
            "Failed to remove widget",
        )
        await self.clear_server_widget_cache()
        self._invalidate_template(numeric_id)
        logger.info(f"[{numeric_id}] Widget {widget_id} removed")
        return self._message(data, "Widget removed successfully")

    async def clear_server_widget_cache(self) -> bool:
        """Best-effort server-side widget cache clear; failures are only logged."""
        extra = {"x-api-key": self.cache_clear_key} if self.cache_clear_key else None
        try:
            response = await self._send("DELETE", "cleanUserWidgetCacheWeb", extra_headers=extra)
        except TemplateError as e:
            logger.warning(f"Server widget cache clear failed: {e.message}")
            return False
        if not response.is_success:
            logger.warning(f"Server widget cache clear returned {response.status_code}")
            return False
        return True
