"""
Template store: owns the in-memory template list and the active template,
applies optimistic updates and reconciles them with the gateway.

Unsaved templates are edited in memory only. Saved templates go through the
gateway; validation (name rules, favorite quota, initializing ids) runs
before any network call and leaves the list untouched when it fails.
"""

import asyncio
import logging
import re
import time
from typing import List, Optional

from deskboard.cache_store import CacheStore
from deskboard.config_loader import RulesConfig
from deskboard.credentials import CredentialProvider
from deskboard.errors import (
    AuthRequired,
    DuplicateName,
    FavoriteLimitExceeded,
    NameTooShort,
    ReservedNameCollision,
    TemplateAlreadySaved,
    TemplateError,
    TemplateNotFound,
    TemplateStillInitializing,
    WidgetNotFound,
)
from deskboard.gateway import TemplateGateway
from deskboard.identifiers import PendingId, new_local_id, new_pending_id
from deskboard.layouts import FREE_FLOATING, capture_placements, find_widget_at, layout_type_for_api
from deskboard.models import HIDDEN_DISPLAY_ORDER, NO_ACCESS, Template, Widget, WidgetCoordinates, WidgetSettings
from deskboard.single_flight import SingleFlight
from deskboard.store_state import StoreSnapshot
from deskboard.symbols import SymbolValidator
from deskboard.widget_kinds import widget_title
from deskboard.wire import CreateTemplateRequest, TemplateFieldsUpdate, WidgetFieldsUpdate

logger = logging.getLogger(__name__)

UNTITLED = "Untitled Layout"
_UNTITLED_PATTERN = re.compile(r"^Untitled Layout(?:-(\d+))?$")
_LIST_TEMPLATES = "list-templates"


class TemplateStore:
    """
    The UI-facing owner of the template list.

    Failures are raised to the caller. Except for name collisions, which the
    calling dialog shows itself, they are also kept in ``error`` until the
    next successful operation.
    """

    def __init__(
        self,
        gateway: TemplateGateway,
        credentials: CredentialProvider,
        cache: CacheStore,
        symbols: Optional[SymbolValidator] = None,
        rules: Optional[RulesConfig] = None,
    ):
        self.gateway = gateway
        self.credentials = credentials
        self.cache = cache
        self.symbols = symbols
        self.rules = rules or RulesConfig()

        self.templates: List[Template] = []
        self.active_template_id: str = ""
        self.is_loading: bool = False
        self.error: Optional[str] = None
        self._flight = SingleFlight()

    # ── State ─────────────────────────────────────────

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            templates=[t.model_copy(deep=True) for t in self.templates],
            active_template_id=self.active_template_id,
            is_loading=self.is_loading,
            error=self.error,
        )

    def visible_templates(self) -> List[Template]:
        return [t for t in self.templates if t.visible]

    def get_template(self, template_id: str) -> Template:
        for t in self.templates:
            if t.id == template_id:
                return t
        raise TemplateNotFound(template_id)

    def _index_of(self, template_id: str) -> int:
        for i, t in enumerate(self.templates):
            if t.id == template_id:
                return i
        raise TemplateNotFound(template_id)

    def _authenticated(self) -> bool:
        return bool(self.credentials.get_token())

    def _succeeded(self):
        self.error = None

    def _failed(self, error: TemplateError):
        if error.scoped_to_caller:
            logger.info(f"Rejected: {error.message}")
            return
        logger.error(f"{type(error).__name__}: {error.message}")
        self.error = error.message

    def clear_error(self):
        self.error = None

    def set_active_template(self, template_id: str):
        self.get_template(template_id)
        self._activate(template_id)

    def _activate(self, template_id: str):
        self.active_template_id = template_id
        self.cache.set_active_template_id(template_id)

    def _activate_first_visible(self):
        visible = self.visible_templates()
        if visible:
            self._activate(visible[0].id)
        elif self.templates:
            self._activate(self.templates[0].id)

    def reset(self):
        """Drop everything held for the signed-in user (logout)."""
        self.templates = []
        self.active_template_id = ""
        self.error = None
        self.cache.clear_all()
        self.cache.clear_active_template_id()

    # ── Naming ────────────────────────────────────────

    def _fresh_template(self) -> Template:
        return Template(
            id=str(new_local_id()),
            name=UNTITLED,
            layout=self.rules.default_layout,
            saved=False,
            icon=self.rules.default_icon,
            is_favorite=False,
            widgets=[],
        )

    def generate_untitled_name(self) -> str:
        """'Untitled Layout', then 'Untitled Layout-1', '-2', ... using the smallest free suffix."""
        taken = set()
        for t in self.templates:
            m = _UNTITLED_PATTERN.match(t.name)
            if m:
                taken.add(int(m.group(1)) if m.group(1) else 0)
        if 0 not in taken:
            return UNTITLED
        n = 1
        while n in taken:
            n += 1
        return f"{UNTITLED}-{n}"

    async def validate_name(self, name: str, exclude_id: Optional[str] = None):
        """Raise NameTooShort, ReservedNameCollision or DuplicateName."""
        if len(name.strip()) < self.rules.min_name_length:
            raise NameTooShort(self.rules.min_name_length)
        if self.symbols is not None and await self.symbols.is_reserved(name):
            raise ReservedNameCollision(name)
        lowered = name.lower()
        for t in self.templates:
            if t.id != exclude_id and t.name.lower() == lowered:
                raise DuplicateName(name)

    # ── Loading ───────────────────────────────────────

    async def load(
        self,
        preferred_name: Optional[str] = None,
        force_refresh: bool = False,
        skip_loading: bool = False,
        preferred_id: Optional[str] = None,
    ) -> List[Template]:
        """
        Load templates. Concurrent callers share the outstanding load
        instead of starting another one.
        """
        return await self._flight.do(
            _LIST_TEMPLATES,
            lambda: self._load(preferred_name, force_refresh, skip_loading, preferred_id),
        )

    async def _load(
        self,
        preferred_name: Optional[str],
        force_refresh: bool,
        skip_loading: bool,
        preferred_id: Optional[str],
    ) -> List[Template]:
        if not skip_loading:
            self.is_loading = True
        try:
            if not self._authenticated():
                fresh = self._fresh_template()
                self.templates = [fresh]
                self.active_template_id = fresh.id
                return self.templates

            templates = await self.gateway.list_templates(force_refresh=force_refresh)
            self.templates = templates or [self._fresh_template()]
            self._restore_active(preferred_id, preferred_name)
            self._succeeded()
        except TemplateError as e:
            # a failed read falls back to a fresh template
            logger.error(f"Failed to load templates: {e.message}")
            fresh = self._fresh_template()
            self.templates = [fresh]
            self._activate(fresh.id)
        finally:
            self.is_loading = False
        return self.templates

    def _restore_active(self, preferred_id: Optional[str], preferred_name: Optional[str]):
        if preferred_id:
            for t in self.templates:
                if t.id == preferred_id:
                    self._activate(t.id)
                    return
        if preferred_name:
            for t in self.templates:
                if t.name == preferred_name:
                    self._activate(t.id)
                    return

        remembered = self.cache.get_active_template_id()
        if remembered:
            for t in self.templates:
                if t.id == remembered and t.visible:
                    self.active_template_id = remembered
                    return
        self._activate_first_visible()

    async def refresh_all(self, preferred_name: Optional[str] = None, preferred_id: Optional[str] = None) -> List[Template]:
        """Reload from the remote service, bypassing the template list cache."""
        if self._flight.in_flight(_LIST_TEMPLATES):
            await self._flight.wait(_LIST_TEMPLATES)
            return self.templates
        self.cache.clear_templates()
        return await self.load(preferred_name, force_refresh=True, preferred_id=preferred_id)

    async def refresh_template_widgets(self, template_id: str) -> Template:
        """Re-fetch one template's widgets without reloading the whole list."""
        try:
            updated = await self.gateway.refresh_template_widgets(template_id)
        except TemplateError as e:
            self._failed(e)
            raise
        index = self._index_of(template_id)
        self.templates[index] = updated
        self._succeeded()
        return updated

    # ── Create / save ─────────────────────────────────

    def _build_request(
        self,
        template: Template,
        name: str,
        icon: str,
        display_order: Optional[int] = None,
    ) -> CreateTemplateRequest:
        placements, filled_areas = capture_placements(template.widgets, template.layout)
        return CreateTemplateRequest(
            template_name=name,
            widgets=placements,
            template_type=template.layout,
            layout_type=layout_type_for_api(template.layout),
            filled_areas=filled_areas,
            is_favorite=template.is_favorite,
            display_order=display_order or len(self.templates) + 1,
            is_free_floating=template.layout == FREE_FLOATING,
            icon=icon,
            is_active_tab=False,
        )

    async def create_template(
        self,
        name: str,
        layout: str,
        widget_kinds: Optional[List[str]] = None,
        icon: Optional[str] = None,
    ) -> Template:
        """
        Create a template. Signed in, it is inserted optimistically under a
        temporary id and swapped for the server id on success (removed on
        failure). Signed out, it stays a local unsaved template.
        """
        widget_kinds = widget_kinds or []
        template_name = name.strip() or self.generate_untitled_name()
        template_icon = icon or self.rules.default_icon
        try:
            await self.validate_name(template_name)
        except TemplateError as e:
            self._failed(e)
            raise

        stamp = time.time_ns() // 1000
        widgets = [
            Widget(id=f"widget-{stamp}-{i}", name=kind, position=f"area-{i + 1}")
            for i, kind in enumerate(widget_kinds)
        ]

        display_order = len(self.templates) + 1
        if not self._authenticated():
            local = self._fresh_template().model_copy(
                update={
                    "name": template_name,
                    "layout": layout,
                    "layout_type": layout_type_for_api(layout),
                    "icon": template_icon,
                    "display_order": display_order,
                    "widgets": widgets,
                }
            )
            self.templates.append(local)
            self._activate(local.id)
            self._succeeded()
            return local

        optimistic = Template(
            id=str(new_pending_id()),
            name=template_name,
            layout=layout,
            layout_type=layout_type_for_api(layout),
            saved=True,
            icon=template_icon,
            is_favorite=False,
            display_order=display_order,
            widgets=widgets,
        )
        request = self._build_request(optimistic, template_name, template_icon, display_order)
        previous_active = self.active_template_id
        self.templates.append(optimistic)
        self._activate(optimistic.id)

        try:
            result = await self.gateway.create_template(request)
        except TemplateError as e:
            self.templates = [t for t in self.templates if t.id != optimistic.id]
            if self.active_template_id == optimistic.id:
                if any(t.id == previous_active for t in self.templates):
                    self._activate(previous_active)
                else:
                    self._activate_first_visible()
            self._failed(e)
            raise

        self._succeeded()
        if result.template_id is None:
            logger.info(f"No template id in create response, refreshing for '{template_name}'")
            await self.load(template_name, force_refresh=True, skip_loading=True)
            for t in self.templates:
                if t.name == template_name:
                    return t
            return optimistic

        real_id = str(result.template_id)
        for i, t in enumerate(self.templates):
            if t.id == optimistic.id:
                self.templates[i] = t.model_copy(update={"id": real_id})
                break
        if self.active_template_id == optimistic.id:
            self._activate(real_id)
        logger.info(f"[{real_id}] Template created")
        return self.get_template(real_id)

    def _find_symbol_template(self, symbol: str) -> Optional[Template]:
        def bare(name: str) -> str:
            parts = name.split(":")
            return (parts[1] if len(parts) > 1 else name).strip().lower()

        wanted = bare(symbol)
        for t in self.templates:
            if t.name.strip().lower() == symbol.strip().lower() or bare(t.name) == wanted:
                return t
        return None

    async def open_details_template(self, symbol: str) -> Template:
        """
        Show the details template for ``symbol``. An existing one is moved to
        the end of the visible order; otherwise the backend builds a new one
        and the list is reloaded with it active.
        """
        existing = self._find_symbol_template(symbol)
        if existing is not None:
            others = [t.id for t in self.visible_templates() if t.id != existing.id]
            await self.reorder_templates(others + [existing.id])
            self._activate(existing.id)
            logger.info(f"[{existing.id}] Details template for '{symbol}' reopened")
            return existing

        try:
            if not self._authenticated():
                raise AuthRequired("User must be authenticated to create details templates")
            result = await self.gateway.create_details_template(symbol, len(self.templates) + 1)
        except TemplateError as e:
            self._failed(e)
            raise

        self._succeeded()
        preferred_id = str(result.template_id) if result.template_id is not None else None
        await self.load(symbol, force_refresh=True, skip_loading=True, preferred_id=preferred_id)
        if preferred_id is not None and any(t.id == preferred_id for t in self.templates):
            return self.get_template(preferred_id)
        return self.get_template(self.active_template_id)

    async def save_template(self, template_id: str, name: Optional[str] = None, icon: Optional[str] = None) -> Template:
        """Persist an unsaved local template and give it a server id."""
        try:
            if not self._authenticated():
                raise AuthRequired("User must be authenticated to save templates to the server")
            template = self.get_template(template_id)
            if template.saved:
                raise TemplateAlreadySaved(template_id)
            template_name = name or template.name
            template_icon = icon or template.icon or self.rules.default_icon
            await self.validate_name(template_name, exclude_id=template_id)

            request = self._build_request(template, template_name, template_icon)
            result = await self.gateway.create_template(request)
        except TemplateError as e:
            self._failed(e)
            raise

        self._succeeded()
        if result.template_id is None:
            template.saved = True
            await self.load(template_name, force_refresh=True, skip_loading=True)
            for t in self.templates:
                if t.name == template_name:
                    return t
            return template

        real_id = str(result.template_id)
        index = self._index_of(template_id)
        self.templates[index] = template.model_copy(
            update={
                "id": real_id,
                "saved": True,
                "name": template_name,
                "icon": template_icon,
                "display_order": request.display_order,
            }
        )
        if self.active_template_id == template_id:
            self._activate(real_id)
        logger.info(f"[{real_id}] Local template saved")
        return self.templates[index]

    # ── Template fields ───────────────────────────────

    async def rename_template(self, template_id: str, new_name: str) -> Template:
        try:
            template = self.get_template(template_id)
            await self.validate_name(new_name, exclude_id=template_id)
            if template.saved:
                await self.gateway.rename_template(template_id, new_name)
        except TemplateError as e:
            self._failed(e)
            raise
        template.name = new_name
        self._succeeded()
        return template

    async def update_template(
        self,
        template_id: str,
        name: Optional[str] = None,
        icon: Optional[str] = None,
        display_order: Optional[int] = None,
        is_favorite: Optional[bool] = None,
    ) -> Template:
        """Patch name, icon, display order and/or favorite flag."""
        fields = TemplateFieldsUpdate(
            template_name=name,
            icon=icon,
            display_order=display_order,
            is_favorite=is_favorite,
        )
        try:
            template = self.get_template(template_id)
            if name is not None:
                await self.validate_name(name, exclude_id=template_id)
            if is_favorite:
                others = [t for t in self.visible_templates() if t.is_favorite and t.id != template_id]
                if len(others) >= self.rules.favorite_limit:
                    raise FavoriteLimitExceeded(self.rules.favorite_limit)
            if template.saved and fields.to_wire():
                await self.gateway.update_template_fields(template_id, fields)
        except TemplateError as e:
            self._failed(e)
            raise

        if name is not None:
            template.name = name
        if icon is not None:
            template.icon = icon
        if display_order is not None:
            template.display_order = display_order
        if is_favorite is not None:
            template.is_favorite = is_favorite
        self._succeeded()
        return template

    async def set_favorite(self, template_id: str, is_favorite: bool) -> Template:
        return await self.update_template(template_id, is_favorite=is_favorite)

    def _is_last_visible(self, template: Template) -> bool:
        if len(self.templates) <= 1:
            return True
        return template.visible and len(self.visible_templates()) <= 1

    async def hide_template(self, template_id: str) -> bool:
        """Soft-delete. Returns False when the template is the last one left."""
        try:
            template = self.get_template(template_id)
            if self._is_last_visible(template):
                logger.info(f"[{template_id}] Refusing to hide the last template")
                return False
            if template.saved:
                await self.gateway.set_display_order(template_id, HIDDEN_DISPLAY_ORDER)
        except TemplateError as e:
            self._failed(e)
            raise

        template.display_order = HIDDEN_DISPLAY_ORDER
        if self.active_template_id == template_id:
            self._activate_first_visible()
        self._succeeded()
        return True

    async def delete_template(self, template_id: str) -> bool:
        """Hard delete. Returns False when the template is the last one left."""
        try:
            template = self.get_template(template_id)
            if self._is_last_visible(template):
                logger.info(f"[{template_id}] Refusing to delete the last template")
                return False
            if template.saved:
                await self.gateway.delete_template(template_id)
        except TemplateError as e:
            self._failed(e)
            raise

        self.templates = [t for t in self.templates if t.id != template_id]
        if self.active_template_id == template_id:
            self._activate_first_visible()
        self._succeeded()
        return True

    async def reorder_templates(self, ordered_ids: List[str]) -> List[Template]:
        """
        Put ``ordered_ids`` first, numbered 1..n; templates not listed keep
        their relative order after them.
        """
        try:
            ordered = [self.get_template(tid) for tid in ordered_ids]
            await asyncio.gather(*(
                self.gateway.set_display_order(t.id, index + 1)
                for index, t in enumerate(ordered)
                if t.saved
            ))
        except TemplateError as e:
            self._failed(e)
            raise

        for index, t in enumerate(ordered):
            t.display_order = index + 1
        listed = set(ordered_ids)
        self.templates = ordered + [t for t in self.templates if t.id not in listed]
        self._succeeded()
        return self.templates

    # ── Widgets ───────────────────────────────────────

    async def add_widget(
        self,
        template_id: str,
        widget_kind: str,
        position: str,
        title: Optional[str] = None,
        coordinates: Optional[WidgetCoordinates] = None,
        tab_group_id: Optional[int] = None,
    ) -> Widget:
        """Place a widget of ``widget_kind`` at ``position``."""
        try:
            template = self.get_template(template_id)
            if isinstance(template.ref, PendingId):
                raise TemplateStillInitializing(template_id)

            stamp = time.time_ns() // 1000
            if not template.saved:
                widget = Widget(id=f"{template_id}-{widget_kind}-{stamp}", name=widget_kind, position=position)
            else:
                result = await self.gateway.add_widget(
                    template_id,
                    widget_kind,
                    title or widget_title(widget_kind),
                    position=position,
                    coordinates=coordinates,
                    tab_group_id=tab_group_id,
                )
                settings = WidgetSettings(
                    coordinates=coordinates,
                    widget_id=result.widget_id,
                    tab_group_id=tab_group_id,
                    access_status=NO_ACCESS if result.restricted else None,
                )
                widget_id = result.widget_id if result.widget_id is not None else f"{widget_kind}-{stamp}"
                widget = Widget(id=f"{template_id}-{widget_id}", name=widget_kind, position=position, settings=settings)
        except TemplateError as e:
            self._failed(e)
            raise

        template.widgets.append(widget)
        self._succeeded()
        return widget

    async def _locate_server_widget(self, template: Template, widget: Widget) -> Widget:
        """Widgets added before the server reported ids are re-read once by position."""
        if widget.settings.widget_id is not None or not template.saved:
            return widget
        refreshed = await self.refresh_template_widgets(template.id)
        located = find_widget_at(refreshed.widgets, widget.position)
        if located is None or located.settings.widget_id is None:
            raise WidgetNotFound(template.id, widget.position)
        return located

    async def update_widget_fields(self, template_id: str, widget_id: str, updates: WidgetFieldsUpdate) -> Widget:
        try:
            template = self.get_template(template_id)
            widget = self._find_widget_by_id(template, widget_id)
            if template.saved:
                widget = await self._locate_server_widget(template, widget)
                await self.gateway.update_widget_fields(template_id, widget.settings.widget_id, updates)
                template = self.get_template(template_id)
                widget = self._find_widget_by_id(template, widget.id)
        except TemplateError as e:
            self._failed(e)
            raise

        self._apply_widget_updates(widget, updates)
        self._succeeded()
        return widget

    @staticmethod
    def _apply_widget_updates(widget: Widget, updates: WidgetFieldsUpdate):
        settings = widget.settings
        if updates.module is not None:
            settings.module = updates.module
        if updates.symbols is not None:
            settings.symbols = updates.symbols
        if updates.additional_settings is not None:
            settings.additional_settings = updates.additional_settings
        if updates.z_index is not None:
            settings.z_index = updates.z_index
        if updates.position is not None:
            widget.position = updates.position
        if any(v is not None for v in (updates.top_pos, updates.left_pos, updates.width, updates.height)):
            coords = settings.coordinates or WidgetCoordinates()
            if updates.top_pos is not None:
                coords.top = updates.top_pos
            if updates.left_pos is not None:
                coords.left = updates.left_pos
            if updates.width is not None:
                coords.width = updates.width
            if updates.height is not None:
                coords.height = updates.height
            settings.coordinates = coords

    @staticmethod
    def _find_widget_by_id(template: Template, widget_id: str) -> Widget:
        for w in template.widgets:
            if w.id == widget_id or w.numeric_id == str(widget_id):
                return w
        raise WidgetNotFound(template.id, str(widget_id))

    async def remove_widget_at(self, template_id: str, position: str) -> Widget:
        """Remove the widget occupying ``position`` (equivalent cell spellings accepted)."""
        try:
            template = self.get_template(template_id)
            widget = find_widget_at(template.widgets, position)
            if widget is None:
                raise WidgetNotFound(template_id, position)
            if template.saved:
                widget = await self._locate_server_widget(template, widget)
                await self.gateway.remove_widget(template_id, widget.settings.widget_id)
                template = self.get_template(template_id)
        except TemplateError as e:
            self._failed(e)
            raise

        actual_position = widget.position
        template.widgets = [w for w in template.widgets if w.position != actual_position]
        self._succeeded()
        return widget

    async def remove_widget_by_id(self, template_id: str, widget_id: str) -> None:
        """Accepts the numeric server id or the full '{templateId}-{widgetId}' form."""
        numeric = str(widget_id).split("-")[-1]
        try:
            template = self.get_template(template_id)
            if template.saved:
                await self.gateway.remove_widget(template_id, numeric)
        except TemplateError as e:
            self._failed(e)
            raise

        template.widgets = [
            w for w in template.widgets
            if w.numeric_id != numeric and w.id != str(widget_id)
        ]
        self._succeeded()
