"""
Wire models for the remote template service.

Field names on the wire are PascalCase (with a few camelCase stragglers);
the models expose snake_case attributes and serialize back by alias.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

SUCCESS = "Success"


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ── Templates ─────────────────────────────────────────

class ExternalTemplate(WireModel):
    custom_dashboard_id: int = Field(alias="CustomDashboardID")
    template_name: str = Field(alias="TemplateName")
    updated_on: Optional[str] = Field(default=None, alias="UpdatedOn")
    is_favorite: int = Field(default=0, alias="IsFavorite")
    is_free_floating: int = Field(default=0, alias="isFreeFloating")
    icon: Optional[str] = None
    is_active_tab: int = Field(default=0, alias="isActiveTab")
    display_order: Optional[int] = Field(default=None, alias="DisplayOrder")
    template_type: str = Field(default="", alias="templateType")
    layout_type: Optional[str] = Field(default=None, alias="layoutType")
    filled_areas: Optional[str] = Field(default=None, alias="filledAreas")


class TemplatesEnvelope(WireModel):
    status: str = Field(alias="Status")
    templates: List[ExternalTemplate] = Field(alias="Templates")

    def find(self, template_id: int) -> Optional[ExternalTemplate]:
        for t in self.templates:
            if t.custom_dashboard_id == template_id:
                return t
        return None


# ── Widgets ───────────────────────────────────────────

class ExternalWidget(WireModel):
    custom_dashboard_widget_id: Optional[int] = Field(default=None, alias="CustomDashboardWidgetID")
    # getUserCustomDashboardsWeb spells the id differently
    widget_id: Optional[int] = Field(default=None, alias="widgetId")
    custom_dashboard_id: Optional[int] = Field(default=None, alias="CustomDashboardID")
    widget_title: str = Field(alias="WidgetTitle")
    module: str = Field(default="", alias="Module")
    symbols: str = Field(default="", alias="Symbols")
    additional_settings: str = Field(default="", alias="AdditionalSettings")
    top_pos: float = Field(default=0, alias="TopPos")
    left_pos: float = Field(default=0, alias="LeftPos")
    height: float = Field(default=0, alias="Height")
    width: float = Field(default=0, alias="Width")
    position: Optional[str] = None
    z_index: Optional[int] = Field(default=None, alias="zIndex")
    custom_tabs_id: Optional[int] = Field(default=None, alias="CustomTabsID")
    access_status: Optional[str] = Field(default=None, alias="accessStatus")

    @property
    def resolved_id(self) -> Optional[int]:
        if self.custom_dashboard_widget_id is not None:
            return self.custom_dashboard_widget_id
        return self.widget_id


class WidgetsEnvelope(WireModel):
    status: str = Field(alias="Status")
    widgets: List[ExternalWidget] = Field(alias="Widgets")


# ── Requests ──────────────────────────────────────────

class WidgetPlacement(WireModel):
    """One widget in a create-template request."""
    widget_title: str = Field(alias="WidgetTitle")
    module: str = Field(default="", alias="Module")
    symbols: str = Field(default="", alias="Symbols")
    additional_settings: str = Field(default="", alias="AdditionalSettings")
    top_pos: float = Field(default=500, alias="TopPos")
    left_pos: float = Field(default=50, alias="LeftPos")
    height: float = Field(default=300, alias="Height")
    width: float = Field(default=400, alias="Width")
    position: str = "absolute"
    z_index: int = Field(default=10, alias="zIndex")


class CreateTemplateRequest(WireModel):
    template_name: str = Field(alias="TemplateName")
    widgets: List[WidgetPlacement] = Field(default_factory=list, alias="Widgets")
    template_type: str = Field(alias="templateType")
    layout_type: str = Field(alias="layoutType")
    filled_areas: str = Field(default="", alias="filledAreas")
    is_favorite: bool = Field(default=False, alias="isFavorite")
    display_order: int = Field(alias="displayOrder")
    is_free_floating: bool = Field(default=False, alias="isFreeFloating")
    icon: str = "Star"
    is_active_tab: bool = Field(default=False, alias="isActiveTab")


class AddWidgetRequest(WireModel):
    template_id: int = Field(alias="TemplateId")
    widget_title: List[str] = Field(alias="WidgetTitle")
    module: str = Field(default="", alias="Module")
    symbols: str = Field(default="", alias="Symbols")
    additional_settings: str = Field(alias="AdditionalSettings")
    top_pos: float = Field(default=500, alias="TopPos")
    left_pos: float = Field(default=50, alias="LeftPos")
    height: float = Field(default=300, alias="Height")
    width: float = Field(default=400, alias="Width")
    position: str = "absolute"
    z_index: int = Field(default=10, alias="zIndex")
    custom_tabs_id: Optional[int] = Field(default=None, alias="CustomTabsID")


class TemplateFieldsUpdate(BaseModel):
    """Patchable template fields; only the ones set are sent."""
    template_name: Optional[str] = Field(default=None, serialization_alias="templateName")
    display_order: Optional[int] = Field(default=None, serialization_alias="displayOrder")
    is_favorite: Optional[bool] = Field(default=None, serialization_alias="isFavorite")
    template_type: Optional[str] = Field(default=None, serialization_alias="templateType")
    layout_type: Optional[str] = Field(default=None, serialization_alias="layoutType")
    filled_areas: Optional[str] = Field(default=None, serialization_alias="filledAreas")
    is_free_floating: Optional[bool] = Field(default=None, serialization_alias="isFreeFloating")
    icon: Optional[str] = None
    is_active_tab: Optional[bool] = Field(default=None, serialization_alias="isActiveTab")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class WidgetFieldsUpdate(BaseModel):
    """Patchable widget fields; only the ones set are sent."""
    widget_title: Optional[str] = Field(default=None, serialization_alias="widgetTitle")
    module: Optional[str] = None
    symbols: Optional[str] = None
    top_pos: Optional[float] = Field(default=None, serialization_alias="topPos")
    left_pos: Optional[float] = Field(default=None, serialization_alias="leftPos")
    height: Optional[float] = None
    width: Optional[float] = None
    position: Optional[str] = None
    z_index: Optional[int] = Field(default=None, serialization_alias="zIndex")
    additional_settings: Optional[str] = Field(default=None, serialization_alias="additionalSettings")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
