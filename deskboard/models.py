"""
Data models for dashboard templates and the widgets placed in them.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from deskboard.identifiers import TemplateRef, parse_template_id

HIDDEN_DISPLAY_ORDER = -1
NO_ACCESS = "no access"


class WidgetCoordinates(BaseModel):
    """Absolute placement, used by free-floating layouts."""
    top: float = 0
    left: float = 0
    width: float = 0
    height: float = 0


class WidgetSettings(BaseModel):
    """Per-widget settings bag. The additional settings payload is opaque."""
    module: str = ""
    symbols: str = ""
    additional_settings: str = ""
    coordinates: Optional[WidgetCoordinates] = None
    z_index: Optional[int] = None
    widget_id: Optional[int] = Field(default=None, description="Server-side numeric widget id")
    tab_group_id: Optional[int] = Field(default=None, description="CustomTabsID of the tab group")
    access_status: Optional[str] = Field(default=None, description="e.g. 'no access'")

    @property
    def restricted(self) -> bool:
        return self.access_status == NO_ACCESS


class Widget(BaseModel):
    """A placed widget inside a template."""
    id: str = Field(description="'{templateId}-{widgetId}'")
    name: str = Field(description="Canonical widget kind key, e.g. 'price-chart'")
    position: str = Field(description="Grid cell id, 'area-N' or 'absolute'")
    settings: WidgetSettings = Field(default_factory=WidgetSettings)

    @property
    def numeric_id(self) -> Optional[str]:
        """The server widget id, taken from settings or the last id segment."""
        if self.settings.widget_id is not None:
            return str(self.settings.widget_id)
        tail = self.id.split("-")[-1]
        return tail or None


class Template(BaseModel):
    """A named dashboard."""
    id: str
    name: str
    layout: str
    saved: bool = False
    icon: str = "Star"
    is_favorite: bool = False
    display_order: Optional[int] = None
    template_type: Optional[str] = Field(default=None, description="External layout code as received")
    layout_type: str = Field(default="grid", description="'grid' or 'free-floating'")
    widgets: List[Widget] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def ref(self) -> TemplateRef:
        return parse_template_id(self.id)

    @property
    def hidden(self) -> bool:
        return self.display_order == HIDDEN_DISPLAY_ORDER

    @property
    def visible(self) -> bool:
        return not self.hidden
