"""
Template lifecycle states and the observable store snapshot.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from deskboard.identifiers import PendingId
from deskboard.models import Template


class TemplateStatus(str, Enum):
    FRESH = "fresh"          # exists only in memory, never saved
    CREATING = "creating"    # create call in flight, temporary id
    SAVED = "saved"
    HIDDEN = "hidden"        # soft-deleted, displayOrder == -1


def template_status(template: Template) -> TemplateStatus:
    if isinstance(template.ref, PendingId):
        return TemplateStatus.CREATING
    if not template.saved:
        return TemplateStatus.FRESH
    if template.hidden:
        return TemplateStatus.HIDDEN
    return TemplateStatus.SAVED


class StoreSnapshot(BaseModel):
    """What the UI shell renders: the list, the active pointer, loading and error."""
    templates: List[Template] = Field(default_factory=list)
    active_template_id: str = ""
    is_loading: bool = False
    error: Optional[str] = None
