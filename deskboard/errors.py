"""
Error taxonomy for template and widget operations.
"""

from typing import Optional


class TemplateError(Exception):
    """Base class: every failure carries a human-readable message."""

    # Errors shown inside the dialog that triggered them, never in the global slot
    scoped_to_caller: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthRequired(TemplateError):
    def __init__(self, message: str = "No authentication token available"):
        super().__init__(message)


class NameTooShort(TemplateError):
    def __init__(self, min_length: int = 3):
        self.min_length = min_length
        super().__init__(f"Template name must be at least {min_length} characters")


class DuplicateName(TemplateError):
    scoped_to_caller = True

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f'A template with the name "{name}" already exists. '
            f'Please choose a different name or add a number (e.g., "{name} 2").'
        )


class ReservedNameCollision(TemplateError):
    scoped_to_caller = True

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f'You cannot use the name "{name}" as it conflicts with a system template. '
            "Please choose a different name."
        )


class FavoriteLimitExceeded(TemplateError):
    def __init__(self, limit: int = 8):
        self.limit = limit
        super().__init__(
            f"You can only have a maximum of {limit} favorite templates. "
            "Please remove one before adding another."
        )


class TemplateNotFound(TemplateError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class WidgetNotFound(TemplateError):
    def __init__(self, template_id: str, position: str):
        self.template_id = template_id
        self.position = position
        super().__init__(f"Widget not found at position: {position}")


class TemplateStillInitializing(TemplateError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(
            f'Invalid template ID: "{template_id}". Template may still be initializing. '
            "Please wait a moment and try again."
        )


class TemplateAlreadySaved(TemplateError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__("Template is already saved")


class UpstreamError(TemplateError):
    """The remote service answered with a non-success status or envelope."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TransportError(TemplateError):
    """Network failure or an unparseable response body."""


class CacheCorruption(TemplateError):
    """Raised internally for a malformed cache entry; always self-healed."""

    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"Cache entry '{key}' is invalid: {reason}")
