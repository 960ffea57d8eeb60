"""
Template identifiers.

A template id is one of three shapes:

* ``DurableId``  - assigned by the remote service, the only kind that may be
  sent over the wire.
* ``PendingId``  - ``temp-...``, held by an optimistic entry while its create
  call is in flight.
* ``LocalId``    - ``fresh-...``, a template that has never been saved.

Ids travel through the models and the HTTP surface as plain strings;
``parse_template_id`` recovers the tagged form.
"""

import time
from dataclasses import dataclass
from typing import Union

from deskboard.errors import TemplateStillInitializing

PENDING_PREFIX = "temp-"
LOCAL_PREFIX = "fresh-"


@dataclass(frozen=True)
class DurableId:
    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class PendingId:
    token: str

    def __str__(self) -> str:
        return f"{PENDING_PREFIX}{self.token}"


@dataclass(frozen=True)
class LocalId:
    token: str

    def __str__(self) -> str:
        return f"{LOCAL_PREFIX}{self.token}"


TemplateRef = Union[DurableId, PendingId, LocalId]


_last_token = 0


def _token() -> str:
    """Microsecond timestamp, bumped when two ids are minted in the same microsecond."""
    global _last_token
    now = time.time_ns() // 1000
    _last_token = now if now > _last_token else _last_token + 1
    return str(_last_token)


def new_pending_id() -> PendingId:
    return PendingId(_token())


def new_local_id() -> LocalId:
    return LocalId(_token())


def parse_template_id(raw: Union[str, int, TemplateRef]) -> TemplateRef:
    """Classify a raw id. Anything that is neither prefixed nor an integer is local."""
    if isinstance(raw, (DurableId, PendingId, LocalId)):
        return raw
    if isinstance(raw, int):
        return DurableId(raw)
    text = str(raw).strip()
    if text.startswith(PENDING_PREFIX):
        return PendingId(text[len(PENDING_PREFIX):])
    if text.startswith(LOCAL_PREFIX):
        return LocalId(text[len(LOCAL_PREFIX):])
    try:
        return DurableId(int(text))
    except ValueError:
        return LocalId(text)


def require_durable(raw: Union[str, int, TemplateRef]) -> int:
    """Return the numeric server id or raise ``TemplateStillInitializing``."""
    ref = parse_template_id(raw)
    if not isinstance(ref, DurableId):
        raise TemplateStillInitializing(str(raw))
    return ref.value
