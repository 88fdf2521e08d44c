"""
tinyapp core — Guest Message Protocol

The four messages exchanged between the host and a sandboxed guest app:

  guest → host   {"type": "ready"}
  host  → guest  {"type": "init", "manifest": {...}, "params": {...}, "session": {...}}
  guest → host   {"type": "update-session", "data": {...}}
  host  → guest  {"type": "session-saved", "success": true|false, "error"?: "..."}

Messages are validated at the boundary. Anything that does not match a known
tag and shape is rejected (parse returns None).

`seq` is an optional correlation number: a guest may put it on
update-session and the host echoes it on the matching session-saved. It is
omitted from the wire when not used.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class ReadyMessage(BaseModel):
    """Guest finished loading and wants its initial state."""

    type: Literal["ready"] = "ready"


class InitMessage(BaseModel):
    """Initial (or replacement) state pushed to the guest."""

    type: Literal["init"] = "init"
    manifest: dict[str, Any] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    session: dict[str, Any] = Field(default_factory=dict)


class UpdateSessionMessage(BaseModel):
    """Guest replaced its session data. `data` is opaque to the host."""

    type: Literal["update-session"] = "update-session"
    data: dict[str, Any]
    seq: int | None = None


class SessionSavedMessage(BaseModel):
    """Outcome of persisting one update-session."""

    type: Literal["session-saved"] = "session-saved"
    success: bool
    error: str | None = None
    seq: int | None = None


GuestMessage = Annotated[
    ReadyMessage | InitMessage | UpdateSessionMessage | SessionSavedMessage,
    Field(discriminator="type"),
]

# Messages a guest is allowed to send. init and session-saved only flow host → guest.
INBOUND_TYPES: set[str] = {"ready", "update-session"}

_adapter: TypeAdapter[GuestMessage] = TypeAdapter(GuestMessage)


def parse_guest_message(data: Any) -> GuestMessage | None:
    """Validate a raw structured message. Returns None for anything unknown or malformed."""
    if not isinstance(data, dict):
        return None
    try:
        return _adapter.validate_python(data)
    except ValidationError:
        return None


_OPTIONAL_FIELDS = ("error", "seq")


def dump_message(message: BaseModel) -> dict[str, Any]:
    """Wire form: plain dict. Optional top-level fields are dropped when unset; payloads pass through untouched."""
    wire = message.model_dump()
    for key in _OPTIONAL_FIELDS:
        if key in wire and wire[key] is None:
            del wire[key]
    return wire
