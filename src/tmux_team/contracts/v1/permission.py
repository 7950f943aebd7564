from __future__ import annotations

import re
from typing import FrozenSet, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Resource, action and field names share the token alphabet of the pattern grammar.
TOKEN_RE = re.compile(r"[A-Za-z0-9_]+")

ActorSource = Literal["pane", "env", "default"]
FieldMode = Literal["none", "wildcard", "explicit"]

HUMAN = "human"


class PermissionCheck(BaseModel):
    """The operation being requested: resource + action (+ fields touched)."""

    resource: str
    action: str
    fields: FrozenSet[str] = Field(default_factory=frozenset)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("resource", "action")
    @classmethod
    def _token(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("must not be empty")
        if not TOKEN_RE.fullmatch(s):
            raise ValueError(f"invalid token: {s!r}")
        return s

    @field_validator("fields")
    @classmethod
    def _field_tokens(cls, v: FrozenSet[str]) -> FrozenSet[str]:
        for f in v:
            if not TOKEN_RE.fullmatch(f):
                raise ValueError(f"invalid field name: {f!r}")
        return v

    def sorted_fields(self) -> List[str]:
        return sorted(self.fields)


class DenyRule(BaseModel):
    """A deny pattern parsed once at config-load time.

    mode:
    - none: no parentheses, blocks the whole action
    - wildcard: `(*)`, blocks any usage that touches at least one field
    - explicit: `(a,b)`, blocks usages touching any listed field
    """

    raw: str
    resource: str = ""
    action: str = ""
    mode: FieldMode = "none"
    fields: FrozenSet[str] = Field(default_factory=frozenset)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def valid(self) -> bool:
        return bool(self.resource and self.action)


class ActorResolution(BaseModel):
    actor: str
    source: ActorSource
    warning: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class PermissionResult(BaseModel):
    allowed: bool
    actor: str
    source: ActorSource
    warning: Optional[str] = None
    path: str = ""
    denied_by: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    def describe(self) -> str:
        verdict = "allowed" if self.allowed else "denied"
        line = f"{self.actor} (via {self.source}) {verdict}: {self.path}"
        if self.denied_by:
            line += f" [deny: {', '.join(self.denied_by)}]"
        if self.warning:
            line += f" ({self.warning})"
        return line
