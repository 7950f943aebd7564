from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TalkMode = Literal["polling", "wait"]
PreambleMode = Literal["always", "disabled"]


class PaneEntry(BaseModel):
    """One row of the pane registry (agent name is the key)."""

    pane: str
    remark: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class AgentConfig(BaseModel):
    deny: List[str] = Field(default_factory=list)
    preamble: str = ""

    model_config = ConfigDict(extra="ignore")


class ConfigDefaults(BaseModel):
    timeout: float = 180.0  # seconds
    poll_interval: float = 1.0  # seconds
    capture_lines: int = 100
    preamble_every: int = Field(default=1, ge=0)  # 0 or 1: every message

    model_config = ConfigDict(extra="ignore")


class LocalSettings(BaseModel):
    mode: Optional[TalkMode] = None
    preamble_mode: Optional[PreambleMode] = None
    preamble_every: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(extra="ignore")
