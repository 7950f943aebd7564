from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...util.time import utc_now_iso

ItemStatus = Literal["pending", "in_progress", "done"]


class Team(BaseModel):
    id: str
    name: str
    window_id: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)

    model_config = ConfigDict(extra="ignore")


class Milestone(BaseModel):
    id: str
    name: str
    status: ItemStatus = "pending"
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    model_config = ConfigDict(extra="ignore")


class Task(BaseModel):
    id: str
    title: str
    milestone: Optional[str] = None
    status: ItemStatus = "pending"
    assignee: Optional[str] = None
    doc_path: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    model_config = ConfigDict(extra="ignore")


class BoardEvent(BaseModel):
    """One line of a team's events.jsonl."""

    event: str
    id: str = ""
    actor: str
    ts: str = Field(default_factory=utc_now_iso)
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")
