from __future__ import annotations

from .agent import AgentConfig, ConfigDefaults, LocalSettings, PaneEntry, PreambleMode, TalkMode
from .board import BoardEvent, ItemStatus, Milestone, Task, Team
from .permission import (
    HUMAN,
    ActorResolution,
    ActorSource,
    DenyRule,
    FieldMode,
    PermissionCheck,
    PermissionResult,
)

__all__ = [
    "HUMAN",
    "ActorResolution",
    "ActorSource",
    "AgentConfig",
    "BoardEvent",
    "ConfigDefaults",
    "DenyRule",
    "FieldMode",
    "ItemStatus",
    "LocalSettings",
    "Milestone",
    "PaneEntry",
    "PermissionCheck",
    "PermissionResult",
    "PreambleMode",
    "TalkMode",
    "Task",
    "Team",
]
