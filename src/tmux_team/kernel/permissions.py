from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..contracts.v1 import HUMAN, PermissionCheck, PermissionResult
from .config import ResolvedConfig
from .identity import Invocation, PaneLocator, resolve_actor
from .patterns import build_permission_path, matching_rules

logger = logging.getLogger("tmux_team.permissions")


def check_permission(
    config: ResolvedConfig,
    check: PermissionCheck,
    invocation: Optional[Invocation] = None,
    *,
    locate: Optional[PaneLocator] = None,
) -> PermissionResult:
    """Decide whether the actor behind this invocation may perform `check`.

    Deny lists apply to agents only; the human operator is always allowed.
    Rules are OR-combined: any matching rule denies.
    """
    resolution = resolve_actor(config.pane_registry, invocation, locate=locate)
    path = build_permission_path(check)

    denied_by = []
    if resolution.actor != HUMAN:
        denied_by = [r.raw for r in matching_rules(config.rules_for(resolution.actor), check)]

    result = PermissionResult(
        allowed=not denied_by,
        actor=resolution.actor,
        source=resolution.source,
        warning=resolution.warning,
        path=path,
        denied_by=denied_by,
    )
    if not result.allowed:
        logger.info(
            "permission denied: %s cannot perform %s",
            result.actor,
            path,
            extra={"actor": result.actor, "source": result.source, "permission": path},
        )
    return result


def _check(resource: str, action: str, fields: Iterable[str] = ()) -> PermissionCheck:
    return PermissionCheck(resource=resource, action=action, fields=frozenset(fields))


class PermissionChecks:
    """Constructors for the checks the CLI issues."""

    @staticmethod
    def list(resource: str) -> PermissionCheck:
        return _check(resource, "list")

    @staticmethod
    def show(resource: str) -> PermissionCheck:
        return _check(resource, "show")

    @staticmethod
    def create(resource: str) -> PermissionCheck:
        return _check(resource, "create")

    @staticmethod
    def update(resource: str, fields: Iterable[str] = ()) -> PermissionCheck:
        return _check(resource, "update", fields)

    @staticmethod
    def delete(resource: str) -> PermissionCheck:
        return _check(resource, "delete")

    @staticmethod
    def read(resource: str) -> PermissionCheck:
        return _check(resource, "read")

    # Task operations
    @staticmethod
    def task_list() -> PermissionCheck:
        return _check("task", "list")

    @staticmethod
    def task_show() -> PermissionCheck:
        return _check("task", "show")

    @staticmethod
    def task_create() -> PermissionCheck:
        return _check("task", "create")

    @staticmethod
    def task_update(fields: Iterable[str]) -> PermissionCheck:
        return _check("task", "update", fields)

    @staticmethod
    def task_delete() -> PermissionCheck:
        return _check("task", "delete")

    # Milestone operations
    @staticmethod
    def milestone_list() -> PermissionCheck:
        return _check("milestone", "list")

    @staticmethod
    def milestone_create() -> PermissionCheck:
        return _check("milestone", "create")

    @staticmethod
    def milestone_update(fields: Iterable[str]) -> PermissionCheck:
        return _check("milestone", "update", fields)

    @staticmethod
    def milestone_delete() -> PermissionCheck:
        return _check("milestone", "delete")

    # Doc operations
    @staticmethod
    def doc_read() -> PermissionCheck:
        return _check("doc", "read")

    @staticmethod
    def doc_update() -> PermissionCheck:
        return _check("doc", "update")

    # Team operations
    @staticmethod
    def team_create() -> PermissionCheck:
        return _check("team", "create")

    @staticmethod
    def team_list() -> PermissionCheck:
        return _check("team", "list")

    # Log operations
    @staticmethod
    def log_read() -> PermissionCheck:
        return _check("log", "read")
