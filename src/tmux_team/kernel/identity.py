"""Who is really invoking this command?

The pane a command runs in is placed by the human operator, so the pane
registry is the primary identity source. TMT_AGENT_NAME / TMUX_TEAM_ACTOR are
self-reported by the agent process and only advisory.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

from ..contracts.v1 import HUMAN, ActorResolution, PaneEntry
from ..runners import tmux
from ..runners.tmux import PaneCoordinate

logger = logging.getLogger("tmux_team.identity")

# Checked in order; the first non-empty one wins.
ADVISORY_ENV_VARS: Tuple[str, ...] = ("TMT_AGENT_NAME", "TMUX_TEAM_ACTOR")

PaneLocator = Callable[[str], Optional[PaneCoordinate]]
PaneRegistry = Mapping[str, PaneEntry]


@dataclass(frozen=True)
class Invocation:
    advisory: Optional[str] = None
    advisory_var: str = ADVISORY_ENV_VARS[0]
    in_multiplexer: bool = False
    pane_token: str = ""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Invocation":
        e = os.environ if env is None else env
        advisory: Optional[str] = None
        advisory_var = ADVISORY_ENV_VARS[0]
        for name in ADVISORY_ENV_VARS:
            v = str(e.get(name) or "").strip()
            if v:
                advisory, advisory_var = v, name
                break
        return cls(
            advisory=advisory,
            advisory_var=advisory_var,
            in_multiplexer=tmux.in_tmux(e),
            pane_token=str(e.get("TMUX_PANE") or "").strip(),
        )


def build_pane_index(registry: PaneRegistry) -> Dict[str, str]:
    index: Dict[str, str] = {}
    for name, entry in registry.items():
        pane = (entry.pane or "").strip()
        if pane and pane not in index:
            index[pane] = name
    return index


def find_agent_by_pane(registry: PaneRegistry, coordinate: PaneCoordinate) -> Optional[str]:
    index = build_pane_index(registry)
    for alias in coordinate.aliases():
        agent = index.get(alias)
        if agent is not None:
            return agent
    return None


def locate_invoking_pane(invocation: Invocation, locate: Optional[PaneLocator] = None) -> Optional[PaneCoordinate]:
    if not invocation.in_multiplexer or not invocation.pane_token:
        return None
    finder = locate or tmux.pane_coordinate
    return finder(invocation.pane_token)


def resolve_actor(
    registry: PaneRegistry,
    invocation: Optional[Invocation] = None,
    *,
    locate: Optional[PaneLocator] = None,
) -> ActorResolution:
    inv = invocation if invocation is not None else Invocation.from_env()
    advisory = inv.advisory
    coordinate = locate_invoking_pane(inv, locate)

    if coordinate is None:
        res = ActorResolution(actor=advisory, source="env") if advisory else ActorResolution(actor=HUMAN, source="default")
        logger.debug("resolved %s outside a known pane", res.actor, extra={"actor": res.actor, "source": res.source})
        return res

    where = coordinate.index or coordinate.pane_id
    agent = find_agent_by_pane(registry, coordinate)
    if agent is not None:
        if advisory and advisory != agent:
            return ActorResolution(
                actor=agent,
                source="pane",
                warning=(
                    f'Identity mismatch: {inv.advisory_var}="{advisory}" but pane {where} '
                    f'is registered to "{agent}". Using pane identity.'
                ),
            )
        return ActorResolution(actor=agent, source="pane")

    if advisory:
        return ActorResolution(
            actor=advisory,
            source="env",
            warning=f'Unregistered pane: pane {where} is not in registry. Using {inv.advisory_var}="{advisory}".',
        )
    return ActorResolution(actor=HUMAN, source="default")
