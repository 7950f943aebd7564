from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import List, Mapping, Optional

from ..contracts.v1 import Team
from ..paths import Paths
from .board import Board

TEAM_ID_FILENAME = ".tmux-team-id"


def find_current_team_id(cwd: Path, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Nearest .tmux-team-id in cwd or a parent, else $TMUX_TEAM_ID."""
    d = cwd.resolve()
    for candidate in (d, *d.parents):
        p = candidate / TEAM_ID_FILENAME
        if p.is_file():
            tid = p.read_text(encoding="utf-8").strip()
            if tid:
                return tid
    e = os.environ if env is None else env
    return str(e.get("TMUX_TEAM_ID") or "").strip() or None


def board_for(paths: Paths, team_id: str) -> Board:
    return Board(path=paths.teams_dir / team_id)


def create_team(paths: Paths, name: str, *, cwd: Path) -> Team:
    team_id = uuid.uuid4().hex
    team = board_for(paths, team_id).init_team(name)
    (cwd / TEAM_ID_FILENAME).write_text(team_id + "\n", encoding="utf-8")
    return team


def list_teams(paths: Paths) -> List[Team]:
    if not paths.teams_dir.exists():
        return []
    teams: List[Team] = []
    for d in sorted(paths.teams_dir.iterdir()):
        if not d.is_dir():
            continue
        team = Board(path=d).get_team()
        if team is not None:
            teams.append(team)
    teams.sort(key=lambda t: t.created_at)
    return teams
