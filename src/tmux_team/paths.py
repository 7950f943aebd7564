from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

SETTINGS_FILENAME = "config.yaml"
LOCAL_CONFIG_FILENAME = "tmux-team.json"
STATE_FILENAME = "state.json"


def resolve_global_dir(env: Optional[Mapping[str, str]] = None, home: Optional[Path] = None) -> Path:
    """Global settings directory.

    Priority:
    1. $TMUX_TEAM_HOME
    2. $XDG_CONFIG_HOME/tmux-team
    3. ~/.config/tmux-team if it exists (unless only ~/.tmux-team has settings)
    4. ~/.tmux-team if it exists
    5. ~/.config/tmux-team
    """
    e = os.environ if env is None else env
    override = str(e.get("TMUX_TEAM_HOME") or "").strip()
    if override:
        return Path(override).expanduser()

    xdg = str(e.get("XDG_CONFIG_HOME") or "").strip()
    if xdg:
        return Path(xdg).expanduser() / "tmux-team"

    h = home if home is not None else Path.home()
    xdg_path = h / ".config" / "tmux-team"
    legacy_path = h / ".tmux-team"

    if xdg_path.exists():
        if legacy_path.exists():
            legacy_has = (legacy_path / SETTINGS_FILENAME).exists()
            xdg_has = (xdg_path / SETTINGS_FILENAME).exists()
            if legacy_has and not xdg_has:
                return legacy_path
        return xdg_path
    if legacy_path.exists():
        return legacy_path
    return xdg_path


@dataclass(frozen=True)
class Paths:
    global_dir: Path
    settings: Path
    local_config: Path
    state_file: Path

    @property
    def teams_dir(self) -> Path:
        return self.global_dir / "teams"


def resolve_paths(cwd: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Paths:
    gd = resolve_global_dir(env)
    base = cwd if cwd is not None else Path.cwd()
    return Paths(
        global_dir=gd,
        settings=gd / SETTINGS_FILENAME,
        local_config=base / LOCAL_CONFIG_FILENAME,
        state_file=gd / STATE_FILENAME,
    )


def ensure_global_dir(paths: Paths) -> Path:
    paths.global_dir.mkdir(parents=True, exist_ok=True)
    return paths.global_dir
