from __future__ import annotations

import argparse
import json
import os
import re
import secrets
import subprocess
import sys
import time
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, List, Optional, Sequence

from . import __version__
from .contracts.v1 import PermissionCheck
from .kernel.board import Board, parse_status
from .kernel.config import (
    SETTING_CHOICES,
    ConfigParseError,
    ResolvedConfig,
    add_agent,
    clear_agent_preamble,
    clear_local_settings,
    load_config,
    remove_agent,
    save_local_file,
    set_agent_preamble,
    set_global_setting,
    set_local_setting,
    setting_sources,
    update_agent,
    validate_config,
)
from .kernel.identity import Invocation, resolve_actor
from .kernel.patterns import build_permission_path
from .kernel.permissions import PermissionChecks, check_permission
from .kernel.state import bump_message_count, cleanup_state, clear_active_request, set_active_request
from .kernel.teams import board_for, create_team, find_current_team_id, list_teams
from .paths import Paths, resolve_paths
from .runners import tmux
from .util.obslog import setup_root_json_logging


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    CONFIG_MISSING = 2
    PANE_NOT_FOUND = 3
    TIMEOUT = 4
    CONFLICT = 5


@dataclass
class Context:
    args: argparse.Namespace
    paths: Paths
    config: ResolvedConfig
    invocation: Invocation

    @property
    def json(self) -> bool:
        return bool(getattr(self.args, "json", False))


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _info(ctx: Context, msg: str) -> None:
    if not ctx.json:
        print(msg)


def _warn(ctx: Context, msg: str) -> None:
    if not ctx.json:
        print(f"warning: {msg}", file=sys.stderr)


def _fail(ctx: Optional[Context], code: ExitCode, msg: str) -> int:
    if ctx is not None and ctx.json:
        print(json.dumps({"ok": False, "error": {"code": code.name.lower(), "message": msg}}, ensure_ascii=False), file=sys.stderr)
    else:
        print(f"error: {msg}", file=sys.stderr)
    return int(code)


def _table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
    widths = [max([len(h)] + [len(r[i] or "-") for r in rows]) for i, h in enumerate(headers)]
    print("  " + " ".join(h.ljust(w) for h, w in zip(headers, widths)))
    print("  " + " ".join("─" * w for w in widths))
    for r in rows:
        print("  " + " ".join((c or "-").ljust(w) for c, w in zip(r, widths)))


def parse_duration(value: str) -> float:
    """Seconds by default; `ms` and `s` suffixes accepted."""
    m = re.fullmatch(r"(\d+(?:\.\d+)?)(ms|s)?", (value or "").strip(), flags=re.IGNORECASE)
    if m is None:
        raise argparse.ArgumentTypeError(f"invalid time format: {value} (use seconds, or a number with ms/s suffix)")
    num = float(m.group(1))
    if (m.group(2) or "s").lower() == "ms":
        return num / 1000
    return num


def _unknown_agent(ctx: Context, name: str) -> int:
    available = ", ".join(ctx.config.pane_registry) or "none"
    return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"agent '{name}' not found. Available: {available}")


# Pane registry


def cmd_init(ctx: Context) -> int:
    p = ctx.paths.local_config
    if p.exists():
        return _fail(ctx, ExitCode.CONFLICT, f"{p} already exists. Remove it first if you want to reinitialize.")
    save_local_file(ctx.paths, {})
    if ctx.json:
        _print_json({"created": str(p)})
    else:
        _info(ctx, f"Created {p}")
    return 0


def cmd_list(ctx: Context) -> int:
    registry = ctx.config.pane_registry
    if ctx.json:
        _print_json({name: e.model_dump(exclude_none=True) for name, e in registry.items()})
        return 0
    if not registry:
        _info(ctx, "No agents configured. Use 'tmux-team add <name> <pane>' to add one.")
        return 0
    _table(["NAME", "PANE", "REMARK"], [[n, e.pane, e.remark or "-"] for n, e in registry.items()])
    return 0


def cmd_add(ctx: Context) -> int:
    return _add(ctx, ctx.args.name, ctx.args.pane, ctx.args.remark)


def _add(ctx: Context, name: str, pane: str, remark: Optional[str]) -> int:
    if not ctx.paths.local_config.exists():
        save_local_file(ctx.paths, {})
        _info(ctx, f"Created {ctx.paths.local_config}")
    if name in ctx.config.pane_registry:
        return _fail(ctx, ExitCode.CONFLICT, f"agent '{name}' already exists. Use 'tmux-team update' to modify.")
    try:
        entry = add_agent(ctx.paths, name, pane, remark)
    except ValueError as e:
        return _fail(ctx, ExitCode.ERROR, str(e))
    if ctx.json:
        _print_json({"added": name, "pane": entry.pane, "remark": entry.remark})
    else:
        _info(ctx, f"Added agent '{name}' at pane {entry.pane}")
    return 0


def cmd_this(ctx: Context) -> int:
    pane = tmux.current_pane_id() if ctx.invocation.in_multiplexer else None
    if not pane:
        return _fail(ctx, ExitCode.ERROR, "not running inside tmux")
    return _add(ctx, ctx.args.name, pane, ctx.args.remark)


def cmd_panes(ctx: Context) -> int:
    panes = tmux.list_panes()
    registered = {e.pane: n for n, e in ctx.config.pane_registry.items()}
    if ctx.json:
        _print_json([{"pane": p.id, "command": p.command, "suggested_name": p.suggested_name, "registered_as": registered.get(p.id)} for p in panes])
        return 0
    if not panes:
        return _fail(ctx, ExitCode.ERROR, "no tmux panes found. Is tmux running?")
    _table(
        ["PANE", "COMMAND", "SUGGESTED", "REGISTERED"],
        [[p.id, p.command, p.suggested_name or "-", registered.get(p.id, "-")] for p in panes],
    )
    return 0


def cmd_update(ctx: Context) -> int:
    name = ctx.args.name
    if not ctx.args.pane and not ctx.args.remark:
        return _fail(ctx, ExitCode.ERROR, "no updates specified. Use --pane or --remark.")
    try:
        entry = update_agent(ctx.paths, name, pane=ctx.args.pane, remark=ctx.args.remark)
    except KeyError:
        return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"agent '{name}' not found. Use 'tmux-team add' to create.")
    if ctx.json:
        _print_json({"updated": name, **entry.model_dump(exclude_none=True)})
        return 0
    if ctx.args.pane:
        _info(ctx, f"Updated '{name}': pane -> {entry.pane}")
    if ctx.args.remark:
        _info(ctx, f"Updated '{name}': remark updated")
    return 0


def cmd_remove(ctx: Context) -> int:
    try:
        remove_agent(ctx.paths, ctx.args.name)
    except KeyError:
        return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"agent '{ctx.args.name}' not found")
    if ctx.json:
        _print_json({"removed": ctx.args.name})
    else:
        _info(ctx, f"Removed agent '{ctx.args.name}'")
    return 0


# Messaging


def _outgoing(ctx: Context, agent: str, message: str) -> str:
    cfg = ctx.config
    agent_cfg = cfg.agents.get(agent)
    if agent_cfg is None or not agent_cfg.preamble:
        return message
    if cfg.preamble_mode == "disabled" or getattr(ctx.args, "no_preamble", False):
        return message
    count = bump_message_count(ctx.paths, agent)
    if (count - 1) % max(1, cfg.defaults.preamble_every) != 0:
        return message
    return f"[SYSTEM: {agent_cfg.preamble}]\n\n{message}"


def _find_end_marker(output: str, marker: str) -> int:
    """Offset of the last line consisting of just `marker`, or -1.

    The instruction we paste also contains the marker, inline; it must not count.
    """
    pos = -1
    offset = 0
    for line in output.splitlines(keepends=True):
        if line.strip() == marker:
            pos = offset
        offset += len(line)
    return pos


def _response_start(output: str, baseline: str, instruction: str, end: int) -> int:
    idx = output.rfind(instruction, 0, end)
    if idx != -1:
        return idx + len(instruction)
    if baseline:
        idx = output.rfind(baseline, 0, end)
        if idx != -1:
            return idx + len(baseline)
    return 0


def cmd_talk(ctx: Context) -> int:
    target = ctx.args.target
    message = ctx.args.message
    wait = bool(ctx.args.wait) or ctx.config.mode == "wait"
    registry = ctx.config.pane_registry

    if target == "all":
        if wait:
            return _fail(ctx, ExitCode.ERROR, "wait mode is not supported with 'all'. Send to one agent at a time.")
        if not registry:
            return _fail(ctx, ExitCode.CONFIG_MISSING, "no agents configured. Use 'tmux-team add' first.")
        if ctx.args.delay:
            time.sleep(ctx.args.delay)
        results = []
        for name, entry in registry.items():
            try:
                tmux.send_text(entry.pane, _outgoing(ctx, name, message))
                results.append({"agent": name, "pane": entry.pane, "status": "sent"})
                _info(ctx, f"→ Sent to {name} ({entry.pane})")
            except RuntimeError:
                results.append({"agent": name, "pane": entry.pane, "status": "failed"})
                _warn(ctx, f"failed to send to {name}")
        if ctx.json:
            _print_json({"target": "all", "results": results})
        return 0

    entry = registry.get(target)
    if entry is None:
        return _unknown_agent(ctx, target)
    pane = entry.pane

    if ctx.args.delay:
        time.sleep(ctx.args.delay)

    if not wait:
        try:
            tmux.send_text(pane, _outgoing(ctx, target, message))
        except RuntimeError:
            return _fail(ctx, ExitCode.ERROR, f"failed to send to pane {pane}. Is tmux running?")
        if ctx.json:
            _print_json({"target": target, "pane": pane, "status": "sent"})
        else:
            _info(ctx, f"→ Sent to {target} ({pane})")
        return 0

    return _talk_wait(ctx, target, pane, message)


def _talk_wait(ctx: Context, target: str, pane: str, message: str) -> int:
    defaults = ctx.config.defaults
    timeout_s = ctx.args.timeout if ctx.args.timeout is not None else defaults.timeout
    poll_s = max(0.1, defaults.poll_interval)
    lines = defaults.capture_lines

    request_id = f"req_{int(time.time() * 1000):x}_{secrets.token_hex(3)}"
    nonce = secrets.token_hex(2)
    marker = f"{{tmux-team-end:{nonce}}}"
    instruction = f"[IMPORTANT: When your response is complete, print exactly: {marker}]"
    full = f"{message}\n\n{instruction}"

    state = cleanup_state(ctx.paths, 24 * 60 * 60)
    existing = state["requests"].get(target)
    if existing:
        _warn(ctx, f"another recent wait request exists for '{target}' (id: {existing.get('id')}). Results may interleave.")

    try:
        baseline = tmux.capture_pane(pane, lines)
    except RuntimeError:
        return _fail(ctx, ExitCode.ERROR, f"failed to capture pane {pane}. Is tmux running?")

    set_active_request(ctx.paths, target, request_id=request_id, nonce=nonce, pane=pane)
    started = time.monotonic()
    last_note = 0.0
    try:
        tmux.send_text(pane, _outgoing(ctx, target, full))
        while True:
            elapsed = time.monotonic() - started
            if elapsed >= timeout_s:
                if ctx.json:
                    _print_json({"target": target, "pane": pane, "status": "timeout", "request_id": request_id, "nonce": nonce, "marker": marker})
                return _fail(ctx, ExitCode.TIMEOUT, f"timed out waiting for {target} after {int(timeout_s)}s")
            if not ctx.json and elapsed - last_note >= 5:
                last_note = elapsed
                print(f"[tmux-team] Waiting for {target} ({int(elapsed)}s elapsed)", file=sys.stderr)

            time.sleep(poll_s)
            output = tmux.capture_pane(pane, lines)
            end = _find_end_marker(output, marker)
            if end == -1:
                continue

            response = output[_response_start(output, baseline, instruction, end):end].strip()
            if ctx.json:
                _print_json({"target": target, "pane": pane, "status": "completed", "request_id": request_id, "nonce": nonce, "marker": marker, "response": response})
            else:
                print(f"─── Response from {target} ({pane}) ───")
                print(response)
            return 0
    except RuntimeError as e:
        return _fail(ctx, ExitCode.ERROR, str(e))
    except KeyboardInterrupt:
        return _fail(ctx, ExitCode.ERROR, "interrupted")
    finally:
        clear_active_request(ctx.paths, target, request_id)


def cmd_check(ctx: Context) -> int:
    target = ctx.args.target
    entry = ctx.config.pane_registry.get(target)
    if entry is None:
        return _unknown_agent(ctx, target)
    lines = ctx.args.lines if ctx.args.lines is not None else ctx.config.defaults.capture_lines
    try:
        output = tmux.capture_pane(entry.pane, lines)
    except RuntimeError:
        return _fail(ctx, ExitCode.ERROR, f"failed to capture pane {entry.pane}. Is tmux running?")
    if ctx.json:
        _print_json({"target": target, "pane": entry.pane, "lines": lines, "output": output})
    else:
        print(f"─── Output from {target} ({entry.pane}) ───")
        print(output)
    return 0


# Identity and config


def cmd_whoami(ctx: Context) -> int:
    res = resolve_actor(ctx.config.pane_registry, ctx.invocation)
    if ctx.json:
        _print_json(res.model_dump(exclude_none=True))
        return 0
    print(f"{res.actor} (source: {res.source})")
    if res.warning:
        _warn(ctx, res.warning)
    return 0


def _resolved_setting(cfg: ResolvedConfig, key: str) -> Any:
    if key == "preamble_every":
        return cfg.defaults.preamble_every
    return getattr(cfg, key)


def cmd_config_show(ctx: Context) -> int:
    cfg = ctx.config
    sources = setting_sources(ctx.paths)
    doc = {
        "mode": cfg.mode,
        "preamble_mode": cfg.preamble_mode,
        "defaults": cfg.defaults.model_dump(),
        "agents": {n: a.model_dump() for n, a in cfg.agents.items()},
        "sources": sources,
        "paths": {"global": str(ctx.paths.settings), "local": str(ctx.paths.local_config)},
    }
    if ctx.json:
        _print_json(doc)
        return 0
    _table(
        ["KEY", "VALUE", "SOURCE"],
        [[key, str(_resolved_setting(cfg, key)), sources[key]] for key in SETTING_CHOICES]
        + [
            ["defaults.timeout", str(cfg.defaults.timeout), ""],
            ["defaults.poll_interval", str(cfg.defaults.poll_interval), ""],
            ["defaults.capture_lines", str(cfg.defaults.capture_lines), ""],
        ],
    )
    for name, agent in cfg.agents.items():
        if agent.deny:
            print(f"  deny[{name}]: {', '.join(agent.deny)}")
    print(f"  global: {ctx.paths.settings}")
    print(f"  local:  {ctx.paths.local_config}")
    return 0


def cmd_config_get(ctx: Context) -> int:
    key = ctx.args.key
    if key not in SETTING_CHOICES:
        return _fail(ctx, ExitCode.ERROR, f"invalid key: {key}. Valid keys: {', '.join(SETTING_CHOICES)}")
    value = _resolved_setting(ctx.config, key)
    source = setting_sources(ctx.paths)[key]
    if ctx.json:
        _print_json({"key": key, "value": value, "source": source})
    else:
        print(f"{value} ({source})")
    return 0


def cmd_config_set(ctx: Context) -> int:
    a = ctx.args
    try:
        if a.globally:
            value = set_global_setting(ctx.paths, a.key, a.value)
        else:
            value = set_local_setting(ctx.paths, a.key, a.value)
    except ValueError as e:
        return _fail(ctx, ExitCode.ERROR, str(e))
    scope = "global" if a.globally else "local"
    if ctx.json:
        _print_json({"key": a.key, "value": value, "scope": scope})
    elif a.globally:
        _info(ctx, f"Set {a.key}={value} in global config")
    else:
        _info(ctx, f"Set {a.key}={value} in local config (repo override)")
    return 0


def cmd_config_clear(ctx: Context) -> int:
    key = ctx.args.key
    try:
        clear_local_settings(ctx.paths, key)
    except ValueError as e:
        return _fail(ctx, ExitCode.ERROR, str(e))
    if ctx.json:
        _print_json({"cleared": key or "all"})
    elif key:
        _info(ctx, f"Cleared local override for {key}")
    else:
        _info(ctx, "Cleared all local config overrides")
    return 0


def cmd_config_check(ctx: Context) -> int:
    problems = validate_config(ctx.config)
    if ctx.json:
        _print_json({"ok": not problems, "problems": problems})
    elif problems:
        for p in problems:
            _warn(ctx, p)
    else:
        _info(ctx, "Configuration OK")
    return int(ExitCode.ERROR) if problems else 0


# Preambles


def cmd_preamble_show(ctx: Context) -> int:
    agents = ctx.config.agents
    name = ctx.args.agent
    if name:
        agent_cfg = agents.get(name)
        preamble = agent_cfg.preamble if agent_cfg is not None and agent_cfg.preamble else None
        if ctx.json:
            _print_json({"agent": name, "preamble": preamble})
        elif preamble:
            print(f"Preamble for {name}:")
            print(preamble)
        else:
            _info(ctx, f"No preamble set for {name}")
        return 0

    preambles = [{"agent": n, "preamble": a.preamble} for n, a in agents.items() if a.preamble]
    if ctx.json:
        _print_json({"preambles": preambles})
    elif not preambles:
        _info(ctx, "No preambles configured")
    else:
        for p in preambles:
            print(f"─── {p['agent']} ───")
            print(p["preamble"])
            print()
    return 0


def cmd_preamble_set(ctx: Context) -> int:
    name = ctx.args.agent
    text = " ".join(ctx.args.text).strip()
    if not text:
        return _fail(ctx, ExitCode.ERROR, "preamble text must not be empty")
    set_agent_preamble(ctx.paths, name, text)
    if ctx.json:
        _print_json({"agent": name, "preamble": text, "status": "set"})
    else:
        _info(ctx, f"Set preamble for {name}")
    return 0


def cmd_preamble_clear(ctx: Context) -> int:
    name = ctx.args.agent
    cleared = clear_agent_preamble(ctx.paths, name)
    if ctx.json:
        _print_json({"agent": name, "status": "cleared" if cleared else "not_set"})
    elif cleared:
        _info(ctx, f"Cleared preamble for {name}")
    else:
        _info(ctx, f"No preamble was set for {name}")
    return 0


# Project board


def require_permission(ctx: Context, check: PermissionCheck) -> Optional[str]:
    """Actor name when allowed; prints the denial and returns None otherwise."""
    result = check_permission(ctx.config, check, ctx.invocation)
    if result.warning:
        _warn(ctx, result.warning)
    if result.allowed:
        return result.actor
    path = build_permission_path(check)
    if ctx.json:
        _print_json({"ok": False, "error": {"code": "permission_denied", "message": f"{result.actor} cannot perform {path}"}, "permission": result.model_dump()})
    else:
        print(f"error: Permission denied: {result.actor} cannot perform {path}", file=sys.stderr)
        print(f"  {result.describe()}", file=sys.stderr)
    return None


def _require_board(ctx: Context) -> Optional[Board]:
    team_id = find_current_team_id(Path.cwd())
    if not team_id:
        _fail(ctx, ExitCode.CONFIG_MISSING, "no team found. Run 'tmux-team pm init' first or navigate to a linked directory.")
        return None
    board = board_for(ctx.paths, team_id)
    if board.get_team() is None:
        _fail(ctx, ExitCode.CONFIG_MISSING, f"team {team_id} not found. The .tmux-team-id file may be stale.")
        return None
    return board


def cmd_pm_init(ctx: Context) -> int:
    actor = require_permission(ctx, PermissionChecks.team_create())
    if actor is None:
        return int(ExitCode.ERROR)
    cwd = Path.cwd()
    team = create_team(ctx.paths, ctx.args.name, cwd=cwd)
    board_for(ctx.paths, team.id).append_event("team_created", actor=actor, item_id=team.id, data={"name": team.name})
    if ctx.json:
        _print_json({"team": team.model_dump(exclude_none=True), "linked": str(cwd)})
    else:
        _info(ctx, f"Created team '{team.name}' ({team.id})")
        _info(ctx, f"Linked to {cwd}")
    return 0


def cmd_pm_list(ctx: Context) -> int:
    if require_permission(ctx, PermissionChecks.team_list()) is None:
        return int(ExitCode.ERROR)
    teams = list_teams(ctx.paths)
    current = find_current_team_id(Path.cwd())
    if ctx.json:
        _print_json({"teams": [t.model_dump(exclude_none=True) for t in teams], "current_team_id": current})
        return 0
    if not teams:
        _info(ctx, "No teams. Use: tmux-team pm init --name 'My Project'")
        return 0
    _table(
        ["", "ID", "NAME", "CREATED"],
        [["→" if t.id == current else " ", t.id[:8] + "...", t.name, t.created_at[:10]] for t in teams],
    )
    return 0


def cmd_milestone_add(ctx: Context) -> int:
    actor = require_permission(ctx, PermissionChecks.milestone_create())
    if actor is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    m = board.create_milestone(ctx.args.name)
    board.append_event("milestone_created", actor=actor, item_id=m.id, data={"name": m.name})
    if ctx.json:
        _print_json(m.model_dump())
    else:
        _info(ctx, f"Created milestone #{m.id}: {m.name}")
    return 0


def cmd_milestone_list(ctx: Context) -> int:
    if require_permission(ctx, PermissionChecks.milestone_list()) is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    milestones = board.list_milestones()
    if ctx.json:
        _print_json([m.model_dump() for m in milestones])
    elif not milestones:
        _info(ctx, "No milestones. Use: tmux-team pm milestone add <name>")
    else:
        _table(["ID", "NAME", "STATUS"], [[m.id, m.name, m.status] for m in milestones])
    return 0


def cmd_milestone_done(ctx: Context) -> int:
    actor = require_permission(ctx, PermissionChecks.milestone_update(["status"]))
    if actor is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    mid = ctx.args.id
    m = board.get_milestone(mid)
    if m is None:
        return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"milestone {mid} not found")
    updated = board.update_milestone(mid, {"status": "done"})
    board.append_event("milestone_updated", actor=actor, item_id=mid, data={"field": "status", "from": m.status, "to": "done"})
    if ctx.json:
        _print_json(updated.model_dump())
    else:
        _info(ctx, f"Milestone #{mid} marked as done")
    return 0


def cmd_milestone_delete(ctx: Context) -> int:
    actor = require_permission(ctx, PermissionChecks.milestone_delete())
    if actor is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    mid = ctx.args.id
    if board.get_milestone(mid) is None:
        return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"milestone {mid} not found")
    board.delete_milestone(mid)
    board.append_event("milestone_deleted", actor=actor, item_id=mid)
    if ctx.json:
        _print_json({"deleted": mid})
    else:
        _info(ctx, f"Deleted milestone #{mid}")
    return 0


def cmd_task_add(ctx: Context) -> int:
    actor = require_permission(ctx, PermissionChecks.task_create())
    if actor is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    a = ctx.args
    task = board.create_task(a.title, body=a.body, milestone=a.milestone, assignee=a.assignee)
    board.append_event("task_created", actor=actor, item_id=task.id, data={"title": task.title, "milestone": task.milestone})
    if ctx.json:
        _print_json(task.model_dump(exclude_none=True))
    else:
        _info(ctx, f"Created task #{task.id}: {task.title}")
    return 0


def cmd_task_list(ctx: Context) -> int:
    if require_permission(ctx, PermissionChecks.task_list()) is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    a = ctx.args
    try:
        status = parse_status(a.status) if a.status else None
    except ValueError as e:
        return _fail(ctx, ExitCode.ERROR, str(e))
    tasks = board.list_tasks(milestone=a.milestone, status=status, assignee=a.assignee)
    if ctx.json:
        _print_json([t.model_dump(exclude_none=True) for t in tasks])
    elif not tasks:
        _info(ctx, "No tasks. Use: tmux-team pm task add <title>")
    else:
        _table(
            ["ID", "TITLE", "STATUS", "MILESTONE", "ASSIGNEE"],
            [[t.id, t.title[:40], t.status, t.milestone or "-", t.assignee or "-"] for t in tasks],
        )
    return 0


def cmd_task_show(ctx: Context) -> int:
    if require_permission(ctx, PermissionChecks.task_show()) is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    task = board.get_task(ctx.args.id)
    if task is None:
        return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"task {ctx.args.id} not found")
    if ctx.json:
        _print_json(task.model_dump(exclude_none=True))
        return 0
    print(f"Task #{task.id}: {task.title}")
    print(f"Status: {task.status}")
    if task.milestone:
        print(f"Milestone: #{task.milestone}")
    if task.assignee:
        print(f"Assignee: {task.assignee}")
    print(f"Created: {task.created_at}")
    print(f"Updated: {task.updated_at}")
    return 0


def cmd_task_update(ctx: Context) -> int:
    a = ctx.args
    patch = {}
    try:
        if a.status:
            patch["status"] = parse_status(a.status)
    except ValueError as e:
        return _fail(ctx, ExitCode.ERROR, str(e))
    for key in ("assignee", "title", "milestone"):
        value = getattr(a, key)
        if value:
            patch[key] = value
    if not patch:
        return _fail(ctx, ExitCode.ERROR, "no updates specified. Use --status, --assignee, --title or --milestone")

    actor = require_permission(ctx, PermissionChecks.task_update(patch.keys()))
    if actor is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    task = board.get_task(a.id)
    if task is None:
        return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"task {a.id} not found")
    updated = board.update_task(a.id, patch)
    before = task.model_dump()
    for field, value in patch.items():
        board.append_event("task_updated", actor=actor, item_id=a.id, data={"field": field, "from": before.get(field), "to": value})
    if ctx.json:
        _print_json(updated.model_dump(exclude_none=True))
    else:
        _info(ctx, f"Updated task #{a.id}")
    return 0


def cmd_task_done(ctx: Context) -> int:
    actor = require_permission(ctx, PermissionChecks.task_update(["status"]))
    if actor is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    task = board.get_task(ctx.args.id)
    if task is None:
        return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"task {ctx.args.id} not found")
    updated = board.update_task(task.id, {"status": "done"})
    board.append_event("task_updated", actor=actor, item_id=task.id, data={"field": "status", "from": task.status, "to": "done"})
    if ctx.json:
        _print_json(updated.model_dump(exclude_none=True))
    else:
        _info(ctx, f"Task #{task.id} marked as done")
    return 0


def cmd_task_delete(ctx: Context) -> int:
    actor = require_permission(ctx, PermissionChecks.task_delete())
    if actor is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    if board.get_task(ctx.args.id) is None:
        return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"task {ctx.args.id} not found")
    board.delete_task(ctx.args.id)
    board.append_event("task_deleted", actor=actor, item_id=ctx.args.id)
    if ctx.json:
        _print_json({"deleted": ctx.args.id})
    else:
        _info(ctx, f"Deleted task #{ctx.args.id}")
    return 0


def cmd_pm_doc(ctx: Context) -> int:
    a = ctx.args
    reading = a.print or (ctx.json and a.set is None)
    check = PermissionChecks.doc_read() if reading else PermissionChecks.doc_update()
    actor = require_permission(ctx, check)
    if actor is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    if board.get_task(a.id) is None:
        return _fail(ctx, ExitCode.PANE_NOT_FOUND, f"task {a.id} not found")

    if reading:
        doc = board.get_task_doc(a.id)
        if ctx.json:
            _print_json({"id": a.id, "doc": doc})
        else:
            print(doc or "(empty)")
        return 0

    if a.set is not None:
        board.set_task_doc(a.id, a.set)
    else:
        editor = os.environ.get("EDITOR") or "vim"
        subprocess.run([editor, str(board.task_doc_path(a.id))], check=False)
    board.append_event("doc_updated", actor=actor, item_id=a.id)
    _info(ctx, f"Saved documentation for task #{a.id}")
    return 0


def cmd_pm_log(ctx: Context) -> int:
    if require_permission(ctx, PermissionChecks.log_read()) is None:
        return int(ExitCode.ERROR)
    board = _require_board(ctx)
    if board is None:
        return int(ExitCode.CONFIG_MISSING)
    events = board.events(ctx.args.limit)
    if ctx.json:
        _print_json([e.model_dump() for e in events])
    elif not events:
        _info(ctx, "No events logged yet.")
    else:
        for e in events:
            ident = f"#{e.id}" if e.id else ""
            print(f"{e.ts[:19].replace('T', ' ')} {e.actor} {e.event} {ident}".rstrip())
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    print(__version__)
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", default=argparse.SUPPRESS, help="Machine-readable output")
    common.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Debug logging on stderr")

    p = argparse.ArgumentParser(prog="tmux-team", description="Coordinate AI agents running in tmux panes", parents=[common])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add(parent: Any, name: str, func: Any, help: str, aliases: Sequence[str] = ()) -> argparse.ArgumentParser:
        sp = parent.add_parser(name, help=help, aliases=list(aliases), parents=[common])
        sp.set_defaults(func=func)
        return sp

    add(sub, "init", cmd_init, "Create tmux-team.json in the current directory")
    add(sub, "list", cmd_list, "List registered agents", aliases=["ls"])

    sp = add(sub, "add", cmd_add, "Register an agent at a pane")
    sp.add_argument("name", help="Agent name")
    sp.add_argument("pane", help="tmux pane (e.g. 1.0 or %%12)")
    sp.add_argument("remark", nargs="?", default=None, help="Free-form note")

    sp = add(sub, "this", cmd_this, "Register the current pane as an agent")
    sp.add_argument("name", help="Agent name")
    sp.add_argument("remark", nargs="?", default=None, help="Free-form note")

    add(sub, "panes", cmd_panes, "List tmux panes with suggested agent names")

    sp = add(sub, "update", cmd_update, "Change an agent's pane or remark")
    sp.add_argument("name", help="Agent name")
    sp.add_argument("--pane", default=None, help="New pane")
    sp.add_argument("--remark", default=None, help="New remark")

    sp = add(sub, "remove", cmd_remove, "Unregister an agent", aliases=["rm"])
    sp.add_argument("name", help="Agent name")

    sp = add(sub, "talk", cmd_talk, "Send a message to an agent (or 'all')", aliases=["send"])
    sp.add_argument("target", help="Agent name or 'all'")
    sp.add_argument("message", help="Message text")
    sp.add_argument("--delay", type=parse_duration, default=0.0, help="Wait before sending (e.g. 2, 500ms)")
    sp.add_argument("--wait", action="store_true", help="Block until the agent prints the end marker")
    sp.add_argument("--timeout", type=parse_duration, default=None, help="Wait-mode timeout (default from config)")
    sp.add_argument("--no-preamble", action="store_true", help="Skip the agent's configured preamble")

    sp = add(sub, "check", cmd_check, "Capture an agent's pane output", aliases=["read"])
    sp.add_argument("target", help="Agent name")
    sp.add_argument("lines", nargs="?", type=int, default=None, help="Lines of scrollback")

    add(sub, "whoami", cmd_whoami, "Show the resolved actor for this pane")

    p_config = sub.add_parser("config", help="Inspect and edit configuration")
    config_sub = p_config.add_subparsers(dest="action", required=True)
    add(config_sub, "show", cmd_config_show, "Show resolved configuration")
    add(config_sub, "check", cmd_config_check, "Validate deny patterns and the pane registry")
    sp = add(config_sub, "get", cmd_config_get, "Show one setting and where it comes from")
    sp.add_argument("key", help=f"One of: {', '.join(SETTING_CHOICES)}")
    sp = add(config_sub, "set", cmd_config_set, "Set a setting (local override by default)")
    sp.add_argument("key", help=f"One of: {', '.join(SETTING_CHOICES)}")
    sp.add_argument("value", help="New value")
    sp.add_argument("-g", "--global", dest="globally", action="store_true", help="Write to the global config.yaml")
    sp = add(config_sub, "clear", cmd_config_clear, "Remove local overrides (one key or all)")
    sp.add_argument("key", nargs="?", default=None, help="Key to clear (default: all)")

    p_preamble = sub.add_parser("preamble", help="Manage per-agent preambles")
    preamble_sub = p_preamble.add_subparsers(dest="action", required=True)
    sp = add(preamble_sub, "show", cmd_preamble_show, "Show preambles (one agent or all)")
    sp.add_argument("agent", nargs="?", default=None, help="Agent name")
    sp = add(preamble_sub, "set", cmd_preamble_set, "Set an agent's preamble")
    sp.add_argument("agent", help="Agent name")
    sp.add_argument("text", nargs="+", help="Preamble text")
    sp = add(preamble_sub, "clear", cmd_preamble_clear, "Remove an agent's preamble")
    sp.add_argument("agent", help="Agent name")

    p_pm = sub.add_parser("pm", help="Project management board")
    pm_sub = p_pm.add_subparsers(dest="action", required=True)

    sp = add(pm_sub, "init", cmd_pm_init, "Create a team and link it to this directory")
    sp.add_argument("--name", default="Unnamed Project", help="Project name")
    add(pm_sub, "list", cmd_pm_list, "List teams", aliases=["ls"])

    p_ms = pm_sub.add_parser("milestone", aliases=["m"], help="Milestones")
    ms_sub = p_ms.add_subparsers(dest="ms_action", required=True)
    sp = add(ms_sub, "add", cmd_milestone_add, "Add a milestone")
    sp.add_argument("name")
    add(ms_sub, "list", cmd_milestone_list, "List milestones", aliases=["ls"])
    sp = add(ms_sub, "done", cmd_milestone_done, "Mark a milestone done")
    sp.add_argument("id")
    sp = add(ms_sub, "delete", cmd_milestone_delete, "Delete a milestone", aliases=["rm"])
    sp.add_argument("id")

    p_task = pm_sub.add_parser("task", aliases=["t"], help="Tasks")
    task_sub = p_task.add_subparsers(dest="task_action", required=True)
    sp = add(task_sub, "add", cmd_task_add, "Add a task")
    sp.add_argument("title")
    sp.add_argument("-m", "--milestone", default=None)
    sp.add_argument("-a", "--assignee", default=None)
    sp.add_argument("-b", "--body", default=None)
    sp = add(task_sub, "list", cmd_task_list, "List tasks", aliases=["ls"])
    sp.add_argument("-m", "--milestone", default=None)
    sp.add_argument("-s", "--status", default=None)
    sp.add_argument("-a", "--assignee", default=None)
    sp = add(task_sub, "show", cmd_task_show, "Show a task")
    sp.add_argument("id")
    sp = add(task_sub, "update", cmd_task_update, "Update task fields")
    sp.add_argument("id")
    sp.add_argument("-s", "--status", default=None)
    sp.add_argument("-a", "--assignee", default=None)
    sp.add_argument("--title", default=None)
    sp.add_argument("-m", "--milestone", default=None)
    sp = add(task_sub, "done", cmd_task_done, "Mark a task done")
    sp.add_argument("id")
    sp = add(task_sub, "delete", cmd_task_delete, "Delete a task", aliases=["rm"])
    sp.add_argument("id")

    sp = add(pm_sub, "doc", cmd_pm_doc, "View or edit task documentation")
    sp.add_argument("id")
    sp.add_argument("-p", "--print", action="store_true", help="Print instead of opening $EDITOR")
    sp.add_argument("--set", default=None, help="Replace the document with this text")

    sp = add(pm_sub, "log", cmd_pm_log, "Show the team activity log")
    sp.add_argument("-n", "--limit", type=int, default=None)

    p_ver = sub.add_parser("version", help="Show version")
    p_ver.set_defaults(func=cmd_version, raw=True)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_root_json_logging(component="tmux-team", level="DEBUG" if getattr(args, "verbose", False) else None)

    if getattr(args, "raw", False):
        return int(args.func(args))

    paths = resolve_paths()
    try:
        config = load_config(paths)
    except ConfigParseError as e:
        return _fail(None, ExitCode.ERROR, str(e))
    ctx = Context(args=args, paths=paths, config=config, invocation=Invocation.from_env())
    return int(args.func(ctx))


if __name__ == "__main__":
    raise SystemExit(main())
