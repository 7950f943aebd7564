"""Configuration provider.

Global settings live in <global_dir>/config.yaml; the pane registry lives in
./tmux-team.json next to the project. Precedence (lowest to highest):
defaults, global settings, local `$config`, CLI flags (applied by the caller).
Everything is re-read on each invocation.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml  # type: ignore
from pydantic import ValidationError

from ..contracts.v1 import AgentConfig, ConfigDefaults, DenyRule, LocalSettings, PaneEntry, PreambleMode, TalkMode
from ..paths import Paths, ensure_global_dir
from ..util.fs import atomic_write_json, atomic_write_text
from .patterns import never_matches, parse_patterns

LOCAL_SETTINGS_KEY = "$config"


class ConfigParseError(ValueError):
    def __init__(self, path: Path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"invalid config in {path}: {cause}")


@dataclass
class ResolvedConfig:
    mode: TalkMode = "polling"
    preamble_mode: PreambleMode = "always"
    defaults: ConfigDefaults = field(default_factory=ConfigDefaults)
    agents: Dict[str, AgentConfig] = field(default_factory=dict)
    pane_registry: Dict[str, PaneEntry] = field(default_factory=dict)
    deny_rules: Dict[str, List[DenyRule]] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        # Parse deny patterns once; matching never sees raw strings.
        self.deny_rules = {name: parse_patterns(a.deny) for name, a in self.agents.items() if a.deny}

    def rules_for(self, actor: str) -> List[DenyRule]:
        return self.deny_rules.get(actor, [])


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigParseError(path, e) from e
    if not isinstance(doc, dict):
        raise ConfigParseError(path, ValueError("top level must be a mapping"))
    return doc


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigParseError(path, e) from e
    if not isinstance(doc, dict):
        raise ConfigParseError(path, ValueError("top level must be an object"))
    return doc


def save_settings(paths: Paths, doc: Dict[str, Any]) -> None:
    ensure_global_dir(paths)
    atomic_write_text(paths.settings, yaml.safe_dump(doc, allow_unicode=True, sort_keys=False))


def load_local_file(paths: Paths) -> Dict[str, Any]:
    """Raw local document: pane entries plus the optional `$config` block."""
    return _load_json(paths.local_config)


def save_local_file(paths: Paths, doc: Dict[str, Any]) -> None:
    atomic_write_json(paths.local_config, doc)


def _pane_registry(doc: Dict[str, Any], path: Path) -> Dict[str, PaneEntry]:
    registry: Dict[str, PaneEntry] = {}
    for name, raw in doc.items():
        if name == LOCAL_SETTINGS_KEY:
            continue
        try:
            registry[str(name)] = PaneEntry.model_validate(raw)
        except ValidationError as e:
            raise ConfigParseError(path, e) from e
    return registry


def load_settings(paths: Paths) -> Dict[str, Any]:
    """Raw global settings document (for editing)."""
    return _load_yaml(paths.settings)


def load_config(paths: Paths) -> ResolvedConfig:
    settings = _load_yaml(paths.settings)
    local = _load_json(paths.local_config)

    try:
        defaults = ConfigDefaults.model_validate(settings.get("defaults") or {})
        agents_raw = settings.get("agents") or {}
        if not isinstance(agents_raw, dict):
            raise ValueError("agents must be a mapping")
        agents = {str(k): AgentConfig.model_validate(v or {}) for k, v in agents_raw.items()}
        mode: TalkMode = "wait" if settings.get("mode") == "wait" else "polling"
        preamble_mode: PreambleMode = "disabled" if settings.get("preamble_mode") == "disabled" else "always"
    except (ValidationError, ValueError) as e:
        raise ConfigParseError(paths.settings, e) from e

    try:
        local_settings = LocalSettings.model_validate(local.get(LOCAL_SETTINGS_KEY) or {})
    except ValidationError as e:
        raise ConfigParseError(paths.local_config, e) from e
    if local_settings.mode:
        mode = local_settings.mode
    if local_settings.preamble_mode:
        preamble_mode = local_settings.preamble_mode
    if local_settings.preamble_every is not None:
        defaults = defaults.model_copy(update={"preamble_every": local_settings.preamble_every})

    return ResolvedConfig(
        mode=mode,
        preamble_mode=preamble_mode,
        defaults=defaults,
        agents=agents,
        pane_registry=_pane_registry(local, paths.local_config),
    )


def validate_config(config: ResolvedConfig) -> List[str]:
    """Human-readable problems; never affects permission evaluation."""
    problems: List[str] = []
    for name, rules in sorted(config.deny_rules.items()):
        for rule in rules:
            if not rule.valid:
                problems.append(f"agent '{name}': deny pattern {rule.raw!r} is malformed and will never match")
            elif never_matches(rule):
                problems.append(f"agent '{name}': deny pattern {rule.raw!r} lists no usable field and will never match")
    seen: Dict[str, str] = {}
    for name, entry in config.pane_registry.items():
        other = seen.get(entry.pane)
        if other is not None:
            problems.append(f"pane {entry.pane} is registered to both '{other}' and '{name}'")
        else:
            seen[entry.pane] = name
    return problems


def add_agent(paths: Paths, name: str, pane: str, remark: Optional[str] = None) -> PaneEntry:
    doc = load_local_file(paths)
    key = name.strip()
    if not key or key == LOCAL_SETTINGS_KEY:
        raise ValueError(f"invalid agent name: {name!r}")
    if key in doc:
        raise ValueError(f"agent '{key}' already exists")
    entry = PaneEntry(pane=pane.strip(), remark=remark or None)
    doc[key] = entry.model_dump(exclude_none=True)
    save_local_file(paths, doc)
    return entry


def update_agent(paths: Paths, name: str, *, pane: Optional[str] = None, remark: Optional[str] = None) -> PaneEntry:
    doc = load_local_file(paths)
    raw = doc.get(name)
    if name == LOCAL_SETTINGS_KEY or not isinstance(raw, dict):
        raise KeyError(name)
    if pane:
        raw["pane"] = pane.strip()
    if remark:
        raw["remark"] = remark
    save_local_file(paths, doc)
    return PaneEntry.model_validate(raw)


def remove_agent(paths: Paths, name: str) -> None:
    doc = load_local_file(paths)
    if name == LOCAL_SETTINGS_KEY or name not in doc:
        raise KeyError(name)
    del doc[name]
    save_local_file(paths, doc)


# Settings keys editable from the CLI, with their allowed values (None: non-negative int).
SETTING_CHOICES: Dict[str, Optional[Tuple[str, ...]]] = {
    "mode": ("polling", "wait"),
    "preamble_mode": ("always", "disabled"),
    "preamble_every": None,
}


def parse_setting(key: str, value: str) -> Any:
    if key not in SETTING_CHOICES:
        raise ValueError(f"invalid key: {key}. Valid keys: {', '.join(SETTING_CHOICES)}")
    choices = SETTING_CHOICES[key]
    if choices is not None:
        if value not in choices:
            raise ValueError(f"invalid value for {key}: {value}. Valid values: {', '.join(choices)}")
        return value
    try:
        n = int(value)
    except ValueError:
        n = -1
    if n < 0:
        raise ValueError(f"invalid value for {key}: {value}. Must be a non-negative integer.")
    return n


def set_global_setting(paths: Paths, key: str, value: str) -> Any:
    parsed = parse_setting(key, value)
    doc = load_settings(paths)
    if key == "preamble_every":
        defaults = doc.get("defaults") if isinstance(doc.get("defaults"), dict) else {}
        defaults[key] = parsed
        doc["defaults"] = defaults
    else:
        doc[key] = parsed
    save_settings(paths, doc)
    return parsed


def set_local_setting(paths: Paths, key: str, value: str) -> Any:
    parsed = parse_setting(key, value)
    doc = load_local_file(paths)
    block = doc.get(LOCAL_SETTINGS_KEY) if isinstance(doc.get(LOCAL_SETTINGS_KEY), dict) else {}
    block[key] = parsed
    doc[LOCAL_SETTINGS_KEY] = block
    save_local_file(paths, doc)
    return parsed


def clear_local_settings(paths: Paths, key: Optional[str] = None) -> None:
    """Drop one local override (or all of them); an emptied `$config` block is removed."""
    if key is not None and key not in SETTING_CHOICES:
        raise ValueError(f"invalid key: {key}. Valid keys: {', '.join(SETTING_CHOICES)}")
    doc = load_local_file(paths)
    block = doc.get(LOCAL_SETTINGS_KEY)
    if not isinstance(block, dict):
        return
    if key is None:
        block = {}
    else:
        block.pop(key, None)
    if block:
        doc[LOCAL_SETTINGS_KEY] = block
    else:
        del doc[LOCAL_SETTINGS_KEY]
    save_local_file(paths, doc)


def setting_sources(paths: Paths) -> Dict[str, str]:
    """Where each CLI-editable key's resolved value comes from: local, global or default."""
    settings = _load_yaml(paths.settings)
    block = _load_json(paths.local_config).get(LOCAL_SETTINGS_KEY)
    local = block if isinstance(block, dict) else {}
    defaults = settings.get("defaults") if isinstance(settings.get("defaults"), dict) else {}

    out: Dict[str, str] = {}
    for key in SETTING_CHOICES:
        in_global = key in defaults if key == "preamble_every" else key in settings
        if local.get(key) is not None:
            out[key] = "local"
        elif in_global:
            out[key] = "global"
        else:
            out[key] = "default"
    return out


def set_agent_preamble(paths: Paths, agent: str, preamble: str) -> None:
    doc = load_settings(paths)
    agents = doc.get("agents") if isinstance(doc.get("agents"), dict) else {}
    entry = agents.get(agent) if isinstance(agents.get(agent), dict) else {}
    entry["preamble"] = preamble
    agents[agent] = entry
    doc["agents"] = agents
    save_settings(paths, doc)


def clear_agent_preamble(paths: Paths, agent: str) -> bool:
    """False when the agent had no preamble; an agent entry left empty is removed."""
    doc = load_settings(paths)
    agents = doc.get("agents")
    entry = agents.get(agent) if isinstance(agents, dict) else None
    if not isinstance(entry, dict) or not entry.get("preamble"):
        return False
    del entry["preamble"]
    if not entry:
        del agents[agent]
    save_settings(paths, doc)
    return True
