import json
import tempfile
import unittest
from pathlib import Path


def _paths(td: str):
    from tmux_team.paths import resolve_paths

    proj = Path(td) / "proj"
    proj.mkdir(exist_ok=True)
    return resolve_paths(cwd=proj, env={"TMUX_TEAM_HOME": str(Path(td) / "home")})


class TestGlobalDir(unittest.TestCase):
    def test_env_precedence(self) -> None:
        from tmux_team.paths import resolve_global_dir

        with tempfile.TemporaryDirectory() as td:
            home = Path(td)
            env = {"TMUX_TEAM_HOME": "/x/override", "XDG_CONFIG_HOME": "/x/xdg"}
            self.assertEqual(resolve_global_dir(env, home), Path("/x/override"))
            self.assertEqual(resolve_global_dir({"XDG_CONFIG_HOME": "/x/xdg"}, home), Path("/x/xdg/tmux-team"))
            self.assertEqual(resolve_global_dir({}, home), home / ".config" / "tmux-team")

    def test_legacy_dir(self) -> None:
        from tmux_team.paths import SETTINGS_FILENAME, resolve_global_dir

        with tempfile.TemporaryDirectory() as td:
            home = Path(td)
            legacy = home / ".tmux-team"
            legacy.mkdir()
            self.assertEqual(resolve_global_dir({}, home), legacy)

            xdg = home / ".config" / "tmux-team"
            xdg.mkdir(parents=True)
            self.assertEqual(resolve_global_dir({}, home), xdg)

            (legacy / SETTINGS_FILENAME).write_text("mode: wait\n", encoding="utf-8")
            self.assertEqual(resolve_global_dir({}, home), legacy)

            (xdg / SETTINGS_FILENAME).write_text("mode: polling\n", encoding="utf-8")
            self.assertEqual(resolve_global_dir({}, home), xdg)


class TestLoadConfig(unittest.TestCase):
    def test_defaults_when_nothing_exists(self) -> None:
        from tmux_team.kernel.config import load_config

        with tempfile.TemporaryDirectory() as td:
            cfg = load_config(_paths(td))
            self.assertEqual(cfg.mode, "polling")
            self.assertEqual(cfg.defaults.timeout, 180.0)
            self.assertEqual(cfg.defaults.capture_lines, 100)
            self.assertEqual(cfg.agents, {})
            self.assertEqual(cfg.pane_registry, {})

    def test_global_then_local_precedence(self) -> None:
        from tmux_team.kernel.config import load_config, save_settings

        with tempfile.TemporaryDirectory() as td:
            paths = _paths(td)
            save_settings(
                paths,
                {
                    "mode": "wait",
                    "defaults": {"timeout": 30, "capture_lines": 50},
                    "agents": {"codex": {"deny": ["pm:task:delete"], "preamble": "be brief"}},
                },
            )
            paths.local_config.write_text(
                json.dumps({"$config": {"mode": "polling"}, "codex": {"pane": "1.1", "remark": "rev"}}),
                encoding="utf-8",
            )
            cfg = load_config(paths)
            self.assertEqual(cfg.mode, "polling")
            self.assertEqual(cfg.defaults.timeout, 30.0)
            self.assertEqual(cfg.defaults.capture_lines, 50)
            self.assertEqual(cfg.defaults.poll_interval, 1.0)
            self.assertEqual(cfg.agents["codex"].preamble, "be brief")
            self.assertEqual(cfg.pane_registry["codex"].pane, "1.1")
            self.assertNotIn("$config", cfg.pane_registry)
            self.assertEqual([r.raw for r in cfg.rules_for("codex")], ["pm:task:delete"])
            self.assertEqual(cfg.rules_for("claude"), [])

    def test_invalid_files_raise(self) -> None:
        from tmux_team.kernel.config import ConfigParseError, load_config

        with tempfile.TemporaryDirectory() as td:
            paths = _paths(td)
            paths.local_config.write_text("{not json", encoding="utf-8")
            with self.assertRaises(ConfigParseError) as cm:
                load_config(paths)
            self.assertEqual(cm.exception.path, paths.local_config)

            paths.local_config.write_text(json.dumps({"codex": {"remark": "no pane"}}), encoding="utf-8")
            with self.assertRaises(ConfigParseError):
                load_config(paths)

            paths.local_config.unlink()
            paths.global_dir.mkdir(parents=True, exist_ok=True)
            paths.settings.write_text("mode: [unclosed\n", encoding="utf-8")
            with self.assertRaises(ConfigParseError) as cm:
                load_config(paths)
            self.assertEqual(cm.exception.path, paths.settings)

            paths.settings.write_text("agents: [codex]\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_config(paths)

    def test_validate_config(self) -> None:
        from tmux_team.contracts.v1 import AgentConfig, PaneEntry
        from tmux_team.kernel.config import ResolvedConfig, validate_config

        cfg = ResolvedConfig(
            agents={"codex": AgentConfig(deny=["pm:task:list", "task:delete"])},
            pane_registry={"a": PaneEntry(pane="1.0"), "b": PaneEntry(pane="1.0")},
        )
        problems = validate_config(cfg)
        self.assertEqual(len(problems), 2)
        self.assertIn("task:delete", problems[0])
        self.assertIn("1.0", problems[1])

        self.assertEqual(validate_config(ResolvedConfig()), [])

    def test_validate_flags_empty_field_lists(self) -> None:
        from tmux_team.contracts.v1 import AgentConfig
        from tmux_team.kernel.config import ResolvedConfig, validate_config

        cfg = ResolvedConfig(agents={"codex": AgentConfig(deny=["pm:task:update()", "pm:task:update(status)"])})
        problems = validate_config(cfg)
        self.assertEqual(len(problems), 1)
        self.assertIn("pm:task:update()", problems[0])
        self.assertIn("never match", problems[0])

    def test_local_preamble_overrides(self) -> None:
        from tmux_team.kernel.config import load_config, save_settings

        with tempfile.TemporaryDirectory() as td:
            paths = _paths(td)
            cfg = load_config(paths)
            self.assertEqual(cfg.preamble_mode, "always")
            self.assertEqual(cfg.defaults.preamble_every, 1)

            save_settings(paths, {"preamble_mode": "disabled", "defaults": {"preamble_every": 3}})
            cfg = load_config(paths)
            self.assertEqual((cfg.preamble_mode, cfg.defaults.preamble_every), ("disabled", 3))

            paths.local_config.write_text(
                json.dumps({"$config": {"preamble_mode": "always", "preamble_every": 5}}), encoding="utf-8"
            )
            cfg = load_config(paths)
            self.assertEqual((cfg.preamble_mode, cfg.defaults.preamble_every), ("always", 5))


class TestSettingEdits(unittest.TestCase):
    def test_set_local_and_global_with_sources(self) -> None:
        from tmux_team.kernel.config import (
            load_config,
            load_local_file,
            set_global_setting,
            set_local_setting,
            setting_sources,
        )

        with tempfile.TemporaryDirectory() as td:
            paths = _paths(td)
            self.assertEqual(setting_sources(paths), {"mode": "default", "preamble_mode": "default", "preamble_every": "default"})

            self.assertEqual(set_global_setting(paths, "mode", "wait"), "wait")
            self.assertEqual(set_global_setting(paths, "preamble_every", "4"), 4)
            self.assertEqual(set_local_setting(paths, "mode", "polling"), "polling")

            self.assertEqual(setting_sources(paths), {"mode": "local", "preamble_mode": "default", "preamble_every": "global"})
            self.assertEqual(load_local_file(paths), {"$config": {"mode": "polling"}})
            cfg = load_config(paths)
            self.assertEqual(cfg.mode, "polling")
            self.assertEqual(cfg.defaults.preamble_every, 4)

    def test_bad_keys_and_values_are_rejected(self) -> None:
        from tmux_team.kernel.config import clear_local_settings, parse_setting

        self.assertEqual(parse_setting("preamble_every", "0"), 0)
        for key, value in (("color", "red"), ("mode", "sync"), ("preamble_mode", "never"), ("preamble_every", "-1"), ("preamble_every", "x")):
            with self.assertRaises(ValueError):
                parse_setting(key, value)
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ValueError):
                clear_local_settings(_paths(td), "color")

    def test_clear_keeps_pane_entries(self) -> None:
        from tmux_team.kernel.config import clear_local_settings, load_local_file, set_local_setting

        with tempfile.TemporaryDirectory() as td:
            paths = _paths(td)
            paths.local_config.write_text(json.dumps({"codex": {"pane": "1.1"}}), encoding="utf-8")
            set_local_setting(paths, "mode", "wait")
            set_local_setting(paths, "preamble_mode", "disabled")

            clear_local_settings(paths, "mode")
            self.assertEqual(load_local_file(paths)["$config"], {"preamble_mode": "disabled"})
            clear_local_settings(paths)
            self.assertEqual(load_local_file(paths), {"codex": {"pane": "1.1"}})
            clear_local_settings(paths)

    def test_agent_preamble_edits(self) -> None:
        from tmux_team.kernel.config import clear_agent_preamble, load_settings, save_settings, set_agent_preamble

        with tempfile.TemporaryDirectory() as td:
            paths = _paths(td)
            save_settings(paths, {"agents": {"codex": {"deny": ["pm:task:delete"]}}})
            set_agent_preamble(paths, "codex", "be brief")
            set_agent_preamble(paths, "claude", "review carefully")
            self.assertEqual(load_settings(paths)["agents"]["codex"], {"deny": ["pm:task:delete"], "preamble": "be brief"})

            self.assertTrue(clear_agent_preamble(paths, "codex"))
            self.assertTrue(clear_agent_preamble(paths, "claude"))
            self.assertFalse(clear_agent_preamble(paths, "claude"))
            self.assertEqual(load_settings(paths)["agents"], {"codex": {"deny": ["pm:task:delete"]}})


class TestRegistryMutations(unittest.TestCase):
    def test_add_update_remove_preserve_other_entries(self) -> None:
        from tmux_team.kernel.config import add_agent, load_local_file, remove_agent, save_local_file, update_agent

        with tempfile.TemporaryDirectory() as td:
            paths = _paths(td)
            save_local_file(paths, {"$config": {"mode": "wait"}, "claude": {"pane": "1.0"}})

            add_agent(paths, "codex", " 1.1 ", "reviewer")
            doc = load_local_file(paths)
            self.assertEqual(doc["codex"], {"pane": "1.1", "remark": "reviewer"})

            with self.assertRaises(ValueError):
                add_agent(paths, "codex", "1.2")
            with self.assertRaises(ValueError):
                add_agent(paths, "$config", "1.2")

            entry = update_agent(paths, "codex", pane="2.0")
            self.assertEqual(entry.pane, "2.0")
            self.assertEqual(entry.remark, "reviewer")
            with self.assertRaises(KeyError):
                update_agent(paths, "gemini", pane="3.0")

            remove_agent(paths, "codex")
            with self.assertRaises(KeyError):
                remove_agent(paths, "codex")
            with self.assertRaises(KeyError):
                remove_agent(paths, "$config")

            doc = load_local_file(paths)
            self.assertEqual(doc, {"$config": {"mode": "wait"}, "claude": {"pane": "1.0"}})


if __name__ == "__main__":
    unittest.main()
