import unittest


def _registry():
    from tmux_team.contracts.v1 import PaneEntry

    return {
        "claude": PaneEntry(pane="1.0"),
        "codex": PaneEntry(pane="%7", remark="reviewer"),
    }


def _at(index: str, pane_id: str = ""):
    from tmux_team.runners.tmux import PaneCoordinate

    coord = PaneCoordinate(index=index, pane_id=pane_id)
    return lambda token: coord


def _never(token):
    raise AssertionError("pane lookup must not run outside tmux")


class TestInvocationFromEnv(unittest.TestCase):
    def test_agent_name_wins_over_actor(self) -> None:
        from tmux_team.kernel.identity import Invocation

        inv = Invocation.from_env({"TMT_AGENT_NAME": "codex", "TMUX_TEAM_ACTOR": "claude"})
        self.assertEqual(inv.advisory, "codex")
        self.assertEqual(inv.advisory_var, "TMT_AGENT_NAME")

    def test_blank_values_are_ignored(self) -> None:
        from tmux_team.kernel.identity import Invocation

        inv = Invocation.from_env({"TMT_AGENT_NAME": "  ", "TMUX_TEAM_ACTOR": "claude"})
        self.assertEqual(inv.advisory, "claude")
        self.assertEqual(inv.advisory_var, "TMUX_TEAM_ACTOR")
        self.assertIsNone(Invocation.from_env({}).advisory)

    def test_multiplexer_indicator(self) -> None:
        from tmux_team.kernel.identity import Invocation

        inv = Invocation.from_env({"TMUX": "/tmp/tmux-0/default,1,0", "TMUX_PANE": "%3"})
        self.assertTrue(inv.in_multiplexer)
        self.assertEqual(inv.pane_token, "%3")
        self.assertFalse(Invocation.from_env({"TMUX_PANE": "%3"}).in_multiplexer)


class TestResolveActor(unittest.TestCase):
    def test_outside_tmux_without_advisory_is_human(self) -> None:
        from tmux_team.kernel.identity import Invocation, resolve_actor

        res = resolve_actor(_registry(), Invocation(), locate=_never)
        self.assertEqual((res.actor, res.source, res.warning), ("human", "default", None))

    def test_outside_tmux_advisory_is_used_silently(self) -> None:
        from tmux_team.kernel.identity import Invocation, resolve_actor

        res = resolve_actor(_registry(), Invocation(advisory="codex"), locate=_never)
        self.assertEqual((res.actor, res.source, res.warning), ("codex", "env", None))

    def test_registered_pane(self) -> None:
        from tmux_team.kernel.identity import Invocation, resolve_actor

        inv = Invocation(in_multiplexer=True, pane_token="%1")
        res = resolve_actor(_registry(), inv, locate=_at("1.0", "%1"))
        self.assertEqual((res.actor, res.source, res.warning), ("claude", "pane", None))

    def test_registered_pane_matches_stable_id(self) -> None:
        from tmux_team.kernel.identity import Invocation, resolve_actor

        inv = Invocation(in_multiplexer=True, pane_token="%7")
        res = resolve_actor(_registry(), inv, locate=_at("2.1", "%7"))
        self.assertEqual((res.actor, res.source), ("codex", "pane"))

    def test_matching_advisory_has_no_warning(self) -> None:
        from tmux_team.kernel.identity import Invocation, resolve_actor

        inv = Invocation(advisory="claude", in_multiplexer=True, pane_token="%1")
        res = resolve_actor(_registry(), inv, locate=_at("1.0"))
        self.assertEqual((res.actor, res.source, res.warning), ("claude", "pane", None))

    def test_pane_wins_over_spoofed_advisory(self) -> None:
        from tmux_team.kernel.identity import Invocation, resolve_actor

        inv = Invocation(advisory="human", advisory_var="TMUX_TEAM_ACTOR", in_multiplexer=True, pane_token="%1")
        res = resolve_actor(_registry(), inv, locate=_at("1.0"))
        self.assertEqual((res.actor, res.source), ("claude", "pane"))
        self.assertIsNotNone(res.warning)
        self.assertIn("Identity mismatch", res.warning)
        self.assertIn('TMUX_TEAM_ACTOR="human"', res.warning)
        self.assertIn('"claude"', res.warning)

    def test_unregistered_pane_falls_back_to_advisory_with_warning(self) -> None:
        from tmux_team.kernel.identity import Invocation, resolve_actor

        inv = Invocation(advisory="codex", in_multiplexer=True, pane_token="%9")
        res = resolve_actor(_registry(), inv, locate=_at("5.0", "%9"))
        self.assertEqual((res.actor, res.source), ("codex", "env"))
        self.assertIn("Unregistered pane", res.warning or "")
        self.assertIn("5.0", res.warning or "")

    def test_unregistered_pane_without_advisory_is_human(self) -> None:
        from tmux_team.kernel.identity import Invocation, resolve_actor

        inv = Invocation(in_multiplexer=True, pane_token="%9")
        res = resolve_actor(_registry(), inv, locate=_at("5.0"))
        self.assertEqual((res.actor, res.source, res.warning), ("human", "default", None))

    def test_missing_pane_token_never_asks_tmux_for_the_focused_pane(self) -> None:
        from unittest import mock

        from tmux_team.kernel.identity import Invocation, resolve_actor
        from tmux_team.runners import tmux

        inv = Invocation(advisory="codex", in_multiplexer=True, pane_token="")
        with mock.patch.object(tmux, "_run_tmux", side_effect=AssertionError("tmux queried")), mock.patch.object(
            tmux, "current_pane_id", side_effect=AssertionError("focused pane queried")
        ):
            res = resolve_actor(_registry(), inv)
        self.assertEqual((res.actor, res.source), ("codex", "env"))

    def test_failed_pane_lookup_reads_as_outside_tmux(self) -> None:
        from tmux_team.kernel.identity import Invocation, resolve_actor

        inv = Invocation(advisory="codex", in_multiplexer=True, pane_token="%1")
        res = resolve_actor(_registry(), inv, locate=lambda token: None)
        self.assertEqual((res.actor, res.source, res.warning), ("codex", "env", None))

    def test_first_registration_wins_for_duplicate_panes(self) -> None:
        from tmux_team.contracts.v1 import PaneEntry
        from tmux_team.kernel.identity import Invocation, resolve_actor

        registry = {"a": PaneEntry(pane="1.0"), "b": PaneEntry(pane="1.0")}
        inv = Invocation(in_multiplexer=True, pane_token="%1")
        res = resolve_actor(registry, inv, locate=_at("1.0"))
        self.assertEqual(res.actor, "a")


if __name__ == "__main__":
    unittest.main()
