import unittest


class TestPermissionPath(unittest.TestCase):
    def test_path_without_fields(self) -> None:
        from tmux_team.contracts.v1 import PermissionCheck
        from tmux_team.kernel.patterns import build_permission_path

        self.assertEqual(build_permission_path(PermissionCheck(resource="task", action="list")), "pm:task:list")

    def test_path_sorts_fields(self) -> None:
        from tmux_team.contracts.v1 import PermissionCheck
        from tmux_team.kernel.patterns import build_permission_path, parse_permission_path

        check = PermissionCheck(resource="task", action="update", fields=frozenset({"status", "assignee"}))
        path = build_permission_path(check)
        self.assertEqual(path, "pm:task:update(assignee,status)")
        self.assertEqual(parse_permission_path(path), ("task", "update", ["assignee", "status"]))

    def test_parse_permission_path_rejects_garbage(self) -> None:
        from tmux_team.kernel.patterns import parse_permission_path

        self.assertIsNone(parse_permission_path("task:update"))
        self.assertIsNone(parse_permission_path("pm:task:update(*)"))

    def test_check_rejects_bad_tokens(self) -> None:
        from tmux_team.contracts.v1 import PermissionCheck

        with self.assertRaises(ValueError):
            PermissionCheck(resource="", action="list")
        with self.assertRaises(ValueError):
            PermissionCheck(resource="task", action="up date")
        with self.assertRaises(ValueError):
            PermissionCheck(resource="task", action="update", fields=frozenset({"a,b"}))


class TestDenyPatterns(unittest.TestCase):
    def test_parse_modes(self) -> None:
        from tmux_team.kernel.patterns import parse_pattern

        r = parse_pattern("pm:task:delete")
        self.assertTrue(r.valid)
        self.assertEqual((r.resource, r.action, r.mode), ("task", "delete", "none"))

        r = parse_pattern("pm:task:update(*)")
        self.assertEqual(r.mode, "wildcard")

        # Field names are trimmed; the pattern as a whole is not.
        r = parse_pattern("pm:task:update( status , assignee )")
        self.assertEqual(r.mode, "explicit")
        self.assertEqual(r.fields, frozenset({"status", "assignee"}))

        self.assertFalse(parse_pattern(" pm:task:delete ").valid)
        self.assertFalse(parse_pattern("pm:task:delete\n").valid)

    def test_padded_star_is_a_field_name_not_a_wildcard(self) -> None:
        from tmux_team.kernel.patterns import never_matches, parse_pattern, rule_matches
        from tmux_team.kernel.permissions import PermissionChecks

        rule = parse_pattern("pm:task:update( * )")
        self.assertEqual(rule.mode, "explicit")
        self.assertEqual(rule.fields, frozenset({"*"}))
        self.assertFalse(rule_matches(rule, PermissionChecks.task_update(["status"])))
        self.assertTrue(never_matches(rule))

    def test_malformed_patterns_are_invalid(self) -> None:
        from tmux_team.kernel.patterns import never_matches, parse_pattern

        for raw in ("", "task:update", "pm:task", "pm:task:update(status", "pm:task:update(status)x", "xx:task:list"):
            rule = parse_pattern(raw)
            self.assertFalse(rule.valid, raw)
            self.assertTrue(never_matches(rule), raw)
        self.assertFalse(never_matches(parse_pattern("pm:task:list")))
        self.assertFalse(never_matches(parse_pattern("pm:task:update(status)")))

    def test_empty_field_list_never_matches(self) -> None:
        from tmux_team.kernel.patterns import never_matches, parse_pattern, rule_matches
        from tmux_team.kernel.permissions import PermissionChecks

        rule = parse_pattern("pm:task:update()")
        self.assertTrue(rule.valid)
        self.assertEqual(rule.mode, "explicit")
        self.assertTrue(never_matches(rule))
        self.assertFalse(rule_matches(rule, PermissionChecks.task_update([])))
        self.assertFalse(rule_matches(rule, PermissionChecks.task_update(["status"])))

    def test_none_mode_blocks_every_usage(self) -> None:
        from tmux_team.kernel.patterns import parse_pattern, rule_matches
        from tmux_team.kernel.permissions import PermissionChecks

        rule = parse_pattern("pm:task:update")
        self.assertTrue(rule_matches(rule, PermissionChecks.task_update([])))
        self.assertTrue(rule_matches(rule, PermissionChecks.task_update(["status"])))
        self.assertFalse(rule_matches(rule, PermissionChecks.task_create()))

    def test_wildcard_needs_at_least_one_field(self) -> None:
        from tmux_team.kernel.patterns import parse_pattern, rule_matches
        from tmux_team.kernel.permissions import PermissionChecks

        rule = parse_pattern("pm:task:update(*)")
        self.assertTrue(rule_matches(rule, PermissionChecks.task_update(["title"])))
        self.assertFalse(rule_matches(rule, PermissionChecks.task_update([])))

        rule = parse_pattern("pm:task:delete(*)")
        self.assertFalse(rule_matches(rule, PermissionChecks.task_delete()))

    def test_explicit_fields_intersect(self) -> None:
        from tmux_team.kernel.patterns import parse_pattern, rule_matches
        from tmux_team.kernel.permissions import PermissionChecks

        rule = parse_pattern("pm:task:update(status)")
        self.assertTrue(rule_matches(rule, PermissionChecks.task_update(["status"])))
        self.assertTrue(rule_matches(rule, PermissionChecks.task_update(["status", "assignee"])))
        self.assertFalse(rule_matches(rule, PermissionChecks.task_update(["assignee"])))
        self.assertFalse(rule_matches(rule, PermissionChecks.task_update([])))

    def test_field_rules_stay_on_their_own_action(self) -> None:
        from tmux_team.kernel.patterns import parse_pattern, rule_matches
        from tmux_team.kernel.permissions import PermissionChecks

        self.assertFalse(rule_matches(parse_pattern("pm:task:update(*)"), PermissionChecks.task_delete()))
        self.assertFalse(rule_matches(parse_pattern("pm:task:update(status)"), PermissionChecks.task_list()))
        self.assertFalse(rule_matches(parse_pattern("pm:task:update(status)"), PermissionChecks.task_create()))

    def test_invalid_rule_never_matches(self) -> None:
        from tmux_team.kernel.patterns import parse_pattern, rule_matches
        from tmux_team.kernel.permissions import PermissionChecks

        rule = parse_pattern("pm:task")
        self.assertFalse(rule_matches(rule, PermissionChecks.task_list()))


if __name__ == "__main__":
    unittest.main()
