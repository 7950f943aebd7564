"""Permission paths and deny patterns.

Grammar::

    pm:<resource>:<action>
    pm:<resource>:<action>(<field>,<field>,...)
    pm:<resource>:<action>(*)

Examples:
- pm:task:list
- pm:task:update(status)
- pm:task:update(assignee,status)
- pm:task:update(*)   any usage that touches a field
- pm:task:update      the whole action, with or without fields
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

from ..contracts.v1 import DenyRule, PermissionCheck
from ..contracts.v1.permission import TOKEN_RE

_PATTERN_RE = re.compile(r"pm:([A-Za-z0-9_]+):([A-Za-z0-9_]+)(?:\(([^)]*)\))?")


def build_permission_path(check: PermissionCheck) -> str:
    base = f"pm:{check.resource}:{check.action}"
    if not check.fields:
        return base
    return f"{base}({','.join(check.sorted_fields())})"


def parse_pattern(text: str) -> DenyRule:
    raw = text if isinstance(text, str) else ""
    m = _PATTERN_RE.fullmatch(raw)
    if m is None:
        return DenyRule(raw=raw)

    resource, action, fields_str = m.group(1), m.group(2), m.group(3)
    if fields_str is None:
        return DenyRule(raw=raw, resource=resource, action=action, mode="none")
    if fields_str == "*":
        return DenyRule(raw=raw, resource=resource, action=action, mode="wildcard")

    fields = frozenset(f.strip() for f in fields_str.split(",") if f.strip())
    return DenyRule(raw=raw, resource=resource, action=action, mode="explicit", fields=fields)


def parse_patterns(patterns: Iterable[str]) -> List[DenyRule]:
    return [parse_pattern(p) for p in patterns]


def rule_matches(rule: DenyRule, check: PermissionCheck) -> bool:
    if not rule.valid:
        return False
    if rule.resource != check.resource or rule.action != check.action:
        return False
    if rule.mode == "none":
        return True
    if rule.mode == "wildcard":
        # (*) leaves the zero-field form of the action alone (e.g. a plain delete).
        return len(check.fields) > 0
    return not rule.fields.isdisjoint(check.fields)


def matching_rules(rules: Iterable[DenyRule], check: PermissionCheck) -> List[DenyRule]:
    return [r for r in rules if rule_matches(r, check)]


def parse_permission_path(path: str) -> Optional[Tuple[str, str, List[str]]]:
    """Inverse of build_permission_path: (resource, action, sorted fields), or None."""
    rule = parse_pattern(path)
    if not rule.valid or rule.mode == "wildcard":
        return None
    return rule.resource, rule.action, sorted(rule.fields)


def never_matches(rule: DenyRule) -> bool:
    """Malformed, or an explicit field list with no usable field name, e.g. `update()` or `update( * )`."""
    if not rule.valid:
        return True
    return rule.mode == "explicit" and not any(TOKEN_RE.fullmatch(f) for f in rule.fields)
