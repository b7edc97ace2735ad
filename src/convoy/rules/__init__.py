"""
Rules module - Ruleset loading and label discovery.
"""

from .rule_parser import (
    Rule,
    RuleSet,
    RuleParser,
    RuleParseError,
    stage_rule_paths,
    list_label_values,
)


__all__ = [
    "Rule",
    "RuleSet",
    "RuleParser",
    "RuleParseError",
    "stage_rule_paths",
    "list_label_values",
]
