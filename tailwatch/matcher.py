"""
Pattern matching for log lines.

A RuleSet is compiled once, when configuration is loaded, into a single
case-insensitive alternation so each line is scanned in one pass.
Compilation is where bad patterns are rejected; classify() never raises.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from tailwatch.core import LogLine
from tailwatch.errors import InvalidPattern
from tailwatch.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_PATTERNS: tuple[str, ...] = (
    "error",
    "fail",
    "failed",
    "denied",
    "critical",
    "panic",
    "segfault",
    "unauthorized",
    "refused",
)

_GROUP_PREFIX = "_tw_rule"


@dataclass(frozen=True)
class RuleSet:
    """
    An ordered, immutable set of alert patterns.

    Build instances with compile_rules(); the combined regex is None for an
    empty set, when the alternatives cannot share one regex (duplicate named
    groups), or when any pattern has capture groups, since wrapping it would
    renumber its backreferences. Then `compiled` is searched pattern by pattern.
    """
    patterns: tuple[str, ...] = ()
    combined: re.Pattern[str] | None = field(default=None, compare=False, repr=False)
    compiled: tuple[re.Pattern[str], ...] = field(default=(), compare=False, repr=False)

    def __len__(self) -> int:
        return len(self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)


def compile_rules(patterns: Iterable[str]) -> RuleSet:
    """
    Compile patterns into a RuleSet.

    Duplicates are dropped, keeping the first occurrence.

    Args:
        patterns: Case-insensitive regular expressions

    Returns:
        The compiled RuleSet

    Raises:
        InvalidPattern: If a pattern is empty or is not a valid regex
    """
    unique: list[str] = []
    for pattern in patterns:
        if not isinstance(pattern, str) or not pattern.strip():
            raise InvalidPattern(str(pattern), "pattern must be a non-empty string")
        if pattern not in unique:
            unique.append(pattern)

    compiled = []
    for pattern in unique:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            raise InvalidPattern(pattern, str(e)) from e

    if not unique:
        return RuleSet()

    if any(regex.groups for regex in compiled):
        return RuleSet(patterns=tuple(unique), combined=None, compiled=tuple(compiled))

    alternation = "|".join(
        f"(?P<{_GROUP_PREFIX}{index}>{pattern})" for index, pattern in enumerate(unique)
    )
    try:
        combined = re.compile(alternation, re.IGNORECASE)
    except re.error as e:
        logger.debug("Patterns cannot share one regex (%s); matching them in order", e)
        combined = None

    return RuleSet(patterns=tuple(unique), combined=combined, compiled=tuple(compiled))


def classify(line: LogLine, rules: RuleSet) -> str | None:
    """
    Classify a line against a rule set.

    Args:
        line: The line to classify
        rules: A compiled RuleSet

    Returns:
        The pattern that matched at the leftmost position, or None if the
        line is not an alert. An empty RuleSet matches nothing.
    """
    if not rules.patterns:
        return None

    if rules.combined is not None:
        match = rules.combined.search(line.text)
        if match is None:
            return None
        # The combined regex only holds the rule wrappers, so the last
        # closed group names the rule.
        group = match.lastgroup or ""
        return rules.patterns[int(group[len(_GROUP_PREFIX):])]

    best: tuple[int, str] | None = None
    for pattern, regex in zip(rules.patterns, rules.compiled):
        found = regex.search(line.text)
        if found is not None and (best is None or found.start() < best[0]):
            best = (found.start(), pattern)
    return best[1] if best is not None else None
