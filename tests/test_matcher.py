"""
Tests for pattern compilation and line classification.
"""

import pytest

from tailwatch.core import LogLine
from tailwatch.errors import InvalidPattern
from tailwatch.matcher import DEFAULT_PATTERNS, RuleSet, classify, compile_rules


def line(text: str) -> LogLine:
    return LogLine(source="/var/log/syslog", text=text)


class TestCompileRules:
    """Tests for compile_rules."""

    def test_compiles_patterns_in_order(self) -> None:
        """Test that patterns keep their configured order."""
        rules = compile_rules(["error", "denied", "panic"])

        assert rules.patterns == ("error", "denied", "panic")
        assert len(rules) == 3
        assert rules.combined is not None

    def test_drops_duplicates(self) -> None:
        """Test that repeated patterns are kept once."""
        rules = compile_rules(["error", "fail", "error"])

        assert rules.patterns == ("error", "fail")

    def test_invalid_regex_raises(self) -> None:
        """Test that a bad regex fails at compile time with the pattern named."""
        with pytest.raises(InvalidPattern) as excinfo:
            compile_rules(["error", "disk (full"])

        assert excinfo.value.pattern == "disk (full"
        assert "disk (full" in str(excinfo.value)

    def test_invalid_pattern_is_value_error(self) -> None:
        """Test that InvalidPattern can be handled as a ValueError."""
        with pytest.raises(ValueError):
            compile_rules(["[unclosed"])

    @pytest.mark.parametrize("pattern", ["", "   "])
    def test_empty_pattern_rejected(self, pattern: str) -> None:
        """Test that an empty alternative (which would match everything) is rejected."""
        with pytest.raises(InvalidPattern):
            compile_rules(["error", pattern])

    def test_empty_list_gives_empty_rule_set(self) -> None:
        """Test compiling no patterns."""
        rules = compile_rules([])

        assert rules == RuleSet()
        assert not rules

    def test_default_patterns_compile(self) -> None:
        """Test that the default pattern list is valid."""
        rules = compile_rules(DEFAULT_PATTERNS)

        assert "segfault" in rules.patterns
        assert "unauthorized" in rules.patterns


class TestClassify:
    """Tests for classify."""

    def test_match_is_case_insensitive(self) -> None:
        """Test that case does not matter."""
        rules = compile_rules(["error"])

        assert classify(line("2024 ERROR disk full"), rules) == "error"
        assert classify(line("2024 Error disk full"), rules) == "error"

    def test_no_match(self) -> None:
        """Test a line without any configured word."""
        rules = compile_rules(["error", "denied"])

        assert classify(line("2024 OK start"), rules) is None

    def test_empty_rule_set_never_matches(self) -> None:
        """Test that an empty rule set matches nothing."""
        assert classify(line("error everywhere"), compile_rules([])) is None
        assert classify(line(""), RuleSet()) is None

    def test_substring_match(self) -> None:
        """Test that patterns match anywhere in the line."""
        rules = compile_rules(["fail"])

        assert classify(line("sshd: authentication failure"), rules) == "fail"

    def test_regex_pattern(self) -> None:
        """Test regular expression alternatives."""
        rules = compile_rules([r"exit code [1-9]\d*"])

        assert classify(line("job exited: exit code 137"), rules) == r"exit code [1-9]\d*"
        assert classify(line("job exited: exit code 0"), rules) is None

    def test_leftmost_match_wins(self) -> None:
        """Test that the rule reported is the one matching earliest in the line."""
        rules = compile_rules(["error", "denied"])

        assert classify(line("permission denied, error 13"), rules) == "denied"
        assert classify(line("error 13: permission denied"), rules) == "error"

    def test_user_groups_do_not_confuse_rule_lookup(self) -> None:
        """Test patterns that contain their own capture groups."""
        rules = compile_rules(["(seg)fault", "(?P<code>panic)"])

        assert classify(line("kernel: segfault at 0"), rules) == "(seg)fault"
        assert classify(line("Kernel PANIC - not syncing"), rules) == "(?P<code>panic)"

    def test_conflicting_group_names_fall_back(self) -> None:
        """Test patterns that cannot share one regex still classify correctly."""
        rules = compile_rules(["(?P<word>error)", "(?P<word>denied)"])

        assert rules.combined is None
        assert classify(line("access denied"), rules) == "(?P<word>denied)"
        assert classify(line("all good"), rules) is None

    def test_backreferences_keep_their_numbering(self) -> None:
        """Test that a numbered backreference still matches next to other patterns."""
        rules = compile_rules(["zzz", r"(a)\1"])

        assert rules.combined is None
        assert classify(line("xx aa yy"), rules) == r"(a)\1"
        assert classify(line("xx ab yy"), rules) is None
        assert classify(line("zzz then aa"), rules) == "zzz"

    def test_group_free_patterns_share_one_regex(self) -> None:
        """Test that non-capturing patterns use the combined regex."""
        rules = compile_rules(["(?:seg)fault", "panic"])

        assert rules.combined is not None
        assert classify(line("kernel: segfault at 0"), rules) == "(?:seg)fault"
