"""Unit tests for rules and rule sets."""

from datetime import timedelta

import pytest

from windowlimit.core.errors import InvalidRuleError, InvalidRuleSetError
from windowlimit.core.rules import Rule, RuleSet


class TestRule:
    """Rule construction, copies and bucketing arithmetic."""

    def test_builder_round_trip_keeps_every_field(self) -> None:
        rule = Rule.of(timedelta(minutes=2), 50).with_precision(12).with_name("per-minute")

        assert rule.window_seconds == 120
        assert rule.limit == 50
        assert rule.precision == 12
        assert rule.name == "per-minute"
        assert rule.duration == timedelta(minutes=2)

    def test_of_defaults_to_one_second_buckets_and_no_name(self) -> None:
        rule = Rule.of(timedelta(seconds=60), 10)

        assert rule.precision == 60
        assert rule.name is None
        assert rule.bucket_width == 1

    def test_default_precision_equals_explicit_one_second_buckets(self) -> None:
        assert Rule.of(60, 10) == Rule.of(60, 10).with_precision(60)
        assert hash(Rule.of(60, 10)) == hash(Rule.of(60, 10).with_precision(60))
        assert Rule(window_seconds=60, limit=10).precision == 60

    def test_with_name_keeps_default_precision(self) -> None:
        assert Rule.of(30, 5).with_name("api").precision == 30

    @pytest.mark.parametrize(
        ("duration", "expected"),
        [
            (timedelta(milliseconds=1500), 1),
            (timedelta(seconds=90, microseconds=999_999), 90),
            (59.9, 59),
        ],
    )
    def test_fractional_seconds_are_truncated(self, duration: object, expected: int) -> None:
        rule = Rule.of(duration, 10)  # type: ignore[arg-type]

        assert rule.window_seconds == expected
        assert rule.precision == expected

    def test_builders_return_copies(self) -> None:
        original = Rule.of(timedelta(seconds=60), 10)
        named = original.with_name("api")
        precise = original.with_precision(6)

        assert original.name is None
        assert original.precision == 60
        assert named is not original
        assert precise is not original

    def test_equality_and_hash_cover_all_fields(self) -> None:
        a = Rule.of(60, 10).with_precision(6).with_name("x")
        b = Rule.of(timedelta(minutes=1), 10).with_precision(6).with_name("x")

        assert a == b
        assert hash(a) == hash(b)
        assert a != b.with_name("y")
        assert a != b.with_precision(3)
        assert a != Rule.of(60, 11).with_precision(6).with_name("x")

    def test_rule_is_immutable(self) -> None:
        rule = Rule.of(60, 10)

        with pytest.raises(AttributeError):
            rule.limit = 20  # type: ignore[misc]

    @pytest.mark.parametrize(
        ("duration", "limit"),
        [
            (None, 10),
            (timedelta(0), 10),
            (timedelta(seconds=-5), 10),
            (0, 10),
            (timedelta(milliseconds=500), 10),
            (0.999, 10),
            (float("inf"), 10),
            (float("nan"), 10),
            ("60", 10),
            (60, 0),
            (60, -1),
        ],
    )
    def test_invalid_duration_or_limit(self, duration: object, limit: int) -> None:
        with pytest.raises(InvalidRuleError) as exc_info:
            Rule.of(duration, limit)  # type: ignore[arg-type]

        assert exc_info.value.code == "invalid_rule"

    @pytest.mark.parametrize("precision", [0, -1, 61])
    def test_precision_outside_window_is_rejected(self, precision: int) -> None:
        with pytest.raises(InvalidRuleError):
            Rule.of(60, 10).with_precision(precision)

    def test_invalid_rule_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            Rule.of(60, 0)

    def test_precision_bounds_are_inclusive(self) -> None:
        assert Rule.of(60, 10).with_precision(1).precision == 1
        assert Rule.of(60, 10).with_precision(60).precision == 60

    def test_bucket_index_for_one_second_buckets(self) -> None:
        rule = Rule.of(60, 10).with_precision(60)

        assert rule.bucket_width == 1
        assert rule.bucket_index(1000.0) == 1000
        assert rule.bucket_index(1000.999) == 1000
        assert rule.oldest_live_index(1000) == 941

    def test_bucket_index_with_fractional_width(self) -> None:
        rule = Rule.of(10, 5).with_precision(4)

        assert rule.bucket_width == 2.5
        assert rule.bucket_index(0.0) == 0
        assert rule.bucket_index(2.49) == 0
        assert rule.bucket_index(2.5) == 1
        assert rule.bucket_index(9.99) == 3
        assert rule.bucket_start_ms(1) == 2500
        assert rule.bucket_start_ms(3) == 7500


class TestRuleSet:
    """Structural identity and declared ordering of rule sets."""

    def test_equal_regardless_of_order(self) -> None:
        minute = Rule.of(timedelta(minutes=1), 10)
        hour = Rule.of(timedelta(hours=1), 100)

        assert RuleSet([minute, hour]) == RuleSet([hour, minute])
        assert hash(RuleSet([minute, hour])) == hash(RuleSet([hour, minute]))

    def test_equal_for_separately_built_rules(self) -> None:
        first = RuleSet([Rule.of(60, 10), Rule.of(3600, 100)])
        second = RuleSet([Rule.of(60, 10), Rule.of(3600, 100)])

        assert first == second

    def test_iteration_follows_declaration_order_without_duplicates(self) -> None:
        minute = Rule.of(60, 10).with_name("minute")
        hour = Rule.of(3600, 100).with_name("hour")

        rule_set = RuleSet([hour, minute, Rule.of(3600, 100).with_name("hour")])

        assert list(rule_set) == [hour, minute]
        assert len(rule_set) == 2
        assert minute in rule_set
        assert rule_set.longest_window_seconds == 3600

    def test_differs_when_any_rule_differs(self) -> None:
        assert RuleSet([Rule.of(60, 22)]) != RuleSet([Rule.of(60, 33)])

    @pytest.mark.parametrize("rules", [None, [], (), set()])
    def test_missing_or_empty_rule_set_is_rejected(self, rules: object) -> None:
        with pytest.raises(InvalidRuleSetError):
            RuleSet.coerce(rules)  # type: ignore[arg-type]

    def test_non_rule_members_are_rejected(self) -> None:
        with pytest.raises(InvalidRuleSetError):
            RuleSet([Rule.of(60, 10), (60, 10)])  # type: ignore[list-item]

    def test_coerce_accepts_single_rule_and_rule_set(self) -> None:
        rule = Rule.of(60, 10)
        rule_set = RuleSet([rule])

        assert RuleSet.coerce(rule) == rule_set
        assert RuleSet.coerce(rule_set) is rule_set
        assert RuleSet.coerce(frozenset({rule})) == rule_set
