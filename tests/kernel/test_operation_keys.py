"""Tests for operation key generation and parsing."""

from uuid import UUID

import pytest

from pharmacy_kernel.domain.dtos import OperationStep
from pharmacy_kernel.utils.idempotency import (
    PLAN_TAG_LENGTH,
    generate_operation_key,
    operation_key_prefix,
    parse_operation_key,
    plan_tag,
)

LINE_ID = UUID("550e8400-e29b-41d4-a716-446655440000")


class TestGenerate:
    def test_format(self):
        key = generate_operation_key("RET-3f2a9c1d-7", LINE_ID, OperationStep.RESTOCK)

        assert key == "RET-3f2a9c1d-7:550e8400-e29b-41d4-a716-446655440000:restock"

    def test_accepts_plain_step_string(self):
        key = generate_operation_key("K", LINE_ID, "record")

        assert key.endswith(":record")

    def test_empty_idempotency_key_rejected(self):
        with pytest.raises(ValueError):
            generate_operation_key("", LINE_ID, OperationStep.RECORD)

    def test_prefix_matches_every_step(self):
        prefix = operation_key_prefix("RET-3f2a9c1d-7")

        for step in OperationStep:
            assert generate_operation_key("RET-3f2a9c1d-7", LINE_ID, step).startswith(prefix)

    def test_prefix_does_not_match_longer_key(self):
        """Commit 1 must not pick up the operations of commit 10."""
        key = generate_operation_key("RET-3f2a9c1d-10", LINE_ID, OperationStep.RECORD)

        assert not key.startswith(operation_key_prefix("RET-3f2a9c1d-1"))


class TestParse:
    def test_parse(self):
        key = generate_operation_key("RET-3f2a9c1d-7", LINE_ID, OperationStep.LINK)

        parsed = parse_operation_key(key)

        assert parsed.idempotency_key == "RET-3f2a9c1d-7"
        assert parsed.line_item_id == LINE_ID
        assert parsed.step is OperationStep.LINK
        assert parsed.plan_tag is None

    def test_idempotency_key_may_contain_colons(self):
        key = generate_operation_key("tenant:42:RET-1", LINE_ID, OperationStep.RECORD)

        assert parse_operation_key(key)[0] == "tenant:42:RET-1"

    @pytest.mark.parametrize(
        "key",
        [
            "no-separators",
            f":{LINE_ID}:record",
            "K:not-a-uuid:record",
            f"K:{LINE_ID}:unknown_step",
            f"K:{LINE_ID}:record@",
        ],
    )
    def test_malformed(self, key):
        with pytest.raises(ValueError):
            parse_operation_key(key)


class TestPlanTag:
    TARGET = UUID("6ba7b810-9dad-11d1-80b4-00c04fd430c8")

    def test_stable_for_the_same_plan(self):
        assert plan_tag("exchange", 2, self.TARGET) == plan_tag("exchange", 2, str(self.TARGET))
        assert len(plan_tag("return_to_stock", 3)) == PLAN_TAG_LENGTH

    @pytest.mark.parametrize(
        "other",
        [
            ("exchange", 3, TARGET),
            ("exchange", 2, LINE_ID),
            ("dispose", 2, None),
        ],
    )
    def test_differs_when_the_plan_changes(self, other):
        assert plan_tag(*other) != plan_tag("exchange", 2, self.TARGET)

    def test_tagged_key_round_trips(self):
        tag = plan_tag("dispose", 1)
        key = generate_operation_key("tenant:42:RET-1", LINE_ID, OperationStep.RECORD, tag)

        parsed = parse_operation_key(key)

        assert key.endswith(f":record@{tag}")
        assert parsed.idempotency_key == "tenant:42:RET-1"
        assert parsed.step is OperationStep.RECORD
        assert parsed.plan_tag == tag

    @pytest.mark.parametrize("tag", ["", "a:b", "a@b"])
    def test_invalid_tag_rejected(self, tag):
        with pytest.raises(ValueError):
            generate_operation_key("K", LINE_ID, OperationStep.RECORD, tag)
