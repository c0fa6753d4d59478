"""
Unit tests for the target gate and case deduplicator.
"""

import pytest
from unittest.mock import AsyncMock

from auditsync.cases import CaseDeduplicator, TargetGate
from auditsync.core.events import AuditEvent, ExtractedValue
from auditsync.database import CaseStatus, DuplicateKeyError, RepositoryError


@pytest.fixture
def event():
    return AuditEvent(id="s1_e1_1", target="DB1", sql_text="msisdn = '964750770'")


@pytest.fixture
def values():
    return [
        ExtractedValue(
            rule_id=1,
            rule_name="msisdn",
            regex_pattern=r"msisdn = '(\d+)'",
            source_field="text",
            value="964750770",
        ),
        ExtractedValue(
            rule_id=2,
            rule_name="table",
            regex_pattern=r"FROM (\w+)",
            source_field="text",
            value="subscribers",
        ),
    ]


class TestTargetGate:
    """Test cases for TargetGate."""

    @pytest.fixture
    def target_repository(self):
        repository = AsyncMock()
        repository.exists.side_effect = lambda name: name == "DB1"
        return repository

    @pytest.fixture
    def gate(self, target_repository):
        return TargetGate(target_repository)

    async def test_known_target_is_eligible(self, gate):
        """Test that a registered target passes."""
        assert await gate.is_eligible("DB1") is True

    async def test_unknown_target_is_rejected(self, gate):
        """Test that an unregistered target is dropped."""
        assert await gate.is_eligible("Unknown") is False

    @pytest.mark.parametrize("target", ["", "   ", None])
    async def test_blank_target_is_rejected_without_lookup(self, gate, target_repository, target):
        """Test that a blank target never reaches the store."""
        assert await gate.is_eligible(target) is False
        target_repository.exists.assert_not_called()

    async def test_lookup_is_case_sensitive(self, gate):
        """Test that target names match exactly."""
        assert await gate.is_eligible("db1") is False

    async def test_store_failure_propagates(self, target_repository, gate):
        """Test that a lookup failure is not mistaken for ineligibility."""
        target_repository.exists.side_effect = RepositoryError("down")

        with pytest.raises(RepositoryError):
            await gate.is_eligible("DB1")


class TestCaseDeduplicator:
    """Test cases for CaseDeduplicator."""

    @pytest.fixture
    def case_repository(self):
        repository = AsyncMock()
        repository.exists_for_audit_log.return_value = False
        repository.create.side_effect = lambda case: case.id
        return repository

    @pytest.fixture
    def extraction_repository(self):
        repository = AsyncMock()
        repository.create_batch.side_effect = lambda rows: len(rows)
        return repository

    @pytest.fixture
    def deduplicator(self, case_repository, extraction_repository):
        return CaseDeduplicator(case_repository, extraction_repository)

    async def test_creates_case_with_extractions(self, deduplicator, case_repository,
                                                 extraction_repository, event, values):
        """Test case creation for an event with values."""
        case_id = await deduplicator.ensure_case(event, values)

        assert case_id is not None
        case = case_repository.create.call_args.args[0]
        assert case.id == case_id
        assert case.audit_log_id == "s1_e1_1"
        assert case.case_status == CaseStatus.OPEN.value
        assert case.valid is None
        assert case.created_at == case.updated_at

        rows = extraction_repository.create_batch.call_args.args[0]
        assert [row.field_value for row in rows] == ["964750770", "subscribers"]
        assert all(row.case_id == case_id for row in rows)
        assert all(row.audit_log_id == "s1_e1_1" for row in rows)
        assert rows[0].rule_id == 1
        assert rows[0].regex_pattern == r"msisdn = '(\d+)'"
        assert rows[0].source_field == "text"
        assert rows[0].extracted_at == case.created_at

    async def test_no_values_creates_nothing(self, deduplicator, case_repository, event):
        """Test that an event without values never opens a case."""
        assert await deduplicator.ensure_case(event, []) is None

        case_repository.exists_for_audit_log.assert_not_called()
        case_repository.create.assert_not_called()

    async def test_existing_case_is_left_alone(self, deduplicator, case_repository,
                                               extraction_repository, event, values):
        """Test that a second delivery does not create another case."""
        case_repository.exists_for_audit_log.return_value = True

        assert await deduplicator.ensure_case(event, values) is None

        case_repository.create.assert_not_called()
        extraction_repository.create_batch.assert_not_called()

    async def test_concurrent_creation_is_a_no_op(self, deduplicator, case_repository,
                                                  extraction_repository, event, values):
        """Test that losing the unique-constraint race is treated as existing."""
        case_repository.create.side_effect = DuplicateKeyError("uq_cases_audit_log_id")

        assert await deduplicator.ensure_case(event, values) is None

        extraction_repository.create_batch.assert_not_called()

    async def test_store_failure_propagates(self, deduplicator, case_repository, event, values):
        """Test that other write failures reach the caller."""
        case_repository.create.side_effect = RepositoryError("down")

        with pytest.raises(RepositoryError):
            await deduplicator.ensure_case(event, values)

    async def test_case_ids_are_unique(self, deduplicator, event, values):
        """Test that every case gets a fresh id."""
        first = await deduplicator.ensure_case(event, values)
        second = await deduplicator.ensure_case(
            AuditEvent(id="s2_e1_1", target="DB1"), values
        )

        assert first != second
