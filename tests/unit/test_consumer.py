"""
Unit tests for the ingestion loop control flow.

Tests cover:
- Commit after success, retry on failure
- Fetch and commit failures
- Graceful shutdown
- Running several loops together
"""

import asyncio
import logging
import os
import signal

import pytest
from unittest.mock import AsyncMock, Mock

from auditsync.config import IngestionConfig
from auditsync.consumer import (
    AuditIngestionService,
    ProcessingResult,
    run_ingestion_service,
)
from auditsync.core.events import ExtractedValue
from auditsync.database import RepositoryError
from auditsync.extraction import ExtractionOutcome, RequiredRuleFailed

from factories import InMemorySource, create_test_audit_event, make_record


def make_service(source, **overrides):
    gate = AsyncMock()
    gate.is_eligible.return_value = True
    rule_cache = AsyncMock()
    rule_cache.rules_for.return_value = [Mock()]
    engine = Mock()
    engine.apply.return_value = ExtractionOutcome(values=[
        ExtractedValue(rule_id=1, rule_name="msisdn", regex_pattern="(\\d+)",
                       source_field="text", value="964750770"),
    ])
    deduplicator = AsyncMock()
    deduplicator.ensure_case.return_value = "case-1"

    components = dict(
        source=source,
        decoder=None,
        gate=gate,
        audit_repository=AsyncMock(),
        rule_cache=rule_cache,
        engine=engine,
        deduplicator=deduplicator,
        config=IngestionConfig(retry_backoff_seconds=0.0),
    )
    components.update(overrides)
    return AuditIngestionService(**components)


def record(offset=0, **overrides):
    return make_record(create_test_audit_event(**overrides), offset=offset)


class TestProcessingResult:
    """Test cases for ProcessingResult."""

    def test_only_required_rule_failure_blocks_commit(self):
        """Test which results may be committed."""
        blocked = [result for result in ProcessingResult if not result.committable]

        assert blocked == [ProcessingResult.RETRY_REQUIRED_RULE]


class TestAuditIngestionService:
    """Test cases for AuditIngestionService."""

    async def test_pipeline_order(self):
        """Test that stages run in order and the case result is reported."""
        service = make_service(InMemorySource([]))

        result = await service.process_record(record(offset=4))

        assert result == ProcessingResult.CASE_CREATED
        service.gate.is_eligible.assert_awaited_once_with("DB1")
        event, partition, offset = service.audit_repository.upsert.call_args.args
        assert (partition, offset) == (0, 4)
        service.rule_cache.rules_for.assert_awaited_once_with("DB1")
        service.deduplicator.ensure_case.assert_awaited_once()
        assert service.stats.values_extracted == 1

    async def test_gate_rejection_skips_store(self):
        """Test that an ineligible event never reaches the store."""
        gate = AsyncMock()
        gate.is_eligible.return_value = False
        service = make_service(InMemorySource([]), gate=gate)

        assert await service.process_record(record()) == ProcessingResult.SKIPPED_UNKNOWN_TARGET
        service.audit_repository.upsert.assert_not_called()

    async def test_blank_target_skips_gate(self):
        """Test that a blank target is rejected before the gate."""
        service = make_service(InMemorySource([]))

        assert await service.process_record(record(Target="  ")) == ProcessingResult.SKIPPED_NO_TARGET
        service.gate.is_eligible.assert_not_called()

    async def test_empty_rules(self):
        """Test that a target without rules stops after persistence."""
        rule_cache = AsyncMock()
        rule_cache.rules_for.return_value = []
        service = make_service(InMemorySource([]), rule_cache=rule_cache)

        assert await service.process_record(record()) == ProcessingResult.STORED_NO_RULES
        service.audit_repository.upsert.assert_awaited_once()
        service.engine.apply.assert_not_called()

    async def test_required_failure_result(self):
        """Test that a failed required rule creates no case."""
        engine = Mock()
        engine.apply.return_value = ExtractionOutcome(failure=RequiredRuleFailed("imsi", "DB1"))
        service = make_service(InMemorySource([]), engine=engine)

        assert await service.process_record(record()) == ProcessingResult.RETRY_REQUIRED_RULE
        service.deduplicator.ensure_case.assert_not_called()

    async def test_successful_records_are_committed_in_order(self):
        """Test commit after each processed record."""
        source = InMemorySource([record(offset=0), record(offset=1), record(offset=2)])
        service = make_service(source)

        await service.run()

        assert source.committed == [0, 1, 2]
        assert source.rewound == []
        assert service.get_metrics()["records_committed"] == 3
        assert not service.running

    async def test_processing_error_rewinds_and_retries(self):
        """Test that a failing record is fetched again and then committed."""
        audit_repository = AsyncMock()
        audit_repository.upsert.side_effect = [RepositoryError("down"), None, None]
        source = InMemorySource([record(offset=0), record(offset=1)])
        service = make_service(source, audit_repository=audit_repository)

        await service.run()

        assert source.rewound == [0]
        assert source.committed == [0, 1]
        assert service.stats.records_retried == 1

    async def test_commit_failure_is_retried(self):
        """Test that a failed commit leaves the record for redelivery."""
        source = InMemorySource([record(offset=0)])
        commits = []

        def flaky_commit(message):
            commits.append(message.offset())
            if len(commits) == 1:
                raise RuntimeError("coordinator not available")
            source.committed.append(message.offset())

        source.commit = flaky_commit
        service = make_service(source)

        await service.run()

        assert source.rewound == [0]
        assert source.committed == [0]
        assert service.deduplicator.ensure_case.await_count == 2

    async def test_fetch_error_backs_off_and_continues(self):
        """Test that a failing fetch does not end the loop."""
        source = InMemorySource([record(offset=0)])
        real_fetch = source.fetch
        attempts = []

        async def flaky_fetch(shutdown_event):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("broker transport failure")
            return await real_fetch(shutdown_event)

        source.fetch = flaky_fetch
        service = make_service(source)

        await service.run()

        assert source.committed == [0]
        assert source.closed

    async def test_stop_interrupts_backoff(self):
        """Test that shutdown ends a long retry wait promptly."""
        engine = Mock()
        engine.apply.return_value = ExtractionOutcome(failure=RequiredRuleFailed("imsi", "DB1"))
        source = InMemorySource([record(offset=0)], max_fetches=1000)
        service = make_service(
            source,
            engine=engine,
            config=IngestionConfig(retry_backoff_seconds=60.0),
        )

        task = asyncio.create_task(service.run())
        await asyncio.sleep(0.05)
        service.stop()
        await asyncio.wait_for(task, timeout=5)

        assert source.committed == []
        assert source.rewound == [0]
        assert source.closed

    async def test_run_ingestion_service_runs_all_loops(self):
        """Test that several loops run until their sources are drained."""
        sources = [InMemorySource([record(offset=i)]) for i in range(3)]
        services = [make_service(source) for source in sources]

        await run_ingestion_service(services)

        assert [source.committed for source in sources] == [[0], [1], [2]]

    async def test_signal_stops_every_loop(self):
        """Test that SIGTERM requests shutdown of all loops."""
        sources = [InMemorySource([record(offset=0)], max_fetches=1000) for _ in range(2)]
        engine = Mock()
        engine.apply.return_value = ExtractionOutcome(failure=RequiredRuleFailed("imsi", "DB1"))
        services = [
            make_service(source, engine=engine, config=IngestionConfig(retry_backoff_seconds=60.0))
            for source in sources
        ]

        task = asyncio.create_task(run_ingestion_service(services))
        await asyncio.sleep(0.05)
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(task, timeout=5)

        assert all(service.shutdown_event.is_set() for service in services)
        assert all(source.closed for source in sources)

    async def test_loop_failure_propagates(self):
        """Test that an unexpected loop failure is re-raised."""
        broken = Mock()
        broken.subscribe.side_effect = RuntimeError("cannot subscribe")
        services = [make_service(broken), make_service(InMemorySource([record(offset=0)]))]

        with pytest.raises(RuntimeError, match="cannot subscribe"):
            await run_ingestion_service(services)

    async def test_loop_failure_stops_busy_loops(self, caplog):
        """Test that one failed loop stops the others and is logged."""
        broken = Mock()
        broken.subscribe.side_effect = RuntimeError("cannot subscribe")
        engine = Mock()
        engine.apply.return_value = ExtractionOutcome(failure=RequiredRuleFailed("imsi", "DB1"))
        busy_source = InMemorySource([record(offset=0)], max_fetches=1000)
        busy = make_service(
            busy_source,
            engine=engine,
            config=IngestionConfig(retry_backoff_seconds=60.0),
        )

        with caplog.at_level(logging.ERROR, logger="auditsync.consumer.consumer"):
            with pytest.raises(RuntimeError, match="cannot subscribe"):
                await asyncio.wait_for(
                    run_ingestion_service([make_service(broken), busy]),
                    timeout=5,
                )

        assert busy.shutdown_event.is_set()
        assert busy_source.closed
        assert any("cannot subscribe" in r.getMessage() for r in caplog.records)
        assert any("stopping the remaining 1" in r.getMessage() for r in caplog.records)

    async def test_subscribe_failure_closes_source(self):
        """Test that a source that cannot subscribe is still closed."""
        broken = Mock()
        broken.subscribe.side_effect = RuntimeError("cannot subscribe")
        service = make_service(broken)

        with pytest.raises(RuntimeError):
            await service.run()

        broken.close.assert_called_once()
        assert service.running is False
