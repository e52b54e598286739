"""
Unit tests for the batch executor.
"""
import pytest
from pydantic import ValidationError as SchemaValidationError

from asset_admin.core.config import settings
from asset_admin.core.exceptions import ConflictError, NotFoundError, PartialBatchFailure
from asset_admin.schemas.assets import BatchOptions
from asset_admin.services.batch import (
    BatchExecutor,
    ItemOutcome,
    ItemStatus,
    partition,
)


class FakeClock:
    """Clock advancing a fixed step on every reading."""

    def __init__(self, step: float):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.mark.unit
class TestPartition:
    """Test cases for batch partitioning."""

    def test_partition_sizes(self):
        """Test items split into ceil(n / size) batches in order."""
        batches = partition(list(range(45)), 20)
        assert [len(b) for b in batches] == [20, 20, 5]
        assert [i for b in batches for i in b] == list(range(45))

    def test_partition_empty(self):
        """Test empty input gives no batches."""
        assert partition([], 20) == []

    def test_partition_rejects_non_positive_size(self):
        """Test batch size must be at least one."""
        with pytest.raises(ValueError):
            partition([1, 2], 0)

    def test_batch_options_follow_settings(self):
        """Test request batch sizes default to and are capped by the configured limits."""
        assert BatchOptions().batch_size == settings.DEFAULT_BATCH_SIZE
        assert BatchOptions(batch_size=settings.MAX_BATCH_SIZE).batch_size == settings.MAX_BATCH_SIZE
        with pytest.raises(SchemaValidationError):
            BatchOptions(batch_size=settings.MAX_BATCH_SIZE + 1)


@pytest.mark.unit
class TestBatchExecutor:
    """Test cases for BatchExecutor."""

    @pytest.mark.asyncio
    async def test_counts_add_up(self):
        """Test processed, skipped and failed always sum to the attempted items."""
        async def handler(item):
            if item % 3 == 0:
                return ItemOutcome.skipped(str(item), "multiple of three")
            if item % 5 == 0:
                raise NotFoundError(f"{item} missing")
            return ItemOutcome(item_id=str(item), metrics={"bytes": item})

        executor = BatchExecutor("test", batch_size=4, continue_on_error=True)
        report = await executor.run(list(range(1, 16)), handler)

        assert report.total == 15
        assert report.processed + report.skipped + report.failed == 15
        assert report.skipped == 5
        assert report.failed == 2
        assert report.totals["bytes"] == sum(i for i in range(1, 16) if i % 3 and i % 5)
        assert not report.success

    @pytest.mark.asyncio
    async def test_failure_recorded_with_code(self):
        """Test service errors become failed outcomes with their code and details."""
        async def handler(item):
            raise ConflictError("taken", code="NAME_COLLISION", details={"destination": "/a"})

        report = await BatchExecutor("test", continue_on_error=True).run(["x"], handler)

        outcome = report.items[0]
        assert outcome.status == ItemStatus.FAILED
        assert outcome.error_code == "NAME_COLLISION"
        assert outcome.changes["details"] == {"destination": "/a"}

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self):
        """Test arbitrary exceptions are recorded, not raised."""
        async def handler(item):
            raise RuntimeError("boom")

        report = await BatchExecutor("test", continue_on_error=True).run(["x"], handler)
        assert report.items[0].error_code == "INTERNAL_ERROR"
        assert report.items[0].error == "boom"

    @pytest.mark.asyncio
    async def test_stops_after_first_failure(self):
        """Test without continue_on_error later items are not started."""
        seen = []

        async def handler(item):
            seen.append(item)
            if item == 3:
                raise NotFoundError("gone")
            return ItemOutcome(item_id=str(item))

        report = await BatchExecutor("test", batch_size=2).run([1, 2, 3, 4, 5, 6], handler)

        assert seen == [1, 2, 3]
        assert report.aborted
        assert report.processed == 2
        assert report.failed == 1
        assert any("3 items were not started" in w for w in report.warnings)

    @pytest.mark.asyncio
    async def test_deadline_checked_between_batches(self):
        """Test the time budget stops new batches but finishes the current one."""
        async def handler(item):
            return ItemOutcome(item_id=str(item))

        executor = BatchExecutor(
            "test", batch_size=2, max_processing_seconds=2.5, clock=FakeClock(step=1.0)
        )
        report = await executor.run(list(range(10)), handler)

        assert 0 < report.processed < 10
        assert report.processed % 2 == 0
        assert any("time limit" in w for w in report.warnings)
        assert report.summary["not_started_batches"] == (10 - report.processed) // 2

    @pytest.mark.asyncio
    async def test_issues_grouped_by_category(self):
        """Test per-item issues are grouped in the report."""
        async def handler(item):
            return ItemOutcome(
                item_id=str(item),
                issues=[{"category": "size_mismatch", "file_id": str(item)}],
                warnings=[f"warn {item}"],
            )

        report = await BatchExecutor("test").run([1, 2], handler)
        assert len(report.issues["size_mismatch"]) == 2
        assert report.warnings == ["warn 1", "warn 2"]

    @pytest.mark.asyncio
    async def test_raise_for_partial_failure(self):
        """Test a report with failures can be turned into an exception."""
        async def handler(item):
            raise NotFoundError("gone")

        report = await BatchExecutor("test", continue_on_error=True).run([1], handler)
        with pytest.raises(PartialBatchFailure) as exc_info:
            report.raise_for_partial_failure()
        assert exc_info.value.report is report

    @pytest.mark.asyncio
    async def test_report_serializes(self):
        """Test report dictionaries carry counters and items."""
        async def handler(item):
            return ItemOutcome(item_id=str(item), before={"a": 1}, after={"a": 2})

        report = await BatchExecutor("test", dry_run=True).run([1], handler)
        data = report.to_dict()
        assert data["dry_run"] is True
        assert data["success"] is True
        assert data["items"][0]["after"] == {"a": 2}
