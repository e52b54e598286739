"""
Batch execution and operation reports.

``BatchExecutor`` is the only code that touches report counters. Handlers
return an ``ItemOutcome`` (or raise) and the executor records it.
"""
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from asset_admin.core.exceptions import PartialBatchFailure, ServiceException

logger = logging.getLogger(__name__)

T = TypeVar("T")


def partition(items: Sequence[T], size: int) -> List[List[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError("batch size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class ItemStatus(str, enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemOutcome:
    item_id: str
    status: ItemStatus = ItemStatus.PROCESSED
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    changes: Dict[str, Any] = field(default_factory=dict)
    metrics: Dict[str, int] = field(default_factory=dict)
    issues: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def skipped(cls, item_id: str, reason: str, **kwargs) -> "ItemOutcome":
        return cls(item_id=item_id, status=ItemStatus.SKIPPED, error=reason, **kwargs)

    @classmethod
    def failed(cls, item_id: str, error: str, code: Optional[str] = None, **kwargs) -> "ItemOutcome":
        return cls(item_id=item_id, status=ItemStatus.FAILED, error=error, error_code=code, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "item_id": self.item_id,
            "status": self.status.value,
            "before": self.before,
            "after": self.after,
            "error": self.error,
            "error_code": self.error_code,
            "changes": self.changes,
        }
        if self.issues:
            data["issues"] = self.issues
        if self.warnings:
            data["warnings"] = self.warnings
        return data


@dataclass
class OperationReport:
    operation: str
    total: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    items: List[ItemOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    dry_run: bool = False
    elapsed_ms: float = 0.0
    aborted: bool = False
    totals: Dict[str, int] = field(default_factory=dict)
    issues: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.aborted

    def raise_for_partial_failure(self) -> "OperationReport":
        """Raise ``PartialBatchFailure`` when any item failed."""
        if self.failed:
            raise PartialBatchFailure(self)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "success": self.success,
            "dry_run": self.dry_run,
            "total": self.total,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "aborted": self.aborted,
            "elapsed_ms": self.elapsed_ms,
            "totals": dict(self.totals),
            "items": [item.to_dict() for item in self.items],
            "warnings": list(self.warnings),
            "issues": {k: list(v) for k, v in self.issues.items()},
            "summary": dict(self.summary),
        }


class BatchExecutor:
    """Run a handler over targets in fixed-size batches."""

    def __init__(
        self,
        operation: str,
        batch_size: int = 20,
        continue_on_error: bool = False,
        dry_run: bool = False,
        max_processing_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        if batch_size < 1:
            raise ValueError("batch size must be positive")
        self.operation = operation
        self.batch_size = batch_size
        self.continue_on_error = continue_on_error
        self.dry_run = dry_run
        self.max_processing_seconds = max_processing_seconds
        self.clock = clock

    def new_report(self, total: int = 0) -> OperationReport:
        return OperationReport(operation=self.operation, total=total, dry_run=self.dry_run)

    def record(self, report: OperationReport, outcome: ItemOutcome) -> None:
        report.items.append(outcome)
        if outcome.status == ItemStatus.PROCESSED:
            report.processed += 1
        elif outcome.status == ItemStatus.SKIPPED:
            report.skipped += 1
        else:
            report.failed += 1
        for key, value in outcome.metrics.items():
            report.totals[key] = report.totals.get(key, 0) + value
        for issue in outcome.issues:
            report.issues.setdefault(issue["category"], []).append(issue)
        report.warnings.extend(outcome.warnings)

    async def run(
        self,
        items: Sequence[T],
        handler: Callable[[T], Awaitable[ItemOutcome]],
        item_id: Callable[[T], str] = str,
        report: Optional[OperationReport] = None
    ) -> OperationReport:
        """
        Process every item sequentially and aggregate the outcomes.

        ``report`` may carry outcomes recorded before the run (for example
        items rejected during a pre-flight pass); its ``total`` is kept.
        """
        started = self.clock()
        if report is None:
            report = self.new_report(total=len(items))

        batches = partition(items, self.batch_size)
        stopped_at: Optional[int] = None
        for index, batch in enumerate(batches):
            if self._deadline_passed(started):
                remaining = sum(len(b) for b in batches[index:])
                report.warnings.append(
                    f"Processing time limit reached; {remaining} items were not started"
                )
                stopped_at = index
                break

            for position, item in enumerate(batch):
                outcome = await self._run_item(item, handler, item_id)
                self.record(report, outcome)
                if outcome.status == ItemStatus.FAILED and not self.continue_on_error:
                    remaining = len(batch) - position - 1 + sum(len(b) for b in batches[index + 1:])
                    report.aborted = True
                    if remaining:
                        report.warnings.append(
                            f"Aborted after failure on {outcome.item_id}; {remaining} items were not started"
                        )
                    break
            if report.aborted:
                break

            logger.debug(f"{self.operation}: batch {index + 1}/{len(batches)} done")

        if stopped_at is not None:
            report.summary["not_started_batches"] = len(batches) - stopped_at

        report.elapsed_ms = round((self.clock() - started) * 1000, 2)
        return report

    async def _run_item(self, item, handler, item_id) -> ItemOutcome:
        key = item_id(item)
        try:
            return await handler(item)
        except ServiceException as e:
            logger.warning(f"{self.operation} failed for {key}: {e.message}")
            return ItemOutcome.failed(key, e.message, e.code, **_error_context(e))
        except Exception as e:
            logger.error(f"Unexpected error during {self.operation} of {key}: {e}")
            return ItemOutcome.failed(key, str(e), "INTERNAL_ERROR")

    def _deadline_passed(self, started: float) -> bool:
        if self.max_processing_seconds is None:
            return False
        return self.clock() - started >= self.max_processing_seconds


def _error_context(error: ServiceException) -> Dict[str, Any]:
    details = getattr(error, "details", None)
    if details:
        return {"changes": {"details": details}}
    return {}

