"""
Consistency checks between file asset metadata and the storage backend.

Every check is independent and adds issues to the report. The only repair
is correcting the stored size from the on-disk size.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.exceptions import PhysicalIOError
from asset_admin.core.logging import FileOperationLogHandler
from asset_admin.models.file_asset import FileAsset
from asset_admin.services.batch import BatchExecutor, ItemOutcome, OperationReport
from asset_admin.services.repository import AssetQuery, FileAssetRepository
from asset_admin.services.storage import LocalStorage

logger = logging.getLogger(__name__)
file_log = FileOperationLogHandler()

VALID_PATH = re.compile(r"^[a-zA-Z0-9/._-]+$")

MISSING_PHYSICAL_FILE = "missing_physical_file"
SIZE_MISMATCH = "size_mismatch"
PATH_MALFORMED = "path_malformed"
PERMISSION_DENIED = "permission_denied"
METADATA_INCOMPLETE = "metadata_incomplete"

CRITICAL = "critical"
WARNING = "warning"

SEVERITY = {
    MISSING_PHYSICAL_FILE: CRITICAL,
    PERMISSION_DENIED: CRITICAL,
    SIZE_MISMATCH: WARNING,
    PATH_MALFORMED: WARNING,
    METADATA_INCOMPLETE: WARNING,
}

RECOMMENDATIONS = {
    MISSING_PHYSICAL_FILE: "Restore missing files from backup or delete their metadata records",
    SIZE_MISMATCH: "Run validation with auto_repair to correct stored file sizes",
    PATH_MALFORMED: "Move files with malformed paths to a normalized location",
    PERMISSION_DENIED: "Fix filesystem permissions so the service can read every stored file",
    METADATA_INCOMPLETE: "Fill in missing name, MIME type or path metadata",
}


@dataclass(frozen=True)
class ValidationChecks:
    physical_existence: bool = True
    file_sizes: bool = True
    paths: bool = True
    permissions: bool = True
    metadata: bool = True


@dataclass(frozen=True)
class RepairOptions:
    auto_repair: bool = False
    update_file_sizes: bool = True

    @property
    def sizes(self) -> bool:
        return self.auto_repair and self.update_file_sizes


def path_problems(path: Optional[str]) -> List[str]:
    """Describe everything wrong with a stored path; empty when valid."""
    if not path:
        return []
    problems = []
    if not path.startswith("/"):
        problems.append("path must start with /")
    if ".." in path:
        problems.append("path contains ..")
    if "//" in path:
        problems.append("path contains repeated separators")
    if not VALID_PATH.match(path):
        problems.append("path contains invalid characters")
    return problems


def _issue(asset: FileAsset, category: str, message: str, **extra) -> Dict[str, Any]:
    return {
        "file_id": str(asset.id),
        "path": asset.path,
        "category": category,
        "severity": SEVERITY[category],
        "message": message,
        **extra,
    }


class IntegrityValidator:
    """Validate stored assets against the filesystem."""

    def __init__(self, db: AsyncSession, storage: LocalStorage):
        self.db = db
        self.storage = storage
        self.repository = FileAssetRepository(db)

    async def check_asset(
        self,
        asset: FileAsset,
        checks: ValidationChecks = ValidationChecks(),
        repair: RepairOptions = RepairOptions(),
        dry_run: bool = False
    ) -> ItemOutcome:
        item_id, path = str(asset.id), asset.path
        original_size = asset.size
        current_size = asset.size
        issues: List[Dict[str, Any]] = []
        metrics = {"repairs_attempted": 0, "repairs_successful": 0}
        changes: Dict[str, Any] = {}

        if checks.metadata:
            missing = [f for f in ("name", "mime_type", "path") if not getattr(asset, f)]
            if missing:
                issues.append(_issue(
                    asset, METADATA_INCOMPLETE,
                    f"Missing metadata: {', '.join(missing)}", fields=missing
                ))

        if checks.paths:
            problems = path_problems(asset.path)
            if problems:
                issues.append(_issue(asset, PATH_MALFORMED, "; ".join(problems), problems=problems))

        stat = None
        unreadable = False
        if asset.path:
            if not self.storage.is_within_root(asset.path):
                # Never stat outside the storage root
                if not any(i["category"] == PATH_MALFORMED for i in issues):
                    issues.append(_issue(asset, PATH_MALFORMED, "path resolves outside the storage root"))
            else:
                try:
                    stat = self.storage.stat(asset.path)
                except PhysicalIOError as e:
                    # Unreadable is not missing; remaining checks still run
                    unreadable = True
                    logger.warning(f"Could not stat {asset.path}: {e.message}")
                    if checks.permissions:
                        issues.append(_issue(asset, PERMISSION_DENIED, f"File cannot be inspected: {e.message}"))
                if stat is None and not unreadable and checks.physical_existence:
                    issues.append(_issue(asset, MISSING_PHYSICAL_FILE, "File does not exist in storage"))

        if checks.permissions and stat is not None:
            if not stat.is_file:
                issues.append(_issue(asset, PERMISSION_DENIED, "Stored path is not a regular file"))
            elif not self.storage.is_readable(asset.path):
                issues.append(_issue(asset, PERMISSION_DENIED, "File is not readable"))

        if checks.file_sizes and stat is not None and stat.is_file and stat.size != asset.size:
            issue = _issue(
                asset, SIZE_MISMATCH,
                f"Stored size {asset.size} differs from actual size {stat.size}",
                expected_size=asset.size,
                actual_size=stat.size,
                repaired=False,
            )
            if repair.sizes:
                metrics["repairs_attempted"] += 1
                if dry_run:
                    issue["would_repair"] = True
                elif await self._repair_size(asset, stat.size):
                    metrics["repairs_successful"] += 1
                    issue["repaired"] = True
                    changes["size"] = {"from": original_size, "to": stat.size}
                    current_size = stat.size
            issues.append(issue)

        for issue in issues:
            await file_log.log_integrity_issue(
                file_id=issue["file_id"],
                category=issue["category"],
                severity=issue["severity"],
                details=issue["message"],
            )

        metrics["healthy"] = 0 if issues else 1
        metrics["problematic"] = 1 if issues else 0
        return ItemOutcome(
            item_id=item_id,
            before={"path": path, "size": original_size},
            after={"path": path, "size": current_size},
            changes=changes,
            metrics=metrics,
            issues=issues,
        )

    async def _repair_size(self, asset: FileAsset, actual_size: int) -> bool:
        try:
            asset.size = actual_size
            await self.db.commit()
            logger.info(f"Repaired stored size of file {asset.id} to {actual_size}")
            return True
        except Exception as e:
            logger.error(f"Size repair failed for file {asset.id}: {e}")
            await self.db.rollback()
            return False

    async def validate(
        self,
        query: AssetQuery,
        checks: ValidationChecks = ValidationChecks(),
        repair: RepairOptions = RepairOptions(),
        dry_run: bool = False,
        batch_size: int = 20,
        continue_on_error: bool = True,
        max_processing_seconds: Optional[float] = None
    ) -> OperationReport:
        """Run the enabled checks over every asset matching ``query``."""
        assets = await self.repository.find(query)
        executor = BatchExecutor(
            "validate",
            batch_size=batch_size,
            continue_on_error=continue_on_error,
            dry_run=dry_run,
            max_processing_seconds=max_processing_seconds,
        )

        async def handle(file_id) -> ItemOutcome:
            asset = await self.repository.get(file_id)
            if asset is None:
                return ItemOutcome.skipped(str(file_id), "File was deleted during validation")
            return await self.check_asset(asset, checks, repair, dry_run)

        report = await executor.run([asset.id for asset in assets], handle)
        report.summary.update(self.summarize(report))
        await file_log.log_bulk_operation(report)
        return report

    @staticmethod
    def summarize(report: OperationReport) -> Dict[str, Any]:
        checked = report.processed
        problematic = report.totals.get("problematic", 0)
        healthy = report.totals.get("healthy", 0)
        all_issues = [issue for issues in report.issues.values() for issue in issues]
        critical = sum(1 for issue in all_issues if issue["severity"] == CRITICAL)
        attempted = report.totals.get("repairs_attempted", 0)
        successful = report.totals.get("repairs_successful", 0)

        return {
            "files_checked": checked,
            "healthy_files": healthy,
            "problematic_files": problematic,
            "health_percentage": round(healthy / checked * 100, 2) if checked else 100.0,
            "total_issues": len(all_issues),
            "critical_issues": critical,
            "warning_issues": len(all_issues) - critical,
            "issue_counts": {category: len(issues) for category, issues in report.issues.items()},
            "repairs_attempted": attempted,
            "repairs_successful": successful,
            "repair_effectiveness": round(successful / attempted * 100, 2) if attempted else None,
            "recommendations": [
                RECOMMENDATIONS[category]
                for category in RECOMMENDATIONS
                if report.issues.get(category) and not (
                    category == SIZE_MISMATCH and attempted and successful == attempted
                )
            ],
        }
