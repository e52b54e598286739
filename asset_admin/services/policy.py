"""
Safety rules for destructive and bulk file operations.

Batch-level rules run once on the resolved target count and reject the
whole call. Item-level rules run per file on its reference scan.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from asset_admin.core.config import settings
from asset_admin.core.exceptions import ConflictError
from asset_admin.services.references import ReferenceInfo

logger = logging.getLogger(__name__)


class OperationKind(str, enum.Enum):
    DELETE = "delete"
    MOVE = "move"
    ORGANIZE = "organize"
    VALIDATE = "validate"


class ReferenceHandling(str, enum.Enum):
    CHECK_AND_FAIL = "check_and_fail"
    SKIP_REFERENCED = "skip_referenced"
    CLEAN_REFERENCES = "clean_references"
    IGNORE_REFERENCES = "ignore_references"


class PolicyAction(str, enum.Enum):
    PROCEED = "proceed"
    CLEAN_AND_PROCEED = "clean_and_proceed"
    SKIP = "skip"
    REJECT = "reject"


@dataclass(frozen=True)
class SafetyFlags:
    """Caller-supplied overrides."""
    force: bool = False
    confirm: bool = False
    confirm_bulk: bool = False
    reference_handling: ReferenceHandling = ReferenceHandling.CHECK_AND_FAIL


@dataclass(frozen=True)
class OperationLimits:
    max_files: Optional[int]
    confirm_threshold: Optional[int]
    confirm_flag: str


def operation_limits(operation: OperationKind) -> OperationLimits:
    table: Dict[OperationKind, OperationLimits] = {
        OperationKind.DELETE: OperationLimits(
            settings.DELETE_MAX_FILES, settings.DELETE_CONFIRM_THRESHOLD, "confirm_bulk_delete"
        ),
        OperationKind.MOVE: OperationLimits(
            settings.MOVE_MAX_FILES, settings.MOVE_CONFIRM_THRESHOLD, "confirm_move"
        ),
        OperationKind.ORGANIZE: OperationLimits(settings.ORGANIZE_MAX_FILES, None, "confirm"),
        OperationKind.VALIDATE: OperationLimits(None, None, "confirm"),
    }
    return table[operation]


@dataclass(frozen=True)
class Decision:
    action: PolicyAction
    reason: str = ""
    require_confirmation: bool = False

    @property
    def allow(self) -> bool:
        return self.action in (PolicyAction.PROCEED, PolicyAction.CLEAN_AND_PROCEED)

    @property
    def clean_references(self) -> bool:
        return self.action == PolicyAction.CLEAN_AND_PROCEED


def check_batch(
    operation: OperationKind,
    target_count: int,
    flags: SafetyFlags,
    max_override: Optional[int] = None
) -> None:
    """
    Apply the batch-level rules to the resolved target count.

    A request-supplied ``max_override`` can only lower the configured
    maximum.

    Raises:
        ConflictError: ``COUNT_EXCEEDED`` or ``CONFIRMATION_REQUIRED``
    """
    limits = operation_limits(operation)

    max_files = limits.max_files
    if max_override is not None:
        max_files = max_override if max_files is None else min(max_files, max_override)

    if max_files is not None and target_count > max_files and not flags.force:
        raise ConflictError(
            f"{operation.value} targets {target_count} files, more than the limit of {max_files}",
            code="COUNT_EXCEEDED",
            details={"target_count": target_count, "max_files": max_files},
        )

    if (
        limits.confirm_threshold is not None
        and target_count > limits.confirm_threshold
        and not flags.confirm_bulk
    ):
        raise ConflictError(
            f"{operation.value} of {target_count} files requires {limits.confirm_flag}",
            code="CONFIRMATION_REQUIRED",
            details={
                "target_count": target_count,
                "threshold": limits.confirm_threshold,
                "confirmation_flag": limits.confirm_flag,
            },
        )


def evaluate_item(info: ReferenceInfo, flags: SafetyFlags) -> Decision:
    """Decide what happens to one file given its references."""
    handling = flags.reference_handling

    if handling == ReferenceHandling.IGNORE_REFERENCES:
        return Decision(PolicyAction.PROCEED, "reference check disabled")

    if not info.has_references:
        return Decision(PolicyAction.PROCEED, "no references")

    if info.scan_failed:
        reason = f"reference scan failed ({', '.join(info.failed_probes)})"
        if handling == ReferenceHandling.SKIP_REFERENCED:
            return Decision(PolicyAction.SKIP, reason)
        return Decision(PolicyAction.REJECT, reason)

    if handling == ReferenceHandling.SKIP_REFERENCED:
        return Decision(PolicyAction.SKIP, f"file has {info.total} references")

    if handling == ReferenceHandling.CHECK_AND_FAIL and not flags.force:
        return Decision(PolicyAction.REJECT, f"file has {info.total} references")

    if info.total > settings.DANGEROUS_REFERENCE_THRESHOLD and not flags.confirm:
        return Decision(
            PolicyAction.REJECT,
            f"file has {info.total} references, more than "
            f"{settings.DANGEROUS_REFERENCE_THRESHOLD}; confirmation required",
            require_confirmation=True,
        )

    # Forced check_and_fail also detaches: rows cannot keep dangling ids
    return Decision(PolicyAction.CLEAN_AND_PROCEED, f"detaching {info.total} references")


def evaluate(
    operation: OperationKind,
    target_count: int,
    info: Optional[ReferenceInfo],
    flags: SafetyFlags,
    max_override: Optional[int] = None
) -> Decision:
    """Batch rules followed by the item rules for one file."""
    check_batch(operation, target_count, flags, max_override)
    if info is None:
        return Decision(PolicyAction.PROCEED, "no reference information required")
    return evaluate_item(info, flags)


def is_protected_destination(path: str) -> bool:
    normalized = "/" + path.strip("/")
    for protected in settings.PROTECTED_DESTINATIONS:
        prefix = "/" + protected.strip("/")
        if normalized == prefix or normalized.startswith(prefix + "/"):
            return True
    return False


def check_destination(path: str, flags: SafetyFlags) -> None:
    """
    Raises:
        ConflictError: ``PROTECTED_DESTINATION`` when moving into a system
            directory without ``force``
    """
    if is_protected_destination(path) and not flags.force:
        raise ConflictError(
            f"Destination {path} is protected; force is required",
            code="PROTECTED_DESTINATION",
            details={"destination": path},
        )
