"""
Custom Exceptions for SPMS
==========================

Single-entity operations raise these to their immediate caller. Batch
operations (promotion reconciliation) catch them per entity and report
them in the batch's error list instead.

Usage:
    from spms.core.exceptions import GroupNotFoundError, InvalidTrackError

    if not group:
        raise GroupNotFoundError(group_id)

    try:
        await registry.set_semester_track_choice(...)
    except ValidationError as e:
        logger.warning(f"Track choice rejected: {e}")
        raise
"""

from typing import Optional, Any, Dict, List


class SPMSError(Exception):
    """Base exception for all SPMS errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(SPMSError):
    """Base class for not found errors"""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with ID '{resource_id}' not found",
            code=f"{resource_type.upper()}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class StudentNotFoundError(ResourceNotFoundError):
    """Student not found"""

    def __init__(self, student_id: str):
        super().__init__("Student", student_id)


class GroupNotFoundError(ResourceNotFoundError):
    """Group not found"""

    def __init__(self, group_id: str):
        super().__init__("Group", group_id)


class ProjectNotFoundError(ResourceNotFoundError):
    """Project not found"""

    def __init__(self, project_id: str):
        super().__init__("Project", project_id)


# ============================================
# Validation Errors (400-type)
# ============================================

class ValidationError(SPMSError):
    """Input validation failed"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class InvalidTrackError(ValidationError):
    """Track value is not one of the allowed tracks"""

    def __init__(self, track: str, allowed_tracks: List[str]):
        super().__init__(
            f"Track '{track}' not allowed. Allowed: {', '.join(allowed_tracks)}",
            field="track"
        )
        self.code = "INVALID_TRACK"
        self.details.update({"track": track, "allowed_tracks": allowed_tracks})


class StageMismatchError(ValidationError):
    """Student's program/semester does not match the requested choice point"""

    def __init__(self, degree_program: str, current_semester: int, semester: int):
        super().__init__(
            f"Semester {semester} track choice is not available to "
            f"{degree_program} students in semester {current_semester}"
        )
        self.code = "STAGE_MISMATCH"
        self.details.update({
            "degree_program": degree_program,
            "current_semester": current_semester,
            "semester": semester,
        })


class SelectionLockedError(ValidationError):
    """Track selection was finalized by an administrator"""

    def __init__(self, semester: int):
        super().__init__(
            f"Semester {semester} track has been finalized and can no longer be changed"
        )
        self.code = "SELECTION_LOCKED"
        self.details["semester"] = semester


class SelectionMissingError(ValidationError):
    """No track choice submitted yet for the semester"""

    def __init__(self, semester: int):
        super().__init__(f"Student has not submitted a semester {semester} track choice yet")
        self.code = "SELECTION_MISSING"
        self.details["semester"] = semester


# ============================================
# Consistency Errors
# ============================================

class ConflictError(SPMSError):
    """Optimistic-concurrency retries exhausted for a single write"""

    def __init__(self, resource_type: str, resource_id: str, attempts: int):
        super().__init__(
            f"{resource_type} '{resource_id}' kept changing underneath us; "
            f"gave up after {attempts} attempts",
            code="VERSION_CONFLICT",
            details={"resource_type": resource_type, "resource_id": resource_id, "attempts": attempts}
        )


class InvariantViolation(SPMSError):
    """
    A consistency rule is violated and must not be auto-corrected.

    The group status engine reports these as ``error=True`` results rather
    than raising; callers that need an exception can build one from the result.
    """

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message, code="INVARIANT_VIOLATION")
        if resource_id:
            self.details["resource_id"] = resource_id


class PartialBatchFailure(SPMSError):
    """Some entities in a batch could not be processed"""

    def __init__(self, errors: List[Dict[str, Any]]):
        super().__init__(
            f"{len(errors)} entities failed during batch processing",
            code="PARTIAL_BATCH_FAILURE",
            details={"errors": errors}
        )
        self.errors = errors


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: SPMSError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }
