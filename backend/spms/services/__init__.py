from spms.services.group_status_engine import (
    GroupSnapshot,
    StatusComputation,
    GroupStatusService,
    compute_status,
)
from spms.services.track_selection_registry import TrackSelectionRegistry
from spms.services.promotion_reconciler import PromotionReconciler
from spms.services.semester_promotion import SemesterPromotionService, run_promotion_pipeline
from spms.services.academic_year import default_academic_year, resolve_academic_year

__all__ = [
    # Group status
    "GroupSnapshot",
    "StatusComputation",
    "GroupStatusService",
    "compute_status",
    # Track selection
    "TrackSelectionRegistry",
    # Promotion
    "PromotionReconciler",
    "SemesterPromotionService",
    "run_promotion_pipeline",
    # Academic calendar
    "default_academic_year",
    "resolve_academic_year",
]
