# Pydantic schemas
from spms.schemas.group_status import GroupStatusResult, PromotionCheck, GroupAudit
from spms.schemas.promotion import (
    CohortFilter,
    BatchError,
    ReconciliationReport,
    PromotionBatchResult,
)
from spms.schemas.track_selection import (
    TrackSelectionResponse,
    TrackChoiceFilter,
    TrackChoiceEntry,
)

__all__ = [
    "GroupStatusResult",
    "PromotionCheck",
    "GroupAudit",
    "CohortFilter",
    "BatchError",
    "ReconciliationReport",
    "PromotionBatchResult",
    "TrackSelectionResponse",
    "TrackChoiceFilter",
    "TrackChoiceEntry",
]
