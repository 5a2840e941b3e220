from enum import Enum


class MatchStatus(str, Enum):
    """
    Match status of a bank transaction.
    """
    AUTO_MATCHED = "AUTO_MATCHED"   # Matched by the backend above the confidence threshold
    NEEDS_REVIEW = "NEEDS_REVIEW"   # Ambiguous match, human confirm/reject required
    UNMATCHED = "UNMATCHED"         # No matching invoice found
    CONFIRMED = "CONFIRMED"         # Match confirmed by a reviewer
    EXTERNAL = "EXTERNAL"           # Settled outside the invoice ledger

    @property
    def wire_value(self) -> str:
        """Lowercase form the backend expects in query filters."""
        return self.value.lower()

    @classmethod
    def from_wire(cls, value: str) -> "MatchStatus":
        """
        Map a backend status string onto the enum.

        "pending" is treated as needing review; unknown values fall back to UNMATCHED.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        if normalized == "pending":
            return cls.NEEDS_REVIEW
        for member in cls:
            if member.wire_value == normalized:
                return member
        return cls.UNMATCHED


class BatchStatus(str, Enum):
    """
    Status of a reconciliation batch.
    """
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _BATCH_STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED)

    @classmethod
    def from_wire(cls, value: str) -> "BatchStatus":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


_BATCH_STATUS_RANK = {
    BatchStatus.UPLOADING: 0,
    BatchStatus.PROCESSING: 1,
    BatchStatus.COMPLETED: 2,
    BatchStatus.FAILED: 2,
}


class InvoiceStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class UploadStatus(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


# Confidence score thresholds (0-100 scale)
CONFIDENCE_HIGH = 90
CONFIDENCE_MEDIUM = 75


def confidence_level(score) -> str:
    """Bucket a confidence score into high / medium / low / none."""
    if score is None:
        return "none"
    if score >= CONFIDENCE_HIGH:
        return "high"
    if score >= CONFIDENCE_MEDIUM:
        return "medium"
    if score > 0:
        return "low"
    return "none"
