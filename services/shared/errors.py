"""Error taxonomy for invoice operations.

Every failure from an external collaborator is converted into one of these
before it reaches the API layer, so user-visible messages never carry raw
transport errors.
"""


class InvoiceServiceError(Exception):
    """Base class for all operation-level failures.

    Attributes:
        kind: Stable machine-readable error identifier
        message: User-facing description of what failed
        action: Optional hint on what the user can do next
    """

    kind = "error"
    default_action: str | None = None

    def __init__(self, message: str, action: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.action = action if action is not None else self.default_action

    def to_dict(self) -> dict[str, str | None]:
        return {"error": self.kind, "message": self.message, "action": self.action}


class ValidationInputError(InvoiceServiceError):
    """Malformed user input (e.g., empty field name)."""

    kind = "validation_input"
    default_action = "Check your input and try again."


class ExtractionError(InvoiceServiceError):
    """Extraction oracle unreachable or returned unusable content."""

    kind = "extraction"
    default_action = "Retry the upload or check that the file is a readable invoice."


class DuplicateFieldError(InvoiceServiceError):
    """Field mapping with the same name already exists for the owner."""

    kind = "duplicate_field"


class NotFoundError(InvoiceServiceError):
    """Entity does not exist or is not owned by the caller."""

    kind = "not_found"


class PlanRestrictedError(InvoiceServiceError):
    """Capability is not included in the caller's subscription tier."""

    kind = "plan_restricted"
    default_action = "Upgrade to Pro or Enterprise to use this feature."


class MergeError(InvoiceServiceError):
    """Merge could not produce a result."""

    kind = "merge"


class PartialMergeError(InvoiceServiceError):
    """Some constituent documents could not be included in a merge.

    Informational: the merge itself completed with the documents that could be
    fetched. Raised only by callers that want to treat partial merges as
    failures; normally carried on the merge result.
    """

    kind = "partial_merge"

    def __init__(self, requested: int, included: int, skipped: dict[str, str]) -> None:
        self.requested = requested
        self.included = included
        self.skipped = skipped
        super().__init__(
            f"Merged documents from {included} of {requested} requested invoices; "
            f"{len(skipped)} could not be included.",
            action="Check the skipped invoices' original files and merge again if needed.",
        )


class StorageError(InvoiceServiceError):
    """Object store read or write failed."""

    kind = "storage"
    default_action = "Try the operation again."


class OperationTimeoutError(InvoiceServiceError, TimeoutError):
    """Bounded wait on an external call was exceeded."""

    kind = "timeout"
    default_action = "The service took too long to respond. Try again."
