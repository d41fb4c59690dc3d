"""
Typed Exception Hierarchy for the Lending Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The request layer that sits in front of the kernel must translate failures
into transport responses without parsing message strings.  Every error here:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA (copy_id, loan_id, ...) as attributes

Example:
    try:
        coordinator.open_loan(borrower_id=b, copy_id=c)
    except CopyUnavailableError as e:
        api_response(code=e.code, copy_id=e.copy_id)   # pick another copy
    except StorageFailureError as e:
        if e.retryable:
            retry_whole_operation()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LendingKernelError (base)
    |
    +-- InvalidRequestError            -> client error, never retried
    |   +-- MissingFieldError
    |   +-- EmptyUpdateError
    |   +-- InvalidQuantityError
    |   +-- InvalidConditionError
    |   +-- ItemMismatchError
    |   +-- SubstituteItemMismatchError
    |   +-- InvalidLoanTransitionError
    |
    +-- NotFoundError                  -> client error
    |   +-- ItemNotFoundError
    |   +-- CopyNotFoundError
    |   +-- LoanNotFoundError
    |   +-- BorrowerNotFoundError
    |   +-- SubjectNotFoundError
    |
    +-- ConflictError                  -> client error, retry with fresh data
    |   +-- CopyUnavailableError
    |   +-- CopyCodeConflictError
    |   +-- SubstitutionConflictError
    |   +-- LoanClosedError
    |   +-- CopyOnLoanError
    |   +-- ItemInUseError
    |   +-- DuplicateReferenceError
    |
    +-- StorageFailureError            -> transient, safe to retry
        +-- LockTimeoutError
        +-- DeadlockError

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Four kinds, not HTTP codes.  The kernel never decides transport status;
   ``error_kind()`` exposes the kind so the request layer can map it.

2. Every composite operation rolls back before any of these escapes the
   coordinator, so no partial state is ever visible alongside an error.

===============================================================================
"""


class LendingKernelError(Exception):
    """
    Base exception for all lending kernel errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LENDING_KERNEL_ERROR"
    kind: str = "internal"


# =============================================================================
# InvalidRequest
# =============================================================================


class InvalidRequestError(LendingKernelError):
    """Malformed request, missing required fields, or a no-op update."""

    code: str = "INVALID_REQUEST"
    kind: str = "invalid_request"

    def __init__(self, message: str):
        self.reason = message
        super().__init__(message)


class MissingFieldError(InvalidRequestError):
    """A required field was not supplied."""

    code: str = "MISSING_FIELD"

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"Missing required field: {field_name}")


class EmptyUpdateError(InvalidRequestError):
    """An update carried no recognised field."""

    code: str = "EMPTY_UPDATE"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"No changes supplied for {entity} {entity_id}")


class InvalidQuantityError(InvalidRequestError):
    """A count or amount is outside its allowed range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field_name: str, value: object):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Invalid value for {field_name}: {value!r}")


class InvalidConditionError(InvalidRequestError):
    """A condition snapshot does not match the checklist catalog."""

    code: str = "INVALID_CONDITION"

    def __init__(self, part: str, option: str | None, reason: str):
        self.part = part
        self.option = option
        super().__init__(f"Invalid condition for part '{part}': {reason}")


class ItemMismatchError(InvalidRequestError):
    """The item hint given with a loan does not own the copy."""

    code: str = "ITEM_MISMATCH"

    def __init__(self, copy_id: str, expected_item_id: str, given_item_id: str):
        self.copy_id = copy_id
        self.expected_item_id = expected_item_id
        self.given_item_id = given_item_id
        super().__init__(
            f"Copy {copy_id} belongs to item {expected_item_id}, "
            f"not {given_item_id}"
        )


class SubstituteItemMismatchError(InvalidRequestError):
    """A substitute copy belongs to a different item than the loan."""

    code: str = "SUBSTITUTE_ITEM_MISMATCH"

    def __init__(self, loan_id: str, copy_id: str):
        self.loan_id = loan_id
        self.copy_id = copy_id
        super().__init__(
            f"Substitute copy {copy_id} must belong to the same item as loan {loan_id}"
        )


class InvalidLoanTransitionError(InvalidRequestError):
    """The requested status / date combination is not a legal transition."""

    code: str = "INVALID_LOAN_TRANSITION"

    def __init__(self, loan_id: str, reason: str):
        self.loan_id = loan_id
        super().__init__(f"Invalid transition for loan {loan_id}: {reason}")


# =============================================================================
# NotFound
# =============================================================================


class NotFoundError(LendingKernelError):
    """A referenced entity does not exist."""

    code: str = "NOT_FOUND"
    kind: str = "not_found"


class ItemNotFoundError(NotFoundError):
    """Item with given ID was not found."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class CopyNotFoundError(NotFoundError):
    """Copy with given ID was not found."""

    code: str = "COPY_NOT_FOUND"

    def __init__(self, copy_id: str):
        self.copy_id = copy_id
        super().__init__(f"Copy not found: {copy_id}")


class LoanNotFoundError(NotFoundError):
    """Loan with given ID was not found."""

    code: str = "LOAN_NOT_FOUND"

    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan not found: {loan_id}")


class BorrowerNotFoundError(NotFoundError):
    """Borrower with given ID was not found."""

    code: str = "BORROWER_NOT_FOUND"

    def __init__(self, borrower_id: str):
        self.borrower_id = borrower_id
        super().__init__(f"Borrower not found: {borrower_id}")


class SubjectNotFoundError(NotFoundError):
    """Subject with given ID was not found."""

    code: str = "SUBJECT_NOT_FOUND"

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(f"Subject not found: {subject_id}")


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(LendingKernelError):
    """The request is well-formed but collides with current state."""

    code: str = "CONFLICT"
    kind: str = "conflict"


class CopyUnavailableError(ConflictError):
    """Copy is not available (on loan or withdrawn)."""

    code: str = "COPY_UNAVAILABLE"

    def __init__(self, copy_id: str, copy_code: str | None = None):
        self.copy_id = copy_id
        self.copy_code = copy_code
        label = copy_code or copy_id
        super().__init__(f"Copy {label} is not available")


class CopyCodeConflictError(ConflictError):
    """Generated copy codes kept colliding with existing codes."""

    code: str = "COPY_CODE_CONFLICT"

    def __init__(self, item_id: str, last_code: str, attempts: int):
        self.item_id = item_id
        self.last_code = last_code
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique copy code for item {item_id} "
            f"after {attempts} attempts (last tried {last_code})"
        )


class SubstitutionConflictError(ConflictError):
    """Loan already had its copy substituted once."""

    code: str = "SUBSTITUTION_CONFLICT"

    def __init__(self, loan_id: str, replaced_by_id: str):
        self.loan_id = loan_id
        self.replaced_by_id = replaced_by_id
        super().__init__(
            f"Loan {loan_id} was already substituted with copy {replaced_by_id}"
        )


class LoanClosedError(ConflictError):
    """Operation is not allowed on a returned loan."""

    code: str = "LOAN_CLOSED"

    def __init__(self, loan_id: str, operation: str):
        self.loan_id = loan_id
        self.operation = operation
        super().__init__(f"Loan {loan_id} is returned; cannot {operation}")


class CopyOnLoanError(ConflictError):
    """Copy is the live copy of an active loan and cannot be toggled."""

    code: str = "COPY_ON_LOAN"

    def __init__(self, copy_id: str, loan_id: str):
        self.copy_id = copy_id
        self.loan_id = loan_id
        super().__init__(f"Copy {copy_id} is on active loan {loan_id}")


class ItemInUseError(ConflictError):
    """Item still has copies and cannot be deleted."""

    code: str = "ITEM_IN_USE"

    def __init__(self, item_id: str, copy_count: int):
        self.item_id = item_id
        self.copy_count = copy_count
        super().__init__(f"Item {item_id} has {copy_count} copies and cannot be deleted")


class DuplicateReferenceError(ConflictError):
    """A unique reference value (name, nia, code) already exists."""

    code: str = "DUPLICATE_REFERENCE"

    def __init__(self, entity: str, value: str):
        self.entity = entity
        self.value = value
        super().__init__(f"{entity} already exists: {value}")


# =============================================================================
# StorageFailure
# =============================================================================


class StorageFailureError(LendingKernelError):
    """
    Transaction, deadlock, lock-timeout or connection failure.

    The composite operation was rolled back as a whole, so retrying it
    from the start is always safe.
    """

    code: str = "STORAGE_FAILURE"
    kind: str = "storage_failure"
    retryable: bool = True

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


class LockTimeoutError(StorageFailureError):
    """A row lock could not be acquired within the store's lock timeout."""

    code: str = "LOCK_TIMEOUT"


class DeadlockError(StorageFailureError):
    """The store detected a deadlock and aborted this transaction."""

    code: str = "DEADLOCK"


def error_kind(exc: BaseException) -> str:
    """Return the error kind for a request layer to map onto its transport."""
    if isinstance(exc, LendingKernelError):
        return exc.kind
    return "internal"
