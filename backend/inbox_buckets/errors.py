"""Error taxonomy for the sync and classification pipeline.

Per-batch failures (GenerationError, ValidationError, CancellationError) are
converted into BatchError entries and never abort sibling batches. SetupError
aborts a run before any batch is dispatched. InvariantViolation signals a
defect and is never converted into a BatchError.
"""


class InboxBucketsError(Exception):
    """Base class for pipeline errors."""


class FetchError(InboxBucketsError):
    """Remote thread source unreachable or unauthorized. Fatal to the sync step only."""


class GmailAuthRequiredError(FetchError):
    """Raised when Gmail needs interactive OAuth (browser). Do not run in background task."""


class PersistenceError(InboxBucketsError):
    """Storage read/write failed."""


class GenerationError(InboxBucketsError):
    """Model call failed (transport, timeout) or returned no parseable object."""


class ValidationError(InboxBucketsError):
    """Model output is well-formed but violates a batch rule; message names the rule."""


class CancellationError(InboxBucketsError):
    """Run aborted by the caller's cancellation signal."""


class SetupError(InboxBucketsError):
    """Run cannot start (no buckets, duplicate bucket names, storage unreachable)."""


class InvariantViolation(RuntimeError):
    pass
