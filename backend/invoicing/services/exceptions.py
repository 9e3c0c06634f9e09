"""Invoice numbering exceptions."""


class NumberingError(Exception):
    """Base class for all invoice numbering failures."""


class TenantNotResolvedError(NumberingError):
    """No organization is bound to the calling context.

    Caller or configuration error; retrying the same request cannot succeed.
    """


class InvalidPrefixError(NumberingError, ValueError):
    """Prefix is not 1-10 ASCII letters."""


class SequenceConflictError(NumberingError):
    """Another transaction created the same (organization, year) counter first.

    Raised by the store on a duplicate-key insert and absorbed by the
    numbering service, which retries the allocation.
    """

    def __init__(self, organization_id: str, year: int):
        super().__init__(
            f"Sequence for organization {organization_id!r} year {year} already exists"
        )
        self.organization_id = organization_id
        self.year = year


class RetryableNumberingError(NumberingError):
    """The allocation failed without committing anything; the caller may retry."""


class SequenceContentionError(RetryableNumberingError):
    """Counter creation kept conflicting for the whole attempt budget."""


class SequenceLockTimeoutError(RetryableNumberingError):
    """Waited too long for another allocation to release the counter row."""


class SequenceStorageUnavailableError(RetryableNumberingError):
    """The database could not be read or written."""
