class ValidationError(ValueError):
    """Rejected input; nothing was applied."""


class NotFoundError(LookupError):
    """A referenced entry, account or category is not in the snapshot."""
