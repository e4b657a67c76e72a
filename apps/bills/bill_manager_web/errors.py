"""Exception types raised by the bill manager services."""


class BillManagerError(Exception):
    """Base class for failures whose message is safe to show to the user."""


class AuthError(BillManagerError):
    """The landlord is not signed in or their Google token has expired."""


class FetchError(BillManagerError):
    """The Gmail API could not be queried."""


class ParseError(BillManagerError):
    """A monetary amount in a message body could not be parsed."""


class NotFoundError(BillManagerError):
    """A record does not exist or belongs to another user."""


class DuplicateRecordError(BillManagerError):
    """A record with the same natural key already exists."""


class MailRateLimitError(BillManagerError):
    """An outbound email request exceeds the configured limits."""
