"""Error type shared by the whole package."""


class CratesfyiError(Exception):
    """Raised when an operation of the documentation builder fails."""