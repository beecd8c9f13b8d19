"""Error taxonomy for formsbot.

Every subclass of FormsError carries a message that is safe to show to the
user who triggered it. TransportError is the exception: its message is for
logs, and the user only ever sees a generic apology.
"""


class FormsError(Exception):
    """Base class for all expected formsbot errors."""


class ValidationError(FormsError):
    """A value failed a length or range check."""


class ValueTooLong(ValidationError):
    """A title, description, field name or placeholder exceeded its limit."""

    def __init__(self, what: str = "value", limit: int | None = None):
        self.what = what
        self.limit = limit
        if limit is None:
            super().__init__(f"The {what} is too long")
        else:
            super().__init__(f"The {what} must be at most {limit} characters long")


class InvalidLengthBounds(ValidationError):
    """Minimum/maximum response length bounds are inconsistent."""


class StructuralError(FormsError):
    """A mutation would break the ordering or capacity of a form's fields."""


class TooManyFields(StructuralError):
    def __init__(self):
        super().__init__("The maximum amount of fields has been reached")


class IllegalAddBefore(StructuralError):
    def __init__(self):
        super().__init__("illegal add-before target")


class NotFoundError(FormsError):
    """An unknown or stale form or field reference."""


class ConfigurationError(FormsError):
    """A form cannot be shown because it is not correctly configured."""


class UserFriendlyError(FormsError):
    """Anything that should be echoed to the user verbatim."""


class TransportError(Exception):
    """A store or platform call failed.

    Not a FormsError; the message may contain internal detail.
    """
