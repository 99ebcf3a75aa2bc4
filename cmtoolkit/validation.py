import re

from .errors import InvalidIdentifierError

# Letters, digits, underscore, hyphen and period only.
IDENTIFIER = re.compile(r'^[A-Za-z0-9_.-]+$')


def validate_identifier(value, name="value"):
    """
    Reject anything outside the identifier allow-list before it gets near a query.

    Queries are parameterized regardless; this only keeps junk input from
    reaching the data store at all.
    """
    if value is None or not IDENTIFIER.match(str(value)):
        raise InvalidIdentifierError(
            f"Invalid {name} '{value}': only letters, digits, '_', '-' and '.' are allowed"
        )
    return str(value)
