import re

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(name):
    """
    True if ``name`` can be spliced into SQL as a bare table or column name.
    """
    return isinstance(name, str) and _IDENTIFIER.match(name) is not None


def check_identifier(name, what, error_cls=ValueError):
    if not is_identifier(name):
        raise error_cls(f"Invalid {what} name: {name!r}")
    return name


def normalize_comparator(comparator):
    # " IS  NOT " -> "IS NOT"
    return " ".join(comparator.split()).upper()
