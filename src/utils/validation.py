"""Argument checks shared by the agents."""


def validate_not_empty(value: str | None, param_name: str) -> None:
    """Validate that a string argument is present and not blank.

    Raises:
        ValueError: If value is None or only whitespace.
        TypeError: If value is not a string.
    """
    if value is None:
        raise ValueError(f"Parameter '{param_name}' cannot be None")
    if not isinstance(value, str):
        raise TypeError(f"Parameter '{param_name}' must be a string, got {type(value).__name__}")
    if not value.strip():
        raise ValueError(f"Parameter '{param_name}' cannot be empty")
