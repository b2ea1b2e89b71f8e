from .formdata import (
    FinishedError,
    FormData,
    generate_boundary,
)

__all__ = [
    "FinishedError",
    "FormData",
    "generate_boundary",
]
