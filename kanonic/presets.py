"""
Ready-made `should_validate_error` predicates.

Example:
    ```python
    api = create_api(
        "https://api.example.com",
        endpoints,
        error_schema=ApiErrorBody,
        should_validate_error=validate_client_errors,
    )
    ```
"""

from __future__ import annotations


def validate_client_errors(status_code: int) -> bool:
    """Validate error bodies of 4xx responses only."""
    return 400 <= status_code < 500


def validate_all_errors(status_code: int) -> bool:
    """Validate every error body (4xx and 5xx)."""
    return True
