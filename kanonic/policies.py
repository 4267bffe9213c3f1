"""
Client policies (cross-cutting behavioral controls).

Policies are orthogonal and composable. They are enforced centrally by the HTTP
request pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ValidationPolicy(Enum):
    """Whether declared schemas are checked at a pipeline boundary."""

    STRICT = "strict"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class Policies:
    """Policy bundle applied to all requests made by a client."""

    input: ValidationPolicy = ValidationPolicy.STRICT
    output: ValidationPolicy = ValidationPolicy.STRICT

    @property
    def validate_input(self) -> bool:
        return self.input is ValidationPolicy.STRICT

    @property
    def validate_output(self) -> bool:
        return self.output is ValidationPolicy.STRICT
