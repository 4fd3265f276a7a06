"""Discovery policy: which operations are listed and run as checks."""
from __future__ import annotations

from typing import Iterable

from .declarations import CHECK_TAG
from .errors import DeclarationError
from .types import OperationDescriptor


def is_callable_without_arguments(op: OperationDescriptor) -> bool:
    return all(not spec.required for spec in op.parameters)


def is_check(op: OperationDescriptor) -> bool:
    return CHECK_TAG in op.tags


def validate_checks(operations: Iterable[OperationDescriptor]) -> None:
    """Raise ``DeclarationError`` for the first check that has required parameters."""
    for op in operations:
        if is_check(op) and not is_callable_without_arguments(op):
            raise DeclarationError(op.name, op.required_parameters)


def list_checks(operations: Iterable[OperationDescriptor]) -> list[OperationDescriptor]:
    """Return the check-tagged operations callable without arguments, in catalog order."""
    operations = list(operations)
    validate_checks(operations)
    return [op for op in operations if is_check(op) and is_callable_without_arguments(op)]
