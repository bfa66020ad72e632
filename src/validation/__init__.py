"""Validation substrate shared by every pipeline component.

The weight verifier, regression auditor, sample-game analyzer, accuracy tester,
health monitor and reporter live in their own modules and are imported directly.
"""

from .core import (
    CalculationTrace,
    CalculationTracer,
    ErrorHandler,
    Severity,
    StepType,
    TraceClosedError,
    ValidationComponent,
    ValidationIssue,
    ValidationLogger,
    ValidationResult,
)

__all__ = [
    "CalculationTrace",
    "CalculationTracer",
    "ErrorHandler",
    "Severity",
    "StepType",
    "TraceClosedError",
    "ValidationComponent",
    "ValidationIssue",
    "ValidationLogger",
    "ValidationResult",
]
