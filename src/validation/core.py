"""Validation substrate: shared result contract, logger, error handler, tracer.

Every validator in the pipeline returns a ValidationResult tagged with its
ValidationComponent, so each subsystem can be audited the same way. The
ValidationLogger keeps a bounded in-memory history per component on top of
the standard ``logging`` output.
"""

import logging
import math
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ValidationComponent(str, Enum):
    DATA_PIPELINE = "data_pipeline"
    REGRESSION_ANALYSIS = "regression_analysis"
    WEIGHT_CALCULATION = "weight_calculation"
    PREDICTION_ACCURACY = "prediction_accuracy"
    CALCULATION_TRACER = "calculation_tracer"
    SAMPLE_GAME_ANALYZER = "sample_game_analyzer"
    SYSTEM_HEALTH_MONITOR = "system_health_monitor"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class StepType(str, Enum):
    DATA_EXTRACTION = "data_extraction"
    BASELINE_CALCULATION = "baseline_calculation"
    EFFICIENCY_CALCULATION = "efficiency_calculation"
    WEIGHT_APPLICATION = "weight_application"
    PREDICTION_ASSEMBLY = "prediction_assembly"


SEVERITY_PENALTY = {
    Severity.CRITICAL: 50,
    Severity.HIGH: 25,
    Severity.MEDIUM: 10,
    Severity.LOW: 5,
}
WARNING_PENALTY = 2


class TraceClosedError(RuntimeError):
    """Raised when appending to a trace that has been completed."""


@dataclass(frozen=True)
class ValidationIssue:
    """One validation error."""

    code: str
    message: str
    severity: Severity
    component: ValidationComponent
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "component": self.component.value,
            "details": self.details,
        }


def calculate_score(errors: list, warnings: list) -> float:
    """0-100 score: deduct per error by severity and 2 per warning."""
    score = 100.0
    for error in errors:
        score -= SEVERITY_PENALTY[error.severity]
    score -= WARNING_PENALTY * len(warnings)
    return max(0.0, score)


@dataclass
class ValidationResult:
    """Shared result contract for every validator."""

    component: ValidationComponent
    is_valid: bool
    score: float
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    recommendations: list = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        component: ValidationComponent,
        errors: Optional[list] = None,
        warnings: Optional[list] = None,
        recommendations: Optional[list] = None,
        metadata: Optional[dict] = None,
    ) -> "ValidationResult":
        """Assemble a result, deriving validity and score from the issues."""
        errors = list(errors or [])
        warnings = list(warnings or [])
        return cls(
            component=component,
            is_valid=not errors,
            score=calculate_score(errors, warnings),
            errors=errors,
            warnings=warnings,
            recommendations=list(recommendations or []),
            metadata=dict(metadata or {}),
        )

    @property
    def has_critical(self) -> bool:
        return any(e.severity == Severity.CRITICAL for e in self.errors)

    def error_codes(self) -> list[str]:
        return [e.code for e in self.errors]

    def to_dict(self) -> dict:
        return {
            "component": self.component.value,
            "is_valid": self.is_valid,
            "score": self.score,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class ValidationLogger:
    """Logs validation results and trace steps with a bounded per-component history."""

    def __init__(self, history_cap: int = 1000):
        self.history_cap = history_cap
        self._history: dict[ValidationComponent, deque] = {}

    def _record(self, component: ValidationComponent, kind: str, payload: Any) -> None:
        if component not in self._history:
            self._history[component] = deque(maxlen=self.history_cap)
        self._history[component].append({
            "timestamp": datetime.now(timezone.utc),
            "component": component.value,
            "kind": kind,
            "payload": payload,
        })

    def log_result(self, result: ValidationResult) -> None:
        name = result.component.value
        for error in result.errors:
            if error.severity == Severity.CRITICAL:
                logger.critical(f"[{name}] CRITICAL {error.code}: {error.message}")
        if result.is_valid:
            logger.info(f"[{name}] valid (score {result.score:.0f}, {len(result.warnings)} warnings)")
        else:
            logger.warning(
                f"[{name}] invalid (score {result.score:.0f}): "
                f"{', '.join(result.error_codes())}"
            )
        self._record(result.component, "result", result)

    def log_step(self, component: ValidationComponent, step: "TraceStep") -> None:
        logger.debug(f"[{component.value}] step {step.index} {step.step_type.value}: {step.description}")
        self._record(component, "step", step)

    def history(self, component: ValidationComponent) -> list[dict]:
        return list(self._history.get(component, ()))

    def clear(self) -> None:
        self._history.clear()


class ErrorHandler:
    """Turns unexpected exceptions into logged ValidationIssues."""

    def __init__(self, validation_logger: ValidationLogger):
        self.validation_logger = validation_logger
        self.errors: deque[ValidationIssue] = deque(maxlen=validation_logger.history_cap)

    def handle(
        self,
        component: ValidationComponent,
        exc: BaseException,
        unit: Optional[str] = None,
        severity: Severity = Severity.HIGH,
        **context,
    ) -> ValidationIssue:
        """Log an exception with context and return it as a ValidationIssue.

        Args:
            component: Component where the failure happened
            exc: The caught exception
            unit: The team/game being processed, if any
            severity: Severity to record
            **context: Extra details logged and attached to the issue
        """
        details = {"unit": unit, "exception": type(exc).__name__, **context}
        issue = ValidationIssue(
            code=f"{component.value.upper()}_EXCEPTION",
            message=f"{unit or component.value}: {exc}",
            severity=severity,
            component=component,
            details=details,
        )
        if severity == Severity.CRITICAL:
            logger.critical(f"[{component.value}] {issue.message} {context}", exc_info=exc)
        else:
            logger.error(f"[{component.value}] {issue.message} {context}", exc_info=exc)
        self.errors.append(issue)
        self.validation_logger.log_result(ValidationResult.build(component, errors=[issue]))
        return issue


@dataclass(frozen=True)
class TraceStep:
    """One recorded calculation step."""

    index: int
    step_type: StepType
    description: str
    inputs: dict
    output: Any
    computation: str = ""
    passed: Optional[bool] = None
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CalculationTrace:
    """Ordered steps for one prediction. Read-only once closed."""

    label: str
    metadata: dict = field(default_factory=dict)
    trace_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    _steps: list = field(default_factory=list, repr=False)

    @property
    def steps(self) -> tuple:
        return tuple(self._steps)

    @property
    def closed(self) -> bool:
        return self.completed_at is not None

    def failed_steps(self) -> list[TraceStep]:
        return [s for s in self._steps if s.passed is False]


class CalculationTracer:
    """Opens, appends to, validates, and closes CalculationTraces."""

    def __init__(self, validation_logger: ValidationLogger):
        self.validation_logger = validation_logger

    def start(self, label: str, **metadata) -> CalculationTrace:
        trace = CalculationTrace(label=label, metadata=metadata)
        logger.debug(f"Trace {trace.trace_id} started: {label}")
        return trace

    def add_step(
        self,
        trace: CalculationTrace,
        step_type: StepType,
        description: str,
        inputs: dict,
        output: Any,
        computation: str = "",
    ) -> TraceStep:
        if trace.closed:
            raise TraceClosedError(f"Trace {trace.trace_id} is closed")
        step = TraceStep(
            index=len(trace._steps),
            step_type=step_type,
            description=description,
            inputs=dict(inputs),
            output=output,
            computation=computation,
        )
        trace._steps.append(step)
        self.validation_logger.log_step(ValidationComponent.CALCULATION_TRACER, step)
        return step

    def validate_step(
        self,
        trace: CalculationTrace,
        step: TraceStep,
        expected: Any,
        tolerance: float = 1e-6,
    ) -> TraceStep:
        """Mark a step passed/failed by comparing its output to ``expected``."""
        if trace.closed:
            raise TraceClosedError(f"Trace {trace.trace_id} is closed")
        if isinstance(step.output, (int, float)) and isinstance(expected, (int, float)):
            passed = math.isfinite(step.output) and abs(step.output - expected) <= tolerance
        else:
            passed = step.output == expected
        message = "" if passed else f"expected {expected!r}, got {step.output!r}"
        updated = replace(step, passed=passed, message=message)
        trace._steps[step.index] = updated
        return updated

    def complete(self, trace: CalculationTrace) -> ValidationResult:
        """Close the trace and return its validation outcome."""
        if trace.closed:
            raise TraceClosedError(f"Trace {trace.trace_id} already closed")
        trace.completed_at = datetime.now(timezone.utc)
        errors = [
            ValidationIssue(
                code="TRACE_STEP_FAILED",
                message=f"Step {s.index} ({s.step_type.value}) failed: {s.message}",
                severity=Severity.HIGH,
                component=ValidationComponent.CALCULATION_TRACER,
                details={"step": s.index, "description": s.description},
            )
            for s in trace.failed_steps()
        ]
        result = ValidationResult.build(
            ValidationComponent.CALCULATION_TRACER,
            errors=errors,
            metadata={
                "trace_id": trace.trace_id,
                "label": trace.label,
                "steps": len(trace._steps),
                **trace.metadata,
            },
        )
        self.validation_logger.log_result(result)
        return result
