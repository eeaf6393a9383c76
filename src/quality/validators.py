"""
Data Validation Module

Rule-based checks over polars frames of raw POS rows, used by the
consistency auditor.

Checks:
- Not-null on required columns
- Uniqueness of (composite) natural keys
- Numeric ranges
- Allowed values
- Composite-key referential integrity (order lines without an order)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import polars as pl
import structlog

logger = structlog.get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Reported as an issue
    WARNING = "warning"  # Reported, does not fail the audit
    INFO = "info"


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    def failures(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]


Check = Callable[[pl.DataFrame], ValidationCheck]


def _columns(column: Union[str, Sequence[str]]) -> List[str]:
    return [column] if isinstance(column, str) else list(column)


def _counted(
    name: str,
    severity: ValidationSeverity,
    bad: int,
    total: int,
    failure: str,
    success: str,
    **details,
) -> ValidationCheck:
    """A check result from the number of offending rows"""
    return ValidationCheck(
        name=name,
        passed=bad == 0,
        severity=severity,
        message=failure if bad else success,
        details=details or None,
        failed_rows=bad,
        total_rows=total,
    )


class DataValidator:
    """
    Frame validator built from chained checks.

    Every check is registered under a name; a referenced column missing
    from the frame fails that check instead of raising.

    Example:
        validator = (
            DataValidator()
            .add_not_null_check("order_id")
            .add_unique_check(["store_id", "business_date", "order_id", "transaction_type"])
            .add_range_check("gross_sales", min_value=0)
        )
        result = validator.validate(df)
    """

    def __init__(self, strict_mode: bool = False, name: str = "frame"):
        self.strict_mode = strict_mode  # Fail on any warning
        self.name = name
        self._checks: List[Check] = []

    def _register(
        self,
        name: str,
        columns: List[str],
        severity: ValidationSeverity,
        body: Check,
        reference: Optional[pl.DataFrame] = None,
    ) -> "DataValidator":
        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = [c for c in columns if c not in df.columns]
            if reference is not None:
                missing += [c for c in columns if c not in reference.columns and c not in missing]
            if missing:
                return ValidationCheck(name, False, severity, f"Column(s) {missing} not found")
            return body(df)

        self._checks.append(check)
        return self

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for null values in column"""
        name = f"not_null_{column}"

        def body(df: pl.DataFrame) -> ValidationCheck:
            nulls = df[column].null_count()
            return _counted(
                name, severity, nulls, df.height,
                f"Column '{column}' has {nulls} null values",
                f"Column '{column}' has no null values",
                null_percentage=(nulls / df.height) * 100 if df.height else 0,
            )

        return self._register(name, [column], severity, body)

    def add_unique_check(
        self,
        columns: Union[str, Sequence[str]],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check that a column, or a combination of columns, is unique"""
        cols = _columns(columns)
        name = f"unique_{'_'.join(cols)}"

        def body(df: pl.DataFrame) -> ValidationCheck:
            duplicates = df.height - df.select(cols).unique().height
            return _counted(
                name, severity, duplicates, df.height,
                f"Key {cols} has {duplicates} duplicate rows",
                f"Key {cols} is unique",
            )

        return self._register(name, cols, severity, body)

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values within specified range"""
        name = f"range_{column}"
        bounds = []
        if min_value is not None:
            bounds.append(pl.col(column) < min_value)
        if max_value is not None:
            bounds.append(pl.col(column) > max_value)

        def body(df: pl.DataFrame) -> ValidationCheck:
            if not bounds:
                return ValidationCheck(name, True, severity, "No range specified")
            outside = pl.any_horizontal(bounds)
            out_of_range = df.filter(outside).height
            return _counted(
                name, severity, out_of_range, df.height,
                f"Column '{column}' has {out_of_range} values outside [{min_value}, {max_value}]",
                "All values in range",
                min=min_value,
                max=max_value,
            )

        return self._register(name, [column], severity, body)

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values in allowed set (nulls are not checked)"""
        name = f"enum_{column}"

        def body(df: pl.DataFrame) -> ValidationCheck:
            invalid = df.filter(pl.col(column).is_not_null() & ~pl.col(column).is_in(allowed_values)).height
            return _counted(
                name, severity, invalid, df.height,
                f"Column '{column}' has {invalid} values outside {allowed_values}",
                "All values are valid",
            )

        return self._register(name, [column], severity, body)

    def add_referential_integrity_check(
        self,
        columns: Union[str, Sequence[str]],
        reference_df: pl.DataFrame,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Rows whose key has no match in ``reference_df`` are orphans"""
        cols = _columns(columns)
        name = f"ref_integrity_{'_'.join(cols)}"

        def body(df: pl.DataFrame) -> ValidationCheck:
            orphans = df.join(reference_df.select(cols).unique(), on=cols, how="anti").height
            return _counted(
                name, severity, orphans, df.height,
                f"{orphans} rows have no matching {cols} in reference",
                "Referential integrity maintained",
            )

        return self._register(name, cols, severity, body, reference=reference_df)

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on a frame.

        Args:
            df: Frame to validate

        Returns:
            ValidationResult with all check results
        """
        started_at = datetime.now()
        logger.debug(f"Running {len(self._checks)} validation checks on {df.height} rows", frame=self.name)

        checks = [check(df) for check in self._checks]
        for check in checks:
            if not check.passed:
                logger.warning(
                    f"Validation failed: {check.name}",
                    frame=self.name,
                    message=check.message,
                    severity=check.severity.value,
                )

        failed = [c for c in checks if not c.passed]
        errors = sum(1 for c in failed if c.severity == ValidationSeverity.ERROR)
        warnings = sum(1 for c in failed if c.severity == ValidationSeverity.WARNING)

        if errors or (warnings and self.strict_mode):
            status = ValidationStatus.FAILED
        elif warnings:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        return ValidationResult(
            status=status,
            total_checks=len(checks),
            passed_checks=len(checks) - len(failed),
            failed_checks=errors,
            warning_count=warnings,
            checks=checks,
            started_at=started_at,
            completed_at=datetime.now(),
        )


# Pre-built validators for the raw datasets
def create_detail_orders_validator() -> DataValidator:
    return (
        DataValidator(name="detail_orders")
        .add_not_null_check("store_id")
        .add_not_null_check("business_date")
        .add_not_null_check("order_id")
        .add_unique_check(["store_id", "business_date", "order_id", "transaction_type"])
        .add_not_null_check("date_time_fulfilled", severity=ValidationSeverity.WARNING)
        .add_range_check("customer_count", min_value=0, severity=ValidationSeverity.WARNING)
        .add_enum_check("refunded", ["Yes", "No", ""], severity=ValidationSeverity.WARNING)
    )


def create_order_line_validator() -> DataValidator:
    return (
        DataValidator(name="order_line")
        .add_not_null_check("store_id")
        .add_not_null_check("business_date")
        .add_not_null_check("order_id")
        .add_not_null_check("item_id")
        .add_unique_check(["store_id", "business_date", "order_id", "item_id"])
        .add_range_check("quantity", min_value=0, severity=ValidationSeverity.WARNING)
    )


def create_waste_validator() -> DataValidator:
    return (
        DataValidator(name="waste")
        .add_not_null_check("store_id")
        .add_not_null_check("waste_date_time")
        .add_unique_check(["store_id", "business_date", "item_id", "waste_date_time"])
        .add_range_check("item_cost", min_value=0, severity=ValidationSeverity.WARNING)
        .add_range_check("quantity", min_value=0, severity=ValidationSeverity.WARNING)
    )
