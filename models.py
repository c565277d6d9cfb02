from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

RULE_TYPES = ("required", "format", "range", "custom")


class Severity(str, Enum):
    ERROR = SEVERITY_ERROR
    WARNING = SEVERITY_WARNING


class SubmissionStatus(str, Enum):
    """Outcome of a validation run as shown to the submitter"""
    PASSED = "passed"
    NEEDS_REVIEW = "needs_review"
    FAILED = "failed"


class ValidationRule(BaseModel):
    """
    A single declarative check authored for a template.

    Attributes:
        id: Rule identifier, None until the rule is stored
        template_id: Template the rule belongs to
        sheet_id: Sheet binding; None applies the rule to every sheet
        rule_type: required, format, range or custom (anything else fails)
        field: Cell ("B5"), range ("A1:A10") or header name ("email")
        condition: Type-specific condition text
        error_message: Message attached to failed results
        severity: error or warning
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    template_id: Optional[int] = None
    sheet_id: Optional[Union[int, str]] = None
    rule_type: str
    field: str
    condition: str = ""
    error_message: str = ""
    severity: Severity = Severity.ERROR


class ValidationResult(BaseModel):
    """
    Outcome of one rule on one concrete cell.

    Attributes:
        submission_id: Submission being validated
        rule_id: Rule that produced the result
        field: Cell address checked, or the raw field if it did not resolve
        value: Stringified cell value at validation time
        passed: Whether the check passed
        severity: Copied from the rule
        error_message: Rule message when failed, empty when passed
        row_number: 1-based row of the cell, if any
        column_number: 1-based column of the cell, if any
    """
    submission_id: Optional[int] = None
    rule_id: Optional[int] = None
    field: str
    value: str = ""
    passed: bool
    severity: Severity = Severity.ERROR
    error_message: str = ""
    row_number: Optional[int] = None
    column_number: Optional[int] = None


class ValidationSummary(BaseModel):
    """Aggregate counts over every result of a run"""
    total_rules: int = 0
    passed: int = 0
    failed: int = 0
    errors: int = 0
    warnings: int = 0

    @classmethod
    def from_results(cls, results: List[ValidationResult]) -> "ValidationSummary":
        summary = cls(total_rules=len(results))
        for result in results:
            if result.passed:
                summary.passed += 1
                continue
            summary.failed += 1
            if result.severity == Severity.ERROR:
                summary.errors += 1
            else:
                summary.warnings += 1
        return summary

    @property
    def status(self) -> SubmissionStatus:
        # Only failed error-severity results reject a submission
        if self.errors > 0:
            return SubmissionStatus.FAILED
        if self.warnings > 0:
            return SubmissionStatus.NEEDS_REVIEW
        return SubmissionStatus.PASSED


class ValidationOutcome(BaseModel):
    results: List[ValidationResult] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)


class TabularTemplate(BaseModel):
    """
    A rectangular header + data block detected inside a sheet.

    Coordinates are 0-based and inclusive.
    """
    start_row: int
    end_row: int
    start_col: int
    end_col: int
    headers: List[str] = Field(default_factory=list)
    kind: str = "vertical"


class SheetTables(BaseModel):
    sheet_index: int
    sheet_name: str
    tables: List[TabularTemplate] = Field(default_factory=list)


class SubmissionRequest(BaseModel):
    """
    Request body for validating a stored submission file.

    Attributes:
        file_path: Path to the submission (.xlsx, .xls or .csv)
        submission_id: Identifier copied onto every result
        rules: Rules to apply
        sheet_ids: Optional map of sheet index to template sheet id
    """
    file_path: Optional[str] = None
    submission_id: Optional[int] = None
    rules: List[ValidationRule] = Field(default_factory=list)
    sheet_ids: Optional[Dict[int, Union[int, str]]] = None


class SubmissionResponse(BaseModel):
    results: List[ValidationResult] = Field(default_factory=list)
    summary: ValidationSummary
    status: SubmissionStatus


class RulesImportRequest(BaseModel):
    rules_text: str
    template_id: Optional[int] = None


class TableDetectionRequest(BaseModel):
    file_path: Optional[str] = None
