import logging
import sys
import time
import uuid
from contextlib import closing
from http import HTTPStatus
from typing import Callable, Dict, List, Optional, Tuple, Union

from cell_address import FIELD_COLUMN, FieldSpec, parse_field
from config import get_settings
from errors import FatalIOError, InputError, RuleEvaluationError, UnsupportedFileTypeError
from models import (
    SheetTables,
    SubmissionRequest,
    SubmissionResponse,
    ValidationOutcome,
    ValidationResult,
    ValidationRule,
    ValidationSummary,
)
from rule_engine import RuleEngine
from sheet_ingestor import SheetIngestor, SheetSource
from utils.result import Result

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]
SheetId = Union[int, str]


class LogContext:
    """Context manager that logs start, finish and duration of a validation step"""
    def __init__(self, operation_name: str, **kwargs):
        self.operation_name = operation_name
        self.start_time = None
        self.request_id = kwargs.pop('request_id', None) or str(uuid.uuid4())[:8]
        self.extra = kwargs

    def __enter__(self):
        self.start_time = time.time()
        logger.info(f"Starting {self.operation_name}", extra={"request_id": self.request_id, **self.extra})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        if exc_type:
            logger.error(
                f"Failed {self.operation_name} in {duration:.2f}s: {str(exc_val)}",
                extra={"request_id": self.request_id, "duration": duration, **self.extra},
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            logger.info(
                f"Completed {self.operation_name} in {duration:.2f}s",
                extra={"request_id": self.request_id, "duration": duration, **self.extra}
            )


class ValidationOrchestrator:
    """
    Validates one submission file against a set of rules.

    Sheets are processed one after another; each applicable rule streams the
    sheet in chunks so at most one chunk of rows is held at a time. Progress
    is kept on the instance (progress, progress_history) and forwarded to the
    optional callback.
    """

    def __init__(self, ingestor: Optional[SheetIngestor] = None, on_progress: Optional[ProgressCallback] = None):
        if ingestor is None:
            settings = get_settings()
            ingestor = SheetIngestor(
                chunk_size=settings.chunk_size,
                vertical_lookahead=settings.vertical_lookahead,
                matrix_lookahead=settings.matrix_lookahead,
            )
        self.ingestor = ingestor
        self.on_progress = on_progress
        self.progress: Tuple[int, str] = (0, "")
        self.progress_history: List[Tuple[int, str]] = []

    def validate_submission(
        self,
        file_path: str,
        rules: List[ValidationRule],
        submission_id: Optional[int] = None,
        sheet_ids: Optional[Dict[int, SheetId]] = None,
    ) -> ValidationOutcome:
        """
        Run every applicable rule against every sheet of a submission.

        Args:
            file_path: Submission file (.xlsx, .xls or .csv)
            rules: Rules to apply; a rule without sheet_id applies to every sheet
            submission_id: Copied onto each result
            sheet_ids: Sheet index to template sheet id; defaults to the index

        Returns:
            ValidationOutcome with one result per checked cell and the summary

        Raises:
            FatalIOError: the file is missing, corrupt or of an unsupported type
        """
        log_context = {"submission_id": submission_id, "file_path": file_path, "rule_count": len(rules)}
        self._report(0, "Starting validation...")

        try:
            sheets = self.ingestor.open_sheets(file_path)
        except InputError as e:
            logger.error(f"Cannot validate submission: {str(e)}", extra=log_context)
            raise FatalIOError(str(e), file_path=file_path) from e

        self._report(10, "Reading sheets...")
        results: List[ValidationResult] = []
        total_sheets = len(sheets)

        for position, sheet in enumerate(sheets):
            sheet_id = self._sheet_id(sheet, sheet_ids)
            sheet_rules = [rule for rule in rules if self._applies_to(rule, sheet_id)]
            if not sheet_rules:
                logger.debug(f"No rules apply to sheet {sheet.name}, skipping", extra=log_context)
                continue

            sheet_progress = 10 + round(position / total_sheets * 80)
            self._report(sheet_progress, f"Validating sheet: {sheet.name}")

            with LogContext(f"validation of sheet {sheet.name}", sheet=sheet.name, **log_context):
                for count, rule in enumerate(sheet_rules):
                    rule_progress = sheet_progress + round(count / len(sheet_rules) * (80 / total_sheets))
                    self._report(rule_progress, f"Sheet {sheet.name}: Validating {rule.field}")
                    results.extend(self.validate_rule(rule, sheet, submission_id))

        self._report(90, "Calculating summary...")
        summary = ValidationSummary.from_results(results)
        self._report(100, "Validation complete")

        logger.info(
            f"Validated submission with {summary.total_rules} result(s)",
            extra={**log_context, "passed": summary.passed, "failed": summary.failed,
                   "errors": summary.errors, "warnings": summary.warnings},
        )
        return ValidationOutcome(results=results, summary=summary)

    def validate_rule(self, rule: ValidationRule, sheet: SheetSource, submission_id: Optional[int] = None) -> List[ValidationResult]:
        """
        Evaluate one rule on one sheet.

        A rule that cannot be resolved or evaluated yields a single failed
        result instead of stopping the run. File errors still propagate.
        """
        try:
            spec = parse_field(rule.field)
            reference_count = spec.reference_count()
            if reference_count is not None and reference_count <= self.ingestor.chunk_size:
                return self._validate_direct(rule, spec, sheet, submission_id)
            return self._validate_chunked(rule, spec, sheet, submission_id)
        except FatalIOError:
            raise
        except Exception as e:
            logger.warning(
                "Rule could not be evaluated, recording a failed result",
                extra={"rule_id": rule.id, "field": rule.field, "sheet": sheet.name,
                       "error": str(e), "error_type": type(e).__name__},
            )
            return [RuleEngine.failed_result(rule, submission_id)]

    def _validate_direct(self, rule: ValidationRule, spec: FieldSpec, sheet: SheetSource, submission_id: Optional[int]) -> List[ValidationResult]:
        refs = list(RuleEngine.resolve(spec))
        last_needed_row = spec.row_bounds[1]
        values = {}
        with closing(self.ingestor.stream_rows(sheet)) as chunks:
            for chunk in chunks:
                for ref in spec.references(chunk.start_row, chunk.end_row):
                    values[ref] = chunk.value_at(ref)
                if chunk.end_row >= last_needed_row:
                    break
        # Cells past the last row of the sheet are checked as empty
        return [RuleEngine.check(rule, ref, values.get(ref), submission_id) for ref in refs]

    def _validate_chunked(self, rule: ValidationRule, spec: FieldSpec, sheet: SheetSource, submission_id: Optional[int]) -> List[ValidationResult]:
        results: List[ValidationResult] = []
        headers = None
        last_row = -1
        last_needed_row = spec.row_bounds[1] if spec.kind != FIELD_COLUMN else None

        with closing(self.ingestor.stream_rows(sheet)) as chunks:
            for chunk in chunks:
                if headers is None:
                    headers = chunk.rows[0] if chunk.rows else []
                span = range(chunk.start_row, chunk.end_row + 1)
                for ref in RuleEngine.resolve(spec, headers, span):
                    results.append(RuleEngine.check(rule, ref, chunk.value_at(ref), submission_id))
                last_row = chunk.end_row
                if last_needed_row is not None and last_row >= last_needed_row:
                    break

        if spec.kind == FIELD_COLUMN:
            if headers is None:
                raise RuleEvaluationError(f"Column '{spec.column_name}' not found: sheet is empty", field=rule.field)
            return results

        for ref in RuleEngine.resolve(spec, row_span=range(last_row + 1, sys.maxsize)):
            results.append(RuleEngine.check(rule, ref, None, submission_id))
        return results

    @staticmethod
    def _sheet_id(sheet: SheetSource, sheet_ids: Optional[Dict[int, SheetId]]) -> Optional[SheetId]:
        if sheet_ids is None:
            return sheet.index
        return sheet_ids.get(sheet.index)

    @staticmethod
    def _applies_to(rule: ValidationRule, sheet_id: Optional[SheetId]) -> bool:
        if rule.sheet_id is None:
            return True
        return sheet_id is not None and str(rule.sheet_id) == str(sheet_id)

    def _report(self, percent: int, message: str) -> None:
        percent = max(0, min(100, int(percent)))
        self.progress = (percent, message)
        self.progress_history.append(self.progress)
        if self.on_progress is None:
            return
        try:
            self.on_progress(percent, message)
        except Exception as e:
            logger.warning(f"Progress callback failed: {str(e)}")


class SubmissionProcessor:
    """
    HTTP-facing wrapper around the orchestrator.

    Converts the exceptions raised by the validation core into Results with
    matching status codes, the same envelope every endpoint returns.
    """

    @staticmethod
    def process(request: SubmissionRequest, on_progress: Optional[ProgressCallback] = None) -> Result[SubmissionResponse]:
        request_id = str(uuid.uuid4())[:8]
        log_context = {
            "request_id": request_id,
            "file_path": request.file_path,
            "submission_id": request.submission_id,
            "rule_count": len(request.rules),
        }
        logger.info("Validating submission", extra=log_context)

        if request.file_path is None:
            logger.error("File path is None", extra=log_context)
            return Result.not_found("No file path provided")

        orchestrator = ValidationOrchestrator(on_progress=on_progress)
        try:
            with LogContext("submission validation", **log_context):
                outcome = orchestrator.validate_submission(
                    request.file_path,
                    request.rules,
                    submission_id=request.submission_id,
                    sheet_ids=request.sheet_ids,
                )
        except FatalIOError as e:
            return SubmissionProcessor._io_failure(e)
        except Exception as e:
            logger.exception("Unexpected error during validation", extra={**log_context, "error": str(e)})
            return Result.server_error(f"Validation error: {str(e)}")

        response = SubmissionResponse(
            results=outcome.results,
            summary=outcome.summary,
            status=outcome.summary.status,
        )
        return Result.ok(response)

    @staticmethod
    def detect_tables(file_path: Optional[str]) -> Result[List[SheetTables]]:
        if file_path is None:
            return Result.not_found("No file path provided")

        settings = get_settings()
        ingestor = SheetIngestor(
            chunk_size=settings.chunk_size,
            vertical_lookahead=settings.vertical_lookahead,
            matrix_lookahead=settings.matrix_lookahead,
        )
        try:
            with LogContext("table detection", file_path=file_path):
                sheets = ingestor.open_sheets(file_path)
                detected = [
                    SheetTables(sheet_index=sheet.index, sheet_name=sheet.name, tables=ingestor.detect_tables(sheet))
                    for sheet in sheets
                ]
        except UnsupportedFileTypeError as e:
            return Result.unsupported_file(str(e))
        except FatalIOError as e:
            return SubmissionProcessor._io_failure(e)
        except Exception as e:
            logger.exception("Unexpected error during table detection", extra={"file_path": file_path, "error": str(e)})
            return Result.server_error(f"Table detection error: {str(e)}")
        return Result.ok(detected)

    @staticmethod
    def _io_failure(error: FatalIOError) -> Result:
        if isinstance(error.__cause__, UnsupportedFileTypeError):
            return Result.unsupported_file(str(error))
        if error.missing:
            return Result.not_found(str(error))
        return Result.fail(str(error), status_code=HTTPStatus.BAD_REQUEST)
