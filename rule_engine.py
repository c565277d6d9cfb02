import logging
import re
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Sequence

from cell_address import FIELD_COLUMN, CellReference, FieldSpec, parse_field
from condition_expression import ConditionSyntaxError, evaluate_condition
from errors import RuleEvaluationError
from models import ValidationResult, ValidationRule
from utils.values import is_empty, stringify, to_number

logger = logging.getLogger(__name__)

NOT_EMPTY = "not_empty"


@lru_cache(maxsize=256)
def _compile_pattern(condition: str):
    return re.compile(condition)


def _parse_bounds(condition: str) -> Dict[str, float]:
    """Parse "min:0,max:100" into {"min": 0.0, "max": 100.0}."""
    bounds: Dict[str, float] = {}
    for part in (condition or "").split(","):
        if not part.strip():
            continue
        key, separator, raw = part.partition(":")
        key = key.strip().lower()
        if not separator:
            raise ValueError(f"Malformed range bound: {part!r}")
        if key in ("min", "max"):
            bounds[key] = float(raw.strip())
    return bounds


class RuleEngine:
    """
    Resolves rule fields to cells and evaluates rule conditions.

    Stateless: every method works only on its arguments.
    """

    @staticmethod
    def find_column(headers: Optional[Sequence[Any]], name: str) -> Optional[int]:
        """Index of the header matching name (case-insensitive), or None."""
        wanted = name.strip().lower()
        for index, header in enumerate(headers or []):
            if not is_empty(header) and stringify(header).strip().lower() == wanted:
                return index
        return None

    @staticmethod
    def resolve(
        field: str,
        headers: Optional[Sequence[Any]] = None,
        row_span: Optional[range] = None,
    ) -> Iterator[CellReference]:
        """
        Resolve a rule field into concrete cells.

        A cell or a range resolves purely from its address. A column name
        resolves to every data row (row >= 1) of the header that matches it,
        so row_span is required for columns. When row_span is given, cells
        outside it are skipped, which lets callers resolve one chunk at a time.

        Raises:
            RuleEvaluationError: malformed range, or no header matches a column name
        """
        spec = field if isinstance(field, FieldSpec) else parse_field(field)
        first_row = row_span.start if row_span is not None else 0
        last_row = row_span.stop - 1 if row_span is not None else None

        if spec.kind != FIELD_COLUMN:
            return spec.references(first_row, last_row)

        col = RuleEngine.find_column(headers, spec.column_name)
        if col is None:
            raise RuleEvaluationError(f"Column '{spec.column_name}' not found in header row", field=spec.raw)
        if last_row is None:
            raise RuleEvaluationError("Column fields need a row span to resolve", field=spec.raw)
        return (CellReference(row, col) for row in range(max(first_row, 1), last_row + 1))

    @staticmethod
    def column_values(field: str, rows: Sequence[Sequence[Any]]) -> List[Any]:
        """Every data value under the header matching field, as one column value."""
        headers = rows[0] if rows else []
        values = []
        for ref in RuleEngine.resolve(field, headers, range(0, len(rows))):
            row = rows[ref.row]
            values.append(row[ref.col] if ref.col < len(row) else None)
        return values

    @staticmethod
    def evaluate(rule_type: str, value: Any, condition: str) -> bool:
        """
        Evaluate one condition against a value or a list of values.

        Never raises: malformed conditions and unknown rule types fail.
        """
        try:
            if rule_type == "required":
                return RuleEngine._check_required(value, condition)
            if rule_type == "format":
                return RuleEngine._check_format(value, condition)
            if rule_type == "range":
                return RuleEngine._check_range(value, condition)
            if rule_type == "custom":
                return RuleEngine._check_custom(value, condition)
        except (re.error, ValueError, ConditionSyntaxError, RecursionError) as e:
            logger.warning(
                f"Invalid {rule_type} condition",
                extra={"condition": condition, "error": str(e), "error_type": type(e).__name__},
            )
            return False
        logger.debug(f"Unknown rule type: {rule_type}")
        return False

    @staticmethod
    def _check_required(value: Any, condition: str) -> bool:
        if (condition or "").strip() != NOT_EMPTY:
            return False
        if isinstance(value, (list, tuple)):
            return len(value) > 0 and all(not is_empty(item) for item in value)
        return not is_empty(value)

    @staticmethod
    def _check_format(value: Any, condition: str) -> bool:
        pattern = _compile_pattern(condition or "")
        if isinstance(value, (list, tuple)):
            return len(value) > 0 and all(RuleEngine._check_format(item, condition) for item in value)
        if value is None or (not isinstance(value, str) and is_empty(value)):
            return False
        text = value if isinstance(value, str) else stringify(value)
        return pattern.search(text) is not None

    @staticmethod
    def _check_range(value: Any, condition: str) -> bool:
        bounds = _parse_bounds(condition)
        if isinstance(value, (list, tuple)):
            return len(value) > 0 and all(RuleEngine._check_range(item, condition) for item in value)
        number = to_number(value)
        if number is None:
            return False
        if "min" in bounds and number < bounds["min"]:
            return False
        if "max" in bounds and number > bounds["max"]:
            return False
        return True

    @staticmethod
    def _check_custom(value: Any, condition: str) -> bool:
        if isinstance(value, (list, tuple)):
            return len(value) > 0 and all(evaluate_condition(condition, item) for item in value)
        return evaluate_condition(condition, value)

    @staticmethod
    def check(
        rule: ValidationRule,
        ref: Optional[CellReference],
        value: Any,
        submission_id: Optional[int] = None,
    ) -> ValidationResult:
        """Evaluate rule against one resolved cell and build its result."""
        passed = RuleEngine.evaluate(rule.rule_type, value, rule.condition)
        return ValidationResult(
            submission_id=submission_id,
            rule_id=rule.id,
            field=ref.address if ref is not None else rule.field,
            value=stringify(value) if not isinstance(value, (list, tuple)) else ", ".join(stringify(v) for v in value),
            passed=passed,
            severity=rule.severity,
            error_message="" if passed else rule.error_message,
            row_number=ref.row + 1 if ref is not None else None,
            column_number=ref.col + 1 if ref is not None else None,
        )

    @staticmethod
    def failed_result(rule: ValidationRule, submission_id: Optional[int] = None) -> ValidationResult:
        """Result recorded when a rule cannot be resolved or evaluated at all."""
        return ValidationResult(
            submission_id=submission_id,
            rule_id=rule.id,
            field=rule.field,
            value="",
            passed=False,
            severity=rule.severity,
            error_message=rule.error_message,
        )
