from http import HTTPStatus
from unittest.mock import patch

import pytest

from errors import FatalIOError, UnsupportedFileTypeError
from models import Severity, SubmissionRequest, SubmissionStatus, ValidationRule
from sheet_ingestor import SheetIngestor
from validation_orchestrator import SubmissionProcessor, ValidationOrchestrator


def make_rule(rule_type, field, condition="", severity=Severity.ERROR, sheet_id=None, rule_id=None):
    return ValidationRule(
        id=rule_id,
        template_id=1,
        sheet_id=sheet_id,
        rule_type=rule_type,
        field=field,
        condition=condition,
        error_message=f"{field} failed {rule_type}",
        severity=severity,
    )


@pytest.fixture
def submission_rows():
    """
    Fixture providing a header row and 10 data rows.

    Returns:
        list: Rows where two of the ten emails are empty
    """
    rows = [["name", "amount", "code", "email"]]
    for index in range(1, 11):
        email = "" if index in (3, 7) else f"user{index}@example.com"
        rows.append([f"Company {index}", str(index * 100), f"C{index}", email])
    return rows


@pytest.fixture
def orchestrator():
    return ValidationOrchestrator(ingestor=SheetIngestor(chunk_size=1000))


class TestValidateSubmission:
    """
    Tests for ValidationOrchestrator.validate_submission.
    """

    def test_end_to_end_summary(self, orchestrator, make_csv, submission_rows):
        """
        Test a column rule, a passing range rule and an unknown rule type together.

        The email column fails for 2 of 10 rows, B2:B5 passes for all 4 cells
        and the unknown rule type fails on all 4 cells of C2:C5.
        """
        rules = [
            make_rule("required", "email", "not_empty", rule_id=1),
            make_rule("range", "B2:B5", "min:0,max:1000", rule_id=2),
            make_rule("foo", "C2:C5", "anything", rule_id=3),
        ]

        outcome = orchestrator.validate_submission(make_csv(submission_rows), rules, submission_id=42)
        summary = outcome.summary

        assert summary.total_rules == 18
        assert summary.failed == 2 + 0 + 4
        assert summary.passed == 8 + 4 + 0
        assert summary.errors == 6
        assert summary.warnings == 0
        assert summary.status == SubmissionStatus.FAILED

        email_failures = [r for r in outcome.results if r.rule_id == 1 and not r.passed]
        assert [r.field for r in email_failures] == ["D4", "D8"]
        assert all(r.submission_id == 42 for r in outcome.results)
        assert all(not r.passed for r in outcome.results if r.rule_id == 3)

    def test_range_rule_over_2500_rows_stays_chunked(self, make_csv):
        """
        Test that 2,500 rows yield 2,500 results while no chunk exceeds 1,000 rows.
        """
        ingestor = SheetIngestor(chunk_size=1000)
        orchestrator = ValidationOrchestrator(ingestor=ingestor)
        path = make_csv([[f"value {index}"] for index in range(2500)])
        original_stream_rows = ingestor.stream_rows
        chunk_sizes = []

        def spy(sheet):
            for chunk in original_stream_rows(sheet):
                chunk_sizes.append(len(chunk.rows))
                yield chunk

        with patch.object(ingestor, "stream_rows", side_effect=spy):
            outcome = orchestrator.validate_submission(path, [make_rule("required", "A1:A2500", "not_empty")])

        assert len(outcome.results) == 2500
        assert outcome.summary.passed == 2500
        assert chunk_sizes == [1000, 1000, 500]
        assert outcome.results[0].field == "A1"
        assert outcome.results[-1].field == "A2500"

    def test_cells_past_sheet_end_are_checked_as_empty(self, orchestrator, make_csv):
        path = make_csv([["a"], ["b"], ["c"]])

        outcome = orchestrator.validate_submission(path, [make_rule("required", "A1:A5", "not_empty")])

        assert [r.field for r in outcome.results] == ["A1", "A2", "A3", "A4", "A5"]
        assert [r.passed for r in outcome.results] == [True, True, True, False, False]
        assert outcome.results[4].value == ""

    def test_deeply_nested_custom_condition_fails_each_cell(self, orchestrator, make_csv):
        """
        Test that a condition too deep to parse fails every resolved cell instead of the whole rule.
        """
        condition = "(" * 1200 + "value > 1" + ")" * 1200
        path = make_csv([["5"], ["6"], ["7"]])

        outcome = orchestrator.validate_submission(path, [make_rule("custom", "A1:A3", condition)])

        assert [(r.field, r.passed) for r in outcome.results] == [("A1", False), ("A2", False), ("A3", False)]
        assert outcome.summary.errors == 3

    def test_whitespace_cell_counts_as_filled(self, orchestrator, make_csv):
        path = make_csv([["name", "note"], ["Acme", "   "], ["Beta", ""]])
        rules = [make_rule("required", "B2:B3", "not_empty"), make_rule("format", "B2", r"^\s*$")]

        outcome = orchestrator.validate_submission(path, rules)

        assert [(r.field, r.passed) for r in outcome.results] == [("B2", True), ("B3", False), ("B2", True)]
        assert outcome.results[0].value == "   "

    def test_chunked_range_past_sheet_end(self, make_csv):
        orchestrator = ValidationOrchestrator(ingestor=SheetIngestor(chunk_size=2))
        path = make_csv([["a"], ["b"], ["c"]])

        outcome = orchestrator.validate_submission(path, [make_rule("required", "A1:A5", "not_empty")])

        assert [r.field for r in outcome.results] == ["A1", "A2", "A3", "A4", "A5"]
        assert outcome.summary.failed == 2

    def test_column_rule_across_chunks(self, make_csv):
        orchestrator = ValidationOrchestrator(ingestor=SheetIngestor(chunk_size=3))
        rows = [["id", "email"]] + [[str(index), f"u{index}@example.com"] for index in range(1, 8)]

        outcome = orchestrator.validate_submission(make_csv(rows), [make_rule("format", "EMAIL", r"@example\.com$")])

        assert [r.row_number for r in outcome.results] == list(range(2, 9))
        assert outcome.summary.passed == 7

    def test_missing_column_yields_one_failed_result(self, orchestrator, make_csv, submission_rows):
        rule = make_rule("required", "phone", "not_empty")

        outcome = orchestrator.validate_submission(make_csv(submission_rows), [rule])

        assert len(outcome.results) == 1
        assert outcome.results[0].passed is False
        assert outcome.results[0].field == "phone"
        assert outcome.results[0].error_message == "phone failed required"

    def test_column_rule_on_empty_sheet_fails(self, orchestrator, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("", encoding="utf-8")

        outcome = orchestrator.validate_submission(str(path), [make_rule("required", "email", "not_empty")])

        assert len(outcome.results) == 1
        assert outcome.results[0].passed is False

    def test_malformed_rule_does_not_stop_the_run(self, orchestrator, make_csv, submission_rows):
        rules = [make_rule("required", "A1:ZZ", "not_empty"), make_rule("required", "A2", "not_empty")]

        outcome = orchestrator.validate_submission(make_csv(submission_rows), rules)

        assert [(r.field, r.passed) for r in outcome.results] == [("A1:ZZ", False), ("A2", True)]

    def test_warnings_only_needs_review(self, orchestrator, make_csv, submission_rows):
        rule = make_rule("custom", "B2", "value > 500", severity=Severity.WARNING)

        outcome = orchestrator.validate_submission(make_csv(submission_rows), [rule])

        assert outcome.summary.warnings == 1
        assert outcome.summary.errors == 0
        assert outcome.summary.status == SubmissionStatus.NEEDS_REVIEW

    def test_no_rules_passes(self, orchestrator, make_csv, submission_rows):
        outcome = orchestrator.validate_submission(make_csv(submission_rows), [])
        assert outcome.results == []
        assert outcome.summary.status == SubmissionStatus.PASSED


class TestSheetBinding:
    """
    Tests for applying rules to the sheets they are bound to.
    """

    @pytest.fixture
    def workbook(self, make_xlsx):
        return make_xlsx({
            "Summary": [["total"], [10]],
            "Detail": [["total"], [None]],
        })

    def test_unbound_rules_apply_to_every_sheet(self, orchestrator, workbook):
        outcome = orchestrator.validate_submission(workbook, [make_rule("required", "A2", "not_empty")])
        assert [r.passed for r in outcome.results] == [True, False]

    def test_sheet_id_defaults_to_sheet_index(self, orchestrator, workbook):
        outcome = orchestrator.validate_submission(workbook, [make_rule("required", "A2", "not_empty", sheet_id=1)])
        assert len(outcome.results) == 1
        assert outcome.results[0].passed is False

    def test_sheet_id_map(self, orchestrator, workbook):
        """
        Test that an explicit sheet map binds rules by template sheet id, compared as text.
        """
        rules = [
            make_rule("required", "A2", "not_empty", sheet_id=10),
            make_rule("required", "A1", "not_empty", sheet_id="20"),
            make_rule("required", "A1", "not_empty", sheet_id=30),
        ]

        outcome = orchestrator.validate_submission(workbook, rules, sheet_ids={0: 10, 1: 20})

        assert [(r.field, r.passed) for r in outcome.results] == [("A2", True), ("A1", True)]


class TestProgress:
    """
    Tests for progress reporting.
    """

    def test_progress_history_and_callback(self, make_xlsx):
        calls = []
        orchestrator = ValidationOrchestrator(
            ingestor=SheetIngestor(),
            on_progress=lambda percent, message: calls.append((percent, message)),
        )
        path = make_xlsx({"One": [["a"]], "Two": [["b"]]})
        rules = [make_rule("required", "A1", "not_empty"), make_rule("format", "A1", "^[a-z]$")]

        orchestrator.validate_submission(path, rules)

        percents = [percent for percent, _ in orchestrator.progress_history]
        assert calls == orchestrator.progress_history
        assert orchestrator.progress_history[0] == (0, "Starting validation...")
        assert orchestrator.progress_history[1] == (10, "Reading sheets...")
        assert orchestrator.progress_history[-2] == (90, "Calculating summary...")
        assert orchestrator.progress == (100, "Validation complete")
        assert percents == sorted(percents)
        assert (50, "Validating sheet: Two") in orchestrator.progress_history

    def test_failing_callback_is_ignored(self, make_csv, submission_rows):
        def broken(percent, message):
            raise RuntimeError("listener gone")

        orchestrator = ValidationOrchestrator(ingestor=SheetIngestor(), on_progress=broken)
        outcome = orchestrator.validate_submission(make_csv(submission_rows), [make_rule("required", "A1", "not_empty")])

        assert outcome.summary.passed == 1
        assert orchestrator.progress[0] == 100


class TestFatalErrors:
    """
    Tests for errors that abort a validation run.
    """

    def test_missing_file(self, orchestrator, tmp_path):
        with pytest.raises(FatalIOError) as exc_info:
            orchestrator.validate_submission(str(tmp_path / "missing.csv"), [])
        assert exc_info.value.missing is True

    def test_unsupported_file_type(self, orchestrator):
        with pytest.raises(FatalIOError) as exc_info:
            orchestrator.validate_submission("report.pdf", [])
        assert isinstance(exc_info.value.__cause__, UnsupportedFileTypeError)

    def test_read_error_during_a_rule_aborts(self, orchestrator, make_csv, submission_rows):
        path = make_csv(submission_rows)
        with patch.object(orchestrator.ingestor, "stream_rows", side_effect=FatalIOError("disk gone", file_path=path)):
            with pytest.raises(FatalIOError):
                orchestrator.validate_submission(path, [make_rule("required", "A1", "not_empty")])


class TestSubmissionProcessor:
    """
    Tests for SubmissionProcessor, the HTTP-facing wrapper.
    """

    def test_success(self, make_csv, submission_rows):
        request = SubmissionRequest(
            file_path=make_csv(submission_rows),
            submission_id=5,
            rules=[make_rule("required", "email", "not_empty")],
        )

        result = SubmissionProcessor.process(request)

        assert result.is_success()
        assert result.data.status == SubmissionStatus.FAILED
        assert result.data.summary.failed == 2
        assert result.to_dict()["data"]["status"] == "failed"

    def test_no_file_path_is_404(self):
        result = SubmissionProcessor.process(SubmissionRequest(file_path=None))
        assert result.is_failure()
        assert result.status_code == HTTPStatus.NOT_FOUND

    def test_missing_file_is_404(self, tmp_path):
        result = SubmissionProcessor.process(SubmissionRequest(file_path=str(tmp_path / "missing.xlsx")))
        assert result.status_code == HTTPStatus.NOT_FOUND

    def test_unsupported_file_is_415(self):
        result = SubmissionProcessor.process(SubmissionRequest(file_path="report.pdf"))
        assert result.status_code == HTTPStatus.UNSUPPORTED_MEDIA_TYPE
        assert "Unsupported file type" in result.error

    def test_corrupt_file_is_400(self, tmp_path):
        path = tmp_path / "corrupt.xlsx"
        path.write_bytes(b"not a workbook")
        result = SubmissionProcessor.process(SubmissionRequest(file_path=str(path)))
        assert result.status_code == HTTPStatus.BAD_REQUEST

    def test_unexpected_error_is_500(self, make_csv, submission_rows):
        with patch.object(ValidationOrchestrator, "validate_submission", side_effect=RuntimeError("boom")):
            result = SubmissionProcessor.process(SubmissionRequest(file_path=make_csv(submission_rows)))
        assert result.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
        assert "boom" in result.error

    def test_detect_tables(self, make_xlsx):
        path = make_xlsx({"Data": [["ID", "Name"], [1, "a"], [2, "b"], [3, "c"]]})

        result = SubmissionProcessor.detect_tables(path)

        assert result.is_success()
        assert result.data[0].sheet_name == "Data"
        assert result.data[0].tables[0].kind == "vertical"

    def test_detect_tables_unsupported_file(self):
        assert SubmissionProcessor.detect_tables("notes.txt").status_code == HTTPStatus.UNSUPPORTED_MEDIA_TYPE
