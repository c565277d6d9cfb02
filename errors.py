"""
Exception taxonomy for submission validation.

- InputError: the input cannot be used as given (unsupported extension,
  unreadable rule file).
- FatalIOError: the submission file is missing or corrupt. Aborts the run.
- RuleEvaluationError: one rule could not be resolved or evaluated. Always
  caught by the orchestrator and turned into a failed result.
"""
from typing import Optional


class SubmissionValidationError(Exception):
    """Base class for every error raised by the validation core"""


class InputError(SubmissionValidationError):
    """Raised when an input file or rule definition cannot be used"""

    def __init__(self, message: str, file_path: Optional[str] = None):
        super().__init__(message)
        self.file_path = file_path


class UnsupportedFileTypeError(InputError):
    """Raised when a submission has an extension no reader handles"""

    def __init__(self, extension: str, file_path: Optional[str] = None):
        super().__init__(f"Unsupported file type: {extension or '<none>'}", file_path=file_path)
        self.extension = extension


class FatalIOError(SubmissionValidationError):
    """Raised when a submission file is missing, unreadable or corrupt"""

    def __init__(self, message: str, file_path: Optional[str] = None, missing: bool = False):
        super().__init__(message)
        self.file_path = file_path
        self.missing = missing


class RuleEvaluationError(SubmissionValidationError):
    """Raised when a rule's field cannot be resolved against a sheet"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
