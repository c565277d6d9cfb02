from typing import Generic, TypeVar, Optional, Any, Dict, Union
from http import HTTPStatus

from pydantic import BaseModel

T = TypeVar('T')  # Payload type


def _to_jsonable(data: Any) -> Any:
    """Dump pydantic payloads (or lists of them) to JSON-safe structures."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [_to_jsonable(item) for item in data]
    return data


class Result(Generic[T]):
    """
    Outcome of a submission-level operation exposed over HTTP.

    The validation core raises exceptions; the HTTP surface converts them to
    Results so every endpoint answers with the same envelope.

    Attributes:
        success (bool): Whether the operation succeeded
        data (Optional[T]): Payload of a successful operation
        error (Optional[str]): Message of a failed operation
        status_code (HTTPStatus): 200 by default on success, 400 on failure
    """
    def __init__(
        self,
        success: bool,
        data: Optional[T] = None,
        error: Optional[str] = None,
        status_code: Optional[Union[int, HTTPStatus]] = None
    ):
        self.success = success
        self.data = data
        self.error = error

        if status_code is None:
            self.status_code = HTTPStatus.OK if success else HTTPStatus.BAD_REQUEST
        else:
            self.status_code = HTTPStatus(status_code)

    @classmethod
    def ok(cls, data: T, status_code: Optional[Union[int, HTTPStatus]] = HTTPStatus.OK) -> "Result[T]":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def fail(cls, error: str, status_code: Optional[Union[int, HTTPStatus]] = HTTPStatus.BAD_REQUEST) -> "Result[T]":
        return cls(success=False, error=error, status_code=status_code)

    @classmethod
    def not_found(cls, error: str = "Submission file not found") -> "Result[T]":
        """Failed Result for a missing submission or rules file (404)."""
        return cls(success=False, error=error, status_code=HTTPStatus.NOT_FOUND)

    @classmethod
    def unsupported_file(cls, error: str = "Unsupported file type") -> "Result[T]":
        """Failed Result for a submission no reader handles (415)."""
        return cls(success=False, error=error, status_code=HTTPStatus.UNSUPPORTED_MEDIA_TYPE)

    @classmethod
    def invalid_input(cls, error: str = "Invalid input data") -> "Result[T]":
        return cls(success=False, error=error, status_code=HTTPStatus.BAD_REQUEST)

    @classmethod
    def server_error(cls, error: str = "Internal server error") -> "Result[T]":
        return cls(success=False, error=error, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

    def is_success(self) -> bool:
        return self.success

    def is_failure(self) -> bool:
        return not self.success

    def to_dict(self) -> Dict[str, Any]:
        """
        Build the JSON envelope returned by every endpoint.

        Returns:
            Dict[str, Any]: success, status_code, status and either data or error
        """
        response = {
            "success": self.success,
            "status_code": self.status_code.value,
            "status": self.status_code.phrase
        }

        if self.is_success():
            response["data"] = _to_jsonable(self.data)
        else:
            response["error"] = self.error

        return response

    def __str__(self) -> str:
        status_info = f"{self.status_code.value} {self.status_code.phrase}"
        if self.is_success():
            data_repr = str(self.data)
            if len(data_repr) > 100:
                data_repr = f"{data_repr[:97]}..."
            return f"Success ({status_info}): {data_repr}"
        return f"Failure ({status_info}): {self.error}"

    def __repr__(self) -> str:
        return f"Result(success={self.success}, status_code={self.status_code!r}, data={self.data!r}, error={self.error!r})"
