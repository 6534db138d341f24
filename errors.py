from typing import Any, Dict, Optional


class ApiError(Exception):
    """Error rendered as {"error": ..., "details": ...} with the given status."""

    def __init__(self, status_code: int, error: str, details: Any = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details
        self.headers = headers

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body

    def __str__(self):
        if isinstance(self.details, str) and self.details:
            return self.details
        return self.error
