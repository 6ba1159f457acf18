from __future__ import annotations

from fastapi import HTTPException, status


class QueryBridgeError(HTTPException):
    code: str = "QB_ERROR"

    def __init__(self, status_code: int, detail: str, code: str | None = None):
        super().__init__(status_code=status_code, detail={"message": detail, "code": code or self.code})
        self.message = detail
        self.code = code or self.code

    def __str__(self) -> str:
        return self.message


class ConfigurationError(QueryBridgeError):
    """A dataset or connection is missing something it needs. Never retried."""

    code = "QB_CONFIGURATION_ERROR"

    def __init__(self, detail: str = "Invalid configuration"):
        super().__init__(status.HTTP_422_UNPROCESSABLE_ENTITY, detail, self.code)


class ConnectivityError(QueryBridgeError):
    """The source could not be reached or refused our credentials."""

    code = "QB_CONNECTIVITY_ERROR"

    def __init__(self, detail: str = "Could not connect to data source"):
        super().__init__(status.HTTP_502_BAD_GATEWAY, detail, self.code)


class ExecutionError(QueryBridgeError):
    code = "QB_EXECUTION_ERROR"

    def __init__(self, detail: str = "Query execution failed"):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail, self.code)


class UnsupportedSourceError(QueryBridgeError):
    code = "QB_UNSUPPORTED_SOURCE"

    def __init__(self, detail: str = "Unsupported data source"):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail, self.code)
