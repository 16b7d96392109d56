from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
    request_id: str | None = None
    context: dict[str, Any] | None = None
