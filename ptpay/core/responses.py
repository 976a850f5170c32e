from typing import Any, Generic, TypeVar, Optional
from pydantic import BaseModel, Field

T = TypeVar("T")

class ResponseBase(BaseModel, Generic[T]):
    data: Optional[T] = None
    message: Optional[str] = None
    success: bool = True

class StandardResponse(ResponseBase[T]):
    pass

class BatchResponse(ResponseBase[T]):
    # Per-item failures and consistency warnings of a bulk run
    errors: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)
