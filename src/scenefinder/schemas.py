from typing import Any, Dict, Optional

from pydantic import BaseModel, StrictStr


class AnalyzeLinkRequest(BaseModel):
    url: Optional[StrictStr] = None


class AnalyzeLinkResponse(BaseModel):
    success: bool = True
    # Shape is set by the prompt, not enforced here
    data: Dict[str, Any]


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    message: str
