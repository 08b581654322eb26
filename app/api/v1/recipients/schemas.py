from pydantic import BaseModel, Field


class CacheClearResponse(BaseModel):
    success: bool = True
    cleared: int = Field(..., description="Number of cache entries removed")
    client_id: str | None = None
