from pydantic import BaseModel, Field
from typing import Optional

class ResourceBase(BaseModel):
    name: str
    capacity: int = Field(1, gt=0)
    description: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True

class ResourceCreate(ResourceBase):
    pass

class ResourceUpdate(BaseModel):
    name: Optional[str] = None
    capacity: Optional[int] = Field(None, gt=0)
    description: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    is_active: Optional[bool] = None

class ResourceResponse(ResourceBase):
    id: int

    class Config:
        from_attributes = True
