from pydantic import BaseModel, Field
from typing import List, Optional


class ItemCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    category: str
    condition: str
    location: str
    images: List[str] = Field(default_factory=list, max_length=5)
    features: List[str] = Field(default_factory=list)
    additional_info: Optional[str] = None


class ItemUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    category: Optional[str] = None
    condition: Optional[str] = None
    location: Optional[str] = None
    images: Optional[List[str]] = Field(None, max_length=5)
    features: Optional[List[str]] = None
    additional_info: Optional[str] = None
