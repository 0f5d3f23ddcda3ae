"""
Pydantic schemas for structured LLM output
"""
from typing import Optional

from pydantic import BaseModel, Field, StrictInt


class DigestSelection(BaseModel):
    """
    One element of the digest JSON array returned by the model.
    item_index points into the list of items that was sent in the prompt.
    """
    item_index: StrictInt = Field(..., ge=0)
    title: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    why_it_matters: Optional[str] = None
    category: str = Field(..., min_length=1)
    source_name: str = Field(..., min_length=1)
