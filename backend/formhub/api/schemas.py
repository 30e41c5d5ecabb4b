"""Field schemas shared by the form, field and field-template routes."""
import re
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from formhub.db.enums import FieldType

Option = Union[str, int, float, dict]


def _check_regex(value: Optional[str]) -> Optional[str]:
    if value in (None, ""):
        return None
    try:
        re.compile(value)
    except re.error as e:
        raise ValueError(f"Invalid regular expression: {e}")
    return value


class FieldCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    label: Optional[str] = Field(None, max_length=255)
    type: FieldType = FieldType.text
    required: bool = False
    options: List[Option] = []
    validation_regex: Optional[str] = Field(None, max_length=500)
    order_index: Optional[int] = None

    check_regex = field_validator("validation_regex")(_check_regex)


class FieldUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    label: Optional[str] = Field(None, max_length=255)
    type: Optional[FieldType] = None
    required: Optional[bool] = None
    options: Optional[List[Option]] = None
    validation_regex: Optional[str] = Field(None, max_length=500)
    order_index: Optional[int] = None

    check_regex = field_validator("validation_regex")(_check_regex)


class FieldResponse(BaseModel):
    id: int
    form_id: int
    name: str
    label: Optional[str]
    type: str
    required: bool
    options: list
    validation_regex: Optional[str]
    order_index: int

    class Config:
        from_attributes = True


class Page(BaseModel):
    items: list
    total: int
    page: int
    page_size: int
    pages: int
