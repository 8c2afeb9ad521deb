from pydantic import BaseModel, Field, field_validator
from typing import Optional
import datetime

from time_utils import to_utc_instant


class ExpenseModel(BaseModel):
    category: str
    amount: float = Field(..., gt=0)
    expense_date: datetime.datetime
    car_id: Optional[str] = None
    description: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "category": "maintenance",
                "amount": 350.0,
                "expense_date": "2024-06-05T09:30",
                "car_id": "60c74d3f1f4e4b2a1b8e12fa",
                "description": "Thay dầu"
            }
        }

    @field_validator("category")
    def category_must_not_be_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Thiếu loại chi phí")
        return v.strip()

    @field_validator("expense_date", mode="before")
    def normalize_to_utc(cls, v):
        instant = to_utc_instant(v)
        if instant is None:
            raise ValueError("Thiếu ngày chi")
        return instant

    @field_validator("car_id", "description", mode="before")
    def empty_is_none(cls, v):
        return str(v) if v else None
