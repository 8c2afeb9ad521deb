from enum import Enum
from pydantic import BaseModel, Field, field_validator


class CarStatus(str, Enum):
    AVAILABLE = "available"
    RENTED = "rented"
    RESERVED = "reserved"


class CarModel(BaseModel):
    model: str = Field(..., description="Mẫu xe, ví dụ Dacia Logan")
    plate_number: str = Field(..., description="Biển số xe (duy nhất)")
    status: CarStatus = CarStatus.AVAILABLE

    class Config:
        json_schema_extra = {
            "example": {
                "model": "Dacia Logan",
                "plate_number": "12345-A-6",
                "status": "available"
            }
        }

    @field_validator("model", "plate_number")
    def must_not_be_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Không được để trống")
        return v.strip()
