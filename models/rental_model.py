from enum import Enum
from pydantic import BaseModel, Field, field_validator, model_validator
import datetime

from time_utils import to_utc_instant


class RentalStatus(str, Enum):
    RESERVED = "reserved"
    RENTED = "rented"
    RETURNED = "returned"


# Các đơn còn hiệu lực, được tính khi kiểm tra trùng lịch
ACTIVE_RENTAL_STATUSES = [RentalStatus.RESERVED.value, RentalStatus.RENTED.value]


class RentalForm(BaseModel):
    """Dữ liệu đơn thuê từ giao diện.

    Ngày giờ nhập theo giờ kinh doanh (``YYYY-MM-DDTHH:MM``) và được chuyển
    thành thời điểm UTC ngay khi kiểm tra dữ liệu.
    """
    car_id: str
    client_id: str
    start_date: datetime.datetime
    return_date: datetime.datetime
    rental_price: float = Field(0.0, ge=0)
    status: RentalStatus = RentalStatus.RESERVED

    class Config:
        json_schema_extra = {
            "example": {
                "car_id": "60c74d3f1f4e4b2a1b8e12fa",
                "client_id": "60c74d3f1f4e4b2a1b8e12f9",
                "start_date": "2024-06-01T10:00",
                "return_date": "2024-06-03T10:00",
                "rental_price": 900.0,
                "status": "reserved"
            }
        }

    @field_validator("car_id", "client_id", mode="before")
    def id_must_be_present(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("Thiếu thông tin bắt buộc")
        return str(v).strip()

    @field_validator("start_date", "return_date", mode="before")
    def normalize_to_utc(cls, v):
        instant = to_utc_instant(v)
        if instant is None:
            raise ValueError("Thiếu ngày giờ")
        return instant

    @field_validator("rental_price", mode="before")
    def default_price(cls, v):
        if v is None or v == "":
            return 0.0
        return v

    @model_validator(mode="after")
    def return_after_start(self):
        if self.start_date >= self.return_date:
            raise ValueError("Ngày trả xe phải sau ngày bắt đầu")
        return self
