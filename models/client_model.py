from pydantic import BaseModel, field_validator
from typing import Optional


class ClientModel(BaseModel):
    full_name: str
    passport_id: Optional[str] = ""
    driving_license: Optional[str] = ""
    address: Optional[str] = ""
    id_number: Optional[str] = ""
    date_of_birth: Optional[str] = ""
    license_expiry_date: Optional[str] = ""
    passport_expiry_date: Optional[str] = ""
    passport_image: Optional[str] = None
    license_image: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "full_name": "Nguyen Van A",
                "passport_id": "AB123456",
                "driving_license": "DL-998877",
                "address": "123 Nguyen Van Linh, Q7, TP.HCM",
                "passport_image": "uploads/passport_front.jpg,uploads/passport_back.jpg",
                "license_image": None
            }
        }

    @field_validator("full_name")
    def name_must_not_be_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Họ tên không được để trống")
        return v.strip()

    @field_validator("passport_id", "driving_license", "address", "id_number",
                     "date_of_birth", "license_expiry_date", "passport_expiry_date", mode="before")
    def empty_string_default(cls, v):
        return v or ""

    @field_validator("passport_image", "license_image", mode="before")
    def empty_image_is_none(cls, v):
        return v or None
