from pydantic import BaseModel, field_validator


class UserModel(BaseModel):
    username: str
    password: str

    class Config:
        json_schema_extra = {
            "example": {
                "username": "admin",
                "password": "strong_password"
            }
        }

    @field_validator("username")
    def username_must_not_be_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Tên đăng nhập không được để trống")
        return v.strip()

    @field_validator("password")
    def password_min_length(cls, v):
        if len(v) < 8:
            raise ValueError("Mật khẩu phải có ít nhất 8 ký tự")
        return v
