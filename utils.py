import re
import html
from bson import ObjectId

def sanitize_input(input_string):
    """Loại bỏ các ký tự đặc biệt và các thẻ HTML khỏi chuỗi đầu vào."""
    if not input_string:
        return ""
    # Xóa các thẻ HTML
    sanitized_string = re.sub('<[^<]+?>', '', input_string)
    # Chuyển đổi các ký tự đặc biệt thành các thực thể HTML tương ứng
    sanitized_string = html.escape(sanitized_string)
    return sanitized_string.strip()

def to_object_id(value):
    """Chuyển id sang ObjectId, trả về None nếu id không hợp lệ."""
    if isinstance(value, ObjectId):
        return value
    if value and ObjectId.is_valid(str(value)):
        return ObjectId(str(value))
    return None
