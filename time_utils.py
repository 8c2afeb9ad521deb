"""Chuyển đổi giữa giờ kinh doanh (giờ địa phương cố định) và thời điểm UTC.

Mọi ngày giờ lưu trong MongoDB là thời điểm UTC dạng chuỗi ISO
``YYYY-MM-DDTHH:MM:SS.mmmZ``. Người dùng luôn nhập và xem theo múi giờ kinh
doanh, bất kể máy chủ chạy ở đâu.
"""
import datetime
import logging
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import config

logger = logging.getLogger(__name__)

INPUT_FORMAT = "%Y-%m-%dT%H:%M"
DISPLAY_FORMAT = "%d %b %Y %H:%M"

_WALL_CLOCK_FORMATS = ("%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%d")
LOCALTIME_PATH = "/etc/localtime"


def get_timezone():
    """Múi giờ hiệu lực: múi giờ kinh doanh, hoặc múi giờ máy khi bật USE_LOCAL_TIMEZONE."""
    if config.USE_LOCAL_TIMEZONE:
        return _local_timezone()
    return ZoneInfo(config.BUSINESS_TIMEZONE)


def _local_timezone():
    """Múi giờ IANA của máy (có giờ mùa hè), lấy từ biến TZ hoặc /etc/localtime."""
    name = os.environ.get("TZ", "").lstrip(":")
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Biến TZ không hợp lệ: {name!r}, dùng /etc/localtime")
    path = os.path.realpath(LOCALTIME_PATH)
    if "zoneinfo/" in path:
        return ZoneInfo(path.split("zoneinfo/", 1)[1])
    if os.path.exists(LOCALTIME_PATH):
        with open(LOCALTIME_PATH, "rb") as f:
            return ZoneInfo.from_file(f, key="localtime")
    return datetime.timezone.utc


def now():
    """Thời điểm hiện tại (UTC, có múi giờ)."""
    return datetime.datetime.now(datetime.timezone.utc)


def to_utc_instant(value):
    """Hiểu chuỗi giờ kinh doanh (không có offset) và trả về thời điểm UTC.

    Chuỗi rỗng hoặc None trả về None. Datetime có múi giờ được chuyển về UTC,
    datetime không có múi giờ được hiểu là giờ kinh doanh.
    """
    if not value:
        return None
    if isinstance(value, datetime.datetime):
        local = value
    elif isinstance(value, datetime.date):
        local = datetime.datetime.combine(value, datetime.time.min)
    else:
        local = _parse_wall_clock(value.strip())
    if local.tzinfo is None:
        local = local.replace(tzinfo=get_timezone())
    return local.astimezone(datetime.timezone.utc)


def _parse_wall_clock(text):
    for fmt in _WALL_CLOCK_FORMATS:
        try:
            return datetime.datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"Định dạng ngày giờ không hợp lệ: {text!r}")


def to_iso_utc(instant):
    """Dạng lưu trữ: ``2024-06-01T09:00:00.000Z``."""
    if instant is None:
        return None
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=datetime.timezone.utc)
    instant = instant.astimezone(datetime.timezone.utc)
    return instant.strftime("%Y-%m-%dT%H:%M:%S.") + f"{instant.microsecond // 1000:03d}Z"


def parse_iso_utc(value):
    """Đọc giá trị ngày giờ đã lưu (chuỗi ISO UTC hoặc datetime) thành thời điểm UTC."""
    if not value:
        return None
    if isinstance(value, datetime.datetime):
        instant = value
    else:
        instant = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    # pymongo trả về datetime không có múi giờ, ngầm hiểu là UTC
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=datetime.timezone.utc)
    return instant.astimezone(datetime.timezone.utc)


def to_business_time(instant):
    instant = parse_iso_utc(instant)
    if instant is None:
        return None
    return instant.astimezone(get_timezone())


def to_business_input_string(instant):
    """Chuỗi ``YYYY-MM-DDTHH:MM`` theo giờ kinh doanh, dùng cho ô nhập liệu."""
    local = to_business_time(instant)
    if local is None:
        return ""
    return local.strftime(INPUT_FORMAT)


def format_in_business_time(instant, fmt=DISPLAY_FORMAT):
    local = to_business_time(instant)
    if local is None:
        return ""
    return local.strftime(fmt)


def is_same_business_day(a, b):
    a_local = to_business_time(a)
    b_local = to_business_time(b)
    if a_local is None or b_local is None:
        return False
    return a_local.date() == b_local.date()


def is_starting_today(instant, current=None):
    return is_same_business_day(instant, current or now())


def is_starting_tomorrow(instant, current=None):
    local = to_business_time(instant)
    if local is None:
        return False
    today = to_business_time(current or now()).date()
    return local.date() == today + datetime.timedelta(days=1)


def is_overdue(instant, current=None):
    """So sánh thời điểm tuyệt đối: hạn trả đã qua so với hiện tại."""
    instant = parse_iso_utc(instant)
    if instant is None:
        return False
    return instant < (current or now())


def month_bounds(month, year):
    """Đầu tháng và đầu tháng sau (giờ kinh doanh), trả về dạng chuỗi ISO UTC."""
    month = int(month)
    year = int(year)
    next_month, next_year = month + 1, year
    if next_month > 12:
        next_month, next_year = 1, year + 1
    start = to_utc_instant(f"{year:04d}-{month:02d}-01T00:00")
    end = to_utc_instant(f"{next_year:04d}-{next_month:02d}-01T00:00")
    return to_iso_utc(start), to_iso_utc(end)


def utc_timestamp():
    """Dấu thời gian UTC không kèm múi giờ, giống giá trị pymongo đọc ra."""
    return now().replace(tzinfo=None)
