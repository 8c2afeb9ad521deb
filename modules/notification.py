import logging

import config
from models.rental_model import ACTIVE_RENTAL_STATUSES, RentalStatus
from time_utils import is_overdue, is_same_business_day, is_starting_today, is_starting_tomorrow, now as utc_now

logger = logging.getLogger(__name__)

START_TODAY = "start_today"
START_TOMORROW = "start_tomorrow"
RETURN_TODAY = "return_today"
OVERDUE = "overdue"

SEVERITY = {
    START_TODAY: "warning",
    START_TOMORROW: "info",
    RETURN_TODAY: "warning",
    OVERDUE: "danger",
}


def _snapshot(rental):
    car = rental.get("car") or {}
    client = rental.get("client") or {}
    return {
        "id": rental.get("_id"),
        "car_id": rental.get("car_id"),
        "client_id": rental.get("client_id"),
        "model": car.get("model"),
        "plate_number": car.get("plate_number"),
        "full_name": client.get("full_name"),
        "start_date": rental.get("start_date"),
        "return_date": rental.get("return_date"),
        "rental_price": rental.get("rental_price"),
        "status": rental.get("status"),
    }


def _notification(kind, rental):
    return {"type": kind, "severity": SEVERITY[kind], "rental": _snapshot(rental)}


def derive_notifications(active_rentals, now=None):
    """Phân loại các đơn còn hiệu lực thành thông báo theo thời gian.

    Mỗi đơn có thể sinh 0, 1 hoặc 2 thông báo (``return_today`` và ``overdue``
    được xét độc lập với nhau).
    """
    now = now or utc_now()
    notifications = []
    for rental in active_rentals:
        status = rental.get("status")
        if status == RentalStatus.RESERVED.value:
            if is_starting_today(rental.get("start_date"), now):
                notifications.append(_notification(START_TODAY, rental))
            elif is_starting_tomorrow(rental.get("start_date"), now):
                notifications.append(_notification(START_TOMORROW, rental))

        if status == RentalStatus.RENTED.value:
            if is_same_business_day(rental.get("return_date"), now):
                notifications.append(_notification(RETURN_TODAY, rental))
            if is_overdue(rental.get("return_date"), now):
                notifications.append(_notification(OVERDUE, rental))
    return notifications


def get_notifications(now=None):
    # Không truy vấn "hôm nay" trực tiếp trong MongoDB vì ngày lưu theo UTC
    active_rentals = config.db.rentals.aggregate([
        {"$match": {"status": {"$in": ACTIVE_RENTAL_STATUSES}}},
        {"$lookup": {"from": "cars", "localField": "car_id", "foreignField": "_id", "as": "car"}},
        {"$lookup": {"from": "clients", "localField": "client_id", "foreignField": "_id", "as": "client"}},
        {"$unwind": "$car"},
        {"$unwind": "$client"},
    ])
    notifications = derive_notifications(active_rentals, now)
    logger.info(f"Đã tạo {len(notifications)} thông báo")
    return notifications
