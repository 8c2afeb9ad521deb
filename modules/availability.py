import logging
import threading
from collections import defaultdict
from contextlib import contextmanager

import config
from models.car_model import CarStatus
from models.rental_model import ACTIVE_RENTAL_STATUSES, RentalStatus
from time_utils import to_iso_utc, to_utc_instant
from utils import to_object_id

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_car_locks = defaultdict(threading.Lock)


@contextmanager
def car_lock(car_id):
    """Vùng găng theo từng xe: kiểm tra trùng lịch và ghi đơn phải nằm trong cùng một khóa."""
    with _locks_guard:
        lock = _car_locks[str(car_id)]
    with lock:
        yield


def find_overlapping_rentals(car_id, start, end, exclude_rental_id=None):
    """Các đơn còn hiệu lực của xe giao với khoảng [start, end)."""
    query = {
        "car_id": to_object_id(car_id),
        "status": {"$in": ACTIVE_RENTAL_STATUSES},
        "start_date": {"$lt": to_iso_utc(to_utc_instant(end))},
        "return_date": {"$gt": to_iso_utc(to_utc_instant(start))},
    }
    exclude_id = to_object_id(exclude_rental_id)
    if exclude_id:
        query["_id"] = {"$ne": exclude_id}
    return list(config.db.rentals.find(query))


def check_availability(car_id, start, end, exclude_rental_id=None):
    """Kiểm tra xe có trống trong khoảng thời gian đã cho hay không.

    ``start``/``end`` là thời điểm UTC (chuỗi giờ kinh doanh cũng được chấp
    nhận và được chuyển đổi trước). Nếu có đơn trùng nhưng xe đang được đánh
    dấu ``available`` (nhân viên đã trả xe thủ công), các đơn đó bị coi là đơn
    treo và được tự động chuyển sang ``returned``.
    """
    start = to_utc_instant(start)
    end = to_utc_instant(end)
    overlapping = find_overlapping_rentals(car_id, start, end, exclude_rental_id)
    if not overlapping:
        return {"available": True, "healed": []}

    car = config.db.cars.find_one({"_id": to_object_id(car_id)})
    if car and car.get("status") == CarStatus.AVAILABLE.value:
        stale_ids = [rental["_id"] for rental in overlapping]
        config.db.rentals.update_many(
            {"_id": {"$in": stale_ids}, "status": {"$in": ACTIVE_RENTAL_STATUSES}},
            {"$set": {"status": RentalStatus.RETURNED.value}}
        )
        logger.warning(f"Tự động đóng {len(stale_ids)} đơn treo của xe {car_id}: {stale_ids}")
        return {"available": True, "healed": stale_ids}

    logger.info(f"Xe {car_id} đã được đặt trong khoảng {to_iso_utc(start)} - {to_iso_utc(end)}")
    return {"available": False, "healed": []}
