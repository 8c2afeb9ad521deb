import logging
import re

import pymongo
from pymongo.errors import DuplicateKeyError

import config
from models.car_model import CarModel, CarStatus
from models.rental_model import ACTIVE_RENTAL_STATUSES
from time_utils import parse_iso_utc, utc_timestamp
from utils import to_object_id

logger = logging.getLogger(__name__)


def ensure_car_indexes():
    # Index duy nhất cho biển số để không có xe trùng biển
    config.db.cars.create_index([("plate_number", pymongo.ASCENDING)], unique=True)


def create_car(model, plate_number):
    car = CarModel(model=model, plate_number=plate_number)
    if config.db.cars.find_one({"plate_number": car.plate_number}):
        return {"status": "conflict", "message": f"Xe với biển số {car.plate_number} đã tồn tại!"}
    try:
        car_id = config.db.cars.insert_one({
            "model": car.model,
            "plate_number": car.plate_number,
            "status": CarStatus.AVAILABLE.value,
            "created_at": utc_timestamp(),
        }).inserted_id
    except DuplicateKeyError:
        return {"status": "conflict", "message": f"Xe với biển số {car.plate_number} đã tồn tại!"}
    logger.info(f"Đã thêm xe {car.model} ({car.plate_number})")
    return {"status": "success", "car_id": car_id}


def update_car(car_id, model, plate_number):
    car_oid = to_object_id(car_id)
    car = CarModel(model=model, plate_number=plate_number)
    if not car_oid or not config.db.cars.find_one({"_id": car_oid}):
        return {"status": "not_found", "message": "Không tìm thấy xe"}
    # Kiểm tra nếu biển số xe đã tồn tại cho xe khác
    if config.db.cars.find_one({"plate_number": car.plate_number, "_id": {"$ne": car_oid}}):
        return {"status": "conflict", "message": f"Xe với biển số {car.plate_number} đã tồn tại!"}
    config.db.cars.update_one(
        {"_id": car_oid},
        {"$set": {"model": car.model, "plate_number": car.plate_number}}
    )
    return {"status": "success", "car_id": car_oid}


def set_car_status(car_id, status):
    """Nhân viên ghi đè trạng thái xe (ví dụ trả xe thủ công).

    Các đơn còn hiệu lực không bị thay đổi ở đây; nếu xe được đánh dấu
    ``available`` thì lần kiểm tra trùng lịch kế tiếp sẽ tự đóng các đơn treo.
    """
    try:
        status = CarStatus(status)
    except ValueError:
        return {"status": "invalid", "message": f"Trạng thái không hợp lệ: {status}"}
    car_oid = to_object_id(car_id)
    result = config.db.cars.update_one({"_id": car_oid}, {"$set": {"status": status.value}}) if car_oid else None
    if not result or result.matched_count == 0:
        return {"status": "not_found", "message": "Không tìm thấy xe"}
    logger.info(f"Trạng thái xe {car_oid} được đặt thủ công thành {status.value}")
    return {"status": "success", "car_id": car_oid}


def delete_car(car_id):
    car_oid = to_object_id(car_id)
    car = config.db.cars.find_one({"_id": car_oid}) if car_oid else None
    if not car:
        return {"status": "not_found", "message": "Không tìm thấy xe"}
    # Kiểm tra xem xe có đang được thuê không
    if config.db.rentals.find_one({"car_id": car_oid, "status": {"$in": ACTIVE_RENTAL_STATUSES}}):
        return {"status": "conflict", "message": "Không thể xóa xe đang được thuê hoặc đã được đặt."}
    config.db.cars.delete_one({"_id": car_oid})
    logger.info(f"Đã xóa xe {car['model']} ({car['plate_number']})")
    return {"status": "success", "car_id": car_oid}


def get_car(car_id):
    car_oid = to_object_id(car_id)
    return config.db.cars.find_one({"_id": car_oid}) if car_oid else None


def _current_rentals(car_ids):
    """Đơn còn hiệu lực mới nhất của mỗi xe."""
    current = {}
    rentals = config.db.rentals.find(
        {"car_id": {"$in": list(car_ids)}, "status": {"$in": ACTIVE_RENTAL_STATUSES}}
    ).sort("created_at", pymongo.DESCENDING)
    for rental in rentals:
        current.setdefault(rental["car_id"], rental)
    return current


def get_all_cars():
    cars = list(config.db.cars.find().sort("created_at", pymongo.DESCENDING))
    current = _current_rentals(car["_id"] for car in cars)
    for car in cars:
        car["current_rental"] = current.get(car["_id"])
    return cars


def get_available_cars():
    return [car for car in get_all_cars() if car["status"] == CarStatus.AVAILABLE.value]


def _total_rented_seconds(rentals):
    total = 0
    for rental in rentals:
        try:
            start = parse_iso_utc(rental.get("start_date"))
            end = parse_iso_utc(rental.get("return_date"))
        except ValueError:
            continue
        if start and end and end > start:
            total += (end - start).total_seconds()
    return total


def get_cars(page=1, limit=20, search=""):
    """Danh sách xe có phân trang, kèm đơn hiện tại và tổng thời gian đã cho thuê."""
    page = max(int(page), 1)
    limit = max(int(limit), 1)
    query = {}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"model": {"$regex": pattern, "$options": "i"}},
            {"plate_number": {"$regex": pattern, "$options": "i"}},
        ]
    total = config.db.cars.count_documents(query)
    cars = list(
        config.db.cars.find(query)
        .sort("created_at", pymongo.DESCENDING)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    car_ids = [car["_id"] for car in cars]
    current = _current_rentals(car_ids)
    history = {}
    for rental in config.db.rentals.find({"car_id": {"$in": car_ids}}):
        history.setdefault(rental["car_id"], []).append(rental)
    for car in cars:
        car["current_rental"] = current.get(car["_id"])
        car["total_rented_seconds"] = _total_rented_seconds(history.get(car["_id"], []))
    return {"cars": cars, "total": total, "page": page, "limit": limit}


def get_car_stats():
    cars = config.db.cars
    return {
        "total": cars.count_documents({}),
        "available": cars.count_documents({"status": CarStatus.AVAILABLE.value}),
        "rented": cars.count_documents({"status": CarStatus.RENTED.value}),
        "reserved": cars.count_documents({"status": CarStatus.RESERVED.value}),
    }
