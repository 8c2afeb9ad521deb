import logging
import re

from pymongo.errors import PyMongoError

import config
from models.car_model import CarStatus
from models.rental_model import ACTIVE_RENTAL_STATUSES, RentalForm, RentalStatus
from modules.availability import car_lock, check_availability
from time_utils import month_bounds, now as utc_now, to_iso_utc, utc_timestamp
from utils import to_object_id

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "This car is already reserved for the selected time."

# Chuyển trạng thái hợp lệ: chỉ đi tới, "returned" là trạng thái cuối
ALLOWED_TRANSITIONS = {
    RentalStatus.RESERVED: {RentalStatus.RENTED, RentalStatus.RETURNED},
    RentalStatus.RENTED: {RentalStatus.RETURNED},
    RentalStatus.RETURNED: set(),
}

# Ghép thông tin xe và khách hàng vào đơn thuê
_JOIN_STAGES = [
    {"$lookup": {"from": "cars", "localField": "car_id", "foreignField": "_id", "as": "car"}},
    {"$lookup": {"from": "clients", "localField": "client_id", "foreignField": "_id", "as": "client"}},
    {"$unwind": "$car"},
    {"$unwind": "$client"},
]

_LIST_PROJECTION = {
    "_id": 1,
    "car_id": 1,
    "client_id": 1,
    "start_date": 1,
    "return_date": 1,
    "rental_price": 1,
    "status": 1,
    "created_at": 1,
    "car_model": "$car.model",
    "plate_number": "$car.plate_number",
    "client_name": "$client.full_name",
}


def _not_found(message):
    return {"status": "not_found", "message": message}


def recompute_car_status(car_id):
    """Tính lại trạng thái xe từ các đơn còn hiệu lực của xe."""
    car_oid = to_object_id(car_id)
    statuses = {
        rental["status"]
        for rental in config.db.rentals.find(
            {"car_id": car_oid, "status": {"$in": ACTIVE_RENTAL_STATUSES}}, {"status": 1}
        )
    }
    if RentalStatus.RENTED.value in statuses:
        car_status = CarStatus.RENTED
    elif RentalStatus.RESERVED.value in statuses:
        car_status = CarStatus.RESERVED
    else:
        car_status = CarStatus.AVAILABLE
    config.db.cars.update_one({"_id": car_oid}, {"$set": {"status": car_status.value}})
    return car_status


def create_rental(car_id, client_id, start_date, return_date, rental_price=0.0, status=RentalStatus.RESERVED):
    """Tạo đơn thuê mới sau khi kiểm tra trùng lịch.

    Ngày giờ có thể là chuỗi giờ kinh doanh hoặc thời điểm có múi giờ; dữ liệu
    sai định dạng hoặc khoảng thời gian ngược sẽ gây ``pydantic.ValidationError``.
    """
    form = RentalForm(
        car_id=car_id,
        client_id=client_id,
        start_date=start_date,
        return_date=return_date,
        rental_price=rental_price,
        status=status,
    )
    if form.status == RentalStatus.RETURNED:
        return {"status": "invalid", "message": "Đơn mới chỉ có thể ở trạng thái reserved hoặc rented"}

    car_oid = to_object_id(form.car_id)
    client_oid = to_object_id(form.client_id)
    if not car_oid or not config.db.cars.find_one({"_id": car_oid}):
        return _not_found("Không tìm thấy xe")
    if not client_oid or not config.db.clients.find_one({"_id": client_oid}):
        return _not_found("Không tìm thấy khách hàng")

    with car_lock(car_oid):
        availability = check_availability(car_oid, form.start_date, form.return_date)
        if not availability["available"]:
            return {"status": "conflict", "message": CONFLICT_MESSAGE}

        rental_id = config.db.rentals.insert_one({
            "car_id": car_oid,
            "client_id": client_oid,
            "start_date": to_iso_utc(form.start_date),
            "return_date": to_iso_utc(form.return_date),
            "rental_price": form.rental_price,
            "status": form.status.value,
            "created_at": utc_timestamp(),
        }).inserted_id

        if form.status == RentalStatus.RENTED:
            config.db.cars.update_one({"_id": car_oid}, {"$set": {"status": CarStatus.RENTED.value}})
        else:
            # Không hạ trạng thái của xe đang được thuê
            config.db.cars.update_one(
                {"_id": car_oid, "status": {"$ne": CarStatus.RENTED.value}},
                {"$set": {"status": CarStatus.RESERVED.value}}
            )

    logger.info(f"Đã tạo đơn thuê {rental_id} cho xe {car_oid} ({form.status.value})")
    return {"status": "success", "rental_id": rental_id}


def update_rental_status(rental_id, new_status):
    try:
        new_status = RentalStatus(new_status)
    except ValueError:
        return {"status": "invalid", "message": f"Trạng thái không hợp lệ: {new_status}"}

    rental_oid = to_object_id(rental_id)
    rental = config.db.rentals.find_one({"_id": rental_oid}) if rental_oid else None
    if not rental:
        logger.warning(f"Không tìm thấy đơn thuê {rental_id} để cập nhật trạng thái")
        return _not_found("Không tìm thấy đơn thuê")

    current = RentalStatus(rental["status"])
    if new_status == current:
        return {"status": "success", "rental_id": rental_oid}
    if new_status not in ALLOWED_TRANSITIONS[current]:
        return {"status": "invalid", "message": f"Không thể chuyển từ {current.value} sang {new_status.value}"}

    with car_lock(rental["car_id"]):
        # Chỉ ghi khi đơn vẫn ở trạng thái đã kiểm tra; quét quá hạn có thể đã đóng đơn
        result = config.db.rentals.update_one(
            {"_id": rental_oid, "car_id": rental["car_id"], "status": current.value},
            {"$set": {"status": new_status.value}}
        )
        if result.matched_count == 0:
            latest = config.db.rentals.find_one({"_id": rental_oid})
            if not latest:
                return _not_found("Không tìm thấy đơn thuê")
            logger.warning(f"Đơn thuê {rental_oid} đã đổi sang {latest['status']} trước khi cập nhật")
            return {"status": "invalid", "message": f"Đơn thuê đã chuyển sang trạng thái {latest['status']}"}
        car_status = recompute_car_status(rental["car_id"])

    logger.info(f"Đơn thuê {rental_oid}: {current.value} -> {new_status.value}, xe {rental['car_id']} -> {car_status.value}")
    return {"status": "success", "rental_id": rental_oid}


def update_rental(rental_id, car_id, client_id, start_date, return_date, rental_price=0.0):
    """Sửa xe, khách hàng, thời gian hoặc giá của đơn; trạng thái đơn giữ nguyên."""
    form = RentalForm(
        car_id=car_id,
        client_id=client_id,
        start_date=start_date,
        return_date=return_date,
        rental_price=rental_price,
    )
    rental_oid = to_object_id(rental_id)
    rental = config.db.rentals.find_one({"_id": rental_oid}) if rental_oid else None
    if not rental:
        return _not_found("Không tìm thấy đơn thuê")

    car_oid = to_object_id(form.car_id)
    client_oid = to_object_id(form.client_id)
    if not car_oid or not config.db.cars.find_one({"_id": car_oid}):
        return _not_found("Không tìm thấy xe")
    if not client_oid or not config.db.clients.find_one({"_id": client_oid}):
        return _not_found("Không tìm thấy khách hàng")

    is_active = rental["status"] in ACTIVE_RENTAL_STATUSES
    with car_lock(car_oid):
        if is_active:
            availability = check_availability(car_oid, form.start_date, form.return_date, exclude_rental_id=rental_oid)
            if not availability["available"]:
                return {"status": "conflict", "message": CONFLICT_MESSAGE}

        result = config.db.rentals.update_one(
            {"_id": rental_oid, "status": rental["status"]},
            {"$set": {
                "car_id": car_oid,
                "client_id": client_oid,
                "start_date": to_iso_utc(form.start_date),
                "return_date": to_iso_utc(form.return_date),
                "rental_price": form.rental_price,
            }}
        )
        if result.matched_count == 0:
            return {"status": "invalid", "message": "Đơn thuê vừa đổi trạng thái, vui lòng tải lại"}
        if is_active:
            recompute_car_status(car_oid)

    if is_active and rental["car_id"] != car_oid:
        with car_lock(rental["car_id"]):
            recompute_car_status(rental["car_id"])

    logger.info(f"Đã cập nhật đơn thuê {rental_oid}")
    return {"status": "success", "rental_id": rental_oid}


def delete_rental(rental_id):
    rental_oid = to_object_id(rental_id)
    rental = config.db.rentals.find_one({"_id": rental_oid}) if rental_oid else None
    if not rental:
        return _not_found("Không tìm thấy đơn thuê")

    with car_lock(rental["car_id"]):
        config.db.rentals.delete_one({"_id": rental_oid})
        # Xóa đơn đã trả xe chỉ là dọn lịch sử, không đổi trạng thái xe
        if rental["status"] != RentalStatus.RETURNED.value:
            recompute_car_status(rental["car_id"])

    logger.info(f"Đã xóa đơn thuê {rental_oid}")
    return {"status": "success", "rental_id": rental_oid}


def sweep_expired_rentals(now=None):
    """Đóng các đơn còn hiệu lực đã quá hạn trả và giải phóng xe tương ứng.

    Gọi lại nhiều lần cho cùng kết quả. Trả về số đơn đã được đóng.
    """
    now_iso = to_iso_utc(now or utc_now())
    expired_filter = {"status": {"$in": ACTIVE_RENTAL_STATUSES}, "return_date": {"$lt": now_iso}}
    car_ids = {rental["car_id"] for rental in config.db.rentals.find(expired_filter, {"car_id": 1})}

    closed = 0
    freed_cars = 0
    for car_id in car_ids:
        with car_lock(car_id):
            # Lọc lại trong khóa: đơn vừa được gia hạn hoặc đổi trạng thái thì bỏ qua
            result = config.db.rentals.update_many(
                dict(expired_filter, car_id=car_id),
                {"$set": {"status": RentalStatus.RETURNED.value}}
            )
            if result.modified_count:
                closed += result.modified_count
                freed_cars += 1
                recompute_car_status(car_id)

    if closed:
        logger.info(f"Đã đóng {closed} đơn thuê quá hạn, cập nhật {freed_cars} xe")
    return closed


def safe_sweep(now=None):
    """Chạy quét đơn quá hạn trên luồng đọc; lỗi cơ sở dữ liệu chỉ được ghi log."""
    try:
        return sweep_expired_rentals(now)
    except PyMongoError as e:
        logger.error(f"Lỗi khi quét đơn thuê quá hạn: {e}")
        return 0


def get_rental(rental_id):
    """Đơn thuê kèm thông tin xe và khách hàng (dùng cho hợp đồng)."""
    rental_oid = to_object_id(rental_id)
    if not rental_oid:
        return None
    projection = dict(_LIST_PROJECTION)
    projection.update({
        "passport_id": "$client.passport_id",
        "driving_license": "$client.driving_license",
        "client_address": "$client.address",
        "client_id_number": "$client.id_number",
        "client_date_of_birth": "$client.date_of_birth",
        "client_license_expiry": "$client.license_expiry_date",
        "client_passport_expiry": "$client.passport_expiry_date",
    })
    pipeline = [{"$match": {"_id": rental_oid}}] + _JOIN_STAGES + [{"$project": projection}]
    return next(config.db.rentals.aggregate(pipeline), None)


def _month_filter(field, month, year):
    if not (month and year):
        return {}
    start, end = month_bounds(month, year)
    return {field: {"$gte": start, "$lt": end}}


def _list_pipeline(search="", month=None, year=None):
    pipeline = []
    month_filter = _month_filter("start_date", month, year)
    if month_filter:
        pipeline.append({"$match": month_filter})
    pipeline += _JOIN_STAGES + [{"$project": _LIST_PROJECTION}]
    if search:
        pattern = re.escape(search)
        pipeline.append({"$match": {"$or": [
            {"car_model": {"$regex": pattern, "$options": "i"}},
            {"plate_number": {"$regex": pattern, "$options": "i"}},
            {"client_name": {"$regex": pattern, "$options": "i"}},
        ]}})
    return pipeline


def get_all_rentals(month=None, year=None):
    pipeline = _list_pipeline(month=month, year=year)
    return list(config.db.rentals.aggregate(pipeline + [{"$sort": {"start_date": -1}}]))


def get_rentals(page=1, limit=20, search="", month=None, year=None):
    """Danh sách đơn thuê có phân trang, mới nhất trước."""
    page = max(int(page), 1)
    limit = max(int(limit), 1)
    pipeline = _list_pipeline(search, month, year)
    total = next(config.db.rentals.aggregate(pipeline + [{"$count": "total"}]), {}).get("total", 0)
    rentals = list(config.db.rentals.aggregate(pipeline + [
        {"$sort": {"start_date": -1}},
        {"$skip": (page - 1) * limit},
        {"$limit": limit},
    ]))
    return {"rentals": rentals, "total": total, "page": page, "limit": limit}


def get_total_revenue(month=None, year=None):
    result = config.db.rentals.aggregate([
        {"$match": _month_filter("start_date", month, year)},
        {"$group": {"_id": None, "total": {"$sum": "$rental_price"}}},
    ])
    return next(result, {}).get("total", 0)
