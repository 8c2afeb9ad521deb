import datetime
import threading
import time
from contextlib import contextmanager

import pytest
from bson import ObjectId
from pydantic import ValidationError

import modules.rental as rental_module
from modules.car import set_car_status
from modules.rental import (CONFLICT_MESSAGE, create_rental, delete_rental, get_all_rentals, get_rental,
                            get_rentals, get_total_revenue, safe_sweep, sweep_expired_rentals,
                            update_rental, update_rental_status)

NOW = datetime.datetime(2024, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)


def car_status(db, car_id):
    return db.cars.find_one({"_id": car_id})["status"]


def rental_status(db, rental_id):
    return db.rentals.find_one({"_id": rental_id})["status"]


# Đặt xe trống: xe chuyển sang reserved, ngày lưu theo UTC
def test_create_rental_reserves_car(db, car_id, client_id):
    result = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00", 900)

    assert result["status"] == "success"
    rental = db.rentals.find_one({"_id": result["rental_id"]})
    assert rental["start_date"] == "2024-06-01T09:00:00.000Z"
    assert rental["return_date"] == "2024-06-03T09:00:00.000Z"
    assert rental["status"] == "reserved"
    assert rental["rental_price"] == 900
    assert car_status(db, car_id) == "reserved"


# Đặt trùng lịch: báo xung đột, trạng thái xe giữ nguyên
def test_create_rental_conflict(db, car_id, client_id):
    create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")

    result = create_rental(car_id, client_id, "2024-06-02T00:00", "2024-06-02T12:00")
    assert result == {"status": "conflict", "message": CONFLICT_MESSAGE}
    assert car_status(db, car_id) == "reserved"
    assert db.rentals.count_documents({}) == 1


# Nhân viên trả xe thủ công, lần đặt kế tiếp tự đóng đơn treo
def test_create_rental_after_manual_override_heals_stale_rental(db, car_id, client_id):
    first_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["rental_id"]
    set_car_status(car_id, "available")

    result = create_rental(car_id, client_id, "2024-06-02T00:00", "2024-06-02T12:00")
    assert result["status"] == "success"
    assert rental_status(db, first_id) == "returned"
    assert rental_status(db, result["rental_id"]) == "reserved"
    assert car_status(db, car_id) == "reserved"


def test_create_rented_rental_marks_car_rented(db, car_id, client_id):
    create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00", status="rented")
    assert car_status(db, car_id) == "rented"

    # Đặt trước cho lần sau không hạ trạng thái xe đang cho thuê
    create_rental(car_id, client_id, "2024-06-10T10:00", "2024-06-12T10:00")
    assert car_status(db, car_id) == "rented"


def test_create_rental_rejects_returned_status(db, car_id, client_id):
    result = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00", status="returned")
    assert result["status"] == "invalid"
    assert db.rentals.count_documents({}) == 0


@pytest.mark.parametrize("start, end", [
    ("2024-06-03T10:00", "2024-06-01T10:00"),
    ("2024-06-01T10:00", "2024-06-01T10:00"),
    ("", "2024-06-01T10:00"),
    ("2024-06-01T10:00", "not a date"),
])
def test_create_rental_invalid_interval(db, car_id, client_id, start, end):
    with pytest.raises(ValidationError):
        create_rental(car_id, client_id, start, end)
    assert db.rentals.count_documents({}) == 0


def test_create_rental_requires_car_and_client(car_id):
    with pytest.raises(ValidationError):
        create_rental(car_id, "", "2024-06-01T10:00", "2024-06-03T10:00")
    with pytest.raises(ValidationError):
        create_rental(None, str(ObjectId()), "2024-06-01T10:00", "2024-06-03T10:00")


def test_create_rental_unknown_car_or_client(car_id, client_id):
    assert create_rental(ObjectId(), client_id, "2024-06-01T10:00", "2024-06-03T10:00")["status"] == "not_found"
    assert create_rental(car_id, ObjectId(), "2024-06-01T10:00", "2024-06-03T10:00")["status"] == "not_found"


def test_status_transitions_update_car(db, car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["rental_id"]

    assert update_rental_status(rental_id, "rented")["status"] == "success"
    assert rental_status(db, rental_id) == "rented"
    assert car_status(db, car_id) == "rented"

    assert update_rental_status(rental_id, "returned")["status"] == "success"
    assert rental_status(db, rental_id) == "returned"
    assert car_status(db, car_id) == "available"


def test_returning_rented_rental_keeps_other_reservation(db, car_id, client_id):
    rented_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00", status="rented")["rental_id"]
    create_rental(car_id, client_id, "2024-06-10T10:00", "2024-06-12T10:00")

    update_rental_status(rented_id, "returned")
    assert car_status(db, car_id) == "reserved"


def test_returned_is_terminal(db, car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["rental_id"]
    update_rental_status(rental_id, "returned")

    for status in ("reserved", "rented"):
        assert update_rental_status(rental_id, status)["status"] == "invalid"
        assert rental_status(db, rental_id) == "returned"


def test_rented_cannot_go_back_to_reserved(db, car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00", status="rented")["rental_id"]
    assert update_rental_status(rental_id, "reserved")["status"] == "invalid"
    assert rental_status(db, rental_id) == "rented"


def test_same_status_is_noop(db, car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["rental_id"]
    assert update_rental_status(rental_id, "reserved")["status"] == "success"
    assert car_status(db, car_id) == "reserved"


def test_update_status_unknown_rental_or_status(car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["rental_id"]
    assert update_rental_status(ObjectId(), "rented")["status"] == "not_found"
    assert update_rental_status("abc", "rented")["status"] == "not_found"
    assert update_rental_status(rental_id, "lost")["status"] == "invalid"


def test_update_rental_interval(db, car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["rental_id"]

    # Đơn được phép chồng lên khoảng thời gian cũ của chính nó
    result = update_rental(rental_id, car_id, client_id, "2024-06-02T10:00", "2024-06-04T10:00", 1200)
    assert result["status"] == "success"
    rental = db.rentals.find_one({"_id": rental_id})
    assert rental["start_date"] == "2024-06-02T09:00:00.000Z"
    assert rental["return_date"] == "2024-06-04T09:00:00.000Z"
    assert rental["rental_price"] == 1200
    assert rental["status"] == "reserved"


def test_update_rental_conflict(db, car_id, client_id):
    create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")
    rental_id = create_rental(car_id, client_id, "2024-06-05T10:00", "2024-06-07T10:00")["rental_id"]

    result = update_rental(rental_id, car_id, client_id, "2024-06-02T10:00", "2024-06-06T10:00")
    assert result["status"] == "conflict"
    assert db.rentals.find_one({"_id": rental_id})["start_date"] == "2024-06-05T09:00:00.000Z"


def test_update_rental_moves_car(db, car_id, other_car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["rental_id"]

    result = update_rental(rental_id, other_car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")
    assert result["status"] == "success"
    assert car_status(db, car_id) == "available"
    assert car_status(db, other_car_id) == "reserved"


def test_update_returned_rental_skips_overlap_check(db, car_id, client_id):
    old_id = create_rental(car_id, client_id, "2024-05-01T10:00", "2024-05-03T10:00")["rental_id"]
    update_rental_status(old_id, "returned")
    create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")

    result = update_rental(old_id, car_id, client_id, "2024-06-01T10:00", "2024-06-02T10:00", 500)
    assert result["status"] == "success"
    assert rental_status(db, old_id) == "returned"
    assert car_status(db, car_id) == "reserved"


def test_update_rental_validation(car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["rental_id"]
    with pytest.raises(ValidationError):
        update_rental(rental_id, car_id, client_id, "2024-06-03T10:00", "2024-06-01T10:00")
    assert update_rental(ObjectId(), car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["status"] == "not_found"


def test_delete_active_rental_frees_car(db, car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00", status="rented")["rental_id"]

    assert delete_rental(rental_id)["status"] == "success"
    assert db.rentals.find_one({"_id": rental_id}) is None
    assert car_status(db, car_id) == "available"


def test_delete_returned_rental_keeps_car_status(db, car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-05-01T10:00", "2024-05-03T10:00")["rental_id"]
    update_rental_status(rental_id, "returned")
    set_car_status(car_id, "rented")

    assert delete_rental(rental_id)["status"] == "success"
    assert car_status(db, car_id) == "rented"


def test_delete_unknown_rental():
    assert delete_rental(ObjectId())["status"] == "not_found"
    assert delete_rental("abc")["status"] == "not_found"


# Đơn đang thuê quá hạn trả: quét xong thì đơn đóng, xe trống
def test_sweep_closes_expired_rentals(db, car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-05-28T10:00", "2024-05-30T10:00", status="rented")["rental_id"]

    assert sweep_expired_rentals(NOW) == 1
    assert rental_status(db, rental_id) == "returned"
    assert car_status(db, car_id) == "available"


def test_sweep_is_idempotent(db, car_id, other_car_id, client_id):
    expired_id = create_rental(car_id, client_id, "2024-05-28T10:00", "2024-05-30T10:00")["rental_id"]
    current_id = create_rental(other_car_id, client_id, "2024-05-31T10:00", "2024-06-02T10:00", status="rented")["rental_id"]

    assert sweep_expired_rentals(NOW) == 1
    snapshot = list(db.rentals.find().sort("_id", 1)), list(db.cars.find().sort("_id", 1))

    assert sweep_expired_rentals(NOW) == 0
    assert (list(db.rentals.find().sort("_id", 1)), list(db.cars.find().sort("_id", 1))) == snapshot
    assert rental_status(db, expired_id) == "returned"
    assert rental_status(db, current_id) == "rented"
    assert car_status(db, car_id) == "available"
    assert car_status(db, other_car_id) == "rented"


def test_sweep_keeps_car_with_later_booking(db, car_id, client_id):
    create_rental(car_id, client_id, "2024-05-28T10:00", "2024-05-30T10:00", status="rented")
    create_rental(car_id, client_id, "2024-06-10T10:00", "2024-06-12T10:00")

    sweep_expired_rentals(NOW)
    assert car_status(db, car_id) == "reserved"


def test_safe_sweep_logs_database_errors(monkeypatch):
    from pymongo.errors import PyMongoError

    def failing_sweep(now=None):
        raise PyMongoError("mất kết nối")

    monkeypatch.setattr("modules.rental.sweep_expired_rentals", failing_sweep)
    assert safe_sweep(NOW) == 0


def test_no_double_booking(db, car_id, client_id):
    intervals = [
        ("2024-06-01T10:00", "2024-06-03T10:00"),
        ("2024-06-02T10:00", "2024-06-04T10:00"),
        ("2024-06-03T10:00", "2024-06-05T10:00"),
        ("2024-05-31T10:00", "2024-06-01T11:00"),
        ("2024-06-05T10:00", "2024-06-06T10:00"),
    ]
    for start, end in intervals:
        create_rental(car_id, client_id, start, end)

    active = list(db.rentals.find({"car_id": car_id, "status": {"$in": ["reserved", "rented"]}}))
    assert len(active) == 3
    for first in active:
        for second in active:
            if first["_id"] != second["_id"]:
                assert not (first["start_date"] < second["return_date"] and second["start_date"] < first["return_date"])


def test_get_rental_joins_car_and_client(car_id, client_id):
    rental_id = create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00", 900)["rental_id"]

    rental = get_rental(rental_id)
    assert rental["car_model"] == "Dacia Logan"
    assert rental["plate_number"] == "12345-A-6"
    assert rental["client_name"] == "Nguyen Van A"
    assert rental["passport_id"] == "AB123456"
    assert get_rental("abc") is None


def test_get_rentals_pagination_and_search(db, car_id, other_car_id, client_id):
    create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00", 900)
    create_rental(car_id, client_id, "2024-06-05T10:00", "2024-06-07T10:00", 600)
    create_rental(other_car_id, client_id, "2024-07-01T10:00", "2024-07-03T10:00", 300)

    page = get_rentals(page=1, limit=2)
    assert page["total"] == 3
    assert len(page["rentals"]) == 2
    # Mới nhất trước
    assert page["rentals"][0]["start_date"] == "2024-07-01T09:00:00.000Z"
    assert len(get_rentals(page=2, limit=2)["rentals"]) == 1

    clio = get_rentals(search="clio")
    assert clio["total"] == 1
    assert clio["rentals"][0]["plate_number"] == "67890-B-1"

    june = get_rentals(month=6, year=2024)
    assert june["total"] == 2
    assert len(get_all_rentals(7, 2024)) == 1


def test_total_revenue(car_id, other_car_id, client_id):
    create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00", 900)
    create_rental(other_car_id, client_id, "2024-07-01T10:00", "2024-07-03T10:00", 300)

    assert get_total_revenue() == 1200
    assert get_total_revenue(6, 2024) == 900
    assert get_total_revenue(8, 2024) == 0


def test_month_filter_uses_business_time(car_id, client_id):
    # 00:30 ngày 01/07 giờ kinh doanh là 23:30 UTC ngày 30/06
    create_rental(car_id, client_id, "2024-07-01T00:30", "2024-07-02T10:00", 400)

    assert get_total_revenue(7, 2024) == 400
    assert get_total_revenue(6, 2024) == 0


def test_create_rental_accepts_aware_datetimes(db, car_id, client_id):
    start = datetime.datetime(2024, 6, 1, 9, 0, tzinfo=datetime.timezone.utc)
    result = create_rental(car_id, client_id, start, start + datetime.timedelta(days=2))
    assert db.rentals.find_one({"_id": result["rental_id"]})["start_date"] == "2024-06-01T09:00:00.000Z"


def run_before_next_lock(monkeypatch, action):
    """Chạy action ngay trước lần vào khóa xe kế tiếp, giả lập một thao tác chen ngang."""
    real_lock = rental_module.car_lock
    pending = [action]

    @contextmanager
    def lock_after_action(car_id):
        if pending:
            pending.pop()()
        with real_lock(car_id):
            yield

    monkeypatch.setattr("modules.rental.car_lock", lock_after_action)


# Quét quá hạn chen vào trước khi giao xe: đơn đã đóng không được mở lại
def test_status_update_after_concurrent_sweep_keeps_returned(db, car_id, client_id, monkeypatch):
    rental_id = create_rental(car_id, client_id, "2024-05-28T10:00", "2024-05-30T10:00")["rental_id"]
    run_before_next_lock(monkeypatch, lambda: sweep_expired_rentals(NOW))

    result = update_rental_status(rental_id, "rented")
    assert result["status"] == "invalid"
    assert rental_status(db, rental_id) == "returned"
    assert car_status(db, car_id) == "available"


# Đơn vừa được gia hạn trước khi quét ghi: không bị đóng
def test_sweep_skips_rental_extended_concurrently(db, car_id, client_id, monkeypatch):
    rental_id = create_rental(car_id, client_id, "2024-05-28T10:00", "2024-05-30T10:00", status="rented")["rental_id"]
    run_before_next_lock(
        monkeypatch,
        lambda: update_rental(rental_id, car_id, client_id, "2024-05-28T10:00", "2024-06-10T10:00"),
    )

    assert sweep_expired_rentals(NOW) == 0
    rental = db.rentals.find_one({"_id": rental_id})
    assert rental["status"] == "rented"
    assert rental["return_date"] == "2024-06-10T09:00:00.000Z"
    assert car_status(db, car_id) == "rented"


def test_edit_after_concurrent_sweep_is_rejected(db, car_id, client_id, monkeypatch):
    rental_id = create_rental(car_id, client_id, "2024-05-28T10:00", "2024-05-30T10:00")["rental_id"]
    run_before_next_lock(monkeypatch, lambda: sweep_expired_rentals(NOW))

    result = update_rental(rental_id, car_id, client_id, "2024-05-28T10:00", "2024-06-10T10:00")
    assert result["status"] == "invalid"
    rental = db.rentals.find_one({"_id": rental_id})
    assert rental["status"] == "returned"
    assert rental["return_date"] == "2024-05-30T09:00:00.000Z"


# Hai yêu cầu đặt cùng xe, cùng khung giờ cùng lúc: chỉ một yêu cầu thành công
def test_concurrent_bookings_for_same_slot(db, car_id, client_id, monkeypatch):
    real_check = rental_module.check_availability

    def slow_check(*args, **kwargs):
        result = real_check(*args, **kwargs)
        time.sleep(0.05)
        return result

    monkeypatch.setattr("modules.rental.check_availability", slow_check)
    barrier = threading.Barrier(2)
    results = []

    def book():
        barrier.wait()
        results.append(create_rental(car_id, client_id, "2024-06-01T10:00", "2024-06-03T10:00")["status"])

    threads = [threading.Thread(target=book) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == ["conflict", "success"]
    assert db.rentals.count_documents({"car_id": car_id}) == 1
    assert car_status(db, car_id) == "reserved"
