import logging

import pymongo
from pymongo.errors import PyMongoError

import config
from modules.auth import create_user
from modules.car import ensure_car_indexes

logger = logging.getLogger(__name__)

COLLECTIONS = ["users", "cars", "clients", "rentals", "expenses", "documents"]

DEFAULT_USERS = [
    ("admin", "admin1234"),
    ("manager", "manager1234"),
]


def init_database():
    """Tạo các collection, index và tài khoản mặc định nếu chưa có."""
    existing = config.db.list_collection_names()
    for name in COLLECTIONS:
        if name not in existing:
            config.db.create_collection(name)

    config.db.users.create_index([("username", pymongo.ASCENDING)], unique=True)
    ensure_car_indexes()
    # Index cho các truy vấn kiểm tra trùng lịch và quét đơn quá hạn
    config.db.rentals.create_index([("car_id", pymongo.ASCENDING), ("status", pymongo.ASCENDING)])
    config.db.rentals.create_index([("status", pymongo.ASCENDING), ("return_date", pymongo.ASCENDING)])
    config.db.documents.create_index([("url", pymongo.ASCENDING)])

    if config.db.users.count_documents({}) == 0:
        for username, password in DEFAULT_USERS:
            create_user(username, password)
        logger.info("Tài khoản mặc định đã được tạo!")


def is_mongodb_connected():
    """Kiểm tra xem MongoDB có kết nối được không."""
    try:
        config.db.command('ping')
        return True
    except PyMongoError as e:
        logger.warning(f"MongoDB connection failed: {e}")
        return False
