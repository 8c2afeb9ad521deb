import os
from dotenv import load_dotenv
from pymongo import MongoClient
import logging

# Tải biến môi trường từ file .env
load_dotenv()

# Kết nối tới MongoDB
MONGO_URI = os.getenv("MONGODB_CONNECTION_STRING", "mongodb://127.0.0.1:27017")
MONGO_DATABASE = os.getenv("MONGODB_DATABASE", "rental_system")
client = MongoClient(MONGO_URI)
db = client[MONGO_DATABASE]

# Cấu hình logging chi tiết
logging.basicConfig(
    filename='system.log',
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Múi giờ kinh doanh: mọi ngày giờ người dùng nhập/xem đều theo múi giờ này
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "Africa/Casablanca")
# Chỉ dùng cho môi trường phát triển: dùng múi giờ của máy chạy
USE_LOCAL_TIMEZONE = os.getenv("USE_LOCAL_TIMEZONE", "false").lower() in ("1", "true", "yes")

# Cấu hình secret key cho JWT
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
SESSION_MAX_AGE_MINUTES = int(os.getenv("SESSION_MAX_AGE_MINUTES", "1440"))
COOKIE_PASSWORD = os.getenv("COOKIE_PASSWORD", "quanlychothuexe")
