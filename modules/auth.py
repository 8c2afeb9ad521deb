import datetime
import logging

import bcrypt
from bson import ObjectId
from jose import JWTError, jwt
from pymongo.errors import DuplicateKeyError

import config
from models.user_model import UserModel
from time_utils import utc_timestamp

logger = logging.getLogger(__name__)

# Cấu hình JWT
ALGORITHM = "HS256"


def hash_password(password):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def create_user(username, password):
    user = UserModel(username=username, password=password)
    try:
        user_id = config.db.users.insert_one({
            "username": user.username,
            "password_hash": hash_password(user.password),
            "created_at": utc_timestamp(),
        }).inserted_id
    except DuplicateKeyError:
        return {"status": "conflict", "message": "Tên đăng nhập đã tồn tại"}
    logger.info(f"Đã tạo tài khoản {user.username}")
    return {"status": "success", "user_id": user_id}


# Hàm đăng nhập người dùng
def login_user(username, password):
    if not username or not password:
        return None
    user = config.db.users.find_one({"username": username})
    if user and bcrypt.checkpw(password.encode('utf-8'), user["password_hash"].encode('utf-8')):
        logger.info(f"Đăng nhập thành công: {username}")
        return user
    logger.warning(f"Đăng nhập thất bại: {username}")
    return None


# Hàm tạo token người dùng
def create_user_token(user):
    expires_delta = datetime.timedelta(minutes=config.SESSION_MAX_AGE_MINUTES)
    to_encode = {"sub": str(user["_id"]), "name": user["username"]}
    expire = datetime.datetime.now(datetime.timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=ALGORITHM)


# Hàm xác thực token người dùng
def authenticate_user_token(user_token):
    try:
        payload = jwt.decode(user_token, config.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.error(f"Lỗi xác thực token: {e}")
        return None
    user_id = payload.get("sub")
    if user_id and ObjectId.is_valid(user_id):
        user = config.db.users.find_one({"_id": ObjectId(user_id)})
        if user:
            user.pop("password_hash", None)
            return user
    return None
