import logging
import time

import streamlit as st
st.set_page_config(page_title="Hệ Thống Quản Lý Cho Thuê Xe", layout="wide")

from streamlit_cookies_manager import EncryptedCookieManager

import config
from modules.admin import admin_dashboard
from modules.auth import authenticate_user_token, create_user_token, login_user
from modules.database import init_database, is_mongodb_connected

logger = logging.getLogger(__name__)


def clear_all_cookies(cookie_manager):
    for key in list(cookie_manager.keys()):
        del cookie_manager[key]
    cookie_manager.save()


@st.cache_resource
def prepare_database():
    # Chỉ chạy một lần cho mỗi tiến trình Streamlit
    init_database()
    return True


def main():
    st.title("Hệ Thống Quản Lý Cho Thuê Xe")

    # Kiểm tra kết nối MongoDB
    if is_mongodb_connected():
        prepare_database()
    else:
        st.error("Không thể kết nối đến MongoDB. Vui lòng kiểm tra file `system.log`")
        st.stop()

    # Sử dụng EncryptedCookieManager để quản lý cookie
    cookie_manager = EncryptedCookieManager(password=config.COOKIE_PASSWORD)

    if not cookie_manager.ready():
        with st.spinner("Đang tải..."):
            time.sleep(1)  # Chờ cookie_manager sẵn sàng
        st.stop()

    user_token = cookie_manager.get("user_token")

    if user_token:
        user = authenticate_user_token(user_token)
        if user:
            admin_dashboard(user)

            if st.sidebar.button("Đăng Xuất"):
                clear_all_cookies(cookie_manager)
                logger.info(f"Đăng xuất: {user['username']}")
                time.sleep(0.5)
                st.success("Đăng xuất thành công!")
                st.rerun()
        else:
            st.warning("Phiên làm việc đã hết hạn hoặc không hợp lệ. Vui lòng đăng nhập lại.")
            # Xóa cookie khi token không hợp lệ
            clear_all_cookies(cookie_manager)
            time.sleep(0.5)
            st.rerun()
    else:
        show_login_form(cookie_manager)


def show_login_form(cookie_manager):
    st.subheader("Đăng Nhập")
    username = st.text_input("Tên đăng nhập")
    password = st.text_input("Mật khẩu", type="password")
    if st.button("Đăng Nhập"):
        user = login_user(username, password)
        if user:
            # Lưu token vào cookie
            cookie_manager["user_token"] = create_user_token(user)
            cookie_manager.save()
            st.success("Đăng nhập thành công!")
            st.rerun()
        else:
            st.error("Tên đăng nhập hoặc mật khẩu không đúng.")


if __name__ == '__main__':
    main()
