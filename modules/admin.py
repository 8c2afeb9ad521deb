import datetime
import logging

import pandas as pd
import streamlit as st
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from models.car_model import CarStatus
from models.rental_model import RentalStatus
from modules.car import (create_car, delete_car, get_all_cars, get_available_cars, get_cars, set_car_status,
                        update_car)
from modules.client import create_client, delete_client, get_all_clients, get_clients
from modules.dashboard import get_dashboard, get_profits
from modules.document import get_documents
from modules.expense import create_expense, delete_expense, get_expenses
from modules.rental import (create_rental, delete_rental, get_rental, get_rentals, safe_sweep,
                            update_rental, update_rental_status)
from time_utils import format_in_business_time, now as utc_now, to_business_input_string, to_business_time
from utils import sanitize_input

logger = logging.getLogger(__name__)

SEVERITY_DISPLAY = {
    "warning": st.warning,
    "info": st.info,
    "danger": st.error,
}

NOTIFICATION_LABELS = {
    "start_today": "Nhận xe hôm nay",
    "start_tomorrow": "Nhận xe ngày mai",
    "return_today": "Trả xe hôm nay",
    "overdue": "Quá hạn trả xe",
}

PAGE_SIZE = 20


def admin_dashboard(user):
    st.subheader(f"Xin chào: {user['username']}")
    menu = ["Tổng Quan", "Quản Lý Xe", "Khách Hàng", "Đơn Thuê", "Chi Phí", "Giấy Tờ", "Lợi Nhuận"]
    # Lưu lựa chọn vào session_state
    if 'selected_menu' not in st.session_state:
        st.session_state['selected_menu'] = menu[0]

    choice = st.sidebar.selectbox("Menu Quản Lý", menu, index=menu.index(st.session_state['selected_menu']), key="menu_admin")
    st.session_state['selected_menu'] = choice

    try:
        if choice == "Tổng Quan":
            show_dashboard()
        elif choice == "Quản Lý Xe":
            manage_cars()
        elif choice == "Khách Hàng":
            manage_clients()
        elif choice == "Đơn Thuê":
            manage_rentals()
        elif choice == "Chi Phí":
            manage_expenses()
        elif choice == "Giấy Tờ":
            view_documents()
        elif choice == "Lợi Nhuận":
            view_profits()
    except PyMongoError as e:
        logger.error(f"Lỗi cơ sở dữ liệu: {e}")
        st.error("Không thể kết nối tới cơ sở dữ liệu. Vui lòng thử lại sau!")


def _month_filter_inputs(key):
    col1, col2 = st.columns(2)
    today = to_business_time(utc_now()).date()
    with col1:
        month = st.selectbox("Tháng", ["Tất cả"] + list(range(1, 13)), index=today.month, key=f"{key}_month")
    with col2:
        year = st.number_input("Năm", min_value=2000, max_value=2100, value=today.year, key=f"{key}_year")
    if month == "Tất cả":
        return None, None
    return month, year


def _show_result(result, success_message):
    if result["status"] == "success":
        st.success(success_message)
        st.rerun()
    elif result["status"] == "conflict":
        st.error(result["message"])
    else:
        st.warning(result["message"])


def _show_validation_error(e):
    for error in e.errors():
        field = ".".join(str(part) for part in error.get("loc", ())) or "dữ liệu"
        st.error(f"{field}: {error['msg']}")


def show_dashboard():
    st.subheader("Tổng Quan")
    month, year = _month_filter_inputs("dashboard")
    data = get_dashboard(month, year)

    stats = data["car_stats"]
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Tổng số xe", stats["total"])
    col2.metric("Xe trống", stats["available"])
    col3.metric("Đang cho thuê", stats["rented"])
    col4.metric("Đã đặt trước", stats["reserved"])

    col1, col2, col3 = st.columns(3)
    col1.metric("Doanh thu", f"{data['total_revenue']:,.2f}")
    col2.metric("Chi phí", f"{data['total_expenses']:,.2f}")
    col3.metric("Lợi nhuận", f"{data['total_profit']:,.2f}")

    st.subheader("Thông Báo")
    if not data["notifications"]:
        st.write("Không có thông báo nào.")
    for notification in data["notifications"]:
        rental = notification["rental"]
        show = SEVERITY_DISPLAY.get(notification["severity"], st.info)
        show(
            f"{NOTIFICATION_LABELS[notification['type']]}: {rental['model']} ({rental['plate_number']}) - "
            f"{rental['full_name']} - {format_in_business_time(rental['start_date'])} → "
            f"{format_in_business_time(rental['return_date'])}"
        )


def manage_cars():
    st.subheader("Quản Lý Xe")

    with st.form(key='add_car_form'):
        model = sanitize_input(st.text_input("Mẫu Xe"))
        plate_number = sanitize_input(st.text_input("Biển Số Xe"))
        submit_button = st.form_submit_button(label='Thêm Xe')

    if submit_button:
        try:
            _show_result(create_car(model, plate_number), "Xe đã được thêm thành công!")
        except ValidationError as e:
            _show_validation_error(e)

    search = st.text_input("Tìm kiếm theo mẫu xe hoặc biển số", key="car_search")
    page = st.number_input("Trang", min_value=1, value=1, key="car_page")
    result = get_cars(page, PAGE_SIZE, search)
    st.caption(f"Tổng số: {result['total']} xe")

    for car in result["cars"]:
        cols = st.columns([3, 1, 1, 1, 1])
        with cols[0]:
            line = f"{car['model']} (Biển số: {car['plate_number']}) - Trạng thái: {car['status']}"
            current = car.get("current_rental")
            if current:
                line += (f" - Đơn hiện tại: {format_in_business_time(current['start_date'])} → "
                         f"{format_in_business_time(current['return_date'])}")
            hours = car["total_rented_seconds"] / 3600
            st.write(f"{line} - Đã cho thuê: {hours:.0f} giờ")
        with cols[1]:
            if car["status"] != CarStatus.AVAILABLE.value:
                # Trả xe thủ công: đơn treo sẽ được tự đóng ở lần đặt xe kế tiếp
                if st.button("Đánh dấu trống", key=f"free_{car['_id']}"):
                    _show_result(set_car_status(car["_id"], CarStatus.AVAILABLE), "Đã cập nhật trạng thái xe.")
        with cols[2]:
            if car["status"] == CarStatus.AVAILABLE.value:
                if st.button("Đang sửa/đã thuê", key=f"rented_{car['_id']}"):
                    _show_result(set_car_status(car["_id"], CarStatus.RENTED), "Đã cập nhật trạng thái xe.")
        with cols[3]:
            if st.button("Chỉnh Sửa", key=f"edit_car_{car['_id']}"):
                st.session_state['editing_car_id'] = str(car["_id"])
        with cols[4]:
            if st.button("Xóa", key=f"delete_{car['_id']}"):
                _show_result(delete_car(car["_id"]), f"Xe {car['model']} đã bị xóa.")

    editing_id = st.session_state.get('editing_car_id')
    car = next((c for c in result["cars"] if str(c["_id"]) == editing_id), None)
    if car:
        edit_car(car)


def edit_car(car):
    st.subheader("Chỉnh Sửa Xe")
    with st.form(key=f"edit_car_form_{car['_id']}"):
        model = sanitize_input(st.text_input("Mẫu Xe", value=car["model"]))
        plate_number = sanitize_input(st.text_input("Biển Số Xe", value=car["plate_number"]))
        submit_button = st.form_submit_button("Cập Nhật")

    if submit_button:
        try:
            result = update_car(car["_id"], model, plate_number)
            if result["status"] == "success":
                st.session_state['editing_car_id'] = None
            _show_result(result, "Thông tin xe đã được cập nhật!")
        except ValidationError as e:
            _show_validation_error(e)


def manage_clients():
    st.subheader("Khách Hàng")

    with st.form(key="add_client_form"):
        full_name = sanitize_input(st.text_input("Họ và Tên"))
        passport_id = sanitize_input(st.text_input("Số hộ chiếu"))
        driving_license = sanitize_input(st.text_input("Số bằng lái"))
        id_number = sanitize_input(st.text_input("Số CMND/CCCD"))
        address = sanitize_input(st.text_input("Địa chỉ"))
        date_of_birth = st.text_input("Ngày sinh (YYYY-MM-DD)")
        license_expiry_date = st.text_input("Ngày hết hạn bằng lái (YYYY-MM-DD)")
        passport_expiry_date = st.text_input("Ngày hết hạn hộ chiếu (YYYY-MM-DD)")
        passport_image = st.text_input("Ảnh hộ chiếu (các đường dẫn cách nhau bằng dấu phẩy)")
        license_image = st.text_input("Ảnh bằng lái (các đường dẫn cách nhau bằng dấu phẩy)")
        submit_button = st.form_submit_button(label="Thêm Khách Hàng")

    if submit_button:
        try:
            result = create_client(
                full_name=full_name,
                passport_id=passport_id,
                driving_license=driving_license,
                id_number=id_number,
                address=address,
                date_of_birth=date_of_birth,
                license_expiry_date=license_expiry_date,
                passport_expiry_date=passport_expiry_date,
                passport_image=passport_image,
                license_image=license_image,
            )
            _show_result(result, "Đã thêm khách hàng!")
        except ValidationError as e:
            _show_validation_error(e)

    search = st.text_input("Tìm kiếm khách hàng", key="client_search")
    result = get_clients(1, PAGE_SIZE, search)
    for client in result["clients"]:
        cols = st.columns([4, 1])
        cols[0].write(f"{client['full_name']} - Hộ chiếu: {client['passport_id']} - Bằng lái: {client['driving_license']}")
        if cols[1].button("Xóa", key=f"delete_client_{client['_id']}"):
            _show_result(delete_client(client["_id"]), "Đã xóa khách hàng.")


def _datetime_input(label, key, value=None):
    """Ô nhập ngày + giờ, trả về chuỗi giờ kinh doanh ``YYYY-MM-DDTHH:MM``."""
    local = to_business_time(value) if value else None
    col1, col2 = st.columns(2)
    day = col1.date_input(label, value=local.date() if local else None, key=f"{key}_date")
    hour = col2.time_input("Giờ", value=local.time() if local else datetime.time(10, 0), key=f"{key}_time")
    if not day:
        return ""
    return datetime.datetime.combine(day, hour).strftime("%Y-%m-%dT%H:%M")


def manage_rentals():
    st.subheader("Đơn Thuê")
    safe_sweep()

    cars = get_all_cars()
    clients = get_all_clients()
    car_labels = {str(car["_id"]): f"{car['model']} - {car['plate_number']} ({car['status']})" for car in cars}
    client_labels = {str(client["_id"]): client["full_name"] for client in clients}
    st.caption(f"Xe đang trống: {len(get_available_cars())}/{len(cars)}")

    with st.form(key="rental_form"):
        car_id = st.selectbox("Chọn Xe", list(car_labels), format_func=car_labels.get)
        client_id = st.selectbox("Chọn Khách Hàng", list(client_labels), format_func=client_labels.get)
        start_date = _datetime_input("Ngày Bắt Đầu", "rental_start")
        return_date = _datetime_input("Ngày Trả Xe", "rental_return")
        rental_price = st.number_input("Giá Thuê", min_value=0.0, step=50.0)
        status = st.selectbox("Trạng thái", [RentalStatus.RESERVED.value, RentalStatus.RENTED.value])
        submit_booking = st.form_submit_button("Xác Nhận Đặt")

    if submit_booking:
        try:
            result = create_rental(car_id, client_id, start_date, return_date, rental_price, status)
            _show_result(result, "Đặt xe thành công!")
        except ValidationError as e:
            _show_validation_error(e)

    search = st.text_input("Tìm kiếm theo mẫu xe, biển số hoặc tên khách hàng", key="rental_search")
    month, year = _month_filter_inputs("rentals")
    result = get_rentals(1, PAGE_SIZE, search, month, year)
    if result["total"] == 0:
        st.write("Hiện tại chưa có đơn đặt xe nào.")
        return

    for rental in result["rentals"]:
        cols = st.columns([4, 1, 1, 1, 1])
        cols[0].write(
            f"{rental['car_model']} ({rental['plate_number']}) - {rental['client_name']} - "
            f"Từ {format_in_business_time(rental['start_date'])} đến {format_in_business_time(rental['return_date'])} - "
            f"{rental['rental_price']} - Trạng thái: {rental['status']}"
        )
        if rental["status"] == RentalStatus.RESERVED.value:
            if cols[1].button("Giao xe", key=f"pickup_{rental['_id']}"):
                _show_result(update_rental_status(rental["_id"], RentalStatus.RENTED), "Đã giao xe.")
        if rental["status"] != RentalStatus.RETURNED.value:
            if cols[2].button("Trả xe", key=f"return_{rental['_id']}"):
                _show_result(update_rental_status(rental["_id"], RentalStatus.RETURNED), "Đã trả xe.")
        if cols[3].button("Chỉnh Sửa", key=f"edit_{rental['_id']}"):
            st.session_state['editing_rental_id'] = str(rental["_id"])
        if cols[4].button("Xóa", key=f"delete_{rental['_id']}"):
            _show_result(delete_rental(rental["_id"]), "Đã xóa đơn thuê.")

    editing_id = st.session_state.get('editing_rental_id')
    rental = next((r for r in result["rentals"] if str(r["_id"]) == editing_id), None)
    if rental:
        edit_rental(rental, car_labels, client_labels)


def show_contract_summary(contract):
    if not contract:
        st.write("Không tìm thấy đơn thuê.")
        return
    st.markdown(
        f"**Khách hàng:** {contract['client_name']}  \n"
        f"**Hộ chiếu:** {contract.get('passport_id') or '-'} - **Bằng lái:** {contract.get('driving_license') or '-'}  \n"
        f"**Địa chỉ:** {contract.get('client_address') or '-'}  \n"
        f"**Xe:** {contract['car_model']} ({contract['plate_number']})  \n"
        f"**Nhận xe:** {format_in_business_time(contract['start_date'])}  \n"
        f"**Trả xe:** {format_in_business_time(contract['return_date'])}  \n"
        f"**Giá thuê:** {contract['rental_price']:,.2f} - **Trạng thái:** {contract['status']}"
    )


def edit_rental(rental, car_labels, client_labels):
    st.subheader("Chỉnh Sửa Đơn Thuê")
    with st.expander("Thông tin hợp đồng"):
        show_contract_summary(get_rental(rental["_id"]))

    car_ids = list(car_labels)
    client_ids = list(client_labels)
    with st.form(key=f"edit_rental_{rental['_id']}"):
        car_id = st.selectbox("Xe", car_ids, index=car_ids.index(str(rental["car_id"])), format_func=car_labels.get)
        client_id = st.selectbox("Khách Hàng", client_ids, index=client_ids.index(str(rental["client_id"])),
                                 format_func=client_labels.get)
        st.caption(f"Hiện tại: {to_business_input_string(rental['start_date'])} → "
                   f"{to_business_input_string(rental['return_date'])}")
        start_date = _datetime_input("Ngày Bắt Đầu", f"edit_start_{rental['_id']}", rental["start_date"])
        return_date = _datetime_input("Ngày Trả Xe", f"edit_return_{rental['_id']}", rental["return_date"])
        rental_price = st.number_input("Giá Thuê", min_value=0.0, value=float(rental["rental_price"]))
        submit_button = st.form_submit_button("Cập Nhật")

    if submit_button:
        try:
            result = update_rental(rental["_id"], car_id, client_id, start_date, return_date, rental_price)
            if result["status"] == "success":
                st.session_state['editing_rental_id'] = None
            _show_result(result, "Đã cập nhật đơn thuê.")
        except ValidationError as e:
            _show_validation_error(e)


def manage_expenses():
    st.subheader("Chi Phí")
    cars = get_all_cars()
    car_labels = {"": "Không gắn xe"}
    car_labels.update({str(car["_id"]): f"{car['model']} - {car['plate_number']}" for car in cars})

    with st.form(key="expense_form"):
        category = sanitize_input(st.text_input("Loại chi phí"))
        amount = st.number_input("Số tiền", min_value=0.0, step=10.0)
        expense_date = _datetime_input("Ngày chi", "expense_date")
        car_id = st.selectbox("Xe", list(car_labels), format_func=car_labels.get)
        description = sanitize_input(st.text_input("Ghi chú"))
        submit_button = st.form_submit_button("Thêm Chi Phí")

    if submit_button:
        try:
            _show_result(create_expense(category, amount, expense_date, car_id, description), "Đã thêm chi phí.")
        except ValidationError as e:
            _show_validation_error(e)

    month, year = _month_filter_inputs("expenses")
    for expense in get_expenses(month, year):
        cols = st.columns([4, 1])
        car = f" - {expense['car_model']} ({expense['plate_number']})" if expense.get("car_model") else ""
        cols[0].write(f"{format_in_business_time(expense['expense_date'])} - {expense['category']}: "
                      f"{expense['amount']}{car}")
        if cols[1].button("Xóa", key=f"delete_expense_{expense['_id']}"):
            _show_result(delete_expense(expense["_id"]), "Đã xóa chi phí.")


def view_documents():
    st.subheader("Giấy Tờ")
    search = st.text_input("Tìm theo tên khách hàng", key="document_search")
    col1, col2 = st.columns(2)
    date_from = col1.date_input("Từ ngày", value=None, key="document_from")
    date_to = col2.date_input("Đến ngày", value=None, key="document_to")
    documents = get_documents(search, date_from, date_to)
    if not documents:
        st.write("Không có giấy tờ nào.")
    for document in documents:
        st.write(f"{document['client_name']} - {document['type']} - {document['url']} - "
                 f"{format_in_business_time(document['created_at'])}")


def view_profits():
    st.subheader("Lợi Nhuận")
    month, year = _month_filter_inputs("profits")
    safe_sweep()
    data = get_profits(month, year)

    col1, col2, col3 = st.columns(3)
    col1.metric("Doanh thu", f"{data['total_revenue']:,.2f}")
    col2.metric("Chi phí", f"{data['total_expenses']:,.2f}")
    col3.metric("Lợi nhuận", f"{data['total_profit']:,.2f}")

    rentals_df = pd.DataFrame([
        {
            "Xe": f"{r['car_model']} ({r['plate_number']})",
            "Khách hàng": r["client_name"],
            "Bắt đầu": format_in_business_time(r["start_date"]),
            "Trả xe": format_in_business_time(r["return_date"]),
            "Giá thuê": r["rental_price"],
            "Trạng thái": r["status"],
        }
        for r in data["rentals"]
    ])
    if rentals_df.empty:
        st.write("Không có dữ liệu doanh thu trong khoảng thời gian này.")
    else:
        st.dataframe(rentals_df)
        st.bar_chart(rentals_df.groupby("Xe")["Giá thuê"].sum())
