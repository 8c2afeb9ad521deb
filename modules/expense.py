import logging

import config
from models.expense_model import ExpenseModel
from time_utils import month_bounds, to_iso_utc, utc_timestamp
from utils import to_object_id

logger = logging.getLogger(__name__)


def _month_filter(month, year):
    if not (month and year):
        return {}
    start, end = month_bounds(month, year)
    return {"expense_date": {"$gte": start, "$lt": end}}


def _expense_document(expense):
    return {
        "category": expense.category,
        "amount": expense.amount,
        "expense_date": to_iso_utc(expense.expense_date),
        "car_id": to_object_id(expense.car_id),
        "description": expense.description,
    }


def create_expense(category, amount, expense_date, car_id=None, description=None):
    expense = ExpenseModel(
        category=category, amount=amount, expense_date=expense_date, car_id=car_id, description=description
    )
    data = _expense_document(expense)
    data["created_at"] = utc_timestamp()
    expense_id = config.db.expenses.insert_one(data).inserted_id
    logger.info(f"Đã thêm chi phí {expense.category}: {expense.amount}")
    return {"status": "success", "expense_id": expense_id}


def update_expense(expense_id, category, amount, expense_date, car_id=None, description=None):
    expense = ExpenseModel(
        category=category, amount=amount, expense_date=expense_date, car_id=car_id, description=description
    )
    expense_oid = to_object_id(expense_id)
    result = config.db.expenses.update_one(
        {"_id": expense_oid}, {"$set": _expense_document(expense)}
    ) if expense_oid else None
    if not result or result.matched_count == 0:
        return {"status": "not_found", "message": "Không tìm thấy chi phí"}
    return {"status": "success", "expense_id": expense_oid}


def delete_expense(expense_id):
    expense_oid = to_object_id(expense_id)
    result = config.db.expenses.delete_one({"_id": expense_oid}) if expense_oid else None
    if not result or result.deleted_count == 0:
        return {"status": "not_found", "message": "Không tìm thấy chi phí"}
    return {"status": "success", "expense_id": expense_oid}


def get_expenses(month=None, year=None):
    """Chi phí trong tháng (giờ kinh doanh) kèm thông tin xe, mới nhất trước."""
    return list(config.db.expenses.aggregate([
        {"$match": _month_filter(month, year)},
        {"$lookup": {"from": "cars", "localField": "car_id", "foreignField": "_id", "as": "car"}},
        {"$unwind": {"path": "$car", "preserveNullAndEmptyArrays": True}},
        {"$project": {
            "_id": 1,
            "category": 1,
            "amount": 1,
            "expense_date": 1,
            "car_id": 1,
            "description": 1,
            "created_at": 1,
            "car_model": "$car.model",
            "plate_number": "$car.plate_number",
        }},
        {"$sort": {"expense_date": -1}},
    ]))


def get_total_expenses(month=None, year=None):
    result = config.db.expenses.aggregate([
        {"$match": _month_filter(month, year)},
        {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
    ])
    return next(result, {}).get("total", 0)
