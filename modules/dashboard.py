from modules.car import get_car_stats
from modules.expense import get_total_expenses
from modules.notification import get_notifications
from modules.rental import get_all_rentals, get_total_revenue, safe_sweep


def get_dashboard(month=None, year=None, now=None):
    """Số liệu trang tổng quan. Luôn quét đơn quá hạn trước khi đọc."""
    safe_sweep(now)
    total_revenue = get_total_revenue(month, year)
    total_expenses = get_total_expenses(month, year)
    return {
        "car_stats": get_car_stats(),
        "total_revenue": total_revenue,
        "total_expenses": total_expenses,
        "total_profit": total_revenue - total_expenses,
        "notifications": get_notifications(now),
    }


def get_profits(month=None, year=None):
    total_revenue = get_total_revenue(month, year)
    total_expenses = get_total_expenses(month, year)
    rentals = get_all_rentals(month, year)
    return {
        "total_revenue": total_revenue,
        "total_expenses": total_expenses,
        "total_profit": total_revenue - total_expenses,
        "rentals": rentals,
    }
