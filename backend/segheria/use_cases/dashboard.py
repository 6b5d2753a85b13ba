"""Dashboard figures computed over order lines and orders."""
from __future__ import annotations

from collections import Counter
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..models import Client, ClientProduct, Order, OrderLine
from ..services.line_payload import read_payload
from ..services.line_state import COMPLETED, LINE_STATUSES, LOADING_STATUSES, PRODUCTION, STATUS_LABELS_IT

TOP_CLIENTS = 10


def _client_of(line: Any) -> tuple[Any, str | None]:
    order = getattr(line, "order", None)
    if order is None:
        return None, None
    client = getattr(order, "client", None)
    return order.client_id, (client.company_name if client else None)


def is_late(line: Any, *, today: date) -> bool:
    delivery_date = read_payload(line.payload).delivery_date
    return delivery_date is not None and delivery_date < today and line.status != COMPLETED


def summarize_lines(lines: Iterable[Any], *, today: date) -> dict[str, Any]:
    rows = list(lines)
    status_counts = Counter(line.status for line in rows if line.status)
    total = sum(status_counts.values())

    def _clients(predicate) -> set[Any]:
        found = set()
        for line in rows:
            client_id = _client_of(line)[0]
            if client_id and predicate(line):
                found.add(client_id)
        return found

    late = [line for line in rows if is_late(line, today=today)]
    per_client: dict[Any, dict[str, Any]] = {}
    for line in rows:
        client_id, client_name = _client_of(line)
        if not client_id or not client_name:
            continue
        entry = per_client.setdefault(client_id, {"name": client_name, "lines": 0})
        entry["lines"] += 1
    top_clients = sorted(per_client.values(), key=lambda entry: entry["lines"], reverse=True)[:TOP_CLIENTS]

    return {
        "lines_in_production": status_counts.get(PRODUCTION, 0),
        "lines_in_delivery": sum(status_counts.get(s, 0) for s in LOADING_STATUSES),
        "lines_late": len(late),
        "clients_in_production": len(_clients(lambda line: line.status == PRODUCTION)),
        "clients_in_delivery": len(_clients(lambda line: line.status in LOADING_STATUSES)),
        "clients_with_late_lines": len(_clients(lambda line: is_late(line, today=today))),
        "status_distribution": [
            {
                "status": status,
                "label": STATUS_LABELS_IT[status],
                "count": status_counts[status],
                "percentage": (status_counts[status] / total) * 100,
            }
            for status in LINE_STATUSES
            if status_counts.get(status)
        ],
        "top_clients": top_clients,
    }


def monthly_trend(created: Iterable[datetime]) -> list[dict[str, Any]]:
    counts = Counter(dt.strftime("%Y-%m") for dt in created if dt is not None)
    return [{"month": month, "orders": counts[month]} for month in sorted(counts)]


def dashboard_summary_use_case(
    *,
    db: Session,
    start: datetime | None = None,
    end: datetime | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    line_query = db.query(OrderLine).options(joinedload(OrderLine.order).joinedload(Order.client))
    order_query = db.query(Order.created_at)
    if start is not None:
        line_query = line_query.filter(OrderLine.created_at >= start)
        order_query = order_query.filter(Order.created_at >= start)
    if end is not None:
        line_query = line_query.filter(OrderLine.created_at <= end)
        order_query = order_query.filter(Order.created_at <= end)

    summary = summarize_lines(line_query.all(), today=today or date.today())
    total_clients = db.query(func.count(Client.id)).scalar() or 0
    total_products = db.query(func.count(ClientProduct.id)).scalar() or 0
    summary.update(
        {
            "total_clients": total_clients,
            "average_products_per_client": round(total_products / total_clients, 1) if total_clients else 0,
            "order_trend": monthly_trend(row[0] for row in order_query.order_by(Order.created_at.asc()).all()),
        }
    )
    return summary
