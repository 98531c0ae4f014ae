from __future__ import annotations

from typing import Mapping, Optional, Sequence

from sqlstratum import SELECT, INSERT, UPDATE, Table, col

PARTICIPANT_COLUMNS = (
    "id",
    "full_name",
    "phone_number",
    "email",
    "number_of_guests",
    "payment_status",
    "amount_paid",
    "avatar_url",
    "created_at",
)

DONATION_COLUMNS = (
    "id",
    "participant_id",
    "participant_name",
    "item_name",
    "quantity",
    "description",
    "created_at",
)

participants = Table(
    "participants",
    col("id", str),
    col("full_name", str),
    col("phone_number", str),
    col("email", str),
    col("number_of_guests", int),
    col("payment_status", str),
    col("amount_paid", float),
    col("avatar_url", str),
    col("created_at", str),
)

donations = Table(
    "donations",
    col("id", str),
    col("participant_id", str),
    col("participant_name", str),
    col("item_name", str),
    col("quantity", int),
    col("description", str),
    col("created_at", str),
)

TABLES = {
    "participants": (participants, PARTICIPANT_COLUMNS),
    "donations": (donations, DONATION_COLUMNS),
}


class UnknownColumn(KeyError):
    pass


def _lookup(table_name: str):
    try:
        return TABLES[table_name]
    except KeyError:
        raise UnknownColumn(f'relation "{table_name}" does not exist') from None


def _check_columns(table_name: str, names: Sequence[str]) -> None:
    _, known = _lookup(table_name)
    for name in names:
        if name not in known:
            raise UnknownColumn(f'column {table_name}.{name} does not exist')


def select_rows(
    table_name: str,
    columns: Optional[Sequence[str]] = None,
    order_by: Optional[str] = None,
    descending: bool = False,
):
    table, known = _lookup(table_name)
    names = tuple(columns) if columns else known
    _check_columns(table_name, names)
    q = SELECT(*(getattr(table.c, name).AS(name) for name in names)).FROM(table)
    if order_by:
        _check_columns(table_name, [order_by])
        order_col = getattr(table.c, order_by)
        q = q.ORDER_BY(order_col.DESC() if descending else order_col.ASC())
    return q


def select_row_by_id(table_name: str, row_id: str):
    table, known = _lookup(table_name)
    return (
        SELECT(*(getattr(table.c, name).AS(name) for name in known))
        .FROM(table)
        .WHERE(table.c.id == row_id)
        .LIMIT(1)
    )


def insert_row(table_name: str, row: Mapping[str, object]):
    table, _ = _lookup(table_name)
    _check_columns(table_name, list(row))
    return INSERT(table).VALUES(**row)


def update_row(table_name: str, row_id: str, patch: Mapping[str, object]):
    table, _ = _lookup(table_name)
    _check_columns(table_name, list(patch))
    return UPDATE(table).SET(**patch).WHERE(table.c.id == row_id)
