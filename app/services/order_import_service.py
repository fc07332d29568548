"""
Spreadsheet import for orders.

A workbook carries up to two sheets, one per order type, located by keyword.
Each sheet is header-detected and validated row by row; the import is
all-or-nothing: one bad cell anywhere rejects the whole workbook. Rows that
look like already-stored orders only produce a warning and still go through
the upsert.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from io import BytesIO
from typing import Any, Sequence

from fastapi import HTTPException
from openpyxl import load_workbook
from sqlalchemy import exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.flow_logging import flow_info
from app.models.order_info import ORDER_TYPE_FACTORY, ORDER_TYPE_PLATFORM, OrderInfo
from app.schemas.request_identity import RequestIdentity
from app.services.order_columns import resolve_header
from app.services.order_row_validator import (
    FACTORY_SHEET_LABEL,
    PLATFORM_SHEET_LABEL,
    RowContext,
    validate_row,
)
from app.services.order_upsert_service import auto_link_material, upsert_order
from app.services.order_validation_errors import (
    ERR_CUSTOM,
    ERR_DUPLICATE,
    ERR_DUPLICATE_CHECK,
    ValidationIssue,
    format_validation_issues,
)
from app.services.storage_service import StorageService
from app.services.system_config_service import (
    load_default_address,
    load_shipping_warehouse_whitelist,
)

logger = logging.getLogger(__name__)

_MAX_ISSUES = 400
_DUPLICATE_FIELD = "记录"
_MISSING_COLUMN = "缺少列"

_SHEET_KEYWORDS: dict[str, tuple[str, ...]] = {
    ORDER_TYPE_PLATFORM: ("平台面单", "platform"),
    ORDER_TYPE_FACTORY: ("工厂物流", "factory"),
}
_SHEET_LABELS = {
    ORDER_TYPE_PLATFORM: PLATFORM_SHEET_LABEL,
    ORDER_TYPE_FACTORY: FACTORY_SHEET_LABEL,
}

# Columns compared when deciding a row repeats an already-stored order.
_DUPLICATE_FIELDS: dict[str, tuple[str, ...]] = {
    ORDER_TYPE_PLATFORM: (
        "gsp_order_no",
        "shipping_warehouse_code",
        "shop_code",
        "owner_name",
        "spec",
        "item_no",
        "seller_sku",
    ),
    ORDER_TYPE_FACTORY: (
        "gsp_order_no",
        "shop_code",
        "owner_name",
        "spec",
        "item_no",
        "seller_sku",
    ),
}


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    return str(value).strip()


def read_workbook_sheets(payload: bytes) -> dict[str, list[list[str]]]:
    """Load every sheet as rows of trimmed strings, keyed by sheet title."""
    workbook = load_workbook(filename=BytesIO(payload), read_only=True, data_only=True)
    try:
        sheets: dict[str, list[list[str]]] = {}
        for ws in workbook.worksheets:
            sheets[ws.title] = [
                [_cell_text(cell) for cell in row] for row in ws.iter_rows(values_only=True)
            ]
        return sheets
    finally:
        workbook.close()


def find_sheet_index(titles: Sequence[str], order_type: str) -> int | None:
    keywords = _SHEET_KEYWORDS[order_type]
    for idx, title in enumerate(titles):
        lowered = title.lower()
        if any(keyword.lower() in lowered for keyword in keywords):
            return idx
    return None


def find_sheet_rows(sheets: dict[str, list[list[str]]], order_type: str) -> list[list[str]]:
    titles = list(sheets)
    idx = find_sheet_index(titles, order_type)
    return sheets[titles[idx]] if idx is not None else []


@dataclass
class SheetImport:
    order_type: str
    sheet: str
    orders: list[dict[str, Any]] = field(default_factory=list)
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)


def _is_blank(row: Sequence[str]) -> bool:
    return all(not (cell or "").strip() for cell in row)


def duplicate_key(record: dict[str, Any]) -> tuple[Any, ...]:
    return tuple(record.get(name) for name in _DUPLICATE_FIELDS[record["order_type"]])


def is_duplicate_order(db: Session, record: dict[str, Any]) -> bool:
    order_type = record["order_type"]
    conditions = [OrderInfo.deleted_at.is_(None), OrderInfo.order_type == order_type]
    for name in _DUPLICATE_FIELDS[order_type]:
        conditions.append(getattr(OrderInfo, name) == record.get(name))
    return bool(db.scalar(select(exists().where(*conditions))))


def import_sheet(
    db: Session,
    rows: Sequence[Sequence[str]],
    *,
    order_type: str,
    default_address: str,
    whitelist: frozenset[str] | None,
) -> SheetImport:
    sheet = _SHEET_LABELS[order_type]
    result = SheetImport(order_type=order_type, sheet=sheet)
    if not rows:
        return result

    header = resolve_header(rows, order_type)
    if header.missing:
        header_row = header.row_pos + 1
        result.errors.extend(
            ValidationIssue(sheet=sheet, row=header_row, field=label, code=ERR_CUSTOM, extra=_MISSING_COLUMN)
            for label in header.missing
        )
        return result

    context = RowContext(
        order_type=order_type,
        sheet=sheet,
        default_address=default_address,
        warehouse_whitelist=whitelist,
    )
    duplicate_rows: list[int] = []
    # Rows earlier in this sheet count as existing records too.
    seen: set[tuple[Any, ...]] = set()
    for pos in range(header.row_pos + 1, len(rows)):
        row = rows[pos]
        if _is_blank(row):
            continue
        row_number = pos + 1
        outcome = validate_row(row, header.index, context, row_number)
        if not outcome.ok:
            result.errors.extend(outcome.errors)
            continue
        key = duplicate_key(outcome.order)
        try:
            if key in seen or is_duplicate_order(db, outcome.order):
                duplicate_rows.append(row_number)
        except SQLAlchemyError as exc:
            result.errors.append(
                ValidationIssue(
                    sheet=sheet,
                    row=row_number,
                    field=_DUPLICATE_FIELD,
                    code=ERR_DUPLICATE_CHECK,
                    extra=f"检查重复时出错: {exc}",
                )
            )
            continue
        seen.add(key)
        result.orders.append(outcome.order)

    if duplicate_rows:
        joined = ",".join(str(row) for row in duplicate_rows)
        result.warnings.append(
            ValidationIssue(
                sheet=sheet,
                row=duplicate_rows[0],
                field=_DUPLICATE_FIELD,
                code=ERR_DUPLICATE,
                extra=f"{sheet}[第{joined}行]已有类似记录，请检查!",
            )
        )
    return result


def import_orders(
    db: Session,
    storage: StorageService,
    payload: bytes | None,
    *,
    identity: RequestIdentity,
) -> dict[str, Any]:
    if not payload:
        raise HTTPException(status_code=400, detail="未选择上传文件")
    try:
        sheets = read_workbook_sheets(payload)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=f"无法解析Excel文件: {exc}") from exc

    default_address = load_default_address(db)
    whitelist = load_shipping_warehouse_whitelist(db)

    imports = [
        import_sheet(
            db,
            find_sheet_rows(sheets, order_type),
            order_type=order_type,
            default_address=default_address,
            whitelist=whitelist,
        )
        for order_type in (ORDER_TYPE_PLATFORM, ORDER_TYPE_FACTORY)
    ]
    errors = [issue for item in imports for issue in item.errors]
    warnings = [issue for item in imports for issue in item.warnings]
    records = [record for item in imports for record in item.orders]

    if errors:
        logger.info("order_import_rejected errors=%s", len(errors))
        raise HTTPException(
            status_code=400,
            detail={
                "message": format_validation_issues(errors),
                "issues": [issue.to_dict() for issue in errors[:_MAX_ISSUES]],
            },
        )
    if not records:
        raise HTTPException(status_code=400, detail="Excel 中未找到可导入的数据")

    stale_blobs: list[tuple[str, str]] = []
    created = 0
    try:
        for record in records:
            record["updated_by"] = identity.user_id
            record["created_by"] = identity.user_id
            order, is_new = upsert_order(db, record)
            created += int(is_new)
            stale_blob = auto_link_material(db, order)
            if stale_blob:
                stale_blobs.append(stale_blob)
        db.commit()
    except Exception:
        db.rollback()
        raise

    for key, storage_name in stale_blobs:
        storage.delete_quietly(key, storage_name, reason="import_relinked")

    flow_info(
        logger,
        "order_import_completed imported=%s created=%s warnings=%s",
        len(records),
        created,
        len(warnings),
        category="import",
    )
    return {
        "message": f"成功导入{len(records)}条订单",
        "imported": len(records),
        "warning_message": format_validation_issues(warnings),
        "warnings": [issue.to_dict() for issue in warnings],
    }
