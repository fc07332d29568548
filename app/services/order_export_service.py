from __future__ import annotations

import time
from io import BytesIO
from pathlib import Path

from fastapi.responses import StreamingResponse
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.order_info import ORDER_TYPE_FACTORY, ORDER_TYPE_PLATFORM, OrderInfo
from app.schemas.request_identity import RequestIdentity
from app.services.attachment_service import active_orders_stmt
from app.services.order_import_service import find_sheet_index
from app.services.order_row_validator import FACTORY_SHEET_LABEL, PLATFORM_SHEET_LABEL
from app.services.order_service import OrderFilters, apply_order_filters

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

PLATFORM_HEADERS = [
    "GSP订单号",
    "发货仓库",
    "店铺编号",
    "负责人",
    "商品名称",
    "规格",
    "货号",
    "卖家SKU",
    "平台SKU",
    "平台SKC",
    "平台SPU",
    "商品价格",
    "特殊产品备注",
    "应履约件数",
    "邮编",
    "国家",
    "省份",
    "城市",
    "区",
    "用户地址1",
    "用户地址2",
    "用户全称",
    "用户姓氏",
    "用户名字",
    "手机号",
    "用户邮箱",
    "税号",
]
FACTORY_HEADERS = [
    "订单创建时间" if idx == 1 else ("币种" if idx == 13 else title)
    for idx, title in enumerate(PLATFORM_HEADERS)
]

_HEADER_FONT = Font(bold=True)


def _price_cell(value: float | None) -> float | None:
    return value if value else None


def _common_tail(order: OrderInfo) -> list:
    return [
        order.postal_code,
        order.country,
        order.province,
        order.city,
        order.district,
        order.address_line1,
        order.address_line2,
        order.customer_full_name,
        order.customer_last_name,
        order.customer_first_name,
        order.phone_number,
        order.email,
        order.tax_number,
    ]


def platform_row(order: OrderInfo) -> list:
    return [
        order.gsp_order_no,
        order.shipping_warehouse_code,
        order.shop_code,
        order.owner_name,
        order.product_name,
        order.spec,
        order.item_no,
        order.seller_sku,
        order.platform_sku,
        order.platform_skc,
        order.platform_spu,
        _price_cell(order.product_price),
        order.special_product_note or "",
        order.expected_fulfillment_qty,
        *_common_tail(order),
    ]


def factory_row(order: OrderInfo) -> list:
    created = order.order_created_at.strftime("%Y-%m-%d %H:%M:%S") if order.order_created_at else ""
    return [
        order.gsp_order_no,
        created,
        order.shop_code,
        order.owner_name,
        order.product_name,
        order.spec,
        order.item_no,
        order.seller_sku,
        order.platform_sku,
        order.platform_skc,
        order.platform_spu,
        _price_cell(order.product_price),
        order.special_product_note or "",
        order.currency_code,
        *_common_tail(order),
    ]


def _append_header(ws, headers: list[str]) -> None:
    ws.append(headers)
    for cell in ws[1]:
        cell.font = _HEADER_FONT


def _load_template() -> Workbook:
    path = Path(settings.ORDER_EXPORT_TEMPLATE_PATH)
    if path.is_file():
        return load_workbook(filename=path)
    workbook = Workbook()
    platform_ws = workbook.active
    platform_ws.title = PLATFORM_SHEET_LABEL
    _append_header(platform_ws, PLATFORM_HEADERS)
    factory_ws = workbook.create_sheet(FACTORY_SHEET_LABEL)
    _append_header(factory_ws, FACTORY_HEADERS)
    return workbook


def _target_sheet(workbook: Workbook, order_type: str):
    index = find_sheet_index(workbook.sheetnames, order_type)
    if index is not None:
        return workbook.worksheets[index]
    if order_type == ORDER_TYPE_FACTORY:
        ws = workbook.create_sheet(FACTORY_SHEET_LABEL)
        _append_header(ws, FACTORY_HEADERS)
    else:
        ws = workbook.create_sheet(PLATFORM_SHEET_LABEL)
        _append_header(ws, PLATFORM_HEADERS)
    return ws


def build_orders_workbook(orders: list[OrderInfo]) -> Workbook:
    """Fill the template from row 2 down, after clearing earlier data rows."""
    workbook = _load_template()
    sheets = {
        ORDER_TYPE_PLATFORM: (_target_sheet(workbook, ORDER_TYPE_PLATFORM), platform_row),
        ORDER_TYPE_FACTORY: (_target_sheet(workbook, ORDER_TYPE_FACTORY), factory_row),
    }
    for ws, _ in sheets.values():
        if ws.max_row >= 2:
            ws.delete_rows(2, ws.max_row - 1)

    next_row = {order_type: 2 for order_type in sheets}
    for order in orders:
        target = order.order_type if order.order_type in sheets else ORDER_TYPE_PLATFORM
        ws, to_row = sheets[target]
        for col, value in enumerate(to_row(order), start=1):
            ws.cell(row=next_row[target], column=col, value=value)
        next_row[target] += 1
    return workbook


def export_orders(
    db: Session,
    *,
    identity: RequestIdentity,
    filters: OrderFilters,
) -> StreamingResponse:
    stmt = apply_order_filters(active_orders_stmt(identity), filters)
    orders = list(db.scalars(stmt.order_by(OrderInfo.id.desc())))
    workbook = build_orders_workbook(orders)

    buffer = BytesIO()
    workbook.save(buffer)
    buffer.seek(0)
    filename = f"orders_all_{int(time.time())}.xlsx"
    return StreamingResponse(
        buffer,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
