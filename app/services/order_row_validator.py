from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Sequence

from app.models.order_info import ORDER_TYPE_FACTORY, ORDER_TYPE_PLATFORM
from app.services.order_columns import ColumnIndex
from app.services.order_validation_errors import (
    ERR_CUSTOM,
    ERR_DICT,
    ERR_HANZI,
    ERR_NUMERIC,
    ERR_REQUIRED,
    ERR_SPEC_FORMAT,
    ValidationIssue,
)

PLATFORM_SHEET_LABEL = "平台面单"
FACTORY_SHEET_LABEL = "工厂物流"

DEFAULT_CURRENCY = "CNY"

FIELD_LABELS: dict[str, str] = {
    "gsp_order_no": "GSP订单号",
    "shipping_warehouse_code": "发货仓库",
    "shop_code": "店铺编号",
    "owner_name": "负责人",
    "spec": "规格",
    "item_no": "货号",
    "product_price": "商品价格",
    "expected_revenue": "商品预计收入",
    "expected_fulfillment_qty": "应履约件数",
    "special_product_note": "特殊产品备注",
    "postal_code": "邮编",
    "country": "国家",
    "province": "省份",
    "city": "城市",
    "customer_full_name": "用户全称",
    "customer_last_name": "用户姓氏",
    "customer_first_name": "用户名字",
    "phone_number": "手机号",
    "email": "用户邮箱",
    "order_created_at": "订单创建时间",
    "payment_time": "支付时间",
    "completed_at": "完成时间",
    "required_sign_at": "要求签收时间",
    "status": "状态",
}

# Copied onto the record as trimmed text without further checks.
_PASSTHROUGH_FIELDS = (
    "product_name",
    "seller_sku",
    "platform_sku",
    "platform_skc",
    "platform_spu",
    "district",
    "address_line2",
    "tax_number",
)

# Required on factory rows only; platform rows store them when present.
_FACTORY_REQUIRED_FIELDS = (
    "postal_code",
    "country",
    "province",
    "city",
    "customer_full_name",
    "customer_last_name",
    "customer_first_name",
    "phone_number",
    "email",
)

_OPTIONAL_TIME_FIELDS = ("required_sign_at", "payment_time", "completed_at")

_SPEC_PATTERN = re.compile(r"^[0-9]+(\.[0-9]+)?\*[0-9]+(\.[0-9]+)?$")
_HAN_PATTERN = re.compile(r"^[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff\U00020000-\U0002ebef]+$")
_TIME_LAYOUTS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d")
_TIME_FORMAT_HINT = " 格式应为 YYYY-MM-DD HH:mm:ss"


def sheet_label(order_type: str) -> str:
    return FACTORY_SHEET_LABEL if order_type == ORDER_TYPE_FACTORY else PLATFORM_SHEET_LABEL


def normalize_spec(raw: str) -> str:
    """`30 X 40` -> `30*40`."""
    return re.sub(r"\s+", "", raw.lower()).replace("x", "*")


def is_valid_spec(raw: str) -> bool:
    return bool(_SPEC_PATTERN.match(normalize_spec(raw)))


def _naive_local(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def parse_order_time(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return _naive_local(raw)
    text = str(raw).strip()
    if "T" in text:
        try:
            return _naive_local(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass
    for layout in _TIME_LAYOUTS:
        try:
            return datetime.strptime(text, layout)
        except ValueError:
            continue
    raise ValueError(f"unsupported time value '{text}'")


def _text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bool):
        return str(raw)
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    if isinstance(raw, (int, float, Decimal)):
        return str(raw)
    return str(raw).strip()


def _to_int(text: str) -> int:
    if re.fullmatch(r"-?[0-9]+", text):
        return int(text)
    value = float(text)
    if not value.is_integer():
        raise ValueError(f"invalid integer value '{text}'")
    return int(value)


def _to_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"invalid number '{text}'")
    return value


@dataclass(frozen=True)
class RowContext:
    order_type: str
    sheet: str
    default_address: str = ""
    # Upper-cased warehouse codes; None or empty means unrestricted.
    warehouse_whitelist: frozenset[str] | None = None
    # Manual submissions must carry an explicit status.
    require_status: bool = False


@dataclass(frozen=True)
class RowResult:
    """Either a normalized order record or the issues that prevented it."""

    order: dict[str, Any] | None
    errors: tuple[ValidationIssue, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class _RowBuilder:
    context: RowContext
    row: int
    values: Mapping[str, Any]
    order: dict[str, Any] = field(default_factory=dict)
    errors: list[ValidationIssue] = field(default_factory=list)

    def text(self, name: str) -> str:
        return _text(self.values.get(name))

    def fail(self, name: str, code: str, extra: str = "") -> None:
        self.errors.append(
            ValidationIssue(
                sheet=self.context.sheet,
                row=self.row,
                field=FIELD_LABELS.get(name, name),
                code=code,
                extra=extra,
            )
        )

    def required_text(self, name: str) -> str:
        value = self.text(name)
        if not value:
            self.fail(name, ERR_REQUIRED)
        self.order[name] = value
        return value

    def optional_time(self, name: str) -> datetime | None:
        raw = self.values.get(name)
        if raw is None or (not isinstance(raw, datetime) and not _text(raw)):
            return None
        try:
            return parse_order_time(raw)
        except ValueError:
            self.fail(name, ERR_CUSTOM, _TIME_FORMAT_HINT)
            return None

    def result(self) -> RowResult:
        if self.errors:
            return RowResult(order=None, errors=tuple(self.errors))
        return RowResult(order=dict(self.order))


def validate_order_values(
    values: Mapping[str, Any],
    context: RowContext,
    row: int,
) -> RowResult:
    """
    Validate and normalize one order's raw values.

    Every rule runs so a single pass reports all problems of the row.
    """
    b = _RowBuilder(context=context, row=row, values=values)
    is_platform = context.order_type == ORDER_TYPE_PLATFORM
    b.order["order_type"] = context.order_type

    b.required_text("gsp_order_no")

    warehouse = b.text("shipping_warehouse_code")
    if not warehouse and is_platform:
        b.fail("shipping_warehouse_code", ERR_REQUIRED)
    elif warehouse and context.warehouse_whitelist and warehouse.upper() not in context.warehouse_whitelist:
        b.fail("shipping_warehouse_code", ERR_DICT, warehouse)
    b.order["shipping_warehouse_code"] = warehouse

    b.required_text("shop_code")
    b.required_text("owner_name")
    b.required_text("item_no")

    spec = b.text("spec")
    if not spec:
        b.fail("spec", ERR_REQUIRED)
    else:
        spec = normalize_spec(spec)
        if not _SPEC_PATTERN.match(spec):
            b.fail("spec", ERR_SPEC_FORMAT)
    b.order["spec"] = spec

    qty: int | None = None
    qty_text = b.text("expected_fulfillment_qty")
    if is_platform:
        if not qty_text:
            b.fail("expected_fulfillment_qty", ERR_REQUIRED)
        else:
            try:
                qty = _to_int(qty_text)
            except ValueError:
                qty = None
            if qty is None or qty <= 0:
                b.fail("expected_fulfillment_qty", ERR_NUMERIC)
                qty = None
    elif qty_text:
        try:
            qty = _to_int(qty_text)
        except ValueError:
            qty = None
    b.order["expected_fulfillment_qty"] = qty or 0

    price: float | None = None
    price_text = b.text("product_price")
    if price_text:
        try:
            price = _to_float(price_text)
        except ValueError:
            b.fail("product_price", ERR_NUMERIC)
        else:
            if price < 0:
                b.fail("product_price", ERR_NUMERIC)
    b.order["product_price"] = price or 0.0

    note = b.text("special_product_note")
    if note and not _HAN_PATTERN.match(note):
        b.fail("special_product_note", ERR_HANZI)
    b.order["special_product_note"] = note or None

    full_name = b.text("customer_full_name")
    last_name = b.text("customer_last_name")
    first_name = b.text("customer_first_name")
    if not full_name and (last_name or first_name):
        full_name = f"{last_name} {first_name}".strip()
    names = {
        "customer_full_name": full_name,
        "customer_last_name": last_name,
        "customer_first_name": first_name,
    }
    for name in _FACTORY_REQUIRED_FIELDS:
        value = names[name] if name in names else b.text(name)
        if not value and not is_platform:
            b.fail(name, ERR_REQUIRED)
        b.order[name] = value

    for name in _PASSTHROUGH_FIELDS:
        b.order[name] = b.text(name)
    b.order["product_id"] = b.text("product_id") or None
    b.order["address_line1"] = b.text("address_line1") or context.default_address
    b.order["currency_code"] = b.text("currency_code") or DEFAULT_CURRENCY

    # None lets the upsert reuse the stored creation time or stamp a new one
    b.order["order_created_at"] = b.optional_time("order_created_at")
    for name in _OPTIONAL_TIME_FIELDS:
        b.order[name] = b.optional_time(name)

    revenue: float | None = None
    revenue_text = b.text("expected_revenue")
    if revenue_text:
        try:
            revenue = _to_float(revenue_text)
        except ValueError:
            b.fail("expected_revenue", ERR_NUMERIC)
    if revenue is None and price is not None and qty is not None:
        revenue = price * qty
    b.order["expected_revenue"] = revenue or 0.0

    item_count: int | None = None
    item_count_text = b.text("item_count")
    if item_count_text:
        try:
            item_count = _to_int(item_count_text)
        except ValueError:
            item_count = None
    if not item_count or item_count <= 0:
        item_count = qty if qty and qty > 0 else 1
    b.order["item_count"] = item_count

    if context.require_status:
        status_text = b.text("status")
        if not status_text:
            b.fail("status", ERR_REQUIRED)
        else:
            try:
                b.order["status"] = _to_int(status_text)
            except ValueError:
                b.fail("status", ERR_NUMERIC)

    return b.result()


def validate_row(
    row: Sequence[str],
    index: ColumnIndex,
    context: RowContext,
    row_number: int,
) -> RowResult:
    return validate_order_values(index.values(row), context, row_number)
