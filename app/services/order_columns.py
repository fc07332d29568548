"""
Header detection for order workbooks.

Operators export sheets from several platforms, so column titles vary in
language, punctuation and ordering. Titles are normalized and matched against
an ordered alias table; the first alias that matches a title claims the
column for its field, and a field keeps the first column it was matched to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from app.models.order_info import ORDER_TYPE_PLATFORM


@dataclass(frozen=True)
class ColumnAlias:
    field: str
    phrases: tuple[str, ...]
    tokens: tuple[str, ...]
    # Substrings that disqualify a title even when a phrase matches.
    excludes: tuple[str, ...] = ()

    def matches(self, title: str, lower: str) -> bool:
        if any(bad.lower() in lower for bad in self.excludes):
            return False
        if any(phrase in title for phrase in self.phrases):
            return True
        return any(token in lower for token in self.tokens)


COLUMN_ALIASES: tuple[ColumnAlias, ...] = (
    ColumnAlias("gsp_order_no", ("GSP订单号",), ("gsporderid",)),
    ColumnAlias("order_created_at", ("订单创建时间",), ("ordercreated",)),
    ColumnAlias("required_sign_at", ("要求签收时间",), ("requiredsign",)),
    ColumnAlias(
        "shipping_warehouse_code",
        ("发货仓库",),
        ("warehouse", "warehousecode", "shipfrom"),
    ),
    ColumnAlias("shop_code", ("店铺编号",), ("shop", "store")),
    ColumnAlias("owner_name", ("负责人",), ("owner",)),
    ColumnAlias("product_id", ("商品ID",), ("productid",)),
    ColumnAlias("product_name", ("商品名称",), ("productname", "itemname")),
    ColumnAlias("spec", ("规格",), ("spec",)),
    ColumnAlias("item_no", ("货号",), ("itemno",)),
    ColumnAlias("seller_sku", ("卖家SKU",), ("sellersku",)),
    ColumnAlias("platform_sku", ("平台SKU",), ("platformsku",), excludes=("SKC",)),
    ColumnAlias("platform_skc", ("平台SKC",), ("platformskc",)),
    ColumnAlias("platform_spu", ("平台SPU",), ("platformspu",)),
    ColumnAlias("product_price", ("商品价格",), ("price",)),
    ColumnAlias("expected_revenue", ("商品预计收入",), ("expectedrevenue",)),
    ColumnAlias("special_product_note", ("特殊产品备注",), ("special",)),
    ColumnAlias("expected_fulfillment_qty", ("履约件数", "件数"), ("expectedfulfillment",)),
    ColumnAlias("currency_code", ("币种",), ("currency",)),
    ColumnAlias("postal_code", ("邮编",), ("postal", "zipcode")),
    ColumnAlias("country", ("国家",), ("country",)),
    ColumnAlias("province", ("省份",), ("province",)),
    ColumnAlias("city", ("城市",), ("city",)),
    ColumnAlias("district", ("区",), ("district",)),
    ColumnAlias("address_line1", ("用户地址1",), ("address1",)),
    ColumnAlias("address_line2", ("用户地址2",), ("address2",)),
    ColumnAlias("customer_full_name", ("用户全称",), ("fullname",)),
    ColumnAlias("customer_last_name", ("用户姓氏",), ("lastname",)),
    ColumnAlias("customer_first_name", ("用户名字",), ("firstname",)),
    ColumnAlias("phone_number", ("手机号",), ("phone", "mobile")),
    ColumnAlias("email", ("邮箱",), ("email",)),
    ColumnAlias("tax_number", ("税号",), ("tax",)),
    ColumnAlias("payment_time", ("支付时间",), ("payment",)),
    ColumnAlias("completed_at", ("完成时间",), ("complete", "finished")),
)

# A row is a header when at least this many anchor fields resolve.
HEADER_ANCHOR_THRESHOLD = 3
HEADER_ANCHORS = ("gsp_order_no", "shop_code", "owner_name", "product_name", "spec")

REQUIRED_COLUMNS: tuple[tuple[str, str], ...] = (
    ("gsp_order_no", "GSP订单号"),
    ("shop_code", "店铺编号"),
    ("owner_name", "负责人"),
    ("product_name", "商品名称"),
    ("spec", "规格"),
    ("item_no", "货号"),
    ("seller_sku", "卖家SKU"),
    ("platform_sku", "平台SKU"),
    ("platform_skc", "平台SKC"),
    ("platform_spu", "平台SPU"),
    ("product_price", "商品价格"),
    ("postal_code", "邮编"),
    ("country", "国家"),
    ("province", "省份"),
    ("city", "城市"),
    ("customer_full_name", "用户全称"),
    ("customer_last_name", "用户姓氏"),
    ("customer_first_name", "用户名字"),
    ("phone_number", "手机号"),
    ("email", "用户邮箱"),
)
PLATFORM_REQUIRED_COLUMNS: tuple[tuple[str, str], ...] = (
    ("shipping_warehouse_code", "发货仓库"),
    ("expected_fulfillment_qty", "应履约件数"),
)

# Positional layout of the operations template (0-based), used for any field
# the header row did not resolve.
_FALLBACK_LAYOUT: dict[str, int] = {
    "shop_code": 2,
    "owner_name": 3,
    "spec": 5,
    "item_no": 6,
    "special_product_note": 12,
    "expected_fulfillment_qty": 13,
}
_PLATFORM_FALLBACK_LAYOUT: dict[str, int] = {"shipping_warehouse_code": 1, **_FALLBACK_LAYOUT}

_TITLE_REPLACEMENTS = (("（", "("), ("）", ")"), ("[", "("), ("]", ")"))
_TITLE_STRIP = ("，", ",", "。", "/", "\\", "-", "_", ":", "：", "\n", " ")


def normalize_title(raw: str | None) -> str:
    title = (raw or "").strip()
    for old, new in _TITLE_REPLACEMENTS:
        title = title.replace(old, new)
    for char in _TITLE_STRIP:
        title = title.replace(char, "")
    return title


@dataclass
class ColumnIndex:
    columns: dict[str, int] = field(default_factory=dict)

    def position(self, name: str) -> int | None:
        return self.columns.get(name)

    def value(self, row: Sequence[str], name: str) -> str:
        col = self.columns.get(name)
        if col is None or col >= len(row):
            return ""
        return (row[col] or "").strip()

    def values(self, row: Sequence[str]) -> dict[str, str]:
        return {name: self.value(row, name) for name in self.columns}

    def looks_like_header(self) -> bool:
        hits = sum(1 for name in HEADER_ANCHORS if name in self.columns)
        return hits >= HEADER_ANCHOR_THRESHOLD

    def with_fallback(self, order_type: str) -> ColumnIndex:
        layout = _PLATFORM_FALLBACK_LAYOUT if order_type == ORDER_TYPE_PLATFORM else _FALLBACK_LAYOUT
        merged = dict(self.columns)
        for name, col in layout.items():
            merged.setdefault(name, col)
        return ColumnIndex(merged)

    def missing_required(self, order_type: str) -> list[str]:
        required = REQUIRED_COLUMNS
        if order_type == ORDER_TYPE_PLATFORM:
            required = REQUIRED_COLUMNS + PLATFORM_REQUIRED_COLUMNS
        return [label for name, label in required if name not in self.columns]


@dataclass(frozen=True)
class HeaderMatch:
    index: ColumnIndex
    # 0-based position of the header row; data starts right after it.
    row_pos: int
    found: bool
    missing: list[str]


def detect_columns(header: Sequence[str | None]) -> ColumnIndex:
    columns: dict[str, int] = {}
    for col, cell in enumerate(header):
        raw = (cell or "").strip()
        if not raw or raw.startswith("#"):
            continue
        title = normalize_title(raw)
        lower = title.lower()
        for alias in COLUMN_ALIASES:
            if alias.field in columns:
                continue
            if alias.matches(title, lower):
                columns[alias.field] = col
                break
    return ColumnIndex(columns)


def resolve_header(rows: Sequence[Sequence[str]], order_type: str) -> HeaderMatch:
    """
    Find the first header-like row and build the column index from it.

    When no row qualifies, the first row is treated as the header and the
    positional template layout fills whatever it did not resolve.
    """
    for pos, row in enumerate(rows):
        detected = detect_columns(row)
        if detected.looks_like_header():
            index = detected.with_fallback(order_type)
            return HeaderMatch(index, pos, True, index.missing_required(order_type))

    first = rows[0] if rows else []
    index = detect_columns(first).with_fallback(order_type)
    return HeaderMatch(index, 0, False, index.missing_required(order_type))
