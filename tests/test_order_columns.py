from __future__ import annotations

from app.models.order_info import ORDER_TYPE_FACTORY, ORDER_TYPE_PLATFORM
from app.services.order_columns import detect_columns, normalize_title, resolve_header
from app.services.order_export_service import FACTORY_HEADERS, PLATFORM_HEADERS


def test_normalize_title_strips_punctuation_and_unifies_brackets():
    assert normalize_title(" 用户地址 1（必填）") == "用户地址1(必填)"
    assert normalize_title("GSP-订单号") == "GSP订单号"
    assert normalize_title(None) == ""


def test_export_headers_resolve_every_column():
    index = detect_columns(PLATFORM_HEADERS)

    assert index.position("gsp_order_no") == 0
    assert index.position("shipping_warehouse_code") == 1
    assert index.position("platform_sku") == 8
    assert index.position("platform_skc") == 9
    assert index.position("special_product_note") == 12
    assert index.position("expected_fulfillment_qty") == 13
    assert index.position("email") == 25
    assert index.missing_required(ORDER_TYPE_PLATFORM) == []


def test_factory_headers_carry_creation_time_and_currency():
    index = detect_columns(FACTORY_HEADERS)

    assert index.position("order_created_at") == 1
    assert index.position("currency_code") == 13
    assert index.missing_required(ORDER_TYPE_FACTORY) == []


def test_platform_sku_title_never_claims_skc_column():
    index = detect_columns(["平台SKC", "平台SKU"])

    assert index.position("platform_skc") == 0
    assert index.position("platform_sku") == 1


def test_english_titles_match_by_token():
    index = detect_columns(["GSP Order ID", "Shop", "Owner", "Product Name", "Spec", "Email Address"])

    assert index.position("gsp_order_no") == 0
    assert index.position("shop_code") == 1
    assert index.position("owner_name") == 2
    assert index.position("product_name") == 3
    assert index.position("spec") == 4
    assert index.position("email") == 5


def test_first_matching_column_wins_and_comment_columns_are_skipped():
    index = detect_columns(["#备注", "店铺编号", "店铺编号(旧)"])

    assert index.position("shop_code") == 1


def test_header_is_found_below_title_rows():
    rows = [
        ["运营提交表格"],
        [],
        PLATFORM_HEADERS,
        ["SH1001", "WH01"],
    ]
    match = resolve_header(rows, ORDER_TYPE_PLATFORM)

    assert match.found
    assert match.row_pos == 2
    assert match.missing == []


def test_missing_required_columns_are_listed_by_label():
    header = [title for title in PLATFORM_HEADERS if title not in ("用户邮箱", "邮编")]
    match = resolve_header([header], ORDER_TYPE_PLATFORM)

    assert match.found
    assert match.missing == ["邮编", "用户邮箱"]


def test_positional_layout_fills_unresolved_columns():
    rows = [["SH1001", "WH01", "S01", "张三", "挂画", "30*40", "ITEM123"]]
    match = resolve_header(rows, ORDER_TYPE_PLATFORM)

    assert not match.found
    assert match.row_pos == 0
    assert match.index.position("shipping_warehouse_code") == 1
    assert match.index.position("shop_code") == 2
    assert match.index.position("item_no") == 6
    assert "GSP订单号" in match.missing


def test_factory_layout_has_no_warehouse_column():
    match = resolve_header([["x"]], ORDER_TYPE_FACTORY)

    assert match.index.position("shipping_warehouse_code") is None
    assert match.index.position("expected_fulfillment_qty") == 13
