from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.models.dictionary import SHIPPING_WAREHOUSE_DICT, DictItem, DictType
from app.models.material import MaterialAsset
from app.models.order_attachment import FILE_TYPE_MATERIAL_IMAGE, OrderAttachment
from app.models.order_info import OrderInfo
from app.models.system_config import SystemConfig
from app.services import order_upsert_service
from app.services.order_export_service import FACTORY_HEADERS, PLATFORM_HEADERS

PLATFORM_IMPORT_HEADERS = PLATFORM_HEADERS + ["订单创建时间"]


def _platform_row(**overrides):
    values = {
        "GSP订单号": "SH1001",
        "发货仓库": "WH01",
        "店铺编号": "S01",
        "负责人": "张三",
        "商品名称": "挂画",
        "规格": "30X40",
        "货号": "ITEM123",
        "卖家SKU": "SKU-1",
        "平台SKU": "PSKU-1",
        "平台SKC": "PSKC-1",
        "平台SPU": "PSPU-1",
        "商品价格": 10,
        "特殊产品备注": "",
        "应履约件数": 2,
        "订单创建时间": "2024-05-01 08:30:00",
    }
    values.update(overrides)
    return [values.get(title, "") for title in PLATFORM_IMPORT_HEADERS]


def _factory_row(**overrides):
    values = {
        "GSP订单号": "FA2001",
        "订单创建时间": "2024-05-02 09:00:00",
        "店铺编号": "S02",
        "负责人": "李四",
        "商品名称": "海报",
        "规格": "50*70",
        "货号": "ITEM200",
        "卖家SKU": "SKU-2",
        "平台SKU": "PSKU-2",
        "平台SKC": "PSKC-2",
        "平台SPU": "PSPU-2",
        "商品价格": 25.5,
        "币种": "USD",
        "邮编": "90001",
        "国家": "US",
        "省份": "CA",
        "城市": "LA",
        "用户全称": "John Smith",
        "用户姓氏": "Smith",
        "用户名字": "John",
        "手机号": "123456",
        "用户邮箱": "john@example.com",
    }
    values.update(overrides)
    return [values.get(title, "") for title in FACTORY_HEADERS]


def _post_import(client, headers, payload: bytes):
    return client.post(
        "/api/orders/import",
        headers=headers,
        files={
            "file": (
                "orders.xlsx",
                payload,
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )
        },
    )


def _order_count(db_session) -> int:
    db_session.expire_all()
    return db_session.scalar(select(func.count(OrderInfo.id)))


def test_platform_row_is_imported_and_normalized(client, db_session, admin_headers, workbook_bytes):
    wt = DictType(code=SHIPPING_WAREHOUSE_DICT, name="发货仓库")
    db_session.add(wt)
    db_session.flush()
    db_session.add(DictItem(type_id=wt.id, label="wh01", value="WH01"))
    db_session.add(SystemConfig(config_key="default_address", config_value="深圳市南山区"))
    db_session.commit()

    payload = workbook_bytes({"平台面单": [PLATFORM_IMPORT_HEADERS, _platform_row()]})
    r = _post_import(client, admin_headers, payload)

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "成功导入1条订单"
    assert body["imported"] == 1
    assert body["warnings"] == []

    db_session.expire_all()
    order = db_session.scalar(select(OrderInfo))
    assert order.gsp_order_no == "SH1001"
    assert order.order_type == "platform"
    assert order.shipping_warehouse_code == "WH01"
    assert order.spec == "30*40"
    assert order.expected_revenue == 20.0
    assert order.item_count == 2
    assert order.address_line1 == "深圳市南山区"
    assert order.order_created_at == datetime(2024, 5, 1, 8, 30)
    assert order.created_by == 1


def test_reimport_updates_in_place_and_warns_about_duplicates(
    client, db_session, admin_headers, workbook_bytes
):
    payload = workbook_bytes({"平台面单": [PLATFORM_IMPORT_HEADERS, _platform_row()]})
    assert _post_import(client, admin_headers, payload).status_code == 200

    changed = workbook_bytes(
        {"平台面单": [PLATFORM_IMPORT_HEADERS, _platform_row(商品名称="新挂画")]}
    )
    r = _post_import(client, admin_headers, changed)

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["imported"] == 1
    assert body["warnings"][0]["error_code"] == "duplicate"
    assert "平台面单[第2行]已有类似记录，请检查!" in body["warning_message"]
    assert _order_count(db_session) == 1
    assert db_session.scalar(select(OrderInfo.product_name)) == "新挂画"


def test_factory_sheet_with_missing_email_rejects_everything(
    client, db_session, admin_headers, workbook_bytes
):
    payload = workbook_bytes(
        {
            "平台面单": [PLATFORM_IMPORT_HEADERS, _platform_row()],
            "工厂物流": [FACTORY_HEADERS, _factory_row(用户邮箱="")],
        }
    )
    r = _post_import(client, admin_headers, payload)

    assert r.status_code == 400
    detail = r.json()["detail"]
    assert detail["message"] == "工厂物流：用户邮箱(2)为空"
    assert detail["issues"] == [
        {"sheet": "工厂物流", "row": 2, "field": "用户邮箱", "error_code": "required"}
    ]
    assert _order_count(db_session) == 0


def test_factory_sheet_keeps_creation_time_and_currency(
    client, db_session, admin_headers, workbook_bytes
):
    payload = workbook_bytes({"工厂物流": [FACTORY_HEADERS, _factory_row()]})
    r = _post_import(client, admin_headers, payload)

    assert r.status_code == 200, r.text
    db_session.expire_all()
    order = db_session.scalar(select(OrderInfo))
    assert order.order_type == "factory"
    assert order.order_created_at == datetime(2024, 5, 2, 9, 0)
    assert order.currency_code == "USD"
    assert order.product_price == 25.5


def test_missing_columns_are_reported_against_the_header_row(
    client, db_session, admin_headers, workbook_bytes
):
    header = [title for title in PLATFORM_IMPORT_HEADERS if title != "用户邮箱"]
    payload = workbook_bytes({"平台面单": [["订单导入"], header, ["SH1001"]]})
    r = _post_import(client, admin_headers, payload)

    assert r.status_code == 400
    assert r.json()["detail"]["message"] == "平台面单：用户邮箱(2)缺少列"
    assert _order_count(db_session) == 0


def test_workbook_without_data_rows_is_rejected(client, admin_headers, workbook_bytes):
    payload = workbook_bytes({"平台面单": [PLATFORM_IMPORT_HEADERS]})
    r = _post_import(client, admin_headers, payload)

    assert r.status_code == 400
    assert r.json()["detail"] == "Excel 中未找到可导入的数据"


def test_unreadable_payload_is_rejected(client, admin_headers):
    r = _post_import(client, admin_headers, b"not a workbook")

    assert r.status_code == 400
    assert r.json()["detail"].startswith("无法解析Excel文件")


def test_import_links_matching_library_material(client, db_session, admin_headers, workbook_bytes):
    material = MaterialAsset(
        code="ITEM123",
        file_name="ITEM123.png",
        title="ITEM123",
        storage="local",
        file_path="materials/item123/20240501T000000_item123.png",
        created_by=1,
    )
    db_session.add(material)
    db_session.commit()

    payload = workbook_bytes({"平台面单": [PLATFORM_IMPORT_HEADERS, _platform_row()]})
    r = _post_import(client, admin_headers, payload)

    assert r.status_code == 200, r.text
    db_session.expire_all()
    attachment = db_session.scalar(select(OrderAttachment))
    assert attachment.file_type == FILE_TYPE_MATERIAL_IMAGE
    assert attachment.material_id == material.id
    assert attachment.file_path == material.file_path
    assert not attachment.owns_blob


def test_factory_orders_link_materials_by_order_number(
    client, db_session, admin_headers, workbook_bytes
):
    db_session.add(
        MaterialAsset(
            code="MAT-FA2001",
            file_name="fa2001.jpg",
            storage="local",
            file_path="materials/fa2001/x.jpg",
        )
    )
    db_session.commit()

    payload = workbook_bytes({"工厂物流": [FACTORY_HEADERS, _factory_row()]})
    assert _post_import(client, admin_headers, payload).status_code == 200

    db_session.expire_all()
    assert db_session.scalar(select(func.count(OrderAttachment.id))) == 1


def test_rows_without_creation_time_never_overwrite_existing_orders(
    client, db_session, admin_headers, workbook_bytes
):
    db_session.add(
        OrderInfo(
            gsp_order_no="SH1001",
            order_type="platform",
            order_created_at=datetime(2024, 1, 1),
            shipping_warehouse_code="WH01",
            shop_code="S01",
            owner_name="张三",
            product_name="挂画",
            spec="30*40",
            item_no="ITEM_A",
            created_by=1,
        )
    )
    db_session.commit()

    row = _platform_row(货号="ITEM_B")[: len(PLATFORM_HEADERS)]
    r = _post_import(client, admin_headers, workbook_bytes({"平台面单": [PLATFORM_HEADERS, row]}))

    assert r.status_code == 200, r.text
    assert r.json()["imported"] == 1
    assert _order_count(db_session) == 2
    original = db_session.scalar(select(OrderInfo).where(OrderInfo.order_created_at == datetime(2024, 1, 1)))
    assert original.item_no == "ITEM_A"
    added = db_session.scalar(select(OrderInfo).where(OrderInfo.item_no == "ITEM_B"))
    assert added.order_created_at is not None
    assert added.order_created_at != datetime(2024, 1, 1)


def test_repeated_rows_in_one_sheet_are_flagged(client, db_session, admin_headers, workbook_bytes):
    rows = [PLATFORM_IMPORT_HEADERS, _platform_row(), _platform_row(), _platform_row(GSP订单号="SH1002")]
    payload = workbook_bytes({"平台面单": rows})
    r = _post_import(client, admin_headers, payload)

    assert r.status_code == 200, r.text
    body = r.json()
    assert len(body["warnings"]) == 1
    assert body["warnings"][0]["row"] == 3
    assert "平台面单[第3行]已有类似记录，请检查!" in body["warning_message"]
    assert _order_count(db_session) == 2


def test_material_without_file_does_not_block_the_import(client, db_session, admin_headers, workbook_bytes):
    db_session.add(MaterialAsset(code="ITEM123", file_name="ITEM123.png", title="ITEM123", file_path=""))
    db_session.commit()

    payload = workbook_bytes({"平台面单": [PLATFORM_IMPORT_HEADERS, _platform_row()]})
    r = _post_import(client, admin_headers, payload)

    assert r.status_code == 200, r.text
    assert r.json()["imported"] == 1
    assert _order_count(db_session) == 1
    assert db_session.scalar(select(func.count(OrderAttachment.id))) == 0


def test_database_error_while_linking_material_keeps_the_order(
    client, db_session, admin_headers, workbook_bytes, monkeypatch
):
    def _broken_link(*args, **kwargs):
        raise OperationalError("UPDATE order_attachment", {}, Exception("database is locked"))

    monkeypatch.setattr(order_upsert_service, "upsert_material_attachment", _broken_link)
    db_session.add(
        MaterialAsset(code="ITEM123", file_name="ITEM123.png", title="ITEM123", file_path="materials/item123/a.png")
    )
    db_session.commit()

    payload = workbook_bytes({"平台面单": [PLATFORM_IMPORT_HEADERS, _platform_row()]})
    r = _post_import(client, admin_headers, payload)

    assert r.status_code == 200, r.text
    assert _order_count(db_session) == 1
    assert db_session.scalar(select(OrderInfo.item_no)) == "ITEM123"
    assert db_session.scalar(select(func.count(OrderAttachment.id))) == 0
