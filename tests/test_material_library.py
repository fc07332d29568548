from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import select

from app.models.material import MaterialAsset, MaterialFolder
from app.models.order_attachment import OrderAttachment
from app.models.order_info import OrderInfo
from app.services.material_service import (
    SHAPE_EXTRA_TALL,
    SHAPE_EXTRA_WIDE,
    SHAPE_SQUARE,
    SHAPE_TALL,
    SHAPE_WIDE,
    generate_material_code,
    material_dimensions,
    material_shape,
)


@pytest.mark.parametrize(
    "width,height,expected",
    [
        (500, 100, SHAPE_EXTRA_WIDE),
        (499, 100, SHAPE_WIDE),
        (112, 100, SHAPE_WIDE),
        (100, 100, SHAPE_SQUARE),
        (91, 100, SHAPE_SQUARE),
        (90, 100, SHAPE_TALL),
        (56, 100, SHAPE_TALL),
        (55, 100, SHAPE_EXTRA_TALL),
        (1, 1000, SHAPE_EXTRA_TALL),
    ],
)
def test_shape_buckets(width, height, expected):
    assert material_shape(width, height) == expected


def test_shape_is_monotonic_in_aspect_ratio():
    order = [SHAPE_EXTRA_TALL, SHAPE_TALL, SHAPE_SQUARE, SHAPE_WIDE, SHAPE_EXTRA_WIDE]
    ranks = [order.index(material_shape(width, 100)) for width in range(1, 800)]
    assert ranks == sorted(ranks)


def test_zero_dimensions_have_no_shape():
    assert material_shape(0, 100) == ""
    assert material_shape(100, 0) == ""
    assert material_dimensions(0, 100) == ""
    assert material_dimensions(1920, 1080) == "1920 x 1080"


def test_generated_codes_follow_the_pattern():
    code = generate_material_code(datetime(2024, 5, 1, 8, 30, 15))
    assert code.startswith("MAT20240501T083015")
    assert len(code) == len("MAT20240501T083015") + 8


def _create_folder(client, headers, name, parent_id=None):
    r = client.post("/api/material-folders", headers=headers, json={"name": name, "parent_id": parent_id})
    assert r.status_code == 201, r.text
    return r.json()


def _paths(db_session) -> dict[str, str]:
    db_session.expire_all()
    return {f.name: f.path for f in db_session.scalars(select(MaterialFolder))}


def test_folder_rename_cascades_to_descendants(client, db_session, admin_headers):
    root = _create_folder(client, admin_headers, "海报")
    child = _create_folder(client, admin_headers, "横版", root["id"])
    _create_folder(client, admin_headers, "大尺寸", child["id"])
    _create_folder(client, admin_headers, "海报2")

    r = client.put(f"/api/material-folders/{root['id']}", headers=admin_headers, json={"name": "挂画"})

    assert r.status_code == 200, r.text
    assert _paths(db_session) == {
        "挂画": "挂画",
        "横版": "挂画/横版",
        "大尺寸": "挂画/横版/大尺寸",
        "海报2": "海报2",
    }


def test_folder_rename_to_same_name_changes_nothing(client, db_session, admin_headers):
    root = _create_folder(client, admin_headers, "海报")
    _create_folder(client, admin_headers, "横版", root["id"])
    before = _paths(db_session)

    r = client.put(f"/api/material-folders/{root['id']}", headers=admin_headers, json={"name": "海报"})

    assert r.status_code == 200
    assert _paths(db_session) == before


def test_folder_move_rules(client, db_session, admin_headers):
    root = _create_folder(client, admin_headers, "海报")
    child = _create_folder(client, admin_headers, "横版", root["id"])
    other = _create_folder(client, admin_headers, "其他")

    into_self = client.put(f"/api/material-folders/{root['id']}", headers=admin_headers, json={"parent_id": root["id"]})
    into_child = client.put(f"/api/material-folders/{root['id']}", headers=admin_headers, json={"parent_id": child["id"]})
    moved = client.put(f"/api/material-folders/{root['id']}", headers=admin_headers, json={"parent_id": other["id"]})

    assert into_self.status_code == 400
    assert into_self.json()["detail"] == "父文件夹不能为自身"
    assert into_child.status_code == 400
    assert into_child.json()["detail"] == "不能将文件夹移动到自己的子级"
    assert moved.status_code == 200
    assert _paths(db_session)["横版"] == "其他/海报/横版"

    to_root = client.put(f"/api/material-folders/{root['id']}", headers=admin_headers, json={"parent_id": 0})
    assert to_root.json()["path"] == "海报"
    assert to_root.json()["parent_id"] is None


def test_folder_tree_and_flat_listing(client, db_session, admin_headers):
    root = _create_folder(client, admin_headers, "海报")
    _create_folder(client, admin_headers, "横版", root["id"])

    tree = client.get("/api/material-folders", headers=admin_headers).json()
    flat = client.get("/api/material-folders?flat=1", headers=admin_headers).json()

    assert [node["name"] for node in tree] == ["海报"]
    assert [node["name"] for node in tree[0]["children"]] == ["横版"]
    assert [node["path"] for node in flat] == ["海报", "海报/横版"]


def test_folder_validation_and_delete_guards(client, db_session, admin_headers):
    blank = client.post("/api/material-folders", headers=admin_headers, json={"name": "  "})
    orphan = client.post("/api/material-folders", headers=admin_headers, json={"name": "x", "parent_id": 999})
    assert blank.json()["detail"] == "文件夹名称不能为空"
    assert orphan.json()["detail"] == "父文件夹不存在"

    root = _create_folder(client, admin_headers, "海报")
    child = _create_folder(client, admin_headers, "横版", root["id"])
    db_session.add(MaterialAsset(code="M1", file_name="m1.png", folder_id=child["id"]))
    db_session.commit()

    with_children = client.delete(f"/api/material-folders/{root['id']}", headers=admin_headers)
    with_materials = client.delete(f"/api/material-folders/{child['id']}", headers=admin_headers)

    assert with_children.json()["detail"] == "存在子文件夹，无法删除"
    assert with_materials.json()["detail"] == "文件夹下存在素材，无法删除"


def test_material_upload_reads_dimensions_and_serves_file(
    client, db_session, admin_headers, image_bytes, stored_files
):
    data = image_bytes("PNG", (100, 500))

    r = client.post(
        "/api/materials/upload",
        headers=admin_headers,
        files={"file": ("poster.png", data, "image/png")},
        data={"title": "竖版海报"},
    )

    assert r.status_code == 201, r.text
    body = r.json()
    assert body["code"].startswith("MAT")
    assert body["title"] == "竖版海报"
    assert body["dimensions"] == "100 x 500"
    assert body["shape"] == SHAPE_EXTRA_TALL
    assert body["format"] == "png"
    assert body["preview_url"] == f"/api/materials/{body['id']}/download?disposition=inline"
    assert len(stored_files()) == 1

    download = client.get(body["download_url"], headers=admin_headers)
    assert download.status_code == 200
    assert download.content == data
    assert download.headers["content-disposition"].startswith("attachment")


def test_material_upload_rejects_non_images(client, admin_headers, stored_files):
    r = client.post(
        "/api/materials/upload",
        headers=admin_headers,
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    broken = client.post(
        "/api/materials/upload",
        headers=admin_headers,
        files={"file": ("broken.png", b"not really a png", "image/png")},
    )

    assert r.status_code == 400
    assert broken.status_code == 400
    assert broken.json()["detail"] == "无法识别图片尺寸，确认文件是否为有效图片"
    assert stored_files() == []


def test_material_update_recomputes_dimensions(client, db_session, admin_headers):
    created = client.post(
        "/api/materials",
        headers=admin_headers,
        json={"file_name": "ITEM1.png", "width": 100, "height": 100},
    ).json()
    assert created["title"] == "ITEM1"
    assert created["shape"] == SHAPE_SQUARE

    r = client.put(f"/api/materials/{created['id']}", headers=admin_headers, json={"width": 600})

    assert r.status_code == 200
    assert r.json()["width"] == 600
    assert r.json()["height"] == 100
    assert r.json()["dimensions"] == "600 x 100"
    assert r.json()["shape"] == SHAPE_EXTRA_WIDE


def test_material_codes_are_unique(client, admin_headers):
    first = client.post("/api/materials", headers=admin_headers, json={"file_name": "a.png", "code": "C1"})
    second = client.post("/api/materials", headers=admin_headers, json={"file_name": "b.png", "code": "C1"})

    assert first.status_code == 201
    assert second.status_code == 400
    assert second.json()["detail"] == "素材编号已存在"


def test_material_listing_counts_linked_orders_and_filters(client, db_session, admin_headers):
    poster = MaterialAsset(code="P1", file_name="poster.png", title="海报", shape=SHAPE_WIDE, format="png", created_by=1)
    other = MaterialAsset(code="O1", file_name="other.jpg", title="其他", shape=SHAPE_TALL, format="jpg", created_by=2)
    db_session.add_all([poster, other])
    db_session.flush()
    for no in ("SH1", "SH2"):
        order = OrderInfo(gsp_order_no=no, order_type="platform", order_created_at=datetime(2024, 1, 1))
        db_session.add(order)
        db_session.flush()
        db_session.add(
            OrderAttachment(
                order_id=order.id,
                file_type="material_image",
                file_name="poster.png",
                file_path="materials/p1/poster.png",
                material_id=poster.id,
            )
        )
    db_session.commit()

    everything = client.get("/api/materials", headers=admin_headers).json()
    by_keyword = client.get("/api/materials?keyword=海报", headers=admin_headers).json()
    by_shape = client.get("/api/materials", headers=admin_headers, params={"shape": SHAPE_TALL}).json()
    own_only = client.get("/api/materials", headers={"X-User-Id": "2", "X-Role-Id": "3"}).json()

    assert everything["total"] == 2
    counts = {m["code"]: m["order_count"] for m in everything["materials"]}
    assert counts == {"P1": 2, "O1": 0}
    assert [m["code"] for m in by_keyword["materials"]] == ["P1"]
    assert [m["code"] for m in by_shape["materials"]] == ["O1"]
    assert [m["code"] for m in own_only["materials"]] == ["O1"]


def test_material_in_use_cannot_be_deleted(client, db_session, admin_headers, image_bytes, stored_files):
    uploaded = client.post(
        "/api/materials/upload",
        headers=admin_headers,
        files={"file": ("ITEM123.png", image_bytes(), "image/png")},
    ).json()
    order = OrderInfo(gsp_order_no="SH1", order_type="platform", order_created_at=datetime(2024, 1, 1))
    db_session.add(order)
    db_session.flush()
    attachment = OrderAttachment(
        order_id=order.id,
        file_type="material_image",
        file_name="ITEM123.png",
        file_path=uploaded["file_path"],
        material_id=uploaded["id"],
    )
    db_session.add(attachment)
    db_session.commit()

    refused = client.delete(f"/api/materials/{uploaded['id']}", headers=admin_headers)
    assert refused.status_code == 400
    assert refused.json()["detail"] == "素材已被订单引用，无法删除"

    db_session.delete(attachment)
    db_session.commit()
    removed = client.delete(f"/api/materials/{uploaded['id']}", headers=admin_headers)
    assert removed.status_code == 200
    assert stored_files() == []


def test_non_owner_cannot_read_material(client, db_session):
    material = MaterialAsset(code="X1", file_name="x.png", created_by=3)
    db_session.add(material)
    db_session.commit()

    r = client.get(f"/api/materials/{material.id}", headers={"X-User-Id": "4", "X-Role-Id": "2"})

    assert r.status_code == 403
