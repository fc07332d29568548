from __future__ import annotations

from app.services.order_validation_errors import (
    ERR_CUSTOM,
    ERR_DICT,
    ERR_NUMERIC,
    ERR_REQUIRED,
    ERR_SPEC_FORMAT,
    ValidationIssue,
    format_validation_issues,
)


def test_rows_with_the_same_problem_collapse_into_one_group():
    issues = [
        ValidationIssue("工厂物流", 5, "用户邮箱", ERR_REQUIRED),
        ValidationIssue("工厂物流", 2, "用户邮箱", ERR_REQUIRED),
    ]

    assert format_validation_issues(issues) == "工厂物流：用户邮箱(2,5)为空"


def test_groups_and_sheets_are_rendered_in_stable_order():
    issues = [
        ValidationIssue("平台面单", 3, "规格", ERR_SPEC_FORMAT),
        ValidationIssue("平台面单", 4, "商品价格", ERR_NUMERIC),
        ValidationIssue("工厂物流", 2, "手机号", ERR_REQUIRED),
    ]

    assert format_validation_issues(issues) == (
        "工厂物流：手机号(2)为空; "
        "平台面单：商品价格(4)需为数字\n        规格(3) 格式应为 数字*数字"
    )


def test_dictionary_errors_keep_the_offending_value():
    issues = [
        ValidationIssue("平台面单", 2, "发货仓库", ERR_DICT, "WH09"),
        ValidationIssue("平台面单", 3, "发货仓库", ERR_DICT, "WH10"),
    ]

    message = format_validation_issues(issues)

    assert "发货仓库(2) 不在系统字典中[WH09]" in message
    assert "发货仓库(3) 不在系统字典中[WH10]" in message


def test_custom_errors_render_their_reason():
    issues = [ValidationIssue("平台面单", 1, "GSP订单号", ERR_CUSTOM, "缺少列")]

    assert format_validation_issues(issues) == "平台面单：GSP订单号(1)缺少列"


def test_no_issues_render_as_empty_text():
    assert format_validation_issues([]) == ""


def test_issue_payload_only_carries_reason_when_present():
    assert ValidationIssue("平台面单", 2, "规格", ERR_REQUIRED).to_dict() == {
        "sheet": "平台面单",
        "row": 2,
        "field": "规格",
        "error_code": "required",
    }
    assert ValidationIssue("平台面单", 2, "发货仓库", ERR_DICT, "WH09").to_dict()["reason"] == "WH09"
