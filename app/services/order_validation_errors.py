from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable

ERR_REQUIRED = "required"
ERR_NUMERIC = "numeric"
ERR_DICT = "dict"
ERR_HANZI = "hanzi"
ERR_SPEC_FORMAT = "spec_format"
ERR_CUSTOM = "custom"
ERR_DUPLICATE = "duplicate"
ERR_DUPLICATE_CHECK = "duplicate_check"

# Separator between grouped issues of one sheet; the frontend renders it verbatim.
_GROUP_SEPARATOR = "\n        "
_SHEET_SEPARATOR = "; "


@dataclass(frozen=True)
class ValidationIssue:
    sheet: str
    row: int
    field: str
    code: str
    extra: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sheet": self.sheet,
            "row": self.row,
            "field": self.field,
            "error_code": self.code,
        }
        if self.extra:
            payload["reason"] = self.extra
        return payload


def _suffix(code: str, extra: str) -> str:
    if code == ERR_REQUIRED:
        return "为空"
    if code == ERR_NUMERIC:
        return "需为数字"
    if code == ERR_DICT:
        return f" 不在系统字典中[{extra}]" if extra else " 不在系统字典中"
    if code == ERR_HANZI:
        return " 仅允许输入汉字"
    if code == ERR_SPEC_FORMAT:
        return " 格式应为 数字*数字"
    return extra or "有误"


def format_validation_issues(issues: Iterable[ValidationIssue]) -> str:
    """
    Render issues as one line per sheet.

    Issues sharing (field, code, extra) inside a sheet collapse into a single
    `field(rows)suffix` group, e.g. `用户邮箱(2,5)为空`. Sheets and groups are
    emitted in sorted order so the message is stable across runs.
    """
    grouped: dict[str, dict[tuple[str, str, str], list[int]]] = defaultdict(
        lambda: defaultdict(list)
    )
    for issue in issues:
        grouped[issue.sheet][(issue.field, issue.code, issue.extra)].append(issue.row)

    messages: list[str] = []
    for sheet in sorted(grouped):
        groups = grouped[sheet]
        parts: list[str] = []
        for key in sorted(groups, key=lambda k: "|".join(k)):
            field, code, extra = key
            rows = ",".join(str(row) for row in sorted(groups[key]))
            parts.append(f"{field}({rows}){_suffix(code, extra)}")
        messages.append(f"{sheet}：" + _GROUP_SEPARATOR.join(parts))
    return _SHEET_SEPARATOR.join(messages)
