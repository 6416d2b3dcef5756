# local_eval_templates/eval_templates.py
"""Track-1 (performance form) preview rendering for ERP copy-paste.

The evaluation form itself lives in the ERP. These renderers only produce a
Markdown or HTML preview of the rows that would be appended to it, so users
can check every field before copying.

Handy for:
- the ``track1`` CLI command in main.py
- unit tests
- manual preview of promoted candidates / sub-task cards
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from schemas.internal_schema import Track1Item
from functions.utils.evaluation_rules import GRADE_ORDER, GRADE_SCORES

# ---------------------------------------------------------------------------
# Jinja2 environment
# ---------------------------------------------------------------------------

_TEMPLATES_DIR = Path(__file__).with_name("templates")

MARKDOWN_TEMPLATE = "track1_sheet.md.jinja2"
HTML_TEMPLATE = "track1_sheet.html.jinja2"


def percent_label(value: Any) -> str:
    """``100.0`` -> ``"100%"``; unset -> ``"-"``."""
    if value is None or value == "":
        return "-"
    try:
        return f"{float(value):g}%"
    except (TypeError, ValueError):
        return "-"


def _md_cell(value: Any) -> str:
    """One Markdown table cell: pipes escaped, newlines as <br>."""
    text = "" if value is None else str(value)
    text = text.replace("|", "\\|").replace("\r\n", "\n").strip()
    return text.replace("\n", "<br>") or "-"


def _lines(value: Any) -> list[str]:
    text = "" if value is None else str(value)
    return [ln.strip() for ln in text.replace("\r\n", "\n").split("\n") if ln.strip()]


_TEMPLATE_ENV = Environment(
    loader=FileSystemLoader(str(_TEMPLATES_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html", "html.jinja2")),
    trim_blocks=True,
    lstrip_blocks=True,
)
_TEMPLATE_ENV.filters["percent"] = percent_label
_TEMPLATE_ENV.filters["md_cell"] = _md_cell
_TEMPLATE_ENV.filters["lines"] = _lines


def grade_legend() -> list[dict[str, Any]]:
    return [{"grade": grade.value, "score": GRADE_SCORES[grade]} for grade in GRADE_ORDER]


def _context(items: Sequence[Track1Item], title: str, generated_at: datetime | None) -> dict[str, Any]:
    moment = generated_at or datetime.now(timezone.utc)
    weights = [item.sub_task_weight for item in items if item.sub_task_weight is not None]
    return {
        "title": title,
        "items": list(items),
        "grade_legend": grade_legend(),
        "generated_at_str": moment.strftime("%Y-%m-%d %H:%M UTC"),
        "sub_task_weight_total": sum(weights) if weights else None,
    }


# ---------------------------------------------------------------------------
# Public renderers
# ---------------------------------------------------------------------------


def render_track1_markdown(
    items: Iterable[Track1Item],
    title: str = "업적평가 입력 미리보기",
    generated_at: datetime | None = None,
) -> str:
    template = _TEMPLATE_ENV.get_template(MARKDOWN_TEMPLATE)
    return template.render(**_context(list(items), title, generated_at))


def render_track1_html(
    items: Iterable[Track1Item],
    title: str = "업적평가 입력 미리보기",
    generated_at: datetime | None = None,
) -> str:
    """HTML preview; every user-authored field is autoescaped."""
    template = _TEMPLATE_ENV.get_template(HTML_TEMPLATE)
    return template.render(**_context(list(items), title, generated_at))


def save_track1_markdown(items: Iterable[Track1Item], output_path: str) -> None:
    Path(output_path).write_text(render_track1_markdown(items), encoding="utf-8")


def save_track1_html(items: Iterable[Track1Item], output_path: str) -> None:
    Path(output_path).write_text(render_track1_html(items), encoding="utf-8")
