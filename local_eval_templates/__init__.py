"""Track-1 evaluation form preview rendering."""

from local_eval_templates.eval_templates import (
    grade_legend,
    percent_label,
    render_track1_html,
    render_track1_markdown,
    save_track1_html,
    save_track1_markdown,
)

__all__ = [
    "grade_legend",
    "percent_label",
    "render_track1_html",
    "render_track1_markdown",
    "save_track1_html",
    "save_track1_markdown",
]
