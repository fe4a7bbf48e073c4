"""Component-based HTML report system for phase output.

Produces a self-contained HTML file with APA-style tables, embedded plots and a
navigable table of contents. Each phase (simulate, fit, ppc) adds sections
independently.

Three section types:
  - TableSection: Pre-rendered HTML (from great_tables via make_gt()).
  - FigureSection: Base64-embedded PNG read from disk.
  - TextSection: Raw HTML block.

ReportBuilder assembles sections into a single HTML file via a Jinja2 template.

Usage:
    from analysis.report import ReportBuilder, TableSection, FigureSection, make_gt

    report = ReportBuilder(title="PPC Report", scenario="student_t")
    report.add(TableSection(id="tail-check", title="Tail Check", html=make_gt(df)))
    report.add(FigureSection.from_file("density", "Density Overlay", path))
    report.write(Path("report.html"))
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from jinja2 import Environment

from predcheck.config import TIMEZONE

# Background for rows a table marks as failing a check
FLAG_FILL = "#fde2e2"

# ── Section Types ─────────────────────────────────────────────────────────────


def _wrap(kind: str, id: str, body: str, caption: str | None) -> str:
    parts = [f'<div class="{kind}-container" id="{id}">', body]
    if caption:
        parts.append(f'<p class="caption">{caption}</p>')
    parts.append("</div>")
    return "\n".join(parts)


@dataclass(frozen=True)
class TableSection:
    """A table section containing pre-rendered HTML (typically from great_tables)."""

    id: str
    title: str
    html: str
    caption: str | None = None

    def render(self) -> str:
        return _wrap("table", self.id, self.html, self.caption)


@dataclass(frozen=True)
class FigureSection:
    """A figure section with a base64-embedded PNG image."""

    id: str
    title: str
    image_data: str  # base64-encoded PNG
    caption: str | None = None

    @classmethod
    def from_file(
        cls,
        id: str,
        title: str,
        path: Path,
        caption: str | None = None,
    ) -> FigureSection:
        """Create a FigureSection from a PNG file on disk."""
        b64 = base64.b64encode(path.read_bytes()).decode("ascii")
        return cls(id=id, title=title, image_data=b64, caption=caption)

    def render(self) -> str:
        img = f'<img src="data:image/png;base64,{self.image_data}" alt="{self.title}" />'
        return _wrap("figure", self.id, img, self.caption)


@dataclass(frozen=True)
class TextSection:
    """A raw HTML text block."""

    id: str
    title: str
    html: str
    caption: str | None = None

    def render(self) -> str:
        return _wrap("text", self.id, self.html, self.caption)


SectionType = TableSection | FigureSection | TextSection


# ── make_gt Helper ────────────────────────────────────────────────────────────


def make_gt(
    df: object,
    title: str | None = None,
    subtitle: str | None = None,
    column_labels: dict[str, str] | None = None,
    number_formats: dict[str, str] | None = None,
    source_note: str | None = None,
    flag_column: str | None = None,
) -> str:
    """Build a great_tables GT object with APA styling and return its HTML.

    Args:
        df: A polars DataFrame to display.
        title: Table title (bold, above table).
        subtitle: Subtitle (below title, smaller).
        column_labels: Mapping of column name -> display label.
        number_formats: Mapping of column name -> Python format spec (e.g. ".3f", ",.0f").
        source_note: Footnote text below the table.
        flag_column: Boolean column marking rows to shade (failed checks, uncovered
            truths, extreme p-values). The column itself is hidden.

    Raises:
        TypeError: If df is not a polars DataFrame.
        ValueError: If flag_column is not a column of df.
    """
    import great_tables as gt_mod
    import polars as pl

    if not isinstance(df, pl.DataFrame):
        msg = f"make_gt expects a polars DataFrame, got {type(df).__name__}"
        raise TypeError(msg)

    flagged: list[int] = []
    if flag_column is not None:
        if flag_column not in df.columns:
            msg = f"flag_column {flag_column!r} not in table columns {df.columns}"
            raise ValueError(msg)
        flagged = [i for i, hit in enumerate(df[flag_column].to_list()) if hit]

    tbl = gt_mod.GT(df)

    if title:
        tbl = tbl.tab_header(title=title, subtitle=subtitle)
    if column_labels:
        tbl = tbl.cols_label(**column_labels)
    for col_name, fmt in (number_formats or {}).items():
        if col_name in df.columns:
            tbl = tbl.fmt_number(
                columns=col_name,
                decimals=_decimals_from_fmt(fmt),
                use_seps="," in fmt,
            )
    if source_note:
        tbl = tbl.tab_source_note(source_note)
    if flag_column is not None:
        tbl = tbl.cols_hide(columns=flag_column)
        if flagged:
            tbl = tbl.tab_style(
                style=[gt_mod.style.fill(color=FLAG_FILL), gt_mod.style.text(weight="bold")],
                locations=gt_mod.loc.body(rows=flagged),
            )

    rule = {"style": "solid", "color": "#000000"}
    tbl = tbl.tab_options(
        table_border_top_style=rule["style"],
        table_border_top_width="2px",
        table_border_top_color=rule["color"],
        table_border_bottom_style=rule["style"],
        table_border_bottom_width="2px",
        table_border_bottom_color=rule["color"],
        column_labels_border_bottom_style=rule["style"],
        column_labels_border_bottom_width="1px",
        column_labels_border_bottom_color=rule["color"],
        table_width="100%",
        table_font_size="14px",
        heading_title_font_size="16px",
        source_notes_font_size="11px",
    )

    return tbl.as_raw_html(inline_css=True)


def _decimals_from_fmt(fmt: str) -> int:
    """Extract decimal count from a format spec like '.3f' or ',.1f'."""
    m = re.search(r"\.(\d+)f", fmt)
    return int(m.group(1)) if m else 0


# ── ReportBuilder ─────────────────────────────────────────────────────────────


@dataclass
class ReportBuilder:
    """Assembles report sections into a single self-contained HTML file."""

    title: str = "Analysis Report"
    scenario: str = ""
    git_hash: str = ""
    _sections: list[SectionType] = field(default_factory=list)

    def add(self, section: SectionType) -> None:
        """Append a section to the report."""
        self._sections.append(section)

    @property
    def has_sections(self) -> bool:
        return len(self._sections) > 0

    @property
    def n_sections(self) -> int:
        return len(self._sections)

    def render(self) -> str:
        """Render all sections into a complete HTML document."""
        sections = [
            {
                "number": i,
                "id": section.id,
                "title": section.title,
                "content": section.render(),
            }
            for i, section in enumerate(self._sections, 1)
        ]
        now = datetime.now(ZoneInfo(TIMEZONE)).strftime("%Y-%m-%d %H:%M %Z")
        return _get_template().render(
            title=self.title,
            scenario=self.scenario,
            git_hash=self.git_hash,
            generated_at=now,
            sections=sections,
            css=REPORT_CSS,
        )

    def write(self, path: Path) -> None:
        """Render and write the HTML report to disk."""
        path.write_text(self.render(), encoding="utf-8")


# ── Template & CSS ────────────────────────────────────────────────────────────


REPORT_CSS = """\
* { box-sizing: border-box; margin: 0; padding: 0; }
body {
  font-family: "Segoe UI", Tahoma, Geneva, Verdana, sans-serif;
  max-width: 1100px;
  margin: 0 auto;
  padding: 24px 32px;
  color: #1a1a1a;
  line-height: 1.5;
}
header { border-bottom: 3px solid #1a1a1a; padding-bottom: 12px; margin-bottom: 24px; }
header h1 { font-size: 24px; margin-bottom: 4px; }
header .meta { font-size: 13px; color: #555; }
header .meta span { margin-right: 16px; }
nav.toc {
  background: #f5f5f5;
  border: 1px solid #ddd;
  border-radius: 4px;
  padding: 16px 20px;
  margin-bottom: 32px;
}
nav.toc h2 { font-size: 15px; margin-bottom: 8px; }
nav.toc ol { padding-left: 20px; }
nav.toc li { font-size: 13px; }
nav.toc a { color: #0066cc; text-decoration: none; }
section.report-section { margin-bottom: 36px; }
section.report-section h2 {
  font-size: 18px;
  border-bottom: 2px solid #333;
  padding-bottom: 4px;
  margin-bottom: 16px;
}
.section-number { color: #888; font-weight: 400; margin-right: 6px; }
.table-container { overflow-x: auto; margin-bottom: 12px; }
.figure-container {
  text-align: center;
  margin: 12px 0;
  padding: 8px;
  border: 1px solid #e0e0e0;
  background: #fafafa;
}
.figure-container img { max-width: 100%; height: auto; }
.text-container { margin-bottom: 12px; }
.text-container ul { padding-left: 24px; }
.caption { font-size: 12px; color: #666; font-style: italic; margin-top: 6px; }
footer {
  margin-top: 48px;
  padding-top: 12px;
  border-top: 1px solid #ccc;
  font-size: 11px;
  color: #888;
  text-align: center;
}"""

REPORT_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{{ title }}</title>
  <style>{{ css }}</style>
</head>
<body>
  <header>
    <h1>{{ title }}</h1>
    <div class="meta">
      {% if scenario %}<span>Scenario: <strong>{{ scenario }}</strong></span>{% endif %}
      <span>Generated: {{ generated_at }}</span>
      {% if git_hash and git_hash != "unknown" %}\
<span>Git: <code>{{ git_hash[:8] }}</code></span>{% endif %}
    </div>
  </header>

  <nav class="toc">
    <h2>Contents</h2>
    <ol>
      {% for s in sections %}<li><a href="#{{ s.id }}">{{ s.title }}</a></li>{% endfor %}
    </ol>
  </nav>

  {% for s in sections %}
  <section class="report-section" id="{{ s.id }}">
    <h2><span class="section-number">{{ s.number }}.</span> {{ s.title }}</h2>
    {{ s.content }}
  </section>
  {% endfor %}

  <footer>{{ title }} &mdash; {{ generated_at }}</footer>
</body>
</html>"""


def _get_template():
    """Return a compiled Jinja2 Template."""
    return Environment(autoescape=False).from_string(REPORT_TEMPLATE)
