"""
Plain-text migration report generation.

Renders a MigrationResult into the audit trail written next to the output
archive (``<output-stem>-report.txt``): status, versions, phase timings,
post-migration statistics, a per-script status table, import warnings,
warnings and errors.

Templating uses Jinja2 with the template in ``templates/report.txt.j2``.
Autoescaping is limited to html/xml templates, so the text template is
rendered verbatim.

Example:
    >>> result = migrate(config)
    >>> path = write_text_report(result, get_report_path(config.output_path))
    >>> "Status: Success" in path.read_text()
    True
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from ..utils.time import utc_timestamp
from .formatters import format_bytes, format_duration_ms

if TYPE_CHECKING:
    from ..pipeline.models import MigrationResult

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "report.txt.j2"

# Column widths of the per-script table
_ID_WIDTH = 34
_STATUS_WIDTH = 8


def _create_environment() -> Environment:
    template_dir = Path(__file__).parent / "templates"
    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["duration"] = format_duration_ms
    env.filters["bytes"] = lambda v: format_bytes(v) if v is not None else "unknown"
    return env


def _build_template_data(result: "MigrationResult") -> dict[str, Any]:
    report = result.report
    scripts = []
    timings: dict[str, int] = {}
    statistics = None
    import_warnings: list[str] = []
    import_error_count = 0
    sizes: dict[str, Any] = {}

    if report is not None:
        timings = report.phase_timings.to_dict()
        statistics = report.statistics.to_dict() if report.statistics else None
        import_warnings = report.import_warnings
        import_error_count = report.import_error_count
        sizes = {
            "input": report.input_size,
            "output": report.output_size,
            "db_before": report.database_size_before,
            "db_after": report.database_size_after,
        }
        for script in report.script_results:
            scripts.append(
                {
                    "id": script.id.ljust(_ID_WIDTH),
                    "status": script.status.value.upper().ljust(_STATUS_WIDTH),
                    "duration": format_duration_ms(script.duration_ms),
                    "name": script.name,
                    "error": script.error,
                }
            )

    return {
        "generated_at": utc_timestamp(),
        "status": "Success" if result.success else "Failed",
        "input_path": result.input_path,
        "output_path": result.output_path,
        "source_version": result.source_version or "unknown",
        "target_version": result.target_version or "unknown",
        "migration_path": result.migration_path or "n/a",
        "duration_ms": result.duration_ms,
        "applied_count": len(result.migrations_applied),
        "script_count": len(scripts),
        "timings": timings,
        "statistics": statistics,
        "sizes": sizes,
        "scripts": scripts,
        "id_header": "Script".ljust(_ID_WIDTH),
        "status_header": "Status".ljust(_STATUS_WIDTH),
        "import_warnings": import_warnings,
        "import_error_count": import_error_count,
        "warnings": result.warnings,
        "errors": [e.to_dict() for e in result.errors],
    }


def render_text_report(result: "MigrationResult") -> str:
    """
    Render the text report for a migration result.

    Raises:
        ValueError: If the template cannot be loaded or rendered
    """
    env = _create_environment()
    try:
        template = env.get_template(TEMPLATE_NAME)
        return template.render(**_build_template_data(result))
    except TemplateError as e:
        logger.error(f"Failed to render report template: {e}", exc_info=True)
        raise ValueError(f"Cannot render report template: {e}") from e


def write_text_report(result: "MigrationResult", report_path: Path | str) -> Path:
    """
    Render the report and write it to ``report_path``.

    Returns:
        The written path

    Raises:
        ValueError: If rendering fails
        OSError: If the file cannot be written
    """
    report_path = Path(report_path)
    content = render_text_report(result)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(content, encoding="utf-8")
    logger.info(f"Migration report written to: {report_path}")
    return report_path
