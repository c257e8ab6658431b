from __future__ import annotations

from ..models.processing_result import ProcessingResult

"""SUMMARY line rendering.

Format::

    SUMMARY rows={total} valid={valid} invalid={invalid} errors={errors}
    batches={batches} elapsed_sec={elapsed} throughput_rps={throughput}

(one line). The CLI strips the leading ``SUMMARY `` before handing the rest to
``log_summary``, whose formatter adds the label back.
"""

__all__ = [
    "format_number",
    "render_summary_line",
]


def format_number(value: float) -> str:
    """Integers without a decimal point, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(round(value, 3))


def render_summary_line(result: ProcessingResult) -> str:
    """Render the summary fields of a ProcessingResult.

    Examples:
        >>> result = ProcessingResult.build([], 2.0)
        >>> render_summary_line(result)
        'SUMMARY rows=0 valid=0 invalid=0 errors=0 batches=0 elapsed_sec=2 throughput_rps=0'
    """
    return (
        f"SUMMARY rows={result.total_rows} "
        f"valid={result.valid_rows} "
        f"invalid={result.invalid_rows} "
        f"errors={len(result.errors)} "
        f"batches={result.total_batches} "
        f"elapsed_sec={format_number(result.elapsed_seconds)} "
        f"throughput_rps={format_number(result.throughput_rows_per_sec)}"
    )
