"""UI layer -- Rich dashboard and output formatters."""

from .dashboard import (
    ProgressDisplay,
    console,
    error_message,
    print_header,
    print_inputs,
    print_results,
    step_title,
)
from .output import create_result_json, format_text_result, save_json

__all__ = [
    "ProgressDisplay",
    "console",
    "create_result_json",
    "error_message",
    "format_text_result",
    "print_header",
    "print_inputs",
    "print_results",
    "save_json",
    "step_title",
]
