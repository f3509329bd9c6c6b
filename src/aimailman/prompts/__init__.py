"""Decision prompts for the classification gateway."""

from .template import NO_FOLDERS_TEXT, fill_folder_catalog, load_template, render_variables
from .triage import PROMPT as TRIAGE_PROMPT
from .triage import SYSTEM_PROMPT

__all__ = [
    "NO_FOLDERS_TEXT",
    "SYSTEM_PROMPT",
    "TRIAGE_PROMPT",
    "fill_folder_catalog",
    "load_template",
    "render_variables",
]
