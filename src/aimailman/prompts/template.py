"""Prompt template loading and rendering."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from pathlib import Path

from .triage import PROMPT

FOLDER_LIST_PLACEHOLDER = "{DYNAMIC_FOLDER_LIST}"
EXAMPLE_FOLDER_PLACEHOLDER = "{DYNAMIC_EXAMPLE_FOLDER}"
NO_FOLDERS_TEXT = "No specific custom folders configured"
FALLBACK_EXAMPLE_FOLDER = "Mailman/Newsletters"

_VARIABLE = re.compile(r"\{\{\s*\$(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def load_template(path: Path | None) -> str:
    """Return the template stored at ``path`` or the built-in prompt."""

    if path is None:
        return PROMPT
    return path.expanduser().read_text(encoding="utf-8")


def fill_folder_catalog(
    template: str,
    folders: Iterable[str],
    *,
    example: str | None = None,
) -> str:
    """Substitute the destination catalog placeholders."""

    paths = [folder for folder in folders if folder]
    listing = "\t".join(f"'{folder}'" for folder in paths) or NO_FOLDERS_TEXT
    example_folder = example or (paths[0] if paths else FALLBACK_EXAMPLE_FOLDER)
    return template.replace(FOLDER_LIST_PLACEHOLDER, listing).replace(
        EXAMPLE_FOLDER_PLACEHOLDER, example_folder
    )


def render_variables(template: str, variables: Mapping[str, str]) -> str:
    """Replace ``{{$name}}`` placeholders; unknown names render as empty text."""

    return _VARIABLE.sub(lambda match: str(variables.get(match.group("name"), "")), template)


__all__ = [
    "NO_FOLDERS_TEXT",
    "fill_folder_catalog",
    "load_template",
    "render_variables",
]
