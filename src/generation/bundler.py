"""
Inline local stylesheets and scripts into the entry file.

The result is a single self-contained document for the sandboxed preview.
It is a view artifact and is never persisted.
"""

import re
from typing import Pattern

from common.models import ProjectFiles

STYLE_EXTENSIONS = (".css",)
SCRIPT_EXTENSIONS = (".js", ".ts", ".tsx")


def _reference(path: str) -> str:
    # Paths come from model output; every metacharacter is matched literally.
    return r"""["'](?:\./|/)?""" + re.escape(path.lstrip("/")) + r"""["']"""


def _link_tag(path: str) -> Pattern[str]:
    return re.compile(r"<link\b[^>]*?\bhref=" + _reference(path) + r"[^>]*>", re.IGNORECASE)


def _script_tag(path: str) -> Pattern[str]:
    return re.compile(
        r"<script\b[^>]*?\bsrc=" + _reference(path) + r"[^>]*>\s*</script>", re.IGNORECASE
    )


def bundle(files: ProjectFiles, index_file: str) -> str:
    """
    Build the preview document from the entry file.

    Every `<link href="X">` whose X is a .css file in the set becomes a
    `<style>` block, and every `<script src="X"></script>` whose X is a
    .js/.ts/.tsx file in the set becomes an inline module script.
    """
    document = files.get(index_file, "")

    for path, content in files.items():
        if path == index_file:
            continue
        if path.endswith(STYLE_EXTENSIONS):
            replacement = f"<style>{content}</style>"
            document = _link_tag(path).sub(lambda _m: replacement, document)
        elif path.endswith(SCRIPT_EXTENSIONS):
            replacement = f'<script type="module">{content}</script>'
            document = _script_tag(path).sub(lambda _m: replacement, document)

    return document
