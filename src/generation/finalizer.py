"""
One-shot strict parse of a completed generation.

Order of attempts:
1. strict JSON parse of the text between the first `{` and the last `}`
   (after removing an optional Markdown code fence)
2. the file entries that completed before the output was cut off, as long
   as the entry document is among them
3. an HTML document found anywhere in the raw text, decoded when it was cut
   out of a JSON string value
4. the raw text itself, as a single diagnostic file

The function is pure: the same inputs always produce the same project.
"""

import json
import re
from typing import Any, Dict, List, Optional, Sequence

from common.logging import get_logger
from common.models import FinalizedProject, PlanStep, ProjectFiles, StepStatus
from generation.extractor import IncrementalExtractor, unescape_json_string

logger = get_logger(__name__)

DEFAULT_INDEX_FILE = "index.html"
DIAGNOSTIC_FILE = "raw-response.txt"
PARSE_FAILURE_NOTICE = "Could not fully parse the result"

_OPENING_FENCE = re.compile(r"^\s*```[a-zA-Z0-9_-]*[ \t]*\r?\n?")
_CLOSING_FENCE = re.compile(r"\r?\n?```\s*$")
_DOCTYPE_DOCUMENT = re.compile(r"<!DOCTYPE html.*</html>", re.IGNORECASE | re.DOTALL)
_HTML_DOCUMENT = re.compile(r"<html.*</html>", re.IGNORECASE | re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json / ``` fence and its matching trailing fence."""
    opening = _OPENING_FENCE.match(text)
    if not opening:
        return text
    inner = text[opening.end():]
    return _CLOSING_FENCE.sub("", inner)


def default_index_file(files: ProjectFiles) -> str:
    for path in files:
        if path.endswith("index.html"):
            return path
    return DEFAULT_INDEX_FILE


def _parse_object(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return None
    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        logger.info(event="finalize_strict_parse_failed", error=str(e), position=e.pos)
        return None
    return parsed if isinstance(parsed, dict) else None


def _coerce_files(raw: Any) -> ProjectFiles:
    files: ProjectFiles = {}
    if not isinstance(raw, dict):
        return files
    for path, content in raw.items():
        if not isinstance(path, str) or not path or content is None:
            continue
        if isinstance(content, str):
            files[path] = content
        else:
            files[path] = json.dumps(content, indent=2)
    return files


def _completed(steps: Sequence[PlanStep]) -> List[PlanStep]:
    return [step.model_copy(update={"status": StepStatus.COMPLETE}) for step in steps]


def _declared_steps(raw: Any) -> Optional[List[PlanStep]]:
    if not isinstance(raw, list):
        return None
    steps = []
    for entry in raw:
        if isinstance(entry, dict) and entry.get("title"):
            steps.append(
                PlanStep(
                    title=str(entry["title"]),
                    description=str(entry.get("description") or ""),
                    status=StepStatus.COMPLETE,
                )
            )
        elif isinstance(entry, str) and entry.strip():
            steps.append(PlanStep(title=entry.strip(), status=StepStatus.COMPLETE))
    return steps


def _from_object(
    parsed: Dict[str, Any], known_steps: Sequence[PlanStep], overview: str
) -> Optional[FinalizedProject]:
    files = _coerce_files(parsed.get("files"))
    if not files and isinstance(parsed.get("code"), str) and parsed["code"].strip():
        files = {DEFAULT_INDEX_FILE: parsed["code"]}
    if not files:
        return None

    index_file = parsed.get("indexFile")
    if not isinstance(index_file, str) or index_file not in files:
        index_file = default_index_file(files)

    steps = _declared_steps(parsed.get("steps"))
    if steps is None:
        steps = _completed(known_steps)

    declared_overview = parsed.get("overview")
    dependencies = parsed.get("dependencies")
    return FinalizedProject(
        overview=declared_overview if isinstance(declared_overview, str) else overview,
        steps=steps,
        files=files,
        index_file=index_file,
        dependencies=[str(d) for d in dependencies] if isinstance(dependencies, list) else [],
    )


def extract_html_document(text: str) -> Optional[str]:
    """First `<!DOCTYPE html> ... </html>` (or `<html ... </html>`) span in the text."""
    for pattern in (_DOCTYPE_DOCUMENT, _HTML_DOCUMENT):
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def _recovered_project(
    extractor: IncrementalExtractor, known_steps: Sequence[PlanStep], overview: str
) -> Optional[FinalizedProject]:
    files = extractor.complete_files
    index_file = default_index_file(files)
    if index_file not in files:
        return None
    steps = extractor.steps if extractor.has_provider_steps else known_steps
    return FinalizedProject(
        overview=extractor.overview or overview,
        steps=_completed(steps),
        files=files,
        index_file=index_file,
        fallback="partial",
    )


def finalize(
    text: str, known_steps: Sequence[PlanStep] = (), overview: str = ""
) -> FinalizedProject:
    """
    Resolve the accumulated text into the final project.

    Args:
        text: the complete accumulated provider output
        known_steps: steps shown during streaming, used when none are declared
        overview: working overview from the live view, used when none is declared

    Returns:
        FinalizedProject; `fallback` tells which strategy produced it
    """
    unfenced = strip_code_fence(text)
    parsed = _parse_object(unfenced)
    if parsed is not None:
        project = _from_object(parsed, known_steps, overview)
        if project is not None:
            return project
        logger.info(event="finalize_missing_files", keys=sorted(parsed.keys()))

    # Output cut off mid-object (usually by the token limit): keep the entries that completed
    extractor = IncrementalExtractor()
    extractor.update(unfenced)
    project = _recovered_project(extractor, known_steps, overview)
    if project is not None:
        logger.info(event="finalize_partial_recovery", file_count=len(project.files))
        return project

    document = extract_html_document(text)
    if document is not None:
        if extractor.saw_files:
            # the document was cut out of a JSON string value
            document = unescape_json_string(document)
        files = extractor.complete_files
        files[DEFAULT_INDEX_FILE] = document
        logger.info(event="finalize_html_fallback", document_length=len(document))
        return FinalizedProject(
            overview=extractor.overview or overview,
            steps=_completed(known_steps),
            files=files,
            index_file=DEFAULT_INDEX_FILE,
            fallback="html",
        )

    logger.warning(event="finalize_diagnostic_fallback", text_length=len(text))
    return FinalizedProject(
        overview=overview,
        steps=_completed(known_steps),
        files={DIAGNOSTIC_FILE: text},
        index_file=DIAGNOSTIC_FILE,
        fallback="diagnostic",
        error=PARSE_FAILURE_NOTICE,
    )
