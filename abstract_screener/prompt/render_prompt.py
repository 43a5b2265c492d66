"""Render prompt templates in abstract_screener/prompt/promptFiles using pystache.

This small helper loads a template file (default: article_evaluation.md),
loads its partials, strips any leading/trailing code-fence wrappers (so files
that include ```markdown blocks work as partials), and renders the template
with the given context.

Usage:
    python -m abstract_screener.prompt.render_prompt [template_filename] [context.json]
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pystache

from abstract_screener.models import NO_ABSTRACT_PLACEHOLDER

PROMPTS_DIR = Path(__file__).parent / "promptFiles"

ARTICLE_EVALUATION_TEMPLATE = "article_evaluation.md"

# Map of template to required partials
TEMPLATE_PARTIALS: dict[str, list[str]] = {
    ARTICLE_EVALUATION_TEMPLATE: ["output_format"],
}


def _read_prompt(name: str) -> str:
    p = PROMPTS_DIR / name
    if not p.exists():
        raise FileNotFoundError(f"Prompt file not found: {p}")
    return p.read_text(encoding="utf-8")


def _strip_code_fences(s: str) -> str:
    """Strip a single leading and trailing code-fence block if present.

    Handles fences like ``` or ```` optionally followed by a language tag.
    """
    lines = s.splitlines()
    if not lines:
        return s
    first = lines[0].lstrip()
    last = lines[-1].lstrip()
    if first.startswith("```"):
        lines = lines[1:]
    if lines and last.startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def render_template(
    template_name: str = ARTICLE_EVALUATION_TEMPLATE,
    context: dict | None = None,
) -> str:
    template = _read_prompt(template_name)

    partials = {}
    for partial_name in TEMPLATE_PARTIALS.get(template_name, []):
        partial_content = _read_prompt(f"{partial_name}.md")
        partials[partial_name] = _strip_code_fences(partial_content)

    renderer = pystache.Renderer(partials=partials)
    return renderer.render(template, context or {}).strip()


def build_evaluation_prompt(title: str, abstract: str | None, criteria_text: str) -> str:
    """Render the user prompt for screening one article.

    The abstract section is always present; a missing abstract is replaced by
    a placeholder so every prompt has the same shape.
    """
    abstract_text = (abstract or "").strip() or NO_ABSTRACT_PLACEHOLDER
    return render_template(
        ARTICLE_EVALUATION_TEMPLATE,
        {
            "criteria": criteria_text.strip(),
            "title": (title or "").strip(),
            "abstract": abstract_text,
        },
    )


def _load_context(path: str) -> dict:
    return json.loads(Path(path).read_text(encoding="utf-8"))


if __name__ == "__main__":
    tpl = sys.argv[1] if len(sys.argv) > 1 else ARTICLE_EVALUATION_TEMPLATE
    ctx = None
    if len(sys.argv) > 2:
        ctx = _load_context(sys.argv[2])
    print(render_template(tpl, ctx))
