"""Loader for the markdown prompt templates shipped next to this module."""

import re
from pathlib import Path
from typing import Any

PROMPT_DIR = Path(__file__).parent

_VARIABLE = re.compile(r"\{\{(\w+)\}\}")


def load_prompt(prompt_name: str) -> str:
    """Load a prompt template by name (file name without ``.md``).

    A leading YAML frontmatter block and the ``#`` title line are dropped.

    Raises:
        FileNotFoundError: If the prompt file doesn't exist
    """
    prompt_file = PROMPT_DIR / f"{prompt_name}.md"
    if not prompt_file.exists():
        raise FileNotFoundError(f"Prompt file not found: {prompt_file}")

    content = prompt_file.read_text(encoding="utf-8")

    if content.startswith("---\n"):
        parts = content.split("\n---\n", 1)
        if len(parts) == 2:
            content = parts[1]

    lines = content.split("\n")
    if lines and lines[0].startswith("#"):
        content = "\n".join(lines[1:])

    return content.strip()


def extract_variables(prompt_template: str) -> set[str]:
    """Return the names of all ``{{variable}}`` placeholders in a template."""
    return set(_VARIABLE.findall(prompt_template))


def format_prompt(prompt_template: str, variables: dict[str, Any]) -> str:
    """Substitute ``{{variable}}`` placeholders.

    The contract is strict in both directions: every placeholder must be
    supplied and every supplied variable must appear in the template.

    Raises:
        ValueError: If provided variables don't exist in the template
        KeyError: If template variables are missing from provided values
    """
    template_variables = extract_variables(prompt_template)
    provided_variables = set(variables)

    unused_variables = provided_variables - template_variables
    if unused_variables:
        raise ValueError(
            f"Variables provided but not in template: {sorted(unused_variables)}. "
            f"Template expects: {sorted(template_variables)}"
        )

    missing_variables = template_variables - provided_variables
    if missing_variables:
        raise KeyError(f"Missing required variables: {sorted(missing_variables)}")

    # Single pass, so substituted values that contain braces are left alone
    return _VARIABLE.sub(lambda m: str(variables[m.group(1)]), prompt_template)


def render_prompt(prompt_name: str, **variables: Any) -> str:
    """Load and format a prompt in one step."""
    return format_prompt(load_prompt(prompt_name), variables)
