"""HCL loading — parse .hcl files into a Workspace."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import hcl2
import jinja2

from .errors import ConfigError

if TYPE_CHECKING:
    from .workspace import Workspace

logger = logging.getLogger(__name__)


def load(
    file: Path,
    *,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Load and parse a single HCL file, rendering Jinja2 templates with context."""
    text = file.read_text()
    env = jinja2.Environment(
        undefined=jinja2.StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    try:
        text = env.from_string(text).render(context or {})
    except jinja2.TemplateError as exc:
        raise ConfigError(f"{file}: {exc}") from exc
    data = hcl2.loads(text)
    logger.debug("Loaded %s", file)
    return data


def files(path: str | Path, *, recurse: bool = True) -> list[Path]:
    """List the .hcl files under ``path`` in a stable order."""
    root = Path(path)
    if root.is_file():
        return [root]
    pattern = "**/*.hcl" if recurse else "*.hcl"
    return sorted(root.glob(pattern))


def scan(
    path: str | Path,
    *,
    recurse: bool = True,
    context: dict[str, Any] | None = None,
    variables: dict[str, Any] | None = None,
) -> Workspace:
    """Scan a file or directory for .hcl files and return a loaded Workspace.

    ``context`` feeds the Jinja2 render; ``variables`` replaces the default
    ``${env.X}`` / ``${CWD}`` interpolation context.
    """
    from .workspace import Workspace

    ws = Workspace(variables=variables)
    for file in files(path, recurse=recurse):
        ws.load(load(file, context=context), source=str(file))
    return ws
