"""Compile a flat directory of Jinja2 templates into a TemplateSet.

Every file directly inside the directory becomes one named template,
keyed by its file name. Templates may include or extend one another by
that name. Compilation is all-or-nothing: one bad file fails the set.
"""

import logging
from collections.abc import Mapping
from fnmatch import fnmatch
from pathlib import Path
from types import MappingProxyType
from typing import Any

from jinja2 import DictLoader, Environment, Template, TemplateSyntaxError, select_autoescape

from templateswap.errors import TemplateCompileError, TemplateNotFoundError

logger = logging.getLogger(__name__)

AUTOESCAPE_EXTENSIONS = ("html", "htm", "xml", "tmpl")


def _make_environment(sources: Mapping[str, str]) -> Environment:
    """Build an isolated environment that never goes back to disk."""
    return Environment(
        loader=DictLoader(dict(sources)),
        autoescape=select_autoescape(AUTOESCAPE_EXTENSIONS, default_for_string=False),
        auto_reload=False,
        cache_size=-1,
    )


class TemplateSet:
    """An immutable, compiled set of named templates."""

    def __init__(
        self,
        environment: Environment,
        templates: Mapping[str, Template],
        source_dir: Path | None = None,
    ):
        self.environment = environment
        self._templates = MappingProxyType(dict(templates))
        self.source_dir = source_dir

    @classmethod
    def empty(cls, source_dir: Path | None = None) -> "TemplateSet":
        """Placeholder set for hosts that start before a first good compile."""
        return cls(_make_environment({}), {}, source_dir)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._templates))

    def get(self, name: str) -> Template:
        try:
            return self._templates[name]
        except KeyError:
            raise TemplateNotFoundError(name) from None

    def render(self, name: str, /, **context: Any) -> str:
        """Render the named template with the given context."""
        return self.get(name).render(**context)

    def __contains__(self, name: object) -> bool:
        return name in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def __repr__(self) -> str:
        return f"<TemplateSet {len(self)} templates from {self.source_dir}>"


def _read_sources(root: Path, pattern: str) -> dict[str, str]:
    """Read every matching regular file directly inside root."""
    try:
        entries = sorted(root.iterdir())
    except OSError as e:
        raise TemplateCompileError(f"cannot list template directory {root}: {e}", directory=root) from e

    sources: dict[str, str] = {}
    for path in entries:
        # Editor swap and backup files are never templates
        if path.name.startswith(".") or path.name.endswith("~"):
            continue
        if not fnmatch(path.name, pattern) or not path.is_file():
            continue
        try:
            sources[path.name] = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateCompileError(
                f"cannot read template {path.name}: {e}",
                directory=root,
                template=path.name,
            ) from e

    return sources


def compile_directory(directory: str | Path, pattern: str = "*") -> TemplateSet:
    """Compile all templates in a directory.

    Args:
        directory: Flat directory holding the template files.
        pattern: fnmatch pattern selecting which file names are templates.

    Returns:
        A new TemplateSet reflecting the directory at call time.

    Raises:
        TemplateCompileError: If the directory is missing, holds no matching
            files, or any template fails to read or parse.
    """
    root = Path(directory)
    if not root.is_dir():
        raise TemplateCompileError(f"template directory not found: {root}", directory=root)

    sources = _read_sources(root, pattern)
    if not sources:
        raise TemplateCompileError(f"pattern {pattern!r} matches no files in {root}", directory=root)

    environment = _make_environment(sources)
    templates: dict[str, Template] = {}
    for name in sources:
        try:
            templates[name] = environment.get_template(name)
        except TemplateSyntaxError as e:
            raise TemplateCompileError(
                f"{name}:{e.lineno}: {e.message}",
                directory=root,
                template=name,
            ) from e

    logger.debug(f"Compiled {len(templates)} templates from {root}")
    return TemplateSet(environment, templates, root)
