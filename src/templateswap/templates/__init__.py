"""Template compilation: directory contents in, immutable template set out."""

from templateswap.templates.compiler import TemplateSet, compile_directory

__all__ = ["TemplateSet", "compile_directory"]
