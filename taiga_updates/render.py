from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, Template, TemplateError, select_autoescape

from .errors import TemplateCompileError
from .models import TaigaUpdate


def _template_env(directory: Path) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(directory)),
        autoescape=select_autoescape(
            enabled_extensions=("xml", "xhtml", "html", "htm"),
            default_for_string=False,
        ),
        keep_trailing_newline=True,
    )


class TemplateRenderer:
    """A template compiled once at startup and rendered per update."""

    def __init__(self, template: Template) -> None:
        self._template = template

    @classmethod
    def from_file(cls, path: Path) -> "TemplateRenderer":
        path = Path(path)
        env = _template_env(path.resolve().parent)
        try:
            template = env.get_template(path.name)
        except TemplateError as exc:
            raise TemplateCompileError(f"Cannot compile template {path}: {exc}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise TemplateCompileError(f"Cannot read template {path}: {exc}") from exc
        return cls(template)

    @classmethod
    def from_string(cls, source: str) -> "TemplateRenderer":
        env = Environment(autoescape=False, keep_trailing_newline=True)
        try:
            template = env.from_string(source)
        except TemplateError as exc:
            raise TemplateCompileError(f"Cannot compile template: {exc}") from exc
        return cls(template)

    def render(self, update: TaigaUpdate) -> str:
        return self._template.render(**update.template_context())
