import json
from typing import Any, Mapping
from urllib.parse import quote, urljoin

import jinja2
from bs4 import BeautifulSoup

from src.sitewatch.domain.errors import SchemaError


def to_uri(value: Any, base: str | None = None) -> str:
    """Resolve `value` against `base` and escape characters unsafe in a URI."""
    uri = str(value or "").strip()
    if base:
        uri = urljoin(str(base), uri)
    return quote(uri, safe=":/?#[]@!$&'()*+,;=%~")


def rebase_hrefs(html: Any, base: str) -> str:
    soup = BeautifulSoup(str(html or ""), "html.parser")
    for tag in soup.find_all(href=True):
        tag["href"] = to_uri(tag["href"], base)
    for tag in soup.find_all(src=True):
        tag["src"] = to_uri(tag["src"], base)
    return str(soup)


def strip_html(html: Any) -> str:
    return BeautifulSoup(str(html or ""), "html.parser").get_text()


def _build_jinja_env() -> jinja2.Environment:
    env = jinja2.Environment(autoescape=False, keep_trailing_newline=True)
    env.filters["to_uri"] = to_uri
    env.filters["rebase_hrefs"] = rebase_hrefs
    env.filters["strip_html"] = strip_html
    env.filters["tojson"] = lambda d, indent=None: json.dumps(d, default=str, indent=indent, ensure_ascii=False)
    return env


class JinjaTemplateRenderer:
    def __init__(self, env: jinja2.Environment | None = None) -> None:
        self.env = env or _build_jinja_env()
        self._templates: dict[str, jinja2.Template] = {}
        self._expressions: dict[str, Any] = {}

    def _template(self, expression: str) -> jinja2.Template:
        template = self._templates.get(expression)
        if template is None:
            template = self.env.from_string(expression)
            self._templates[expression] = template
        return template

    def render(self, expression: str, scope: Mapping[str, Any]) -> str:
        return self._template(expression).render(dict(scope))

    def evaluate(self, expression: str, scope: Mapping[str, Any]) -> Any:
        compiled = self._expressions.get(expression)
        if compiled is None:
            compiled = self.env.compile_expression(expression)
            self._expressions[expression] = compiled
        return compiled(dict(scope))

    def validate(self, expression: str) -> None:
        try:
            self._template(expression)
        except jinja2.TemplateSyntaxError as exc:
            raise SchemaError(f"invalid template {expression!r}: {exc.message}") from exc

    def validate_expression(self, expression: str) -> None:
        try:
            self._expressions[expression] = self.env.compile_expression(expression)
        except jinja2.TemplateSyntaxError as exc:
            raise SchemaError(f"invalid expression {expression!r}: {exc.message}") from exc
