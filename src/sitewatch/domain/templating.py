from typing import Any, Iterable, Mapping, Protocol


class Renderer(Protocol):
    def render(self, expression: str, scope: Mapping[str, Any]) -> Any: ...


def merge_template(
    row: Mapping[str, Any],
    hidden_keys: Iterable[str],
    template: Mapping[str, str] | None,
    renderer: Renderer | None = None,
    context: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a result payload from one aligned row.

    Hidden keys are dropped from the payload but stay visible to the
    template. Rendered keys overwrite existing ones in place and new keys are
    appended after the extracted ones.
    """
    hidden = set(hidden_keys)
    result = {key: value for key, value in row.items() if key not in hidden}
    if not template:
        return result
    if renderer is None:
        raise ValueError("a renderer is required when a template is configured")

    scope = {**(context or {}), **row}
    for key, expression in template.items():
        result[key] = renderer.render(expression, scope)
    return result
