"""Validation of agent options into an immutable `AgentOptions`.

Every problem found is collected and reported through one `SchemaError`, so a
malformed configuration is rejected before any document is fetched. An
unrecognized mode raises `ModeConfigurationError` straight away.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from src.sitewatch.domain.aggregation import DEFAULT_AGGREGATE_LIMIT
from src.sitewatch.domain.errors import SchemaError
from src.sitewatch.domain.models import DocumentType, ExtractionKind, ExtractionRule, ExtractionSchema
from src.sitewatch.domain.resolvers import compile_expression, compile_value_expression
from src.sitewatch.domain.uniqueness import normalize_mode

_DIGITS = re.compile(r"^\d+$")


@dataclass(frozen=True)
class AgentOptions:
    schema: ExtractionSchema
    mode: str
    urls: tuple[str, ...] = ()
    template: dict[str, str] = field(default_factory=dict)
    uniqueness_keys: tuple[str, ...] = ()
    uniqueness_look_back: int | None = None
    extra_payload: dict[str, Any] = field(default_factory=dict)
    aggregate_events: bool = False
    aggregate_limit: int = DEFAULT_AGGREGATE_LIMIT
    digest_extra_payload: dict[str, Any] = field(default_factory=dict)
    compact_keys: tuple[str, ...] = ()
    filter_callback: str | None = None
    http_success_codes: tuple[int, ...] = ()
    headers: dict[str, str] = field(default_factory=dict)
    user_agent: str | None = None
    basic_auth: tuple[str, str] | None = None
    disable_ssl_verification: bool = False
    force_encoding: str | None = None
    post_body: Any = None
    url_from_event: str | None = None
    data_from_event: str | None = None
    post_body_from_event: str | None = None
    keep_events_for: int | None = None

    def event_keys(self) -> list[str] | None:
        """Keys of the payloads this agent creates, or None for raw JSON."""
        if self.schema.full_json_passthrough:
            return None
        keys = [name for name, rule in self.schema.rules.items() if not rule.hidden]
        keys.extend(key for key in self.template if key not in keys)
        return keys


def boolify(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def flag_enabled(value: Any) -> bool:
    """True for any non-blank value other than false or "false"."""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip()) and value != "false"
    if isinstance(value, (list, tuple, Mapping)):
        return bool(value)
    return True


def infer_document_type(url: str | None) -> DocumentType:
    url = (url or "").lower()
    if url.endswith((".rss", ".xml")):
        return DocumentType.XML
    if url.endswith(".json"):
        return DocumentType.JSON
    if url.endswith((".txt", ".text")):
        return DocumentType.TEXT
    return DocumentType.HTML


def build_agent_options(options: Mapping[str, Any]) -> AgentOptions:
    mode = normalize_mode(options.get("mode"))
    errors: list[str] = []

    urls = _urls(options.get("url"), errors)
    if not urls and not options.get("url_from_event") and not options.get("data_from_event"):
        errors.append("either url, url_from_event, or data_from_event are required")

    document_type = _document_type(options.get("type"), urls, errors)
    rules = _extraction_rules(options.get("extract"), document_type, errors) if document_type else {}
    template = _template(options.get("template"), errors)

    look_back = options.get("uniqueness_look_back")
    if look_back not in (None, ""):
        look_back = _positive_int(look_back)
        if look_back is None:
            errors.append("Invalid uniqueness_look_back format")
    else:
        look_back = None

    aggregate_limit = options.get("aggregate_limit")
    if aggregate_limit in (None, ""):
        aggregate_limit = DEFAULT_AGGREGATE_LIMIT
    else:
        aggregate_limit = _positive_int(aggregate_limit)
        if aggregate_limit is None:
            errors.append("aggregate_limit must be a positive integer")

    keep_events_for = options.get("keep_events_for")
    if keep_events_for not in (None, ""):
        keep_events_for = _positive_int(keep_events_for, allow_zero=True)
        if keep_events_for is None:
            errors.append("keep_events_for must be a non-negative number of days")
    else:
        keep_events_for = None

    result = dict(
        mode=mode,
        urls=urls,
        template=template,
        uniqueness_keys=_string_list(options.get("uniqueness_keys"), "uniqueness_keys", errors),
        uniqueness_look_back=look_back,
        extra_payload=_mapping(options.get("extra_payload"), "extra_payload", errors),
        aggregate_events=flag_enabled(options.get("aggregate_events")),
        aggregate_limit=aggregate_limit,
        digest_extra_payload=_mapping(options.get("digest_extra_payload"), "digest_extra_payload", errors),
        compact_keys=_string_list(options.get("compact_keys"), "compact_keys", errors),
        filter_callback=options.get("filter_callback") or None,
        http_success_codes=_http_success_codes(options.get("http_success_codes"), errors),
        headers={str(k): str(v) for k, v in _mapping(options.get("headers"), "headers", errors).items()},
        user_agent=options.get("user_agent") or None,
        basic_auth=_basic_auth(options.get("basic_auth"), errors),
        disable_ssl_verification=boolify(options.get("disable_ssl_verification")),
        force_encoding=options.get("force_encoding") or None,
        post_body=options.get("post_body"),
        url_from_event=options.get("url_from_event") or None,
        data_from_event=options.get("data_from_event") or None,
        post_body_from_event=options.get("post_body_from_event") or None,
        keep_events_for=keep_events_for,
    )
    if errors:
        raise SchemaError(errors)

    schema = ExtractionSchema(
        document_type=document_type,
        rules=rules,
        # Unset strips namespaces for every rule kind, so CSS selectors match namespaced feeds too.
        use_namespaces=boolify(options.get("use_namespaces")),
        allow_unequal_values=boolify(options.get("allow_unequal_values")),
    )
    return AgentOptions(schema=schema, **result)


def _urls(value: Any, errors: list[str]) -> tuple[str, ...]:
    if value in (None, ""):
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(url, str) for url in value):
        return tuple(value)
    errors.append("url must be a string or an array of strings")
    return ()


def _document_type(value: Any, urls: tuple[str, ...], errors: list[str]) -> DocumentType | None:
    if value in (None, ""):
        return infer_document_type(urls[0] if urls else None)
    try:
        return DocumentType(str(value))
    except ValueError:
        errors.append(f"Unknown extraction type {value!r}")
        return None


def _extraction_rules(extract: Any, document_type: DocumentType, errors: list[str]) -> dict[str, ExtractionRule]:
    if extract is None or (isinstance(extract, Mapping) and not extract):
        if document_type is not DocumentType.JSON:
            errors.append("extract is required for all types except json")
        return {}
    if not isinstance(extract, Mapping):
        errors.append("extract must be a hash")
        return {}
    if any(not isinstance(details, Mapping) for details in extract.values()):
        errors.append("extract must be a hash of hashes.")
        return {}

    rules: dict[str, ExtractionRule] = {}
    for name, details in extract.items():
        if document_type in (DocumentType.HTML, DocumentType.XML):
            rule = _xml_rule(name, details, document_type, errors)
        elif document_type is DocumentType.JSON:
            rule = _json_rule(name, details, errors)
        else:
            rule = _text_rule(name, details, errors)
        if rule is not None:
            rules[name] = rule
    return rules


def _flags(details: Mapping[str, Any]) -> dict[str, bool]:
    return {
        "repeat": boolify(details.get("repeat")),
        "hidden": boolify(details.get("hidden")),
        "as_array": boolify(details.get("array")),
    }


def _compile(kind: ExtractionKind, expression: str, document_type: DocumentType, name: str, errors: list[str]) -> Any:
    try:
        return compile_expression(kind, expression, document_type)
    except SchemaError as exc:
        errors.extend(f"{message} (in extraction details for {name!r})" for message in exc.errors)
        return None


def _xml_rule(name: str, details: Mapping[str, Any], document_type: DocumentType, errors: list[str]) -> ExtractionRule | None:
    css, xpath = details.get("css"), details.get("xpath")
    if css is not None and not isinstance(css, str):
        errors.append(f'Wrong type of "css" value in extraction details for {name!r}')
        return None
    if css is None:
        if xpath is None:
            errors.append(
                "When type is html or xml, all extractions must have a css or xpath attribute "
                f"(bad extraction details for {name!r})"
            )
            return None
        if not isinstance(xpath, str):
            errors.append(f'Wrong type of "xpath" value in extraction details for {name!r}')
            return None

    value = details.get("value")
    if value is not None and not isinstance(value, str):
        errors.append(f'Wrong type of "value" value in extraction details for {name!r}')
        return None
    value = value or "."

    kind = ExtractionKind.CSS if css is not None else ExtractionKind.XPATH
    selector = css if css is not None else xpath
    compiled = _compile(kind, selector, document_type, name, errors)
    try:
        compiled_value = compile_value_expression(value)
    except SchemaError as exc:
        errors.extend(f"{message} (in extraction details for {name!r})" for message in exc.errors)
        return None
    if compiled is None:
        return None
    return ExtractionRule(
        name=name,
        kind=kind,
        selector=selector,
        value=value,
        compiled=compiled,
        compiled_value=compiled_value,
        **_flags(details),
    )


def _json_rule(name: str, details: Mapping[str, Any], errors: list[str]) -> ExtractionRule | None:
    path = details.get("path")
    if path is None:
        errors.append(
            f"When type is json, all extractions must have a path attribute (bad extraction details for {name!r})"
        )
        return None
    if not isinstance(path, str):
        errors.append(f'Wrong type of "path" value in extraction details for {name!r}')
        return None
    compiled = _compile(ExtractionKind.JSON_PATH, path, DocumentType.JSON, name, errors)
    if compiled is None:
        return None
    return ExtractionRule(name=name, kind=ExtractionKind.JSON_PATH, path=path, compiled=compiled, **_flags(details))


def _text_rule(name: str, details: Mapping[str, Any], errors: list[str]) -> ExtractionRule | None:
    pattern = details.get("regexp")
    compiled = None
    if pattern is None:
        errors.append(
            f"When type is text, all extractions must have a regexp attribute (bad extraction details for {name!r})"
        )
    elif not isinstance(pattern, str):
        errors.append(f'Wrong type of "regexp" value in extraction details for {name!r}')
    else:
        compiled = _compile(ExtractionKind.REGEX, pattern, DocumentType.TEXT, name, errors)

    index = details.get("index")
    if index is None:
        errors.append(
            f"When type is text, all extractions must have an index attribute (bad extraction details for {name!r})"
        )
        return None
    if isinstance(index, bool) or not isinstance(index, (int, str)):
        errors.append(f'Wrong type of "index" value in extraction details for {name!r}')
        return None
    if compiled is None:
        return None

    if isinstance(index, int) or _DIGITS.match(index):
        if int(index) > compiled.groups:
            errors.append(f"no capture group {index} found in regexp for {name!r}")
            return None
    elif index not in compiled.groupindex:
        errors.append(f"no named capture {index!r} found in regexp for {name!r}")
        return None
    return ExtractionRule(
        name=name,
        kind=ExtractionKind.REGEX,
        pattern=pattern,
        index=index,
        compiled=compiled,
        **_flags(details),
    )


def _template(value: Any, errors: list[str]) -> dict[str, str]:
    if not value:
        return {}
    if not isinstance(value, Mapping) or not all(isinstance(v, str) for v in value.values()):
        errors.append("template must be a hash of strings.")
        return {}
    return {str(k): v for k, v in value.items()}


def _mapping(value: Any, option: str, errors: list[str]) -> dict[str, Any]:
    if not value:
        return {}
    if not isinstance(value, Mapping):
        errors.append(f"{option} must be a hash")
        return {}
    return dict(value)


def _string_list(value: Any, option: str, errors: list[str]) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        errors.append(f"{option} must be an array of strings")
        return ()
    return tuple(str(item) for item in value)


def _http_success_codes(value: Any, errors: list[str]) -> tuple[int, ...]:
    if not value:
        return ()
    if not isinstance(value, (list, tuple)):
        errors.append("http_success_codes must be an array and specify at least one status code")
        return ()
    if len(set(map(str, value))) != len(value):
        errors.append("http_success_codes: duplicate http code found")
        return ()
    if any(isinstance(code, bool) or not _DIGITS.match(str(code)) for code in value):
        errors.append('http_success_codes: please make sure to use only numeric values for code, ex 404, or "404"')
        return ()
    return tuple(int(code) for code in value)


def _basic_auth(value: Any, errors: list[str]) -> tuple[str, str] | None:
    if not value:
        return None
    if isinstance(value, str) and ":" in value:
        username, password = value.split(":", 1)
        return username, password
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return str(value[0]), str(value[1])
    errors.append('basic_auth must be "username:password" or ["username", "password"]')
    return None


def _positive_int(value: Any, allow_zero: bool = False) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        if not _DIGITS.match(value.strip()):
            return None
        value = int(value)
    if not isinstance(value, int):
        return None
    if value < 0 or (value == 0 and not allow_zero):
        return None
    return value
