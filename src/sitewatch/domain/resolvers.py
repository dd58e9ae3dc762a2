"""Format-specific resolvers turning one extraction rule into raw values.

Selectors, paths and patterns are compiled once while options are validated
(`compile_expression`); resolving a rule against a parsed document is lazy,
so a caller that only needs the first value never evaluates the rest.
"""

import json
import re
from typing import Any, Iterator

from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError
from jsonpath_ng.ext import parse as parse_jsonpath
from lxml import etree
from lxml import html as lxml_html
from lxml.cssselect import CSSSelector, SelectorError

from src.sitewatch.domain.errors import ExtractionTypeError, SchemaError
from src.sitewatch.domain.models import DocumentType, ExtractionKind, ExtractionRule, ExtractionSchema

# Ruby/PCRE style named groups are accepted and rewritten to Python's syntax.
_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")


def compile_expression(kind: ExtractionKind, expression: str, document_type: DocumentType) -> Any:
    try:
        if kind is ExtractionKind.CSS:
            translator = "html" if document_type is DocumentType.HTML else "xml"
            return CSSSelector(expression, translator=translator)
        if kind is ExtractionKind.XPATH:
            return etree.XPath(expression, smart_strings=False)
        if kind is ExtractionKind.JSON_PATH:
            return parse_jsonpath(expression)
        return compile_pattern(expression)
    except SelectorError as exc:
        raise SchemaError(f"invalid css selector {expression!r}: {exc}") from exc
    except etree.XPathSyntaxError as exc:
        raise SchemaError(f"invalid xpath {expression!r}: {exc}") from exc
    except (JsonPathLexerError, JsonPathParserError) as exc:
        raise SchemaError(f"invalid path {expression!r}: {exc}") from exc
    except re.error as exc:
        raise SchemaError(f"invalid regexp {expression!r}: {exc}") from exc


def compile_value_expression(value: str) -> etree.XPath:
    try:
        return etree.XPath(value, smart_strings=False)
    except etree.XPathSyntaxError as exc:
        raise SchemaError(f"invalid value expression {value!r}: {exc}") from exc


def compile_pattern(pattern: str) -> re.Pattern[str]:
    # `^` and `$` match at line boundaries.
    return re.compile(_NAMED_GROUP.sub("(?P<", pattern), re.MULTILINE)


def parse_document(schema: ExtractionSchema, body: str | bytes) -> Any:
    document_type = schema.document_type
    if document_type is DocumentType.JSON:
        return json.loads(body)
    if document_type is DocumentType.TEXT:
        return body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    if document_type is DocumentType.XML:
        return _parse_xml(body, strip_namespaces=not schema.use_namespaces)
    return _parse_html(body)


def _parse_xml(body: str | bytes, strip_namespaces: bool) -> etree._Element:
    if isinstance(body, str):
        data, encoding = body.encode("utf-8"), "utf-8"
    else:
        data, encoding = body, None
    try:
        root = etree.fromstring(data, etree.XMLParser(recover=True, encoding=encoding))
    except etree.XMLSyntaxError as exc:
        raise ExtractionTypeError(f"XML document could not be parsed: {exc}") from exc
    if root is None:
        raise ExtractionTypeError("XML document is empty or could not be parsed")
    if strip_namespaces:
        # Ignore xmlns, mostly useful for Atom feeds.
        for element in root.iter():
            if not isinstance(element.tag, str):
                continue
            element.tag = etree.QName(element).localname
            for key in [k for k in element.attrib if k.startswith("{")]:
                element.set(etree.QName(key).localname, element.attrib.pop(key))
        etree.cleanup_namespaces(root)
    return root


def _parse_html(body: str | bytes) -> etree._Element:
    try:
        return lxml_html.document_fromstring(body)
    except etree.ParserError as exc:
        raise ExtractionTypeError(f"HTML document could not be parsed: {exc}") from exc


def resolve(rule: ExtractionRule, document: Any, document_type: DocumentType) -> Iterator[Any]:
    if rule.kind is ExtractionKind.JSON_PATH:
        return resolve_json(rule, document)
    if rule.kind is ExtractionKind.REGEX:
        return resolve_text(rule, document)
    return resolve_xml(rule, document, document_type)


def resolve_json(rule: ExtractionRule, document: Any) -> Iterator[Any]:
    for match in rule.compiled.find(document):
        yield match.value


def resolve_text(rule: ExtractionRule, document: str) -> Iterator[Any]:
    index = rule.index
    if isinstance(index, str) and index.isdigit():
        index = int(index)
    for match in rule.compiled.finditer(document):
        yield match.group(index)


def resolve_xml(rule: ExtractionRule, document: etree._Element, document_type: DocumentType) -> Iterator[Any]:
    namespaces = _namespaces(document) if rule.kind is ExtractionKind.XPATH else None
    if namespaces:
        nodes = document.xpath(rule.selector, namespaces=namespaces, smart_strings=False)
    else:
        nodes = rule.compiled(document)
    if not isinstance(nodes, list):
        raise ExtractionTypeError(
            f"The result of HTML/XML extraction for {rule.name!r} was not a node set: {nodes!r}"
        )

    method = "html" if document_type is DocumentType.HTML else "xml"
    values = (_node_value(rule, node, method, namespaces) for node in nodes)
    if rule.as_array:
        yield list(values)
    else:
        yield from values


def _node_value(rule: ExtractionRule, node: Any, method: str, namespaces: dict[str, str] | None) -> str:
    if not etree.iselement(node):
        # Attribute and text results carry their string value only.
        if rule.value.strip() in (".", "string(.)"):
            return str(node)
        raise ExtractionTypeError(
            f"value {rule.value!r} cannot be evaluated on a text or attribute match of {rule.name!r}"
        )
    if namespaces:
        value = node.xpath(rule.value, namespaces=namespaces, smart_strings=False)
    else:
        value = rule.compiled_value(node)
    return stringify(value, method)


def stringify(value: Any, method: str = "html") -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        # XPath returns every number as a float.
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, list):
        return "".join(_stringify_node(item, method) for item in value)
    return str(value)


def _stringify_node(item: Any, method: str) -> str:
    if etree.iselement(item):
        return etree.tostring(item, encoding="unicode", method=method, with_tail=False)
    return str(item)


def _namespaces(document: etree._Element) -> dict[str, str]:
    return {prefix: uri for prefix, uri in (document.nsmap or {}).items() if prefix}
