"""
Shared helpers over a parsed XML document.

Both the tree browser and the CSV export work on the same lxml element tree;
this module owns the parser settings and the small accessors they share.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Tuple

from lxml import etree

logger = logging.getLogger(__name__)

CONTAINER_TAG = "rlmsinfo"
RECORD_TAG = "rlmsreginfo"
RECORD_ID_FIELD = "PrivateID"

XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"


@dataclass(frozen=True)
class ParseError:
    """Error value for input that is not well-formed XML."""

    message: str

    def __str__(self):
        return self.message


def parse_document(raw: str) -> etree._Element:
    """Parse raw XML text and return the root element.

    Raises lxml.etree.XMLSyntaxError on malformed input.
    """
    parser = etree.XMLParser(
        encoding="utf-8",
        resolve_entities=False,
        no_network=True,
        huge_tree=True,
    )
    return etree.fromstring(raw.encode("utf-8"), parser=parser)


def is_element(node) -> bool:
    # comments, PIs and entity refs carry a callable as tag
    return isinstance(node.tag, str)


def element_children(element: etree._Element) -> List[etree._Element]:
    return [child for child in element if is_element(child)]


def _qualified(local: str, prefix) -> str:
    return f"{prefix}:{local}" if prefix else local


def tag_name(element: etree._Element) -> str:
    """Tag as written in the document, e.g. ``ns:Field``."""
    return _qualified(etree.QName(element).localname, element.prefix)


def _attribute_name(element: etree._Element, key: str) -> str:
    if not key.startswith("{"):
        return key
    qname = etree.QName(key)
    if qname.namespace == XML_NAMESPACE:
        return _qualified(qname.localname, "xml")
    prefix = next(
        (p for p, uri in element.nsmap.items() if p and uri == qname.namespace),
        None,
    )
    return _qualified(qname.localname, prefix)


def attribute_items(element: etree._Element) -> Iterator[Tuple[str, str]]:
    for key, value in element.attrib.items():
        yield _attribute_name(element, key), value


def text_fragments(element: etree._Element) -> List[str]:
    """Direct text nodes of an element in document order (untrimmed)."""
    fragments = []
    if element.text is not None:
        fragments.append(element.text)
    for child in element:
        if child.tail is not None:
            fragments.append(child.tail)
    return fragments


def text_content(element: etree._Element) -> str:
    """Text of a non-branching element; comment and PI bodies are excluded."""
    return "".join(text_fragments(element))


def iter_elements(element: etree._Element, tag: str, include_self: bool = True):
    """Elements named ``tag`` in document order."""
    nodes = element.iter() if include_self else element.iterdescendants()
    for node in nodes:
        if is_element(node) and tag_name(node) == tag:
            yield node


def count_tag_occurrences(raw: str, tag: str) -> int:
    """Count opening ``<tag`` markers in raw text without parsing it."""
    pattern = re.compile(r"<\s*" + re.escape(tag) + r"\b", re.IGNORECASE)
    return len(pattern.findall(raw))
