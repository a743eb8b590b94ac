"""
XML -> browsable tree.

Converts a parsed document into immutable TreeNode values and groups
repeated siblings so a renderer can show them as ``name [n]`` arrays.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from lxml import etree

from markup import (
    RECORD_ID_FIELD,
    RECORD_TAG,
    ParseError,
    attribute_items,
    is_element,
    parse_document,
    tag_name,
)

logger = logging.getLogger(__name__)

CONTAINER_NAME = "object"


@dataclass(frozen=True)
class TreeNode:
    name: str
    attributes: Optional[Dict[str, str]] = None
    text: Optional[str] = None
    children: Tuple["TreeNode", ...] = ()

    @property
    def has_children(self) -> bool:
        return len(self.children) > 0


@dataclass(frozen=True)
class NodeGroup:
    """Two or more siblings sharing a tag name, in document order."""

    name: str
    items: Tuple[TreeNode, ...]

    def __len__(self):
        return len(self.items)


def element_to_node(element: etree._Element) -> TreeNode:
    """
    Recursively convert an element.
    - Attributes are copied verbatim
    - Only the last non-empty trimmed text fragment is kept
    - Text is dropped once the element has element children
    """
    attributes = dict(attribute_items(element))

    children = []
    text = None
    fragment = (element.text or "").strip()
    if fragment:
        text = fragment
    for child in element:
        if is_element(child):
            children.append(element_to_node(child))
        fragment = (child.tail or "").strip()
        if fragment:
            text = fragment

    return TreeNode(
        name=tag_name(element),
        attributes=attributes or None,
        text=None if children else text,
        children=tuple(children),
    )


def build_tree(raw: str) -> Union[TreeNode, ParseError]:
    """Parse raw XML and wrap its root in a synthetic ``object`` node."""
    try:
        root = parse_document(raw)
        return TreeNode(name=CONTAINER_NAME, children=(element_to_node(root),))
    except etree.XMLSyntaxError as e:
        logger.warning(f"XML parse failed: {e}")
        return ParseError(str(e) or "Invalid XML")
    except Exception as e:
        logger.error(f"❌ Tree build failed: {e}")
        return ParseError(str(e) or type(e).__name__)


def partition_by_name(children) -> Dict[str, List[TreeNode]]:
    groups: Dict[str, List[TreeNode]] = {}
    for child in children:
        groups.setdefault(child.name, []).append(child)
    return groups


def group_children(children) -> List[Union[TreeNode, NodeGroup]]:
    """One entry per distinct name: the node itself, or a NodeGroup if repeated."""
    entries: List[Union[TreeNode, NodeGroup]] = []
    for name, nodes in partition_by_name(children).items():
        if len(nodes) == 1:
            entries.append(nodes[0])
        else:
            entries.append(NodeGroup(name=name, items=tuple(nodes)))
    return entries


def record_label(node: TreeNode, record_tag: str = RECORD_TAG,
                 id_field: str = RECORD_ID_FIELD) -> Optional[str]:
    """Short display label for a record node: its id up to the first '@'."""
    if node.name.lower() != record_tag.lower():
        return None
    for child in node.children:
        if child.name.lower() == id_field.lower() and child.text:
            return child.text.split("@", 1)[0]
    return None


def tree_to_dict(node: TreeNode):
    """JSON-friendly view of a node with repeated children as lists."""
    if not node.attributes and not node.children:
        return node.text

    view = {}
    for k, v in (node.attributes or {}).items():
        view[f"@{k}"] = v
    if not node.children:
        if node.text is not None:
            view["#text"] = node.text
        return view

    for entry in group_children(node.children):
        if isinstance(entry, NodeGroup):
            view[entry.name] = [tree_to_dict(item) for item in entry.items]
        else:
            view[entry.name] = tree_to_dict(entry)
    return view
