"""Tests for the XML -> tree conversion and sibling grouping."""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from markup import ParseError
from xml_tree import (
    NodeGroup,
    TreeNode,
    build_tree,
    group_children,
    partition_by_name,
    record_label,
    tree_to_dict,
)


def root_of(raw):
    tree = build_tree(raw)
    assert isinstance(tree, TreeNode)
    assert tree.name == "object"
    assert len(tree.children) == 1
    return tree.children[0]


class TestBuildTree:
    """Test build_tree conversion."""

    def test_childless_root_with_text(self):
        tree = build_tree("<a>  hello  </a>")
        assert tree == TreeNode(name="object", children=(TreeNode(name="a", text="hello"),))

    def test_childless_root_without_text(self):
        root = root_of("<a>   </a>")
        assert root.children == ()
        assert root.text is None
        assert root.attributes is None

    def test_attributes_copied_verbatim(self):
        root = root_of('<a x="1" y=" padded "/>')
        assert root.attributes == {"x": "1", "y": " padded "}

    def test_children_keep_document_order(self):
        root = root_of("<r><b>1</b><a>2</a><b>3</b></r>")
        assert [c.name for c in root.children] == ["b", "a", "b"]
        assert [c.text for c in root.children] == ["1", "2", "3"]

    def test_element_children_take_precedence_over_text(self):
        root = root_of("<r>before<c>x</c>after</r>")
        assert root.text is None
        assert root.children[0].text == "x"

    def test_last_text_fragment_wins(self):
        # mixed content keeps only the last non-empty fragment
        root = root_of("<a>first<!-- note -->second</a>")
        assert root.text == "second"

    def test_trailing_blank_fragment_does_not_erase_text(self):
        root = root_of("<a>kept<?pi data?>   </a>")
        assert root.text == "kept"

    def test_namespace_prefix_is_kept_in_names(self):
        root = root_of('<ns:a xmlns:ns="urn:x"><ns:b>1</ns:b></ns:a>')
        assert root.name == "ns:a"
        assert root.children[0].name == "ns:b"

    def test_default_namespace_uses_local_name(self):
        root = root_of('<a xmlns="urn:x"><b/></a>')
        assert root.name == "a"
        assert root.children[0].name == "b"

    def test_case_preserved(self):
        assert root_of("<RlmsInfo/>").name == "RlmsInfo"

    def test_deep_nesting(self):
        depth = 300
        raw = "<n>" * depth + "leaf" + "</n>" * depth
        node = root_of(raw)
        for _ in range(depth - 1):
            assert len(node.children) == 1
            node = node.children[0]
        assert node.text == "leaf"

    @pytest.mark.parametrize("raw", [
        "<a><b></a>",
        "<a>",
        "not xml at all",
        "<a/><b/>",
        "",
    ])
    def test_malformed_input_returns_error_value(self, raw):
        result = build_tree(raw)
        assert isinstance(result, ParseError)
        assert str(result)

    def test_parse_error_carries_parser_message(self):
        result = build_tree("<a><b></a>")
        assert isinstance(result, ParseError)
        assert "mismatch" in result.message.lower()


class TestGrouping:
    """Test partition_by_name and group_children."""

    def test_partition_preserves_first_seen_order(self):
        root = root_of("<r><x>1</x><y>2</y><x>3</x><z/></r>")
        groups = partition_by_name(root.children)
        assert list(groups) == ["x", "y", "z"]
        assert [n.text for n in groups["x"]] == ["1", "3"]

    def test_repeated_tag_becomes_group(self):
        root = root_of("<r><x>1</x><y>2</y><x>3</x></r>")
        entries = group_children(root.children)
        assert len(entries) == 2

        group, single = entries
        assert isinstance(group, NodeGroup)
        assert group.name == "x"
        assert len(group) == 2
        assert [n.text for n in group.items] == ["1", "3"]

        assert isinstance(single, TreeNode)
        assert single.text == "2"

    def test_empty_children(self):
        assert group_children(()) == []

    def test_grouping_is_recomputed_from_children(self):
        root = root_of("<r><x/><x/></r>")
        assert group_children(root.children) == group_children(root.children)


class TestRecordLabel:
    """Test record_label display helper."""

    def test_label_is_id_before_at(self):
        root = root_of("<rlmsinfo><rlmsreginfo><PrivateID>404535130000840@ims.example</PrivateID></rlmsreginfo></rlmsinfo>")
        assert record_label(root.children[0]) == "404535130000840"

    def test_label_matches_case_insensitively(self):
        root = root_of("<RLMSREGINFO><privateid>123</privateid></RLMSREGINFO>")
        assert record_label(root) == "123"

    def test_no_label_for_other_tags(self):
        root = root_of("<other><PrivateID>123</PrivateID></other>")
        assert record_label(root) is None

    def test_no_label_without_identifier(self):
        root = root_of("<rlmsreginfo><hssName>NA</hssName></rlmsreginfo>")
        assert record_label(root) is None


class TestTreeToDict:
    """Test JSON view used by the renderer."""

    def test_plain_leaf_is_its_text(self):
        assert tree_to_dict(root_of("<a>1</a>")) == "1"
        assert tree_to_dict(root_of("<a/>")) is None

    def test_groups_become_lists(self):
        root = root_of('<r id="7"><x>1</x><x>2</x><y>3</y></r>')
        assert tree_to_dict(root) == {"@id": "7", "x": ["1", "2"], "y": "3"}

    def test_leaf_with_attributes_keeps_text(self):
        assert tree_to_dict(root_of('<a k="v">t</a>')) == {"@k": "v", "#text": "t"}
