import logging

import streamlit as st

from markup import CONTAINER_TAG, RECORD_TAG, ParseError, count_tag_occurrences
from rlms_csv import build_table, export_filename, table_to_csv, table_to_frame
from sftp_source import RlmsXmlSource, TransportError, load_settings
from xml_tree import NodeGroup, TreeNode, build_tree, group_children, record_label, tree_to_dict

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SAMPLE_XML = """<?xml version="1.0"?>
<rlmsinfo>
  <rlmsreginfo>
    <PrivateID>404535130000840</PrivateID>
    <hssName>NA</hssName>
  </rlmsreginfo>
  <rlmsreginfo>
    <PrivateID>404535130000841</PrivateID>
    <hssName>NA</hssName>
  </rlmsreginfo>
</rlmsinfo>"""


def get_source() -> RlmsXmlSource:
    # one source (and cache) per browser session
    if "xml_source" not in st.session_state:
        st.session_state["xml_source"] = RlmsXmlSource(load_settings())
    return st.session_state["xml_source"]


def node_caption(node: TreeNode) -> str:
    if node.has_children:
        caption = f"{node.name} {{}}"
    elif node.text:
        caption = f'{node.name}: "{node.text}"'
    else:
        caption = f"{node.name}: null"
    if node.attributes:
        caption += "  " + " ".join(f'@{k}="{v}"' for k, v in node.attributes.items())
    return caption


def render_entry(node: TreeNode, title: str):
    if not node.has_children and not node.attributes:
        st.markdown(f"`{node_caption(node)}`")
        return
    with st.expander(title):
        st.json(tree_to_dict(node), expanded=True)


def render_tree(tree: TreeNode):
    for root in tree.children:
        st.markdown(f"**`{node_caption(root)}`**")
        for entry in group_children(root.children):
            if isinstance(entry, NodeGroup):
                st.markdown(f"**{entry.name}** [{len(entry)}]")
                for idx, item in enumerate(entry.items):
                    label = record_label(item)
                    title = f"{entry.name}[{idx}]" + (f" · {label}" if label else "")
                    render_entry(item, title)
            else:
                label = record_label(entry)
                render_entry(entry, f"{entry.name} · {label}" if label else node_caption(entry))


def load_xml_from_sidebar():
    kind = st.sidebar.radio("XML source", ["SFTP", "Upload", "Paste", "Demo"])

    if kind == "SFTP":
        if st.sidebar.button("🔄 Fetch from SFTP"):
            try:
                st.session_state["xml"] = get_source().get_xml()
            except (TransportError, ValueError, FileNotFoundError) as e:
                logger.error(f"❌ Could not load XML: {e}")
                st.error(f"❌ {e}")
    elif kind == "Upload":
        uploaded_file = st.sidebar.file_uploader("Upload XML File", type=["xml", "txt"])
        if uploaded_file is not None:
            st.session_state["xml"] = uploaded_file.read().decode("utf-8", errors="replace")
    elif kind == "Paste":
        text = st.sidebar.text_area("Paste XML here…", height=200)
        if st.sidebar.button("Parse XML"):
            st.session_state["xml"] = text or SAMPLE_XML
    else:
        st.session_state["xml"] = SAMPLE_XML

    return st.session_state.get("xml")


# ---------------- Streamlit UI ----------------
st.title("📂 RLMS Registration Info")
st.write("""
Fetch the RLMS user-data XML, browse it as a tree, or export every
`rlmsreginfo` record as CSV.
""")

xml_content = load_xml_from_sidebar()
if not xml_content:
    st.info("Fetch from SFTP, upload a file, paste XML, or pick *Demo* to see the tree.")
    st.stop()

st.caption(f"{count_tag_occurrences(xml_content, RECORD_TAG)} <{RECORD_TAG}> records")

tree_tab, table_tab = st.tabs(["🌳 Tree", "📊 Table"])

with tree_tab:
    tree = build_tree(xml_content)
    if isinstance(tree, ParseError):
        st.error(f"❌ Error parsing XML: {tree}")
    else:
        render_tree(tree)
        st.caption(f"Tip: repeated tags are grouped as arrays, e.g. `{RECORD_TAG} [n]`. Click to expand.")

with table_tab:
    table = build_table(xml_content, RECORD_TAG, CONTAINER_TAG)
    if isinstance(table, ParseError):
        st.error(f"❌ Error parsing XML: {table}")
    else:
        if table.diagnostic:
            st.warning(table.rows[0]["message"])
        else:
            st.success(f"✅ Flattened {len(table.rows)} records into {len(table.headers)} columns.")

        st.subheader("📊 Flattened table (first 50 rows)")
        st.dataframe(table_to_frame(table).head(50), use_container_width=True)

        st.download_button(
            label="⬇️ Download CSV",
            data=table_to_csv(table),
            file_name=export_filename(RECORD_TAG),
            mime="text/csv",
        )
