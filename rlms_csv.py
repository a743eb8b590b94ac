"""
Flatten <rlmsreginfo> records into a CSV table.

Description: One row per record element found under the container node.
- Attributes become `<path>.@<name>` columns
- Leaf text becomes a `<path>` column
- Repeated child tags are indexed: `<path>.<tag>[0]`, `<path>.<tag>[1]`, ...
- Values landing on the same path are joined with " | "
"""

import argparse
import csv
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple, Union

import pandas as pd
from lxml import etree

from markup import (
    CONTAINER_TAG,
    RECORD_ID_FIELD,
    RECORD_TAG,
    ParseError,
    attribute_items,
    element_children,
    iter_elements,
    parse_document,
    tag_name,
    text_content,
)

logger = logging.getLogger(__name__)

VALUE_SEPARATOR = " | "
DIAGNOSTIC_HEADER = "message"
LINE_TERMINATOR = "\r\n"

Row = Dict[str, str]


@dataclass
class RlmsTable:
    headers: List[str]
    rows: List[Row] = field(default_factory=list)
    diagnostic: bool = False

    @classmethod
    def message(cls, text: str) -> "RlmsTable":
        return cls(headers=[DIAGNOSTIC_HEADER], rows=[{DIAGNOSTIC_HEADER: text}], diagnostic=True)


def iter_record_fields(element: etree._Element, base: str) -> Iterator[Tuple[str, str]]:
    """Yield (path, value) pairs for an element and everything below it."""
    for name, value in attribute_items(element):
        if value:
            yield f"{base}.@{name}", value

    children = element_children(element)
    if not children:
        text = text_content(element).strip()
        if text:
            yield base, text
        return

    # group children by tag, first appearance order
    groups: Dict[str, List[etree._Element]] = {}
    for child in children:
        groups.setdefault(tag_name(child), []).append(child)

    for tag, nodes in groups.items():
        if len(nodes) == 1:
            yield from iter_record_fields(nodes[0], f"{base}.{tag}")
        else:
            for idx, node in enumerate(nodes):
                yield from iter_record_fields(node, f"{base}.{tag}[{idx}]")


def add_value(row: Row, key: str, value: str) -> None:
    if not value:
        return
    row[key] = f"{row[key]}{VALUE_SEPARATOR}{value}" if row.get(key) else value


def merge_fields(pairs) -> Row:
    row: Row = {}
    for key, value in pairs:
        add_value(row, key, value)
    return row


def flatten_record(element: etree._Element, base: str = RECORD_TAG) -> Row:
    row = merge_fields(iter_record_fields(element, base))

    # convenience: numeric-only PrivateID
    private_id = row.get(f"{base}.{RECORD_ID_FIELD}")
    if private_id:
        add_value(row, f"{base}.{RECORD_ID_FIELD}Numeric", private_id.split("@", 1)[0])
    return row


def preferred_headers(record_tag: str = RECORD_TAG) -> List[str]:
    return [
        f"{record_tag}.{RECORD_ID_FIELD}",
        f"{record_tag}.{RECORD_ID_FIELD}Numeric",
        f"{record_tag}.hssName",
    ]


def order_headers(rows: List[Row], record_tag: str = RECORD_TAG) -> List[str]:
    seen = set()
    for row in rows:
        seen.update(row)
    preferred = [h for h in preferred_headers(record_tag) if h in seen]
    others = sorted(seen.difference(preferred))
    return preferred + others


def build_table(raw: str, record_tag: str = RECORD_TAG,
                container_tag: str = CONTAINER_TAG) -> Union[RlmsTable, ParseError]:
    try:
        root = parse_document(raw)
    except etree.XMLSyntaxError as e:
        logger.warning(f"XML parse failed: {e}")
        return ParseError(str(e) or "Invalid XML")
    except Exception as e:
        logger.error(f"❌ Failed to parse XML: {e}")
        return ParseError(str(e) or type(e).__name__)

    try:
        container = next(iter_elements(root, container_tag), None)
        if container is None:
            logger.info(f"No <{container_tag}> element in document")
            return RlmsTable.message(f"No <{container_tag}> root found")

        records = list(iter_elements(container, record_tag, include_self=False))
        if not records:
            logger.info(f"No <{record_tag}> elements under <{container_tag}>")
            return RlmsTable.message(f"No <{record_tag}> entries found")

        rows = [flatten_record(el, record_tag) for el in records]
        headers = order_headers(rows, record_tag)
        logger.info(f"Flattened {len(rows)} <{record_tag}> records into {len(headers)} columns")
        return RlmsTable(headers=headers, rows=rows)
    except Exception as e:
        logger.error(f"❌ Failed to flatten XML: {e}")
        return ParseError(str(e) or type(e).__name__)


def csv_escape(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def table_to_frame(table: RlmsTable) -> pd.DataFrame:
    """Rectangular view; cells a record does not have are left empty."""
    frame = pd.DataFrame(table.rows, columns=table.headers, dtype=object)
    return frame.fillna("")


def table_to_csv(table: RlmsTable) -> str:
    if table.diagnostic:
        body = LINE_TERMINATOR.join(csv_escape(r[DIAGNOSTIC_HEADER]) for r in table.rows)
        return f"{DIAGNOSTIC_HEADER}{LINE_TERMINATOR}{body}{LINE_TERMINATOR}"

    return table_to_frame(table).to_csv(
        index=False,
        quoting=csv.QUOTE_ALL,
        lineterminator=LINE_TERMINATOR,
    )


def flatten(raw: str, record_tag: str = RECORD_TAG,
            container_tag: str = CONTAINER_TAG) -> Union[str, ParseError]:
    """Raw XML -> complete CSV text, or a ParseError for malformed input."""
    table = build_table(raw, record_tag, container_tag)
    if isinstance(table, ParseError):
        return table
    return table_to_csv(table)


def export_filename(record_tag: str = RECORD_TAG, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return f"{record_tag}_{now.strftime('%Y%m%dT%H%M%S')}.csv"


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Flatten RLMS registration-info XML into CSV",
    )
    parser.add_argument("input", help="XML file to convert")
    parser.add_argument(
        "-o", "--output",
        default=None,
        help="Output CSV path (default: <record-tag>_<timestamp>.csv)",
    )
    parser.add_argument("--record-tag", default=RECORD_TAG, help=f"Record element (default: {RECORD_TAG})")
    parser.add_argument("--container-tag", default=CONTAINER_TAG, help=f"Container element (default: {CONTAINER_TAG})")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)

    with open(args.input, "r", encoding="utf-8") as f:
        xml_string = f.read()

    result = flatten(xml_string, args.record_tag, args.container_tag)
    if isinstance(result, ParseError):
        logger.error(f"❌ Error parsing XML: {result}")
        return 1

    output = args.output or export_filename(args.record_tag)
    with open(output, "w", encoding="utf-8", newline="") as f:
        f.write(result)
    logger.info(f"✅ Flattened CSV written to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
