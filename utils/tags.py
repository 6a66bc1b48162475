"""Tag set helpers for scoping InfluxDB queries and stamping output points."""

from typing import Dict, Mapping


def parse_tags(tags: str) -> Dict[str, str]:
    """Parse a comma-separated list of tag=value pairs.

    Args:
        tags: String like "station=home,sensor=roof"; empty means no tags

    Returns:
        Dictionary of tag names to values

    Raises:
        ValueError: If any entry is not exactly one name=value pair
    """
    parsed = {}
    if not tags.strip():
        return parsed

    for tag in tags.split(","):
        parts = tag.split("=")
        if len(parts) != 2 or not parts[0].strip() or not parts[1]:
            raise ValueError(f"Invalid tag: '{tag}'. Expected name=value")
        # values are matched against stored series verbatim
        parsed[parts[0].strip()] = parts[1]

    return parsed


def quote_identifier(name: str) -> str:
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def partial_where_clause_for_tags(tags: Mapping[str, str]) -> str:
    """Build the tag equality part of an InfluxQL WHERE clause.

    The result is meant to be appended after a time condition, so it starts
    with " AND " when non-empty. Tags are sorted so the same tag set always
    produces the same query.

    Args:
        tags: Tag names to values

    Returns:
        String like " AND \"station\"='home'" or "" for no tags
    """
    if not tags:
        return ""
    parts = [
        f"{quote_identifier(k)}={quote_literal(v)}"
        for k, v in sorted(tags.items())
    ]
    return " AND " + " AND ".join(parts)


def merge_write_tags(query_tags: Mapping[str, str], aggregator_id: str) -> Dict[str, str]:
    """Build the tag set stamped on every aggregate point.

    The query tags are copied over the aggregator identity, so a caller tag
    named "aggregator" takes precedence.

    Args:
        query_tags: Tags the source data was filtered by
        aggregator_id: Identity of this program, e.g. "product/1.2.3"

    Returns:
        New dictionary of tags
    """
    write_tags = {"aggregator": aggregator_id}
    write_tags.update(query_tags)
    return write_tags
