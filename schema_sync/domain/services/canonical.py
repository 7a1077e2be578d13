"""Identifier and type canonicalization shared by the loader and the introspector."""

import re
from typing import Optional, Tuple, List

IDENT_PATTERN = r'(?:"(?:[^"]|"")+"|[A-Za-z_][A-Za-z0-9_$]*)'
QUALIFIED_PATTERN = rf'{IDENT_PATTERN}(?:\s*\.\s*{IDENT_PATTERN})?'

_IDENT_RE = re.compile(IDENT_PATTERN)
_BARE_RE = re.compile(r"^[a-z_][a-z0-9_$]*$")

_RESERVED = {
    "all", "and", "as", "check", "column", "constraint", "create", "default",
    "from", "group", "index", "order", "policy", "primary", "references",
    "select", "table", "to", "user", "using", "where", "with",
}

# base type -> (canonical name, implied time zone suffix)
_TYPE_ALIASES = {
    "int": ("integer", ""),
    "int4": ("integer", ""),
    "serial": ("integer", ""),
    "serial4": ("integer", ""),
    "int8": ("bigint", ""),
    "bigserial": ("bigint", ""),
    "serial8": ("bigint", ""),
    "int2": ("smallint", ""),
    "smallserial": ("smallint", ""),
    "bool": ("boolean", ""),
    "float8": ("double precision", ""),
    "float4": ("real", ""),
    "varchar": ("character varying", ""),
    "char": ("character", ""),
    "bpchar": ("character", ""),
    "decimal": ("numeric", ""),
    "timestamptz": ("timestamp", " with time zone"),
    "timestamp": ("timestamp", " without time zone"),
    "timetz": ("time", " with time zone"),
    "time": ("time", " without time zone"),
}

_TYPE_RE = re.compile(
    r"^(?P<base>[a-z_][a-z0-9_ ]*?)"
    r"(?P<mod>\([0-9, ]+\))?"
    r"(?P<tz> with(?:out)? time zone)?$"
)


def normalize_identifier(raw: str) -> str:
    """Unquote quoted identifiers; fold unquoted ones to lower case."""
    value = (raw or "").strip()
    if not value:
        return ""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1].replace('""', '"')
    return value.lower()


def split_qualified(raw: str) -> Tuple[Optional[str], str]:
    """Split ``schema.name`` into its normalized parts."""
    parts: List[str] = _IDENT_RE.findall(raw or "")
    if not parts:
        return None, ""
    if len(parts) == 1:
        return None, normalize_identifier(parts[0])
    return normalize_identifier(parts[-2]), normalize_identifier(parts[-1])


def quote_ident(name: str) -> str:
    if not name:
        return '""'
    if _BARE_RE.match(name) and name not in _RESERVED:
        return name
    return '"' + name.replace('"', '""') + '"'


def qualified(schema: str, name: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(name)}"


def canonical_type(raw: Optional[str]) -> str:
    """
    Render a column type the way the catalog reports it, so that ``int4``,
    ``INT`` and ``integer`` compare equal. Unknown types pass through lower-cased.
    """
    if not raw:
        return ""
    value = " ".join(str(raw).strip().lower().split())
    value = re.sub(r"\s*\(\s*", "(", value)
    value = re.sub(r"\s*,\s*", ",", value)
    value = re.sub(r"\s*\)", ")", value)

    array_suffix = ""
    while value.endswith("[]"):
        array_suffix += "[]"
        value = value[:-2].rstrip()

    match = _TYPE_RE.match(value)
    if not match:
        return value + array_suffix

    base = match.group("base").strip()
    mod = (match.group("mod") or "").replace(" ", "")
    tz = match.group("tz") or ""
    name, implied_tz = _TYPE_ALIASES.get(base, (base, ""))
    if name in ("timestamp", "time"):
        tz = tz or implied_tz or " without time zone"
    return f"{name}{mod}{tz}{array_suffix}"


def normalize_sql_text(text: Optional[str]) -> str:
    """Collapse whitespace and drop a trailing semicolon."""
    value = " ".join((text or "").split())
    return value[:-1].rstrip() if value.endswith(";") else value


def find_matching_paren(text: str, open_index: int) -> int:
    """Index of the parenthesis closing the one at ``open_index`` or -1. Quotes are respected."""
    depth = 0
    quote: Optional[str] = None
    for index in range(open_index, len(text)):
        ch = text[index]
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return index
    return -1


def split_top_level(value: str, separator: str = ",") -> List[str]:
    """Split on ``separator`` outside parentheses and quotes."""
    parts = []
    depth = 0
    quote: Optional[str] = None
    start = 0
    for index, ch in enumerate(value):
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == separator and depth == 0:
            parts.append(value[start:index].strip())
            start = index + 1
    tail = value[start:].strip()
    if tail:
        parts.append(tail)
    return [p for p in parts if p]
