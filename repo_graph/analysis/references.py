"""Heuristic reference extraction for Apex classes and Lightning components.

Extraction is regex based. Comments, string literals and inline SOQL are
masked out first (replaced by spaces, so offsets and line numbers survive),
then each pattern family runs over the masked text.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field

from repo_graph.models import RelationKind, SourceKind

CLASS_SUFFIXES = (".cls", ".trigger")
COMPONENT_SCRIPT_SUFFIXES = (".js",)
COMPONENT_MARKUP_SUFFIXES = (".html",)
AURA_MARKUP_SUFFIXES = (".cmp", ".app", ".evt", ".intf")

SYSTEM_CLASSES: frozenset[str] = frozenset({
    "System", "String", "Integer", "Decimal", "Double", "Long", "Boolean",
    "Date", "Datetime", "Time", "Blob", "List", "Set", "Map", "Database",
    "Schema", "SObject", "ApexPages", "Visualforce", "UserInfo", "Test",
    "JSON", "JSONParser", "JSONGenerator", "XmlNode", "XMLNode", "Dom",
    "Http", "HttpRequest", "HttpResponse", "Limits", "Math", "Pattern",
    "Matcher", "Exception", "DmlException", "QueryException", "Id", "Url",
    "URL", "PageReference", "Site", "Crypto", "EncodingUtil", "Messaging",
    "Network", "ConnectApi", "Process", "QuickAction", "Reports", "Wave",
    "Object", "Void", "Type", "Trigger", "Iterable", "Iterator",
    "Comparable", "Queueable", "Schedulable", "Batchable", "Callable",
    "Auth", "Cache", "Approval", "Search", "Label", "Assert", "Savepoint",
    "AggregateResult", "QueryLocator", "Continuation", "RestContext",
    "RestRequest", "RestResponse", "TriggerOperation", "LoggingLevel",
    "SchedulableContext", "QueueableContext", "BatchableContext",
})

STANDARD_OBJECTS: frozenset[str] = frozenset({
    "Account", "Contact", "Lead", "Opportunity", "OpportunityLineItem",
    "Case", "User", "Task", "Event", "Campaign", "CampaignMember",
    "Product2", "Pricebook2", "PricebookEntry", "Quote", "Contract",
    "Order", "OrderItem", "Asset", "Group", "GroupMember", "Profile",
    "PermissionSet", "RecordType", "Attachment", "ContentVersion",
    "ContentDocument", "ContentDocumentLink", "Note", "FeedItem",
    "EmailMessage", "Organization", "BusinessHours", "Entitlement",
})

PRIMITIVES: frozenset[str] = frozenset({"void", "int", "long", "double", "boolean", "decimal"})

# Capitalised words that only show up as keywords
KEYWORDS: frozenset[str] = frozenset({
    "SELECT", "FROM", "WHERE", "AND", "OR", "NOT", "LIMIT", "ORDER", "BY",
    "NULL", "TRUE", "FALSE", "IN", "LIKE", "GROUP", "HAVING", "ASC", "DESC",
})


class TargetType(enum.Enum):
    CLASS = "class"
    COMPONENT = "component"


@dataclass(frozen=True)
class Reference:
    """One outbound reference found in a file."""
    symbol: str
    target: TargetType
    relation: RelationKind
    member: str | None = None
    source_symbol: str | None = None
    line_number: int = 0
    snippet: str = ""

    @property
    def key(self) -> tuple:
        return (self.symbol, self.target, self.relation, self.member, self.source_symbol)


@dataclass(frozen=True)
class ClassSummary:
    methods: tuple[str, ...] = ()
    properties: tuple[str, ...] = ()
    is_interface: bool = False
    is_abstract: bool = False


@dataclass
class _Collector:
    """Accumulates references in discovery order, dropping duplicates."""
    refs: list[Reference] = field(default_factory=list)
    seen: set[tuple] = field(default_factory=set)

    def add(self, ref: Reference) -> None:
        if ref.key in self.seen:
            return
        self.seen.add(ref.key)
        self.refs.append(ref)


# ── Masking ──────────────────────────────────────────────────

_SOQL_START = re.compile(r"\[\s*(?:SELECT|FIND)\b", re.IGNORECASE)


def mask_source(content: str) -> str:
    """Blank out comments, string literals and inline SOQL, keeping newlines."""
    out = list(content)
    i = 0
    n = len(content)

    def blank(start: int, end: int) -> None:
        for j in range(start, min(end, n)):
            if out[j] != "\n":
                out[j] = " "

    while i < n:
        ch = content[i]
        nxt = content[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "/":
            end = content.find("\n", i)
            end = n if end == -1 else end
            blank(i, end)
            i = end
        elif ch == "/" and nxt == "*":
            end = content.find("*/", i + 2)
            end = n if end == -1 else end + 2
            blank(i, end)
            i = end
        elif ch in ("'", '"', "`"):
            j = i + 1
            while j < n and content[j] != ch and content[j] != "\n":
                j += 2 if content[j] == "\\" else 1
            # Keep the quotes so import paths stay locatable by position
            blank(i + 1, j)
            i = j + 1
        elif ch == "[" and _SOQL_START.match(content, i):
            depth = 0
            j = i
            while j < n:
                if content[j] == "[":
                    depth += 1
                elif content[j] == "]":
                    depth -= 1
                    if depth == 0:
                        break
                j += 1
            blank(i + 1, j)
            i = j + 1
        else:
            i += 1
    return "".join(out)


def _line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def _snippet(content: str, offset: int) -> str:
    start = content.rfind("\n", 0, offset) + 1
    end = content.find("\n", offset)
    return content[start:] if end == -1 else content[start:end].strip()


def is_ignored_symbol(name: str) -> bool:
    if not name or name in SYSTEM_CLASSES or name in STANDARD_OBJECTS or name in KEYWORDS:
        return True
    if name.lower() in PRIMITIVES:
        return True
    # Custom objects, fields, metadata types and platform events
    return name.endswith(("__c", "__r", "__mdt", "__e", "__x"))


# ── Apex ─────────────────────────────────────────────────────

_CLASS_DECL = re.compile(r"\b(?:class|interface|enum)\s+([A-Za-z_]\w*)", re.IGNORECASE)
_EXTENDS = re.compile(r"\bextends\s+([A-Za-z_][\w.]*)", re.IGNORECASE)
_IMPLEMENTS = re.compile(r"\bimplements\s+([\w\s,.<>]+?)\s*(?:\{|\bextends\b)", re.IGNORECASE)
_NEW = re.compile(r"\bnew\s+([A-Z]\w*)\s*[(\[<{]")
_STATIC = re.compile(r"\b([A-Z]\w*)\s*\.\s*([A-Za-z_]\w*)\s*(\()?")
_TYPE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\(\s*([A-Z]\w*)\s+\w+"),          # parameters
    re.compile(r"\b([A-Z]\w*)\s+\w+\s*\("),        # return types
    re.compile(r"\b([A-Z]\w*)\s+\w+\s*[;=]"),      # declarations
    re.compile(r"[<,]\s*([A-Z]\w*)\s*[>,]"),       # generic arguments
    re.compile(r"\(\s*([A-Z]\w*)\s*\)\s*\w"),      # casts
)
_METHOD_DECL = re.compile(
    r"\b(?:(?:public|private|protected|global|static|override|virtual|abstract|testmethod|webservice)\s+)+"
    r"(?:[\w.<>,\[\]\s]+?\s+)?(\w+)\s*\([^)]*\)\s*\{",
    re.IGNORECASE,
)
_PROPERTY_DECL = re.compile(
    r"\b(?:public|private|protected|global)\s+(?:static\s+)?(?:final\s+)?"
    r"(\w+(?:<[^>]+>)?)\s+(\w+)\s*[;={]",
    re.IGNORECASE,
)


def find_method_boundaries(masked: str) -> list[tuple[str, int, int]]:
    """Return ``(name, start, end)`` offsets for every method body."""
    boundaries: list[tuple[str, int, int]] = []
    for m in _METHOD_DECL.finditer(masked):
        name = m.group(1)
        if name.lower() in ("class", "interface", "enum"):
            continue
        depth = 1
        i = m.end()
        while i < len(masked) and depth > 0:
            if masked[i] == "{":
                depth += 1
            elif masked[i] == "}":
                depth -= 1
            i += 1
        boundaries.append((name, m.start(), i))
    return boundaries


def _enclosing(boundaries: list[tuple[str, int, int]], offset: int) -> str | None:
    best: tuple[str, int, int] | None = None
    for b in boundaries:
        if b[1] <= offset < b[2] and (best is None or b[1] >= best[1]):
            best = b
    return best[0] if best else None


def _extract_class_references(
    content: str, masked: str, own_names: set[str], is_test: bool, method_level: bool,
) -> list[Reference]:
    collector = _Collector()
    boundaries = find_method_boundaries(masked) if method_level else []
    plain = RelationKind.TESTS if is_test else RelationKind.REFERENCES

    def emit(symbol: str, relation: RelationKind, offset: int, member: str | None = None) -> None:
        symbol = symbol.split("<", 1)[0].split(".", 1)[0].strip()
        if not symbol or symbol in own_names or is_ignored_symbol(symbol):
            return
        collector.add(Reference(
            symbol=symbol,
            target=TargetType.CLASS,
            relation=relation,
            member=member,
            source_symbol=_enclosing(boundaries, offset) if method_level else None,
            line_number=_line_of(content, offset),
            snippet=_snippet(content, offset),
        ))

    found: list[tuple[int, str, RelationKind, str | None]] = []
    for m in _EXTENDS.finditer(masked):
        found.append((m.start(1), m.group(1), RelationKind.EXTENDS, None))
    for m in _IMPLEMENTS.finditer(masked):
        start = m.start(1)
        for part in m.group(1).split(","):
            name = part.strip()
            if name:
                found.append((start, name, RelationKind.EXTENDS, None))
    for m in _NEW.finditer(masked):
        found.append((m.start(1), m.group(1), plain, None))
    for m in _STATIC.finditer(masked):
        if m.group(3) and method_level:
            relation = RelationKind.TESTS if is_test else RelationKind.CALLS
            found.append((m.start(1), m.group(1), relation, m.group(2)))
        else:
            found.append((m.start(1), m.group(1), plain, None))
    for pattern in _TYPE_PATTERNS:
        for m in pattern.finditer(masked):
            found.append((m.start(1), m.group(1), plain, None))

    # Stable order: by position, then by pattern family as appended above
    for offset, symbol, relation, member in sorted(found, key=lambda f: f[0]):
        emit(symbol, relation, offset, member)
    return collector.refs


def summarize_class(content: str) -> ClassSummary:
    """Methods, properties and shape flags of an Apex class."""
    masked = mask_source(content)
    methods: list[str] = []
    for name, _, _ in find_method_boundaries(masked):
        if name not in methods:
            methods.append(name)
    properties: list[str] = []
    for m in _PROPERTY_DECL.finditer(masked):
        if m.group(2) not in properties and m.group(2) not in methods:
            properties.append(m.group(2))
    return ClassSummary(
        methods=tuple(methods),
        properties=tuple(properties),
        is_interface=re.search(r"\binterface\s+\w+", masked, re.IGNORECASE) is not None,
        is_abstract=re.search(r"\babstract\s+class\b", masked, re.IGNORECASE) is not None,
    )


# ── Lightning components ─────────────────────────────────────

_JS_IMPORT = re.compile(r"""import\s+(?:([\w$]+)|\{[^}]*\}|\*\s+as\s+\w+)[^'"]*?\s+from\s+(['"])""")
_WIRE = re.compile(r"@wire\s*\(\s*([\w$]+)")
_LWC_TAG = re.compile(r"<c-([a-z0-9-]+)")
_AURA_TAG = re.compile(r"<c:([A-Za-z_]\w*)")
_AURA_CONTROLLER = re.compile(r"""\bcontroller\s*=\s*(["'])""")


def kebab_to_camel(name: str) -> str:
    head, *rest = name.split("-")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _quoted_value(content: str, quote_offset: int) -> str:
    """Read the string literal whose opening quote is at ``quote_offset``."""
    quote = content[quote_offset]
    end = content.find(quote, quote_offset + 1)
    return content[quote_offset + 1:end] if end != -1 else ""


def _extract_component_script(content: str, masked: str, is_test: bool, method_level: bool) -> list[Reference]:
    collector = _Collector()
    plain = RelationKind.TESTS if is_test else RelationKind.REFERENCES
    apex_imports: dict[str, tuple[str, str | None]] = {}

    for m in _JS_IMPORT.finditer(masked):
        quote_at = m.end() - 1
        source = _quoted_value(content, quote_at)
        offset = m.start()
        line, snippet = _line_of(content, offset), _snippet(content, offset)
        if source.startswith("@salesforce/apex/"):
            target = source[len("@salesforce/apex/"):]
            class_name, _, method = target.partition(".")
            if not class_name or is_ignored_symbol(class_name):
                continue
            if m.group(1):
                apex_imports[m.group(1)] = (class_name, method or None)
            if method_level and method:
                relation = RelationKind.TESTS if is_test else RelationKind.CALLS
                collector.add(Reference(class_name, TargetType.CLASS, relation, method, None, line, snippet))
            else:
                collector.add(Reference(class_name, TargetType.CLASS, plain, None, None, line, snippet))
        elif source.startswith("c/"):
            component = source[2:].split("/", 1)[0]
            if component:
                collector.add(Reference(component, TargetType.COMPONENT, plain, None, None, line, snippet))

    for m in _WIRE.finditer(masked):
        imported = apex_imports.get(m.group(1))
        if not imported:
            continue
        class_name, method = imported
        relation = RelationKind.TESTS if is_test else (RelationKind.CALLS if method_level and method else plain)
        collector.add(Reference(
            class_name, TargetType.CLASS, relation,
            method if method_level else None, None,
            _line_of(content, m.start()), _snippet(content, m.start()),
        ))
    return collector.refs


def _extract_component_markup(content: str, masked: str, is_test: bool) -> list[Reference]:
    collector = _Collector()
    plain = RelationKind.TESTS if is_test else RelationKind.REFERENCES
    for m in _LWC_TAG.finditer(masked):
        collector.add(Reference(
            kebab_to_camel(m.group(1)), TargetType.COMPONENT, plain, None, None,
            _line_of(content, m.start()), _snippet(content, m.start()),
        ))
    return collector.refs


def _extract_aura_markup(content: str, masked: str, is_test: bool) -> list[Reference]:
    collector = _Collector()
    plain = RelationKind.TESTS if is_test else RelationKind.REFERENCES
    for m in _AURA_CONTROLLER.finditer(masked):
        value = _quoted_value(content, m.end() - 1)
        class_name = value.rsplit(".", 1)[-1]
        if class_name and not is_ignored_symbol(class_name):
            collector.add(Reference(
                class_name, TargetType.CLASS, plain, None, None,
                _line_of(content, m.start()), _snippet(content, m.start()),
            ))
    for m in _AURA_TAG.finditer(masked):
        collector.add(Reference(
            m.group(1), TargetType.COMPONENT, plain, None, None,
            _line_of(content, m.start()), _snippet(content, m.start()),
        ))
    return collector.refs


# ── Entry point ──────────────────────────────────────────────

def own_symbols(path: str, masked: str = "") -> set[str]:
    """Names a file defines itself; references to them are not dependencies."""
    name = path.rsplit("/", 1)[-1]
    names = {name.split(".", 1)[0]}
    parts = path.split("/")
    if len(parts) >= 2 and parts[-2] not in ("lwc", "aura", "classes", "triggers"):
        names.add(parts[-2])  # component bundle directory
    for m in _CLASS_DECL.finditer(masked):
        names.add(m.group(1))
    return names


def extract_references(
    content: str, path: str, kind: SourceKind, method_level: bool = False,
) -> tuple[Reference, ...]:
    """Extract outbound references of one file in a deterministic order."""
    lower = path.lower()
    is_test = kind is SourceKind.TEST
    masked = mask_source(content)

    if lower.endswith(CLASS_SUFFIXES):
        refs = _extract_class_references(content, masked, own_symbols(path, masked), is_test, method_level)
    elif lower.endswith(COMPONENT_SCRIPT_SUFFIXES):
        own = own_symbols(path)
        refs = [r for r in _extract_component_script(content, masked, is_test, method_level)
                if not (r.target is TargetType.COMPONENT and r.symbol in own)]
    elif lower.endswith(COMPONENT_MARKUP_SUFFIXES):
        refs = _extract_component_markup(content, masked, is_test)
    elif lower.endswith(AURA_MARKUP_SUFFIXES):
        refs = _extract_aura_markup(content, masked, is_test)
    else:
        refs = []
    return tuple(refs)
