"""Immutable, indexed view of an HTML body.

Nodes are numbered in document (pre-order) order, so "everything at or after
node i" is every index >= i that is not an ancestor of i. Removing nodes never
mutates the tree: a MarkupView is the tree plus a frozen set of excluded
indices.
"""

from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, TypeVar

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag

BLOCK_TAGS = frozenset({
    "address", "article", "aside", "blockquote", "center", "dd", "div", "dl", "dt", "fieldset",
    "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5", "h6", "header", "hr",
    "li", "main", "nav", "ol", "p", "pre", "section", "table", "tbody", "td", "tfoot", "th",
    "thead", "tr", "ul",
})
PARAGRAPH_TAGS = frozenset({"p", "blockquote", "table", "ul", "ol", "pre", "h1", "h2", "h3", "h4", "h5", "h6"})
VOID_TAGS = frozenset({"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "param", "source", "track", "wbr"})
HIDDEN_TAGS = frozenset({"head", "script", "style", "title", "template"})

DOCUMENT = "[document]"

_WS_RE = re.compile(r"[ \t\r\n\f ]+")

T = TypeVar("T")


@dataclass(frozen=True)
class MarkupNode:
    index: int
    parent: Optional[int]
    children: tuple[int, ...]
    kind: str  # element | text | comment | declaration
    tag: Optional[str] = None
    attrs: tuple[tuple[str, str], ...] = ()
    text: str = ""

    def attr(self, name: str) -> Optional[str]:
        for k, v in self.attrs:
            if k == name:
                return v
        return None

    @property
    def classes(self) -> tuple[str, ...]:
        return tuple((self.attr("class") or "").split())

    @property
    def style(self) -> str:
        """Inline style, lower-cased with all whitespace removed."""
        return "".join((self.attr("style") or "").lower().split())


def _attr_value(value) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value)


@dataclass(frozen=True)
class MarkupTree:
    nodes: tuple[MarkupNode, ...]

    @classmethod
    def from_html(cls, markup: str) -> "MarkupTree":
        soup = BeautifulSoup(markup or "", "html.parser")
        rows: list[dict] = []
        pending: list[tuple[object, Optional[int]]] = [(soup, None)]

        # Explicit stack: crafted markup can nest far deeper than the recursion limit
        while pending:
            el, parent = pending.pop()
            index = len(rows)
            row = {"parent": parent, "children": [], "kind": "text", "tag": None, "attrs": (), "text": ""}
            rows.append(row)
            if parent is not None:
                rows[parent]["children"].append(index)

            if isinstance(el, Tag):
                row["kind"] = "element"
                row["tag"] = DOCUMENT if el is soup else el.name.lower()
                row["attrs"] = tuple((str(k).lower(), _attr_value(v)) for k, v in (el.attrs or {}).items())
                pending.extend((child, index) for child in reversed(list(el.children)))
            elif isinstance(el, Comment):
                row["kind"] = "comment"
                row["text"] = str(el)
            elif isinstance(el, (Doctype, Declaration, ProcessingInstruction)):
                row["kind"] = "declaration"
                row["text"] = str(el)
            elif isinstance(el, NavigableString):
                row["text"] = str(el)

        return cls(nodes=tuple(
            MarkupNode(
                index=i,
                parent=row["parent"],
                children=tuple(row["children"]),
                kind=row["kind"],
                tag=row["tag"],
                attrs=row["attrs"],
                text=row["text"],
            )
            for i, row in enumerate(rows)
        ))

    def __len__(self) -> int:
        return len(self.nodes)

    def walk(self, index: int = 0) -> Iterator[MarkupNode]:
        stack = [index]
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def elements(self) -> Iterator[MarkupNode]:
        return (n for n in self.walk() if n.kind == "element" and n.tag != DOCUMENT)

    def subtree(self, index: int) -> frozenset[int]:
        return frozenset(n.index for n in self.walk(index))

    def ancestors(self, index: int) -> list[int]:
        out = []
        parent = self.nodes[index].parent
        while parent is not None:
            out.append(parent)
            parent = self.nodes[parent].parent
        return out

    def from_index_on(self, index: int) -> frozenset[int]:
        """Node ``index`` and everything after it in document order."""
        return frozenset(range(index, len(self.nodes))) - frozenset(self.ancestors(index))

    def before_index(self, index: int) -> frozenset[int]:
        """Everything preceding ``index`` in document order, minus its ancestors."""
        return frozenset(range(index)) - frozenset(self.ancestors(index))

    def view(self, excluded: Iterable[int] = ()) -> "MarkupView":
        return MarkupView(tree=self, excluded=frozenset(excluded))


@dataclass(frozen=True)
class MarkupView:
    tree: MarkupTree
    excluded: frozenset[int]

    def includes(self, index: int) -> bool:
        return index not in self.excluded

    def without(self, indices: Iterable[int]) -> "MarkupView":
        closed: set[int] = set(self.excluded)
        for i in indices:
            closed |= self.tree.subtree(i)
        return MarkupView(tree=self.tree, excluded=frozenset(closed))

    def only(self, indices: Iterable[int]) -> "MarkupView":
        """Just the given subtrees, plus the ancestors that hold them."""
        keep: set[int] = set()
        for i in sorted(indices):
            if i in keep:
                continue
            keep |= self.tree.subtree(i)
            parent = self.tree.nodes[i].parent
            while parent is not None and parent not in keep:
                keep.add(parent)
                parent = self.tree.nodes[parent].parent
        return MarkupView(tree=self.tree, excluded=frozenset(range(len(self.tree))) - keep)

    def render(self) -> str:
        out: list[str] = []
        stack: list[tuple[int, bool]] = [(0, False)]
        while stack:
            index, closing = stack.pop()
            node = self.tree.nodes[index]
            if closing:
                out.append(f"</{node.tag}>")
                continue
            if index in self.excluded:
                continue
            if node.kind == "text":
                out.append(html_lib.escape(node.text, quote=False))
            elif node.kind == "comment":
                out.append(f"<!--{node.text}-->")
            elif node.kind == "declaration":
                out.append(f"<!{node.text}>")
            else:
                if node.tag != DOCUMENT:
                    attrs = "".join(f' {k}="{html_lib.escape(v, quote=True)}"' for k, v in node.attrs)
                    out.append(f"<{node.tag}{attrs}>")
                    if node.tag in VOID_TAGS:
                        continue
                    stack.append((index, True))
                stack.extend((child, False) for child in reversed(node.children))
        return "".join(out)

    def _tokens(self) -> list[tuple]:
        """("text", index, str) and ("break", newlines, additive) tokens in reading order."""
        tokens: list[tuple] = []
        stack: list[tuple[str, int, bool]] = [("enter", 0, False)]
        while stack:
            op, index, pre = stack.pop()
            node = self.tree.nodes[index]
            if op == "exit":
                tokens.append(("break", 2 if node.tag in PARAGRAPH_TAGS else 1, False))
                continue
            if index in self.excluded:
                continue
            if node.kind == "text":
                tokens.append(("text", index, node.text if pre else _WS_RE.sub(" ", node.text)))
                continue
            if node.kind != "element" or node.tag in HIDDEN_TAGS:
                continue
            if node.tag == "br":
                tokens.append(("break", 1, True))
                continue
            if node.tag in BLOCK_TAGS:
                tokens.append(("break", 2 if node.tag in PARAGRAPH_TAGS else 1, False))
                stack.append(("exit", index, pre))
            child_pre = pre or node.tag == "pre"
            stack.extend(("enter", child, child_pre) for child in reversed(node.children))
        return tokens

    def pieces(self) -> list[tuple[int, str]]:
        """Readable text as (text node index, slice) pairs.

        Line breaks are attached to the slice before them, so joining the
        slices gives exactly ``text()``.
        """
        out: list[list] = []
        block = br = 0
        for tok in self._tokens():
            if tok[0] == "break":
                if tok[2]:
                    br += tok[1]
                else:
                    block = max(block, tok[1])
                continue
            _, index, s = tok
            newlines = min(max(block, br), 2)
            if not s.strip(" \t"):
                if newlines or not out or out[-1][1].endswith((" ", "\n")):
                    continue
                s = " "
            block = br = 0
            if not out:
                s = s.lstrip(" \t")
            elif newlines:
                prev = out[-1][1].rstrip(" \t")
                have = len(prev) - len(prev.rstrip("\n"))
                out[-1][1] = prev + "\n" * max(0, newlines - have)
                s = s.lstrip(" \t")
            elif s.startswith(" ") and out[-1][1].endswith((" ", "\n")):
                s = s.lstrip(" ")
            if s:
                out.append([index, s])
        while out:
            out[-1][1] = out[-1][1].rstrip()
            if out[-1][1]:
                break
            out.pop()
        return [(i, s) for i, s in out]

    def text(self) -> str:
        return "".join(s for _, s in self.pieces())

    def labelled(self, label_for: Callable[[int], T]) -> list[tuple[T, str]]:
        """``pieces()`` regrouped by label, adjacent equal labels merged."""
        runs: list[list] = []
        for index, s in self.pieces():
            label = label_for(index)
            if runs and runs[-1][0] == label:
                runs[-1][1] += s
            else:
                runs.append([label, s])
        return [(label, s) for label, s in runs]

    def is_empty(self) -> bool:
        return not self.pieces()


def html_to_text(markup: str) -> str:
    return MarkupTree.from_html(markup).view().text()
