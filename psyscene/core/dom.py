"""Lightweight element tree standing in for the browser DOM.

Scenes own one subtree each. Host adapters (a browser bridge, a pyglet window,
a terminal renderer) read this tree; the core only mutates it.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any


class Element:
    __slots__ = ("tag", "attrs", "style", "children", "parent", "_is_document")

    def __init__(self, tag: str, attrs: Mapping[str, Any] | None = None) -> None:
        self.tag = tag
        self.attrs: dict[str, Any] = dict(attrs or {})
        self.style: dict[str, str] = {}
        self.children: list[Element | str] = []
        self.parent: Element | None = None
        self._is_document = False

    def __repr__(self) -> str:
        return f"<Element {self.tag} children={len(self.children)}>"

    @property
    def is_connected(self) -> bool:
        node: Element | None = self
        while node is not None:
            if node._is_document:
                return True
            node = node.parent
        return False

    @property
    def text(self) -> str:
        return "".join(c if isinstance(c, str) else c.text for c in self.children)

    @text.setter
    def text(self, value: str) -> None:
        for child in self.children:
            if isinstance(child, Element):
                child.parent = None
        self.children = [str(value)]

    @property
    def visible(self) -> bool:
        return self.style.get("visibility") != "hidden"

    def append(self, *nodes: Element | str) -> "Element":
        for node in nodes:
            if isinstance(node, Element):
                if node is self or node.contains(self):
                    raise ValueError("cannot append an element into its own subtree")
                node.remove()
                node.parent = self
            self.children.append(node)
        return self

    def remove(self) -> None:
        if self.parent is None:
            return
        siblings = self.parent.children
        for i, child in enumerate(siblings):
            if child is self:
                del siblings[i]
                break
        self.parent = None

    def contains(self, other: Element) -> bool:
        node: Element | None = other
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def iter(self) -> Iterable[Element]:
        yield self
        for child in self.children:
            if isinstance(child, Element):
                yield from child.iter()


class Document:
    """Root of the element tree; anything below `body` counts as connected."""

    def __init__(self) -> None:
        self.body = Element("body")
        self.body._is_document = True


def h(
    tag: str,
    attrs: Mapping[str, Any] | None = None,
    children: Element | str | Iterable[Element | str] | None = None,
    *,
    style: Mapping[str, str] | None = None,
) -> Element:
    """Create an element quickly: `h("div", {"class": "stim"}, "+")`."""

    el = Element(tag, attrs)
    if style:
        el.style.update(style)
    if children is None:
        return el
    if isinstance(children, (Element, str)):
        el.append(children)
    else:
        el.append(*children)
    return el
