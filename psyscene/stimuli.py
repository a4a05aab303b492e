"""Built-in stimulus setups."""
from __future__ import annotations

from typing import Any

from psyscene.core.dom import h
from psyscene.core.scene import Scene, SetupResult

_TEXT_STYLE_KEYS = ("color", "font_size", "font_family", "background")


def text_stim(props: dict[str, Any], ctx: Scene) -> SetupResult:
    """Centered text. Props: `text`, plus optional `color`, `font_size`, `font_family`, `background`."""

    node = h("div", {"class": "psyscene-text"}, str(props.get("text", "")))
    last: dict[str, Any] = {}

    def render(new_props: dict[str, Any]) -> None:
        text = str(new_props.get("text", ""))
        if last.get("text") != text:
            node.text = text
        for key in _TEXT_STYLE_KEYS:
            value = new_props.get(key)
            if last.get(key) == value:
                continue
            css_key = key.replace("_", "-")
            if value is None:
                node.style.pop(css_key, None)
            else:
                node.style[css_key] = str(value)
        last.clear()
        last.update(new_props)

    render(props)
    ctx.on("scene:show", render)
    return SetupResult(node=node, data=lambda: {"text": node.text})
