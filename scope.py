from __future__ import annotations
from typing import Callable, Dict, List

from errors import UnhandledError, VariableNotFoundError
from values import UNINITIALIZED, Value, render


class Scope:
    """A stack of block frames; frame 0 is the top level.

    Lookups scan from the innermost frame outwards, so an inner declaration
    shadows an outer one until its block exits.
    """

    def __init__(self) -> None:
        self.frames: List[Dict[str, Value]] = [{}]

    @property
    def depth(self) -> int:
        return len(self.frames) - 1

    def declare(self, name: str) -> bool:
        frame = self.frames[-1]
        if name in frame:
            return False
        frame[name] = UNINITIALIZED
        return True

    def _find_frame(self, name: str) -> Dict[str, Value]:
        for frame in reversed(self.frames):
            if name in frame:
                return frame
        raise VariableNotFoundError(name)

    def has(self, name: str) -> bool:
        return any(name in frame for frame in self.frames)

    def read(self, name: str) -> Value:
        return self._find_frame(name)[name]

    def assign(self, name: str, value: Value) -> None:
        self._find_frame(name)[name] = value

    def update(self, name: str, func: Callable[[Value], Value]) -> Value:
        """Replace the visible binding of `name` with `func(current)` and return it."""
        frame = self._find_frame(name)
        value = func(frame[name])
        frame[name] = value
        return value

    def enter_scope(self) -> None:
        self.frames.append({})

    def exit_scope(self) -> Dict[str, Value]:
        if len(self.frames) == 1:
            raise UnhandledError("Cannot exit the top-level scope")
        return self.frames.pop()

    def unwind(self) -> None:
        del self.frames[1:]

    def clear(self) -> None:
        self.frames = [{}]

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = render(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return rendered

        visible: Dict[str, Value] = {}
        for frame in self.frames:
            visible.update(frame)
        return {k: _render(v) for k, v in visible.items()}
