from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


EVENTS = frozenset({"parse_start", "parse_end", "on_error", "scope_enter", "scope_exit"})


class ExtensionError(Exception):
    pass


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    location: Any  # SourceLocation | None
    extra: Optional[Dict[str, Any]]


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, name)]
    _step_rules: List[Tuple[int, Callable[[Any, StepContext], None], str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int = 0, name: str = "") -> None:
        if event not in EVENTS:
            raise ExtensionError(f"Unknown event '{event}'")
        self._events.setdefault(event, []).append((priority, handler, name or handler.__name__))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _name in self._events.get(event, []):
            handler(*args, **kwargs)

    def add_step_rule(self, *, name: str, every_n: int, handler: Callable[[Any, StepContext], None]) -> None:
        if every_n <= 0:
            raise ExtensionError("every_n must be >= 1")
        self._step_rules.append((every_n, handler, name))

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for every_n, handler, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(interpreter, ctx)

    def handlers(self, event: str) -> List[str]:
        return [name for _p, _h, name in self._events.get(event, [])]
