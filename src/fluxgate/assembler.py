"""Fragment assembly: rebuild complete tool calls from streamed deltas.

Vendors deliver tool calls in three shapes:

- whole calls (``add_complete``);
- a "call started" signal with id and name followed by argument-text
  fragments addressed by a positional index (``start`` / ``append``),
  sealed by an explicit completion (``complete``) or by end of stream
  (``finish``);
- index slots reused across calls within one turn, where a new id on an
  open slot is the only valid trigger for sealing the previous call.

Argument text is appended verbatim in arrival order. Sealing parses the
buffer with ``parse_arguments`` and never fails.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any
import uuid

from fluxgate._json import parse_arguments
from fluxgate.types import ToolCall

if TYPE_CHECKING:
    from collections.abc import Mapping

log = logging.getLogger(__name__)


def synthesize_call_id() -> str:
    """Return a fresh id for vendors that do not assign one."""
    return f"call_{uuid.uuid4().hex[:8]}"


@dataclass
class _Slot:
    """An open accumulator for one tool call."""

    id: str | None
    name: str | None
    args_text: str = ""


class FragmentAssembler:
    """Accumulates tool-call fragments for one request and seals them."""

    def __init__(self) -> None:
        self._open: dict[int, _Slot] = {}
        self._sealed: list[ToolCall] = []
        self._sealed_ids: set[str] = set()

    @property
    def sealed(self) -> list[ToolCall]:
        """All sealed calls, in seal order."""
        return list(self._sealed)

    @property
    def has_open(self) -> bool:
        """Whether any call is still accumulating."""
        return bool(self._open)

    def is_open(self, index: int) -> bool:
        """Whether slot *index* is accumulating."""
        return index in self._open

    def start(
        self, index: int, call_id: str | None, name: str | None
    ) -> list[ToolCall]:
        """Open slot *index* for a new call; return calls sealed as a result."""
        sealed: list[ToolCall] = []
        slot = self._open.get(index)
        if slot is not None:
            if slot.id is None or call_id is None or slot.id == call_id:
                # Same call, or a slot opened by an early fragment: adopt.
                if call_id is not None:
                    slot.id = call_id
                if name:
                    slot.name = name
                return sealed
            previous = self._seal(index)
            if previous is not None:
                sealed.append(previous)
        self._open[index] = _Slot(id=call_id, name=name or None)
        return sealed

    def append(self, index: int, text: str, *, name: str | None = None) -> None:
        """Append argument text to slot *index*, opening it if needed."""
        slot = self._open.get(index)
        if slot is None:
            slot = _Slot(id=None, name=None)
            self._open[index] = slot
        if name and not slot.name:
            slot.name = name
        if text:
            slot.args_text += text

    def complete(self, index: int) -> ToolCall | None:
        """Seal slot *index* on an explicit completion signal."""
        return self._seal(index)

    def add_complete(
        self,
        call_id: str | None,
        name: str,
        arguments: Mapping[str, Any] | str | None,
    ) -> ToolCall | None:
        """Record a call the vendor delivered whole."""
        if isinstance(arguments, str):
            args = parse_arguments(arguments)
        else:
            args = dict(arguments or {})
        return self._record(call_id or synthesize_call_id(), name, args)

    def finish(self) -> list[ToolCall]:
        """Seal every call still open (stream ended), in opening order."""
        sealed: list[ToolCall] = []
        for index in list(self._open):
            call = self._seal(index)
            if call is not None:
                sealed.append(call)
        return sealed

    def _seal(self, index: int) -> ToolCall | None:
        slot = self._open.pop(index, None)
        if slot is None:
            return None
        if not slot.name:
            log.warning(
                "Discarding tool call without a name (id=%s, %d argument chars)",
                slot.id,
                len(slot.args_text),
            )
            return None
        return self._record(
            slot.id or synthesize_call_id(), slot.name, parse_arguments(slot.args_text)
        )

    def _record(self, call_id: str, name: str, args: dict[str, Any]) -> ToolCall | None:
        if call_id in self._sealed_ids:
            log.debug("Tool call %s already sealed; ignoring duplicate", call_id)
            return None
        call = ToolCall(id=call_id, name=name, arguments=args)
        self._sealed_ids.add(call_id)
        self._sealed.append(call)
        return call
