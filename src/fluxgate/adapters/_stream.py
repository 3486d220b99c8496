"""Shared streaming driver: state machine, cancellation, error conversion.

Vendor adapters supply an async generator of non-terminal events (the
"body") and this driver wraps it so every adapter follows the same
lifecycle: ``connecting -> streaming -> completed | errored | cancelled``.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import logging
from typing import TYPE_CHECKING

from fluxgate.adapters._errors import classify_error
from fluxgate.events import ErrorEvent
from fluxgate.session import AdapterState

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fluxgate.events import StreamEvent
    from fluxgate.session import RequestSession

log = logging.getLogger(__name__)


async def drive(
    vendor: str,
    session: RequestSession,
    body: AsyncIterator[StreamEvent],
) -> AsyncIterator[StreamEvent]:
    """Run *body* under the adapter lifecycle and append the terminal event.

    Cancellation is observed before every event: once the session's token is
    set nothing more is yielded and *body* is closed, which closes the
    upstream response. Exceptions become a single ``error`` event, except
    when they only reflect the request being cancelled.
    """
    session.transition(AdapterState.CONNECTING)
    try:
        async with aclosing(body) as events:
            async for event in events:
                if session.cancelled:
                    session.transition(AdapterState.CANCELLED)
                    return
                yield event
        if session.cancelled:
            session.transition(AdapterState.CANCELLED)
            return
        for event in session.tool_events(session.assembler.finish()):
            yield event
        session.transition(AdapterState.COMPLETED)
        yield session.done()
    except asyncio.CancelledError:
        session.transition(AdapterState.CANCELLED)
        raise
    except Exception as exc:
        if session.cancelled:
            session.transition(AdapterState.CANCELLED)
            log.debug("request %s: %s error after cancel ignored", session.request_id, vendor)
            return
        session.transition(AdapterState.ERRORED)
        yield ErrorEvent(classify_error(exc, vendor=vendor))
