from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from typing import AsyncGenerator, Generator, Iterable, TextIO

from calmeval.core.request import Request

TERMINATOR = "end"


def read_expressions(
    lines: Iterable[str], terminator: str = TERMINATOR
) -> Generator[str, None, None]:
    for line in lines:
        expression = line.strip()
        if not expression:
            continue
        if expression == terminator:
            return
        yield expression


async def aread_expressions(
    stream: TextIO, terminator: str = TERMINATOR
) -> AsyncGenerator[str, None]:
    """
    Like ``read_expressions`` for a blocking stream such as stdin.

    Lines are read one ahead of the consumer by a daemon thread, so the event
    loop keeps dispatching while input is awaited and an interrupted process
    exits without waiting for another line.
    """
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[str] = asyncio.Queue(maxsize=1)
    stop = threading.Event()

    def pump() -> None:
        try:
            while not stop.is_set():
                line = stream.readline()
                asyncio.run_coroutine_threadsafe(lines.put(line), loop).result()
                if not line:
                    return
        except (RuntimeError, asyncio.CancelledError, concurrent.futures.CancelledError):
            # event loop closed or shutting down while input was pending
            return

    threading.Thread(target=pump, name="calmeval-reader", daemon=True).start()
    try:
        while True:
            line = await lines.get()
            if not line:
                return
            expression = line.strip()
            if not expression:
                continue
            if expression == terminator:
                return
            yield expression
    finally:
        stop.set()
        # unblock a pending put so the reader thread can see the stop flag
        while not lines.empty():
            lines.get_nowait()


def format_outcome(request: Request) -> str:
    """
    Render a finished request as ``<expression> => <result>``.

    Failures render as ``<expression> => error: <kind>: <detail>``.
    """
    outcome = request.outcome()
    if outcome.ok:
        return f"{request.text} => {outcome.value}"
    return f"{request.text} => error: {outcome.error}"


def write_outcome(request: Request, out: TextIO) -> None:
    out.write(format_outcome(request) + "\n")
    out.flush()
