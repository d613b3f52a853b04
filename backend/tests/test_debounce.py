from __future__ import annotations

import asyncio

import pytest

from stopover_router.debounce import QueryDebouncer


class Recorder:
    def __init__(self, *, delay_s: float = 0.0) -> None:
        self.delay_s = delay_s
        self.searched: list[str] = []
        self.committed: list[tuple[str, str]] = []

    async def search(self, text: str) -> str:
        self.searched.append(text)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        return text.upper()

    def commit(self, text: str, result: str) -> None:
        self.committed.append((text, result))


def _debouncer(recorder: Recorder, delay_s: float = 0.02) -> QueryDebouncer[str]:
    return QueryDebouncer("field", delay_s=delay_s, search=recorder.search, commit=recorder.commit)


@pytest.mark.anyio
async def test_rapid_updates_produce_one_search_with_last_text() -> None:
    recorder = Recorder()
    debouncer = _debouncer(recorder)

    debouncer.update("b")
    debouncer.update("ba")
    debouncer.update("bak")
    await debouncer.wait()

    assert recorder.searched == ["bak"]
    assert recorder.committed == [("bak", "BAK")]
    assert debouncer.last_emitted == "bak"


@pytest.mark.anyio
async def test_nothing_fires_before_quiet_period() -> None:
    recorder = Recorder()
    debouncer = _debouncer(recorder, delay_s=0.2)

    debouncer.update("bakery")
    await asyncio.sleep(0.02)
    assert recorder.searched == []
    assert debouncer.pending

    await debouncer.aclose()
    assert recorder.searched == []


@pytest.mark.anyio
async def test_unchanged_text_is_not_searched_again() -> None:
    recorder = Recorder()
    debouncer = _debouncer(recorder)

    debouncer.update("bakery")
    await debouncer.wait()
    debouncer.update("bakery")
    await debouncer.wait()

    assert recorder.searched == ["bakery"]

    debouncer.update("pharmacy")
    await debouncer.wait()
    assert recorder.searched == ["bakery", "pharmacy"]


@pytest.mark.anyio
async def test_reset_forgets_last_emitted_text() -> None:
    recorder = Recorder()
    debouncer = _debouncer(recorder)

    debouncer.update("bakery")
    await debouncer.wait()
    debouncer.reset()
    debouncer.update("bakery")
    await debouncer.wait()

    assert recorder.searched == ["bakery", "bakery"]


@pytest.mark.anyio
async def test_superseded_in_flight_search_never_commits() -> None:
    recorder = Recorder(delay_s=0.1)
    debouncer = _debouncer(recorder, delay_s=0.01)

    debouncer.update("bak")
    await asyncio.sleep(0.04)
    assert recorder.searched == ["bak"]

    debouncer.update("bakery")
    await debouncer.wait()

    assert recorder.committed == [("bakery", "BAKERY")]


@pytest.mark.anyio
async def test_cancel_drops_pending_work() -> None:
    recorder = Recorder()
    debouncer = _debouncer(recorder)

    debouncer.update("bakery")
    debouncer.cancel()
    await asyncio.sleep(0.05)

    assert recorder.searched == []
    assert recorder.committed == []
    assert debouncer.latest_text == "bakery"
