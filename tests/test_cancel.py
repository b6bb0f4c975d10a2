import asyncio
from typing import List

import pytest

from discord_connector import Cancellation, ConnectionCancelled


class TestLink:
    def test_parent_cancels_child(self) -> None:
        external, internal = Cancellation(), Cancellation()
        linked = Cancellation.link(external, internal)

        internal.cancel()

        assert linked.cancelled
        assert not external.cancelled

    def test_child_leaves_parents(self) -> None:
        parent = Cancellation()
        child = Cancellation.link(parent)

        child.cancel()

        assert child.cancelled
        assert not parent.cancelled

    def test_cancelled_parent(self) -> None:
        parent = Cancellation()
        parent.cancel()

        assert Cancellation.link(parent).cancelled

    def test_nested(self) -> None:
        root = Cancellation()
        grandchild = Cancellation.link(Cancellation.link(root))

        root.cancel()
        assert grandchild.cancelled


class TestCallbacks:
    def test_called_once(self) -> None:
        cancellation = Cancellation()
        calls: List[int] = []
        cancellation.add_callback(lambda: calls.append(1))

        cancellation.cancel()
        cancellation.cancel()

        assert calls == [1]

    def test_already_cancelled(self) -> None:
        cancellation = Cancellation()
        cancellation.cancel()
        calls: List[int] = []

        cancellation.add_callback(lambda: calls.append(1))
        assert calls == [1]

    def test_failing_callback(self) -> None:
        parent = Cancellation()
        child = Cancellation.link(parent)

        def broken() -> None:
            raise RuntimeError('broken')

        parent.add_callback(broken)
        parent.cancel()

        assert child.cancelled

    def test_raise_if_cancelled(self) -> None:
        cancellation = Cancellation()
        cancellation.raise_if_cancelled()

        cancellation.cancel()
        with pytest.raises(ConnectionCancelled):
            cancellation.raise_if_cancelled()


class TestWaiting:
    @pytest.mark.asyncio
    async def test_sleep_elapsed(self) -> None:
        assert await Cancellation().sleep(0.01)

    @pytest.mark.asyncio
    async def test_sleep_cancelled(self) -> None:
        cancellation = Cancellation()
        asyncio.get_running_loop().call_later(0.01, cancellation.cancel)

        assert not await asyncio.wait_for(cancellation.sleep(30), 1)

    @pytest.mark.asyncio
    async def test_guard_result(self) -> None:
        async def answer() -> int:
            return 42

        assert await Cancellation().guard(answer()) == 42

    @pytest.mark.asyncio
    async def test_guard_exception(self) -> None:
        async def broken() -> None:
            raise ValueError('broken')

        with pytest.raises(ValueError):
            await Cancellation().guard(broken())

    @pytest.mark.asyncio
    async def test_guard_cancelled(self) -> None:
        cancellation = Cancellation()
        finished: List[bool] = []

        async def slow() -> None:
            try:
                await asyncio.sleep(30)
            finally:
                finished.append(True)

        asyncio.get_running_loop().call_later(0.01, cancellation.cancel)
        with pytest.raises(ConnectionCancelled):
            await asyncio.wait_for(cancellation.guard(slow()), 1)

        assert finished == [True]

    @pytest.mark.asyncio
    async def test_guard_already_cancelled(self) -> None:
        cancellation = Cancellation()
        cancellation.cancel()

        async def never() -> None:
            raise AssertionError('Should not run')

        coro = never()
        with pytest.raises(ConnectionCancelled):
            await cancellation.guard(coro)
        coro.close()
