"""
Unit tests for the paginated message history.
"""

import asyncio

import pytest

from shared.test_helpers import FakeGateway, FakeViewport, TestDataFactory, settle
from service_sync.app.domain.models import MessageStatus
from service_sync.app.messages.history import HistoryEvent, MessageHistory


class TestMessageHistory:
    """Test cases for MessageHistory."""

    @pytest.fixture
    def gateway(self):
        gateway = FakeGateway()
        gateway.messages["S1"] = TestDataFactory.messages("S1", 45)
        return gateway

    @pytest.fixture
    def viewport(self):
        return FakeViewport(row_height=40.0)

    @pytest.fixture
    def history(self, gateway, viewport):
        history = MessageHistory("S1", gateway.get_messages, page_size=20, viewport=viewport)
        viewport.track(lambda: len(history.messages))
        return history

    @pytest.mark.asyncio
    async def test_initial_page_is_newest_twenty_oldest_first(self, history, viewport):
        """Test initial load of a 45 message session."""
        events = []
        history.subscribe(lambda event, _: events.append(event))

        assert await history.load_initial() is True

        assert history.message_ids() == [f"S1-m{i}" for i in range(25, 45)]
        assert history.has_next is True
        assert history.page == 1
        assert events == [HistoryEvent.INITIAL_PAGE_LOADED]
        assert viewport.bottom_scrolls == 1

    @pytest.mark.asyncio
    async def test_load_older_pages_until_exhausted(self, history, gateway):
        """Test that older pages prepend and the last page clears has_next."""
        await history.load_initial()

        assert await history.load_older() is True
        assert history.message_ids() == [f"S1-m{i}" for i in range(5, 45)]
        assert history.has_next is True

        assert await history.load_older() is True
        assert history.message_ids() == [f"S1-m{i}" for i in range(45)]
        assert history.has_next is False

        assert await history.load_older() is False
        assert [args[1] for args in gateway.calls_to("get_messages")] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_prepend_keeps_reading_position(self, history, viewport):
        """Test scroll anchoring when an older page is prepended."""
        await history.load_initial()
        assert viewport.content_height == 800.0
        viewport.scroll_to(100.0)

        await history.load_older()

        assert viewport.content_height == 1600.0
        assert viewport.scroll_offset == 900.0

    @pytest.mark.asyncio
    async def test_concurrent_load_older_issues_one_request(self, history, gateway):
        """Test the in-progress guard against duplicate loads."""
        await history.load_initial()
        gateway.hold("get_messages")

        first = asyncio.ensure_future(history.load_older())
        await settle()
        assert history.is_loading_more is True
        assert await history.on_sentinel_visible() is False
        assert await history.load_older() is False

        gateway.release("get_messages")
        assert await first is True
        assert history.is_loading_more is False
        assert len(gateway.calls_to("get_messages")) == 2

    @pytest.mark.asyncio
    async def test_loading_flag_clears_on_failure(self, history, gateway):
        await history.load_initial()
        gateway.fail("get_messages", RuntimeError("offline"))

        with pytest.raises(RuntimeError):
            await history.load_older()

        assert history.is_loading_more is False
        assert history.page == 1
        assert await history.load_older() is True

    @pytest.mark.asyncio
    async def test_append_during_older_load_stays_at_tail(self, history, gateway):
        """Test that a message sent while paging lands after everything loaded."""
        await history.load_initial()
        gateway.hold("get_messages")

        loading = asyncio.ensure_future(history.load_older())
        await settle()
        new_message = TestDataFactory.message("local-1", "S1", 100)
        await history.append(new_message)
        gateway.release("get_messages")
        await loading

        assert history.message_ids()[0] == "S1-m5"
        assert history.message_ids()[-1] == "local-1"
        assert len(history.messages) == 41

    @pytest.mark.asyncio
    async def test_append_while_rendering_prepend_does_not_shift_anchor(self, history, viewport):
        """Test that tail growth during the prepend render is not counted as prepended height."""
        await history.load_initial()
        viewport.scroll_to(100.0)
        appends = []
        render = viewport.rendered

        async def render_with_send():
            if len(history.messages) > 20 and not appends:
                appends.append(asyncio.ensure_future(
                    history.append(TestDataFactory.message("local-1", "S1", 100))
                ))
                await settle()
            await render()

        viewport.rendered = render_with_send

        await history.load_older()
        await appends[0]

        assert viewport.scroll_offset == 900.0
        assert history.message_ids()[-1] == "local-1"

    @pytest.mark.asyncio
    async def test_shifted_page_boundaries_do_not_duplicate(self, history, gateway):
        """Test that ids already present are skipped when prepending."""
        await history.load_initial()
        # Two new messages on the server shift every page by two.
        gateway.messages["S1"].extend(TestDataFactory.messages("S1", 47)[45:])

        await history.load_older()

        ids = history.message_ids()
        assert len(ids) == len(set(ids))
        assert ids[0] == "S1-m7"

    @pytest.mark.asyncio
    async def test_results_discarded_after_close(self, history, gateway):
        await history.load_initial()
        gateway.hold("get_messages")

        loading = asyncio.ensure_future(history.load_older())
        await settle()
        history.close()
        gateway.release("get_messages")

        assert await loading is False
        assert len(history.messages) == 20

    @pytest.mark.asyncio
    async def test_initial_load_discarded_when_not_current(self, gateway):
        current = {"value": True}
        history = MessageHistory("S1", gateway.get_messages, is_current=lambda: current["value"])
        gateway.hold("get_messages")

        loading = asyncio.ensure_future(history.load_initial())
        await settle()
        current["value"] = False
        gateway.release("get_messages")

        assert await loading is False
        assert history.messages == []

    @pytest.mark.asyncio
    async def test_replace_swaps_in_place(self, history):
        await history.load_initial()
        placeholder = TestDataFactory.message("pending-1", "S1", 200).model_copy(update={"is_pending": True})
        await history.append(placeholder)

        reply = TestDataFactory.message("S1-reply", "S1", 201).model_copy(update={"status": MessageStatus.SENT})
        assert await history.replace("pending-1", reply) is True
        assert history.messages[-1].id == "S1-reply"
        assert await history.replace("missing", reply) is False

    @pytest.mark.asyncio
    async def test_initial_reload_keeps_in_flight_messages(self, history):
        await history.load_initial()
        sending = TestDataFactory.message("local-9", "S1", 300).model_copy(update={"status": MessageStatus.SENDING})
        await history.append(sending)

        await history.load_initial()

        assert history.message_ids()[-1] == "local-9"
        assert len(history.messages) == 21
