"""Tests for the cart banner runtime: reads, coalescing, fallbacks and observers."""

import asyncio

import pytest

from app.domain.schemas import ShopSettings
from app.services.banner import (
    BANNER_ELEMENT_ID,
    TEXT_ELEMENT_ID,
    BannerDocument,
    BannerKind,
    CartBannerRuntime,
    CartReadError,
    CartSnapshot,
    EventObserver,
    FormSubmitObserver,
    MemorySnapshotCache,
    PollingObserver,
    RuntimeOptions,
    VisibilityObserver,
)

NOW_MS = 1_700_000_000_000
FAST = RuntimeOptions(debounce_ms=10, read_timeout_ms=200, poll_interval_ms=0)


class GatedCartReader:
    """Returns queued subtotals; reads block while the gate is closed."""

    def __init__(self, *subtotals):
        self.subtotals = list(subtotals)
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.gate = asyncio.Event()
        self.gate.set()

    async def read_subtotal(self) -> int:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.gate.wait()
        finally:
            self.in_flight -= 1
        value = self.subtotals.pop(0) if len(self.subtotals) > 1 else self.subtotals[0]
        if isinstance(value, Exception):
            raise value
        return value


class HangingCartReader:
    def __init__(self):
        self.calls = 0

    async def read_subtotal(self) -> int:
        self.calls += 1
        await asyncio.sleep(3600)
        return 0


class BrokenView:
    async def wait_ready(self) -> None:
        return None

    def render(self, text: str) -> None:
        raise RuntimeError("detached node")

    def hide(self) -> None:
        raise RuntimeError("detached node")


def make_runtime(settings=None, reader=None, view=None, cache=None, observers=(), options=FAST):
    return CartBannerRuntime(
        settings or ShopSettings(calculate_difference=True),
        reader=reader or GatedCartReader(15000),
        view=view or BannerDocument(),
        cache=cache,
        observers=observers,
        options=options,
        clock=lambda: NOW_MS,
    )


class TestStart:
    """Initial render and the first read."""

    @pytest.mark.asyncio
    async def test_first_read_renders_remaining_amount(self):
        view = BannerDocument()
        runtime = make_runtime(view=view)

        await runtime.start()

        assert view.text == "Only 50.00 left for free shipping!"
        assert runtime.state.kind is BannerKind.DYNAMIC

    @pytest.mark.asyncio
    async def test_loading_message_until_first_read(self):
        reader = GatedCartReader(15000)
        reader.gate.clear()
        view = BannerDocument()
        runtime = make_runtime(reader=reader, view=view)

        task = asyncio.create_task(runtime.start())
        await asyncio.sleep(0.01)
        assert view.text == "Checking your cart..."

        reader.gate.set()
        await task
        assert view.text == "Only 50.00 left for free shipping!"

    @pytest.mark.asyncio
    async def test_waits_for_dom_ready(self):
        reader = GatedCartReader(15000)
        view = BannerDocument(ready=False)
        runtime = make_runtime(reader=reader, view=view)

        task = asyncio.create_task(runtime.start())
        await asyncio.sleep(0.01)
        assert view.get_element(BANNER_ELEMENT_ID) is None
        assert reader.calls == 0

        view.mark_ready()
        await task
        assert view.text == "Only 50.00 left for free shipping!"

    @pytest.mark.asyncio
    async def test_overlapping_starts_read_once(self):
        reader = GatedCartReader(15000)
        view = BannerDocument(ready=False)
        observer = EventObserver()
        runtime = make_runtime(reader=reader, view=view, observers=[observer])

        first = asyncio.create_task(runtime.start())
        second = asyncio.create_task(runtime.start())
        await asyncio.sleep(0.01)
        view.mark_ready()
        await asyncio.gather(first, second)

        assert reader.calls == 1
        assert view.count(BANNER_ELEMENT_ID) == 1
        assert view.text == "Only 50.00 left for free shipping!"

    @pytest.mark.asyncio
    async def test_static_mode_never_reads(self):
        reader = GatedCartReader(15000)
        view = BannerDocument()
        runtime = make_runtime(ShopSettings(message_template="Free shipping today!"), reader=reader, view=view)

        await runtime.start()
        runtime.trigger("event")
        assert runtime.refresh() is None
        await asyncio.sleep(0.03)

        assert reader.calls == 0
        assert view.text == "Free shipping today!"
        assert runtime.state.kind is BannerKind.STATIC

    @pytest.mark.asyncio
    async def test_disabled_does_nothing(self):
        reader = GatedCartReader(15000)
        view = BannerDocument()
        runtime = make_runtime(ShopSettings(enabled=False, calculate_difference=True), reader=reader, view=view)

        await runtime.start()

        assert reader.calls == 0
        assert view.get_element(BANNER_ELEMENT_ID) is None
        assert runtime.state is None

    @pytest.mark.asyncio
    async def test_second_start_rerenders_in_place(self):
        reader = GatedCartReader(15000)
        view = BannerDocument()
        runtime = make_runtime(reader=reader, view=view)

        await runtime.start()
        await runtime.start()

        assert view.count(BANNER_ELEMENT_ID) == 1
        assert view.count(TEXT_ELEMENT_ID) == 1
        assert reader.calls == 1


class TestSnapshotCache:
    """The last known cart drives the first render when it is fresh."""

    @pytest.mark.asyncio
    async def test_fresh_snapshot_rendered_before_read(self):
        reader = GatedCartReader(20000)
        reader.gate.clear()
        view = BannerDocument()
        cache = MemorySnapshotCache(CartSnapshot(15000, NOW_MS - 60_000))
        runtime = make_runtime(reader=reader, view=view, cache=cache)

        task = asyncio.create_task(runtime.start())
        await asyncio.sleep(0.01)
        assert view.text == "Only 50.00 left for free shipping!"

        reader.gate.set()
        await task
        assert view.text == "Congratulations! You've got free shipping :)"
        assert cache.snapshot == CartSnapshot(20000, NOW_MS)

    @pytest.mark.asyncio
    async def test_stale_snapshot_shows_loading(self):
        reader = GatedCartReader(20000)
        reader.gate.clear()
        view = BannerDocument()
        stale = CartSnapshot(15000, NOW_MS - 25 * 3_600_000)
        runtime = make_runtime(reader=reader, view=view, cache=MemorySnapshotCache(stale))

        task = asyncio.create_task(runtime.start())
        await asyncio.sleep(0.01)
        assert view.text == "Checking your cart..."

        reader.gate.set()
        await task


class TestCoalescing:
    """At most one read in flight; triggers during a read collapse into one more."""

    @pytest.mark.asyncio
    async def test_refreshes_during_read_collapse_into_one(self):
        reader = GatedCartReader(15000)
        runtime = make_runtime(reader=reader)
        await runtime.start()
        assert reader.calls == 1

        reader.gate.clear()
        task = runtime.refresh()
        await asyncio.sleep(0)
        for _ in range(10):
            assert runtime.refresh() is task
        await asyncio.sleep(0.01)
        assert reader.calls == 2

        reader.gate.set()
        await task
        assert reader.calls == 3
        assert not runtime.reading

    @pytest.mark.asyncio
    async def test_burst_of_triggers_is_debounced(self):
        reader = GatedCartReader(15000)
        runtime = make_runtime(reader=reader, options=RuntimeOptions(debounce_ms=30, poll_interval_ms=0))
        await runtime.start()

        for _ in range(10):
            runtime.trigger("event")
            await asyncio.sleep(0.004)
        await asyncio.sleep(0.1)

        assert reader.calls == 2

    @pytest.mark.asyncio
    async def test_newer_read_replaces_text(self):
        reader = GatedCartReader(10000, 19000)
        view = BannerDocument()
        runtime = make_runtime(reader=reader, view=view)

        await runtime.start()
        assert view.text == "Only 100.00 left for free shipping!"

        await runtime.refresh()
        assert view.text == "Only 10.00 left for free shipping!"

    @pytest.mark.asyncio
    async def test_cart_change_during_read_is_read_afterwards(self):
        rendered = []
        reader = GatedCartReader(15000, 10000, 19000)
        view = BannerDocument(on_change=rendered.append)
        runtime = make_runtime(reader=reader, view=view)
        await runtime.start()

        reader.gate.clear()
        task = runtime.refresh()
        await asyncio.sleep(0)
        runtime.refresh()
        await asyncio.sleep(0.01)
        assert reader.calls == 2

        reader.gate.set()
        await task

        assert reader.calls == 3
        assert reader.max_in_flight == 1
        assert rendered[-2:] == [
            "Only 100.00 left for free shipping!",
            "Only 10.00 left for free shipping!",
        ]
        assert view.text == "Only 10.00 left for free shipping!"


class TestFailures:
    """Read errors and timeouts fall back without raising."""

    @pytest.mark.asyncio
    async def test_read_error_shows_fallback(self):
        reader = GatedCartReader(CartReadError("HTTP 500"))
        view = BannerDocument()
        runtime = make_runtime(reader=reader, view=view)

        await runtime.start()

        assert view.text == "Free shipping on orders over 200.00"
        assert view.count(BANNER_ELEMENT_ID) == 1
        assert runtime.state.kind is BannerKind.STATIC

    @pytest.mark.asyncio
    async def test_timeout_shows_fallback(self):
        reader = HangingCartReader()
        view = BannerDocument()
        runtime = make_runtime(reader=reader, view=view, options=RuntimeOptions(read_timeout_ms=20, poll_interval_ms=0))

        await runtime.start()

        assert view.text == "Free shipping on orders over 200.00"
        assert not runtime.reading

    @pytest.mark.asyncio
    async def test_recovers_after_failure(self):
        reader = GatedCartReader(CartReadError("offline"), 15000)
        view = BannerDocument()
        runtime = make_runtime(reader=reader, view=view)

        await runtime.start()
        await runtime.refresh()

        assert view.text == "Only 50.00 left for free shipping!"

    @pytest.mark.asyncio
    async def test_render_errors_do_not_escape(self):
        runtime = make_runtime(view=BrokenView())

        await runtime.start()

        assert runtime.state.kind is BannerKind.DYNAMIC


class TestView:
    def test_same_message_twice_yields_one_element(self):
        changes = []
        view = BannerDocument(on_change=changes.append)

        view.render("Only 5.00 left")
        view.render("Only 5.00 left")

        assert view.count(BANNER_ELEMENT_ID) == 1
        assert view.count(TEXT_ELEMENT_ID) == 1
        assert changes == ["Only 5.00 left"]

    def test_hide_keeps_element(self):
        view = BannerDocument()
        view.render("hello")
        view.hide()

        assert view.text is None
        assert view.count(BANNER_ELEMENT_ID) == 1

    @pytest.mark.asyncio
    async def test_success_hidden_hides_banner(self):
        view = BannerDocument()
        settings = ShopSettings(calculate_difference=True, show_success_message=False)
        runtime = make_runtime(settings, reader=GatedCartReader(25000), view=view)

        await runtime.start()

        assert view.text is None
        assert runtime.state.kind is BannerKind.HIDDEN


class TestObservers:
    """Page signals turn into debounced reads."""

    @pytest.mark.asyncio
    async def test_cart_event_triggers_read(self):
        reader = GatedCartReader(15000)
        events = EventObserver()
        runtime = make_runtime(reader=reader, observers=[events])
        await runtime.start()

        assert events.dispatch("cart:updated")
        assert not events.dispatch("scroll")
        await asyncio.sleep(0.05)

        assert reader.calls == 2

    @pytest.mark.asyncio
    async def test_cart_form_submit_triggers_read(self):
        reader = GatedCartReader(15000)
        forms = FormSubmitObserver()
        runtime = make_runtime(reader=reader, observers=[forms])
        await runtime.start()

        assert forms.submit("/cart/add")
        assert not forms.submit("/search")
        assert not forms.submit(None)
        await asyncio.sleep(0.05)

        assert reader.calls == 2

    @pytest.mark.asyncio
    async def test_visibility_regained_triggers_read(self):
        reader = GatedCartReader(15000)
        visibility = VisibilityObserver()
        runtime = make_runtime(reader=reader, observers=[visibility])
        await runtime.start()

        assert not visibility.set_visible(False)
        assert visibility.set_visible(True)
        await asyncio.sleep(0.05)

        assert reader.calls == 2

    @pytest.mark.asyncio
    async def test_polling_reads_until_stopped(self):
        reader = GatedCartReader(15000)
        runtime = make_runtime(reader=reader, observers=[PollingObserver(0.01)])
        await runtime.start()

        await asyncio.sleep(0.06)
        await runtime.stop()
        calls = reader.calls
        await asyncio.sleep(0.03)

        assert calls >= 3
        assert reader.calls == calls

    @pytest.mark.asyncio
    async def test_polling_paused_while_hidden(self):
        reader = GatedCartReader(15000)
        visibility = VisibilityObserver(visible=False)
        runtime = make_runtime(reader=reader, observers=[visibility, PollingObserver(0.01, visibility)])
        await runtime.start()

        await asyncio.sleep(0.05)
        await runtime.stop()

        assert reader.calls == 1
