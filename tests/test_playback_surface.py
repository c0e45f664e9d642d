"""Unit tests for the capability-abstracted playback surface."""

import asyncio

import pytest

from playback_surface import StackOrder


class TestLoad:

    @pytest.mark.asyncio
    async def test_precise_backend_resolves_on_readiness(self, rig):
        surface = rig.surfaces[0]

        elapsed = await surface.load("A", "clip", 12.5, page=1)

        drv = rig.driver_of(surface)
        assert elapsed == pytest.approx(2000.0)
        assert surface.ready and surface.media_id == "clip" and surface.backend_id == "A"
        assert drv.ops("create") == [("clip", 12.5, 1)]
        assert ("mute",) in drv.calls
        # buffered and held until the orchestrator plays it
        assert drv.calls[-1] == ("pause",)

    @pytest.mark.asyncio
    async def test_loopless_backend_uses_fixed_wait(self, rig):
        surface = rig.surfaces[0]

        elapsed = await surface.load("B", "stream-id", 50.0, page=2)

        assert ("sleep", 2.0) in rig.clock.log
        assert elapsed == pytest.approx(2000.0)
        assert rig.driver_of(surface).ops("create") == [("stream-id", 50.0, 2)]

    @pytest.mark.asyncio
    async def test_same_backend_reuses_driver(self, rig):
        surface = rig.surfaces[0]
        await surface.load("A", "one", 0.0)
        await surface.load("A", "two", 0.0)

        assert len(rig.drivers) == 1
        assert rig.drivers[0].ops("create") == [("one", 0.0, 1), ("two", 0.0, 1)]

    @pytest.mark.asyncio
    async def test_backend_change_destroys_before_creating(self, rig):
        surface = rig.surfaces[0]
        await surface.load("A", "one", 0.0)
        old = rig.driver_of(surface)

        await surface.load("B", "two", 0.0)

        assert old.destroyed
        assert old.ready_cb is None and old.ended_cb is None
        new = rig.driver_of(surface)
        assert new is not old
        assert rig.clock.index((old.name, "destroy")) < rig.clock.index((new.name, "create", "two", 0.0, 1))

    @pytest.mark.asyncio
    async def test_readiness_timeout_still_resolves(self, rig):
        rig.auto_ready = False
        surface = rig.surfaces[0]
        surface.load_timeout = 0.01

        elapsed = await surface.load("A", "slow", 0.0)

        assert elapsed is not None
        assert surface.ready

    @pytest.mark.asyncio
    async def test_create_failure_resolves_with_none(self, make_rig):
        rig = make_rig(fail_on={"create"})
        surface = rig.surfaces[0]

        assert await surface.load("A", "broken", 0.0) is None
        assert not surface.ready

    @pytest.mark.asyncio
    async def test_ready_signal_from_another_thread(self, rig):
        rig.auto_ready = False
        surface = rig.surfaces[0]
        task = asyncio.create_task(surface.load("A", "clip", 0.0))
        await asyncio.sleep(0)

        drv = rig.driver_of(surface)
        await asyncio.get_running_loop().run_in_executor(None, drv.fire_ready)

        assert await asyncio.wait_for(task, 1.0) is not None


class TestControl:

    @pytest.mark.asyncio
    async def test_stop_twice_releases_everything(self, rig):
        surface = rig.surfaces[0]
        await surface.load("A", "clip", 0.0)
        drv = rig.driver_of(surface)

        surface.stop()
        surface.stop()

        assert not surface.has_resources
        assert drv.destroyed and drv.ops("destroy") == [()]
        assert surface.backend_id is None and surface.media_id is None
        assert not surface.ready

    def test_stop_on_fresh_surface(self, rig):
        rig.surfaces[1].stop()
        assert not rig.surfaces[1].has_resources

    @pytest.mark.asyncio
    async def test_stop_survives_driver_errors(self, make_rig):
        rig = make_rig(fail_on={"pause", "destroy"})
        surface = rig.surfaces[0]
        await surface.load("A", "clip", 0.0)

        surface.stop()

        assert not surface.has_resources

    @pytest.mark.asyncio
    async def test_seek_without_capability_is_noop(self, rig, caplog):
        surface = rig.surfaces[0]
        await surface.load("B", "stream-id", 0.0)

        surface.seek_to(10.0)

        assert rig.driver_of(surface).ops("seek") == []
        assert "cannot seek" in caplog.text

    @pytest.mark.asyncio
    async def test_seek_with_capability(self, rig):
        surface = rig.surfaces[0]
        await surface.load("A", "clip", 0.0)
        surface.seek_to(31.8)
        assert rig.driver_of(surface).ops("seek") == [(31.8,)]

    @pytest.mark.asyncio
    async def test_play_mutes_first(self, rig):
        surface = rig.surfaces[0]
        await surface.load("A", "clip", 0.0)
        rig.driver_of(surface).calls.clear()

        surface.play()

        assert rig.driver_of(surface).calls == [("mute",), ("play",)]

    @pytest.mark.asyncio
    async def test_restart_reloads_loopless_media_at_zero(self, rig):
        surface = rig.surfaces[0]
        await surface.load("B", "stream-id", 40.0, page=3)

        surface.restart_from_beginning()

        assert rig.driver_of(surface).ops("create")[-1] == ("stream-id", 0.0, 3)

    @pytest.mark.asyncio
    async def test_restart_is_noop_for_native_loop(self, rig):
        surface = rig.surfaces[0]
        await surface.load("A", "clip", 40.0)

        surface.restart_from_beginning()

        assert len(rig.driver_of(surface).ops("create")) == 1

    @pytest.mark.asyncio
    async def test_end_of_media_loops_natively(self, rig):
        surface = rig.surfaces[0]
        await surface.load("A", "clip", 0.0)
        drv = rig.driver_of(surface)
        drv.calls.clear()

        drv.fire_ended()
        await asyncio.sleep(0)

        assert drv.calls == [("seek", 0.0), ("play",)]

    @pytest.mark.asyncio
    async def test_end_of_media_left_to_caller_when_loopless(self, rig):
        surface = rig.surfaces[0]
        await surface.load("B", "stream-id", 0.0)
        drv = rig.driver_of(surface)
        drv.calls.clear()

        drv.fire_ended()
        await asyncio.sleep(0)

        assert drv.calls == []


class TestVisibility:

    @pytest.mark.asyncio
    async def test_show_and_hide_do_not_touch_playback(self, rig):
        surface = rig.surfaces[0]
        await surface.load("A", "clip", 0.0)
        drv = rig.driver_of(surface)
        drv.calls.clear()

        surface.show()
        assert rig.layers[0].opacity == 1
        assert rig.layers[0].stack_order is StackOrder.FRONT

        surface.hide()
        assert rig.layers[0].opacity == 0
        assert rig.layers[0].stack_order is StackOrder.BACK
        assert rig.layers[0].transition_ms == 0

        assert drv.calls == []
