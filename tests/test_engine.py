"""End-to-end tests for the threshold engine on a simulated clock."""

import logging
import threading
from unittest.mock import Mock

import pytest

from src.core.thresholds import (
    FINAL_MEASUREMENT,
    INITIALIZED,
    LEAK_SUSPECTED,
    MASS_CLEANUP,
    MEASUREMENT_TAKEN,
    THRESHOLD_ALERT,
    EngineConfig,
    HostCapabilities,
    Measurement,
    ThreadedScheduler,
    ThresholdEngine,
    Unavailable,
)

from .helpers import CountingReclaimHook, EventRecorder, FakeMemoryProbe, single_tier_config

MIB = 1024 * 1024


def make_engine(scheduler, percentages=(0.1,), config=None, **kwargs):
    capabilities = kwargs.pop(
        "capabilities",
        HostCapabilities(memory=FakeMemoryProbe(percentages), reclaim=CountingReclaimHook()),
    )
    return ThresholdEngine(
        config or single_tier_config(),
        capabilities=capabilities,
        scheduler=scheduler,
        **kwargs,
    )


class TestSampling:
    def test_sustained_violation_fires_once_then_recovers(self, scheduler):
        engine = make_engine(scheduler, [0.72, 0.75, 0.71, 0.5])
        alerts = EventRecorder(engine.bus, THRESHOLD_ALERT)
        engine.start()

        scheduler.advance(5)
        scheduler.advance(5)
        assert alerts.of(THRESHOLD_ALERT) == []

        scheduler.advance(5)
        [alert] = alerts.of(THRESHOLD_ALERT)
        assert alert.key == ("memory", "warning")
        assert alert.timestamp == 15
        assert alert.actions_invoked == ("log",)

        scheduler.advance(5)
        state = engine.evaluator.state_for("memory", "warning")
        assert state.consecutive_hits == 0
        assert state.active is False
        assert len(alerts.of(THRESHOLD_ALERT)) == 1

    def test_measurement_events_and_history(self, scheduler):
        engine = make_engine(scheduler)
        measurements = EventRecorder(engine.bus, MEASUREMENT_TAKEN)
        engine.start()

        scheduler.advance(15)

        taken = measurements.of(MEASUREMENT_TAKEN)
        assert [m.timestamp for m in taken] == [5, 10, 15]
        assert len(engine.history.measurements()) == 3
        assert taken[0].resources == {"timers": 1}

    def test_tick_is_inert_before_start(self, scheduler):
        engine = make_engine(scheduler)

        assert engine.tick() is None
        assert engine.history.measurements() == []

    def test_missing_capabilities_degrade(self, scheduler):
        engine = make_engine(scheduler, capabilities=HostCapabilities())
        alerts = EventRecorder(engine.bus, THRESHOLD_ALERT)
        engine.start()

        scheduler.advance(20)

        latest = engine.history.latest()
        assert isinstance(latest.memory, Unavailable)
        assert alerts.of(THRESHOLD_ALERT) == []

    def test_monitoring_disabled(self, scheduler):
        engine = make_engine(scheduler, config=single_tier_config(monitoring={"enabled": False}))
        engine.start()

        scheduler.advance(60)

        assert engine.monitoring_active is False
        assert engine.history.measurements() == []
        assert len(engine.registry) == 0

    def test_leak_suspected(self, scheduler):
        probe = FakeMemoryProbe([0.10, 0.12, 0.14, 0.16, 0.18], limit=100 * MIB)
        config = single_tier_config(leak={"enabled": True, "window": 5, "rate": MIB})
        engine = make_engine(scheduler, config=config, capabilities=HostCapabilities(memory=probe))
        leaks = EventRecorder(engine.bus, LEAK_SUSPECTED)
        engine.start()

        scheduler.advance(20)
        assert leaks.of(LEAK_SUSPECTED) == []

        scheduler.advance(5)
        [suspicion] = leaks.of(LEAK_SUSPECTED)
        assert suspicion["kind"] == "memory"
        assert suspicion["growth"] == pytest.approx(2 * MIB, rel=0.01)
        assert engine.metrics.get_counter("leak_suspicions_total") == 1

    def test_resource_growth_suspected(self, scheduler):
        config = single_tier_config(leak={"enabled": True, "resource_growth": 0.2})
        engine = make_engine(scheduler, config=config)
        leaks = EventRecorder(engine.bus, LEAK_SUSPECTED)
        engine.start()

        for _ in range(3):
            engine.registry.register("subscriptions")
            scheduler.advance(5)

        [suspicion] = leaks.of(LEAK_SUSPECTED)
        assert suspicion["kind"] == "resources"
        assert suspicion["growth"] == pytest.approx(1.0)
        assert [s["value"] for s in suspicion["samples"]] == [2, 3, 4]

        engine.registry.register("subscriptions")
        scheduler.advance(5)
        assert len(leaks.of(LEAK_SUSPECTED)) == 1

    def test_default_config_emergency_chain(self, scheduler):
        memory_manager = Mock()
        hook = Mock()
        reclaim = CountingReclaimHook()
        engine = make_engine(
            scheduler,
            config=EngineConfig.default(),
            capabilities=HostCapabilities(memory=FakeMemoryProbe([0.96]), reclaim=reclaim),
            memory_manager=memory_manager,
            notification_hook=hook,
        )
        alerts = EventRecorder(engine.bus, THRESHOLD_ALERT)
        engine.start()

        scheduler.advance(5)

        [alert] = alerts.of(THRESHOLD_ALERT)
        assert alert.type == "emergency"
        assert alert.actions_invoked == (
            "log", "notify", "cleanup", "emergency_reclaim", "alert", "force_cleanup",
        )
        memory_manager.cleanup.assert_called_once()
        memory_manager.emergency_cleanup.assert_called_once()
        assert hook.call_count == 2
        assert reclaim.calls == 1

        scheduler.advance(2)
        assert reclaim.calls == 3


class TestLifecycle:
    def test_double_start_is_noop(self, scheduler):
        engine = make_engine(scheduler)
        events = EventRecorder(engine.bus, INITIALIZED)

        engine.start()
        engine.start()

        assert len(events.of(INITIALIZED)) == 1
        assert engine.registry.counts() == {"timers": 1}

    def test_pause_suspends_and_resume_samples_immediately(self, scheduler, memory_probe):
        engine = make_engine(scheduler, capabilities=HostCapabilities(memory=memory_probe))
        engine.start()
        scheduler.advance(5)
        assert memory_probe.reads == 1

        engine.pause()
        scheduler.advance(100)
        assert memory_probe.reads == 1
        assert engine.monitoring_active is False
        assert engine.registry.counts() == {}

        measurement = engine.resume()
        assert isinstance(measurement, Measurement)
        assert measurement.timestamp == 105
        assert memory_probe.reads == 2

        scheduler.advance(5)
        assert memory_probe.reads == 3

    def test_visibility_change(self, scheduler, memory_probe):
        engine = make_engine(scheduler, capabilities=HostCapabilities(memory=memory_probe))
        engine.start()

        assert engine.on_visibility_change(hidden=True) is None
        scheduler.advance(30)
        assert memory_probe.reads == 0

        assert engine.on_visibility_change(hidden=False) is not None
        assert engine.monitoring_active is True

    def test_resume_while_running_is_noop(self, scheduler, memory_probe):
        engine = make_engine(scheduler, capabilities=HostCapabilities(memory=memory_probe))
        engine.start()

        assert engine.resume() is None
        assert memory_probe.reads == 0

    def test_cleanup_is_idempotent(self, scheduler, memory_probe):
        engine = make_engine(scheduler, capabilities=HostCapabilities(memory=memory_probe))
        release = Mock()
        engine.registry.register("subscriptions", release)
        engine.start()
        scheduler.advance(5)

        engine.cleanup()
        engine.cleanup()

        release.assert_called_once()
        assert len(engine.registry) == 0
        assert engine.history.measurements() == []
        assert engine.initialized is False
        scheduler.advance(60)
        assert memory_probe.reads == 1

    def test_cleanup_before_start(self, scheduler):
        engine = make_engine(scheduler)

        engine.cleanup()

        assert engine.initialized is False

    def test_shutdown_emits_final_measurement_once(self, scheduler):
        engine = make_engine(scheduler, [0.8])
        final = EventRecorder(engine.bus, FINAL_MEASUREMENT)
        engine.start()
        scheduler.advance(15)

        engine.shutdown()
        engine.shutdown()

        [payload] = final.of(FINAL_MEASUREMENT)
        assert payload["type"] == "final"
        assert payload["summary"]["total_measurements"] == 3
        assert payload["summary"]["total_alerts"] == 1
        assert payload["threshold_state"]["memory.warning"]["active"] is True
        assert len(engine.registry) == 0

    def test_reset_clears_state_and_keeps_monitoring(self, scheduler):
        engine = make_engine(scheduler, [0.8])
        engine.start()
        scheduler.advance(15)
        assert len(engine.history.alerts()) == 1

        engine.reset()

        assert engine.history.alerts() == []
        assert engine.history.measurements() == []
        assert engine.evaluator.state_for("memory", "warning").last_triggered_at is None
        assert engine.metrics.get_counter("alerts_total") == 0
        assert engine.monitoring_active is True
        assert engine.registry.counts() == {"timers": 1}

        scheduler.advance(5)
        assert len(engine.history.measurements()) == 1

    def test_reset_cancels_pending_reclaim(self, scheduler, reclaim_hook):
        config = single_tier_config(threshold=0.9, consecutive=1, actions=("emergency_reclaim",))
        engine = make_engine(
            scheduler,
            config=config,
            capabilities=HostCapabilities(memory=FakeMemoryProbe([0.95]), reclaim=reclaim_hook),
        )
        engine.start()
        scheduler.advance(5)
        assert engine.dispatcher.pending_count == 1

        engine.reset()
        scheduler.advance(3)

        assert reclaim_hook.calls == 1
        assert engine.dispatcher.pending_count == 0

    def test_independent_engines(self, scheduler):
        hot = make_engine(scheduler, [0.9], config=single_tier_config(consecutive=1))
        cold = make_engine(scheduler, [0.1], config=single_tier_config(consecutive=1))
        hot_alerts = EventRecorder(hot.bus, THRESHOLD_ALERT)
        cold_alerts = EventRecorder(cold.bus, THRESHOLD_ALERT)
        hot.start()
        cold.start()

        scheduler.advance(5)
        cold.cleanup()

        assert len(hot_alerts.of(THRESHOLD_ALERT)) == 1
        assert cold_alerts.of(THRESHOLD_ALERT) == []
        assert hot.monitoring_active is True
        assert hot.registry is not cold.registry

    def test_logging_section_applies_per_engine(self, scheduler, caplog):
        loud = make_engine(scheduler)
        quiet = make_engine(scheduler, config=single_tier_config(logging={"enabled": False}))

        assert loud.logger.disabled is False
        assert quiet.logger.disabled is True
        assert quiet.sampler.logger.disabled is True
        assert loud.sampler.logger.disabled is False
        assert logging.getLogger("Thresholds").disabled is False

        with caplog.at_level(logging.WARNING):
            for engine in (loud, quiet):
                engine.start()
                engine.start()

        warned = [r.name for r in caplog.records if "already initialized" in r.getMessage()]
        assert warned == [loud.logger.name]

    def test_from_yaml(self, tmp_path, scheduler):
        path = tmp_path / "thresholds.yaml"
        path.write_text(
            "thresholds:\n"
            "  memory:\n"
            "    warning: {threshold: 0.5, consecutive: 1}\n"
            "monitoring: {interval: 1000}\n"
        )

        engine = ThresholdEngine.from_yaml(
            str(path),
            capabilities=HostCapabilities(memory=FakeMemoryProbe([0.6])),
            scheduler=scheduler,
        )
        alerts = EventRecorder(engine.bus, THRESHOLD_ALERT)
        engine.start()
        scheduler.advance(1)

        assert len(alerts.of(THRESHOLD_ALERT)) == 1


class TestRegistryMaintenance:
    def test_stale_host_resources_are_aged_out(self, scheduler):
        config = single_tier_config(registry={"interval": 10000, "max_age": 20000})
        engine = make_engine(scheduler, config=config)
        release = Mock()
        engine.registry.register("subscriptions", release, owner="widget")
        engine.start()

        scheduler.advance(20)
        release.assert_not_called()

        scheduler.advance(10)
        release.assert_called_once()
        assert engine.registry.counts() == {"timers": 1}
        assert engine.metrics.get_counter("resource_cleanups_total") == 1
        assert engine.monitoring_active is True

        scheduler.advance(5)
        assert engine.history.latest().timestamp == 35

    def test_mass_cleanup_event(self, scheduler):
        config = single_tier_config(
            registry={"interval": 5000, "max_per_kind": 2, "mass_cleanup": 3}
        )
        engine = make_engine(scheduler, config=config)
        events = EventRecorder(engine.bus, MASS_CLEANUP)
        for _ in range(6):
            engine.registry.register("watchers")
        engine.start()

        scheduler.advance(5)

        assert events.of(MASS_CLEANUP) == [{"cleaned": 4, "timestamp": 5}]
        assert engine.registry.counts() == {"watchers": 2, "timers": 1}

    def test_auto_cleanup_disabled(self, scheduler):
        config = single_tier_config(registry={"auto_cleanup": False, "max_age": 1000})
        engine = make_engine(scheduler, config=config)
        engine.registry.register("subscriptions")
        engine.start()

        scheduler.advance(120)

        assert engine.registry.counts() == {"subscriptions": 1, "timers": 1}


class TestReporting:
    def test_recommendations_follow_active_thresholds(self, scheduler):
        engine = make_engine(scheduler, [0.8])
        engine.start()
        scheduler.advance(15)

        types = [r["type"] for r in engine.recommendations()]

        assert "memory-warning" in types

    def test_current_metrics(self, scheduler):
        engine = make_engine(scheduler, [0.8])
        engine.start()
        scheduler.advance(15)

        metrics = engine.current_metrics()

        assert metrics["counters"]["measurements_total"] == 3
        assert metrics["gauges"]["memory_percentage"] == 0.8
        assert metrics["active_thresholds"]["memory"]["warning"]["active"] is True
        assert metrics["monitoring_active"] is True
        assert metrics["registry_size"] == 1

    def test_report(self, scheduler):
        engine = make_engine(scheduler, [0.5, 0.6, 0.7])
        engine.start()
        scheduler.advance(15)

        report = engine.report()

        assert len(report["measurement_history"]) == 3
        assert report["trend"]["trend"] == "increasing"
        assert report["registry"]["current_active"] == 1
        assert "memory.warning" in report["threshold_state"]


def threaded_engine(scheduler=None, **sections):
    return ThresholdEngine(
        single_tier_config(monitoring={"interval": 20}, **sections),
        capabilities=HostCapabilities(memory=FakeMemoryProbe()),
        scheduler=scheduler,
    )


def test_runs_on_own_threaded_scheduler():
    sampled = threading.Event()
    engine = threaded_engine()
    assert isinstance(engine.scheduler, ThreadedScheduler)
    engine.bus.subscribe(MEASUREMENT_TAKEN, lambda event, m: sampled.set())

    engine.start()
    try:
        assert sampled.wait(timeout=5.0)
    finally:
        engine.shutdown()

    assert engine.monitoring_active is False
    assert engine.scheduler.running is False
    assert len(engine.registry) == 0


def test_shared_scheduler_outlives_engine_shutdown():
    scheduler = ThreadedScheduler()
    scheduler.start()
    try:
        first = threaded_engine(scheduler)
        second = threaded_engine(scheduler)
        first.start()
        second.start()

        second.shutdown()
        assert scheduler.running is True

        sampled = threading.Event()
        first.bus.subscribe(MEASUREMENT_TAKEN, lambda event, m: sampled.set())
        assert sampled.wait(timeout=5.0)

        first.shutdown()
        assert scheduler.running is True
    finally:
        scheduler.stop()


def test_host_scheduler_is_not_started_by_engine():
    scheduler = ThreadedScheduler()
    engine = threaded_engine(scheduler)

    engine.start()
    try:
        assert scheduler.running is False
        assert engine.monitoring_active is True
    finally:
        engine.shutdown()
