"""Tests for run tracing."""

import logging

from storylens.libs.tracing import RunTracer, Timer


def test_events_are_recorded_in_order():
    tracer = RunTracer()
    tracer.emit("r1", "extracting", "started")
    tracer.emit("r2", "extracting", "started")
    tracer.emit("r1", "extracting", "completed", elapsed_ms=1.234)
    tracer.emit("r1", "scoring", "started", batches=3)

    assert [e.run_id for e in tracer.events] == ["r1", "r2", "r1", "r1"]
    assert tracer.stages("r1") == ["extracting", "scoring"]
    assert len(tracer.for_run("r2")) == 1
    assert tracer.for_run("r1")[1].elapsed_ms == 1.23
    assert tracer.for_run("r1")[2].detail == {"batches": 3}


def test_event_buffer_is_bounded():
    tracer = RunTracer(max_events=3)
    for i in range(5):
        tracer.emit(f"r{i}", "done", "completed")
    assert [e.run_id for e in tracer.events] == ["r2", "r3", "r4"]


def test_degraded_events_log_warnings(caplog):
    tracer = RunTracer()
    with caplog.at_level(logging.DEBUG, logger="storylens.libs.tracing"):
        tracer.emit("r1", "scoring", "completed")
        tracer.emit("r1", "scoring", "degraded", unavailable=["authenticity"])

    levels = [record.levelno for record in caplog.records]
    assert levels == [logging.DEBUG, logging.WARNING]
    assert "degraded" in caplog.records[-1].getMessage()


def test_timer():
    with Timer() as timer:
        sum(range(1000))
    assert timer.elapsed_ms >= 0.0
