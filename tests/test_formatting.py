"""Tests for console rendering of events."""

import io

from taskpilot.terminal.formatting import ConsoleEventSink, colorize, create_header


def test_no_color_when_not_a_tty():
    stream = io.StringIO()
    assert colorize("ok", "\033[92m", stream=stream) == "ok"
    assert "\033[" not in create_header("taskpilot", width=10, stream=stream)


def test_console_sink_renders_known_events():
    stream = io.StringIO()
    sink = ConsoleEventSink(stream)

    sink.log_event("task-1", "plan_created", {"plan": {"steps": [{"description": "Read"}, {"description": "Write"}]}})
    sink.log_event("task-1", "step_failed", {"reason": "exit code 1"})
    sink.log_event("task-1", "progress_update", {"message": "ignored"})

    output = stream.getvalue()
    assert "Plan created:\n    1. Read\n    2. Write" in output
    assert "✗ Step failed: exit code 1" in output
    assert "ignored" not in output


def test_successful_tool_results_only_when_verbose():
    quiet = ConsoleEventSink(io.StringIO())
    assert quiet.format_event("tool_result", {"tool": "read_file", "success": True, "result": "x"}) is None
    failed = quiet.format_event("tool_result", {"tool": "run_command", "success": False, "error": "exit code 1"})
    assert failed.strip() == "✗ run_command: exit code 1"

    verbose = ConsoleEventSink(io.StringIO(), verbose=True)
    assert "read_file: x" in verbose.format_event("tool_result", {"tool": "read_file", "success": True, "result": "x"})


def test_long_messages_are_shortened():
    sink = ConsoleEventSink(io.StringIO())
    line = sink.format_event("error", {"message": "x" * 1000})
    assert line.endswith("…")
    assert len(line) < 320
