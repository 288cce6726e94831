"""Tests for the run log."""

import asyncio
import re
import sys
from pathlib import Path

from conftest import read_log
from supervisor.models import LaunchSpec, ProcessHandle
from supervisor.output_logger import OutputLogger, StreamTag

ENTRY = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] ")


def test_header_is_first_line_and_truncates(log_path):
    log_path.write_text("old run\nmore old run\n", encoding="utf-8")

    log = OutputLogger(log_path)
    log.start_run()
    log.info("hello")

    lines = read_log(log_path)
    assert lines[0].startswith("=== Supervisor started: ")
    assert "old run" not in log_path.read_text(encoding="utf-8")
    assert lines[1].endswith("] hello")


def test_start_run_only_truncates_once(log_path):
    log = OutputLogger(log_path)
    log.start_run()
    log.info("kept")
    log.start_run()

    lines = read_log(log_path)
    assert len(lines) == 2
    assert lines[1].endswith("kept")


def test_entries_are_timestamped_with_level_prefix(output_logger, log_path):
    output_logger.info("plain")
    output_logger.warning("careful")
    output_logger.error("broken")
    output_logger.fatal("executable not found at /x")

    lines = read_log(log_path)[1:]
    assert all(ENTRY.match(line) for line in lines)
    assert lines[0].endswith("] plain")
    assert lines[1].endswith("] WARNING: careful")
    assert lines[2].endswith("] SUPERVISOR ERROR: broken")
    assert lines[3].endswith("] FATAL: executable not found at /x")


def test_write_failure_is_swallowed(tmp_path):
    # A directory cannot be opened for appending
    log = OutputLogger(tmp_path)
    log.start_run()
    log.info("goes nowhere")
    log.output(StreamTag.ERROR, "also nowhere")


def test_close_drops_later_writes(output_logger, log_path):
    output_logger.info("before")
    output_logger.close()
    output_logger.info("after")
    output_logger.output(StreamTag.OUTPUT, "late line")

    text = log_path.read_text(encoding="utf-8")
    assert "before" in text
    assert "after" not in text
    assert "late line" not in text
    assert output_logger.closed


async def test_read_stream_tags_lines_and_skips_blanks(output_logger, log_path):
    reader = asyncio.StreamReader()
    reader.feed_data("first\n\nsecond line\r\nthird 中文\n".encode("utf-8"))
    reader.feed_eof()

    await output_logger.read_stream(reader, StreamTag.OUTPUT)

    lines = read_log(log_path)[1:]
    assert [line.split("] ", 1)[1] for line in lines] == [
        "OUTPUT: first",
        "OUTPUT: second line",
        "OUTPUT: third 中文",
    ]


async def test_captures_both_streams_of_a_child(output_logger, log_path):
    code = (
        "import sys\n"
        "for i in range(5):\n"
        "    print(f'out {i}', flush=True)\n"
        "    print(f'err {i}', file=sys.stderr, flush=True)\n"
    )
    process = await asyncio.create_subprocess_exec(
        sys.executable, "-c", code,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    handle = ProcessHandle(process, LaunchSpec(executable=Path(sys.executable)))

    tasks = output_logger.attach(handle)
    await handle.wait()
    await asyncio.gather(*tasks)

    lines = read_log(log_path)[1:]
    outputs = [line.split("] ", 1)[1] for line in lines if "] OUTPUT: " in line]
    errors = [line.split("] ", 1)[1] for line in lines if "] ERROR: " in line]
    assert outputs == [f"OUTPUT: out {i}" for i in range(5)]
    assert errors == [f"ERROR: err {i}" for i in range(5)]
    assert all(ENTRY.match(line) for line in lines)


async def test_line_longer_than_buffer_limit_does_not_stop_reading(output_logger, log_path):
    reader = asyncio.StreamReader(limit=1024)
    reader.feed_data(b"before\n" + b"x" * 5000 + b"\nafter\nno newline")
    reader.feed_eof()

    await output_logger.read_stream(reader, StreamTag.OUTPUT)

    messages = [line.split("] ", 1)[1] for line in read_log(log_path)[1:]]
    assert messages == [
        "OUTPUT: before",
        "OUTPUT: " + "x" * 5000,
        "OUTPUT: after",
        "OUTPUT: no newline",
    ]


async def test_child_keeps_being_captured_after_a_huge_line(output_logger, log_path):
    code = "print('before'); print('x' * 70000); print('after')"
    process = await asyncio.create_subprocess_exec(
        sys.executable, "-c", code,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    handle = ProcessHandle(process, LaunchSpec(executable=Path(sys.executable)))

    tasks = output_logger.attach(handle)
    await asyncio.wait_for(handle.wait(), timeout=10)
    await asyncio.gather(*tasks)

    outputs = [line.split("] ", 1)[1] for line in read_log(log_path)[1:] if "] OUTPUT: " in line]
    assert outputs == ["OUTPUT: before", "OUTPUT: " + "x" * 70000, "OUTPUT: after"]
    assert not any("SUPERVISOR ERROR:" in line for line in read_log(log_path))
