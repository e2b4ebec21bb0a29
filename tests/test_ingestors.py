import json
import time

from streamsub.ingestors import AuditLog, EventStreamIngestor, LogPollingIngestor
from streamsub.writer import SubtitleOutput, SubtitleWriter

LOG_TEXT = (
    "whisper_init_from_file: loading model\n"
    "[00:00:01.000 --> 00:00:02.500]  Hello\n"
    "some unrelated progress output\n"
    "[00:00:02.500 --> 00:00:04.000]  world\n"
)


def test_log_polling_renders_log_lines(tmp_path):
    log_path = tmp_path / "server.log"
    log_path.write_text(LOG_TEXT, encoding="utf-8")
    subtitle = tmp_path / "out.srt"
    with SubtitleWriter(SubtitleOutput(str(subtitle))) as writer:
        ingestor = LogPollingIngestor(str(log_path), interval=0.05)
        ingestor.start(writer)
        assert ingestor.finalize(None) is True
        assert subtitle.read_text(encoding="utf-8") == (
            "1\n00:00:01,000 --> 00:00:02,500\nHello\n\n"
            "2\n00:00:02,500 --> 00:00:04,000\nworld\n\n"
        )
        # lines already seen are not submitted again
        assert ingestor.poll() == 0
    assert len(ingestor.audit.events) == 2


def test_log_polling_final_output_replaces_interim_lines(tmp_path):
    log_path = tmp_path / "server.log"
    log_path.write_text(LOG_TEXT, encoding="utf-8")
    final_srt = "1\n00:00:01,000 --> 00:00:04,000\nHello world.\n\n"
    with SubtitleWriter(SubtitleOutput(str(tmp_path / "out.srt"))) as writer:
        ingestor = LogPollingIngestor(str(log_path), interval=0.05)
        ingestor.start(writer)
        ingestor.finalize(final_srt)
        assert writer.render() == final_srt


def test_log_polling_keeps_interim_lines_when_final_output_is_empty(tmp_path):
    log_path = tmp_path / "server.log"
    log_path.write_text(LOG_TEXT, encoding="utf-8")
    with SubtitleWriter(SubtitleOutput(str(tmp_path / "out.srt"))) as writer:
        ingestor = LogPollingIngestor(str(log_path), interval=0.05)
        ingestor.start(writer)
        ingestor.finalize("")
        assert [s.text for s in writer.segments()] == ["Hello", "world"]


def test_log_polling_picks_up_lines_written_after_the_last_poll(tmp_path):
    log_path = tmp_path / "server.log"
    log_path.write_text("[00:00:01.000 --> 00:00:02.500]  Hello\n", encoding="utf-8")
    with SubtitleWriter(SubtitleOutput(str(tmp_path / "out.srt"))) as writer:
        ingestor = LogPollingIngestor(str(log_path), interval=60)
        ingestor.start(writer)
        deadline = time.monotonic() + 5
        while not writer.segments() and time.monotonic() < deadline:
            writer.flush()
            time.sleep(0.01)
        with open(log_path, "a", encoding="utf-8") as f:
            f.write("[00:00:02.500 --> 00:00:04.000]  world\n")
        # inference failed, so only the log can supply the transcript
        ingestor.finalize(None)
        assert [s.text for s in writer.segments()] == ["Hello", "world"]


def test_log_polling_missing_log_is_not_an_error(tmp_path):
    with SubtitleWriter(SubtitleOutput(str(tmp_path / "out.srt"))) as writer:
        ingestor = LogPollingIngestor(str(tmp_path / "absent.log"), interval=0.05)
        ingestor.start(writer)
        ingestor.finalize(None)
        assert writer.segments() == []


def run_stream(tmp_path, chunks, **kwargs):
    with SubtitleWriter(SubtitleOutput(str(tmp_path / "out.srt"))) as writer:
        ingestor = EventStreamIngestor(**kwargs)
        ingestor.start(writer)
        for chunk in chunks:
            ingestor.feed(chunk)
        ingestor.finalize()
        return ingestor, writer.segments()


def sse(payload):
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def test_deltas_concatenate_into_one_segment(tmp_path):
    chunks = [
        sse({"type": "transcript.text.delta", "delta": "Hel"}),
        sse({"type": "transcript.text.delta", "delta": "lo"}),
    ]
    _, segments = run_stream(tmp_path, chunks)
    assert len(segments) == 1
    assert segments[0].text == "Hello"
    assert segments[0].start_ms == 0
    assert segments[0].end_ms > 0


def test_lines_split_across_chunks_and_multibyte_characters(tmp_path):
    data = sse({"type": "transcript.text.delta", "delta": "café"}) + b"data: [DONE]\n\n"
    cut = data.index("é".encode("utf-8")) + 1
    chunks = [data[:7], data[7:cut], data[cut:]]
    ingestor, segments = run_stream(tmp_path, chunks)
    assert [s.text for s in segments] == ["café"]
    assert ingestor.done is True


def test_segment_events_upsert_by_id_and_replace_delta_text(tmp_path):
    chunks = [
        sse({"type": "transcript.text.delta", "delta": "Good morning"}),
        sse({"type": "transcript.text.segment", "id": "seg_1", "start": 0.5, "end": 1.5, "text": "Good morning", "speaker": "A"}),
        sse({"type": "transcript.text.segment", "id": "seg_0", "start": 0.0, "end": 0.5, "text": "Hi", "speaker": "B"}),
        sse({"type": "transcript.text.segment", "id": "seg_1", "start": 0.5, "end": 1.8, "text": "Good morning all", "speaker": "A"}),
        sse({"type": "transcript.text.delta", "delta": " ignored once segments arrive"}),
    ]
    _, segments = run_stream(tmp_path, chunks)
    assert [(s.id, s.start_ms, s.end_ms, s.text) for s in segments] == [
        ("seg_0", 0, 500, "B: Hi"),
        ("seg_1", 500, 1800, "A: Good morning all"),
    ]


def test_final_event_with_segments_resets_transcript(tmp_path):
    chunks = [
        sse({"type": "transcript.text.delta", "delta": "interim"}),
        sse({"type": "transcript.text.done", "text": "Final.", "segments": [
            {"start": 0.0, "end": 1.0, "text": "Final one."},
            {"start": 1.0, "text": "Final two."},
        ]}),
        b"data: [DONE]\n\n",
    ]
    _, segments = run_stream(tmp_path, chunks)
    assert [s.text for s in segments] == ["Final one.", "Final two."]
    assert segments[1].end_ms > 1000


def test_final_event_text_only_spans_media_duration(tmp_path):
    chunks = [sse({"type": "transcript.text.done", "text": "Whole transcript."})]
    _, segments = run_stream(tmp_path, chunks, media_duration_ms=90_000)
    assert len(segments) == 1
    assert (segments[0].start_ms, segments[0].end_ms) == (0, 90_000)


def test_empty_final_event_keeps_interim_segments(tmp_path):
    chunks = [
        sse({"type": "transcript.text.segment", "start": 0.0, "end": 1.0, "text": "kept"}),
        sse({"type": "transcript.text.done", "segments": []}),
    ]
    _, segments = run_stream(tmp_path, chunks)
    assert [s.text for s in segments] == ["kept"]


def test_malformed_json_and_error_events_do_not_stop_the_stream(tmp_path):
    chunks = [
        b"data: {not json\n\n",
        b": keep-alive comment\n",
        sse({"type": "error", "error": {"message": "rate limited"}}),
        sse({"type": "transcript.text.delta", "delta": "still here"}),
        b"data: [DONE]\n\n",
        sse({"type": "transcript.text.delta", "delta": " after done"}),
    ]
    ingestor, segments = run_stream(tmp_path, chunks)
    assert [s.text for s in segments] == ["still here"]
    assert ingestor.errors == [{"message": "rate limited"}]
    assert "parse_error" in ingestor.audit.events[0]
    assert ingestor.audit.events[1]["parsed"]["type"] == "error"


def test_trailing_line_without_newline_is_processed_on_finalize(tmp_path):
    chunks = [b'data: {"delta": "tail"}']
    _, segments = run_stream(tmp_path, chunks)
    assert [s.text for s in segments] == ["tail"]


def test_audit_log_dump_writes_debug_artifact(tmp_path):
    audit = AuditLog()
    audit.add_raw("data: {}\n")
    audit.record("{}", parsed={})
    audit.record("{oops", parse_error="Expecting property name")
    path = tmp_path / "out.events.json"
    assert audit.dump(str(path)) is True
    content = json.loads(path.read_text(encoding="utf-8"))
    assert set(content) == {"generated_at", "raw_text", "events"}
    assert content["raw_text"] == "data: {}\n"
    assert content["events"][0]["parsed"] == {}
    assert content["events"][1]["parse_error"] == "Expecting property name"


def test_audit_log_dump_failure_is_not_fatal(tmp_path):
    assert AuditLog().dump(str(tmp_path / "missing-dir" / "x.json")) is False
