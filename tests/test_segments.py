from streamsub.models import Segment
from streamsub.segments import SegmentCollection, build_segment, estimate_duration_ms


def seg(segment_id, start, end, text):
    return Segment(id=segment_id, start_ms=start, end_ms=end, text_lines=[text])


def test_upsert_new_id_appends_and_sorts():
    collection = SegmentCollection()
    assert collection.upsert(seg("b", 5000, 6000, "later")) is True
    assert collection.upsert(seg("a", 1000, 2000, "earlier")) is True
    assert len(collection) == 2
    assert [s.id for s in collection.segments] == ["a", "b"]


def test_upsert_existing_id_replaces_in_place():
    collection = SegmentCollection([seg("a", 0, 1000, "Hel"), seg("b", 2000, 3000, "x")])
    assert collection.upsert(seg("a", 0, 1500, "Hello")) is True
    assert len(collection) == 2
    assert collection.get("a").text == "Hello"
    assert collection.get("a").end_ms == 1500


def test_upsert_existing_id_with_new_start_resorts():
    collection = SegmentCollection([seg("a", 0, 1000, "a"), seg("b", 2000, 3000, "b")])
    collection.upsert(seg("a", 5000, 6000, "a moved"))
    assert [s.id for s in collection.segments] == ["b", "a"]
    assert collection.render().startswith("1\n00:00:02,000 --> 00:00:03,000\nb\n\n")


def test_upsert_ignores_blank_text_and_identical_segments():
    collection = SegmentCollection()
    assert collection.upsert(Segment(id="x", start_ms=0, end_ms=10, text_lines=["  "])) is False
    assert len(collection) == 0
    collection.upsert(seg("a", 0, 1000, "same"))
    assert collection.upsert(seg("a", 0, 1000, "same")) is False


def test_reset_all_replaces_everything():
    collection = SegmentCollection([seg("a", 0, 1000, "old")])
    collection.reset_all([seg("z", 3000, 4000, "new 2"), seg("y", 1000, 2000, "new 1")])
    assert "a" not in collection
    assert [s.id for s in collection.segments] == ["y", "z"]
    assert collection.get("z").text == "new 2"


def test_build_segment_estimates_missing_end():
    ten_words = "one two three four five six seven eight nine ten"
    segment = build_segment(ten_words, 2000)
    assert segment.end_ms == 2000 + estimate_duration_ms(ten_words)
    assert estimate_duration_ms(ten_words) == round(10 * 60000 / 187)
    assert estimate_duration_ms("short") == 1000


def test_build_segment_filters_blank_lines_and_synthesizes_id():
    segment = build_segment("  first \n\n second  ", 0, 1000)
    assert segment.text_lines == ["first", "second"]
    assert segment.id == "0-1000-first\nsecond"
    assert build_segment("x", 0, 1000, segment_id=7).id == "7"


def test_build_segment_fixes_non_increasing_end():
    segment = build_segment("hi", 5000, 4000)
    assert segment.end_ms > segment.start_ms
