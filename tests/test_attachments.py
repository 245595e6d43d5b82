import base64
import json
import re
from datetime import datetime, timezone

from branchportal import attachments
from branchportal.attachments import AttachmentRef


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class TestEncodeDecode:
    def test_current_encoding_round_trips(self):
        refs = [
            AttachmentRef(name="보고서.pdf", path="gb001/2024-03-04/20240304T010203_aa.pdf"),
            AttachmentRef(name="photo.jpg", path="gb001/2024-03-04/20240304T010204_bb.jpg"),
        ]
        assert attachments.decode(attachments.encode(refs)) == refs

    def test_empty_list_round_trips(self):
        assert attachments.encode([]) == "[]"
        assert attachments.decode(attachments.encode([])) == []

    def test_encoding_keeps_non_ascii_and_drops_url(self):
        encoded = attachments.encode([AttachmentRef(name="공문.hwp", path="k/1.hwp", url="https://x")])
        assert "공문.hwp" in encoded
        assert "url" not in encoded
        assert json.loads(encoded) == [{"name": "공문.hwp", "path": "k/1.hwp"}]

    def test_entries_without_path_are_not_written(self):
        encoded = attachments.encode([AttachmentRef(name="lost.pdf", path=None)])
        assert encoded == "[]"

    def test_empty_inputs_decode_to_empty(self):
        assert attachments.decode("") == []
        assert attachments.decode(None) == []
        assert attachments.decode([]) == []
        assert attachments.decode("   ") == []

    def test_json_array_of_paths(self):
        assert attachments.decode('["a/b/report.pdf"]') == [AttachmentRef(name="report.pdf", path="a/b/report.pdf")]

    def test_comma_separated_paths(self):
        refs = attachments.decode("a/b/photo.jpg,c/d/note.txt")
        assert [ref.name for ref in refs] == ["photo.jpg", "note.txt"]
        assert [ref.path for ref in refs] == ["a/b/photo.jpg", "c/d/note.txt"]

    def test_newline_separated_paths(self):
        refs = attachments.decode("a/one.pdf\n\nb/two.pdf\n")
        assert [ref.path for ref in refs] == ["a/one.pdf", "b/two.pdf"]

    def test_composite_path_and_base64_name(self):
        raw = f"gb001/2024-01-01/uuid123.pdf|{_b64('보고서.pdf')}"
        assert attachments.decode(raw) == [AttachmentRef(name="보고서.pdf", path="gb001/2024-01-01/uuid123.pdf")]

    def test_composite_list_with_unpadded_name(self):
        encoded = _b64("회의록.docx").rstrip("=")
        raw = f"gb002/2024-01-08/a.docx|{encoded},gb002/2024-01-08/b.pdf"
        refs = attachments.decode(raw)
        assert refs == [
            AttachmentRef(name="회의록.docx", path="gb002/2024-01-08/a.docx"),
            AttachmentRef(name="b.pdf", path="gb002/2024-01-08/b.pdf"),
        ]

    def test_composite_with_bad_base64_falls_back_to_basename(self):
        refs = attachments.decode("gb001/w/x.pdf|@@not-base64@@")
        assert refs == [AttachmentRef(name="x.pdf", path="gb001/w/x.pdf")]

    def test_single_plain_path(self):
        assert attachments.decode("gb003/2024-02-05/file.png") == [
            AttachmentRef(name="file.png", path="gb003/2024-02-05/file.png")
        ]

    def test_structured_list_and_single_object(self):
        assert attachments.decode([{"name": "a.pdf", "path": "p/a.pdf"}]) == [AttachmentRef("a.pdf", "p/a.pdf")]
        assert attachments.decode({"path": "p/b.pdf"}) == [AttachmentRef("b.pdf", "p/b.pdf")]
        assert attachments.decode('{"name": "c.pdf", "path": "p/c"}') == [AttachmentRef("c.pdf", "p/c")]

    def test_mixed_legacy_list(self):
        refs = attachments.decode([None, "p/one.pdf", {"name": "two.pdf", "path": "p/2"}, "  "])
        assert refs == [AttachmentRef("one.pdf", "p/one.pdf"), AttachmentRef("two.pdf", "p/2")]

    def test_bytes_are_decoded_first(self):
        assert attachments.decode('["x/y.txt"]'.encode("utf-8")) == [AttachmentRef("y.txt", "x/y.txt")]

    def test_unknown_shapes_never_raise(self):
        assert attachments.decode(42) == [AttachmentRef(name="", path="42")]
        assert attachments.decode("[not json") == [AttachmentRef(name="[not json", path="[not json")]

    def test_equality_ignores_url(self):
        assert AttachmentRef("a", "p", url="u1") == AttachmentRef("a", "p", url="u2")


class TestMerge:
    def test_new_uploads_are_appended(self):
        merged = attachments.merge([AttachmentRef("a.pdf", "p1")], [AttachmentRef("b.pdf", "p2")])
        assert merged == [AttachmentRef("a.pdf", "p1"), AttachmentRef("b.pdf", "p2")]

    def test_same_path_overwrites_in_place(self):
        merged = attachments.merge(
            [AttachmentRef("a.pdf", "p1"), AttachmentRef("z.pdf", "p9")],
            [AttachmentRef("a2.pdf", "p1")],
        )
        assert merged == [AttachmentRef("a2.pdf", "p1"), AttachmentRef("z.pdf", "p9")]

    def test_entries_without_path_are_dropped(self):
        merged = attachments.merge(
            [AttachmentRef("a.pdf", "p1")],
            [AttachmentRef("lost.pdf", None), AttachmentRef("blank.pdf", "")],
        )
        assert merged == [AttachmentRef("a.pdf", "p1")]

    def test_whitespace_paths_are_dropped(self):
        stored = attachments.decode('[{"name": "x.pdf", "path": "   "}, {"name": "y.pdf", "path": " p/y.pdf "}]')
        assert stored == [AttachmentRef("x.pdf", None), AttachmentRef("y.pdf", "p/y.pdf")]

        merged = attachments.merge(stored, [AttachmentRef("blank.pdf", "  \n")])
        assert merged == [AttachmentRef("y.pdf", "p/y.pdf")]
        assert attachments.encode(merged) == '[{"name":"y.pdf","path":"p/y.pdf"}]'
        assert attachments.encode([AttachmentRef("blank.pdf", "   ")]) == "[]"

    def test_inputs_are_not_mutated(self):
        existing = [AttachmentRef("a.pdf", "p1")]
        attachments.merge(existing, [AttachmentRef("a2.pdf", "p1")])
        assert existing == [AttachmentRef("a.pdf", "p1")]


class TestStorageKeys:
    def test_key_shape(self):
        moment = datetime(2024, 3, 4, 1, 2, 3, tzinfo=timezone.utc)
        key = attachments.build_storage_key(1, "2024-03-04", "주간 보고서.PDF", now=moment)
        assert re.fullmatch(r"gb001/2024-03-04/20240304T010203_[0-9a-f]{32}\.pdf", key)

    def test_keys_are_unique_and_safe(self):
        keys = {attachments.build_storage_key(12, "2024-03-04", "../../etc/passwd") for _ in range(50)}
        assert len(keys) == 50
        for key in keys:
            assert key.startswith("gb012/2024-03-04/")
            assert re.fullmatch(r"[A-Za-z0-9._/-]+", key)
            assert ".." not in key.split("/")

    def test_suffix_is_capped(self):
        key = attachments.build_storage_key(1, "2024-03-04", "archive.averyveryverylongext")
        assert len(key.rsplit("_", 1)[1]) == 32 + 10

    def test_key_in_week(self):
        assert attachments.key_in_week("gb001/2024-03-04/a.pdf", 1, "2024-03-04")
        assert not attachments.key_in_week("gb002/2024-03-04/a.pdf", 1, "2024-03-04")
        assert not attachments.key_in_week("gb001/2024-03-04/../../x", 1, "2024-03-04")
        assert not attachments.key_in_week("", 1, "2024-03-04")


def test_basename():
    assert attachments.basename("gb001/2024-03-04/report.pdf") == "report.pdf"
    assert attachments.basename("report.pdf") == "report.pdf"
    assert attachments.basename("gb001/2024-03-04/") == "file"
    assert attachments.basename("") == "file"
    assert attachments.basename(None) == "file"
