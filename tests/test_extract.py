"""
Tests for paper_import.extract: both job entry points against a fake model.
"""

from dataclasses import replace
from unittest.mock import patch

import pytest
import requests

from conftest import FakeClient, reply
from paper_import.errors import (
    PreconditionError,
    ServiceUnavailableError,
    UnitServiceError,
    UnitTimeoutError,
)
from paper_import.extract import run_text_extraction, run_vision_extraction
from paper_import.rasterizer import RasterizedDocument
from paper_import.records import PageImage


def _raster(tmp_path, count):
    """A fake rasterize() that returns `count` pages in a real workspace."""
    workspace = tmp_path / "raster"
    seen = {}

    def rasterize(pdf_bytes, **options):
        workspace.mkdir()
        seen.update(options)
        pages = [PageImage(page_number=i, image_b64=f"img{i}", path=str(workspace / f"page-{i}.png"))
                 for i in range(1, count + 1)]
        return RasterizedDocument(pages=pages, total_pages=count, workspace=workspace)

    rasterize.workspace = workspace
    rasterize.options = seen
    return rasterize


class TestTextExtraction:
    """Tests for run_text_extraction()."""

    def test_text_when_single_chunk_then_validated_records(self, settings, exam_pdf):
        client = FakeClient([reply(
            questions=[{"content": "Solve x^2 - 4 < 0.", "topic": "Inequalities", "difficulty": 2,
                        "confidence": 0.9, "questionNum": "1"}],
            lessons=[{"title": "Quadratics", "content": "Roots...", "contentType": "summary"}],
        )])

        result = run_text_extraction(exam_pdf, settings=settings, client=client)

        assert len(result.questions) == 1
        q = result.questions[0]
        assert q.topic == "functions"
        assert q.question_num == "Q1"
        assert q.temp_id.startswith("q-")
        assert result.lessons[0].content_type == "summary"
        assert result.lessons[0].temp_id.startswith("l-")
        _, messages, options = client.calls[0]
        assert "Solve the inequality" in messages[1]["content"]
        assert options["temperature"] == settings.text_temperature
        assert options["max_tokens"] == settings.text_max_tokens

    def test_text_when_metadata_given_then_passed_through_identically(self, settings, exam_pdf):
        metadata = {"school": "RI", "year": 2024, "nested": {"a": [1, 2]}}

        result = run_text_extraction(exam_pdf, metadata, settings=settings,
                                     client=FakeClient([reply()]))

        assert result.job_metadata is metadata

    def test_text_when_chunk_fails_then_other_chunks_still_counted(self, settings, make_pdf):
        pdf = make_pdf([[f"section {i} " * 6] for i in range(6)])
        small = replace(settings, chunk_chars=80)
        client = FakeClient([
            reply(questions=[{"content": "one"}]),
            UnitTimeoutError("took too long"),
            "this is not json",
            UnitServiceError("500"),
            requests.ConnectionError("reset"),
            reply(questions=[{"content": "two"}]),
        ])

        result = run_text_extraction(pdf, settings=small, client=client)

        assert len(client.calls) == 6
        assert [q.content for q in result.questions] == ["one", "two"]

    def test_text_when_reply_nests_too_deep_then_chunk_skipped_and_job_continues(self, settings, make_pdf):
        pdf = make_pdf([["alpha " * 10], ["beta " * 10]])
        small = replace(settings, chunk_chars=70)
        client = FakeClient([
            '{"questions": ' + "[" * 5000,
            reply(questions=[{"content": "kept"}]),
        ])

        result = run_text_extraction(pdf, settings=small, client=client)

        assert [q.content for q in result.questions] == ["kept"]

    def test_text_when_several_chunks_then_section_context_and_dedupe(self, settings, make_pdf):
        pdf = make_pdf([["alpha " * 10], ["beta " * 10]])
        small = replace(settings, chunk_chars=70)
        same = {"content": "Find the area.", "answer": "4"}
        client = FakeClient([reply(questions=[same]), reply(questions=[same, {"content": "other"}])])

        result = run_text_extraction(pdf, settings=small, client=client)

        assert [q.content for q in result.questions] == ["Find the area.", "other"]
        assert "[Section 1 of 2]" in client.calls[0][1][1]["content"]
        assert "[Section 2 of 2]" in client.calls[1][1][1]["content"]

    def test_text_when_temp_ids_then_unique(self, settings, exam_pdf):
        client = FakeClient([reply(questions=[{"content": str(i)} for i in range(5)])])

        result = run_text_extraction(exam_pdf, settings=settings, client=client)

        ids = [q.temp_id for q in result.questions]
        assert len(set(ids)) == 5

    def test_text_when_service_down_then_unavailable_before_any_call(self, settings, exam_pdf):
        client = FakeClient(available=False)

        with pytest.raises(ServiceUnavailableError, match="ollama serve"):
            run_text_extraction(exam_pdf, settings=settings, client=client)

        assert client.calls == []

    def test_text_when_no_text_layer_then_precondition_error(self, settings, make_pdf):
        with pytest.raises(PreconditionError, match="vision mode"):
            run_text_extraction(make_pdf([[]]), settings=settings, client=FakeClient())

    def test_text_when_too_many_pages_then_precondition_error(self, settings, make_pdf):
        with pytest.raises(PreconditionError, match="too many pages"):
            run_text_extraction(make_pdf([["a"], ["b"]]), settings=replace(settings, max_pages=1),
                                client=FakeClient())

    def test_text_when_not_a_pdf_then_precondition_error(self, settings):
        client = FakeClient()

        with pytest.raises(PreconditionError):
            run_text_extraction(b"GIF89a", settings=settings, client=client)

        assert client.calls == []


class TestVisionExtraction:
    """Tests for run_vision_extraction()."""

    def test_vision_when_question_spans_pages_then_merged(self, settings, exam_pdf, rasterizer_installed, tmp_path):
        client = FakeClient([
            reply(questions=[{"questionNum": "Q5(i)", "content": "part one"}], pageInfo="Page 1"),
            reply(questions=[{"questionNum": "Q5(ii)", "content": "part two",
                              "diagram": "A parabola"}]),
        ])
        rasterize = _raster(tmp_path, 2)

        result = run_vision_extraction(exam_pdf, {"paper": 1}, settings=settings,
                                       client=client, rasterize=rasterize)

        assert len(result.questions) == 1
        q = result.questions[0]
        assert q.question_num == "Q5"
        assert q.content == "part one\n\npart two"
        assert q.diagram_description == "A parabola"
        assert result.job_metadata == {"paper": 1}
        assert not rasterize.workspace.exists()

    def test_vision_when_called_then_raster_settings_and_vision_options(self, settings, exam_pdf, rasterizer_installed, tmp_path):
        client = FakeClient([reply(), reply()])
        rasterize = _raster(tmp_path, 2)

        run_vision_extraction(exam_pdf, settings=settings, client=client, rasterize=rasterize)

        assert rasterize.options == {"dpi": settings.raster_dpi, "fmt": settings.raster_format,
                                     "max_pages": settings.max_pages}
        kind, image, options = client.calls[0]
        assert (kind, image) == ("image", "img1")
        assert options["temperature"] == settings.vision_temperature
        assert options["deadline"].seconds == settings.vision_timeout_ms / 1000

    def test_vision_when_page_fails_then_other_pages_kept(self, settings, exam_pdf, rasterizer_installed, tmp_path):
        client = FakeClient([
            UnitTimeoutError("slow"),
            "```json\n{\"questions\": [{\"questionNum\": 2, \"content\": \"b\"}]}\n```",
            "nonsense",
            reply(questions=[{"questionNum": "1", "content": "a"}]),
        ])
        rasterize = _raster(tmp_path, 4)

        result = run_vision_extraction(exam_pdf, settings=settings, client=client, rasterize=rasterize)

        assert [q.question_num for q in result.questions] == ["Q1", "Q2"]
        assert not rasterize.workspace.exists()

    def test_vision_when_reply_nests_too_deep_then_page_skipped(self, settings, exam_pdf, rasterizer_installed, tmp_path):
        client = FakeClient([
            "[" * 5000,
            reply(questions=[{"questionNum": "Q2", "content": "b"}]),
        ])
        rasterize = _raster(tmp_path, 2)

        result = run_vision_extraction(exam_pdf, settings=settings, client=client, rasterize=rasterize)

        assert [q.question_num for q in result.questions] == ["Q2"]
        assert not rasterize.workspace.exists()

    def test_vision_when_consumer_raises_then_workspace_still_released(self, settings, exam_pdf, rasterizer_installed, tmp_path):
        client = FakeClient([KeyboardInterrupt()])
        rasterize = _raster(tmp_path, 1)

        with pytest.raises(KeyboardInterrupt):
            run_vision_extraction(exam_pdf, settings=settings, client=client, rasterize=rasterize)

        assert not rasterize.workspace.exists()

    def test_vision_when_rasterizer_missing_then_unavailable_before_workspace(self, settings, exam_pdf, tmp_path):
        rasterize = _raster(tmp_path, 1)
        with patch("paper_import.rasterizer.shutil.which", return_value=None):
            with pytest.raises(ServiceUnavailableError, match="pdftoppm"):
                run_vision_extraction(exam_pdf, settings=settings, client=FakeClient(),
                                      rasterize=rasterize)

        assert not rasterize.workspace.exists()

    def test_vision_when_no_vision_model_then_unavailable(self, settings, exam_pdf, rasterizer_installed, tmp_path):
        rasterize = _raster(tmp_path, 1)

        with pytest.raises(ServiceUnavailableError, match="ollama pull"):
            run_vision_extraction(exam_pdf, settings=settings, client=FakeClient(vision=False),
                                  rasterize=rasterize)

        assert not rasterize.workspace.exists()

    def test_vision_when_lessons_repeat_then_deduplicated(self, settings, exam_pdf, rasterizer_installed, tmp_path):
        lesson = {"title": "Notes", "content": "Sum of a GP"}
        client = FakeClient([reply(lessons=[lesson]), reply(lessons=[lesson])])

        result = run_vision_extraction(exam_pdf, settings=settings, client=client,
                                       rasterize=_raster(tmp_path, 2))

        assert len(result.lessons) == 1
