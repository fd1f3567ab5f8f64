"""
Tests for the command-line entry point and environment settings.
"""

import json
from unittest.mock import patch

from paper_import import __main__ as cli
from paper_import.config import Settings
from paper_import.errors import PreconditionError, RasterizationError
from paper_import.records import ExtractionResult
from paper_import.validate import validate_question


def _result(metadata):
    return ExtractionResult(
        questions=(validate_question({"content": "Find x.", "confidence": 0.9}, "q-1"),),
        lessons=(),
        job_metadata=metadata,
    )


class TestMain:
    """Tests for cli.main()."""

    def test_main_when_text_mode_then_result_json_written(self, tmp_path, exam_pdf):
        pdf = tmp_path / "prelim.pdf"
        pdf.write_bytes(exam_pdf)
        out = tmp_path / "out" / "result.json"

        with patch.object(cli, "run_text_extraction", side_effect=lambda data, meta, **kw: _result(meta)) as run:
            code = cli.main([str(pdf), "--school", "RI", "--year", "2024",
                             "--exam-type", "prelim", "--paper", "2", "--out", str(out)])

        assert code == 0
        written = json.loads(out.read_text())
        assert written["questions"][0]["content"] == "Find x."
        assert written["metadata"]["paperNumber"] == 2
        assert run.call_args.args[0] == exam_pdf

    def test_main_when_vision_mode_then_vision_runner(self, tmp_path, exam_pdf, capsys):
        pdf = tmp_path / "scan.pdf"
        pdf.write_bytes(exam_pdf)

        with patch.object(cli, "run_vision_extraction", side_effect=lambda data, meta, **kw: _result(meta)):
            code = cli.main([str(pdf), "--mode", "vision"])

        captured = capsys.readouterr()
        assert code == 0
        assert json.loads(captured.out)["metadata"]["filename"] == "scan.pdf"
        assert "1 questions (0 need review)" in captured.err

    def test_main_when_precondition_fails_then_exit_2(self, tmp_path, exam_pdf):
        pdf = tmp_path / "p.pdf"
        pdf.write_bytes(exam_pdf)

        with patch.object(cli, "run_text_extraction", side_effect=PreconditionError("no text")):
            assert cli.main([str(pdf)]) == 2

    def test_main_when_rasterization_fails_then_exit_1(self, tmp_path, exam_pdf):
        pdf = tmp_path / "p.pdf"
        pdf.write_bytes(exam_pdf)

        with patch.object(cli, "run_vision_extraction", side_effect=RasterizationError("boom")):
            assert cli.main([str(pdf), "--mode", "vision"]) == 1


class TestSettings:
    """Tests for Settings.from_env()."""

    def test_from_env_when_overrides_then_applied(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_BASE_URL", "http://gpu-box:11434/")
        monkeypatch.setenv("IMPORT_MAX_PAGES", "12")
        monkeypatch.setenv("IMPORT_MAX_FILE_MB", "2.5")

        settings = Settings.from_env()

        assert settings.ollama_url == "http://gpu-box:11434"
        assert settings.max_pages == 12
        assert settings.max_file_bytes == int(2.5 * 1024 * 1024)

    def test_from_env_when_malformed_number_then_default(self, monkeypatch):
        monkeypatch.setenv("IMPORT_CHUNK_CHARS", "lots")

        assert Settings.from_env().chunk_chars == Settings().chunk_chars
