import pytest
from click.testing import CliRunner
from unittest.mock import patch
import os
import sys
import docx

# Add project root to path to allow imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))

from jd_builder.main import cli
from jd_builder.key_manager import KeyManager


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def jd_text_file(tmp_path):
    path = tmp_path / "jd.txt"
    path.write_text("We are responsible for a very robust platform.", encoding="utf-8")
    return str(path)


def test_parse_text_file(runner, jd_text_file):
    result = runner.invoke(cli, ['parse', jd_text_file, '--chunk-size', '10'])
    assert result.exit_code == 0
    assert "We are responsible for a very robust platform." in result.output


def test_parse_docx_to_output_file(runner, tmp_path):
    source = tmp_path / "jd.docx"
    document = docx.Document()
    document.add_paragraph("Staff Accountant")
    document.save(str(source))
    output = tmp_path / "out.txt"

    result = runner.invoke(cli, ['parse', str(source), '--output', str(output)])

    assert result.exit_code == 0
    assert output.read_text(encoding="utf-8") == "Staff Accountant"


def test_parse_unsupported_file(runner, tmp_path):
    path = tmp_path / "logo.png"
    path.write_bytes(b"\x89PNG")

    result = runner.invoke(cli, ['parse', str(path)])

    assert result.exit_code != 0
    assert "Unsupported file type" in result.output


def test_parse_invalid_text_file(runner, tmp_path):
    path = tmp_path / "broken.txt"
    path.write_bytes(b"\xff\xfe\xfa")

    result = runner.invoke(cli, ['parse', str(path)])

    assert result.exit_code != 0
    assert "Failed to parse text file" in result.output


def test_enhance_file(runner, jd_text_file):
    result = runner.invoke(cli, ['enhance', jd_text_file, '--score'])
    assert result.exit_code == 0
    assert "We are own and lead a strong platform." in result.output
    assert "Sharpness Score:" in result.output


def test_enhance_with_rules_disabled(runner, jd_text_file):
    result = runner.invoke(cli, ['enhance', jd_text_file, '--no-passive', '--no-intensifiers'])
    assert result.exit_code == 0
    assert "We are responsible for a very strong platform." in result.output


def test_keys_status(runner):
    manager = KeyManager(["AIzaSyFirstCliKey", "AIzaSySecondCliKey"])
    with patch('jd_builder.main.create_key_manager', return_value=manager):
        result = runner.invoke(cli, ['keys-status'])

    assert result.exit_code == 0
    assert "AIzaSyFi..." in result.output
    assert "AIzaSyFirstCliKey" not in result.output
    assert "available" in result.output


def test_keys_status_without_keys(runner, monkeypatch):
    for name in ("GEMINI_API_KEY", "GEMINI_API_KEY_2", "GEMINI_API_KEY_3", "GEMINI_API_KEYS"):
        monkeypatch.delenv(name, raising=False)

    result = runner.invoke(cli, ['keys-status'])

    assert result.exit_code != 0
    assert "No API keys available" in result.output
