"""
JD Builder command line tool.

Parses job description documents and runs the rule-based language clean-up
from the terminal, using the same executor threads as the API.
"""

import os
import logging
import click

from .config import DEFAULT_CHUNK_SIZE, LOG_FILE
from .document_parser import detect_document_type
from .exceptions import ConfigurationError, OperationCancelled, UnsupportedDocumentError, WorkerError
from .key_manager import create_key_manager
from .language_processor import LanguageProcessor, get_improvement_suggestions
from .workers.client import WorkerClient
from .workers.document_parser_worker import DocumentParserWorker
from .workers.text_processor_worker import TextProcessorWorker

# --- Logging Configuration ---
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s',
                    handlers=[
                        logging.FileHandler(LOG_FILE),
                        logging.StreamHandler()
                    ])


def _echo_progress(percent, stage=None):
    label = f" {stage}" if stage else ""
    click.echo(f"[{percent:3d}%]{label}", err=True)


def read_document(file_path, chunk_size=DEFAULT_CHUNK_SIZE, on_progress=None):
    """
    Extracts the text of a document on a DocumentParserWorker.

    Args:
        file_path (str): Path to a PDF, DOCX or plain text file.
        chunk_size (int): Characters per chunk for text and DOCX files.
        on_progress (callable): Receives (percent, stage) updates.

    Returns:
        str: The extracted text.
    """
    file_name = os.path.basename(file_path)
    document_type = detect_document_type(file_name)
    with open(file_path, 'rb') as f:
        file_data = f.read()

    with WorkerClient(DocumentParserWorker()) as client:
        if document_type == "pdf":
            return client.parse_pdf(file_data, on_progress=on_progress)
        if document_type == "docx":
            return client.parse_docx(file_data, chunk_size, on_progress=on_progress)
        return client.parse_text(file_data, file_name, "text/plain", chunk_size, on_progress=on_progress)


@click.group()
def cli():
    """A CLI tool for parsing and sharpening job descriptions."""
    pass


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--chunk-size', default=DEFAULT_CHUNK_SIZE, show_default=True, type=click.IntRange(min=1),
              help='Characters processed between progress updates.')
@click.option('--output', '-o', type=click.Path(dir_okay=False, writable=True),
              help='Write the extracted text to this file instead of stdout.')
def parse(file_path, chunk_size, output):
    """Extracts the text from a PDF, DOCX or TXT job description."""
    try:
        text = read_document(file_path, chunk_size, on_progress=_echo_progress)
    except (UnsupportedDocumentError, WorkerError) as e:
        raise click.ClickException(str(e))
    except OperationCancelled:
        raise click.ClickException("Parsing was cancelled.")

    if output:
        with open(output, 'w', encoding='utf-8') as f:
            f.write(text)
        click.echo(f"Saved {len(text)} characters to {output}")
    else:
        click.echo(text)


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--no-language', is_flag=True, help='Skip grandiose and vague wording replacements.')
@click.option('--no-passive', is_flag=True, help='Keep passive phrasing.')
@click.option('--no-intensifiers', is_flag=True, help='Keep intensifiers such as "very".')
@click.option('--no-redundancy', is_flag=True, help='Keep redundant phrases.')
@click.option('--remove-years', is_flag=True, help='Rewrite years-of-experience requirements.')
@click.option('--score', is_flag=True, help='Also print the sharpness score and suggestions.')
def enhance(file_path, no_language, no_passive, no_intensifiers, no_redundancy, remove_years, score):
    """Sharpens the language of a job description document."""
    options = {
        "enhanceLanguage": not no_language,
        "convertPassiveToActive": not no_passive,
        "removeIntensifiers": not no_intensifiers,
        "removeRedundancy": not no_redundancy,
        "removeYearsOfExperience": remove_years,
    }
    try:
        text = read_document(file_path, on_progress=_echo_progress)
        with WorkerClient(TextProcessorWorker()) as client:
            result = client.enhance_text(text, options, on_progress=_echo_progress)
    except (UnsupportedDocumentError, WorkerError) as e:
        raise click.ClickException(str(e))
    except OperationCancelled:
        raise click.ClickException("Enhancement was cancelled.")

    click.echo(result)

    if score:
        report = LanguageProcessor.from_options(options).process_text(text)
        click.echo("\n" + "-"*80)
        click.echo(f"Sharpness Score: {report['sharpness_score']}/5 | Changes: {len(report['changes'])}")
        for suggestion in get_improvement_suggestions(report['sharpness_score'], report['changes']):
            click.echo(f"- {suggestion}")
        click.echo("-"*80)


@cli.command('keys-status')
def keys_status():
    """Shows the configured Gemini API keys and their cooldown state."""
    try:
        key_manager = create_key_manager()
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    for status in key_manager.get_keys_status():
        state = "available" if status["is_available"] else f"cooling down until {status['cooldown_until']}"
        click.echo(f"{status['key_prefix']}  uses={status['usage_count']}  errors={status['error_count']}  {state}")


if __name__ == '__main__':
    cli()
