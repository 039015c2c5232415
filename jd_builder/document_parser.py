import io
import os
import logging

import PyPDF2
import docx

from .chunk_processor import ignore_progress, never_cancelled, process_text_in_chunks
from .config import DEFAULT_CHUNK_SIZE
from .exceptions import DocumentParseError, UnsupportedDocumentError

PDF_MIME_TYPE = "application/pdf"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_EXTENSIONS = ('.txt', '.md', '.text')


def extract_text_from_bytes(file_data, chunk_size=DEFAULT_CHUNK_SIZE, checkpoint=None, on_progress=None):
    """
    Decodes a plain-text upload as UTF-8 and runs it through the chunk processor.

    Args:
        file_data (bytes): Raw file contents.
        chunk_size (int): Slice size for chunked processing.
        checkpoint (callable): Cancellation check, see `process_text_in_chunks`.
        on_progress (callable): Progress callback.

    Returns:
        str or None: The decoded text, or None if cancelled.

    Raises:
        DocumentParseError: If the bytes are not valid UTF-8.
    """
    try:
        text = file_data.decode("utf-8")
    except UnicodeDecodeError as e:
        logging.error(f"Failed to decode text file: {e}", exc_info=True)
        raise DocumentParseError("Failed to parse text file") from e
    return process_text_in_chunks(text, chunk_size, checkpoint=checkpoint, on_progress=on_progress)


def extract_text_from_pdf(file_data, checkpoint=None, on_progress=None):
    """
    Extracts text from a PDF page by page, separating pages with a blank line.

    The checkpoint is consulted before each page and progress is reported
    after each one, so a long document can be cancelled between pages.

    Args:
        file_data (bytes): Raw PDF contents.
        checkpoint (callable): Returns True once the operation is cancelled.
        on_progress (callable): Receives the percentage of pages done.

    Returns:
        str or None: The extracted text, or None if cancelled.

    Raises:
        DocumentParseError: If the PDF cannot be read.
    """
    checkpoint = checkpoint or never_cancelled
    on_progress = on_progress or ignore_progress
    try:
        reader = PyPDF2.PdfReader(io.BytesIO(file_data))
        page_count = len(reader.pages)
        if page_count == 0:
            on_progress(100)
            return ""

        text = ""
        for number, page in enumerate(reader.pages, start=1):
            if checkpoint():
                return None
            text += (page.extract_text() or "") + "\n\n"
            on_progress(round(100 * number / page_count))
        return text
    except DocumentParseError:
        raise
    except Exception as e:
        logging.error(f"Failed to extract text from PDF: {e}", exc_info=True)
        raise DocumentParseError("Failed to parse PDF file") from e


def extract_text_from_docx(file_data, chunk_size=DEFAULT_CHUNK_SIZE, checkpoint=None, on_progress=None):
    """Extracts paragraph text from a DOCX file, then runs it through the chunk processor."""
    try:
        document = docx.Document(io.BytesIO(file_data))
        text = "\n".join([para.text for para in document.paragraphs])
    except Exception as e:
        logging.error(f"Failed to extract text from DOCX: {e}", exc_info=True)
        raise DocumentParseError(
            "Failed to parse DOCX file. The file may be corrupted or in an unsupported format."
        ) from e

    if not text.strip():
        raise DocumentParseError("No text content could be extracted from the DOCX file.")
    return process_text_in_chunks(text, chunk_size, checkpoint=checkpoint, on_progress=on_progress)


def detect_document_type(filename, mime_type=None):
    """
    Works out which adapter handles a file.

    Returns:
        str: One of "pdf", "docx" or "text".

    Raises:
        UnsupportedDocumentError: For any other file type.
    """
    _, extension = os.path.splitext((filename or "").lower())
    if extension == '.pdf' or mime_type == PDF_MIME_TYPE:
        return "pdf"
    if extension == '.docx' or mime_type == DOCX_MIME_TYPE:
        return "docx"
    if extension in TEXT_EXTENSIONS or (mime_type or "").startswith("text/"):
        return "text"
    logging.error(f"Unsupported file format: {extension or mime_type}. Please use PDF, DOCX or TXT.")
    raise UnsupportedDocumentError("Unsupported file type. Please upload a PDF, DOCX or TXT file.")


def parse_document(file_data, filename, mime_type=None, chunk_size=DEFAULT_CHUNK_SIZE,
                   checkpoint=None, on_progress=None):
    """Parses an uploaded document of any supported type into plain text."""
    document_type = detect_document_type(filename, mime_type)
    if document_type == "pdf":
        return extract_text_from_pdf(file_data, checkpoint=checkpoint, on_progress=on_progress)
    if document_type == "docx":
        return extract_text_from_docx(file_data, chunk_size, checkpoint=checkpoint, on_progress=on_progress)
    return extract_text_from_bytes(file_data, chunk_size, checkpoint=checkpoint, on_progress=on_progress)
