from .base import BaseWorker
from ..document_parser import extract_text_from_bytes, extract_text_from_docx, extract_text_from_pdf


class DocumentParserWorker(BaseWorker):
    """
    Parses uploaded documents off the controller's thread.

    Handles `parseText`, `parsePdf`, `parseDocx` and `processText`.
    """

    handlers = {
        "parseText": "parse_text",
        "parsePdf": "parse_pdf",
        "parseDocx": "parse_docx",
        "processText": "process_text",
    }
    failure_messages = {
        "parseText": "Failed to parse text",
        "parsePdf": "Failed to parse PDF",
        "parseDocx": "Failed to parse DOCX",
        "processText": "Failed to process text",
    }

    def parse_text(self, message):
        return extract_text_from_bytes(message.file_data, message.chunk_size,
                                       checkpoint=self.checkpoint, on_progress=self.emit_progress)

    def parse_pdf(self, message):
        return extract_text_from_pdf(message.file_data,
                                     checkpoint=self.checkpoint, on_progress=self.emit_progress)

    def parse_docx(self, message):
        return extract_text_from_docx(message.file_data, message.chunk_size,
                                      checkpoint=self.checkpoint, on_progress=self.emit_progress)
