import logging

from .base import BaseWorker
from ..language_processor import LanguageProcessor

STAGE_PROGRESS = (50, 75, 90)


class TextProcessorWorker(BaseWorker):
    """Runs chunked text processing and rule-based JD enhancement. Handles `processText` and `enhanceText`."""

    handlers = {
        "processText": "process_text",
        "enhanceText": "enhance_text",
    }
    failure_messages = {
        "processText": "Failed to process text",
        "enhanceText": "Failed to enhance text",
    }

    def enhance_text(self, message):
        processor = LanguageProcessor.from_options(message.options)
        self.emit_progress(25, "Analyzing text patterns")
        if self.checkpoint():
            return None

        text = message.text
        change_count = 0
        for (stage, rules), percent in zip(processor.stages(), STAGE_PROGRESS):
            self.emit_progress(percent, stage)
            for rule in rules:
                text, changes = rule(text)
                change_count += len(changes)
            if self.checkpoint():
                return None

        logging.info(f"[{self.name}] Enhancement applied {change_count} changes.")
        self.emit_progress(100)
        return text
