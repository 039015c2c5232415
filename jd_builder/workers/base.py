"""
Executor threads for long-running text and document operations.

A worker receives protocol messages on its inbox, runs one operation at a
time and posts `progress` and terminal messages to its outbox. Operations
call `checkpoint()` between chunks, pages and stages; that is where the
worker yields, reads newly arrived messages and notices cancellation.

Operations that arrive while another one is running are queued and run in
order once it finishes.
"""
import time
import logging
import threading
from collections import deque
from queue import Empty, Queue

from pydantic import ValidationError

from . import protocol
from ..chunk_processor import process_text_in_chunks
from ..config import WORKER_YIELD_INTERVAL
from ..exceptions import DocumentParseError


class BaseWorker(threading.Thread):
    """
    Runs protocol operations off the controller's thread.

    Subclasses map message types to handler method names in `handlers` and
    user-facing failure descriptions in `failure_messages`. A handler returns
    the operation result, or None if it stopped because of cancellation.

    Workers can also be driven synchronously with `handle_message`, which is
    what the tests do.
    """

    handlers = {"processText": "process_text"}
    failure_messages = {"processText": "Failed to process text"}

    def __init__(self, outbox=None, yield_interval=WORKER_YIELD_INTERVAL):
        super().__init__(daemon=True, name=type(self).__name__)
        self.inbox = Queue()
        self.outbox = outbox if outbox is not None else Queue()
        self.yield_interval = yield_interval
        self._cancel_event = threading.Event()
        self._stop_event = threading.Event()
        self._pending = deque()
        self._busy = False
        self._current_id = None
        self._last_percent = 0

    # --- Controller side ---
    def post_message(self, message):
        if isinstance(message, protocol.WireModel):
            message = message.to_wire()
        self.inbox.put(message)

    def cancel(self, message_id=None):
        self.post_message(protocol.CancelMessage(id=message_id))

    def stop(self):
        """Stops the thread. An operation in flight is cancelled at its next checkpoint."""
        logging.info(f"[{self.name}] Stop signal received.")
        self._stop_event.set()
        self.inbox.put(None)

    @property
    def is_busy(self):
        return self._busy

    @property
    def is_cancelled(self):
        return self._cancel_event.is_set()

    # --- Thread loop ---
    def run(self):
        while not self._stop_event.is_set():
            if self._pending:
                message = self._pending.popleft()
            else:
                message = self.inbox.get()
            if message is None:
                break
            self.handle_message(message)
        logging.info(f"[{self.name}] Worker stopped.")

    def handle_message(self, raw):
        """Dispatches one message. Never raises; failures become `error` messages."""
        try:
            message = protocol.parse_message(raw)
        except protocol.UnknownMessageType:
            logging.warning(f"[{self.name}] Unknown message: {raw!r:.200}")
            self._post(protocol.error("Unknown message type", self._raw_id(raw)))
            return
        except ValidationError as e:
            logging.error(f"[{self.name}] Invalid message: {e}")
            self._post(protocol.error("Invalid message", self._raw_id(raw)))
            return

        if message.type == "cancel":
            self._handle_cancel(message.id)
            return

        handler_name = self.handlers.get(message.type)
        if handler_name is None:
            self._post(protocol.error("Unknown message type", message.id))
            return

        self._cancel_event.clear()
        self._busy = True
        self._current_id = message.id
        self._last_percent = 0
        try:
            result = getattr(self, handler_name)(message)
            if result is None or self.checkpoint():
                logging.info(f"[{self.name}] {message.type} cancelled.")
                return
            self._post(protocol.complete(result, message.id))
        except DocumentParseError as e:
            if not self.is_cancelled:
                self._post(protocol.error(str(e), message.id))
        except Exception as e:
            logging.error(f"[{self.name}] {message.type} failed: {e}", exc_info=True)
            if not self.is_cancelled:
                self._post(protocol.error(self.failure_messages.get(message.type, "Worker error"), message.id))
        finally:
            self._busy = False
            self._current_id = None

    # --- Operation side ---
    def checkpoint(self):
        """
        Yields, then takes in any messages that arrived since the last checkpoint.

        Returns:
            bool: True if the running operation has been cancelled.
        """
        time.sleep(self.yield_interval)
        while True:
            try:
                raw = self.inbox.get_nowait()
            except Empty:
                break
            if raw is None:
                self._stop_event.set()
                self._handle_cancel(None)
            elif isinstance(raw, dict) and raw.get("type") == "cancel":
                self._handle_cancel(raw.get("id"))
            else:
                self._pending.append(raw)
        return self.is_cancelled

    def emit_progress(self, percent, stage=None):
        if self.is_cancelled:
            return
        percent = max(self._last_percent, min(100, max(0, int(percent))))
        self._last_percent = percent
        self._post(protocol.progress(percent, stage, self._current_id))

    def process_text(self, message):
        return process_text_in_chunks(message.text, message.chunk_size,
                                      checkpoint=self.checkpoint, on_progress=self.emit_progress)

    # --- Internals ---
    def _handle_cancel(self, cancel_id):
        if cancel_id is not None:
            for queued in list(self._pending):
                if isinstance(queued, dict) and queued.get("id") == cancel_id:
                    self._pending.remove(queued)
                    self._post(protocol.cancelled(cancel_id))
                    return
            # Targets an operation that already finished or never arrived
            if cancel_id != self._current_id:
                self._post(protocol.cancelled(cancel_id))
                return

        if self._busy:
            if not self.is_cancelled:
                self._cancel_event.set()
                self._post(protocol.cancelled(self._current_id))
            return

        self._cancel_event.set()
        self._post(protocol.cancelled(cancel_id))

    def _post(self, message):
        self.outbox.put(message)

    @staticmethod
    def _raw_id(raw):
        return raw.get("id") if isinstance(raw, dict) else None
