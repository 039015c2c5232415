import uuid
import logging
import threading
from queue import Empty

from . import protocol
from ..config import DEFAULT_CHUNK_SIZE
from ..exceptions import OperationCancelled, WorkerError, WorkerTimeout


class WorkerClient:
    """
    Controller-side wrapper that turns worker messages into blocking calls.

    Each call posts one operation, forwards `progress` messages to the
    optional `on_progress(percent, stage)` callback and returns the `complete`
    result. An `error` message raises WorkerError and a `cancelled`
    acknowledgement raises OperationCancelled. `cancel()` may be called from
    another thread while a call is waiting.

    Example:
        with WorkerClient(DocumentParserWorker()) as client:
            text = client.parse_pdf(data, on_progress=print)
    """

    def __init__(self, worker, start=True):
        self.worker = worker
        self._lock = threading.Lock()
        self._current_id = None
        if start and not worker.is_alive():
            worker.start()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.terminate()

    def request(self, message, on_progress=None, timeout=None):
        """
        Sends one operation and waits for its terminal message.

        Args:
            message (WireModel): The operation to run.
            on_progress (callable): Receives (percent, stage) for each progress message.
            timeout (float): Seconds to wait for each message; None waits forever.

        Returns:
            The operation result.
        """
        with self._lock:
            message_id = message.id or uuid.uuid4().hex
            message.id = message_id
            self._current_id = message_id
            self.worker.post_message(message)
            try:
                while True:
                    try:
                        reply = self.worker.outbox.get(timeout=timeout)
                    except Empty:
                        self.worker.cancel(message_id)
                        raise WorkerTimeout("Timed out waiting for the worker")

                    if reply.get("id") != message_id:
                        # Acknowledgement left over from an earlier operation
                        continue

                    reply_type = reply.get("type")
                    if reply_type == "progress":
                        if on_progress:
                            on_progress(reply["progress"], reply.get("stage"))
                    elif reply_type == "complete":
                        return reply.get("result")
                    elif reply_type == "error":
                        raise WorkerError(reply.get("error") or "Worker error")
                    elif reply_type == "cancelled":
                        raise OperationCancelled("Operation cancelled")
                    else:
                        logging.warning(f"Ignoring unexpected worker message: {reply_type}")
            finally:
                self._current_id = None

    def cancel(self):
        """Asks the worker to cancel the call currently waiting, if any."""
        message_id = self._current_id
        if message_id is not None:
            self.worker.cancel(message_id)

    def parse_text(self, file_data, file_name="", file_type="", chunk_size=DEFAULT_CHUNK_SIZE, **kwargs):
        message = protocol.ParseTextMessage(file_data=file_data, file_name=file_name,
                                            file_type=file_type, chunk_size=chunk_size)
        return self.request(message, **kwargs)

    def parse_pdf(self, file_data, **kwargs):
        return self.request(protocol.ParsePdfMessage(file_data=file_data), **kwargs)

    def parse_docx(self, file_data, chunk_size=DEFAULT_CHUNK_SIZE, **kwargs):
        return self.request(protocol.ParseDocxMessage(file_data=file_data, chunk_size=chunk_size), **kwargs)

    def process_text(self, text, chunk_size=DEFAULT_CHUNK_SIZE, **kwargs):
        return self.request(protocol.ProcessTextMessage(text=text, chunk_size=chunk_size), **kwargs)

    def enhance_text(self, text, options=None, **kwargs):
        return self.request(protocol.EnhanceTextMessage(text=text, options=options or {}), **kwargs)

    def terminate(self, timeout=5):
        self.worker.stop()
        if self.worker.is_alive():
            self.worker.join(timeout)
