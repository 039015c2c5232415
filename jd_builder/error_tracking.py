"""
Error capture for operators.

`ErrorTracker.install()` hooks uncaught exceptions on the main thread and on
worker threads; `uninstall()` puts the previous hooks back. The application
calls both explicitly from its startup and shutdown handlers.
"""
import sys
import logging
import threading
import traceback
from datetime import datetime

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import ERROR_WEBHOOK_TIMEOUT, ERROR_WEBHOOK_URL


class ErrorTracker:
    def __init__(self, collection=None, webhook_url=ERROR_WEBHOOK_URL):
        self.collection = collection
        self.webhook_url = webhook_url
        self._previous_excepthook = None
        self._previous_threading_excepthook = None

    @property
    def installed(self):
        return self._previous_excepthook is not None

    def install(self):
        if self.installed:
            return
        self._previous_excepthook = sys.excepthook
        self._previous_threading_excepthook = threading.excepthook
        sys.excepthook = self._excepthook
        threading.excepthook = self._threading_excepthook
        logging.info("Error tracker installed.")

    def uninstall(self):
        if not self.installed:
            return
        sys.excepthook = self._previous_excepthook
        threading.excepthook = self._previous_threading_excepthook
        self._previous_excepthook = None
        self._previous_threading_excepthook = None
        logging.info("Error tracker uninstalled.")

    def _excepthook(self, exc_type, exc, tb):
        self.capture_error(exc, {"source": "sys.excepthook"}, tb=tb)
        self._previous_excepthook(exc_type, exc, tb)

    def _threading_excepthook(self, args):
        thread_name = args.thread.name if args.thread else None
        self.capture_error(args.exc_value, {"source": "threading.excepthook", "thread": thread_name},
                           tb=args.exc_traceback)
        self._previous_threading_excepthook(args)

    def capture_error(self, error, context=None, user_email=None, tb=None):
        """
        Logs an error and forwards it to the notification webhook if one is set.

        Args:
            error (Exception or str): The error or its message.
            context (dict): Extra details about where it happened.
            user_email (str): The affected user, if known.
            tb: Traceback to use instead of the one attached to `error`.

        Returns:
            dict: The error record, ready to be stored with `store`.
        """
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            stack = "".join(traceback.format_exception(type(error), error, tb or error.__traceback__))
        else:
            message = str(error)
            stack = None

        logging.error(f"Error captured: {message} | context={context}\n{stack or ''}")
        record = {
            "error_message": message,
            "error_stack": stack,
            "context": context or {},
            "user_email": user_email,
            "created_at": datetime.utcnow(),
        }
        if self.webhook_url:
            self.notify(record)
        return record

    def notify(self, record):
        """Posts an error record to the webhook. Returns True on success."""
        session = requests.Session()
        retry = Retry(total=3, backoff_factor=0.5, status_forcelist=[500, 502, 503, 504])
        session.mount('https://', HTTPAdapter(max_retries=retry))
        session.mount('http://', HTTPAdapter(max_retries=retry))

        payload = dict(record, created_at=record["created_at"].isoformat())
        try:
            response = session.post(self.webhook_url, json=payload, timeout=ERROR_WEBHOOK_TIMEOUT)
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            logging.error(f"Failed to send error notification: {e}", exc_info=True)
            return False

    async def store(self, record):
        """Saves an error record in the error log collection, if one is attached."""
        if self.collection is None:
            return None
        result = await self.collection.insert_one(dict(record))
        return str(result.inserted_id)
