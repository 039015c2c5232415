"""
Round-robin rotation over a pool of Gemini API keys.

Keys that fail repeatedly are put in a cooldown window and skipped until the
window has passed. Cooldown expiry is checked lazily on each selection.
"""
import os
import time
import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel

from .config import API_KEY_ENV_VARS, KEY_COOLDOWN_SECONDS, KEY_ERROR_THRESHOLD
from .exceptions import ConfigurationError

KEY_PREFIX_LENGTH = 8


class KeyStatus(BaseModel):
    key: str
    usage_count: int = 0
    last_used: float = 0
    is_available: bool = True
    error_count: int = 0
    cooldown_until: float = 0


def redact_key(key):
    """Returns only a short prefix of the key, safe for logs and status reports."""
    return key[:KEY_PREFIX_LENGTH] + "..."


class KeyManager:
    """
    Hands out API keys in rotation and tracks their health.

    Args:
        api_keys (list[str]): The configured keys, in rotation order.
        error_threshold (int): Consecutive errors before a key is cooled down.
        cooldown_seconds (float): Length of the cooldown window.
        clock (callable): Returns the current time in seconds.

    Raises:
        ConfigurationError: If no keys are configured.
    """

    def __init__(
        self,
        api_keys: List[str],
        error_threshold: int = KEY_ERROR_THRESHOLD,
        cooldown_seconds: float = KEY_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not api_keys:
            raise ConfigurationError("No API keys available for Gemini")
        self.error_threshold = error_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._keys = [KeyStatus(key=key) for key in api_keys]
        self._current_index = -1
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._keys)

    def _find(self, key) -> Optional[KeyStatus]:
        for status in self._keys:
            if status.key == key:
                return status
        return None

    def get_next_key(self) -> Optional[str]:
        """Returns the next available key, or None if every key is cooling down."""
        with self._lock:
            now = self._clock()

            for status in self._keys:
                if not status.is_available and now >= status.cooldown_until:
                    status.is_available = True
                    status.error_count = 0
                    status.cooldown_until = 0
                    logging.info(f"Key {redact_key(status.key)} is out of cooldown.")

            for _ in range(len(self._keys)):
                self._current_index = (self._current_index + 1) % len(self._keys)
                status = self._keys[self._current_index]
                if status.is_available:
                    status.usage_count += 1
                    status.last_used = now
                    return status.key

            logging.warning("No API keys available; all keys are in cooldown.")
            return None

    def report_success(self, key):
        with self._lock:
            status = self._find(key)
            if status:
                status.error_count = 0

    def report_error(self, key):
        """Records a failed call; enough consecutive failures put the key in cooldown."""
        with self._lock:
            status = self._find(key)
            if not status:
                return
            status.error_count += 1
            if status.is_available and status.error_count >= self.error_threshold:
                status.is_available = False
                status.cooldown_until = self._clock() + self.cooldown_seconds
                until = datetime.fromtimestamp(status.cooldown_until).isoformat()
                logging.warning(f"Key {redact_key(key)} put in cooldown until {until}")

    def get_keys_status(self):
        """Status of every key for monitoring. Full key values are never included."""
        with self._lock:
            report = []
            for status in self._keys:
                entry = status.model_dump(exclude={"key"})
                entry["key_prefix"] = redact_key(status.key)
                report.append(entry)
            return report


def load_api_keys():
    """Collects Gemini API keys from the environment, preserving order and dropping duplicates."""
    candidates = [os.getenv(name) for name in API_KEY_ENV_VARS]
    candidates.extend((os.getenv("GEMINI_API_KEYS") or "").split(","))

    api_keys = []
    for key in candidates:
        key = (key or "").strip()
        if key and key not in api_keys:
            api_keys.append(key)
    return api_keys


def create_key_manager(api_keys=None, **kwargs):
    """Builds the process-wide key manager. Call once at startup and pass it to callers."""
    if api_keys is None:
        api_keys = load_api_keys()
    if not api_keys:
        logging.error("No Gemini API keys found in environment.")
    manager = KeyManager(api_keys, **kwargs)
    logging.info(f"Key manager initialized with {len(manager)} API keys")
    return manager
