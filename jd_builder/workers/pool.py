"""
Priority dispatch of operations across several executors of one kind.

A WorkerPool owns a fixed number of workers, each behind its own
WorkerClient, plus one dispatcher thread per worker. Submitted operations
wait in a single priority queue; whichever dispatcher is free takes the
highest-priority task next, and tasks of equal priority run in submission
order.

Usage:
    pool = WorkerPool(DocumentParserWorker, size=2)
    task = pool.submit(ParsePdfMessage(file_data=data), priority=TaskPriority.HIGH)
    text = task.wait()
    pool.shutdown()

Cancellation removes a task that is still queued. A task that is already
running is cancelled through the protocol `cancel` message, addressed by the
task id, so it can never hit whichever operation the worker runs next.
"""
import heapq
import uuid
import logging
import itertools
import threading
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Optional

from . import protocol
from .client import WorkerClient
from ..config import DEFAULT_CHUNK_SIZE, WORKER_POOL_SIZE, WORKER_TASK_TIMEOUT
from ..exceptions import OperationCancelled, WorkerError, WorkerTimeout


class TaskPriority(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3


class TaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


@dataclass
class PoolTask:
    """
    One submitted operation and, once it finishes, its outcome.

    Attributes:
        task_id: Also used as the protocol correlation id of the message.
        message: The protocol operation to run.
        priority: Position in the queue relative to other waiting tasks.
        on_progress: Receives (percent, stage) while the task runs.
        status: Current TaskStatus.
        result: The `complete` result, if the task completed.
        error: The exception that ended the task otherwise.
    """
    task_id: str
    message: Any
    priority: TaskPriority = TaskPriority.NORMAL
    on_progress: Optional[Callable] = None
    status: TaskStatus = TaskStatus.QUEUED
    result: Any = None
    error: Optional[Exception] = None
    _finished: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def done(self):
        return self._finished.is_set()

    def wait(self, timeout=None):
        """
        Blocks until the task finishes.

        Returns:
            The operation result.

        Raises:
            OperationCancelled: If the task was cancelled.
            WorkerError: If the worker reported an error or timed out.
        """
        if not self._finished.wait(timeout):
            raise WorkerTimeout("Timed out waiting for the task")
        if self.error is not None:
            raise self.error
        return self.result


class WorkerPool:
    """
    Runs protocol operations on a fixed set of workers.

    Args:
        worker_factory (callable): Builds one unstarted BaseWorker per call.
        size (int): Number of workers.
        task_timeout (float): Seconds a running task may go without a message from its worker.
        name (str): Used for thread names and log lines; defaults to the factory name.
    """

    def __init__(self, worker_factory, size=WORKER_POOL_SIZE, task_timeout=WORKER_TASK_TIMEOUT, name=None):
        if size < 1:
            raise ValueError("A worker pool needs at least one worker")
        self.name = name or getattr(worker_factory, "__name__", "WorkerPool")
        self.task_timeout = task_timeout
        self._clients = [WorkerClient(worker_factory()) for _ in range(size)]
        self._condition = threading.Condition()
        self._queue = []
        self._sequence = itertools.count()
        self._tasks = {}
        self._running = {}
        self._closed = False
        self._dispatchers = []
        for index, client in enumerate(self._clients):
            thread = threading.Thread(target=self._dispatch, args=(client,), daemon=True,
                                      name=f"{self.name}-dispatch-{index}")
            thread.start()
            self._dispatchers.append(thread)
        logging.info(f"Worker pool {self.name} started with {size} workers.")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    def submit(self, message, priority=TaskPriority.NORMAL, on_progress=None):
        """Queues an operation and returns its PoolTask without waiting."""
        task = PoolTask(task_id=uuid.uuid4().hex, message=message,
                        priority=TaskPriority(priority), on_progress=on_progress)
        message.id = task.task_id
        with self._condition:
            if self._closed:
                raise WorkerError("Worker pool is shut down")
            self._tasks[task.task_id] = task
            heapq.heappush(self._queue, (-task.priority, next(self._sequence), task))
            self._condition.notify()
        return task

    def run(self, message, priority=TaskPriority.NORMAL, on_progress=None):
        return self.submit(message, priority, on_progress).wait()

    def cancel(self, task_id):
        """
        Cancels a queued or running task.

        Returns:
            bool: False if no unfinished task has this id.
        """
        with self._condition:
            task = self._tasks.get(task_id)
            if task is None:
                return False
            if task.status == TaskStatus.QUEUED:
                self._queue = [entry for entry in self._queue if entry[2] is not task]
                heapq.heapify(self._queue)
                self._finish(task, TaskStatus.CANCELLED, error=OperationCancelled("Operation cancelled"))
                return True
            client = self._running[task_id]
        client.worker.cancel(task_id)
        return True

    def get_status(self):
        with self._condition:
            return {
                "workers": {"total": len(self._clients), "busy": len(self._running)},
                "tasks": {"queued": len(self._queue), "running": len(self._running)},
            }

    def shutdown(self, timeout=5):
        """Cancels queued tasks, stops every worker and waits for the dispatchers to exit."""
        with self._condition:
            self._closed = True
            for _, _, task in self._queue:
                self._finish(task, TaskStatus.CANCELLED, error=OperationCancelled("Operation cancelled"))
            self._queue = []
            self._condition.notify_all()
        for client in self._clients:
            client.terminate(timeout)
        for thread in self._dispatchers:
            thread.join(timeout)
        logging.info(f"Worker pool {self.name} shut down.")

    # --- Same calls as WorkerClient ---
    def parse_text(self, file_data, file_name="", file_type="", chunk_size=DEFAULT_CHUNK_SIZE, **kwargs):
        message = protocol.ParseTextMessage(file_data=file_data, file_name=file_name,
                                            file_type=file_type, chunk_size=chunk_size)
        return self.run(message, **kwargs)

    def parse_pdf(self, file_data, **kwargs):
        return self.run(protocol.ParsePdfMessage(file_data=file_data), **kwargs)

    def parse_docx(self, file_data, chunk_size=DEFAULT_CHUNK_SIZE, **kwargs):
        return self.run(protocol.ParseDocxMessage(file_data=file_data, chunk_size=chunk_size), **kwargs)

    def process_text(self, text, chunk_size=DEFAULT_CHUNK_SIZE, **kwargs):
        return self.run(protocol.ProcessTextMessage(text=text, chunk_size=chunk_size), **kwargs)

    def enhance_text(self, text, options=None, **kwargs):
        return self.run(protocol.EnhanceTextMessage(text=text, options=options or {}), **kwargs)

    # --- Internals ---
    def _dispatch(self, client):
        while True:
            with self._condition:
                while not self._queue and not self._closed:
                    self._condition.wait()
                if self._closed:
                    return
                _, _, task = heapq.heappop(self._queue)
                task.status = TaskStatus.RUNNING
                self._running[task.task_id] = client

            result, error = None, None
            try:
                result = client.request(task.message, on_progress=task.on_progress, timeout=self.task_timeout)
                status = TaskStatus.COMPLETED
            except OperationCancelled as e:
                status, error = TaskStatus.CANCELLED, e
            except WorkerTimeout as e:
                status, error = TaskStatus.TIMEOUT, e
            except WorkerError as e:
                status, error = TaskStatus.FAILED, e
            except Exception as e:
                logging.error(f"[{self.name}] Task {task.task_id} failed: {e}", exc_info=True)
                status, error = TaskStatus.FAILED, WorkerError("Worker error")

            with self._condition:
                self._running.pop(task.task_id, None)
                self._finish(task, status, result, error)

    # Callers hold self._condition
    def _finish(self, task, status, result=None, error=None):
        task.status = status
        task.result = result
        task.error = error
        self._tasks.pop(task.task_id, None)
        task._finished.set()
