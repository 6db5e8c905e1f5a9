"""
=============================================================================
CONNECTION WORKER POOL
=============================================================================

A set of worker threads that run connection tasks pulled from a shared
queue. One task = one connection, handled start to finish by one
worker (thread-per-connection on a bounded pool).

=============================================================================
POOL SIZE
=============================================================================

The server already limits how many connections are admitted. The pool is
sized to that same limit, so every admitted connection gets a worker
right away and the queue never builds up:

    max_connections = 10  ──►  10 workers
    11th connection       ──►  rejected by admission, never queued

With max_connections = 0 (unlimited) there is no limit to size against, so
the pool grows instead. A task submitted while no worker is free starts a
new worker, and workers above the base size exit once their task is done:

    10 base workers, 12 connections  ──►  12 workers
    all 12 connections finished      ──►  10 workers again

An explicit worker count keeps the pool fixed; extra tasks then wait in
the queue.

=============================================================================
WORKER LIFECYCLE
=============================================================================

    def run(self):
        while not shutdown:
            task = queue.get()      <- BLOCKS until task available
            if task is None:        <- "Poison pill" signals shutdown
                break
            execute(task)           <- Run the task, log failures
            queue.task_done()       <- Mark task complete
            if surplus: break       <- Grown pools shrink back

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Worker thread states, for monitoring."""
    IDLE = "idle"        # Waiting for task
    BUSY = "busy"        # Executing task
    STOPPED = "stopped"  # Thread exited


@dataclass
class Task:
    """
    A deferred function call: "call func(*args, **kwargs) later".

    Attributes:
        func: The function to execute.
        args: Positional arguments for the function.
        kwargs: Keyword arguments for the function.
        submitted_at: Time the task was queued (for wait-time logging).
    """
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """
    Daemon thread that runs connection tasks until it gets a poison pill.

    A task that raises is logged and counted; the worker keeps running.
    After each task it reports back through on_idle(worker); a False
    answer means the worker is surplus and exits.
    """

    def __init__(
        self,
        task_queue: queue.Queue,
        worker_id: int,
        name_prefix: str = "coolsocket-worker",
        on_idle: Optional[Callable[["Worker"], bool]] = None,
    ):
        # daemon=True: a stuck handler cannot keep the process alive
        super().__init__(name=f"{name_prefix}-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id
        self.on_idle = on_idle

        self.state = WorkerState.IDLE

        # Metrics
        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"{self.name} waiting for connections")

        while True:
            task = self.task_queue.get()

            try:
                # None is the "poison pill" that signals shutdown
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

            if self.on_idle is not None and not self.on_idle(self):
                break

        self.state = WorkerState.STOPPED
        logger.debug(f"{self.name} exited")

    def _execute_task(self, task: Task):
        self.state = WorkerState.BUSY
        start_time = time.time()

        try:
            task.func(*task.args, **task.kwargs)

            elapsed = time.time() - start_time
            logger.debug(f"{self.name} finished task after {elapsed:.3f}s")
            self.tasks_completed += 1

        except Exception as e:
            # One bad task must not take the worker down with it
            elapsed = time.time() - start_time
            logger.exception(
                f"{self.name} task raised after {elapsed:.3f}s: {e}"
            )
            self.tasks_failed += 1

        finally:
            self.state = WorkerState.IDLE


class ThreadPool:
    """
    Thread pool with a fixed base size that can optionally grow.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Running Connection Tasks                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   pool = ThreadPool(workers=10)                                      │
    │   pool.start()                                                       │
    │                                                                      │
    │   pool.submit(process_connection, conn)     # -> True               │
    │                                                                      │
    │   print(pool.stats)                                                  │
    │                                                                      │
    │   pool.shutdown(wait=True, timeout=5.0)                              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    submit(fn, *args) mirrors concurrent.futures.Executor.submit, so the
    server can use either this pool or an external executor.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Growing (grow=True)                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   _available = workers waiting for a task - tasks nobody took yet    │
    │                                                                      │
    │   submit():   _available > 0 ?  ──► take that slot                   │
    │                      │ no                                            │
    │                      ▼                                               │
    │               start one more worker for this task                    │
    │                                                                      │
    │   task done:  above base size ?  ──► worker exits                    │
    │                      │ no                                            │
    │                      ▼                                               │
    │               _available += 1, wait for the next task                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Slots are counted under the lock, so a growing pool never leaves a task
    in the queue while every worker is busy.
    """

    def __init__(self, workers: int = 10, name_prefix: str = "coolsocket-worker", grow: bool = False):
        if workers < 1:
            raise ValueError("workers must be >= 1")

        self.size = workers
        self.name_prefix = name_prefix
        self.grow = grow

        self._task_queue: queue.Queue = queue.Queue()

        self._workers: list[Worker] = []
        self._lock = threading.Lock()  # Protects _workers, _available and the flags
        self._available = 0
        self._next_worker_id = 0
        self._started = False
        self._shutdown = False

        # Counters of workers that already retired
        self._retired_completed = 0
        self._retired_failed = 0

    def start(self):
        """Start the base set of worker threads. No-op if already started."""
        with self._lock:
            if self._started:
                return

            logger.debug(f"Starting thread pool with {self.size} workers")

            # Fresh queue on restart: stale poison pills stay with old workers
            self._task_queue = queue.Queue()
            self._available = 0

            for _ in range(self.size):
                self._add_worker()

            self._started = True
            self._shutdown = False

    def _add_worker(self) -> Worker:
        # Caller holds the lock
        worker = Worker(
            self._task_queue,
            self._next_worker_id,
            self.name_prefix,
            on_idle=self._on_worker_idle,
        )
        self._next_worker_id += 1
        self._workers.append(worker)
        self._available += 1
        worker.start()
        return worker

    def submit(self, func: Callable[..., Any], *args, **kwargs) -> bool:
        """
        Queue a task for execution.

        In a growing pool, starts a new worker if none is free.

        Returns:
            True once the task is queued.

        Raises:
            RuntimeError: If the pool is not started or is shutting down.
        """
        with self._lock:
            if not self._started:
                raise RuntimeError("Worker pool is not running")
            if self._shutdown:
                raise RuntimeError("Worker pool is shutting down")

            if self._available <= 0 and self.grow:
                logger.debug(
                    f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._add_worker()

            self._available -= 1
            self._task_queue.put(Task(func=func, args=args, kwargs=kwargs))
        return True

    def _on_worker_idle(self, worker: Worker) -> bool:
        """Called by a worker after each task. False tells it to exit."""
        with self._lock:
            if worker.task_queue is not self._task_queue:
                # Left over from before a restart; its poison pill is in that queue
                return True

            surplus = len(self._workers) > self.size
            if self.grow and surplus and not self._shutdown and worker in self._workers:
                self._workers.remove(worker)
                self._retired_completed += worker.tasks_completed
                self._retired_failed += worker.tasks_failed
                logger.debug(
                    f"Scaling down: {len(self._workers) + 1} -> {len(self._workers)} workers"
                )
                return False

            self._available += 1
            return True

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop the pool.

        Args:
            wait: Wait for queued and running tasks to finish.
            timeout: Upper bound for that wait (None = no bound).
        """
        with self._lock:
            if not self._started or self._shutdown:
                return
            self._shutdown = True
            workers = list(self._workers)

        logger.debug("Shutting down thread pool...")

        # One poison pill per worker, queued behind any pending tasks
        for _ in workers:
            self._task_queue.put(None)

        if wait:
            deadline = None if timeout is None else time.monotonic() + timeout
            for worker in workers:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                worker.join(remaining)
                if worker.is_alive():
                    logger.warning(f"Worker {worker.worker_id} still busy at shutdown")

        with self._lock:
            self._workers.clear()
            self._started = False

        logger.debug("Thread pool shutdown complete")

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.IDLE)

    @property
    def queued(self) -> int:
        return self._task_queue.qsize()

    @property
    def stats(self) -> dict:
        """Worker and task counts, for logging and health checks."""
        workers = list(self._workers)
        return {
            "workers": {
                "total": len(workers),
                "busy": sum(1 for w in workers if w.state == WorkerState.BUSY),
                "idle": sum(1 for w in workers if w.state == WorkerState.IDLE),
            },
            "tasks": {
                "queued": self._task_queue.qsize(),
                "completed": self._retired_completed + sum(w.tasks_completed for w in workers),
                "failed": self._retired_failed + sum(w.tasks_failed for w in workers),
            },
        }
