"""
Remote mirror for task and category changes.

Local state is authoritative. Every mutation is pushed to the remote store in
the background; nothing is ever read back into local state, and failed calls
are logged and dropped.
"""
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

import httpx

from .models import Category, Task
from .logs import get_logger

log = get_logger("sync")


class RemoteStore(Protocol):
    def save_task(self, task: Task) -> Any: ...
    def delete_task(self, task_id: str) -> Any: ...
    def save_category(self, category: Category) -> Any: ...
    def delete_category(self, category_id: str) -> Any: ...
    def get_tasks(self) -> List[Dict[str, Any]]: ...
    def get_categories(self) -> List[Dict[str, Any]]: ...


class HttpRemoteStore:
    """
    REST client for the remote mirror.

    GET/POST /tasks, DELETE /tasks/<id> and the same under /categories.
    POST bodies wrap the record: {"task": {...}} or {"category": {...}}.
    """

    def __init__(self, base_url: str, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(base_url=self.base_url)

    def _post(self, path: str, body: Dict[str, Any]) -> Any:
        response = self.client.post(path, json=body)
        response.raise_for_status()
        return response.json()

    def _delete(self, path: str) -> Any:
        response = self.client.delete(path)
        response.raise_for_status()
        return response.json()

    def _get_list(self, path: str) -> List[Dict[str, Any]]:
        response = self.client.get(path)
        response.raise_for_status()
        return response.json()

    def save_task(self, task: Task) -> Any:
        return self._post("/tasks", {"task": task.to_dict()})

    def delete_task(self, task_id: str) -> Any:
        return self._delete(f"/tasks/{task_id}")

    def save_category(self, category: Category) -> Any:
        return self._post("/categories", {"category": category.to_dict()})

    def delete_category(self, category_id: str) -> Any:
        return self._delete(f"/categories/{category_id}")

    def get_tasks(self) -> List[Dict[str, Any]]:
        return self._get_list("/tasks")

    def get_categories(self) -> List[Dict[str, Any]]:
        return self._get_list("/categories")

    def close(self):
        self.client.close()


class RemoteSync:
    """Fire-and-forget dispatcher: each call runs on a worker thread and returns immediately."""

    def __init__(self, remote: RemoteStore, max_workers: int = 2):
        self.remote = remote
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tasknest-sync")
        self._futures: Set[Future] = set()
        self._lock = threading.Lock()
        self.failures = 0

    def _run(self, name: str, call: Callable[[], Any]):
        try:
            call()
        except Exception as e:
            # mirror errors never reach the caller
            with self._lock:
                self.failures += 1
            log.warning(f"Remote {name} failed: {e}")
        else:
            log.debug(f"Remote {name} done")

    def _forget(self, future: Future):
        with self._lock:
            self._futures.discard(future)

    def _submit(self, name: str, call: Callable[[], Any]) -> Future:
        future = self._executor.submit(self._run, name, call)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    def save_task(self, task: Task) -> Future:
        return self._submit(f"save_task({task.id})", lambda: self.remote.save_task(task))

    def delete_task(self, task_id: str) -> Future:
        return self._submit(f"delete_task({task_id})", lambda: self.remote.delete_task(task_id))

    def save_category(self, category: Category) -> Future:
        return self._submit(f"save_category({category.id})", lambda: self.remote.save_category(category))

    def delete_category(self, category_id: str) -> Future:
        return self._submit(f"delete_category({category_id})", lambda: self.remote.delete_category(category_id))

    def wait(self, timeout: Optional[float] = None):
        """Block until every call submitted so far has finished."""
        with self._lock:
            pending = list(self._futures)
        wait_futures(pending, timeout=timeout)

    def shutdown(self):
        self._executor.shutdown(wait=True)
