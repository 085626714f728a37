"""
Durable key-value storage for client-local state.

The store keeps its whole notification list as one JSON string under a
single key; the session token may sit under another. Backends:

  FileStorage       one JSON object on disk, replaced atomically on write
  ConfigMapStorage  a Kubernetes ConfigMap, for the agent running in-cluster
  MemoryStorage     a plain dict, for tests and throwaway runs

Every backend raises PersistenceError on failure; callers decide whether
that is fatal.
"""
import json
import logging
import os
import pathlib
import tempfile
import threading
from typing import Protocol

from flowbell.errors import PersistenceError

log = logging.getLogger("flowbell.storage")

NOTIFICATIONS_KEY = "flowbell_notifications"
TOKEN_KEY = "token"
_STATE_CONFIGMAP = "flowbell-state"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class FileStorage:
    """
    All keys live in one JSON object file. Writes go to a temp file in the
    same directory and are swapped in with os.replace so a crash mid-write
    never leaves a truncated state file behind.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = pathlib.Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> dict:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise PersistenceError(f"cannot read {self.path}: {exc}") from exc
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"corrupt state file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"state file {self.path} is not a JSON object")
        return data

    def get(self, key: str) -> str | None:
        with self._lock:
            value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            try:
                data = self._read_all()
            except PersistenceError as exc:
                log.warning("Discarding unreadable state file: %s", exc)
                data = {}
            data[key] = value
            directory = self.path.parent
            try:
                directory.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{self.path.name}.")
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh)
                os.replace(tmp, self.path)
            except OSError as exc:
                raise PersistenceError(f"cannot write {self.path}: {exc}") from exc


class ConfigMapStorage:
    """Keys map 1:1 onto data entries of the flowbell-state ConfigMap."""

    def __init__(self, namespace: str, name: str = _STATE_CONFIGMAP):
        self.namespace = namespace
        self.name = name
        self._core_v1 = None

    def _api(self):
        """Return a CoreV1Api client, loading config lazily."""
        if self._core_v1 is None:
            from kubernetes import client, config as kube_config
            try:
                kube_config.load_incluster_config()
            except Exception:
                kube_config.load_kube_config()
            self._core_v1 = client.CoreV1Api()
        return self._core_v1

    def get(self, key: str) -> str | None:
        from kubernetes.client.exceptions import ApiException
        try:
            cm = self._api().read_namespaced_config_map(self.name, self.namespace)
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise PersistenceError(f"cannot read ConfigMap {self.name}: {exc.reason}") from exc
        except Exception as exc:
            raise PersistenceError(f"cannot read ConfigMap {self.name}: {exc}") from exc
        return (cm.data or {}).get(key)

    def set(self, key: str, value: str) -> None:
        from kubernetes import client as k8s_client
        from kubernetes.client.exceptions import ApiException
        try:
            core_v1 = self._api()
            try:
                core_v1.patch_namespaced_config_map(
                    self.name, self.namespace, {"data": {key: value}})
            except ApiException as exc:
                if exc.status != 404:
                    raise
                cm = k8s_client.V1ConfigMap(
                    metadata=k8s_client.V1ObjectMeta(name=self.name, namespace=self.namespace),
                    data={key: value},
                )
                core_v1.create_namespaced_config_map(self.namespace, cm)
                log.info("Created ConfigMap %s/%s", self.namespace, self.name)
        except Exception as exc:
            raise PersistenceError(f"cannot write ConfigMap {self.name}: {exc}") from exc


def make_storage(settings) -> KeyValueStorage:
    backend = settings.storage_backend
    if backend == "configmap":
        return ConfigMapStorage(settings.namespace)
    if backend == "memory":
        return MemoryStorage()
    return FileStorage(settings.state_file)
