"""
Resource store - versioned, typed state written by method invocations.

Each write for a (kind, instance_key) adds a new version; readers only see
the newest one. Older versions are kept up to the kind's garbage collection
horizon (a count of versions, not an age) and reclaimed lazily after writes.
Concurrent writes to the same key are last-write-wins; the store offers no
compare-and-swap.

Storage backends:
- In-memory (tests and dry runs)
- File-based (one JSON document per version)
- PostgreSQL (see obs_provision.pg_store)
"""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, Union

import pydantic
from pydantic import BaseModel

from obs_provision.errors import ResourceNotFound, SchemaViolation

INFINITE = 'infinite'


@dataclass(frozen=True)
class ResourceSpec:
    """Shape and retention policy of one resource kind"""
    kind: str
    schema: Type[BaseModel]
    description: str = ''
    lifetime: str = INFINITE
    garbage_collection: int = 10


@dataclass(frozen=True)
class ResourceHandle:
    """Opaque reference to one stored version"""
    kind: str
    instance_key: str
    version: int

    def __str__(self):
        return f'{self.kind}/{self.instance_key}@{self.version}'


@dataclass(frozen=True)
class ResourceRecord:
    kind: str
    instance_key: str
    version: int
    timestamp: str
    lifetime: str
    garbage_collection: int
    payload: Dict[str, Any]

    @property
    def handle(self) -> ResourceHandle:
        return ResourceHandle(self.kind, self.instance_key, self.version)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'instanceKey': self.instance_key,
            'version': self.version,
            'timestamp': self.timestamp,
            'lifetime': self.lifetime,
            'garbageCollection': self.garbage_collection,
            'payload': self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ResourceRecord':
        return cls(
            kind=data['kind'],
            instance_key=data['instanceKey'],
            version=data['version'],
            timestamp=data['timestamp'],
            lifetime=data['lifetime'],
            garbage_collection=data['garbageCollection'],
            payload=data['payload'],
        )


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision"""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class ResourceStore(ABC):
    """
    Abstract base class for resource storage.

    Subclasses implement version persistence; schema validation, version
    numbering and garbage collection policy live here.
    """

    def __init__(self):
        self._specs: Dict[str, ResourceSpec] = {}

    def register(self, spec: ResourceSpec) -> None:
        existing = self._specs.get(spec.kind)
        if existing is not None and existing != spec:
            raise SchemaViolation(f'Resource kind {spec.kind!r} is already registered with another schema')
        self._specs[spec.kind] = spec

    def spec(self, kind: str) -> ResourceSpec:
        try:
            return self._specs[kind]
        except KeyError:
            raise SchemaViolation(f'No schema registered for resource kind {kind!r}')

    def validate(self, kind: str, payload: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
        """Check payload against the kind's schema; return its JSON form"""
        schema = self.spec(kind).schema
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True)
        try:
            value = schema.model_validate(payload)
        except pydantic.ValidationError as e:
            raise SchemaViolation(f'Payload for {kind!r} does not match its schema: {e}')
        return value.model_dump(mode='json', by_alias=True)

    def write(self, kind: str, instance_key: str, payload: Union[BaseModel, Dict[str, Any]]) -> ResourceHandle:
        """
        Store a new version of (kind, instance_key).

        Raises:
            SchemaViolation: payload does not match the registered schema
        """
        spec = self.spec(kind)
        data = self.validate(kind, payload)
        record = self._append(spec, instance_key, data, utc_now())
        self.collect_garbage(kind, instance_key)
        return record.handle

    def read(self, kind: str, instance_key: str) -> Dict[str, Any]:
        """Payload of the newest version; raises ResourceNotFound"""
        return self.latest(kind, instance_key).payload

    def latest(self, kind: str, instance_key: str) -> ResourceRecord:
        versions = self.versions(kind, instance_key)
        if not versions:
            raise ResourceNotFound(f'No {kind!r} resource for {instance_key!r}')
        return versions[0]

    def get(self, handle: ResourceHandle) -> ResourceRecord:
        """Exact version a handle points to; raises ResourceNotFound if reclaimed"""
        for record in self.versions(handle.kind, handle.instance_key):
            if record.version == handle.version:
                return record
        raise ResourceNotFound(f'Version {handle} is not retained')

    def collect_garbage(self, kind: str, instance_key: str) -> int:
        """Reclaim versions beyond the horizon; the newest version is always kept"""
        horizon = max(self.spec(kind).garbage_collection, 1)
        versions = self.versions(kind, instance_key)
        expired = versions[horizon:]
        if expired:
            self._delete(kind, instance_key, [record.version for record in expired])
        return len(expired)

    @abstractmethod
    def versions(self, kind: str, instance_key: str) -> List[ResourceRecord]:
        """Retained versions, newest first"""
        pass

    @abstractmethod
    def _append(self, spec: ResourceSpec, instance_key: str, payload: Dict[str, Any], timestamp: str) -> ResourceRecord:
        pass

    @abstractmethod
    def _delete(self, kind: str, instance_key: str, versions: List[int]) -> None:
        pass

    def close(self):
        pass


class MemoryResourceStore(ResourceStore):
    """In-memory store; safe for concurrent writers on different keys"""

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self._records: Dict[tuple, List[ResourceRecord]] = {}

    def versions(self, kind, instance_key):
        with self._lock:
            return list(reversed(self._records.get((kind, instance_key), [])))

    def _append(self, spec, instance_key, payload, timestamp):
        with self._lock:
            history = self._records.setdefault((spec.kind, instance_key), [])
            version = history[-1].version + 1 if history else 1
            record = ResourceRecord(
                spec.kind, instance_key, version, timestamp,
                spec.lifetime, spec.garbage_collection, payload)
            history.append(record)
            return record

    def _delete(self, kind, instance_key, versions):
        with self._lock:
            history = self._records.get((kind, instance_key), [])
            self._records[(kind, instance_key)] = [r for r in history if r.version not in versions]


class FileResourceStore(ResourceStore):
    """
    Stores each version as <root>/<kind>/<instance_key>/<version>.json.

    Files are written to a temp name and renamed, so a reader never sees a
    partial version.
    """

    def __init__(self, root: str):
        super().__init__()
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _key_dir(self, kind: str, instance_key: str) -> Path:
        for part in (kind, instance_key):
            if not part or part.startswith('.') or '/' in part or '\\' in part:
                raise SchemaViolation(f'Unsafe resource key component: {part!r}')
        return self.root / kind / instance_key

    def _version_numbers(self, key_dir: Path) -> List[int]:
        if not key_dir.is_dir():
            return []
        return sorted(
            (int(p.stem) for p in key_dir.glob('*.json') if p.stem.isdigit()),
            reverse=True)

    def versions(self, kind, instance_key):
        key_dir = self._key_dir(kind, instance_key)
        records = []
        for version in self._version_numbers(key_dir):
            try:
                with open(key_dir / f'{version}.json') as f:
                    records.append(ResourceRecord.from_dict(json.load(f)))
            except FileNotFoundError:
                # reclaimed between listing and reading
                continue
        return records

    def _append(self, spec, instance_key, payload, timestamp):
        key_dir = self._key_dir(spec.kind, instance_key)
        key_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            existing = self._version_numbers(key_dir)
            version = existing[0] + 1 if existing else 1
            record = ResourceRecord(
                spec.kind, instance_key, version, timestamp,
                spec.lifetime, spec.garbage_collection, payload)
            fd, tmp_path = tempfile.mkstemp(dir=key_dir, prefix='.', suffix='.tmp')
            try:
                with os.fdopen(fd, 'w') as f:
                    json.dump(record.to_dict(), f, indent=2)
                os.replace(tmp_path, key_dir / f'{version}.json')
            except BaseException:
                os.unlink(tmp_path)
                raise
            return record

    def _delete(self, kind, instance_key, versions):
        key_dir = self._key_dir(kind, instance_key)
        for version in versions:
            try:
                (key_dir / f'{version}.json').unlink()
            except FileNotFoundError:
                pass


def open_store(backend: str = 'memory', path: Optional[str] = None, postgres_url: Optional[str] = None) -> ResourceStore:
    """
    Factory function to get the configured store backend

    Raises:
        ValueError: unknown backend or missing backend setting
    """
    if backend == 'memory':
        return MemoryResourceStore()
    if backend == 'file':
        if not path:
            raise ValueError('store.path is required for the file backend')
        return FileResourceStore(path)
    if backend == 'postgres':
        if not postgres_url:
            raise ValueError('store.postgres_url is required for the postgres backend')
        from obs_provision.pg_store import PostgreSQLResourceStore
        return PostgreSQLResourceStore(postgres_url)
    raise ValueError(f'Unknown store backend: {backend}')
