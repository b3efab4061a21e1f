import os
from typing import Any, Dict, List, Optional, Protocol

import orjson
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import RunNotFoundError
from .models import AgentRun


class RunStore(Protocol):
    """Protocol for agent run store implementations."""
    async def get(self, run_id: str) -> Optional[AgentRun]: ...
    async def put(self, run: AgentRun) -> None: ...
    async def update(self, run_id: str, patch: Dict[str, Any]) -> AgentRun: ...
    async def list(self) -> List[AgentRun]: ...


def apply_patch(run: AgentRun, patch: Dict[str, Any]) -> AgentRun:
    """Return a validated copy of ``run`` with ``patch`` applied."""
    data = run.model_dump()
    data.update(patch)
    return AgentRun.model_validate(data)


class InMemoryRunStore:
    """In-memory run store for development/testing."""
    def __init__(self):
        self._runs: Dict[str, AgentRun] = {}

    async def get(self, run_id: str) -> Optional[AgentRun]:
        return self._runs.get(run_id)

    async def put(self, run: AgentRun) -> None:
        self._runs[run.id] = run

    async def update(self, run_id: str, patch: Dict[str, Any]) -> AgentRun:
        if run_id not in self._runs:
            raise RunNotFoundError(run_id)
        updated = apply_patch(self._runs[run_id], patch)
        self._runs[run_id] = updated
        return updated

    async def list(self) -> List[AgentRun]:
        return list(self._runs.values())


class RedisRunStore:
    """
    Redis-backed run store with AES-GCM encryption.

    Runs are stored as encrypted orjson blobs under ``agentrun:<id>`` and
    indexed in the ``agentruns`` set. The AES-256 key is derived with PBKDF2
    from ``encryption_key`` or the ``GOVERNED_AI_ENCRYPTION_KEY`` environment
    variable.
    """

    KEY_PREFIX = "agentrun:"
    INDEX_KEY = "agentruns"

    def __init__(self, redis_url: str = "redis://localhost:6379/0", encryption_key: Optional[str] = None, client: Any = None):
        if client is None:
            import redis.asyncio as aioredis
            client = aioredis.from_url(redis_url, decode_responses=False)
        self.redis = client

        encryption_key = encryption_key or os.getenv("GOVERNED_AI_ENCRYPTION_KEY")
        if not encryption_key:
            raise RuntimeError("GOVERNED_AI_ENCRYPTION_KEY environment variable required for RedisRunStore")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"governed-ai-runs-v1",
            iterations=100000,
        )
        self.aesgcm = AESGCM(kdf.derive(encryption_key.encode("utf-8")))

    def _encrypt(self, data: bytes) -> bytes:
        """Returns nonce (12 bytes) + ciphertext + tag."""
        nonce = os.urandom(12)
        return nonce + self.aesgcm.encrypt(nonce, data, None)

    def _decrypt(self, encrypted_data: bytes) -> bytes:
        return self.aesgcm.decrypt(encrypted_data[:12], encrypted_data[12:], None)

    def _dump(self, run: AgentRun) -> bytes:
        return self._encrypt(orjson.dumps(run.model_dump(mode="json")))

    def _load(self, blob: bytes) -> AgentRun:
        return AgentRun.model_validate(orjson.loads(self._decrypt(blob)))

    async def get(self, run_id: str) -> Optional[AgentRun]:
        blob = await self.redis.get(f"{self.KEY_PREFIX}{run_id}")
        return self._load(blob) if blob else None

    async def put(self, run: AgentRun) -> None:
        await self.redis.set(f"{self.KEY_PREFIX}{run.id}", self._dump(run))
        await self.redis.sadd(self.INDEX_KEY, run.id)

    async def update(self, run_id: str, patch: Dict[str, Any]) -> AgentRun:
        current = await self.get(run_id)
        if current is None:
            raise RunNotFoundError(run_id)
        updated = apply_patch(current, patch)
        await self.redis.set(f"{self.KEY_PREFIX}{run_id}", self._dump(updated))
        return updated

    async def list(self) -> List[AgentRun]:
        runs = []
        for raw_id in await self.redis.smembers(self.INDEX_KEY):
            run_id = raw_id.decode("utf-8") if isinstance(raw_id, bytes) else raw_id
            run = await self.get(run_id)
            if run is not None:
                runs.append(run)
        return runs

    async def close(self):
        await self.redis.aclose()


def create_run_store(backend: str = "memory", redis_url: Optional[str] = None, encryption_key: Optional[str] = None) -> RunStore:
    """
    Factory function to create the appropriate run store.

    Args:
        backend: "memory" or "redis"
        redis_url: Redis connection URL (required when backend is "redis")
        encryption_key: secret for the Redis store, defaults to the environment
    """
    if backend == "redis":
        if not redis_url:
            raise ValueError("redis_url is required for the redis run store")
        return RedisRunStore(redis_url, encryption_key)
    if backend == "memory":
        return InMemoryRunStore()
    raise ValueError(f"Unknown run store backend: {backend}")
