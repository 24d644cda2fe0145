import json
import hashlib
from typing import Dict, Iterable, Mapping, Optional

import redis

from planrx.config.settings import get_settings

settings = get_settings()


class CriticalPathCache:
    def __init__(self, redis_url: str = settings.redis_url, ttl_seconds: int = settings.cache_ttl_seconds):
        self.redis_client = redis.from_url(redis_url, decode_responses=True)
        self.ttl_seconds = ttl_seconds

    def get(self, key: str) -> Optional[Dict]:
        """Retrieve a cached critical-path result."""
        cached = self.redis_client.get(f"critical_path:{key}")
        if cached:
            return json.loads(cached)
        return None

    def set(self, key: str, result: Dict, ttl_seconds: Optional[int] = None) -> None:
        self.redis_client.setex(
            f"critical_path:{key}",
            ttl_seconds or self.ttl_seconds,
            json.dumps(result, default=str)
        )

    def delete(self, key: str) -> None:
        """Invalidate cache entry."""
        self.redis_client.delete(f"critical_path:{key}")

    @staticmethod
    def hash_inputs(
        graph_version: str,
        tasks: Iterable[Mapping],
        task_durations: Optional[Mapping[str, float]] = None,
        require_durations: bool = False,
    ) -> str:
        """Key over the graph version token, every task field and the duration overrides."""
        data = json.dumps(
            {
                "graph": graph_version,
                "tasks": sorted((dict(t) for t in tasks), key=lambda t: t["id"]),
                "durations": dict(task_durations or {}),
                "strict": require_durations,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(data.encode()).hexdigest()[:16]

    def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            self.redis_client.ping()
            return True
        except redis.RedisError:
            return False
