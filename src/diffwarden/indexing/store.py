"""
Vector Store Adapters

One collection per namespace. Provides the VectorStore protocol, a Qdrant
implementation over the async client and an in-memory implementation for
tests and local runs.
"""

import asyncio
import math
from typing import Any, Protocol

import httpx
import structlog
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from diffwarden.errors import VectorStoreError

from .models import PayloadFilter, ScoredPoint, VectorPoint

logger = structlog.get_logger(__name__)

DISTANCES = {
    "cosine": models.Distance.COSINE,
    "dot": models.Distance.DOT,
    "euclid": models.Distance.EUCLID,
}

# Exceptions the qdrant client raises for server and local-mode failures
_QDRANT_ERRORS = (UnexpectedResponse, ResponseHandlingException, httpx.HTTPError, ValueError)


class VectorStore(Protocol):
    """Protocol for namespace-isolated vector storage."""

    async def ensure_namespace(self, namespace: str, dimension: int) -> None:
        """Create the namespace if absent.

        Raises:
            VectorStoreError: If it exists with a different dimension
        """
        ...

    async def namespace_exists(self, namespace: str) -> bool:
        ...

    async def drop_namespace(self, namespace: str) -> bool:
        """Delete a namespace and all of its points.

        Returns:
            True if it existed
        """
        ...

    async def upsert(self, namespace: str, points: list[VectorPoint]) -> None:
        ...

    async def search(
        self,
        namespace: str,
        vector: list[float],
        top_k: int = 10,
        score_threshold: float | None = None,
        payload_filter: PayloadFilter | None = None,
    ) -> list[ScoredPoint]:
        """Nearest points within one namespace, best first."""
        ...

    async def delete_ids(self, namespace: str, ids: list[str]) -> None:
        ...

    async def delete_by_filter(self, namespace: str, payload_filter: PayloadFilter) -> None:
        ...

    async def list_ids(self, namespace: str, payload_filter: PayloadFilter | None = None) -> set[str]:
        ...

    async def create_payload_index(self, namespace: str, field_name: str) -> None:
        ...

    async def count(self, namespace: str, payload_filter: PayloadFilter | None = None) -> int:
        ...

    async def health(self) -> bool:
        ...


def _to_qdrant_filter(payload_filter: PayloadFilter | None) -> models.Filter | None:
    if payload_filter is None:
        return None
    must = [
        models.FieldCondition(key=key, match=models.MatchValue(value=value))
        for key, value in payload_filter.must.items()
    ]
    must_not = [
        models.FieldCondition(key=key, match=models.MatchValue(value=value))
        for key, value in payload_filter.must_not.items()
    ]
    return models.Filter(must=must or None, must_not=must_not or None)


class QdrantVectorStore:
    """
    Qdrant adapter with async support.

    Each namespace maps to its own collection, so a query can never see
    another repository's points.
    """

    SCROLL_PAGE = 256

    def __init__(
        self,
        url: str | None = "http://localhost:6333",
        api_key: str | None = None,
        distance: str = "cosine",
        client: AsyncQdrantClient | None = None,
    ):
        """
        Initialize adapter.

        Args:
            url: Qdrant server URL (ignored when ``client`` is given)
            api_key: Optional API key
            distance: Metric used for new collections
            client: Preconfigured client, e.g. ``AsyncQdrantClient(location=":memory:")``
        """
        if distance not in DISTANCES:
            raise ValueError(f"Unknown distance metric: {distance}")
        self.distance = distance
        self.client = client or AsyncQdrantClient(url=url, api_key=api_key, timeout=60)

    async def close(self) -> None:
        await self.client.close()

    async def ensure_namespace(self, namespace: str, dimension: int) -> None:
        try:
            if await self.client.collection_exists(namespace):
                existing = await self._dimension_of(namespace)
                if existing is not None and existing != dimension:
                    raise VectorStoreError(
                        f"Namespace {namespace} has dimension {existing}, requested {dimension}"
                    )
                return

            logger.info("Creating namespace", namespace=namespace, dimension=dimension)
            await self.client.create_collection(
                collection_name=namespace,
                vectors_config=models.VectorParams(
                    size=dimension,
                    distance=DISTANCES[self.distance],
                ),
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to ensure namespace {namespace}: {e}") from e

    async def _dimension_of(self, namespace: str) -> int | None:
        info = await self.client.get_collection(namespace)
        vectors = info.config.params.vectors
        if isinstance(vectors, models.VectorParams):
            return vectors.size
        return None

    async def namespace_exists(self, namespace: str) -> bool:
        try:
            return await self.client.collection_exists(namespace)
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to check namespace {namespace}: {e}") from e

    async def drop_namespace(self, namespace: str) -> bool:
        try:
            if not await self.client.collection_exists(namespace):
                return False
            await self.client.delete_collection(namespace)
            logger.info("Dropped namespace", namespace=namespace)
            return True
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to drop namespace {namespace}: {e}") from e

    async def upsert(self, namespace: str, points: list[VectorPoint]) -> None:
        if not points:
            return
        try:
            await self.client.upsert(
                collection_name=namespace,
                points=[
                    models.PointStruct(id=p.id, vector=p.vector, payload=p.payload)
                    for p in points
                ],
                wait=True,
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to upsert into {namespace}: {e}") from e

    async def search(
        self,
        namespace: str,
        vector: list[float],
        top_k: int = 10,
        score_threshold: float | None = None,
        payload_filter: PayloadFilter | None = None,
    ) -> list[ScoredPoint]:
        euclid = self.distance == "euclid"
        threshold = score_threshold
        if euclid and threshold is not None:
            # Qdrant ranks euclid by raw distance and reads the threshold as a maximum
            threshold = 1.0 / threshold - 1.0 if threshold > 0 else None
        try:
            response = await self.client.query_points(
                collection_name=namespace,
                query=vector,
                query_filter=_to_qdrant_filter(payload_filter),
                limit=top_k,
                score_threshold=threshold,
                with_payload=True,
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Search failed in {namespace}: {e}") from e

        return [
            ScoredPoint(
                id=str(hit.id),
                score=_similarity_from_distance(hit.score) if euclid else hit.score,
                payload=hit.payload or {},
            )
            for hit in response.points
        ]

    async def delete_ids(self, namespace: str, ids: list[str]) -> None:
        if not ids:
            return
        try:
            await self.client.delete(
                collection_name=namespace,
                points_selector=models.PointIdsList(points=list(ids)),
                wait=True,
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to delete points from {namespace}: {e}") from e

    async def delete_by_filter(self, namespace: str, payload_filter: PayloadFilter) -> None:
        try:
            await self.client.delete(
                collection_name=namespace,
                points_selector=models.FilterSelector(filter=_to_qdrant_filter(payload_filter)),
                wait=True,
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to delete by filter from {namespace}: {e}") from e

    async def list_ids(self, namespace: str, payload_filter: PayloadFilter | None = None) -> set[str]:
        ids: set[str] = set()
        offset = None
        try:
            while True:
                records, offset = await self.client.scroll(
                    collection_name=namespace,
                    scroll_filter=_to_qdrant_filter(payload_filter),
                    limit=self.SCROLL_PAGE,
                    offset=offset,
                    with_payload=False,
                    with_vectors=False,
                )
                ids.update(str(record.id) for record in records)
                if offset is None:
                    return ids
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to list points in {namespace}: {e}") from e

    async def create_payload_index(self, namespace: str, field_name: str) -> None:
        try:
            await self.client.create_payload_index(
                collection_name=namespace,
                field_name=field_name,
                field_schema=models.PayloadSchemaType.KEYWORD,
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(
                f"Failed to create payload index {field_name} on {namespace}: {e}"
            ) from e

    async def count(self, namespace: str, payload_filter: PayloadFilter | None = None) -> int:
        try:
            result = await self.client.count(
                collection_name=namespace,
                count_filter=_to_qdrant_filter(payload_filter),
                exact=True,
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to count points in {namespace}: {e}") from e
        return result.count

    async def health(self) -> bool:
        try:
            await self.client.get_collections()
            return True
        except _QDRANT_ERRORS as e:
            logger.warning("Qdrant health check failed", error=str(e))
            return False


def _similarity_from_distance(distance: float) -> float:
    """Euclidean distance as a higher-is-better score in (0, 1]."""
    return 1.0 / (1.0 + distance)


def _score(distance: str, a: list[float], b: list[float]) -> float:
    if distance == "dot":
        return sum(x * y for x, y in zip(a, b))
    if distance == "euclid":
        return _similarity_from_distance(math.dist(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / norm


class InMemoryVectorStore:
    """In-memory vector store using dicts.

    Keeps write and delete counters so callers can observe how much an
    indexing run actually touched.
    """

    def __init__(self, distance: str = "cosine") -> None:
        if distance not in DISTANCES:
            raise ValueError(f"Unknown distance metric: {distance}")
        self.distance = distance
        self._dimensions: dict[str, int] = {}
        self._points: dict[str, dict[str, VectorPoint]] = {}
        self.payload_indexes: dict[str, set[str]] = {}
        self.upserted = 0
        self.deleted = 0
        self._lock = asyncio.Lock()

    def _require(self, namespace: str) -> dict[str, VectorPoint]:
        if namespace not in self._points:
            raise VectorStoreError(f"Namespace {namespace} does not exist")
        return self._points[namespace]

    async def ensure_namespace(self, namespace: str, dimension: int) -> None:
        async with self._lock:
            existing = self._dimensions.get(namespace)
            if existing is None:
                self._dimensions[namespace] = dimension
                self._points[namespace] = {}
                self.payload_indexes[namespace] = set()
            elif existing != dimension:
                raise VectorStoreError(
                    f"Namespace {namespace} has dimension {existing}, requested {dimension}"
                )

    async def namespace_exists(self, namespace: str) -> bool:
        return namespace in self._points

    async def drop_namespace(self, namespace: str) -> bool:
        async with self._lock:
            if namespace not in self._points:
                return False
            self.deleted += len(self._points.pop(namespace))
            self._dimensions.pop(namespace, None)
            self.payload_indexes.pop(namespace, None)
            return True

    async def upsert(self, namespace: str, points: list[VectorPoint]) -> None:
        async with self._lock:
            stored = self._require(namespace)
            dimension = self._dimensions[namespace]
            for point in points:
                if len(point.vector) != dimension:
                    raise VectorStoreError(
                        f"Vector dimension {len(point.vector)} does not match {dimension}"
                    )
            for point in points:
                stored[point.id] = VectorPoint(
                    id=point.id, vector=list(point.vector), payload=dict(point.payload)
                )
            self.upserted += len(points)

    async def search(
        self,
        namespace: str,
        vector: list[float],
        top_k: int = 10,
        score_threshold: float | None = None,
        payload_filter: PayloadFilter | None = None,
    ) -> list[ScoredPoint]:
        stored = self._require(namespace)
        hits = []
        for point in stored.values():
            if payload_filter and not payload_filter.matches(point.payload):
                continue
            score = _score(self.distance, vector, point.vector)
            if score_threshold is not None and score < score_threshold:
                continue
            hits.append(ScoredPoint(id=point.id, score=score, payload=dict(point.payload)))
        hits.sort(key=lambda h: (-h.score, h.id))
        return hits[:top_k]

    async def delete_ids(self, namespace: str, ids: list[str]) -> None:
        async with self._lock:
            stored = self._require(namespace)
            for point_id in ids:
                if stored.pop(point_id, None) is not None:
                    self.deleted += 1

    async def delete_by_filter(self, namespace: str, payload_filter: PayloadFilter) -> None:
        async with self._lock:
            stored = self._require(namespace)
            for point_id in [i for i, p in stored.items() if payload_filter.matches(p.payload)]:
                del stored[point_id]
                self.deleted += 1

    async def list_ids(self, namespace: str, payload_filter: PayloadFilter | None = None) -> set[str]:
        stored = self._require(namespace)
        return {
            point_id
            for point_id, point in stored.items()
            if payload_filter is None or payload_filter.matches(point.payload)
        }

    async def create_payload_index(self, namespace: str, field_name: str) -> None:
        self._require(namespace)
        self.payload_indexes[namespace].add(field_name)

    async def count(self, namespace: str, payload_filter: PayloadFilter | None = None) -> int:
        return len(await self.list_ids(namespace, payload_filter))

    async def health(self) -> bool:
        return True

    def points(self, namespace: str) -> list[VectorPoint]:
        """Stored points of a namespace (empty if absent)."""
        return list(self._points.get(namespace, {}).values())


def create_vector_store(backend: str, **kwargs: Any) -> VectorStore:
    """Build the configured vector store backend."""
    if backend == "qdrant":
        return QdrantVectorStore(**kwargs)
    if backend == "inmemory":
        return InMemoryVectorStore(distance=kwargs.get("distance", "cosine"))
    raise ValueError(f"Unknown storage backend: {backend}")
