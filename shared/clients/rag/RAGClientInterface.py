from abc import abstractmethod
import json
import uuid
from typing import Any

import httpx
from pydantic import ValidationError

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.ScrollPage import ScrollPage
from shared.clients.rag.models.SegmentPoint import SegmentPoint
from shared.helper.HelperConfig import HelperConfig
from shared.helper.TextHelper import TextHelper
from shared.models.errors import SearchBackendUnavailable
from shared.models.segment import Segment

UPSERT_BATCH_SIZE = 100     # max points per upsert call
SCROLL_PAGE_SIZE = 1000     # max points per scroll page
LEXICAL_SCAN_LIMIT = 2000   # default cap on prefiltered points scored per lexical query


def make_point_id(document_id: str, chunk_index: int) -> str:
    """Build a deterministic UUID5 point ID for a segment.

    The same segment always maps to the same point ID, so re-ingesting a
    document overwrites its points rather than duplicating them.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"{document_id}:{chunk_index}"))


class RAGClientInterface(ClientInterface):
    """Search backend port: vector and lexical queries, segment fetches and index maintenance.

    Every request method raises SearchBackendUnavailable when the backend
    cannot be reached or rejects the request.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.lexical_scan_limit = max(1, int(helper_config.get_number_val("RAG_LEXICAL_SCAN_LIMIT", default=LEXICAL_SCAN_LIMIT)))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "rag"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_search(self) -> str:
        """Returns the endpoint path for vector similarity search."""
        pass

    @abstractmethod
    def _get_endpoint_scroll(self) -> str:
        """Returns the endpoint path for filtered scroll requests."""
        pass

    @abstractmethod
    def _get_endpoint_points(self) -> str:
        """Returns the endpoint path for points upsert requests."""
        pass

    @abstractmethod
    def _get_endpoint_set_payload(self) -> str:
        """Returns the endpoint path for partial payload updates."""
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self) -> str:
        """Returns the endpoint path for deleting points by filter."""
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_create_collection(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_payload_index(self) -> str:
        """Returns the endpoint path for creating payload field indexes."""
        pass

    @abstractmethod
    def _get_endpoint_count(self) -> str:
        """Returns the endpoint path for counting points matching a filter."""
        pass

    ################ FILTER BUILDER ##################
    @abstractmethod
    def get_match_condition(self, key: str, value: Any) -> dict:
        """Builds an equality condition. A list value matches any of its elements."""
        pass

    @abstractmethod
    def get_range_condition(self, key: str, gte: int, lte: int) -> dict:
        """Builds an inclusive numeric range condition."""
        pass

    @abstractmethod
    def get_text_condition(self, key: str, text: str) -> dict:
        """Builds a full-text match condition."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_search_payload(self, vector: list[float], filters: list[dict], limit: int) -> dict:
        """
        Returns the payload for a vector similarity search.

        Args:
            vector (list[float]): The query vector.
            filters (list[dict]): Conditions every hit must match.
            limit (int): Maximum number of hits.
        """
        pass

    @abstractmethod
    def get_scroll_payload(self, filters: list[dict], with_payload: bool | list | dict, with_vector: bool | list, limit: int | None = None, offset: str | int | None = None, any_of: list[dict] | None = None) -> dict:
        """
        Returns the payload for scroll requests.

        Args:
            filters (list[dict]): Conditions every point must match.
            with_payload (bool | list | dict): Whether to include the payload, or which fields.
            with_vector (bool | list): Whether to include the vector.
            limit (int | None): The maximum number of results to return.
            offset (str | int | None): Pagination cursor of the previous page. None starts from the beginning.
            any_of (list[dict] | None): Conditions of which at least one must match.
        """
        pass

    @abstractmethod
    def get_count_payload(self, filters: list[dict]) -> dict:
        pass

    @abstractmethod
    def get_delete_payload(self, filters: list[dict]) -> dict:
        pass

    @abstractmethod
    def get_set_payload_payload(self, point_ids: list[str], payload: dict) -> dict:
        pass

    @abstractmethod
    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        pass

    @abstractmethod
    def get_payload_index_payloads(self) -> list[dict]:
        """Returns one request body per payload field index the retrieval path relies on."""
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[dict]:
        """
        Extracts hits from a raw search response.

        Returns:
            list[dict]: Dicts with keys "id", "score", "payload" and optionally "vector".
        """
        pass

    @abstractmethod
    def extract_scroll_points(self, raw_response: dict) -> list[dict]:
        """Extracts the raw point dicts of one scroll page."""
        pass

    @abstractmethod
    def extract_next_page_offset(self, raw_response: dict) -> str | int | None:
        """
        Extracts the pagination cursor for the next scroll page. None when no further pages exist.
        """
        pass

    @abstractmethod
    def extract_count(self, raw_response: dict) -> int:
        pass

    @abstractmethod
    def extract_exists(self, raw_response: dict) -> bool:
        pass

    ##########################################
    ################ HELPERS #################
    ##########################################

    def build_filters(self, filters: dict[str, Any] | None) -> list[dict]:
        """Convert a flat {payload_key: value} mapping into backend conditions."""
        if not filters:
            return []
        return [self.get_match_condition(key, value) for key, value in filters.items() if value is not None]

    def point_to_segment(self, point: dict) -> Segment:
        """Convert a raw point into a Segment.

        Raises:
            SearchBackendUnavailable: If the payload does not describe a segment.
        """
        try:
            vector = point.get("vector")
            return SegmentPoint.model_validate(point.get("payload") or {}).to_segment(
                vector=vector if isinstance(vector, list) else None
            )
        except ValidationError as e:
            raise SearchBackendUnavailable(f"Point {point.get('id')} from {self.get_engine_name()} has an invalid payload: {e}") from e

    async def _request_json(self, method: str, endpoint: str, body: dict | None = None) -> dict:
        """Send a JSON request and return the decoded response.

        Raises:
            SearchBackendUnavailable: On transport errors, non-2xx status or an undecodable body.
        """
        try:
            resp = await self.do_request(
                method=method,
                content=json.dumps(body) if body is not None else None,
                endpoint=endpoint,
                additional_headers={"Content-Type": "application/json"},
                raise_on_error=True,
            )
            return resp.json()
        except (httpx.HTTPError, ValueError, RuntimeError) as e:
            raise SearchBackendUnavailable(f"{self.get_engine_name()} request to '{endpoint}' failed: {e}") from e

    ##########################################
    ########## COLLECTION REQUESTS ###########
    ##########################################

    async def do_existence_check(self) -> bool:
        """Check if the collection exists."""
        raw = await self._request_json("GET", self._get_endpoint_check_collection_existence())
        return self.extract_exists(raw)

    async def do_create_collection(self, vector_size: int, distance: str = "Cosine") -> None:
        """Create the collection and the payload indexes used by lexical and range queries.

        Args:
            vector_size (int): The size of the vectors in the collection.
            distance (str): The distance metric for the vectors.
        """
        await self._request_json(
            "PUT",
            self._get_endpoint_create_collection(),
            self.get_create_collection_payload(vector_size, distance),
        )
        await self.do_create_payload_indexes()
        self.logging.info("Created %s collection with vector size %d (%s).", self.get_engine_name(), vector_size, distance)

    async def do_create_payload_indexes(self) -> None:
        for body in self.get_payload_index_payloads():
            await self._request_json("PUT", self._get_endpoint_payload_index(), body)

    ##########################################
    ############ WRITE REQUESTS ##############
    ##########################################

    async def do_upsert_points(self, points: list[dict[str, Any]]) -> None:
        """Upsert raw points. Existing points with the same ID are replaced."""
        await self._request_json("PUT", self._get_endpoint_points(), {"points": points})

    async def do_upsert_segments(self, segments: list[Segment]) -> int:
        """Upsert segments in batches of UPSERT_BATCH_SIZE.

        Args:
            segments (list[Segment]): Segments carrying their embedding vectors.

        Returns:
            int: Number of upserted points.
        """
        points = [
            {
                "id": make_point_id(segment.document_id, segment.index),
                "vector": segment.embedding_vector,
                "payload": SegmentPoint.from_segment(segment).model_dump(mode="json"),
            }
            for segment in segments
        ]
        for start in range(0, len(points), UPSERT_BATCH_SIZE):
            await self.do_upsert_points(points[start:start + UPSERT_BATCH_SIZE])
        return len(points)

    async def do_set_payload(self, point_ids: list[str], payload: dict) -> None:
        """Overwrite the given payload keys on the given points. Other keys are left untouched."""
        if not point_ids:
            return
        await self._request_json("POST", self._get_endpoint_set_payload(), self.get_set_payload_payload(point_ids, payload))

    async def do_delete_points_by_filter(self, filters: list[dict]) -> None:
        await self._request_json("POST", self._get_endpoint_delete_points(), self.get_delete_payload(filters))

    async def do_delete_document(self, document_id: str) -> int:
        """Delete all segments of a document.

        Returns:
            int: Number of deleted segments.
        """
        filters = [self.get_match_condition("document_id", document_id)]
        count = await self.do_count(filters)
        if count:
            await self.do_delete_points_by_filter(filters)
        self.logging.info("Deleted %d segments of document '%s' from %s.", count, document_id, self.get_engine_name())
        return count

    ##########################################
    ############# READ REQUESTS ##############
    ##########################################

    async def do_scroll(self, filters: list[dict], with_payload: bool | list | dict, with_vector: bool | list, limit: int | None = None, offset: str | int | None = None, any_of: list[dict] | None = None) -> ScrollPage:
        """Scroll a single page of points matching the filters.

        To retrieve all matching points across pages use do_scroll_all() instead.
        """
        raw_response = await self._request_json(
            "POST",
            self._get_endpoint_scroll(),
            self.get_scroll_payload(filters, with_payload, with_vector, limit, offset, any_of),
        )
        return ScrollPage(
            points=self.extract_scroll_points(raw_response),
            next_page_offset=self.extract_next_page_offset(raw_response),
        )

    async def do_scroll_all(self, filters: list[dict], with_payload: bool | list | dict, with_vector: bool | list, any_of: list[dict] | None = None, max_points: int | None = None) -> ScrollPage:
        """Scroll through all points matching the filters, following the page cursor.

        Args:
            max_points (int | None): Stop once this many points were collected.

        Returns:
            ScrollPage: The matching points. next_page_offset is set only if max_points cut the scroll short.
        """
        all_points: list[dict] = []
        offset: str | int | None = None
        page_number = 1
        while True:
            page = await self.do_scroll(
                filters=filters,
                with_payload=with_payload,
                with_vector=with_vector,
                limit=SCROLL_PAGE_SIZE if max_points is None else min(SCROLL_PAGE_SIZE, max_points - len(all_points)),
                offset=offset,
                any_of=any_of,
            )
            all_points.extend(page.points)
            self.logging.debug("Scrolled page %d from %s, %d points so far", page_number, self.get_engine_name(), len(all_points))
            if page.is_last:
                break
            if max_points is not None and len(all_points) >= max_points:
                return ScrollPage(points=all_points[:max_points], next_page_offset=page.next_page_offset)
            offset = page.next_page_offset
            page_number += 1
        return ScrollPage(points=all_points)

    async def do_count(self, filters: list[dict]) -> int:
        """Count the points matching the given filters."""
        raw = await self._request_json("POST", self._get_endpoint_count(), self.get_count_payload(filters))
        return self.extract_count(raw)

    async def do_count_segments(self, document_id: str) -> int:
        return await self.do_count([self.get_match_condition("document_id", document_id)])

    async def do_document_exists(self, document_id: str) -> bool:
        count = await self.do_count([
            self.get_match_condition("document_id", document_id),
            self.get_match_condition("chunk_index", 0),
        ])
        return count > 0

    async def do_vector_query(self, vector: list[float], filters: dict[str, Any] | None, k: int) -> list[tuple[Segment, float]]:
        """Return the k segments most similar to the vector.

        Returns:
            list[tuple[Segment, float]]: Segments with their similarity clamped to 0..1, best first.
        """
        raw = await self._request_json("POST", self._get_endpoint_search(), self.get_search_payload(vector, self.build_filters(filters), k))
        hits: list[tuple[Segment, float]] = []
        for hit in self.extract_search_hits(raw):
            score = max(0.0, min(1.0, float(hit.get("score") or 0.0)))
            hits.append((self.point_to_segment(hit), score))
        return hits

    async def do_lexical_query(self, text: str, filters: dict[str, Any] | None, k: int) -> list[tuple[Segment, float]]:
        """Return up to k segments matching the meaningful terms of text.

        The backend pre-filters on any term via its full-text index. Every
        prefiltered point, up to lexical_scan_limit, is scored locally with
        TextHelper.lexical_score.

        Returns:
            list[tuple[Segment, float]]: Segments with a coverage score above zero, best first.
        """
        terms = TextHelper.meaningful_terms(text)
        if not terms:
            return []
        page = await self.do_scroll_all(
            filters=self.build_filters(filters),
            with_payload=True,
            with_vector=False,
            any_of=[self.get_text_condition("chunk_text", term) for term in terms],
            max_points=self.lexical_scan_limit,
        )
        if not page.is_last:
            self.logging.warning("Lexical query scored only the first %d prefiltered points", self.lexical_scan_limit)
        scored: list[tuple[Segment, float]] = []
        for point in page.points:
            segment = self.point_to_segment(point)
            score = TextHelper.lexical_score(text, segment.text)
            if score > 0:
                scored.append((segment, score))
        scored.sort(key=lambda item: (-item[1], item[0].document_id, item[0].index))
        return scored[:k]

    async def do_fetch_segments(self, document_id: str, index_ranges: list[tuple[int, int]]) -> list[Segment]:
        """Fetch all segments of one document within the given inclusive index ranges.

        One request covers all ranges.

        Returns:
            list[Segment]: Segments in ascending index order.
        """
        if not index_ranges:
            return []
        limit = sum(hi - lo + 1 for lo, hi in index_ranges)
        page = await self.do_scroll(
            filters=[self.get_match_condition("document_id", document_id)],
            with_payload=True,
            with_vector=False,
            limit=limit,
            any_of=[self.get_range_condition("chunk_index", lo, hi) for lo, hi in index_ranges],
        )
        segments = [self.point_to_segment(point) for point in page.points]
        return sorted(segments, key=lambda s: s.index)

    async def do_fetch_document_segments(self, document_id: str) -> list[Segment]:
        """Fetch every segment of a document in ascending index order."""
        result = await self.do_scroll_all(
            filters=[self.get_match_condition("document_id", document_id)],
            with_payload=True,
            with_vector=False,
        )
        return sorted((self.point_to_segment(point) for point in result.points), key=lambda s: s.index)

    async def do_fetch_designated_segments(self, document_ids: list[str]) -> dict[str, Segment]:
        """Bulk fetch the metadata carrying segment (index 0) of each document.

        Returns:
            dict[str, Segment]: document_id -> index 0 segment. Missing documents are absent.
        """
        if not document_ids:
            return {}
        page = await self.do_scroll(
            filters=[
                self.get_match_condition("document_id", list(document_ids)),
                self.get_match_condition("chunk_index", 0),
            ],
            with_payload=True,
            with_vector=False,
            limit=len(document_ids),
        )
        segments = (self.point_to_segment(point) for point in page.points)
        return {segment.document_id: segment for segment in segments}

    async def do_list_documents(self) -> list[Segment]:
        """List all documents by their designated segment, sorted by document id."""
        result = await self.do_scroll_all(
            filters=[self.get_match_condition("chunk_index", 0)],
            with_payload=True,
            with_vector=False,
        )
        return sorted((self.point_to_segment(point) for point in result.points), key=lambda s: s.document_id)
