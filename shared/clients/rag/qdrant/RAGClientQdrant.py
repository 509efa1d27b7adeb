from typing import Any

from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_search(self) -> str:
        return f"/collections/{self._collection_name}/points/search"

    def _get_endpoint_scroll(self) -> str:
        return f"/collections/{self._collection_name}/points/scroll"

    def _get_endpoint_points(self) -> str:
        return f"/collections/{self._collection_name}/points"

    def _get_endpoint_set_payload(self) -> str:
        return f"/collections/{self._collection_name}/points/payload"

    def _get_endpoint_delete_points(self) -> str:
        return f"/collections/{self._collection_name}/points/delete"

    def _get_endpoint_check_collection_existence(self) -> str:
        return f"/collections/{self._collection_name}/exists"

    def _get_endpoint_create_collection(self) -> str:
        return f"/collections/{self._collection_name}"

    def _get_endpoint_payload_index(self) -> str:
        return f"/collections/{self._collection_name}/index"

    def _get_endpoint_count(self) -> str:
        return f"/collections/{self._collection_name}/points/count"

    ##########################################
    ############ FILTER BUILDER ##############
    ##########################################

    def get_match_condition(self, key: str, value: Any) -> dict:
        if isinstance(value, (list, tuple, set)):
            return {"key": key, "match": {"any": list(value)}}
        return {"key": key, "match": {"value": value}}

    def get_range_condition(self, key: str, gte: int, lte: int) -> dict:
        return {"key": key, "range": {"gte": gte, "lte": lte}}

    def get_text_condition(self, key: str, text: str) -> dict:
        return {"key": key, "match": {"text": text}}

    def _get_filter(self, filters: list[dict], any_of: list[dict] | None = None) -> dict:
        query_filter: dict = {"must": filters}
        if any_of:
            query_filter["should"] = any_of
        return query_filter

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_search_payload(self, vector: list[float], filters: list[dict], limit: int) -> dict:
        return {
            "vector": vector,
            "filter": self._get_filter(filters),
            "limit": limit,
            "with_payload": True,
            "with_vector": False,
        }

    def get_scroll_payload(self, filters: list[dict], with_payload: bool | list | dict, with_vector: bool | list, limit: int | None = None, offset: str | int | None = None, any_of: list[dict] | None = None) -> dict:
        payload = {
            "filter": self._get_filter(filters, any_of),
            "limit": limit,
            "with_payload": with_payload,
            "with_vector": with_vector,
        }
        if offset is not None:
            payload["offset"] = offset
        return payload

    def get_count_payload(self, filters: list[dict]) -> dict:
        return {"filter": self._get_filter(filters), "exact": True}

    def get_delete_payload(self, filters: list[dict]) -> dict:
        return {"filter": self._get_filter(filters)}

    def get_set_payload_payload(self, point_ids: list[str], payload: dict) -> dict:
        return {"payload": payload, "points": point_ids}

    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        return {"vectors": {"size": vector_size, "distance": distance}}

    def get_payload_index_payloads(self) -> list[dict]:
        return [
            {"field_name": "document_id", "field_schema": "keyword"},
            {"field_name": "chunk_index", "field_schema": "integer"},
            {
                "field_name": "chunk_text",
                "field_schema": {"type": "text", "tokenizer": "multilingual", "lowercase": True},
            },
        ]

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_search_hits(self, raw_response: dict) -> list[dict]:
        return raw_response.get("result") or []

    def extract_scroll_points(self, raw_response: dict) -> list[dict]:
        return (raw_response.get("result") or {}).get("points") or []

    def extract_next_page_offset(self, raw_response: dict) -> str | int | None:
        return (raw_response.get("result") or {}).get("next_page_offset")

    def extract_count(self, raw_response: dict) -> int:
        return (raw_response.get("result") or {}).get("count", 0)

    def extract_exists(self, raw_response: dict) -> bool:
        return bool((raw_response.get("result") or {}).get("exists"))
