from abc import abstractmethod

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import EmbeddingComputeFailed


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_distance = helper_config.get_string_val(f"{self.get_client_type().upper()}_DISTANCE", default="Cosine")
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default=None)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "embed"

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests (e.g. "/api/embed").
        """
        pass

    @abstractmethod
    def get_endpoint_model_details(self) -> str:
        """
        Returns the endpoint path for model details requests (e.g. "/api/show").
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    @abstractmethod
    def get_model_details_payload(self) -> dict:
        """Build the request body for a model details request."""
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_vector_size_from_model_info(self, model_info: dict) -> int:
        """
        Extracts the embedding vector size from the model information response.

        Raises:
            ValueError: If the vector size cannot be determined.
        """
        pass

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ValueError: If the response format is invalid or embeddings are empty.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_embedding_vector_size(self) -> tuple[int, str]:
        """
        Fetch the output vector dimension and distance metric of the configured embedding model.

        Returns:
            tuple[int, str]: The vector dimension and the distance metric.

        Raises:
            EmbeddingComputeFailed: If the backend cannot be reached or the dimension cannot be determined.
        """
        try:
            response = await self.do_request(
                method="POST",
                json=self.get_model_details_payload(),
                endpoint=self.get_endpoint_model_details(),
                raise_on_error=True,
            )
            vector_size = self.extract_vector_size_from_model_info(model_info=response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingComputeFailed(f"Could not determine vector size of model '{self.embed_model}': {e}") from e
        return vector_size, self.embed_distance

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Send an embedding request and return the extracted vectors.

        Args:
            texts (list[str] | str): One or more texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            EmbeddingComputeFailed: If the request fails or the response holds no valid embeddings.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(texts)
        try:
            response = await self.do_request(
                method="POST",
                endpoint=self.get_endpoint_embedding(),
                json=body,
                raise_on_error=True,
            )
            embeddings = self.extract_embeddings_from_response(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingComputeFailed(f"Embedding request to {self.get_engine_name()} failed: {e}") from e
        if len(embeddings) != len(texts):
            raise EmbeddingComputeFailed(f"Expected {len(texts)} embeddings, got {len(embeddings)}.")
        return embeddings

    async def do_embed_one(self, text: str) -> list[float]:
        """Embed a single text. Matches the compute function signature of EmbeddingCache."""
        embeddings = await self.do_embed([text])
        return embeddings[0]
