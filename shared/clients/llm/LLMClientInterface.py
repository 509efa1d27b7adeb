from abc import abstractmethod

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import GenerationFailed


class LLMClientInterface(ClientInterface):
    """Generative provider used for query expansion and answer generation."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # chat / completion config
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_CHAT_MODEL", default=None)
        self.temperature = helper_config.get_number_val(f"{self.get_client_type().upper()}_TEMPERATURE", default=0.2)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/api/chat")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[dict], max_tokens: int | None = None) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            messages (list[dict]): OpenAI-format messages
                (e.g. [{"role": "user", "content": "..."}]).
            max_tokens (int | None): Upper bound for generated tokens, None for the backend default.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a raw chat API response.

        Raises:
            ValueError: If the response does not contain a valid reply.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat(self, messages: list[dict], max_tokens: int | None = None) -> str:
        """Send a chat/completion request and return the assistant reply text.

        Args:
            messages (list[dict]): OpenAI-format messages.
            max_tokens (int | None): Upper bound for generated tokens.

        Returns:
            str: The assistant reply text.

        Raises:
            GenerationFailed: If the request fails or the reply cannot be extracted.
        """
        body = self.get_chat_payload(messages, max_tokens=max_tokens)
        try:
            response = await self.do_request(
                method="POST",
                endpoint=self._get_endpoint_chat(),
                json=body,
                raise_on_error=True,
            )
            return self.extract_chat_response(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise GenerationFailed(f"Generation request to {self.get_engine_name()} failed: {e}") from e

    async def do_generate(self, prompt: str, max_tokens: int, system_prompt: str | None = None) -> str:
        """Generate text for a single prompt.

        Args:
            prompt (str): The user prompt.
            max_tokens (int): Upper bound for generated tokens.
            system_prompt (str | None): Optional instruction placed before the prompt.

        Returns:
            str: The generated text, stripped.

        Raises:
            GenerationFailed: If the request fails.
        """
        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        reply = await self.do_chat(messages, max_tokens=max_tokens)
        return reply.strip()
