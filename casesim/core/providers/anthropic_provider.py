"""Anthropic adapter: chat only."""

from anthropic import Anthropic

from casesim.core.providers.base import ChatResult, ProviderAdapter


class AnthropicAdapter(ProviderAdapter):
    name = "anthropic"
    features = frozenset({"chat"})

    def __init__(self, api_key: str | None, chat_model: str = "claude-3-5-haiku-20241022", **kwargs):
        super().__init__(api_key, **kwargs)
        self.chat_model = chat_model
        self._client: Anthropic | None = None

    def _get_client(self) -> Anthropic:
        if self._client is None:
            self._client = Anthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def chat(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> ChatResult:
        self.require_credentials()
        client = self._get_client()

        # Anthropic takes the system prompt separately and rejects system turns in messages
        turns = [m for m in messages if m.get("role") in ("user", "assistant")]
        response = self._call(
            lambda: client.messages.create(
                model=self.chat_model,
                system=system_prompt,
                messages=turns,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        )
        content = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        return ChatResult(content=content, model=response.model or self.chat_model, provider=self.name)
