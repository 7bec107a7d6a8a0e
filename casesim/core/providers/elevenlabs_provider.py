"""ElevenLabs adapter: speech synthesis."""

import httpx

from casesim.core.providers.base import ProviderAdapter, SpeechResult, raise_for_status

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"

# Premade British voices used by persona identities
ELEVENLABS_VOICE_IDS: dict[str, str] = {
    "charlie": "IKne3meq5aSn9XLyUdCD",
    "george": "JBFqnCBsd6RMkjVDRZzb",
    "harry": "SOYHLrjzK2X1ezoPC6cr",
    "alice": "Xb7hH8MSUJpSbSDYk0k2",
    "charlotte": "XB0fDUnXU5powFXDhCwa",
    "lily": "pFZP5JQG7iQjIQuC4Bku",
    "matilda": "XrExE9yKIg1WjnnlVkGX",
}


class ElevenLabsAdapter(ProviderAdapter):
    name = "elevenlabs"
    features = frozenset({"tts"})

    def __init__(
        self,
        api_key: str | None,
        model: str = "eleven_multilingual_v2",
        http_client: httpx.Client | None = None,
        base_url: str = ELEVENLABS_BASE_URL,
        **kwargs,
    ):
        super().__init__(api_key, **kwargs)
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._http = http_client

    def _get_client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=self.timeout)
        return self._http

    def synthesize(self, text: str, voice: str) -> SpeechResult:
        self.require_credentials()
        client = self._get_client()

        voice_id = ELEVENLABS_VOICE_IDS.get(voice, voice)
        url = f"{self.base_url}/text-to-speech/{voice_id}"

        def _post() -> httpx.Response:
            response = client.post(
                url,
                json={"text": text, "model_id": self.model},
                headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
            )
            raise_for_status(response, self.name)
            return response

        response = self._call(_post)
        return SpeechResult(
            provider=self.name,
            voice=voice,
            audio=response.content,
            content_type=response.headers.get("content-type", "audio/mpeg"),
            model=self.model,
        )
