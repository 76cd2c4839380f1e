from __future__ import annotations
import asyncio
import logging
import httpx
from typing import Any, Dict, Optional
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class GeminiError(RuntimeError):
	pass


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		model: Optional[str] = None,
		config: Optional[Settings] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		config = config or default_settings
		self.api_key = api_key or config.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or config.gemini_model
		self.provider = config.gemini_provider
		self.max_retries = max(0, config.gemini_max_retries)
		self.backoff_seconds = config.gemini_retry_backoff_seconds
		if self.provider == "vertex":
			region = config.vertex_region
			project = config.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=30, transport=transport)

	async def generate(self, prompt: str, *, max_output_tokens: Optional[int] = None) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		if max_output_tokens:
			payload["generationConfig"] = {"maxOutputTokens": int(max_output_tokens)}
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key

		attempt = 0
		while True:
			try:
				r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			except httpx.RequestError as net_err:
				raise GeminiError(f"Gemini request failed: {net_err}") from net_err
			if r.status_code == 429 and attempt < self.max_retries:
				attempt += 1
				delay = self.backoff_seconds * attempt
				logger.warning("Gemini rate limited, retry %d/%d in %.1fs", attempt, self.max_retries, delay)
				await asyncio.sleep(delay)
				continue
			break
		try:
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise GeminiError(f"Gemini returned HTTP {r.status_code}") from http_err
		try:
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise GeminiError(f"Unexpected Gemini response: {r.text[:200]}") from err

	async def aclose(self) -> None:
		await self._client.aclose()
