import httpx
import pytest

from aurora.gemini_client import GeminiClient, GeminiError
from aurora.settings import Settings


def _config():
	return Settings(gemini_api_key="test-key", gemini_max_retries=2, gemini_retry_backoff_seconds=0)


def _ok(text):
	return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


@pytest.mark.asyncio
async def test_generate_retries_rate_limits():
	calls = []

	def handler(request):
		calls.append(request)
		if len(calls) < 3:
			return httpx.Response(429, json={"error": "slow down"})
		return _ok("notes")

	client = GeminiClient(config=_config(), transport=httpx.MockTransport(handler))
	try:
		assert await client.generate("photosynthesis") == "notes"
	finally:
		await client.aclose()
	assert len(calls) == 3
	assert calls[0].url.params["key"] == "test-key"


@pytest.mark.asyncio
async def test_generate_gives_up_after_max_retries():
	client = GeminiClient(config=_config(), transport=httpx.MockTransport(lambda r: httpx.Response(429)))
	try:
		with pytest.raises(GeminiError):
			await client.generate("photosynthesis")
	finally:
		await client.aclose()


@pytest.mark.asyncio
async def test_server_errors_are_not_retried():
	calls = []

	def handler(request):
		calls.append(request)
		return httpx.Response(500)

	client = GeminiClient(config=_config(), transport=httpx.MockTransport(handler))
	try:
		with pytest.raises(GeminiError):
			await client.generate("photosynthesis")
	finally:
		await client.aclose()
	assert len(calls) == 1


def test_missing_api_key():
	with pytest.raises(ValueError):
		GeminiClient(config=Settings(gemini_api_key=None))
