# tendermatch/deepinfra.py
import asyncio
import httpx
from typing import List, Optional
from tendermatch.config import settings
from tendermatch.errors import (
    MalformedResponse, RateLimited, TransientError, classify_exception, classify_response,
)
import logging

logger = logging.getLogger(__name__)

SERVICE = "DeepInfra"

_default_client: Optional[httpx.AsyncClient] = None


def _get_client():
    global _default_client
    if _default_client is None:
        _default_client = httpx.AsyncClient(timeout=30.0)
    return _default_client


async def close_client():
    global _default_client
    if _default_client is not None:
        await _default_client.aclose()
        _default_client = None


def _headers():
    return {"Authorization": f"Bearer {settings.deepinfra_token}", "Content-Type": "application/json"}


async def _post_with_retry(url, json, headers, timeout=30, retries=3, backoff=1.0, client=None):
    """
    POST with exponential backoff. Only rate limits and transient failures are
    retried; everything else is classified and raised straight away.
    """
    client = client or _get_client()
    delay = backoff
    for attempt in range(1, retries + 1):
        try:
            resp = await client.post(url, json=json, headers=headers, timeout=timeout)
        except Exception as e:
            err = classify_exception(e, SERVICE)
        else:
            if 200 <= resp.status_code < 300:
                try:
                    return resp.json()
                except ValueError:
                    raise MalformedResponse(f"{SERVICE} returned non-JSON body", detail=resp.text[:300])
            err = classify_response(resp, SERVICE)

        if not isinstance(err, (TransientError, RateLimited)) or attempt == retries:
            logger.error("Request to %s failed after %s attempt(s): %s", url, attempt, err.record())
            raise err
        logger.warning("Request attempt %s failed, retrying in %.1fs: %s", attempt, delay, err.record())
        await asyncio.sleep(delay)
        delay *= 2


async def embed_batch(texts: List[str], model: Optional[str] = None, timeout=30, batch_size: Optional[int] = None,
                      client: Optional[httpx.AsyncClient] = None):
    url = f"{settings.deepinfra_base}/embeddings"
    model = model or settings.embedding_model
    batch_size = batch_size or max(1, settings.embed_batch or 64)
    embeddings = []
    for i in range(0, len(texts), batch_size):
        batch = texts[i:i+batch_size]
        payload = {"model": model, "input": batch, "encoding_format": "float"}
        data = await _post_with_retry(url, payload, _headers(), timeout=timeout, client=client)
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list) or len(items) != len(batch):
            raise MalformedResponse("Embedding response does not match the input batch")
        for item in items:
            embeddings.append(item["embedding"])
    return embeddings


async def chat_completion(messages, model: Optional[str] = None, max_tokens: int = 1200, timeout=60,
                          json_mode: bool = False, temperature: float = 0.2,
                          client: Optional[httpx.AsyncClient] = None) -> str:
    url = f"{settings.deepinfra_base}/chat/completions"
    payload = {
        "model": model or settings.extraction_model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    resp = await _post_with_retry(url, payload, _headers(), timeout=timeout, client=client)
    choices = resp.get("choices") if isinstance(resp, dict) else None
    if not choices or not choices[0].get("message"):
        raise MalformedResponse("Invalid LLM response")
    return choices[0]["message"].get("content") or ""
