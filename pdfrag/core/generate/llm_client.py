import logging
import httpx
import time
import random
from typing import Iterator, List, Dict, Any, Optional
from pdfrag.config.settings import LLMConfig
from pdfrag.core.exceptions import UpstreamError
from pdfrag.core.generate.stream_parser import RecordKind, StreamRecord, StreamRecordParser

logger = logging.getLogger(__name__)

class LLMClient:
    """
    OpenRouter API Client for summaries, chunk enrichment and chat streaming.
    Supports streaming as tagged records and model fallback.
    """

    def __init__(self, config: LLMConfig, api_key: str = ""):
        self.api_key = api_key
        self.config = config
        self.base_url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        self.headers = {
            "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
            "HTTP-Referer": "https://pdfrag.internal",
            "X-Title": "pdfrag",
            "Content-Type": "application/json"
        }
        self.max_retries = config.max_retries
        self.base_delay = 2.0

        if not self.api_key:
            logger.warning("OPENROUTER_API_KEY is not set. LLM calls will fail.")

    def _payload(self, messages: List[Dict[str, str]], stream: bool, json_mode: bool = False) -> Dict[str, Any]:
        payload = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "stream": stream
        }
        if stream:
            # Ask for the trailing usage record on the stream
            payload["stream_options"] = {"include_usage": True}
            payload["usage"] = {"include": True}
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def _models(self) -> List[str]:
        models = [self.config.model]
        if self.config.fallback_model and self.config.fallback_model != self.config.model:
            models.append(self.config.fallback_model)
        return models

    def generate(self, messages: List[Dict[str, str]], json_mode: bool = False) -> str:
        """
        Calls OpenRouter API and returns the full response string.
        Falls back to the secondary model when the primary one fails.
        """
        payload = self._payload(messages, stream=False, json_mode=json_mode)
        last_error: Optional[Exception] = None
        for model in self._models():
            attempt_payload = {**payload, "model": model}
            try:
                return self._sync_response(attempt_payload)
            except UpstreamError as e:
                logger.warning(f"Model {model} failed: {e}. Trying fallback.")
                last_error = e
        raise last_error

    def stream_records(self, messages: List[Dict[str, str]]) -> Iterator[StreamRecord]:
        """
        Streams the model response as tagged records in arrival order.
        Fallback and retries only happen before the first text fragment is yielded;
        once output has been relayed a failure is terminal.
        Closing the generator closes the upstream connection.
        """
        payload = self._payload(messages, stream=True)
        last_error: Optional[Exception] = None
        for model in self._models():
            attempt_payload = {**payload, "model": model}
            started = False
            try:
                for record in self._stream_response(attempt_payload):
                    if record.kind == RecordKind.TEXT:
                        started = True
                    yield record
                return
            except UpstreamError as e:
                if started:
                    raise
                logger.warning(f"Streaming failed for {model}: {e}. Trying fallback.")
                last_error = e
        raise last_error

    def _sync_response(self, payload: Dict[str, Any]) -> str:
        for attempt in range(self.max_retries):
            try:
                with httpx.Client(timeout=self.config.request_timeout) as client:
                    response = client.post(self.base_url, headers=self.headers, json=payload)

                    if response.status_code == 429:
                        delay = self.base_delay * (2 ** attempt) + random.uniform(0, 1)
                        logger.warning(f"Rate limited (429). Retrying in {delay:.2f}s... (Attempt {attempt+1}/{self.max_retries})")
                        time.sleep(delay)
                        continue

                    response.raise_for_status()
                    data = response.json()
                    return data["choices"][0]["message"]["content"] or ""
            except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
                if attempt == self.max_retries - 1:
                    raise UpstreamError("llm", f"Completion request failed: {e}") from e
                delay = self.base_delay * (2 ** attempt) + random.uniform(0, 1)
                logger.warning(f"Request failed: {e}. Retrying in {delay:.2f}s...")
                time.sleep(delay)

        raise UpstreamError("llm", "Failed after maximum retries")

    def _stream_response(self, payload: Dict[str, Any]) -> Iterator[StreamRecord]:
        yielded = False
        for attempt in range(self.max_retries):
            try:
                with httpx.Client(timeout=self.config.request_timeout) as client:
                    with client.stream("POST", self.base_url, headers=self.headers, json=payload) as response:
                        if response.status_code == 429:
                            delay = self.base_delay * (2 ** attempt) + random.uniform(0, 1)
                            logger.warning(f"Rate limited (429) during stream initiation. Retrying in {delay:.2f}s...")
                            time.sleep(delay)
                            continue

                        response.raise_for_status()
                        parser = StreamRecordParser()
                        for line in response.iter_lines():
                            for record in parser.feed_line(line):
                                if record.kind == RecordKind.ERROR:
                                    raise UpstreamError("llm", f"Model stream error: {record.text}")
                                if record.kind == RecordKind.TEXT:
                                    yielded = True
                                yield record
                            if parser.done:
                                return
                        return # Upstream closed without [DONE]; records so far stand
            except httpx.HTTPError as e:
                if yielded or attempt == self.max_retries - 1:
                    raise UpstreamError("llm", f"Stream failed: {e}") from e
                delay = self.base_delay * (2 ** attempt) + random.uniform(0, 1)
                logger.warning(f"Stream failed: {e}. Retrying in {delay:.2f}s...")
                time.sleep(delay)

        raise UpstreamError("llm", "Stream failed after maximum retries")
