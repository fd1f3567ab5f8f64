"""Ollama client for local text and vision inference.

One call shape for both modes: mode only picks which model answers.
Every call carries a Deadline; when it runs out the HTTP response is closed
and UnitTimeoutError is raised. There is no retry here, the orchestrator
decides what a failed unit means.

Text mode:   OLLAMA_MODEL (default qwen2.5:32b), JSON output forced
Vision mode: OLLAMA_VISION_MODEL (default llava:13b), page image attached
"""

from __future__ import annotations

import json
import logging
import time

import requests

from .config import Settings
from .errors import UnitServiceError, UnitTimeoutError

logger = logging.getLogger(__name__)

TEXT_MODE = "text"
VISION_MODE = "vision"

# Model families that accept the images parameter
VISION_FAMILIES = (
    "llava",
    "bakllava",
    "moondream",
    "minicpm-v",
    "llama3.2-vision",
    "qwen2.5vl",
    "gemma3",
)


# ── Deadline ─────────────────────────────────────────────────────────────

class Deadline:
    """A fixed point in (monotonic) time that a call must finish before."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds

    @classmethod
    def after_ms(cls, ms: int) -> "Deadline":
        return cls(ms / 1000)

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.remaining() <= 0


# ── Ollama Client ────────────────────────────────────────────────────────

class OllamaClient:
    """Chat client for a local Ollama server."""

    PROBE_TIMEOUT_S = 5
    CONNECT_TIMEOUT_S = 10
    READ_CHUNK = 64 * 1024

    def __init__(
        self,
        base_url: str | None = None,
        text_model: str | None = None,
        vision_model: str | None = None,
    ):
        settings = Settings.from_env()
        self.base_url = (base_url or settings.ollama_url).rstrip("/")
        self.text_model = text_model or settings.text_model
        self.vision_model = vision_model or settings.vision_model

    @classmethod
    def from_settings(cls, settings: Settings) -> "OllamaClient":
        return cls(settings.ollama_url, settings.text_model, settings.vision_model)

    def model_for(self, mode: str) -> str:
        return self.vision_model if mode == VISION_MODE else self.text_model

    # ── Probes ───────────────────────────────────────────────────────────

    def list_models(self) -> list[str]:
        """Names of the models the server has pulled. Empty if unreachable."""
        try:
            resp = requests.get(f"{self.base_url}/api/tags", timeout=self.PROBE_TIMEOUT_S)
            resp.raise_for_status()
            return [m.get("name", "") for m in resp.json().get("models", [])]
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.debug("Ollama model list failed: %s", e)
            return []

    def is_available(self) -> bool:
        try:
            resp = requests.get(f"{self.base_url}/api/tags", timeout=self.PROBE_TIMEOUT_S)
            return resp.ok
        except requests.RequestException:
            return False

    def has_vision_capability(self) -> bool:
        """True if the configured vision model is pulled.

        Chat requests name the configured model, so another vision model being
        available does not help; it is only mentioned in the log.
        """
        available = self.list_models()
        wanted = self.vision_model if ":" in self.vision_model else f"{self.vision_model}:latest"
        if self.vision_model in available or wanted in available:
            return True
        others = [n for n in available if any(family in n for family in VISION_FAMILIES)]
        if others:
            logger.warning(
                "Vision model %s is not pulled; available vision models: %s "
                "(set OLLAMA_VISION_MODEL to use one)",
                self.vision_model, ", ".join(others),
            )
        return False

    # ── Chat ─────────────────────────────────────────────────────────────

    def chat(
        self,
        messages: list[dict],
        temperature: float = 0.3,
        max_tokens: int = 8192,
        timeout_ms: int = 600_000,
        mode: str = TEXT_MODE,
        deadline: Deadline | None = None,
    ) -> str:
        """Send a non-streaming chat request and return the reply text.

        Raises UnitTimeoutError when the deadline passes (the connection is
        closed) and UnitServiceError for HTTP or protocol failures.
        """
        deadline = deadline or Deadline.after_ms(timeout_ms)
        model = self.model_for(mode)

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        if mode == TEXT_MODE:
            payload["format"] = "json"  # Vision models don't always support JSON mode

        if deadline.expired():
            raise UnitTimeoutError(f"Deadline passed before request to {model} was sent")

        session = requests.Session()
        resp = None
        t0 = time.time()
        try:
            remaining = deadline.remaining()
            resp = session.post(
                f"{self.base_url}/api/chat",
                json=payload,
                timeout=(min(self.CONNECT_TIMEOUT_S, remaining), remaining),
                stream=True,
            )
            if resp.status_code != 200:
                raise UnitServiceError(
                    f"Ollama API error: {resp.status_code} {resp.reason}: {resp.text[:200]}"
                )
            body = self._read_body(resp, deadline)
        except requests.Timeout as e:
            raise UnitTimeoutError(
                f"Ollama request timed out after {deadline.seconds:.0f}s. "
                "Try a smaller model or shorter text."
            ) from e
        except requests.RequestException as e:
            if deadline.expired():
                raise UnitTimeoutError(
                    f"Ollama request timed out after {deadline.seconds:.0f}s"
                ) from e
            raise UnitServiceError(f"Ollama request failed: {e}") from e
        finally:
            if resp is not None:
                resp.close()
            session.close()

        try:
            data = json.loads(body)
            content = data["message"]["content"]
        except (ValueError, KeyError, TypeError) as e:
            raise UnitServiceError(f"Malformed Ollama response: {body[:200]!r}") from e
        if not isinstance(content, str):
            raise UnitServiceError("Ollama response has no text content")

        logger.debug(
            "[%s] %d chars in %.1fs (prompt %s tok, output %s tok)",
            model, len(content), time.time() - t0,
            data.get("prompt_eval_count", "?"), data.get("eval_count", "?"),
        )
        return content

    def _read_body(self, resp, deadline: Deadline) -> bytes:
        parts = []
        for part in resp.iter_content(chunk_size=self.READ_CHUNK):
            if deadline.expired():
                raise UnitTimeoutError(
                    f"Ollama response not finished after {deadline.seconds:.0f}s"
                )
            parts.append(part)
        return b"".join(parts)

    def analyze_image(
        self,
        image_b64: str,
        prompt: str,
        system: str = "",
        **options,
    ) -> str:
        """Send one page image + prompt to the vision model."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt, "images": [image_b64]})
        return self.chat(messages, mode=VISION_MODE, **options)
