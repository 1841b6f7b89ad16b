from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple
from threading import Lock
import logging
import os
import time

from langchain_openai import ChatOpenAI
import requests
from requests.adapters import HTTPAdapter

from ..domain.errors import BackendError
from ..domain.session_models import Artifact
from ..observability.metrics import GENERATION_LATENCY, GENERATION_OUTCOMES
from .artifact_parser import parse_artifact
from .model_router import ModelRouter, ProviderSelection


logger = logging.getLogger("studio.generation")
LOG = logging.getLogger("studio.llm")


SYSTEM_PROMPT = "\n".join(
    [
        "You are an expert React component generator. Generate clean, modern React components with CSS.",
        "",
        "Rules:",
        "- Return only valid JSX/TSX and CSS",
        "- Use modern CSS with flexbox/grid",
        "- Make components responsive",
        "- Use semantic HTML",
        "- Include hover states and transitions",
        "- Return in this exact format:",
        "",
        "JSX:",
        "<your jsx code here>",
        "",
        "CSS:",
        "<your css code here>",
    ]
)


@dataclass
class GenerationConfig:
    timeout_s: float = 30.0
    connect_timeout_s: float = 3.0
    temperature: float = 0.2

    @staticmethod
    def from_env() -> "GenerationConfig":
        return GenerationConfig(
            timeout_s=float(os.getenv("STUDIO_GENERATION_TIMEOUT", "30")),
            connect_timeout_s=float(os.getenv("STUDIO_GENERATION_CONNECT_TIMEOUT", "3")),
            temperature=float(os.getenv("STUDIO_GENERATION_TEMPERATURE", "0.2")),
        )


def build_messages(prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": f"User request: {prompt}"},
    ]


def _build_session() -> requests.Session:
    # Retries are the caller's concern; the adapter only pools connections
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=0, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class LocalLLMClient:
    """Minimal client for a self-hosted OpenAI-style or Ollama endpoint."""

    def __init__(self, base_url: str, model: str, timeout: Tuple[float, float]) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._timeout = timeout
        self._session = _build_session()
        self.api_style = (os.getenv("STUDIO_LLM_LOCAL_API") or "openai").lower()

    def invoke(self, messages: List[Dict[str, str]]) -> str:
        if self.api_style == "ollama":
            return self._invoke_ollama(messages)
        return self._invoke_openai(messages)

    def _invoke_openai(self, messages: List[Dict[str, str]]) -> str:
        LOG.debug("local_llm_invoke", extra={"model": self.model, "base_url": self.base_url})
        resp = self._session.post(
            f"{self.base_url}/v1/chat/completions",
            json={"model": self.model, "messages": messages, "stream": False},
            timeout=self._timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        choices = data.get("choices") or []
        if choices:
            message = choices[0].get("message") or {}
            return message.get("content")
        return data.get("response")

    def _invoke_ollama(self, messages: List[Dict[str, str]]) -> str:
        resp = self._session.post(
            f"{self.base_url}/api/generate",
            json={"model": self.model, "prompt": self._messages_to_prompt(messages), "stream": False},
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return resp.json().get("response")

    @staticmethod
    def _messages_to_prompt(messages: List[Dict[str, str]]) -> str:
        parts: List[str] = []
        for msg in messages:
            role = (msg.get("role") or "user").strip().upper()
            parts.append(f"{role}: {msg.get('content') or ''}")
        parts.append("ASSISTANT:")
        return "\n".join(parts)


def _status_code(exc: Exception) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if code is None:
        code = getattr(getattr(exc, "response", None), "status_code", None)
    return code if isinstance(code, int) else None


class GenerationClient:
    """Turns a natural-language request into an :class:`Artifact`.

    One backend call per :meth:`generate`; no retries. Any backend failure,
    including a timeout, surfaces as :class:`BackendError`. A completion that
    parses to empty fields is returned as-is.
    """

    def __init__(
        self,
        router: Optional[ModelRouter] = None,
        cfg: Optional[GenerationConfig] = None,
        llm_factory: Optional[Callable[[ProviderSelection, GenerationConfig], object]] = None,
    ) -> None:
        self._router = router or ModelRouter()
        self._cfg = cfg or GenerationConfig.from_env()
        self._llm_factory = llm_factory or _default_llm_factory

    def generate(self, prompt: str) -> Artifact:
        try:
            selection = self._router.select_provider("component_generation")
            llm = self._llm_factory(selection, self._cfg)
        except RuntimeError as exc:
            GENERATION_OUTCOMES.labels(outcome="unconfigured").inc()
            raise BackendError("No generation backend is configured") from exc

        start = time.perf_counter()
        try:
            res = llm.invoke(build_messages(prompt))  # type: ignore[attr-defined]
        except Exception as exc:
            code = _status_code(exc)
            GENERATION_OUTCOMES.labels(outcome="error").inc()
            LOG.warning(
                "generation_failed",
                extra={"provider": selection.name, "model": selection.model, "status": code, "err": str(exc)},
            )
            if code == 429:
                raise BackendError("Generation backend is rate limited") from exc
            if isinstance(exc, (requests.exceptions.Timeout, TimeoutError)) or "timed out" in str(exc).lower():
                raise BackendError("Generation backend timed out") from exc
            raise BackendError("Generation backend is unavailable") from exc
        finally:
            GENERATION_LATENCY.labels(provider=selection.name).observe(time.perf_counter() - start)

        text = res.content if hasattr(res, "content") else res
        if not isinstance(text, str):
            GENERATION_OUTCOMES.labels(outcome="unusable").inc()
            LOG.warning("generation_unusable", extra={"provider": selection.name, "type": type(text).__name__})
            raise BackendError("Generation backend returned an unusable response")

        artifact = parse_artifact(text)
        GENERATION_OUTCOMES.labels(outcome="empty" if artifact.is_empty else "ok").inc()
        LOG.info(
            "generation_succeeded",
            extra={"provider": selection.name, "model": selection.model, "empty": artifact.is_empty},
        )
        return artifact


def _default_llm_factory(selection: ProviderSelection, cfg: GenerationConfig) -> object:
    base_url = selection.default_base_url
    if selection.base_url_env:
        base_url = os.getenv(selection.base_url_env) or base_url

    if selection.name == "local":
        logger.info("Using local LLM provider base_url=%s model=%s", base_url, selection.model)
        return LocalLLMClient(
            base_url=base_url or "http://127.0.0.1:11434",
            model=selection.model,
            timeout=(cfg.connect_timeout_s, cfg.timeout_s),
        )

    api_key = os.getenv(selection.api_key_env) if selection.api_key_env else None
    if selection.requires_api_key and not api_key:
        raise RuntimeError("LLM not configured")

    logger.info(
        "Using remote LLM provider name=%s model=%s base_url=%s",
        selection.name,
        selection.model,
        base_url,
    )
    return ChatOpenAI(
        api_key=api_key,
        base_url=base_url,
        model=selection.model,
        temperature=cfg.temperature,
        timeout=cfg.timeout_s,
        max_retries=0,
    )


_client: GenerationClient | None = None
_client_lock = Lock()


def get_generation_client() -> GenerationClient:
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = GenerationClient()
    return _client
