"""
Generative text service contract.

The pipeline treats text generation (query rewrites, rerank permutations) as
an untrusted, best-effort capability behind a narrow interface:

    request  = {system instructions, user payload, temperature=0,
                max output tokens, output schema}
    response = raw text that MUST be schema-validated before use

Schemas are pydantic models. Callers validate with parse_structured_output()
and map a validation failure to their own failure kind. Tests substitute a
deterministic implementation of GenerativeTextService.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type, TypeVar

import requests
from pydantic import BaseModel

from .errors import UpstreamError, UpstreamTimeout

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass(frozen=True)
class GenerationRequest:
    """
    One call to the generative text service.

    Attributes:
        system_instructions: Fixed instructions for the task
        user_payload: Task input (usually JSON)
        output_schema: pydantic model the output must validate against
        max_output_tokens: Hard output token budget
        temperature: Sampling temperature (always 0 in this pipeline)
        timeout_s: Transport-level timeout
    """
    system_instructions: str
    user_payload: str
    output_schema: Type[BaseModel]
    max_output_tokens: int
    temperature: float = 0.0
    timeout_s: float = 1.0


class GenerativeTextService(ABC):
    """Interface for text generation backends."""

    @abstractmethod
    def generate(self, request: GenerationRequest) -> str:
        """
        Run one generation and return the raw output text.

        Raises:
            UpstreamTimeout: If the backend exceeded the request timeout
            UpstreamError: For any other backend failure
        """
        pass

    def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "message": "ok"}


def parse_structured_output(raw_text: str, schema: Type[SchemaT]) -> SchemaT:
    """
    Validate raw generator output against a pydantic schema.

    The output must be exactly one JSON document; surrounding prose is not
    tolerated.

    Raises:
        pydantic.ValidationError: If the text is not valid JSON for the schema
    """
    return schema.model_validate_json(raw_text.strip())


class HTTPGenerativeService(GenerativeTextService):
    """
    Generative service over an OpenAI-compatible chat completions endpoint.

    The output schema is sent as a strict JSON-schema response format so the
    provider constrains decoding; the response is still validated locally.

    Example:
        >>> service = HTTPGenerativeService("https://llm.internal/v1", api_key="...")
        >>> raw = service.generate(GenerationRequest(
        ...     system_instructions="Return JSON.",
        ...     user_payload="{}",
        ...     output_schema=MySchema,
        ...     max_output_tokens=64,
        ... ))
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.session = session or requests.Session()
        logger.info(f"HTTPGenerativeService initialized: {self.endpoint} (model: {model})")

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "model": self.model,
            "temperature": request.temperature,
            "max_tokens": request.max_output_tokens,
            "messages": [
                {"role": "system", "content": request.system_instructions},
                {"role": "user", "content": request.user_payload},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": request.output_schema.__name__,
                    "schema": request.output_schema.model_json_schema(),
                    "strict": True,
                },
            },
        }

    def generate(self, request: GenerationRequest) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        start = time.perf_counter()
        try:
            response = self.session.post(
                f"{self.endpoint}/chat/completions",
                json=self._build_payload(request),
                headers=headers,
                timeout=request.timeout_s,
            )
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.Timeout as e:
            raise UpstreamTimeout(f"Generative service timed out: {e}") from e
        except (requests.exceptions.RequestException, json.JSONDecodeError) as e:
            raise UpstreamError(f"Generative service call failed: {e}") from e

        latency_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Generative call completed in {latency_ms:.1f}ms")

        try:
            return body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamError(f"Unexpected generative response shape: {e}") from e

    def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "message": f"HTTP endpoint {self.endpoint}"}


