"""Anthropic implementation of the model-call contract."""

import os
from typing import Any, Dict, List, Optional

from taskpilot.debug_logger import get_logger
from taskpilot.llm.types import ModelResponse, TextBlock, ToolUseBlock, Usage


class AnthropicModelClient:
    """Async Claude client returning ``ModelResponse`` objects."""

    def __init__(self, api_key: Optional[str] = None, temperature: Optional[float] = None):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY", "")
        self.temperature = temperature if temperature is not None else float(
            os.getenv("TASKPILOT_TEMPERATURE", "0.1")
        )
        self._client = None

    def _get_client(self):
        """Lazy initialization of the Anthropic client."""
        if self._client is None:
            try:
                import anthropic
                self._client = anthropic.AsyncAnthropic(api_key=self.api_key or None)
            except ImportError:
                raise ImportError(
                    "Anthropic package not installed. Install with: pip install anthropic"
                )
        return self._client

    @staticmethod
    def _convert_response(response: Any) -> ModelResponse:
        blocks = []
        for block in response.content or []:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                blocks.append(TextBlock(text=block.text))
            elif block_type == "tool_use":
                blocks.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {})))

        usage = None
        if getattr(response, "usage", None) is not None:
            usage = Usage(input_tokens=response.usage.input_tokens, output_tokens=response.usage.output_tokens)
        return ModelResponse(stop_reason=response.stop_reason, content=blocks, usage=usage)

    async def create_message(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        cancel_token: Any = None,
    ) -> ModelResponse:
        client = self._get_client()
        request_params: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": messages,
            "temperature": self.temperature,
        }
        if system:
            request_params["system"] = system
        if tools:
            request_params["tools"] = tools

        try:
            response = await client.messages.create(**request_params)
        except Exception as e:
            get_logger().log("llm", "ANTHROPIC_ERROR", {"error": str(e)}, "ERROR")
            raise
        return self._convert_response(response)
