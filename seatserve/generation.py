"""Structured text generation over the OpenAI Chat Completions API.

The model may call the supplied tools any number of times (bounded by
``max_tool_rounds``) before it answers with a JSON object matching the
requested schema.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from openai import OpenAI

from seatserve.config import Settings, settings as default_settings
from seatserve.logger import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = "You are a helpful, concise assistant. Answer only with the requested JSON object."


class GenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    handler: Callable[..., Any]
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def spec(self) -> dict[str, Any]:
        parameters = dict(self.parameters)
        parameters.setdefault("additionalProperties", False)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
                "strict": True,
            },
        }

    def __call__(self, **kwargs: Any) -> Any:
        return self.handler(**kwargs)


class TextGenerator(Protocol):
    def generate(
        self,
        prompt: str,
        tools: list[Tool],
        schema: dict[str, Any],
        schema_name: str = "result",
    ) -> dict[str, Any]:
        ...


class OpenAIGenerator:
    def __init__(
        self,
        client: Any | None = None,
        config: Settings = default_settings,
    ) -> None:
        self._client = client
        self.config = config
        self.model = config.openai_model
        self.max_tool_rounds = config.openai_max_tool_rounds

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(api_key=self.config.openai_api_key)
        return self._client

    def generate(
        self,
        prompt: str,
        tools: list[Tool],
        schema: dict[str, Any],
        schema_name: str = "result",
    ) -> dict[str, Any]:
        by_name = {tool.name: tool for tool in tools}
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        request: dict[str, Any] = {
            "model": self.model,
            "temperature": 0,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema, "strict": True},
            },
        }
        if tools:
            request["tools"] = [tool.spec() for tool in tools]

        for round_no in range(self.max_tool_rounds + 1):
            resp = self.client.chat.completions.create(messages=messages, **request)
            message = resp.choices[0].message
            tool_calls = getattr(message, "tool_calls", None) or []
            if not tool_calls:
                return self._parse(message.content)
            if round_no == self.max_tool_rounds:
                break

            messages.append(
                {
                    "role": "assistant",
                    "content": message.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.function.name,
                                "arguments": call.function.arguments,
                            },
                        }
                        for call in tool_calls
                    ],
                }
            )
            for call in tool_calls:
                result = self._run_tool(by_name, call.function.name, call.function.arguments)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": json.dumps(result, ensure_ascii=False, default=str),
                    }
                )

        raise GenerationError(f"No answer after {self.max_tool_rounds} tool rounds")

    def _run_tool(self, by_name: dict[str, Tool], name: str, raw_arguments: str | None) -> Any:
        tool = by_name.get(name)
        if tool is None:
            raise GenerationError(f"Model called unknown tool {name!r}")
        arguments = json.loads(raw_arguments or "{}")
        logger.info("Tool call %s(%s)", name, arguments)
        return tool(**arguments)

    def _parse(self, content: str | None) -> dict[str, Any]:
        if not content:
            raise GenerationError("Model returned an empty answer")
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as exc:
            raise GenerationError("Model answer is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise GenerationError("Model answer is not a JSON object")
        return payload
