"""
模型提供方适配模块

该模块包含:
- 编排器消费的统一模型调用契约
- OpenAI兼容接口的适配器（openai / xai / perplexity / google / custom），支持流式聚合
- Anthropic Messages接口的适配器
- 根据模型配置创建适配器的工厂函数

公开接口:
- ModelProvider: 模型提供方抽象基类
- ChunkHandler: 流式内容回调类型
- OpenAICompatibleProvider: OpenAI兼容接口适配器
- AnthropicProvider: Anthropic接口适配器
- create_provider: 适配器工厂

内部方法:
- _StreamingToolCallAccumulator: 流式工具调用累加器
- _extract_error_details: 解析HTTP错误响应
- 各适配器的消息格式转换方法
"""

import inspect
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple

import httpx
from pydantic import BaseModel, ValidationError

from .cost import CostFunction, get_default_base_url, get_model_info, make_cost_function
from .exceptions import ConfigurationError, ProviderError
from .logger_config import log_http_request, log_llm_interaction, module_logger
from .schemas import CompletionResponse, Message, ModelConfig, ToolCall, ToolSpec, Usage

logger = module_logger("LLM交互")

ChunkHandler = Callable[[str], Any]


async def _deliver_chunk(on_chunk: Optional[ChunkHandler], delta: str) -> None:
    """把一段增量内容交给回调，回调可以是同步或异步函数"""
    if on_chunk is None or not delta:
        return
    result = on_chunk(delta)
    if inspect.isawaitable(result):
        await result


class ModelProvider(ABC):
    """
    模型提供方

    complete() 把统一的消息列表交给具体的提供方，返回统一的 CompletionResponse。
    任何提供方侧的失败都会被包装为 ProviderError。
    """

    def __init__(self, config: ModelConfig):
        self.config = config

    @property
    def provider_name(self) -> str:
        return self.config.provider

    @property
    def model_name(self) -> str:
        return self.config.model

    async def complete(
        self,
        messages: Sequence[Message],
        tool_definitions: Optional[Sequence[ToolSpec]] = None,
        streaming: bool = False,
        on_chunk: Optional[ChunkHandler] = None,
    ) -> CompletionResponse:
        """
        调用模型

        Args:
            messages: 完整的消息历史
            tool_definitions: 当前可用的工具
            streaming: 是否使用流式接口（结果仍然聚合为一个响应）
            on_chunk: 流式模式下每收到一段文本内容就调用一次

        Returns:
            CompletionResponse: 统一响应

        Raises:
            ProviderError: 调用失败
        """
        mode = "流式" if streaming else "非流式"
        log_llm_interaction(f"调用 {self.provider_name}/{self.model_name} ({mode}模式)")
        try:
            return await self._complete(
                list(messages), list(tool_definitions or []), streaming, on_chunk
            )
        except ProviderError:
            raise
        except Exception as e:
            log_llm_interaction("调用", error=str(e))
            raise ProviderError(
                f"{self.provider_name} 请求失败: {e}",
                provider=self.provider_name,
                original_error=e,
            ) from e

    @abstractmethod
    async def _complete(
        self,
        messages: List[Message],
        tool_definitions: List[ToolSpec],
        streaming: bool,
        on_chunk: Optional[ChunkHandler],
    ) -> CompletionResponse:
        """具体提供方的调用实现"""

    def cost_function(self) -> CostFunction:
        return make_cost_function(self.provider_name, self.model_name)

    def get_model_info(self) -> Dict[str, Any]:
        """模型元数据，目录中没有该模型时返回带 error 的描述"""
        try:
            info = get_model_info(self.provider_name, self.model_name)
        except KeyError:
            return {
                "provider": self.provider_name,
                "model": self.model_name,
                "error": "模型信息不可用",
            }
        return {"provider": self.provider_name, "model": self.model_name, **info.model_dump()}

    async def aclose(self) -> None:
        """释放底层资源"""


# --- HTTP 适配器公共部分 ---


def _extract_error_details(status_code: int, error_text: str) -> str:
    """从错误响应中提取可读的错误信息"""
    try:
        error_json = json.loads(error_text)
    except (json.JSONDecodeError, TypeError):
        return f"HTTP {status_code} 错误: {error_text[:200]}" if error_text else f"HTTP {status_code} 错误"

    if isinstance(error_json, dict) and "error" in error_json:
        error_info = error_json["error"]
        if isinstance(error_info, dict) and "message" in error_info:
            return f"API错误: {error_info['message']}"
        return f"API错误: {error_info}"
    return f"响应内容: {error_text[:200]}..."


class _HTTPProvider(ModelProvider):
    """基于 httpx 的适配器基类"""

    timeout: float = 60.0
    stream_timeout: float = 30.0

    def __init__(self, config: ModelConfig, httpx_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self.base_url = (config.base_url or get_default_base_url(config.provider) or "").rstrip("/")
        if not self.base_url:
            raise ConfigurationError(f"提供方 '{config.provider}' 需要配置 base_url")
        self._owns_client = httpx_client is None
        self._client = httpx_client or httpx.AsyncClient()

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        """请求头"""

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(
                url, headers=self._headers(), json=payload, timeout=self.timeout
            )
            log_http_request("POST", url, status_code=response.status_code)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            error_details = _extract_error_details(e.response.status_code, e.response.text)
            logger.error(f"[错误] HTTP错误: {e.response.status_code} - {error_details}")
            raise ProviderError(
                f"{self.provider_name} 请求失败: {error_details}",
                provider=self.provider_name,
                original_error=e,
            ) from e
        except httpx.RequestError as e:
            log_http_request("POST", url, error=str(e))
            raise

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# --- OpenAI 兼容接口 ---


class _APIFunctionCall(BaseModel):
    name: Optional[str] = None
    arguments: Optional[str] = None


class _APIToolCall(BaseModel):
    index: int = 0
    id: Optional[str] = None
    type: Optional[Literal["function"]] = None
    function: _APIFunctionCall


class _APIMessage(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[List[_APIToolCall]] = None


class _APIChoice(BaseModel):
    index: int = 0
    message: Optional[_APIMessage] = None
    finish_reason: Optional[str] = None


class _APIUsage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class _APIResponseNonStreamed(BaseModel):
    id: Optional[str] = None
    model: Optional[str] = None
    choices: List[_APIChoice]
    usage: Optional[_APIUsage] = None


class _StreamingToolCallAccumulator(BaseModel):
    """流式工具调用累加器"""

    index: int
    id: str = ""
    name: str = ""
    arguments_str: str = ""


def _usage_from_api(usage: Optional[_APIUsage]) -> Optional[Usage]:
    if usage is None:
        return None
    prompt = usage.prompt_tokens or 0
    completion = usage.completion_tokens or 0
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=usage.total_tokens or prompt + completion,
    )


class OpenAICompatibleProvider(_HTTPProvider):
    """
    OpenAI兼容的 /chat/completions 接口适配器

    流式模式下逐块解析SSE，把内容、工具调用参数片段和用量聚合成一个响应。
    """

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    @staticmethod
    def _convert_messages(messages: List[Message]) -> List[Dict[str, Any]]:
        """转换为OpenAI格式的消息列表"""
        converted = []
        for msg in messages:
            item: Dict[str, Any] = {"role": msg.role, "content": msg.content}
            if msg.role == "assistant" and msg.tool_calls:
                item["content"] = msg.content or None
                item["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in msg.tool_calls
                ]
            if msg.role == "tool":
                item["tool_call_id"] = msg.tool_call_id or ""
            converted.append(item)
        return converted

    @staticmethod
    def _convert_tools(tool_definitions: List[ToolSpec]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": spec.name,
                    "description": spec.description,
                    "parameters": spec.json_schema(),
                },
            }
            for spec in tool_definitions
        ]

    def _build_payload(
        self, messages: List[Message], tool_definitions: List[ToolSpec], streaming: bool
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": self._convert_messages(messages),
            "stream": streaming,
        }
        if self.config.temperature is not None:
            payload["temperature"] = self.config.temperature
        if self.config.max_tokens is not None:
            payload["max_tokens"] = self.config.max_tokens
        if self.config.top_p is not None:
            payload["top_p"] = self.config.top_p
        if tool_definitions:
            payload["tools"] = self._convert_tools(tool_definitions)
            payload["tool_choice"] = "auto"
        if streaming:
            payload["stream_options"] = {"include_usage": True}
        return payload

    async def _complete(
        self,
        messages: List[Message],
        tool_definitions: List[ToolSpec],
        streaming: bool,
        on_chunk: Optional[ChunkHandler] = None,
    ) -> CompletionResponse:
        payload = self._build_payload(messages, tool_definitions, streaming)
        url = f"{self.base_url}/chat/completions"
        if streaming:
            return await self._complete_stream(url, payload, on_chunk)

        data = await self._post_json(url, payload)
        try:
            response_data = _APIResponseNonStreamed.model_validate(data)
        except ValidationError as e:
            raise ProviderError(
                f"{self.provider_name} 响应格式无效: {e}",
                provider=self.provider_name,
                original_error=e,
            ) from e

        output = CompletionResponse(id=response_data.id, usage=_usage_from_api(response_data.usage))
        if response_data.choices:
            choice = response_data.choices[0]
            output.finish_reason = choice.finish_reason
            if choice.message:
                output.content = choice.message.content or ""
                for tc_api in choice.message.tool_calls or []:
                    output.tool_calls.append(
                        ToolCall(
                            id=tc_api.id or f"call_{tc_api.index}",
                            name=tc_api.function.name or "",
                            arguments=tc_api.function.arguments or "{}",
                        )
                    )
        return output

    async def _complete_stream(
        self, url: str, payload: Dict[str, Any], on_chunk: Optional[ChunkHandler] = None
    ) -> CompletionResponse:
        stream_headers = self._headers()
        stream_headers["Accept"] = "text/event-stream"

        accumulators: Dict[int, _StreamingToolCallAccumulator] = {}
        content_chunks: List[str] = []
        usage: Optional[Usage] = None
        response_id: Optional[str] = None
        finish_reason: Optional[str] = None

        async with self._client.stream(
            "POST", url, headers=stream_headers, json=payload, timeout=self.stream_timeout
        ) as response:
            log_http_request("POST", url, status_code=response.status_code)
            if response.status_code >= 400:
                error_text = (await response.aread()).decode("utf-8", errors="replace")
                error_details = _extract_error_details(response.status_code, error_text)
                logger.error(f"[错误] HTTP错误: {response.status_code} - {error_details}")
                raise ProviderError(
                    f"{self.provider_name} 请求失败: {error_details}",
                    provider=self.provider_name,
                )

            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                data_json_str = line[len("data: "):].strip()
                if data_json_str == "[DONE]":
                    break
                if not data_json_str:
                    continue

                try:
                    chunk_json = json.loads(data_json_str)
                except json.JSONDecodeError as e:
                    logger.warning(f"[警告] JSON解码失败: {e}, 行: '{data_json_str}'")
                    continue

                response_id = chunk_json.get("id") or response_id
                if chunk_json.get("usage"):
                    usage = _usage_from_api(_APIUsage.model_validate(chunk_json["usage"]))

                choices = chunk_json.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.get("delta") or {}

                if delta.get("content"):
                    content_chunks.append(delta["content"])
                    await _deliver_chunk(on_chunk, delta["content"])

                for tc_delta in delta.get("tool_calls") or []:
                    idx = tc_delta.get("index", 0)
                    acc = accumulators.setdefault(idx, _StreamingToolCallAccumulator(index=idx))
                    if tc_delta.get("id"):
                        acc.id = tc_delta["id"]
                    function_info = tc_delta.get("function") or {}
                    if function_info.get("name"):
                        acc.name = function_info["name"]
                    if function_info.get("arguments"):
                        acc.arguments_str += function_info["arguments"]

                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]

        tool_calls = [
            ToolCall(
                id=acc.id or f"call_{acc.index}",
                name=acc.name,
                arguments=acc.arguments_str or "{}",
            )
            for acc in sorted(accumulators.values(), key=lambda a: a.index)
        ]
        return CompletionResponse(
            id=response_id,
            content="".join(content_chunks),
            tool_calls=tool_calls,
            usage=usage,
            finish_reason=finish_reason,
        )


# --- Anthropic Messages 接口 ---


def _json_object(arguments: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class AnthropicProvider(_HTTPProvider):
    """
    Anthropic /v1/messages 接口适配器

    系统消息单独放入 system 字段；tool 消息转换为下一条 user 消息中的 tool_result 块。
    流式标志被接受但按非流式请求处理，完整文本作为一段内容交给 on_chunk。
    """

    api_version = "2023-06-01"
    default_max_tokens = 1024

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": self.api_version,
        }
        if self.config.api_key:
            headers["x-api-key"] = self.config.api_key
        return headers

    @staticmethod
    def _convert_messages(messages: List[Message]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        转换为Anthropic格式

        Returns:
            (system文本, 消息列表)
        """
        system_parts: List[str] = []
        converted: List[Dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            elif msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id or "",
                    "content": msg.content,
                }
                previous = converted[-1] if converted else None
                # 连续的工具结果合并到同一条 user 消息
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif msg.role == "assistant":
                blocks: List[Dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                for call in msg.tool_calls or ():
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": call.id,
                            "name": call.name,
                            "input": _json_object(call.arguments),
                        }
                    )
                converted.append({"role": "assistant", "content": blocks or msg.content})
            else:
                converted.append({"role": "user", "content": msg.content})

        system = "\n\n".join(part for part in system_parts if part) or None
        return system, converted

    def _build_payload(self, messages: List[Message], tool_definitions: List[ToolSpec]) -> Dict[str, Any]:
        system, converted = self._convert_messages(messages)
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": converted,
            "max_tokens": self.config.max_tokens or self.default_max_tokens,
        }
        if system:
            payload["system"] = system
        if self.config.temperature is not None:
            payload["temperature"] = self.config.temperature
        if self.config.top_p is not None:
            payload["top_p"] = self.config.top_p
        if tool_definitions:
            payload["tools"] = [
                {
                    "name": spec.name,
                    "description": spec.description,
                    "input_schema": spec.json_schema(),
                }
                for spec in tool_definitions
            ]
        return payload

    async def _complete(
        self,
        messages: List[Message],
        tool_definitions: List[ToolSpec],
        streaming: bool,
        on_chunk: Optional[ChunkHandler] = None,
    ) -> CompletionResponse:
        if streaming:
            logger.debug("Anthropic 适配器使用非流式请求")
        data = await self._post_json(
            f"{self.base_url}/v1/messages", self._build_payload(messages, tool_definitions)
        )

        text_parts: List[str] = []
        tool_calls: List[ToolCall] = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id", ""),
                        name=block.get("name", ""),
                        arguments=json.dumps(block.get("input") or {}, ensure_ascii=False),
                    )
                )

        usage = None
        if data.get("usage"):
            prompt = data["usage"].get("input_tokens") or 0
            completion = data["usage"].get("output_tokens") or 0
            usage = Usage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=prompt + completion,
            )

        content = "".join(text_parts)
        if streaming:
            await _deliver_chunk(on_chunk, content)

        return CompletionResponse(
            id=data.get("id"),
            content=content,
            tool_calls=tool_calls,
            usage=usage,
            finish_reason=data.get("stop_reason"),
        )


def create_provider(
    config: ModelConfig, httpx_client: Optional[httpx.AsyncClient] = None
) -> ModelProvider:
    """
    根据模型配置创建适配器

    Raises:
        ConfigurationError: 不支持的提供方或缺少必要配置
    """
    if config.provider == "anthropic":
        return AnthropicProvider(config, httpx_client)
    if config.provider == "google-vertex":
        raise ConfigurationError("暂不支持 google-vertex，请使用 google 提供方")
    if config.provider == "custom" and not config.base_url:
        raise ConfigurationError("custom 提供方需要配置 base_url")
    return OpenAICompatibleProvider(config, httpx_client)
