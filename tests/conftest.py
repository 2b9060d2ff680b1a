"""
测试公共设施

提供按脚本返回响应的模型提供方和常用的测试工具。
"""

import json
import os
import sys
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agent_orchestrator import (  # noqa: E402
    CompletionResponse,
    Message,
    ModelConfig,
    ModelProvider,
    ToolCall,
    ToolDefinition,
    ToolParameter,
    ToolSpec,
    Usage,
    disable_logging,
)

ScriptItem = Union[CompletionResponse, BaseException]


class ScriptedProvider(ModelProvider):
    """按脚本依次返回响应的模型提供方，并记录每次调用看到的消息与工具"""

    def __init__(self, responses: Sequence[ScriptItem], config: Optional[ModelConfig] = None):
        super().__init__(
            config
            or ModelConfig(provider="custom", model="scripted-model", base_url="http://localhost")
        )
        self._responses = list(responses)
        self.calls: List[List[Message]] = []
        self.tool_snapshots: List[List[ToolSpec]] = []
        self.streaming_flags: List[bool] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def _complete(
        self,
        messages: List[Message],
        tool_definitions: List[ToolSpec],
        streaming: bool,
        on_chunk=None,
    ) -> CompletionResponse:
        self.calls.append(list(messages))
        self.tool_snapshots.append(list(tool_definitions))
        self.streaming_flags.append(streaming)
        if not self._responses:
            raise RuntimeError("脚本中的响应已用完")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        # 流式模式下整段内容作为一个增量交出
        if streaming and on_chunk is not None and item.content:
            on_chunk(item.content)
        return item


class RepeatingProvider(ScriptedProvider):
    """每次都返回同一个响应"""

    def __init__(self, response: CompletionResponse, config: Optional[ModelConfig] = None):
        super().__init__([], config)
        self._response = response

    async def _complete(self, messages, tool_definitions, streaming, on_chunk=None):
        self.calls.append(list(messages))
        self.tool_snapshots.append(list(tool_definitions))
        self.streaming_flags.append(streaming)
        return self._response


def reply(content: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> CompletionResponse:
    """不带工具调用的模型响应"""
    return CompletionResponse(
        content=content,
        usage=Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


def call_tools(
    *calls: tuple,
    content: str = "",
    prompt_tokens: int = 10,
    completion_tokens: int = 5,
) -> CompletionResponse:
    """
    带工具调用的模型响应

    Args:
        calls: (id, 工具名, 参数) 元组，参数为字典或原始字符串
    """
    tool_calls = [
        ToolCall(
            id=call_id,
            name=name,
            arguments=args if isinstance(args, str) else json.dumps(args, ensure_ascii=False),
        )
        for call_id, name, args in calls
    ]
    return CompletionResponse(
        content=content,
        tool_calls=tool_calls,
        usage=Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


def make_tool(
    name: str,
    execute,
    parameters: Optional[Dict[str, Dict[str, Any]]] = None,
    description: Optional[str] = None,
) -> ToolDefinition:
    """直接构造 ToolDefinition，execute 可以是普通函数或协程函数"""

    async def _execute(args: Dict[str, Any]) -> Any:
        result = execute(args)
        if hasattr(result, "__await__"):
            result = await result
        return result

    return ToolDefinition(
        name=name,
        description=f"{name} 测试工具" if description is None else description,
        parameters={key: ToolParameter(**value) for key, value in (parameters or {}).items()},
        execute=_execute,
    )


@pytest.fixture(autouse=True)
def _quiet_logging():
    """每个测试结束后恢复默认的静默日志状态"""
    yield
    disable_logging()


@pytest.fixture
def echo_tool() -> ToolDefinition:
    return make_tool(
        "echo",
        lambda args: f"echo: {args['text']}",
        parameters={"text": {"type": "string", "description": "要回显的文本", "required": True}},
    )


@pytest.fixture
def noop_tool() -> ToolDefinition:
    return make_tool("noop", lambda args: "ok")


@pytest.fixture
def failing_tool() -> ToolDefinition:
    def _boom(args):
        raise Exception("boom")

    return make_tool("explode", _boom)
