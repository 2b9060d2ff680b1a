#!/usr/bin/env python3
"""
编排器测试

测试内容：
1. 基本循环：直接回答、工具调用后回答
2. 迭代上限与干净结束的边界
3. 工具错误反馈给模型，循环继续
4. 预算检查
5. 模型调用失败
6. 事件顺序与监听器隔离
7. 并发执行保护
8. 消息列表输入、重置、切换模型
"""

import asyncio
import json

import pytest
from pydantic import BaseModel

from agent_orchestrator import (
    Budget,
    ConcurrentExecutionError,
    ConfigurationError,
    DuplicateToolError,
    Message,
    ModelConfig,
    Orchestrator,
    OrchestratorConfig,
    is_logging_enabled,
    tool,
)

from conftest import RepeatingProvider, ScriptedProvider, call_tools, make_tool, reply


def _events(orchestrator):
    received = []
    orchestrator.on_event(received.append)
    return received


# --- 基本循环 ---


@pytest.mark.asyncio
async def test_direct_answer():
    """模型第一次就直接回答"""
    provider = ScriptedProvider([reply("done")])
    orchestrator = Orchestrator(provider=provider)

    result = await orchestrator.execute("hello")

    assert result.success is True
    assert result.result == "done"
    assert result.error is None
    assert result.iterations == 1
    assert result.tool_calls_used == []
    assert orchestrator.state == "completed"
    assert [m.role for m in result.messages] == ["user", "assistant"]
    assert result.cost_tracking.input_tokens == 10
    assert result.cost_tracking.output_tokens == 5
    assert result.cost_tracking.estimated_cost == pytest.approx((10 * 0.01 + 5 * 0.02) / 1000)


@pytest.mark.asyncio
async def test_tool_round_trip(echo_tool):
    """工具调用结果写回历史后再次调用模型"""
    provider = ScriptedProvider(
        [call_tools(("call_1", "echo", {"text": "hi"}), content="让我调用工具"), reply("final")]
    )
    orchestrator = Orchestrator(provider=provider, tools=[echo_tool], system_prompt="你是助手")

    result = await orchestrator.execute("say hi")

    assert result.success is True
    assert result.result == "final"
    assert result.iterations == 2
    assert result.tool_calls_used == ["echo"]
    assert result.cost_tracking.tool_calls == 1
    assert [m.role for m in result.messages] == ["system", "user", "assistant", "tool", "assistant"]

    assistant = result.messages[2]
    assert assistant.content == "让我调用工具"
    assert assistant.tool_calls[0].id == "call_1"

    tool_message = result.messages[3]
    assert tool_message.tool_call_id == "call_1"
    assert json.loads(tool_message.content) == "echo: hi"

    # 第二次调用模型时能看到工具结果
    assert provider.calls[1][-1] == tool_message
    assert [spec.name for spec in provider.tool_snapshots[0]] == ["echo"]


@pytest.mark.asyncio
async def test_max_iterations_with_pending_tool_calls(noop_tool):
    """迭代上限为1且模型总是请求工具：失败，只执行一次工具"""
    provider = RepeatingProvider(call_tools(("c1", "noop", {})))
    orchestrator = Orchestrator(provider=provider, tools=[noop_tool], max_iterations=1)

    result = await orchestrator.execute("go")

    assert result.success is False
    assert "max iterations" in result.error
    assert result.iterations == 1
    assert result.cost_tracking.tool_calls == 1
    assert provider.call_count == 1
    assert orchestrator.state == "failed"


@pytest.mark.asyncio
async def test_clean_finish_on_last_iteration(noop_tool):
    """恰好在最后一次迭代干净结束，不能误报迭代超限"""
    provider = ScriptedProvider([call_tools(("c1", "noop", {})), reply("finished")])
    orchestrator = Orchestrator(provider=provider, tools=[noop_tool], max_iterations=2)

    result = await orchestrator.execute("go")

    assert result.success is True
    assert result.result == "finished"
    assert result.iterations == 2


@pytest.mark.asyncio
async def test_clean_finish_with_single_iteration():
    provider = ScriptedProvider([reply("only")])
    orchestrator = Orchestrator(provider=provider, max_iterations=1)

    result = await orchestrator.execute("go")

    assert result.success is True
    assert result.iterations == 1


# --- 工具错误 ---


@pytest.mark.asyncio
async def test_tool_failure_is_fed_back(failing_tool):
    """工具抛出异常时，错误作为工具结果反馈，循环继续"""
    provider = ScriptedProvider([call_tools(("c1", "explode", {})), reply("recovered")])
    orchestrator = Orchestrator(provider=provider, tools=[failing_tool])
    events = _events(orchestrator)

    result = await orchestrator.execute("go")

    tool_message = result.messages[2]
    assert tool_message.role == "tool"
    assert tool_message.content == "Error: boom"
    assert provider.call_count == 2
    assert result.success is True
    assert result.result == "recovered"
    assert result.cost_tracking.tool_calls == 1

    tool_results = [e for e in events if e.type == "tool_result"]
    assert len(tool_results) == 1
    assert tool_results[0].success is False
    assert tool_results[0].error == "boom"


@pytest.mark.asyncio
async def test_failed_tool_calls_count_toward_budget(failing_tool):
    """失败的工具调用同样计入 tool_calls 预算"""
    provider = RepeatingProvider(call_tools(("c1", "explode", {})))
    orchestrator = Orchestrator(
        provider=provider, tools=[failing_tool], budget={"max_tool_calls": 1}
    )

    result = await orchestrator.execute("go")

    assert result.success is False
    assert "budget exceeded" in result.error
    assert result.cost_tracking.tool_calls == 1
    assert provider.call_count == 1


@pytest.mark.asyncio
async def test_unknown_tool_is_fed_back():
    provider = ScriptedProvider([call_tools(("c1", "ghost", {})), reply("ok")])
    orchestrator = Orchestrator(provider=provider)

    result = await orchestrator.execute("go")

    assert result.success is True
    assert result.messages[2].content.startswith("Error: ")
    assert "ghost" in result.messages[2].content
    assert result.tool_calls_used == []


@pytest.mark.asyncio
async def test_validation_failure_is_fed_back(echo_tool):
    provider = ScriptedProvider([call_tools(("c1", "echo", {})), reply("ok")])
    orchestrator = Orchestrator(provider=provider, tools=[echo_tool])

    result = await orchestrator.execute("go")

    assert result.messages[2].content.startswith("Error: ")
    assert "text" in result.messages[2].content
    assert result.tool_calls_used == []


@pytest.mark.asyncio
async def test_invalid_json_arguments_are_fed_back(echo_tool):
    provider = ScriptedProvider([call_tools(("c1", "echo", "{not json")), reply("ok")])
    orchestrator = Orchestrator(provider=provider, tools=[echo_tool])
    events = _events(orchestrator)

    result = await orchestrator.execute("go")

    assert result.success is True
    assert result.messages[2].content.startswith("Error: invalid JSON arguments")
    tool_call_event = next(e for e in events if e.type == "tool_call")
    assert tool_call_event.arguments == {}


@pytest.mark.asyncio
async def test_tool_calls_run_sequentially_in_order():
    """同一轮的多个工具调用按顺序逐个执行"""
    log = []

    async def record(args):
        log.append(("start", args["tag"]))
        await asyncio.sleep(0)
        log.append(("end", args["tag"]))
        return args["tag"]

    tagger = make_tool("tag", record, parameters={"tag": {"type": "string", "required": True}})
    provider = ScriptedProvider(
        [call_tools(("c1", "tag", {"tag": "a"}), ("c2", "tag", {"tag": "b"})), reply("done")]
    )
    orchestrator = Orchestrator(provider=provider, tools=[tagger])

    result = await orchestrator.execute("go")

    assert log == [("start", "a"), ("end", "a"), ("start", "b"), ("end", "b")]
    assert [m.tool_call_id for m in result.messages if m.role == "tool"] == ["c1", "c2"]
    assert result.cost_tracking.tool_calls == 2


@pytest.mark.asyncio
async def test_structured_tool_results_are_serialized():
    class Weather(BaseModel):
        city: str
        temperature: float

    @tool
    def get_weather(city: str) -> Weather:
        """获取天气"""
        return Weather(city=city, temperature=25.0)

    @tool
    def get_info() -> dict:
        """获取信息"""
        return {"城市": "北京"}

    provider = ScriptedProvider(
        [
            call_tools(("c1", "get_weather", {"city": "北京"}), ("c2", "get_info", {})),
            reply("ok"),
        ]
    )
    orchestrator = Orchestrator(provider=provider, tools=[get_weather, get_info])

    result = await orchestrator.execute("go")

    tool_messages = [m for m in result.messages if m.role == "tool"]
    assert json.loads(tool_messages[0].content) == {"city": "北京", "temperature": 25.0}
    assert tool_messages[1].content == '{"城市": "北京"}'


# --- 预算 ---


@pytest.mark.asyncio
async def test_tool_call_budget(noop_tool):
    """max_tool_calls=2 时第三次迭代在调用模型之前失败"""
    provider = RepeatingProvider(call_tools(("c1", "noop", {})))
    orchestrator = Orchestrator(
        provider=provider, tools=[noop_tool], budget={"max_tool_calls": 2}
    )

    result = await orchestrator.execute("go")

    assert result.success is False
    assert "budget exceeded" in result.error
    assert "tool_calls" in result.error
    assert "2" in result.error
    assert provider.call_count == 2
    assert result.iterations == 3
    assert result.cost_tracking.tool_calls == 2


@pytest.mark.asyncio
async def test_budget_checked_before_first_call():
    """预算为0时第一次迭代即失败，迭代仍然计数"""
    provider = ScriptedProvider([reply("never")])
    orchestrator = Orchestrator(provider=provider, budget=Budget(max_tokens=0))

    result = await orchestrator.execute("go")

    assert result.success is False
    assert "tokens" in result.error
    assert result.iterations == 1
    assert provider.call_count == 0
    assert [m.role for m in result.messages] == ["user"]


@pytest.mark.asyncio
async def test_cost_budget(noop_tool):
    provider = RepeatingProvider(
        call_tools(("c1", "noop", {}), prompt_tokens=1000, completion_tokens=1000)
    )
    orchestrator = Orchestrator(
        provider=provider, tools=[noop_tool], budget={"max_cost": 0.05}
    )

    result = await orchestrator.execute("go")

    # 每次调用 0.03，第二次之后达到 0.06
    assert result.success is False
    assert "cost" in result.error
    assert provider.call_count == 2


# --- 模型调用失败 ---


@pytest.mark.asyncio
async def test_provider_failure_returns_result():
    provider = ScriptedProvider([RuntimeError("network down")])
    orchestrator = Orchestrator(provider=provider, system_prompt="sys")
    events = _events(orchestrator)

    result = await orchestrator.execute("go")

    assert result.success is False
    assert "network down" in result.error
    assert result.iterations == 1
    assert [m.role for m in result.messages] == ["system", "user"]
    assert events[-1].type == "error"
    assert events[-1].iteration == 1
    assert events[-1].result == result


class _ProviderWithoutConfig:
    """只实现 complete() 的提供方，没有 ModelConfig"""

    async def complete(self, messages, tool_definitions, streaming, on_chunk=None):
        raise AssertionError("不应调用模型")

    async def aclose(self):
        pass


@pytest.mark.asyncio
async def test_start_failure_returns_result():
    """构造 start 事件失败时同样返回失败结果而不是抛出异常"""
    orchestrator = Orchestrator(model="gpt-4o", provider=_ProviderWithoutConfig())
    events = _events(orchestrator)

    result = await orchestrator.execute("go")

    assert result.success is False
    assert result.iterations == 0
    assert orchestrator.state == "failed"
    assert not orchestrator.is_running
    assert [e.type for e in events] == ["error"]


# --- 事件 ---


@pytest.mark.asyncio
async def test_event_order(echo_tool):
    provider = ScriptedProvider([call_tools(("c1", "echo", {"text": "x"})), reply("done")])
    orchestrator = Orchestrator(provider=provider, tools=[echo_tool])
    events = _events(orchestrator)

    result = await orchestrator.execute("go")

    assert [e.type for e in events] == [
        "start",
        "iteration",
        "tool_call",
        "tool_result",
        "iteration",
        "complete",
    ]
    assert events[1].iteration == 1
    assert events[2].arguments == {"text": "x"}
    assert events[3].result == "echo: x"
    assert events[-1].result == result


@pytest.mark.asyncio
async def test_start_event_hides_api_key():
    config = ModelConfig(provider="custom", model="m", base_url="http://localhost", api_key="secret")
    orchestrator = Orchestrator(provider=ScriptedProvider([reply("ok")], config=config))
    events = _events(orchestrator)

    await orchestrator.execute("go")

    start = events[0]
    assert start.type == "start"
    assert "api_key" not in start.config["model"]
    assert "secret" not in json.dumps(start.config)


@pytest.mark.asyncio
async def test_listener_errors_are_isolated():
    """监听器抛出异常不影响其他监听器和编排循环"""
    provider = ScriptedProvider([reply("done")])
    orchestrator = Orchestrator(provider=provider)

    def broken(event):
        raise RuntimeError("listener failure")

    orchestrator.on_event(broken)
    events = _events(orchestrator)

    result = await orchestrator.execute("go")

    assert result.success is True
    assert [e.type for e in events] == ["start", "iteration", "complete"]


@pytest.mark.asyncio
async def test_off_event():
    orchestrator = Orchestrator(provider=ScriptedProvider([reply("done")]))
    received = []
    orchestrator.on_event(received.append)

    assert orchestrator.off_event(received.append) is True
    assert orchestrator.off_event(received.append) is False

    await orchestrator.execute("go")
    assert received == []


# --- 并发保护 ---


class _BlockingProvider(ScriptedProvider):
    def __init__(self):
        super().__init__([reply("done")])
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def _complete(self, messages, tool_definitions, streaming, on_chunk=None):
        self.entered.set()
        await self.release.wait()
        return await super()._complete(messages, tool_definitions, streaming, on_chunk)


@pytest.mark.asyncio
async def test_concurrent_execute_is_rejected(noop_tool):
    provider = _BlockingProvider()
    orchestrator = Orchestrator(provider=provider)

    task = asyncio.create_task(orchestrator.execute("first"))
    await provider.entered.wait()

    assert orchestrator.is_running
    with pytest.raises(ConcurrentExecutionError):
        await orchestrator.execute("second")
    with pytest.raises(ConcurrentExecutionError):
        orchestrator.add_tool(noop_tool)
    with pytest.raises(ConcurrentExecutionError):
        orchestrator.reset()

    provider.release.set()
    result = await task

    assert result.success is True
    assert [m.content for m in result.messages if m.role == "user"] == ["first"]
    assert not orchestrator.is_running


# --- 历史、重置、输入形式 ---


@pytest.mark.asyncio
async def test_history_is_append_only():
    provider = ScriptedProvider([reply("one"), RuntimeError("down"), reply("three")])
    orchestrator = Orchestrator(provider=provider, system_prompt="sys")

    snapshots = [orchestrator.get_messages()]
    for text in ("a", "b", "c"):
        await orchestrator.execute(text)
        snapshots.append(orchestrator.get_messages())

    for before, after in zip(snapshots, snapshots[1:]):
        assert after[: len(before)] == before
        assert len(after) > len(before)
    assert [m.role for m in snapshots[-1]].count("system") == 1


@pytest.mark.asyncio
async def test_iterations_restart_each_execute():
    provider = ScriptedProvider([reply("one"), reply("two")])
    orchestrator = Orchestrator(provider=provider, max_iterations=1)

    first = await orchestrator.execute("a")
    second = await orchestrator.execute("b")

    assert first.success and second.success
    assert second.iterations == 1
    assert second.cost_tracking.input_tokens == 20


@pytest.mark.asyncio
async def test_reset(echo_tool):
    provider = ScriptedProvider(
        [call_tools(("c1", "echo", {"text": "x"})), reply("done"), reply("again")]
    )
    orchestrator = Orchestrator(provider=provider, tools=[echo_tool], system_prompt="sys")
    events = _events(orchestrator)
    await orchestrator.execute("go")

    orchestrator.reset()

    assert orchestrator.get_messages() == (Message(role="system", content="sys"),)
    assert orchestrator.iterations == 0
    assert orchestrator.state == "idle"
    assert orchestrator.get_cost_tracking().total_tokens == 0
    assert orchestrator.get_used_tools() == []
    assert orchestrator.get_tool("echo") is not None

    # 事件订阅在重置后保留
    events.clear()
    await orchestrator.execute("go again")
    assert events[0].type == "start"


@pytest.mark.asyncio
async def test_message_array_input():
    provider = ScriptedProvider([reply("answer")])
    orchestrator = Orchestrator(provider=provider)

    result = await orchestrator.execute(
        [
            {"role": "system", "content": "seeded"},
            {"role": "user", "content": "q1"},
            Message(role="assistant", content="a1"),
            {"role": "user", "content": "q2"},
        ]
    )

    assert result.success is True
    assert [m.content for m in result.messages] == ["seeded", "q1", "a1", "q2", "answer"]


@pytest.mark.asyncio
async def test_message_array_system_message_dropped_when_history_exists():
    provider = ScriptedProvider([reply("answer")])
    orchestrator = Orchestrator(provider=provider, system_prompt="original")

    result = await orchestrator.execute(
        [{"role": "system", "content": "override"}, {"role": "user", "content": "q"}]
    )

    assert [m.content for m in result.messages] == ["original", "q", "answer"]


@pytest.mark.asyncio
async def test_invalid_input_raises():
    orchestrator = Orchestrator(provider=ScriptedProvider([]))

    with pytest.raises(ConfigurationError):
        await orchestrator.execute(123)
    with pytest.raises(ConfigurationError):
        await orchestrator.execute([])
    with pytest.raises(ConfigurationError):
        await orchestrator.execute([{"role": "robot", "content": "x"}])

    assert orchestrator.get_messages() == ()
    assert orchestrator.state == "idle"


# --- 工具与模型管理 ---


@pytest.mark.asyncio
async def test_add_and_remove_tools_between_runs(echo_tool, noop_tool):
    provider = ScriptedProvider([reply("one"), reply("two")])
    orchestrator = Orchestrator(provider=provider, tools=[echo_tool])

    await orchestrator.execute("a")
    orchestrator.add_tool(noop_tool)
    assert orchestrator.remove_tool("echo") is True
    assert orchestrator.remove_tool("echo") is False
    await orchestrator.execute("b")

    assert [s.name for s in provider.tool_snapshots[0]] == ["echo"]
    assert [s.name for s in provider.tool_snapshots[1]] == ["noop"]
    assert [t.name for t in orchestrator.get_all_tools()] == ["noop"]


@pytest.mark.asyncio
async def test_switch_model_keeps_history():
    first = ScriptedProvider([reply("from first")])
    second = ScriptedProvider(
        [reply("from second")],
        config=ModelConfig(provider="openai", model="gpt-4", base_url="http://localhost"),
    )
    orchestrator = Orchestrator(provider=first)

    await orchestrator.execute("a")
    orchestrator.switch_model(second)
    result = await orchestrator.execute("b")

    assert result.result == "from second"
    assert [m.content for m in second.calls[0]] == ["a", "from first", "b"]
    assert orchestrator.get_model_info()["model"] == "gpt-4"
    assert orchestrator.get_model_info()["context_window"] == 8192
    # 切换后按新模型的价格累计
    expected = (10 * 0.01 + 5 * 0.02) / 1000 + (10 * 0.03 + 5 * 0.06) / 1000
    assert result.cost_tracking.estimated_cost == pytest.approx(expected)


@pytest.mark.asyncio
async def test_switch_model_by_name():
    orchestrator = Orchestrator(provider=ScriptedProvider([]))

    orchestrator.switch_model("gpt-4o")

    assert orchestrator.provider.config.model == "gpt-4o"
    assert orchestrator.config.model.provider == "openai"
    assert orchestrator.get_model_info()["context_window"] == 128000
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_aclose_closes_replaced_providers():
    """被替换下来的、由编排器创建的提供方也会被关闭"""
    orchestrator = Orchestrator(
        model={"provider": "openai", "model": "gpt-4o", "api_key": "sk-test"}
    )
    first = orchestrator.provider

    orchestrator.switch_model({"provider": "openai", "model": "gpt-4o-mini", "api_key": "sk-test"})
    second = orchestrator.provider
    injected = ScriptedProvider([])
    orchestrator.switch_model(injected)
    await orchestrator.aclose()

    assert first is not second
    assert first._client.is_closed
    assert second._client.is_closed


def test_unknown_model_info():
    orchestrator = Orchestrator(provider=ScriptedProvider([]))

    info = orchestrator.get_model_info()

    assert info["model"] == "scripted-model"
    assert "error" in info


@pytest.mark.asyncio
async def test_streaming_flag_is_forwarded():
    provider = ScriptedProvider([reply("ok")])
    orchestrator = Orchestrator(provider=provider, streaming=True)

    await orchestrator.execute("go")

    assert provider.streaming_flags == [True]


@pytest.mark.asyncio
async def test_streaming_emits_content_deltas(noop_tool):
    """流式模式下每段输出文本都会先于 iteration 事件发出"""
    provider = ScriptedProvider(
        [call_tools(("c1", "noop", {}), content="先调用工具"), reply("完成")]
    )
    orchestrator = Orchestrator(provider=provider, tools=[noop_tool], streaming=True)
    events = _events(orchestrator)

    result = await orchestrator.execute("go")

    assert result.success is True
    assert [e.type for e in events] == [
        "start",
        "content_delta",
        "iteration",
        "tool_call",
        "tool_result",
        "content_delta",
        "iteration",
        "complete",
    ]
    deltas = [(e.iteration, e.delta) for e in events if e.type == "content_delta"]
    assert deltas == [(1, "先调用工具"), (2, "完成")]


@pytest.mark.asyncio
async def test_no_content_deltas_without_streaming():
    orchestrator = Orchestrator(provider=ScriptedProvider([reply("done")]))
    events = _events(orchestrator)

    await orchestrator.execute("go")

    assert "content_delta" not in [e.type for e in events]


# --- 构造 ---


def test_construction_errors(echo_tool):
    with pytest.raises(ConfigurationError):
        Orchestrator()
    with pytest.raises(ConfigurationError):
        Orchestrator(provider=ScriptedProvider([]), max_iterations=0)
    with pytest.raises(ConfigurationError):
        Orchestrator(provider=ScriptedProvider([]), budget={"max_cost": -1})
    with pytest.raises(ConfigurationError):
        Orchestrator(model={"provider": "bogus", "model": "x"})
    with pytest.raises(DuplicateToolError):
        Orchestrator(provider=ScriptedProvider([]), tools=[echo_tool, echo_tool])


def test_system_prompt_seeded_once():
    orchestrator = Orchestrator(provider=ScriptedProvider([]), system_prompt="sys")

    assert orchestrator.get_messages() == (Message(role="system", content="sys"),)
    assert orchestrator.max_iterations == 10


@pytest.mark.asyncio
async def test_from_config(echo_tool):
    provider = ScriptedProvider([reply("ok")])
    config = OrchestratorConfig(
        model=provider.config, tools=[echo_tool], system_prompt="sys", max_iterations=3
    )

    orchestrator = Orchestrator.from_config(config, provider=provider)
    result = await orchestrator.execute("go")

    assert result.success is True
    assert orchestrator.max_iterations == 3
    assert orchestrator.get_tool("echo") is echo_tool


def test_debug_mode_enables_logging():
    Orchestrator(provider=ScriptedProvider([]), debug_mode=True)

    assert is_logging_enabled()
