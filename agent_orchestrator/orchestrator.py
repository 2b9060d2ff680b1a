"""
编排器核心模块

该模块包含:
- 消息历史管理
- 迭代控制（调用模型 -> 执行工具 -> 回填结果 -> 继续）
- 预算与迭代上限检查
- 生命周期事件分发

公开接口:
- Orchestrator: 编排器

内部方法:
- Orchestrator._run: 执行主循环
- Orchestrator._execute_tool_call: 执行单个工具调用
- _serialize_tool_result: 序列化工具结果
"""

import json
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ValidationError

from .config import resolve_model
from .cost import CostTracker, make_cost_function
from .events import EventEmitter
from .exceptions import (
    BudgetExceededError,
    ConcurrentExecutionError,
    ConfigurationError,
    MaxIterationsError,
    OrchestratorError,
    ToolError,
    ToolValidationError,
)
from .logger_config import (
    enable_logging,
    log_agent_completion,
    log_agent_iteration,
    module_logger,
)
from .providers import ModelProvider, create_provider
from .schemas import (
    Budget,
    CompleteEvent,
    ContentDeltaEvent,
    CostTracking,
    ErrorEvent,
    EventHandler,
    ExecutionResult,
    IterationEvent,
    Message,
    ModelConfig,
    OrchestratorConfig,
    OrchestratorEvent,
    StartEvent,
    ToolCall,
    ToolCallEvent,
    ToolDefinition,
    ToolResultEvent,
)
from .tools import ToolRegistry, as_tool_definition

logger = module_logger("编排器")

OrchestratorState = Literal["idle", "running", "completed", "failed"]
ExecuteInput = Union[str, Sequence[Union[Message, Mapping[str, Any]]]]


def _serialize_tool_result(result: Any) -> str:
    """把工具结果序列化为JSON字符串，无法序列化的对象退化为字符串"""
    payload = result.model_dump(mode="json") if isinstance(result, BaseModel) else result
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return json.dumps(str(result), ensure_ascii=False)


class Orchestrator:
    """
    工具调用编排器

    每次 execute() 追加用户消息，然后循环：检查预算 -> 调用模型 -> 追加助手消息 ->
    按顺序执行模型请求的工具并追加结果，直到模型不再请求工具或达到迭代上限。
    execute() 总是返回 ExecutionResult，失败通过 success=False 表示。

    同一实例同一时间只允许一次 execute()。
    """

    def __init__(
        self,
        model: Optional[Union[str, ModelConfig, Mapping[str, Any]]] = None,
        tools: Optional[Sequence[Union[ToolDefinition, Callable]]] = None,
        system_prompt: Optional[str] = None,
        budget: Optional[Union[Budget, Mapping[str, Any]]] = None,
        max_iterations: int = 10,
        streaming: bool = False,
        provider: Optional[ModelProvider] = None,
        debug_mode: bool = False,
    ):
        """
        初始化编排器

        Args:
            model: 模型描述（模型名、ModelConfig 或字典），提供了 provider 时可省略
            tools: 初始工具列表（ToolDefinition 或 @tool 装饰的函数）
            system_prompt: 系统提示词，作为第一条消息写入历史
            budget: 预算上限
            max_iterations: 单次 execute() 的最大迭代次数
            streaming: 是否使用流式接口调用模型
            provider: 直接注入的模型提供方，缺省时根据 model 创建
            debug_mode: 是否启用库日志（DEBUG级别）

        Raises:
            ConfigurationError: 配置无效或工具重名
        """
        if debug_mode:
            enable_logging(True, "DEBUG")

        if model is None:
            if provider is None:
                raise ConfigurationError("必须提供 model 或 provider")
            model_config = provider.config
        else:
            model_config = resolve_model(model)

        try:
            config = OrchestratorConfig(
                model=model_config,
                tools=[as_tool_definition(item) for item in tools or []],
                system_prompt=system_prompt,
                budget=budget,
                max_iterations=max_iterations,
                streaming=streaming,
            )
        except ValidationError as e:
            raise ConfigurationError(f"编排器配置无效: {e}") from e

        self._setup(config, provider)

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        provider: Optional[ModelProvider] = None,
        debug_mode: bool = False,
    ) -> "Orchestrator":
        """根据 OrchestratorConfig 创建编排器"""
        if debug_mode:
            enable_logging(True, "DEBUG")
        instance = cls.__new__(cls)
        instance._setup(config, provider)
        return instance

    def _setup(self, config: OrchestratorConfig, provider: Optional[ModelProvider]) -> None:
        self._config = config
        self._provider = provider or create_provider(config.model)
        self._owns_provider = provider is None
        # 切换模型时被替换、且由编排器创建的提供方，在 aclose() 时关闭
        self._retired_providers: List[ModelProvider] = []
        self._registry = ToolRegistry(config.tools)
        self._cost_tracker = CostTracker(self._cost_function_for(self._provider))
        self._events: EventEmitter[OrchestratorEvent] = EventEmitter()
        self._messages: List[Message] = []
        self._iterations = 0
        self._state: OrchestratorState = "idle"
        self._running = False
        self._seed_history()

    @staticmethod
    def _cost_function_for(provider: Any):
        cost_function = getattr(provider, "cost_function", None)
        if callable(cost_function):
            return cost_function()
        config = getattr(provider, "config", None)
        return make_cost_function(
            getattr(config, "provider", None), getattr(config, "model", None)
        )

    def _seed_history(self) -> None:
        self._messages = []
        if self._config.system_prompt is not None:
            self._messages.append(Message(role="system", content=self._config.system_prompt))

    def _guard(self, operation: str) -> None:
        if self._running:
            raise ConcurrentExecutionError(operation)

    # --- 属性 ---

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def max_iterations(self) -> int:
        return self._config.max_iterations

    @property
    def config(self) -> OrchestratorConfig:
        return self._config.model_copy()

    @property
    def provider(self) -> ModelProvider:
        return self._provider

    @property
    def is_running(self) -> bool:
        return self._running

    # --- 执行 ---

    async def execute(self, user_input: ExecuteInput) -> ExecutionResult:
        """
        执行一次编排

        Args:
            user_input: 新的用户输入，或要追加到历史中的消息列表

        Returns:
            ExecutionResult: 执行结果，失败时 success=False

        Raises:
            ConfigurationError: 输入格式无效
            ConcurrentExecutionError: 已有执行在进行中
        """
        self._guard("execute")
        new_messages = self._coerce_input(user_input)

        self._running = True
        self._state = "running"
        self._iterations = 0
        try:
            return await self._run(new_messages)
        finally:
            self._running = False

    def _coerce_input(self, user_input: ExecuteInput) -> List[Message]:
        if isinstance(user_input, str):
            return [Message(role="user", content=user_input)]
        if not isinstance(user_input, Sequence) or isinstance(user_input, (bytes, bytearray)):
            raise ConfigurationError("输入必须是字符串或消息列表")
        if not user_input:
            raise ConfigurationError("消息列表不能为空")

        messages: List[Message] = []
        for index, item in enumerate(user_input):
            try:
                message = item if isinstance(item, Message) else Message.model_validate(item)
            except ValidationError as e:
                raise ConfigurationError(f"第 {index + 1} 条消息无效: {e}") from e

            if message.role == "system":
                # 只有历史为空时，第一条系统消息才能作为种子
                if not self._messages and not messages:
                    messages.append(message)
                else:
                    logger.warning("已有历史消息，忽略输入中的系统消息")
                continue
            messages.append(message)
        return messages

    async def _run(self, new_messages: List[Message]) -> ExecutionResult:
        max_iterations = self._config.max_iterations
        # 显式记录是否干净结束，不能只靠计数器判断
        finished_cleanly = False

        try:
            self._emit(StartEvent(config=self._describe_config()))
            for message in new_messages:
                self._messages.append(message)

            while self._iterations < max_iterations:
                self._iterations += 1
                log_agent_iteration(self._iterations, max_iterations)

                self._enforce_budget()

                response = await self._provider.complete(
                    tuple(self._messages),
                    self._registry.get_definitions(),
                    self._config.streaming,
                    self._emit_content_delta if self._config.streaming else None,
                )

                if response.usage is not None:
                    self._cost_tracker.update_token_usage(
                        response.usage.prompt_tokens, response.usage.completion_tokens
                    )

                assistant_message = Message(
                    role="assistant",
                    content=response.content or "",
                    tool_calls=tuple(response.tool_calls) or None,
                )
                self._messages.append(assistant_message)
                self._emit(IterationEvent(iteration=self._iterations, message=assistant_message))

                if response.tool_calls:
                    logger.info(f"模型请求 {len(response.tool_calls)} 个工具")
                    # 严格按返回顺序逐个执行，每个结果写入历史后才执行下一个
                    for tool_call in response.tool_calls:
                        await self._execute_tool_call(tool_call)
                    continue

                finished_cleanly = True
                break

            if not finished_cleanly:
                raise MaxIterationsError(max_iterations)

        except Exception as e:
            return self._fail(e)

        log_agent_completion("模型未再请求工具", self._iterations, max_iterations)
        result = self._build_result(success=True, result=self._messages[-1].content)
        self._state = "completed"
        self._emit(CompleteEvent(result=result))
        return result

    def _enforce_budget(self) -> None:
        budget = self._config.budget
        if budget is None:
            return
        check = self._cost_tracker.check_budget(budget)
        if not check.within_budget:
            violation = check.details[0]
            raise BudgetExceededError(violation.resource, violation.current_value, violation.limit)

    async def _execute_tool_call(self, tool_call: ToolCall) -> None:
        try:
            arguments = tool_call.parse_arguments()
        except ValueError as e:
            self._emit(
                ToolCallEvent(tool_name=tool_call.name, tool_call_id=tool_call.id, arguments={})
            )
            self._record_tool_failure(
                tool_call, ToolValidationError(tool_call.name, None, f"invalid JSON arguments: {e}")
            )
            return

        self._emit(
            ToolCallEvent(tool_name=tool_call.name, tool_call_id=tool_call.id, arguments=arguments)
        )
        try:
            result = await self._registry.execute(tool_call.name, arguments)
        except ToolError as e:
            self._record_tool_failure(tool_call, e)
            return

        self._cost_tracker.increment_tool_calls()
        self._emit(
            ToolResultEvent(
                tool_name=tool_call.name,
                tool_call_id=tool_call.id,
                success=True,
                result=result,
            )
        )
        self._messages.append(
            Message(role="tool", content=_serialize_tool_result(result), tool_call_id=tool_call.id)
        )

    def _record_tool_failure(self, tool_call: ToolCall, error: ToolError) -> None:
        """
        工具失败不会中断循环，错误以工具结果的形式反馈给模型

        失败的调用同样计入 tool_calls：每次分派都算一次调用，无论成功与否。
        """
        logger.warning(f"工具 '{tool_call.name}' 调用失败: {error}")
        self._cost_tracker.increment_tool_calls()
        self._emit(
            ToolResultEvent(
                tool_name=tool_call.name,
                tool_call_id=tool_call.id,
                success=False,
                error=error.detail,
            )
        )
        self._messages.append(
            Message(role="tool", content=f"Error: {error.detail}", tool_call_id=tool_call.id)
        )

    def _fail(self, error: Exception) -> ExecutionResult:
        error_message = str(error) or type(error).__name__
        if isinstance(error, OrchestratorError):
            logger.error(f"执行失败: {error_message}")
        else:
            logger.exception(f"执行时出现未预期的错误: {error_message}")
        log_agent_completion(f"失败 ({type(error).__name__})", self._iterations, self.max_iterations)

        result = self._build_result(success=False, error=error_message)
        self._state = "failed"
        self._emit(ErrorEvent(error=error_message, iteration=self._iterations, result=result))
        return result

    def _build_result(
        self, success: bool, result: Any = None, error: Optional[str] = None
    ) -> ExecutionResult:
        return ExecutionResult(
            success=success,
            result=result,
            error=error,
            messages=list(self._messages),
            cost_tracking=self._cost_tracker.get_tracking(),
            iterations=self._iterations,
            tool_calls_used=self._registry.get_used_tools(),
        )

    def _describe_config(self) -> Dict[str, Any]:
        budget = self._config.budget
        return {
            "model": self._provider.config.public_dict(),
            "tools": [definition.name for definition in self._registry.get_all_tools()],
            "system_prompt": self._config.system_prompt,
            "budget": budget.model_dump(exclude_none=True) if budget else None,
            "max_iterations": self._config.max_iterations,
            "streaming": self._config.streaming,
        }

    # --- 事件 ---

    def on_event(self, handler: EventHandler) -> None:
        """
        订阅生命周期事件: start / content_delta / iteration / tool_call / tool_result / complete / error

        content_delta 只在流式模式下出现，每段模型输出文本一个事件，先于该轮的 iteration 事件。
        """
        self._events.on(handler)

    def off_event(self, handler: EventHandler) -> bool:
        return self._events.off(handler)

    def _emit(self, event: OrchestratorEvent) -> None:
        self._events.emit(event)

    def _emit_content_delta(self, delta: str) -> None:
        self._emit(ContentDeltaEvent(iteration=self._iterations, delta=delta))

    # --- 工具管理 ---

    def add_tool(self, item: Union[ToolDefinition, Callable]) -> ToolDefinition:
        self._guard("add_tool")
        return self._registry.register(item)

    def remove_tool(self, name: str) -> bool:
        self._guard("remove_tool")
        return self._registry.unregister(name)

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return self._registry.get_tool(name)

    def get_all_tools(self) -> List[ToolDefinition]:
        return self._registry.get_all_tools()

    def get_used_tools(self) -> List[str]:
        return self._registry.get_used_tools()

    # --- 模型管理 ---

    def switch_model(self, model: Union[str, ModelConfig, Mapping[str, Any], ModelProvider]) -> None:
        """替换模型提供方，消息历史与成本统计保持不变"""
        self._guard("switch_model")
        if isinstance(model, ModelProvider):
            provider, owns_provider = model, False
        else:
            provider, owns_provider = create_provider(resolve_model(model)), True
        if self._owns_provider:
            self._retired_providers.append(self._provider)
        self._provider = provider
        self._owns_provider = owns_provider
        self._config = self._config.model_copy(update={"model": provider.config})
        self._cost_tracker.set_cost_function(self._cost_function_for(provider))
        logger.info(f"已切换模型: {provider.config.provider}/{provider.config.model}")

    def get_model_info(self) -> Dict[str, Any]:
        return self._provider.get_model_info()

    # --- 状态查询 ---

    def get_messages(self) -> Tuple[Message, ...]:
        """消息历史的不可变快照"""
        return tuple(self._messages)

    def get_cost_tracking(self) -> CostTracking:
        return self._cost_tracker.get_tracking()

    def reset(self) -> None:
        """恢复到只有系统消息的初始状态，事件订阅保留"""
        self._guard("reset")
        self._seed_history()
        self._iterations = 0
        self._state = "idle"
        self._cost_tracker.reset()
        self._registry.reset()

    async def aclose(self) -> None:
        """关闭当前模型提供方以及切换模型时替换下来的提供方持有的连接"""
        while self._retired_providers:
            await self._retired_providers.pop().aclose()
        await self._provider.aclose()
