"""
Agent Orchestrator - 工具调用编排库

驱动大模型完成"调用模型 -> 执行工具 -> 回填结果 -> 继续"的循环，
直到模型给出最终回答、达到迭代上限或超出预算。

主要功能:
- 🔁 编排循环 - 严格顺序执行工具调用，消息历史只追加不修改
- 🛠️ 工具系统 - 装饰器式工具定义，参数类型与枚举校验
- 💰 成本跟踪 - token与工具调用计数，按模型价格估算成本，预算硬上限
- 🤖 模型适配 - OpenAI兼容接口（支持流式聚合）与Anthropic接口
- 📣 生命周期事件 - start / iteration / tool_call / tool_result / complete / error

使用示例:
    from agent_orchestrator import Orchestrator, load_model_config, tool

    @tool
    def get_weather(city: str) -> str:
        \"\"\"获取城市天气

        Args:
            city: 城市名称
        \"\"\"
        return f"{city}今天晴朗，温度25°C"

    orchestrator = Orchestrator(
        model=load_model_config("gpt-4o-mini"),
        tools=[get_weather],
        system_prompt="你是一个智能助手",
        budget={"max_cost": 0.5},
        debug_mode=True,  # 开发环境启用日志
    )

    result = await orchestrator.execute("北京天气怎么样？")
    if result.success:
        print(result.result)
"""

__version__ = "0.1.0"
__author__ = "Jese Ki"
__email__ = "209490107@qq.com"
__description__ = "工具调用编排库 - 提供编排循环、工具调度、成本跟踪与模型适配"

from .schemas import (
    Message,
    ToolCall,
    ParameterType,
    ToolParameter,
    ToolSpec,
    ToolDefinition,
    Usage,
    CompletionResponse,
    CostTracking,
    Budget,
    BudgetCheck,
    BudgetViolation,
    ExecutionResult,
    StartEvent,
    ContentDeltaEvent,
    IterationEvent,
    ToolCallEvent,
    ToolResultEvent,
    CompleteEvent,
    ErrorEvent,
    OrchestratorEvent,
    ModelConfig,
    OrchestratorConfig,
)

from .tools import ToolRegistry, tool, as_tool_definition

from .cost import CostTracker, ModelInfo, get_model_info, calculate_cost, get_all_models

from .providers import (
    ModelProvider,
    ChunkHandler,
    OpenAICompatibleProvider,
    AnthropicProvider,
    create_provider,
)

from .events import EventEmitter

from .config import load_model_config, resolve_model, infer_provider

from .orchestrator import Orchestrator

from .presets import (
    simple_orchestrator,
    conversational_orchestrator,
    task_orchestrator,
    TaskStep,
    TaskProgress,
    TaskStepResult,
    TaskRunner,
)

from .builtin_tools import calculator, timestamp, http_request, BUILTIN_TOOLS

from .logger_config import (
    enable_logging,
    disable_logging,
    is_logging_enabled,
    setup_logger,
)

from .exceptions import (
    OrchestratorError,
    ConfigurationError,
    DuplicateToolError,
    ProviderError,
    ToolError,
    ToolNotFoundError,
    ToolValidationError,
    ToolExecutionError,
    BudgetExceededError,
    MaxIterationsError,
    ConcurrentExecutionError,
)

__all__ = [
    # 核心类
    "Orchestrator",
    "ToolRegistry",
    "CostTracker",
    "EventEmitter",
    # 模型提供方
    "ModelProvider",
    "ChunkHandler",
    "OpenAICompatibleProvider",
    "AnthropicProvider",
    "create_provider",
    # 配置
    "load_model_config",
    "resolve_model",
    "infer_provider",
    # 价格目录
    "ModelInfo",
    "get_model_info",
    "calculate_cost",
    "get_all_models",
    # 工具相关
    "tool",
    "as_tool_definition",
    "calculator",
    "timestamp",
    "http_request",
    "BUILTIN_TOOLS",
    # 预设
    "simple_orchestrator",
    "conversational_orchestrator",
    "task_orchestrator",
    "TaskStep",
    "TaskProgress",
    "TaskStepResult",
    "TaskRunner",
    # 日志控制
    "enable_logging",
    "disable_logging",
    "is_logging_enabled",
    "setup_logger",
    # 类型定义
    "Message",
    "ToolCall",
    "ParameterType",
    "ToolParameter",
    "ToolSpec",
    "ToolDefinition",
    "Usage",
    "CompletionResponse",
    "CostTracking",
    "Budget",
    "BudgetCheck",
    "BudgetViolation",
    "ExecutionResult",
    "StartEvent",
    "ContentDeltaEvent",
    "IterationEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "CompleteEvent",
    "ErrorEvent",
    "OrchestratorEvent",
    "ModelConfig",
    "OrchestratorConfig",
    # 异常类
    "OrchestratorError",
    "ConfigurationError",
    "DuplicateToolError",
    "ProviderError",
    "ToolError",
    "ToolNotFoundError",
    "ToolValidationError",
    "ToolExecutionError",
    "BudgetExceededError",
    "MaxIterationsError",
    "ConcurrentExecutionError",
]
