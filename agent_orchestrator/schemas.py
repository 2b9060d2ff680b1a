"""
编排器的数据模型定义模块

该模块包含:
- 对话消息与工具调用模型
- 工具定义与参数Schema模型
- 模型调用响应模型
- 成本跟踪与预算模型
- 执行结果模型
- 编排器事件类型定义
- 模型与编排器配置模型

公开接口:
- Message: 对话中的一条消息
- ToolCall: 模型请求的一次工具调用
- ParameterType / ToolParameter / ToolSpec / ToolDefinition: 工具能力契约
- Usage / CompletionResponse: 模型调用结果
- CostTracking / Budget / BudgetCheck / BudgetViolation: 成本与预算
- ExecutionResult: 一次 execute() 的最终结果
- OrchestratorEvent: 事件联合类型
- ModelConfig / OrchestratorConfig: 配置
"""

import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

# --- 对话消息 ---


class ToolCall(BaseModel):
    """模型请求的一次工具调用，参数保持序列化后的JSON字符串"""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: str = "{}"

    def parse_arguments(self) -> Dict[str, Any]:
        """解析参数字符串为字典"""
        if not self.arguments or not self.arguments.strip():
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError as e:
            raise ValueError(f"参数JSON字符串无效: {e}")
        if not isinstance(parsed, dict):
            raise ValueError("参数必须是JSON对象")
        return parsed


MessageRole = Literal["system", "user", "assistant", "tool"]


class Message(BaseModel):
    """对话中的一条消息，追加之后不可修改"""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = ""
    tool_call_id: Optional[str] = None
    tool_calls: Optional[Tuple[ToolCall, ...]] = None

    @model_validator(mode="after")
    def _check_role_fields(self):
        if self.tool_call_id is not None and self.role != "tool":
            raise ValueError("只有 tool 消息可以携带 tool_call_id")
        if self.tool_calls and self.role != "assistant":
            raise ValueError("只有 assistant 消息可以携带 tool_calls")
        return self


# --- 工具定义 ---


class ParameterType(str, Enum):
    """工具参数类型（封闭集合）"""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


class ToolParameter(BaseModel):
    """单个工具参数的声明"""

    type: ParameterType
    description: str = ""
    required: bool = False
    enum: Optional[List[Any]] = None


class ToolSpec(BaseModel):
    """交给模型提供方的工具描述（不含执行函数）"""

    name: str
    description: str
    parameters: Dict[str, ToolParameter] = Field(default_factory=dict)

    def json_schema(self) -> Dict[str, Any]:
        """转换为JSON Schema格式的参数定义"""
        properties: Dict[str, Any] = {}
        required: List[str] = []
        for param_name, param in self.parameters.items():
            prop: Dict[str, Any] = {"type": param.type.value}
            if param.description:
                prop["description"] = param.description
            if param.enum is not None:
                prop["enum"] = list(param.enum)
            properties[param_name] = prop
            if param.required:
                required.append(param_name)
        return {"type": "object", "properties": properties, "required": required}


ToolExecuteFunc = Callable[[Dict[str, Any]], Awaitable[Any]]


class ToolDefinition(ToolSpec):
    """
    工具能力契约

    execute 接收已校验的参数字典，返回任意可序列化的结果，失败时抛出异常。
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    execute: ToolExecuteFunc
    category: Optional[str] = None
    version: Optional[str] = None

    def to_spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters={k: v.model_copy() for k, v in self.parameters.items()},
        )


# --- 模型调用响应 ---


class Usage(BaseModel):
    """token 使用情况"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResponse(BaseModel):
    """模型提供方返回的统一响应"""

    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    usage: Optional[Usage] = None
    id: Optional[str] = None
    finish_reason: Optional[str] = None


# --- 成本与预算 ---


class CostTracking(BaseModel):
    """累计成本统计"""

    input_tokens: int = 0
    output_tokens: int = 0
    tool_calls: int = 0
    estimated_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class Budget(BaseModel):
    """可选的预算上限，任一字段存在即为硬上限"""

    max_cost: Optional[float] = Field(default=None, ge=0)
    max_tokens: Optional[int] = Field(default=None, ge=0)
    max_tool_calls: Optional[int] = Field(default=None, ge=0)


BudgetResource = Literal["cost", "tokens", "tool_calls"]


class BudgetViolation(BaseModel):
    """单项预算违规"""

    resource: BudgetResource
    current_value: Union[int, float]
    limit: Union[int, float]


class BudgetCheck(BaseModel):
    """预算检查结果"""

    within_budget: bool
    violations: List[str] = Field(default_factory=list)
    details: List[BudgetViolation] = Field(default_factory=list)


# --- 执行结果 ---


class ExecutionResult(BaseModel):
    """execute() 的最终产物，失败时 success=False 且 error 有值"""

    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)
    cost_tracking: CostTracking = Field(default_factory=CostTracking)
    iterations: int = 0
    tool_calls_used: List[str] = Field(default_factory=list)


# --- 编排器事件 ---


class StartEvent(BaseModel):
    """执行开始事件"""

    type: Literal["start"] = "start"
    config: Dict[str, Any]


class IterationEvent(BaseModel):
    """一次模型调用完成事件"""

    type: Literal["iteration"] = "iteration"
    iteration: int
    message: Message


class ContentDeltaEvent(BaseModel):
    """流式模式下收到的一段模型输出文本"""

    type: Literal["content_delta"] = "content_delta"
    iteration: int
    delta: str


class ToolCallEvent(BaseModel):
    """工具调用开始事件"""

    type: Literal["tool_call"] = "tool_call"
    tool_name: str
    tool_call_id: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(BaseModel):
    """工具调用结果事件"""

    type: Literal["tool_result"] = "tool_result"
    tool_name: str
    tool_call_id: str
    success: bool
    result: Any = None
    error: Optional[str] = None


class CompleteEvent(BaseModel):
    """执行成功事件"""

    type: Literal["complete"] = "complete"
    result: ExecutionResult


class ErrorEvent(BaseModel):
    """执行失败事件"""

    type: Literal["error"] = "error"
    error: str
    iteration: int
    result: ExecutionResult


OrchestratorEvent = Union[
    StartEvent,
    ContentDeltaEvent,
    IterationEvent,
    ToolCallEvent,
    ToolResultEvent,
    CompleteEvent,
    ErrorEvent,
]

EventHandler = Callable[[OrchestratorEvent], Any]

# --- 配置 ---

ProviderName = Literal[
    "openai", "anthropic", "google", "google-vertex", "perplexity", "xai", "custom"
]


class ModelConfig(BaseModel):
    """统一的模型描述，凭据必须显式传入"""

    provider: ProviderName
    model: str = Field(min_length=1)
    api_key: Optional[str] = Field(default=None, repr=False)
    base_url: Optional[str] = None
    temperature: Optional[float] = Field(default=0.7, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    project: Optional[str] = None
    location: Optional[str] = None

    def public_dict(self) -> Dict[str, Any]:
        """不含凭据的配置视图，用于事件与日志"""
        return self.model_dump(exclude={"api_key"}, exclude_none=True)


class OrchestratorConfig(BaseModel):
    """编排器配置"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: ModelConfig
    tools: List[ToolDefinition] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    budget: Optional[Budget] = None
    max_iterations: int = Field(default=10, ge=1)
    streaming: bool = False
