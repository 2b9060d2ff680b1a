"""
编排器的自定义异常

该模块包含:
- 配置相关的异常
- 模型提供方调用相关的异常
- 工具注册与执行相关的异常
- 预算与迭代限制相关的异常

公开接口:
- OrchestratorError: 所有异常的基类
- ConfigurationError / DuplicateToolError: 构造或注册时的输入错误
- ProviderError: 模型调用失败（统一包装底层错误）
- ToolError / ToolNotFoundError / ToolValidationError / ToolExecutionError: 工具调度错误
- BudgetExceededError: 预算超限
- MaxIterationsError: 达到最大迭代次数
- ConcurrentExecutionError: 同一实例上的并发执行
"""

from typing import Optional, Union


class OrchestratorError(Exception):
    """编排器错误基类"""

    pass


class ConfigurationError(OrchestratorError):
    """构造参数或注册输入不合法"""

    pass


class DuplicateToolError(ConfigurationError):
    """同名工具重复注册"""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"工具 '{tool_name}' 已经注册")


class ProviderError(OrchestratorError):
    """
    模型提供方调用失败

    无论底层是HTTP错误、网络错误还是响应格式错误，都统一包装为此异常，
    编排器不需要关心具体提供方的错误结构。
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


class ToolError(OrchestratorError):
    """
    工具调度错误基类

    detail 是不带工具名前缀的错误描述，编排器把它作为工具结果反馈给模型。
    """

    def __init__(self, tool_name: str, message: str, detail: Optional[str] = None):
        self.tool_name = tool_name
        self.detail = detail if detail is not None else message
        super().__init__(message)


class ToolNotFoundError(ToolError):
    """请求的工具不存在"""

    def __init__(self, tool_name: str):
        detail = f"工具 '{tool_name}' 未找到"
        super().__init__(tool_name, detail, detail)


class ToolValidationError(ToolError):
    """工具参数校验失败"""

    def __init__(self, tool_name: str, parameter: Optional[str], message: str):
        self.parameter = parameter
        super().__init__(tool_name, f"工具 '{tool_name}' 参数校验失败: {message}", message)


class ToolExecutionError(ToolError):
    """工具执行相关错误"""

    def __init__(
        self, tool_name: str, message: str, original_error: Optional[Exception] = None
    ):
        self.original_error = original_error
        super().__init__(tool_name, f"工具 '{tool_name}' 执行失败: {message}", message)


class BudgetExceededError(OrchestratorError):
    """预算超限，在发起下一次模型调用之前抛出"""

    def __init__(
        self,
        resource: str,
        current_value: Union[int, float],
        limit: Union[int, float],
    ):
        self.resource = resource
        self.current_value = current_value
        self.limit = limit
        super().__init__(
            f"预算超限 (budget exceeded): {resource} 当前值 {current_value}，上限 {limit}"
        )


class MaxIterationsError(OrchestratorError):
    """达到最大迭代次数但模型仍在请求工具"""

    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(f"已达到最大迭代次数 (max iterations): {max_iterations}")


class ConcurrentExecutionError(OrchestratorError):
    """同一个编排器实例上已有一次执行在进行中"""

    def __init__(self, operation: str = "execute"):
        self.operation = operation
        super().__init__(f"编排器正在执行中，无法调用 {operation}()")
