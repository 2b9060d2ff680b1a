"""
工具系统模块

该模块包含:
- 工具注册表（注册、移除、校验、调度、使用跟踪）
- @tool装饰器实现
- 根据函数签名动态生成参数声明

公开接口:
- ToolRegistry: 工具注册表
- tool: 工具装饰器
- as_tool_definition: 把装饰过的函数或ToolDefinition统一为ToolDefinition

内部方法:
- _matches_type: 参数类型匹配
- _parameter_for_annotation: 根据Python类型生成参数声明
- _parse_docstring: 解析docstring的摘要与Args部分
"""

import inspect
import types
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Literal,
    Optional,
    Set,
    Tuple,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import BaseModel, ValidationError

from .exceptions import (
    ConfigurationError,
    DuplicateToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
)
from .logger_config import log_tool_execution, log_tool_registration, module_logger
from .schemas import ParameterType, ToolDefinition, ToolParameter, ToolSpec

logger = module_logger("工具系统")

_TOOL_ATTRIBUTE = "_tool_definition"


def _matches_type(value: Any, expected: ParameterType) -> bool:
    """判断运行时值是否匹配声明的参数类型"""
    if expected is ParameterType.STRING:
        return isinstance(value, str)
    if expected is ParameterType.NUMBER:
        # bool 是 int 的子类，需要单独排除
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected is ParameterType.BOOLEAN:
        return isinstance(value, bool)
    if expected is ParameterType.OBJECT:
        return isinstance(value, dict)
    if expected is ParameterType.ARRAY:
        return isinstance(value, (list, tuple))
    raise AssertionError(f"未处理的参数类型: {expected}")


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


def as_tool_definition(obj: Union[ToolDefinition, Callable]) -> ToolDefinition:
    """
    把工具统一为ToolDefinition

    Args:
        obj: ToolDefinition 或被 @tool 装饰过的函数

    Returns:
        ToolDefinition: 工具定义
    """
    if isinstance(obj, ToolDefinition):
        return obj
    definition = getattr(obj, _TOOL_ATTRIBUTE, None)
    if isinstance(definition, ToolDefinition):
        return definition
    raise ConfigurationError(
        f"无效的工具: {obj!r}，需要 ToolDefinition 或使用 @tool 装饰的函数"
    )


class ToolRegistry:
    """
    工具注册表

    持有 名称 -> 工具定义 的映射，负责参数校验与调度，并记录本次会话用过的工具。
    """

    def __init__(self, tools: Optional[List[Union[ToolDefinition, Callable]]] = None):
        self._tools: Dict[str, ToolDefinition] = {}
        self._used_tools: Set[str] = set()
        # 保留首次使用顺序
        self._used_order: List[str] = []
        for item in tools or []:
            self.register(item)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(self, item: Union[ToolDefinition, Callable]) -> ToolDefinition:
        """
        注册工具

        Raises:
            DuplicateToolError: 同名工具已存在
            ConfigurationError: 工具定义不完整
        """
        definition = as_tool_definition(item)
        if not definition.name or not definition.name.strip():
            raise ConfigurationError("工具名称不能为空")
        if not definition.description:
            raise ConfigurationError(f"工具 '{definition.name}' 缺少描述")
        if definition.name in self._tools:
            raise DuplicateToolError(definition.name)

        self._tools[definition.name] = definition
        log_tool_registration(definition.name, list(definition.parameters.keys()))
        return definition

    def unregister(self, name: str) -> bool:
        """移除工具，返回是否真的移除了"""
        removed = self._tools.pop(name, None) is not None
        if removed:
            logger.debug(f"工具 '{name}' 已移除")
        return removed

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def get_all_tools(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def get_definitions(self) -> List[ToolSpec]:
        """当前注册工具的快照，交给模型提供方作为可用工具列表"""
        return [definition.to_spec() for definition in self._tools.values()]

    def get_used_tools(self) -> List[str]:
        return list(self._used_order)

    def validate(self, name: str, args: Dict[str, Any]) -> None:
        """
        按参数声明校验调用参数

        Raises:
            ToolNotFoundError: 工具不存在
            ToolValidationError: 缺少必需参数、类型不匹配或不在枚举值内
        """
        definition = self._tools.get(name)
        if definition is None:
            raise ToolNotFoundError(name)
        if not isinstance(args, dict):
            raise ToolValidationError(name, None, "参数必须是对象")

        for param_name, param in definition.parameters.items():
            if param_name not in args:
                if param.required:
                    raise ToolValidationError(
                        name, param_name, f"缺少必需参数 '{param_name}'"
                    )
                continue

            value = args[param_name]
            if not _matches_type(value, param.type):
                raise ToolValidationError(
                    name,
                    param_name,
                    f"参数 '{param_name}' 类型应为 {param.type.value}，实际为 {_type_name(value)}",
                )
            if param.enum is not None and value not in param.enum:
                raise ToolValidationError(
                    name,
                    param_name,
                    f"参数 '{param_name}' 的值 {value!r} 不在允许范围 {param.enum} 内",
                )

    async def execute(self, name: str, args: Dict[str, Any]) -> Any:
        """
        校验并执行工具

        Args:
            name: 工具名称
            args: 调用参数

        Returns:
            Any: 工具的原始返回值

        Raises:
            ToolNotFoundError / ToolValidationError / ToolExecutionError
        """
        self.validate(name, args)
        definition = self._tools[name]

        if name not in self._used_tools:
            self._used_tools.add(name)
            self._used_order.append(name)

        try:
            result = await definition.execute(args)
        except Exception as e:
            log_tool_execution(name, args, False, error=str(e))
            raise ToolExecutionError(name, str(e), original_error=e) from e

        log_tool_execution(name, args, True, result=result)
        return result

    def reset(self) -> None:
        """只清空使用跟踪，已注册的工具保留"""
        self._used_tools.clear()
        self._used_order.clear()


# --- @tool 装饰器 ---

_SIMPLE_TYPES: Dict[Any, ParameterType] = {
    str: ParameterType.STRING,
    int: ParameterType.NUMBER,
    float: ParameterType.NUMBER,
    bool: ParameterType.BOOLEAN,
    dict: ParameterType.OBJECT,
    Dict: ParameterType.OBJECT,
    list: ParameterType.ARRAY,
    List: ParameterType.ARRAY,
    tuple: ParameterType.ARRAY,
    Tuple: ParameterType.ARRAY,
}


# int | str 写法的联合类型（Python 3.10+）
_UNION_ORIGINS = (Union, getattr(types, "UnionType", Union))


def _unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
    """Optional[T] -> (T, True)，Optional[Union[A, B]] -> (Union[A, B], True)"""
    if get_origin(annotation) in _UNION_ORIGINS:
        args = get_args(annotation)
        non_none = tuple(arg for arg in args if arg is not type(None))
        if len(non_none) < len(args):
            if len(non_none) == 1:
                return non_none[0], True
            return Union[non_none], True
    return annotation, False


def _parameter_for_annotation(annotation: Any) -> Tuple[Optional[ParameterType], Optional[List[Any]]]:
    """
    根据Python类型得到参数类型与可选的枚举值

    Returns:
        (ParameterType, enum)，无法映射（Any、成员类型不一致的联合等）时类型为 None
    """
    if annotation in _SIMPLE_TYPES:
        return _SIMPLE_TYPES[annotation], None

    origin = get_origin(annotation)
    if origin is Literal:
        values = list(get_args(annotation))
        kind = ParameterType.STRING
        if values:
            kind, _ = _parameter_for_annotation(type(values[0]))
        return kind, values
    if origin in _UNION_ORIGINS:
        # 只有所有成员映射到同一种参数类型时才接受，例如 Union[int, float]
        kinds = {_parameter_for_annotation(arg)[0] for arg in get_args(annotation)}
        if len(kinds) == 1:
            return kinds.pop(), None
        return None, None
    if origin in _SIMPLE_TYPES:
        return _SIMPLE_TYPES[origin], None
    if inspect.isclass(annotation) and issubclass(annotation, BaseModel):
        return ParameterType.OBJECT, None

    return None, None


def _parse_docstring(doc: Optional[str]) -> Tuple[str, Dict[str, str]]:
    """
    解析docstring

    Returns:
        (描述摘要, 参数名 -> 参数描述)
    """
    if not doc:
        return "", {}

    summary_lines: List[str] = []
    param_docs: Dict[str, str] = {}
    section = "summary"
    for raw_line in inspect.cleandoc(doc).split("\n"):
        line = raw_line.strip()
        if line.startswith("Args:"):
            section = "args"
            continue
        if line.startswith(("Returns:", "Raises:", "Yields:", "Examples:")):
            section = "other"
            continue

        if section == "summary" and line:
            summary_lines.append(line)
        elif section == "args" and ":" in line:
            param_part, desc_part = line.split(":", 1)
            # 兼容 "name (type): desc" 写法
            param_name = param_part.split("(")[0].strip()
            if param_name and desc_part.strip():
                param_docs[param_name] = desc_part.strip()

    return " ".join(summary_lines), param_docs


def _build_definition(
    func: Callable,
    name: Optional[str] = None,
    description: Optional[str] = None,
    category: Optional[str] = None,
) -> ToolDefinition:
    func_name = name or func.__name__
    signature = inspect.signature(func)
    try:
        type_hints = get_type_hints(func)
    except (NameError, TypeError):
        type_hints = {}

    summary, param_docs = _parse_docstring(func.__doc__)

    parameters: Dict[str, ToolParameter] = {}
    for param_name, param in signature.parameters.items():
        if param_name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        annotation, optional = _unwrap_optional(type_hints.get(param_name, str))
        kind, enum = _parameter_for_annotation(annotation)
        if kind is None:
            raise ConfigurationError(
                f"无法为函数 '{func_name}' 的参数 '{param_name}' 确定类型: {annotation!r}"
            )
        parameters[param_name] = ToolParameter(
            type=kind,
            description=param_docs.get(param_name, ""),
            required=param.default is inspect.Parameter.empty and not optional,
            enum=enum,
        )

    is_async = inspect.iscoroutinefunction(func)

    async def _execute(args: Dict[str, Any]) -> Any:
        if is_async:
            return await func(**args)
        result = func(**args)
        if inspect.isawaitable(result):
            result = await result
        return result

    try:
        return ToolDefinition(
            name=func_name,
            description=description or summary or f"工具函数 {func_name}",
            parameters=parameters,
            execute=_execute,
            category=category,
        )
    except ValidationError as e:
        raise ConfigurationError(f"无法为函数 '{func_name}' 生成工具定义: {e}") from e


def tool(
    func: Optional[Callable] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    category: Optional[str] = None,
):
    """
    将函数声明为可调用工具的装饰器

    生成的ToolDefinition保存在函数的 _tool_definition 属性上，函数本身不被修改，
    可以直接传给 ToolRegistry 或 Orchestrator(tools=[...])。

    用法:
        @tool
        def get_weather(city: str) -> str: ...

        @tool(name="weather", category="utility")
        async def get_weather(city: str) -> str: ...
    """

    def decorator(f: Callable) -> Callable:
        setattr(f, _TOOL_ATTRIBUTE, _build_definition(f, name, description, category))
        return f

    if func is not None:
        return decorator(func)
    return decorator
