"""
内置工具

公开接口:
- calculator: 安全的数学表达式计算
- timestamp: 当前时间（支持时区与多种格式）
- http_request: 发送HTTP请求
- make_http_request_tool: 使用指定 httpx 传输层创建 http_request 工具
- BUILTIN_TOOLS: 以上工具的列表
"""

import ast
import math
import operator
from datetime import datetime, timezone as dt_timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from .logger_config import module_logger
from .schemas import ToolDefinition
from .tools import as_tool_definition, tool

logger = module_logger("内置工具")

# --- calculator ---

_BINARY_OPERATORS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPERATORS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "pow": math.pow,
    "sqrt": math.sqrt,
    "exp": math.exp,
    "log": math.log,
    "log2": math.log2,
    "log10": math.log10,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "floor": math.floor,
    "ceil": math.ceil,
}

_CONSTANTS: Dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
    "tau": math.tau,
}

# 避免 9**9**9 或 (10**9999)**2000 这类表达式长时间占用CPU
_MAX_EXPONENT = 10000
# 整数转字符串默认最多 4300 位
_MAX_RESULT_DIGITS = 4000

_MATH_NAMESPACES = ("math", "Math")


def _lookup(name: str, table: Dict[str, Any], kind: str) -> Any:
    value = table.get(name, table.get(name.lower()))
    if value is None:
        raise ValueError(f"不支持的{kind}: {name}")
    return value


def _resolve_name(node: ast.AST, table: Dict[str, Any], kind: str) -> Any:
    """支持 sqrt / math.sqrt / Math.sqrt 三种写法"""
    if isinstance(node, ast.Name):
        return _lookup(node.id, table, kind)
    if (
        isinstance(node, ast.Attribute)
        and isinstance(node.value, ast.Name)
        and node.value.id in _MATH_NAMESPACES
    ):
        return _lookup(node.attr, table, kind)
    raise ValueError(f"不支持的{kind}: {type(node).__name__}")


def _power(base: Union[int, float], exponent: Union[int, float]) -> Union[int, float]:
    """乘方，同时限制指数和整数结果的位数"""
    if abs(exponent) > _MAX_EXPONENT:
        raise ValueError("指数过大")
    if isinstance(base, int) and isinstance(exponent, int):
        if abs(base) > 1 and exponent * math.log10(abs(base)) > _MAX_RESULT_DIGITS:
            raise ValueError("计算结果过大")
        return base ** exponent
    # 浮点乘方溢出时立即抛出 OverflowError
    return math.pow(base, exponent)


def _evaluate(node: ast.AST) -> Union[int, float]:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant):
        if isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
            return node.value
        raise ValueError(f"不支持的常量: {node.value!r}")
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        if isinstance(node.op, ast.Pow):
            return _power(left, right)
        return _BINARY_OPERATORS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _UNARY_OPERATORS[type(node.op)](_evaluate(node.operand))
    if isinstance(node, (ast.Name, ast.Attribute)):
        return _resolve_name(node, _CONSTANTS, "常量")
    if isinstance(node, ast.Call):
        if node.keywords:
            raise ValueError("函数调用不支持关键字参数")
        func = _resolve_name(node.func, _FUNCTIONS, "函数")
        return func(*[_evaluate(arg) for arg in node.args])
    raise ValueError(f"不支持的表达式: {type(node).__name__}")


@tool(category="math")
def calculator(expression: str) -> Dict[str, Any]:
    """执行数学计算，支持四则运算、乘方、取模以及常用数学函数和常量

    Args:
        expression: 要计算的数学表达式，例如 "2 + 2"、"sqrt(16)"、"pi * 2"

    Returns:
        Dict[str, Any]: 计算结果
    """
    try:
        value = _evaluate(ast.parse(expression.strip(), mode="eval"))
    except SyntaxError as e:
        raise ValueError(f"无效的数学表达式: {expression}") from e
    except (ZeroDivisionError, OverflowError) as e:
        raise ValueError(f"无效的数学表达式: {expression}. {e}") from e

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"计算结果不是实数: {expression}")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"计算结果无效: {value}")
    if isinstance(value, int) and abs(value).bit_length() * math.log10(2) > _MAX_RESULT_DIGITS:
        raise ValueError(f"计算结果过大: {expression}")

    return {"result": value, "expression": expression}


# --- timestamp ---

_CUSTOM_TOKENS = (
    ("YYYY", "%Y"),
    ("MM", "%m"),
    ("DD", "%d"),
    ("HH", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
)


def _resolve_timezone(name: Optional[str]):
    if not name or name.upper() == "UTC":
        return dt_timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"未知的时区: {name}") from e


def _to_strftime(custom_format: str) -> str:
    result = custom_format
    for token, directive in _CUSTOM_TOKENS:
        result = result.replace(token, directive)
    return result


@tool(category="utility")
def timestamp(
    format: Literal["iso", "unix", "human", "custom"] = "iso",
    timezone: Optional[str] = None,
    custom_format: Optional[str] = None,
) -> Dict[str, Any]:
    """获取当前时间戳和日期信息，支持时区

    Args:
        format: 输出格式（iso、unix、human、custom）
        timezone: IANA时区名称，例如 "UTC"、"Asia/Shanghai"、"America/New_York"
        custom_format: format 为 custom 时使用的格式，支持 YYYY MM DD HH mm ss 以及 strftime 指令

    Returns:
        Dict[str, Any]: 时间信息
    """
    now = datetime.now(_resolve_timezone(timezone))
    zone_name = timezone or "UTC"

    if format == "unix":
        return {
            "timestamp": int(now.timestamp()),
            "format": "unix",
            "milliseconds": int(now.timestamp() * 1000),
        }
    if format == "human":
        return {
            "timestamp": now.strftime("%B %d, %Y, %I:%M:%S %p %Z"),
            "format": "human",
            "timezone": zone_name,
            "iso": now.isoformat(),
        }
    if format == "custom":
        if not custom_format:
            raise ValueError('format 为 "custom" 时必须提供 custom_format')
        return {
            "timestamp": now.strftime(_to_strftime(custom_format)),
            "format": "custom",
            "custom_format": custom_format,
            "iso": now.isoformat(),
        }
    return {
        "timestamp": now.isoformat(),
        "format": "iso",
        "timezone": zone_name,
        "unix": int(now.timestamp()),
    }


# --- http_request ---

_USER_AGENT = "agent-orchestrator-http-tool/1.0"
_BODY_METHODS = ("POST", "PUT", "PATCH")


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    if content_type.startswith("text/") or "xml" in content_type or not content_type:
        return response.text
    return f"<{len(response.content)} bytes>"


def make_http_request_tool(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ToolDefinition:
    """
    创建 http_request 工具

    Args:
        transport: 可选的 httpx 传输层（测试时可传入 httpx.MockTransport）
    """

    @tool(name="http_request", category="network")
    async def http_request(
        url: str,
        method: Literal["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"] = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
        timeout: float = 30.0,
    ) -> Dict[str, Any]:
        """向外部API或服务发送HTTP请求

        Args:
            url: 请求地址（http 或 https）
            method: HTTP方法
            headers: 额外的请求头
            body: 请求体，仅用于 POST、PUT、PATCH
            timeout: 超时时间（秒）

        Returns:
            Dict[str, Any]: 响应状态、响应头和解码后的响应体
        """
        parsed = httpx.URL(url)
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise ValueError(f"无效的URL: {url}")

        request_headers = {"User-Agent": _USER_AGENT}
        content = None
        if body is not None and method in _BODY_METHODS:
            request_headers["Content-Type"] = "application/json"
            content = body.encode("utf-8")
        request_headers.update(headers or {})

        logger.debug(f"http_request: {method} {url}")
        try:
            async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
                response = await client.request(
                    method, url, headers=request_headers, content=content
                )
        except httpx.HTTPError as e:
            raise RuntimeError(f"HTTP请求失败: {e}") from e

        return {
            "status": response.status_code,
            "status_text": response.reason_phrase,
            "headers": dict(response.headers),
            "data": _decode_body(response),
            "content_type": response.headers.get("content-type", ""),
            "url": str(response.url),
        }

    return as_tool_definition(http_request)


http_request = make_http_request_tool()

BUILTIN_TOOLS: List[Union[ToolDefinition, Callable]] = [calculator, timestamp, http_request]
