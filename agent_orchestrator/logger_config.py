"""
日志配置模块

该模块包含:
- 统一的日志配置（不影响主应用程序）
- 文件和控制台输出配置
- 库专用日志启用/禁用控制

公开接口:
- enable_logging: 启用或禁用库的日志输出
- disable_logging: 完全禁用库的日志输出
- is_logging_enabled: 检查日志是否启用
- setup_logger: 设置日志器
- get_logger: 获取日志器实例
- log_tool_registration: 记录工具注册
- log_agent_iteration: 记录编排迭代
- log_tool_execution: 记录工具执行
- log_llm_interaction: 记录LLM交互
- log_agent_event: 记录事件分发
- log_budget_check: 记录预算检查
- log_http_request: 记录HTTP请求
- log_agent_completion: 记录执行完成
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

# 默认禁用日志，等待用户显式启用
_LOGGING_ENABLED = False
_CURRENT_LOG_LEVEL = "INFO"
# 库专用的处理器ID，只移除自己添加的处理器
_HANDLER_IDS: List[int] = []
_LIBRARY_NAMESPACE = "agent_orchestrator"


def _library_log_filter(record):
    """只允许库命名空间的日志通过"""
    extra_name = record.get("extra", {}).get("name", "")
    if extra_name is None:
        extra_name = ""
    return str(extra_name).startswith(_LIBRARY_NAMESPACE)


def _clear_library_handlers():
    """清理库专用的日志处理器，但不改变日志启用状态"""
    for handler_id in _HANDLER_IDS:
        try:
            logger.remove(handler_id)
        except ValueError:
            # 处理器可能已被外部移除
            pass

    _HANDLER_IDS.clear()


def enable_logging(enabled: bool = True, log_level: str = "INFO") -> None:
    """
    启用或禁用库的日志输出

    注意：此函数只管理本库自己的日志处理器，不会影响主应用程序的日志配置。

    Args:
        enabled: 是否启用日志
        log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    global _LOGGING_ENABLED, _CURRENT_LOG_LEVEL
    _LOGGING_ENABLED = enabled
    _CURRENT_LOG_LEVEL = log_level

    if enabled:
        setup_logger(log_level=log_level)
    else:
        disable_logging()


def disable_logging() -> None:
    """完全禁用库的日志输出"""
    global _LOGGING_ENABLED
    _LOGGING_ENABLED = False
    _clear_library_handlers()


def is_logging_enabled() -> bool:
    """检查日志是否启用"""
    return _LOGGING_ENABLED


def setup_logger(
    log_file: str = "orchestrator.log",
    log_level: str = "INFO",
    console_output: bool = True,
    file_output: bool = False,
    max_file_size: str = "10 MB",
    rotation_count: int = 3,
) -> None:
    """
    设置日志配置

    Args:
        log_file: 日志文件名（会加上库名前缀）
        log_level: 日志级别
        console_output: 是否输出到控制台
        file_output: 是否输出到文件
        max_file_size: 文件最大大小
        rotation_count: 文件轮转数量
    """
    global _CURRENT_LOG_LEVEL
    _CURRENT_LOG_LEVEL = log_level

    _clear_library_handlers()

    if not _LOGGING_ENABLED:
        return

    if console_output:
        console_format = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )
        handler_id = logger.add(
            sys.stderr,
            format=console_format,
            level=log_level,
            colorize=True,
            backtrace=True,
            diagnose=False,
            filter=_library_log_filter,
        )
        _HANDLER_IDS.append(handler_id)

    if file_output:
        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[name]}:{function}:{line} | "
            "{message}"
        )
        handler_id = logger.add(
            Path(Path.cwd() / f"{_LIBRARY_NAMESPACE}_{log_file}"),
            format=file_format,
            level=log_level,
            rotation=max_file_size,
            retention=rotation_count,
            compression="zip",
            encoding="utf-8",
            backtrace=True,
            diagnose=False,
            filter=_library_log_filter,
        )
        _HANDLER_IDS.append(handler_id)


class _NoOpLogger:
    """日志禁用时返回的空日志器"""

    def debug(self, *args, **kwargs):
        pass

    def info(self, *args, **kwargs):
        pass

    def warning(self, *args, **kwargs):
        pass

    def error(self, *args, **kwargs):
        pass

    def exception(self, *args, **kwargs):
        pass

    def critical(self, *args, **kwargs):
        pass

    def success(self, *args, **kwargs):
        pass

    def trace(self, *args, **kwargs):
        pass

    def bind(self, **kwargs):
        return self


class _LazyLogger:
    """
    模块级日志器

    每次调用时才决定使用真实日志器还是空日志器，
    这样模块导入之后再调用 enable_logging() 也能生效。
    """

    def __init__(self, name: Optional[str] = None):
        self._name = name

    def __getattr__(self, item):
        return getattr(get_logger(self._name), item)


def get_logger(name: Optional[str] = None):
    """
    获取日志器实例

    Args:
        name: 日志器名称（将自动添加库命名空间前缀）

    Returns:
        loguru logger（已绑定命名空间），日志禁用时返回空日志器
    """
    if not _LOGGING_ENABLED:
        return _NoOpLogger()

    if name:
        logger_name = f"{_LIBRARY_NAMESPACE}.{name}"
    else:
        logger_name = _LIBRARY_NAMESPACE

    return logger.bind(name=logger_name)


def module_logger(name: Optional[str] = None) -> _LazyLogger:
    """返回延迟绑定的模块级日志器"""
    return _LazyLogger(name)


# 预定义的日志记录函数


def log_tool_registration(tool_name: str, params: list):
    """记录工具注册信息"""
    if not _LOGGING_ENABLED:
        return
    get_logger("工具系统").info(f"工具 '{tool_name}' 已注册，参数: {params}")


def log_agent_iteration(iteration: int, total_iterations: Optional[int] = None):
    """记录编排迭代信息"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("编排器")
    if total_iterations and total_iterations > 0:
        lib_logger.info(f"--- 迭代 {iteration}/{total_iterations} ---")
    else:
        lib_logger.info(f"--- 迭代 {iteration} ---")


def log_tool_execution(
    tool_name: str,
    args: Dict[str, Any],
    success: bool,
    result: Any = None,
    error: Optional[str] = None,
):
    """记录工具执行信息"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("工具执行")
    if success:
        lib_logger.success(f"工具 '{tool_name}' 执行成功，参数: {args}")
        if result is not None:
            # 限制结果长度避免日志过大
            result_str = str(result)
            if len(result_str) > 200:
                result_str = result_str[:200] + "..."
            lib_logger.debug(f"工具 '{tool_name}' 结果: {result_str}")
    else:
        lib_logger.error(f"工具 '{tool_name}' 执行失败，参数: {args}，错误: {error}")


def log_llm_interaction(
    action: str, details: Optional[str] = None, error: Optional[str] = None
):
    """记录LLM交互信息"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("LLM交互")
    if error:
        lib_logger.error(f"LLM {action} 失败: {error}")
    else:
        lib_logger.info(f"LLM {action}")
    if details:
        lib_logger.debug(f"详细信息: {details}")


def log_agent_event(event_type: str, listener_count: int):
    """记录事件分发"""
    if not _LOGGING_ENABLED:
        return
    get_logger("事件").trace(f"[{event_type}] 分发给 {listener_count} 个监听器")


def log_budget_check(violations: List[str]):
    """记录预算检查结果"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("预算")
    if violations:
        for violation in violations:
            lib_logger.warning(violation)
    else:
        lib_logger.debug("预算检查通过")


def log_http_request(
    method: str,
    url: str,
    status_code: Optional[int] = None,
    error: Optional[str] = None,
):
    """记录HTTP请求"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("HTTP请求")
    if error:
        lib_logger.error(f"{method} {url} 失败: {error}")
    else:
        lib_logger.info(f"{method} {url} 响应码: {status_code}")


def log_agent_completion(
    reason: str, iterations_used: int, max_iterations: Optional[int] = None
):
    """记录执行完成信息"""
    if not _LOGGING_ENABLED:
        return
    lib_logger = get_logger("编排器")
    if max_iterations and max_iterations > 0:
        lib_logger.info(
            f"执行完成，原因: {reason}，使用迭代: {iterations_used}/{max_iterations}"
        )
    else:
        lib_logger.info(f"执行完成，原因: {reason}，使用迭代: {iterations_used}")
