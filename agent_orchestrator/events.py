"""
事件分发模块

公开接口:
- EventEmitter: 观察者列表，同步、按注册顺序分发事件
"""

from typing import Callable, Generic, List, TypeVar

from .logger_config import log_agent_event, module_logger

logger = module_logger("事件")

EventT = TypeVar("EventT")


class EventEmitter(Generic[EventT]):
    """
    简单的观察者列表

    监听器按注册顺序同步调用；单个监听器抛出的异常会被记录并隔离，
    不会影响其他监听器，也不会中断编排循环。
    """

    def __init__(self):
        self._listeners: List[Callable[[EventT], object]] = []

    def on(self, listener: Callable[[EventT], object]) -> None:
        self._listeners.append(listener)

    def off(self, listener: Callable[[EventT], object]) -> bool:
        """移除监听器，返回是否存在"""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def emit(self, event: EventT) -> None:
        # 复制一份，监听器在回调中增删监听器不影响本次分发
        listeners = list(self._listeners)
        log_agent_event(getattr(event, "type", type(event).__name__), len(listeners))
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"事件监听器出错 ({getattr(event, 'type', '?')}): {e!r}")

    def clear(self) -> None:
        self._listeners.clear()

    def listener_count(self) -> int:
        return len(self._listeners)
