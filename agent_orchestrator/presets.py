"""
预设编排器模块

预设只是固定了迭代上限和默认系统提示词的工厂函数，返回普通的 Orchestrator。

公开接口:
- simple_orchestrator: 单轮工具调用场景（最多5次迭代）
- conversational_orchestrator: 多轮对话场景，历史在多次 execute() 之间保留（最多10次迭代）
- task_orchestrator: 任务场景（最多15次迭代）
- TaskStep: 任务步骤
- TaskProgress / TaskStepResult: 任务进度与步骤执行结果
- TaskRunner: 按步骤驱动编排器
"""

from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .logger_config import module_logger
from .orchestrator import Orchestrator
from .providers import ModelProvider
from .schemas import Budget, ExecutionResult, ModelConfig, ToolDefinition

logger = module_logger("预设")

SIMPLE_MAX_ITERATIONS = 5
CONVERSATIONAL_MAX_ITERATIONS = 10
TASK_MAX_ITERATIONS = 15

CONVERSATIONAL_SYSTEM_PROMPT = (
    "You are a helpful assistant that can use tools to help users. "
    "Maintain context from previous messages in this conversation."
)
TASK_SYSTEM_PROMPT = (
    "You are a task-oriented assistant. Complete each task step systematically."
)

ModelLike = Union[str, ModelConfig, Mapping[str, Any]]
ToolLike = Union[ToolDefinition, Callable]


def simple_orchestrator(
    model: Optional[ModelLike] = None,
    tools: Optional[Sequence[ToolLike]] = None,
    system_prompt: Optional[str] = None,
    budget: Optional[Union[Budget, Mapping[str, Any]]] = None,
    streaming: bool = False,
    provider: Optional[ModelProvider] = None,
    debug_mode: bool = False,
) -> Orchestrator:
    """创建最多5次迭代的编排器"""
    return Orchestrator(
        model=model,
        tools=tools,
        system_prompt=system_prompt,
        budget=budget,
        max_iterations=SIMPLE_MAX_ITERATIONS,
        streaming=streaming,
        provider=provider,
        debug_mode=debug_mode,
    )


def conversational_orchestrator(
    model: Optional[ModelLike] = None,
    tools: Optional[Sequence[ToolLike]] = None,
    system_prompt: Optional[str] = None,
    budget: Optional[Union[Budget, Mapping[str, Any]]] = None,
    streaming: bool = False,
    provider: Optional[ModelProvider] = None,
    debug_mode: bool = False,
) -> Orchestrator:
    """
    创建对话编排器

    每次 execute() 只追加新的用户消息，之前的对话保留在历史中；
    调用 reset() 开始新的对话。
    """
    return Orchestrator(
        model=model,
        tools=tools,
        system_prompt=system_prompt or CONVERSATIONAL_SYSTEM_PROMPT,
        budget=budget,
        max_iterations=CONVERSATIONAL_MAX_ITERATIONS,
        streaming=streaming,
        provider=provider,
        debug_mode=debug_mode,
    )


def task_orchestrator(
    model: Optional[ModelLike] = None,
    tools: Optional[Sequence[ToolLike]] = None,
    system_prompt: Optional[str] = None,
    budget: Optional[Union[Budget, Mapping[str, Any]]] = None,
    streaming: bool = False,
    provider: Optional[ModelProvider] = None,
    debug_mode: bool = False,
) -> Orchestrator:
    """创建最多15次迭代、带任务型系统提示词的编排器"""
    return Orchestrator(
        model=model,
        tools=tools,
        system_prompt=system_prompt or TASK_SYSTEM_PROMPT,
        budget=budget,
        max_iterations=TASK_MAX_ITERATIONS,
        streaming=streaming,
        provider=provider,
        debug_mode=debug_mode,
    )


# --- 按步骤执行 ---


class TaskStep(BaseModel):
    """任务中的一个步骤"""

    name: str
    description: str
    tools: List[str] = Field(default_factory=list)


class TaskProgress(BaseModel):
    """任务进度"""

    current_step: int
    total_steps: int
    completed: bool
    step_results: List[Any] = Field(default_factory=list)


class TaskStepResult(BaseModel):
    """一次 execute_task() / execute_next_step() 的结果"""

    success: bool
    error: Optional[str] = None
    execution: Optional[ExecutionResult] = None
    completed_step: Optional[TaskStep] = None
    progress: TaskProgress


class TaskRunner:
    """
    按步骤驱动编排器

    每个步骤的提示词都会带上之前所有成功步骤的结果；
    步骤只有在执行成功后才会前进。
    """

    def __init__(self, orchestrator: Orchestrator, steps: Optional[Sequence[TaskStep]] = None):
        self.orchestrator = orchestrator
        self.steps: List[TaskStep] = list(steps or [])
        self._current_step = 0
        self._step_results: List[Any] = []

    def get_progress(self) -> TaskProgress:
        return TaskProgress(
            current_step=self._current_step,
            total_steps=len(self.steps),
            completed=self._current_step >= len(self.steps),
            step_results=list(self._step_results),
        )

    async def execute_task(self, task_description: str) -> TaskStepResult:
        """把整个任务（连同步骤列表）作为一次执行交给模型"""
        execution = await self.orchestrator.execute(self.build_task_prompt(task_description))
        if execution.success:
            self._step_results.append(execution.result)
        return TaskStepResult(
            success=execution.success,
            error=execution.error,
            execution=execution,
            progress=self.get_progress(),
        )

    async def execute_next_step(self) -> TaskStepResult:
        """执行下一个步骤，全部完成后返回 success=False"""
        if self._current_step >= len(self.steps):
            return TaskStepResult(
                success=False,
                error="All steps completed",
                progress=self.get_progress(),
            )

        step = self.steps[self._current_step]
        logger.info(f"执行步骤 {self._current_step + 1}/{len(self.steps)}: {step.name}")
        execution = await self.orchestrator.execute(self.build_step_prompt(step))
        if execution.success:
            self._step_results.append(execution.result)
            self._current_step += 1
        else:
            logger.warning(f"步骤 '{step.name}' 执行失败: {execution.error}")

        return TaskStepResult(
            success=execution.success,
            error=execution.error,
            execution=execution,
            completed_step=step,
            progress=self.get_progress(),
        )

    def _previous_results(self, heading: str) -> str:
        if not self._step_results:
            return ""
        lines = [heading]
        for index, result in enumerate(self._step_results, start=1):
            lines.append(f"Step {index}: {result}")
        return "\n".join(lines) + "\n\n"

    def build_task_prompt(self, task_description: str) -> str:
        prompt = f"Task: {task_description}\n\n"
        if self.steps:
            prompt += "Please complete this task following these steps:\n"
            for index, step in enumerate(self.steps, start=1):
                prompt += f"{index}. {step.name}: {step.description}\n"
            prompt += "\n"
        prompt += self._previous_results("Previous step results:")
        return prompt

    def build_step_prompt(self, step: TaskStep) -> str:
        prompt = f"Current Step: {step.name}\nDescription: {step.description}\n\n"
        if step.tools:
            prompt += f"Recommended tools for this step: {', '.join(step.tools)}\n\n"
        prompt += self._previous_results("Previous step results for context:")
        prompt += "Please complete this step."
        return prompt
