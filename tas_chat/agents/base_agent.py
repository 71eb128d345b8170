import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Tuple

class BaseAgent(ABC):
    """所有智能体的基类，定义流水线各阶段的共通接口"""

    # 子类声明 process() 需要的输入字段
    required_inputs: Tuple[str, ...] = ()

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"{__name__.rsplit('.', 1)[0]}.{name}")

    @abstractmethod
    async def process(self, input_data: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Any:
        """
        执行该阶段的处理

        Args:
            input_data: 阶段输入
            context: 可选的上下文信息 (例如 session_id)

        Returns:
            阶段输出；输入无效时返回降级结果而不是抛出异常
        """
        pass

    async def validate_input(self, input_data: Dict[str, Any]) -> bool:
        """检查 required_inputs 中的字段是否齐全"""
        if not isinstance(input_data, dict):
            self.logger.error(f"{self.name}: input must be a dict, got {type(input_data).__name__}")
            return False
        missing = [key for key in self.required_inputs if key not in input_data]
        if missing:
            self.logger.error(f"{self.name}: missing input field(s): {', '.join(missing)}")
            return False
        return True

    def __str__(self) -> str:
        return f"{self.name} Agent"
