"""内容生成协作方。"""

from villagesim.content.generator import ContentGenerator, GenerationOptions, GenerationResult

__all__ = ["ContentGenerator", "GenerationOptions", "GenerationResult"]
