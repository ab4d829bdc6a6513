from .client import LLMError, extract_message_content, request_chat_completion

__all__ = ["LLMError", "extract_message_content", "request_chat_completion"]
