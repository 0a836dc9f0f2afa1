"""Vendor gateway over LangChain chat models."""

from .client import get_chat_model
from .gateway import ChatModelGateway

__all__ = ["ChatModelGateway", "get_chat_model"]
