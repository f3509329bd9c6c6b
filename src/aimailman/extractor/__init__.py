"""Message text extraction utilities."""

from .context import MessageContext, build_message_context, truncate
from .html import html_to_text

__all__ = ["MessageContext", "build_message_context", "html_to_text", "truncate"]
