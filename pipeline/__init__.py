"""
Pipeline Package.

Host-side wiring of moderation, engagement, analytics and
performance monitoring for each inbound chat message.
"""

from pipeline.scheduler import AggregationScheduler
from pipeline.service import ChatPipeline
from pipeline.types import AIReply, AIResponder, ChatMessage, PipelineResult

__all__ = [
    "AggregationScheduler",
    "ChatPipeline",
    "AIReply",
    "AIResponder",
    "ChatMessage",
    "PipelineResult",
]
