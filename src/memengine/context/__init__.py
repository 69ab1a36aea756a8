"""Context budget assembly for memengine."""

from memengine.context.assembler import (
    AssembledContext,
    ContextAssembler,
    ContextDecision,
    RequestContext,
)

__all__ = ["AssembledContext", "ContextAssembler", "ContextDecision", "RequestContext"]
