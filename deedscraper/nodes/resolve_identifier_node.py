from ..state import PipelineContext
from .stage_node import StageNode


class ResolveIdentifierNode(StageNode):
    """Node for turning the address into the assessor site's identifier."""

    stage = "resolve_identifier"
    emoji = "🔎"

    def store(self, ctx: PipelineContext, outcome):
        ctx.identifier = outcome.value
