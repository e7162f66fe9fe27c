from ..state import PipelineContext
from .stage_node import StageNode


class LocateSourceRecordNode(StageNode):
    """Node for opening the property record on the assessor site."""

    stage = "locate_source_record"
    emoji = "🏠"

    def store(self, ctx: PipelineContext, outcome):
        ctx.source_record = dict(outcome.value or {})
