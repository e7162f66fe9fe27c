from ..adapters.base import StageOutcome
from ..errors import ErrorKind
from ..state import BookPageReference, InstrumentReference, PipelineContext
from .stage_node import StageNode


class LocateTargetRecordNode(StageNode):
    """Node for finding the recorded document on the recorder site."""

    stage = "locate_target_record"
    emoji = "🗂️"

    async def execute(self, ctx: PipelineContext) -> StageOutcome:
        # The recorder search is keyed by the reference bound in extract_reference
        if not isinstance(ctx.reference, (InstrumentReference, BookPageReference)):
            return StageOutcome.fail(ErrorKind.NOT_FOUND, "no recording reference to search the recorder with")
        return await super().execute(ctx)

    def store(self, ctx: PipelineContext, outcome):
        ctx.target_record = dict(outcome.value or {})
