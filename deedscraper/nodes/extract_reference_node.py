from ..adapters.base import StageOutcome
from ..errors import ErrorKind
from ..state import BookPageReference, InstrumentReference, PipelineContext
from .stage_node import StageNode


class ExtractReferenceNode(StageNode):
    """Node for reading the recording reference of the last conveyance."""

    stage = "extract_reference"
    emoji = "📜"

    async def execute(self, ctx: PipelineContext) -> StageOutcome:
        outcome = await super().execute(ctx)
        # Exactly one reference variant must be bound before the recorder search
        if outcome.success and not isinstance(outcome.value, (InstrumentReference, BookPageReference)):
            return StageOutcome.fail(ErrorKind.NOT_FOUND, "no recording reference was extracted")
        return outcome

    def store(self, ctx: PipelineContext, outcome):
        ctx.reference = outcome.value
