from ..adapters.base import StageOutcome
from ..errors import ErrorKind
from ..state import CapturedDocument, PipelineContext
from .stage_node import StageNode


class CaptureDocumentNode(StageNode):
    """Node for downloading the document and checking its signature."""

    stage = "capture_document"
    emoji = "📄"

    async def execute(self, ctx: PipelineContext) -> StageOutcome:
        outcome = await super().execute(ctx)
        if outcome.success and not isinstance(outcome.value, CapturedDocument):
            return StageOutcome.fail(ErrorKind.VALIDATION_FAILURE, "capture produced no validated document")
        return outcome

    def store(self, ctx: PipelineContext, outcome):
        ctx.document = outcome.value
