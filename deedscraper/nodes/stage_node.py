import asyncio
import logging
import time

from ..adapters.base import SiteAdapter, StageOutcome
from ..errors import ConfigurationError, ErrorKind, classify_exception
from ..state import PipelineContext, PipelineState, StageResult

logger = logging.getLogger(__name__)


class StageNode:
    """
    Base node: runs one adapter hook and turns its outcome into a StageResult.

    Browser and transport exceptions become failed results; configuration
    and programming errors propagate to the caller.
    """

    stage = ""
    emoji = "▶️"

    def __init__(self, adapter: SiteAdapter, stage_timeout_s: float = 180):
        self.adapter = adapter
        self.stage_timeout_s = stage_timeout_s

    async def execute(self, ctx: PipelineContext) -> StageOutcome:
        return await getattr(self.adapter, self.stage)(ctx)

    def store(self, ctx: PipelineContext, outcome: StageOutcome):
        """Bind the stage's value to the context for the stages after it."""

    async def _outcome(self, ctx: PipelineContext) -> StageOutcome:
        reason = self.adapter.skip_reason(self.stage, ctx)
        if reason:
            logger.info(f"⏭️ Skipping {self.stage}: {reason}")
            return StageOutcome.skip(reason)

        logger.info(f"{self.emoji} {self.stage} for: {ctx.address}")
        try:
            return await asyncio.wait_for(self.execute(ctx), timeout=self.stage_timeout_s)
        except ConfigurationError:
            raise
        except asyncio.TimeoutError:
            return StageOutcome.fail(ErrorKind.TIMEOUT, f"{self.stage} exceeded its {self.stage_timeout_s}s budget")
        except Exception as e:
            kind = classify_exception(e)
            if kind is None:
                raise
            return StageOutcome.fail(kind, f"{self.stage} error: {e}")

    async def run(self, state: PipelineState) -> dict:
        ctx = state["context"]
        started = time.monotonic()

        outcome = await self._outcome(ctx)
        if outcome.success and not outcome.skipped:
            self.store(ctx, outcome)

        result = StageResult(
            stage_name=self.stage,
            success=outcome.success,
            data=dict(outcome.data),
            error=outcome.error.to_error(self.stage) if outcome.error else None,
            skipped=outcome.skipped,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        ctx.mark(self.stage)

        if result.success:
            logger.info(f"✅ {self.stage} completed in {result.duration_ms}ms")
        else:
            logger.error(f"❌ {self.stage} failed ({result.error.kind.value}): {result.error.message}")

        return {
            "steps": [result],  # Just the new step, reducer appends it
            "current_step": self.stage,
            "halted": not result.success,
        }
