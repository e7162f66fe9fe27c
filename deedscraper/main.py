import asyncio
import logging
import time
from typing import Iterable, List, Optional, Union

from langgraph.graph import START, StateGraph, END

from .adapters.base import SiteAdapter
from .config import RetrievalSettings
from .errors import ConfigurationError, ErrorInfo, ErrorKind
from .nodes import (
    ResolveIdentifierNode,
    LocateSourceRecordNode,
    ExtractReferenceNode,
    LocateTargetRecordNode,
    CaptureDocumentNode,
)
from .scrapers.browser import BrowserSession
from .state import STAGES, PipelineContext, PipelineState, RetrievalRequest, RetrievalResult

logger = logging.getLogger(__name__)


class DeedRetrievalGraph:
    def __init__(
        self,
        adapter: SiteAdapter,
        settings: Optional[RetrievalSettings] = None,
        resolver=None,
        session_factory=BrowserSession,
    ):
        """Initialize the deed retrieval graph.

        Args:
            adapter: Site adapter of the county to retrieve from
            settings: Read-only settings; the adapter's settings when omitted
            resolver: Optional address -> identifier resolver
            session_factory: Callable returning an async context manager with a ``manager``
        """
        self.adapter = adapter.validate()
        self.settings = settings or adapter.settings
        self.resolver = resolver
        self.session_factory = session_factory
        self._init_nodes()
        self._build_workflow()
        self.compiled_app = None

    def _init_nodes(self):
        """Initialize one node per stage"""
        timeout_s = self.settings.stage_timeout_s
        self.nodes = {
            "resolve_identifier": ResolveIdentifierNode(self.adapter, timeout_s),
            "locate_source_record": LocateSourceRecordNode(self.adapter, timeout_s),
            "extract_reference": ExtractReferenceNode(self.adapter, timeout_s),
            "locate_target_record": LocateTargetRecordNode(self.adapter, timeout_s),
            "capture_document": CaptureDocumentNode(self.adapter, timeout_s),
        }

    def _build_workflow(self):
        """Configure the state graph workflow"""
        self.workflow = StateGraph(PipelineState)

        for stage in STAGES:
            self.workflow.add_node(stage, self.nodes[stage].run)

        self.workflow.add_edge(START, STAGES[0])

        # Each stage hands over to the next one unless it failed
        for stage, next_stage in zip(STAGES, STAGES[1:]):
            self.workflow.add_conditional_edges(
                stage,
                self._should_continue,
                {True: next_stage, False: END},
            )
        self.workflow.add_edge(STAGES[-1], END)

    @staticmethod
    def _should_continue(state: PipelineState) -> bool:
        return not state.get("halted", False)

    def compile(self):
        """Compile the workflow and cache the compiled app.

        Returns:
            The compiled workflow app
        """
        if self.compiled_app is None:
            logger.info(f"Compiling deed retrieval workflow for {self.adapter.name}")
            self.compiled_app = self.workflow.compile()
        return self.compiled_app

    def create_initial_state(self, context: PipelineContext) -> PipelineState:
        return PipelineState(context=context, steps=[], current_step="starting workflow", halted=False)

    async def run(self, request: Union[RetrievalRequest, str]) -> RetrievalResult:
        """Retrieve the deed for one request.

        Args:
            request: The retrieval request, or a bare address

        Returns:
            RetrievalResult with the audit trail and, on success, the document
        """
        if isinstance(request, str):
            request = RetrievalRequest(address=request)
        app = self.compile()

        started = time.monotonic()
        logger.info(f"🚀 Starting deed retrieval for: {request.address}")
        async with self.session_factory(self.settings) as session:
            context = PipelineContext(request=request, session=session.manager, resolver=self.resolver)
            final_state = await app.ainvoke(self.create_initial_state(context))

        result = self._build_result(final_state, context, started)
        if result.success:
            logger.info(f"🎉 Retrieved {result.document.filename} in {result.duration_ms}ms")
        else:
            logger.warning(f"⚠️ Retrieval failed at {result.error.step}: {result.error.message}")
        return result

    @staticmethod
    def _build_result(final_state: PipelineState, context: PipelineContext, started: float) -> RetrievalResult:
        steps = tuple(final_state.get("steps", []))
        failed = next((step for step in steps if not step.success), None)
        error = failed.error if failed else None
        if error is None and (context.document is None or len(steps) != len(STAGES)):
            error = ErrorInfo(ErrorKind.VALIDATION_FAILURE, "no document was captured", steps[-1].stage_name if steps else None)
        return RetrievalResult(
            success=error is None,
            steps=steps,
            document=context.document if error is None else None,
            error=error,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    async def run_many(
        self, requests: Iterable[Union[RetrievalRequest, str]], max_concurrency: Optional[int] = None
    ) -> List[RetrievalResult]:
        """Run independent requests in parallel, each in its own browser session.

        Results come back in the order of ``requests``.
        """
        limit = self.settings.max_concurrent_sessions if max_concurrency is None else max_concurrency
        if limit < 1:
            raise ConfigurationError("max_concurrency must be at least 1")
        semaphore = asyncio.Semaphore(limit)

        async def _bounded(request):
            async with semaphore:
                return await self.run(request)

        return list(await asyncio.gather(*(_bounded(request) for request in requests)))

    def visualize(self, output_path: Optional[str] = None):
        """Render the workflow graph.

        Args:
            output_path: Where to write a PNG; returns Mermaid source when omitted
        """
        graph = self.compile().get_graph()
        if output_path is None:
            return graph.draw_mermaid()
        with open(output_path, "wb") as f:
            f.write(graph.draw_mermaid_png())
        return output_path
