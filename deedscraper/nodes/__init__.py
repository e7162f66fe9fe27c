from .stage_node import StageNode
from .resolve_identifier_node import ResolveIdentifierNode
from .locate_source_record_node import LocateSourceRecordNode
from .extract_reference_node import ExtractReferenceNode
from .locate_target_record_node import LocateTargetRecordNode
from .capture_document_node import CaptureDocumentNode

__all__ = [
    "StageNode",
    "ResolveIdentifierNode",
    "LocateSourceRecordNode",
    "ExtractReferenceNode",
    "LocateTargetRecordNode",
    "CaptureDocumentNode",
]
