"""Documents for grounding generations."""

from jorel.documents.collection import DocumentTemplate, LlmDocument, LlmDocumentCollection

__all__ = ["DocumentTemplate", "LlmDocument", "LlmDocumentCollection"]
