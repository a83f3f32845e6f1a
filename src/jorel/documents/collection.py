"""
Documents — grounding material rendered into system messages.

An LlmDocumentCollection is an ordered, id-keyed set of documents. Its
system_message_representation is what replaces `{{documents}}` in an
agent's (or a request's) system message template.

Rendering modes:
- "xml" (default): <Documents> wrapper, one tag per document. Types that
  start with a capital letter ("Product") become the tag name itself.
- "json": a JSON array of document definitions.
- DocumentTemplate: a custom per-document template plus separator.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Iterable, Union

from jorel.core.errors import ConfigurationError
from jorel.core.ids import generate_unique_id

_SEMANTIC_TYPE = re.compile(r"^[A-Z]")


@dataclass
class LlmDocument:
    """A document used to ground generations."""

    title: str
    content: str
    id: str = field(default_factory=generate_unique_id)
    type: str = "text"
    source: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def text(cls, id: str, title: str, content: str, source: str | None = None) -> LlmDocument:
        return cls(id=id, type="text", title=title, content=content, source=source)

    @property
    def definition(self) -> dict:
        result = {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "content": self.content,
            "source": self.source,
        }
        if self.attributes:
            result["attributes"] = dict(self.attributes)
        return result

    @classmethod
    def from_dict(cls, data: dict) -> LlmDocument:
        return cls(
            id=data.get("id") or generate_unique_id(),
            type=data.get("type") or "text",
            title=data["title"],
            content=data["content"],
            source=data.get("source"),
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass(frozen=True)
class DocumentTemplate:
    """Custom rendering: `template` per document, joined by `separator`.

    Placeholders: {{id}}, {{type}}, {{title}}, {{content}}, {{source}}.
    """

    template: str
    separator: str = "\n"

    def __post_init__(self):
        if "{{id}}" not in self.template:
            raise ConfigurationError("Document template must include '{{id}}' placeholder.")
        if "{{content}}" not in self.template:
            raise ConfigurationError(
                "Document template must include '{{content}}' placeholder."
            )


DocumentToText = Union[str, DocumentTemplate]


class LlmDocumentCollection:
    """An ordered collection of documents, keyed by id."""

    def __init__(
        self,
        documents: Iterable[LlmDocument | dict] = (),
        document_to_text: DocumentToText = "xml",
    ):
        if isinstance(document_to_text, str) and document_to_text not in ("xml", "json"):
            raise ConfigurationError(
                f"Unknown document rendering mode: {document_to_text}"
            )
        self.document_to_text = document_to_text
        self._documents: dict[str, LlmDocument] = {}
        for document in documents:
            self.add(document if isinstance(document, LlmDocument) else LlmDocument.from_dict(document))

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self):
        return iter(self._documents.values())

    @property
    def all(self) -> list[LlmDocument]:
        return list(self._documents.values())

    @property
    def definition(self) -> list[dict]:
        return [document.definition for document in self._documents.values()]

    def add(self, document: LlmDocument) -> None:
        self._documents[document.id] = document

    def remove(self, document_id: str) -> None:
        self._documents.pop(document_id, None)

    def get(self, document_id: str) -> LlmDocument | None:
        return self._documents.get(document_id)

    @classmethod
    def from_definition(cls, documents: Iterable[dict]) -> LlmDocumentCollection:
        return cls([LlmDocument.from_dict(document) for document in documents])

    @property
    def system_message_representation(self) -> str:
        if not self._documents:
            return "-"

        if self.document_to_text == "json":
            return json.dumps(self.definition)

        if self.document_to_text == "xml":
            rendered = [_render_xml(document) for document in self._documents.values()]
            return "<Documents>\n" + "\n".join(rendered) + "\n</Documents>"

        template = self.document_to_text
        return template.separator.join(
            template.template.replace("{{id}}", document.id)
            .replace("{{type}}", document.type)
            .replace("{{title}}", document.title)
            .replace("{{content}}", document.content)
            .replace("{{source}}", document.source or "n/a")
            for document in self._documents.values()
        )


def _render_xml(document: LlmDocument) -> str:
    semantic = bool(document.type) and bool(_SEMANTIC_TYPE.match(document.type))
    tag = document.type if semantic else "Document"

    attrs = f"id='{document.id}'"
    if not semantic:
        attrs += f" type='{document.type}'"
    attrs += f" title='{document.title}'"
    attrs += f" source='{document.source or 'n/a'}'"
    for key, value in document.attributes.items():
        attrs += f" {key}='{value}'"

    return f"<{tag} {attrs}>{document.content}</{tag}>"
