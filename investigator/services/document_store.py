"""
Document store - uploaded source artifacts and their editable metadata.

Content is never interpreted beyond checking the file kind. Uploads are
audited (one Upload event per add/add_batch call); metadata edits and
removals are not.
"""
import logging
import os
from dataclasses import dataclass
from typing import Iterable, List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from investigator.models.domain import Document
from investigator.models.enums import (
    Actor,
    AuditEventKind,
    DocumentType,
    IntelligenceLevel,
    MimeKind,
)
from investigator.models.results import DocumentSnapshot
from investigator.services.audit_log import AuditEntry, AuditLog
from investigator.services.errors import NotFound, UnsupportedFileKind, ValidationError

logger = logging.getLogger(__name__)

_CONTENT_TYPES = {
    "application/pdf": MimeKind.PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": MimeKind.DOCX,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": MimeKind.XLSX,
    "application/json": MimeKind.JSON,
}

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]


@dataclass
class RawFile:
    """An upload as it arrives: a name, the bytes and the declared content type."""
    file_name: str
    content: bytes
    content_type: Optional[str] = None


class DocumentMetadata(BaseModel):
    """Editable document fields. Unset fields are left alone on update."""
    file_name: Optional[str] = None
    document_type: Optional[DocumentType] = None
    intelligence_level: Optional[IntelligenceLevel] = None
    definition: Optional[str] = None


def detect_kind(file_name: str, content_type: Optional[str] = None) -> Optional[MimeKind]:
    """
    Resolve the file kind from the declared content type, falling back to the extension.

    Accepts a bare kind ("pdf") as the declared type as well as a MIME type.
    Returns None for anything outside the allow-list.
    """
    if content_type:
        declared = content_type.split(";")[0].strip().lower()
        if declared in _CONTENT_TYPES:
            return _CONTENT_TYPES[declared]
        try:
            return MimeKind(declared)
        except ValueError:
            pass

    extension = os.path.splitext(file_name)[1].lstrip(".").lower()
    try:
        return MimeKind(extension)
    except ValueError:
        return None


def format_size(size_bytes: int) -> str:
    """Human-readable size, e.g. 1536 -> '1.5 KB'."""
    if size_bytes <= 0:
        return "0 Bytes"
    value = float(size_bytes)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {_SIZE_UNITS[unit]}"


class DocumentStore:
    """Owns Document rows."""

    def __init__(self, session_factory: sessionmaker, audit_log: AuditLog):
        self._session_factory = session_factory
        self._audit = audit_log

    def add(self, file: RawFile, metadata: Optional[DocumentMetadata] = None) -> Document:
        """Store one upload. Unsupported kinds are refused before anything is written."""
        return self.add_batch([file], [metadata] if metadata else None)[0]

    def add_batch(
        self,
        files: List[RawFile],
        metadata: Optional[List[Optional[DocumentMetadata]]] = None,
    ) -> List[Document]:
        """
        Store a batch of uploads and record a single Upload event listing every member.

        All-or-nothing: one unsupported file refuses the whole batch.
        """
        if not files:
            raise ValidationError("No files to upload")
        metadata = metadata or [None] * len(files)
        if len(metadata) != len(files):
            raise ValidationError("Metadata must be given for every file or for none")

        kinds = [detect_kind(f.file_name, f.content_type) for f in files]
        rejected = [f.file_name for f, kind in zip(files, kinds) if kind is None]
        if rejected:
            raise UnsupportedFileKind(
                f"Unsupported file type: {', '.join(rejected)}. "
                f"Please upload {', '.join(k.value.upper() for k in MimeKind)} files.",
                file_names=rejected,
            )

        with self._session_factory() as db:
            documents = []
            for file, kind, meta in zip(files, kinds, metadata):
                fields = meta.model_dump(exclude_none=True) if meta else {}
                document = Document(
                    file_name=fields.get("file_name") or file.file_name,
                    mime_kind=kind,
                    size_bytes=len(file.content),
                    document_type=fields.get("document_type", DocumentType.EVIDENCE),
                    intelligence_level=fields.get("intelligence_level", IntelligenceLevel.MEDIUM),
                    definition=fields.get("definition", ""),
                )
                db.add(document)
                documents.append(document)
            db.commit()

        names = [d.file_name for d in documents]
        if len(documents) == 1:
            description = f"Uploaded {names[0]} ({format_size(documents[0].size_bytes)})"
        else:
            description = f"Uploaded {len(documents)} investigation documents for analysis"
        self._audit.record(AuditEntry(
            kind=AuditEventKind.UPLOAD,
            actor=Actor.USER,
            title="Document Upload",
            description=description,
            entity_type="Document",
            entity_id=",".join(str(d.id) for d in documents),
            source_file_ids=names,
            records_processed=len(documents),
        ))
        logger.info("Stored %d document(s): %s", len(documents), ", ".join(names))
        return documents

    def get(self, document_id: int) -> Document:
        with self._session_factory() as db:
            document = db.get(Document, document_id)
            if document is None:
                raise NotFound(f"Document {document_id} not found")
            return document

    def update_metadata(self, document_id: int, changes: DocumentMetadata) -> Document:
        """Merge only the fields that were provided."""
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if "file_name" in fields and not fields["file_name"].strip():
            raise ValidationError("File name cannot be empty")

        with self._session_factory() as db:
            document = db.get(Document, document_id)
            if document is None:
                raise NotFound(f"Document {document_id} not found")
            for key, value in fields.items():
                setattr(document, key, value)
            db.commit()
            return document

    def remove(self, document_id: int) -> None:
        """Delete a document. Audit rows keep their own copy of the file name."""
        with self._session_factory() as db:
            document = db.get(Document, document_id)
            if document is None:
                raise NotFound(f"Document {document_id} not found")
            db.delete(document)
            db.commit()
        logger.info("Removed document %s", document_id)

    def list_all(self) -> List[Document]:
        """All documents in insertion order."""
        with self._session_factory() as db:
            return db.query(Document).order_by(Document.id.asc()).all()

    def snapshot(self, document_ids: Iterable[int]) -> List[DocumentSnapshot]:
        """By-value copies of the given documents, in the order asked for."""
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return []
        with self._session_factory() as db:
            found = {d.id: d for d in db.query(Document).filter(Document.id.in_(ids)).all()}
        missing = [str(i) for i in ids if i not in found]
        if missing:
            raise NotFound(f"Document(s) not found: {', '.join(missing)}")
        return [found[i].snapshot() for i in ids]
