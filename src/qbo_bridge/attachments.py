"""Attachment scan and copy between two QBO companies.

Attachables in the FROM company are linked to documents by internal id. The
copy resolves each linked document, takes its business key, finds the
document with the same key in the TO company, then downloads the file from
FROM and uploads it to TO linked to that document.

Nothing in a copy run is fatal below the entity-type level: every failed
link is counted in the type's statistics and described in the error log, and
a failing entity type never stops the remaining types.
"""

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from qbo_bridge.entities import (
    COPY_ENTITY_TYPES,
    SCAN_ENTITY_TYPES,
    TARGET_MATCH_FIELD,
    EntityType,
    business_key_for,
    escape_query_literal,
)
from qbo_bridge.qbo.client import QBOClient, describe_error

logger = structlog.get_logger(__name__)

ATTACHABLE_PAGE_SIZE = 100
DEFAULT_FILE_NAME = "attachment.bin"


@dataclass
class ScanStats:
    """Pre-flight counts for one entity type."""

    total_attachables: int = 0
    with_file_uri: int = 0


@dataclass
class ScanResult:
    stats: dict[str, ScanStats] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stats": {name: asdict(s) for name, s in self.stats.items()},
            "errors": list(self.errors),
        }


@dataclass
class AttachmentTypeStats:
    """Outcome counters of a copy run for one entity type."""

    total_attachables: int = 0
    total_links: int = 0
    copied: int = 0
    skipped_no_file: int = 0
    missing_source_doc: int = 0
    missing_doc_number: int = 0
    missing_target_doc: int = 0
    upload_failed: int = 0
    duplicate_target_matches: int = 0


@dataclass
class MigrationResult:
    summary: dict[str, AttachmentTypeStats] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def copied(self) -> int:
        return sum(s.copied for s in self.summary.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": {name: asdict(s) for name, s in self.summary.items()},
            "errors": list(self.errors),
        }


def file_url(attachable: dict[str, Any]) -> str | None:
    return attachable.get("FileAccessUri") or attachable.get("TempDownloadUri") or None


def entity_links(attachable: dict[str, Any], entity_type: EntityType) -> list[dict[str, Any]]:
    """EntityRefs of ``attachable`` pointing at documents of ``entity_type``."""
    links = []
    for ref in attachable.get("AttachableRef") or []:
        entity_ref = ref.get("EntityRef") if isinstance(ref, dict) else None
        if entity_ref and entity_ref.get("type") == entity_type.value:
            links.append(entity_ref)
    return links


class AttachmentMigrator:
    """Scan attachments in a source company and copy them into a target company.

    The source-document cache lives on the instance, so create one migrator
    per run.
    """

    def __init__(self, source: QBOClient, target: QBOClient | None = None):
        self.source = source
        self.target = target
        self._source_docs: dict[tuple[EntityType, str], dict[str, Any] | None] = {}
        self._logger = logger.bind(source_realm=source.realm_id)

    async def fetch_attachables(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """All attachables in the source company linked to ``entity_type``."""
        return await self.source.query_all(
            EntityType.ATTACHABLE,
            where=f"AttachableRef.EntityRef.type = '{entity_type.value}'",
            page_size=ATTACHABLE_PAGE_SIZE,
        )

    # === Scan ===

    async def scan(self, entity_types: Iterable[EntityType] = SCAN_ENTITY_TYPES) -> ScanResult:
        result = ScanResult()
        for entity_type in entity_types:
            try:
                self._logger.info("attachment_scan_started", entity_type=entity_type.value)
                attachables = await self.fetch_attachables(entity_type)
                result.stats[entity_type.value] = ScanStats(
                    total_attachables=len(attachables),
                    with_file_uri=sum(1 for a in attachables if file_url(a)),
                )
            except Exception as e:
                self._logger.warning(
                    "attachment_scan_failed", entity_type=entity_type.value, error=describe_error(e)
                )
                result.errors.append(f"Type {entity_type.value}: {describe_error(e)}")
        return result

    # === Copy ===

    async def migrate(self, entity_types: Iterable[EntityType] = COPY_ENTITY_TYPES) -> MigrationResult:
        if self.target is None:
            raise ValueError("A target client is required to copy attachments")

        result = MigrationResult()
        for entity_type in entity_types:
            self._logger.info("attachment_copy_started", entity_type=entity_type.value)
            stats = AttachmentTypeStats()
            try:
                await self._migrate_type(entity_type, stats, result.errors)
            except Exception as e:
                self._logger.error(
                    "attachment_type_failed", entity_type=entity_type.value, error=describe_error(e)
                )
                result.errors.append(
                    f"Type {entity_type.value} copy failed (top-level): {describe_error(e)}"
                )
            result.summary[entity_type.value] = stats
            self._logger.info("attachment_copy_finished", entity_type=entity_type.value, **asdict(stats))
        return result

    async def _migrate_type(
        self, entity_type: EntityType, stats: AttachmentTypeStats, errors: list[str]
    ) -> None:
        attachables = await self.fetch_attachables(entity_type)
        stats.total_attachables = len(attachables)

        for attachable in attachables:
            if not file_url(attachable):
                stats.skipped_no_file += 1
                continue
            for link in entity_links(attachable, entity_type):
                stats.total_links += 1
                await self._copy_link(entity_type, attachable, link.get("value"), stats, errors)

    async def _copy_link(
        self,
        entity_type: EntityType,
        attachable: dict[str, Any],
        source_id: Any,
        stats: AttachmentTypeStats,
        errors: list[str],
    ) -> None:
        assert self.target is not None
        type_name = entity_type.value
        attachment_id = attachable.get("Id")

        if not source_id:
            stats.missing_source_doc += 1
            errors.append(f"Missing source id on {type_name} link (attachment {attachment_id})")
            return
        source_id = str(source_id)

        try:
            source_doc = await self._source_document(entity_type, source_id)
        except Exception as e:
            stats.missing_source_doc += 1
            errors.append(f"Source fetch failed ({type_name} #{source_id}): {describe_error(e)}")
            return
        if not source_doc:
            stats.missing_source_doc += 1
            errors.append(
                f"Source {type_name} #{source_id} not found (attachment {attachment_id})"
            )
            return

        doc_number = business_key_for(entity_type, source_doc)
        if not doc_number:
            stats.missing_doc_number += 1
            errors.append(
                f"No DocNumber for source {type_name} #{source_id} (attachment {attachment_id})"
            )
            return

        try:
            target_doc = await self.find_target(entity_type, doc_number, stats)
        except Exception as e:
            stats.missing_target_doc += 1
            errors.append(
                f"Target lookup failed ({type_name}, DocNumber={doc_number}): {describe_error(e)}"
            )
            return
        if not target_doc or not target_doc.get("Id"):
            stats.missing_target_doc += 1
            errors.append(
                f"No target {type_name} found in TO for DocNumber={doc_number} "
                f"(source {source_id}, attachment {attachment_id})"
            )
            return
        target_id = str(target_doc["Id"])

        try:
            content = await self.source.download(file_url(attachable) or "")
        except Exception as e:
            stats.skipped_no_file += 1
            errors.append(
                f"Download failed (attachment {attachment_id}, {type_name} "
                f"DocNumber={doc_number}): {describe_error(e)}"
            )
            return

        file_name = attachable.get("FileName") or DEFAULT_FILE_NAME
        try:
            await self.target.upload_attachment(
                entity_type,
                target_id,
                file_name,
                content,
                note=attachable.get("Note") or "",
                content_type=attachable.get("ContentType") or "application/octet-stream",
            )
        except Exception as e:
            stats.upload_failed += 1
            errors.append(
                f"Upload failed (attachment {attachment_id} -> TO {type_name} #{target_id}, "
                f"DocNumber={doc_number}): {describe_error(e)}"
            )
            return

        stats.copied += 1
        self._logger.info(
            "attachment_copied",
            entity_type=type_name,
            attachment_id=attachment_id,
            source_id=source_id,
            target_id=target_id,
            doc_number=doc_number,
        )

    async def _source_document(self, entity_type: EntityType, source_id: str) -> dict[str, Any] | None:
        key = (entity_type, source_id)
        if key not in self._source_docs:
            self._source_docs[key] = await self.source.fetch_by_id(entity_type, source_id)
        return self._source_docs[key]

    async def find_target(
        self,
        entity_type: EntityType,
        doc_number: str,
        stats: AttachmentTypeStats | None = None,
    ) -> dict[str, Any] | None:
        """Find the target document whose DocNumber equals ``doc_number``.

        DocNumber uniqueness is not enforced by QBO. When several documents
        match, the first one returned is used and the ambiguity is logged.
        """
        assert self.target is not None
        response = await self.target.query(
            f"SELECT * FROM {entity_type.value} "
            f"WHERE {TARGET_MATCH_FIELD} = '{escape_query_literal(doc_number)}'"
        )
        matches = response.get(entity_type.value) or []
        if not matches:
            return None
        if len(matches) > 1:
            self._logger.warning(
                "duplicate_business_key",
                entity_type=entity_type.value,
                doc_number=doc_number,
                matches=[m.get("Id") for m in matches],
            )
            if stats is not None:
                stats.duplicate_target_matches += 1
        return matches[0]
