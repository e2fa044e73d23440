"""Hierarchical document structure assembled from flat section declarations.

Raw sections arrive in any order with a declared level, an optional number and
an optional parent number. They are stable-sorted by level rank so that
shallower sections exist before the deeper ones that point at them; parents are
resolved through a ``number -> id`` map seeded with the document's stored
sections. A parent number that does not resolve makes the section a root.

Tree, breadcrumb and depth views never recurse, so documents with thousands of
sections (or a corrupt parent cycle) cannot exhaust the stack.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from licitagraph.exceptions import NotFoundError
from licitagraph.extraction.models import RawSection
from licitagraph.normalization import fold_text
from licitagraph.storage.repository import DocumentRepository
from licitagraph.storage.schemas import DocumentSection, SectionLevel, SectionNode


class StructureStats(BaseModel):
    """Aggregate shape of a document's section tree."""

    total_sections: int = 0
    by_level: Dict[str, int] = Field(default_factory=dict)
    max_depth: int = 0
    root_count: int = 0


def _identity(level: SectionLevel, number: Optional[str], title: str, parent_id: Optional[str]) -> Tuple[str, ...]:
    # Numbering restarts under every clause, so identity is scoped to the parent.
    if number:
        return ("number", number, parent_id or "")
    return ("title", level.value, fold_text(title), parent_id or "")


class StructureBuilder:
    """Builds and serves the section hierarchy of documents."""

    def __init__(self, repository: DocumentRepository) -> None:
        self.repository = repository

    def process_sections(
        self, document_id: str, raw_sections: Sequence[RawSection | Mapping[str, Any]]
    ) -> List[DocumentSection]:
        """Create sections for one batch.

        Returns:
            Newly created sections, in processing order. Sections that repeat
            one already known under the same parent (same number, or same level
            and title when unnumbered) update the stored record instead.
        """
        candidates = [raw for raw in (self._coerce(item, i) for i, item in enumerate(raw_sections)) if raw]
        ordered = sorted(candidates, key=lambda raw: raw.level.rank)

        created: List[DocumentSection] = []
        merged = 0
        with self.repository.document_transaction(document_id):
            existing = self.repository.list_sections(document_id)
            by_number: Dict[str, DocumentSection] = {s.number: s for s in existing if s.number}
            by_identity: Dict[Tuple[str, ...], DocumentSection] = {
                _identity(s.level, s.number, s.title, s.parent_id): s for s in existing
            }
            next_order = max((s.order for s in existing), default=-1) + 1

            for raw in ordered:
                parent = by_number.get(raw.parent_number) if raw.parent_number else None
                identity = _identity(raw.level, raw.number, raw.title, parent.id if parent else None)
                known = by_identity.get(identity)
                if known is not None:
                    known = self._merge(known, raw)
                    merged += 1
                else:
                    if raw.parent_number and parent is None:
                        logger.debug(
                            "Parent number not found; section becomes a root",
                            document_id=document_id,
                            number=raw.number,
                            parent_number=raw.parent_number,
                        )
                    known = self.repository.save_section(
                        DocumentSection(
                            document_id=document_id,
                            level=raw.level,
                            parent_id=parent.id if parent else None,
                            order=next_order,
                            title=raw.title,
                            number=raw.number,
                            summary=raw.summary,
                            source_pages=[raw.page_number],
                            line_start=raw.line_start,
                            line_end=raw.line_end,
                        )
                    )
                    next_order += 1
                    created.append(known)

                by_identity[identity] = known
                if known.number:
                    # Last declaration wins for children that reference this number.
                    by_number[known.number] = known

        logger.info(
            "Processed sections",
            document_id=document_id,
            created=len(created),
            merged=merged,
            skipped=len(raw_sections) - len(candidates),
        )
        return created

    # -----------------------
    # Read operations
    # -----------------------
    def get_sections_by_document_id(self, document_id: str) -> List[DocumentSection]:
        return self.repository.list_sections(document_id)

    def get_sections_by_level(self, document_id: str, level: SectionLevel | str) -> List[DocumentSection]:
        wanted = SectionLevel(level)
        return [s for s in self.repository.list_sections(document_id) if s.level == wanted]

    def get_child_sections(self, document_id: str, parent_id: str) -> List[DocumentSection]:
        return [s for s in self.repository.list_sections(document_id) if s.parent_id == parent_id]

    def get_root_sections(self, document_id: str) -> List[DocumentSection]:
        return [s for s in self.repository.list_sections(document_id) if s.parent_id is None]

    def get_section_by_number(self, document_id: str, number: str) -> Optional[DocumentSection]:
        wanted = number.strip()
        return next(
            (s for s in self.repository.list_sections(document_id) if s.number == wanted), None
        )

    def get_section_by_id(self, section_id: str) -> Optional[DocumentSection]:
        return self.repository.get_section(section_id)

    def get_hierarchy_tree(self, document_id: str) -> List[SectionNode]:
        """Return the forest of root nodes with children attached, siblings by ``order``."""
        sections = self.repository.list_sections(document_id)
        nodes: Dict[str, SectionNode] = {
            s.id: SectionNode.model_validate(s.model_dump()) for s in sections
        }

        roots: List[SectionNode] = []
        for section in sections:
            node = nodes[section.id]
            parent = nodes.get(section.parent_id) if section.parent_id else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)

        # Nodes caught in a parent cycle are unreachable from any root; detach them.
        reachable = self._reachable_ids(roots)
        for section in sections:
            if section.id in reachable:
                continue
            node = nodes[section.id]
            parent = nodes.get(section.parent_id) if section.parent_id else None
            if parent is not None:
                parent.children = [c for c in parent.children if c.id != node.id]
            logger.warning(
                "Section parent chain is cyclic; promoting to root",
                document_id=document_id,
                section_id=section.id,
            )
            roots.append(node)
            reachable.update(self._reachable_ids([node]))

        return roots

    @staticmethod
    def flatten_tree(roots: Sequence[SectionNode]) -> List[DocumentSection]:
        """Pre-order flattening; every parent precedes its children."""
        flat: List[DocumentSection] = []
        stack: List[SectionNode] = list(reversed(roots))
        while stack:
            node = stack.pop()
            flat.append(DocumentSection.model_validate(node.model_dump(exclude={"children"})))
            stack.extend(reversed(node.children))
        return flat

    def get_section_path(self, section_id: str) -> List[DocumentSection]:
        """Breadcrumb from the root down to ``section_id`` (inclusive)."""
        path: List[DocumentSection] = []
        seen: set[str] = set()
        current_id: Optional[str] = section_id
        while current_id and current_id not in seen:
            seen.add(current_id)
            section = self.repository.get_section(current_id)
            if section is None:
                break
            path.append(section)
            current_id = section.parent_id
        path.reverse()
        return path

    def get_structure_stats(self, document_id: str) -> StructureStats:
        sections = self.repository.list_sections(document_id)
        by_level = {level.value: 0 for level in SectionLevel}
        for section in sections:
            by_level[section.level.value] += 1

        depths = self._depths(sections)
        return StructureStats(
            total_sections=len(sections),
            by_level=by_level,
            max_depth=max(depths.values(), default=0),
            root_count=sum(1 for s in sections if s.parent_id is None),
        )

    # -----------------------
    # Mutations
    # -----------------------
    def update_summary(self, section_id: str, summary: str) -> DocumentSection:
        section = self._require(section_id)
        with self.repository.document_transaction(section.document_id):
            section.summary = summary.strip() or None
            return self.repository.save_section(section)

    def add_source_page(self, section_id: str, page_number: int) -> DocumentSection:
        section = self._require(section_id)
        with self.repository.document_transaction(section.document_id):
            if section.add_page(page_number):
                section = self.repository.save_section(section)
            return section

    def clear_document_sections(self, document_id: str) -> int:
        with self.repository.document_transaction(document_id):
            return self.repository.delete_sections(document_id)

    # -----------------------
    # Internals
    # -----------------------
    def _coerce(self, item: RawSection | Mapping[str, Any], index: int) -> Optional[RawSection]:
        if isinstance(item, RawSection):
            return item
        if not isinstance(item, Mapping):
            return None
        try:
            return RawSection.model_validate(dict(item))
        except ValidationError as exc:
            logger.warning("Skipping malformed section", index=index, errors=exc.error_count())
            return None

    def _merge(self, section: DocumentSection, raw: RawSection) -> DocumentSection:
        changed = section.add_page(raw.page_number)
        if raw.summary and not section.summary:
            section.summary = raw.summary
            changed = True
        if changed:
            return self.repository.save_section(section)
        return section

    def _require(self, section_id: str) -> DocumentSection:
        section = self.repository.get_section(section_id)
        if section is None:
            raise NotFoundError(f"Section not found: {section_id}")
        return section

    @staticmethod
    def _reachable_ids(roots: Sequence[SectionNode]) -> set[str]:
        reachable: set[str] = set()
        stack = list(roots)
        while stack:
            node = stack.pop()
            if node.id in reachable:
                continue
            reachable.add(node.id)
            stack.extend(node.children)
        return reachable

    @staticmethod
    def _depths(sections: Sequence[DocumentSection]) -> Dict[str, int]:
        """Depth of every section (roots are 1), memoized and cycle-safe."""
        parents = {s.id: s.parent_id for s in sections}
        depths: Dict[str, int] = {}
        for section in sections:
            chain: List[str] = []
            on_chain: set[str] = set()
            current: Optional[str] = section.id
            base = 0
            while current is not None and current in parents:
                if current in depths:
                    base = depths[current]
                    break
                if current in on_chain:
                    # Cycle: restart counting from here
                    break
                chain.append(current)
                on_chain.add(current)
                current = parents[current]
            for offset, node_id in enumerate(reversed(chain), start=1):
                depths[node_id] = base + offset
        return depths
