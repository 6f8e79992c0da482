# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Group Tree Processor - Flattens the faculty/field/mode/semester/group tree

The walk is a pure function: it returns the write operations instead of
touching a batch, and threads the seen-path set through the recursion as a
frozenset. Persisting the result is a separate pass through a BatchWriter.
"""
import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence, Tuple

import config
from models import (
    NODE_CYCLE, NODE_DEAN_GROUP, NODE_STUDY_MODE, NODE_UNIT,
    GroupTreeNode, ProcessingContext, WriteOperation,
)
from storage.document_store import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)

SEMESTER_MARKER = re.compile(r'\s\(([ZL])\)$')


@dataclass(frozen=True)
class GroupTreeResult:
    """Operations produced by one walk of the group tree"""
    operations: Tuple[WriteOperation, ...] = ()
    groups_found: int = 0
    skipped: int = 0
    seen: FrozenSet[Tuple[str, str]] = frozenset()

    def __add__(self, other: 'GroupTreeResult') -> 'GroupTreeResult':
        return GroupTreeResult(
            operations=self.operations + other.operations,
            groups_found=self.groups_found + other.groups_found,
            skipped=self.skipped + other.skipped,
            seen=self.seen | other.seen,
        )


def semester_identifier(label: str, academic_year_start: int) -> Optional[str]:
    """``2024Z`` for a "(Z)" group, ``2025L`` for an "(L)" group, else None"""
    match = SEMESTER_MARKER.search(label)
    if not match:
        return None
    if match.group(1) == 'Z':
        return f"{academic_year_start}Z"
    return f"{academic_year_start + 1}L"


def group_display_name(label: str) -> str:
    """Group label without the ':' suffix and the semester marker"""
    name = label.split(':')[0] if ':' in label else label
    return SEMESTER_MARKER.sub('', name).strip()


def _derive_context(node: GroupTreeNode, context: ProcessingContext) -> ProcessingContext:
    if node.kind == NODE_UNIT:
        return dataclasses.replace(context, field_of_study=node.label.strip())
    if node.kind == NODE_STUDY_MODE:
        return dataclasses.replace(context, study_mode=node.label.strip())
    if node.kind == NODE_CYCLE:
        return dataclasses.replace(context, semester=node.label.strip())
    return context


def _group_operations(node: GroupTreeNode, context: ProcessingContext, academic_year: str,
                      academic_year_start: int, seen: FrozenSet[Tuple[str, str]]) -> GroupTreeResult:
    semester_id = semester_identifier(node.label, academic_year_start)
    group_name = group_display_name(node.label)
    segments = [context.field_of_study, context.study_mode, context.semester, group_name]

    if not semester_id or not all(segments):
        logger.warning(
            f"Skipping group '{node.label}' - missing context or semester marker",
            extra={'context': dataclasses.asdict(context), 'semester': semester_id}
        )
        return GroupTreeResult(skipped=1, seen=seen)
    if any('/' in segment for segment in segments):
        logger.warning(f"Skipping group '{node.label}' - '/' cannot appear in a store path")
        return GroupTreeResult(skipped=1, seen=seen)

    root = config.DEAN_GROUPS_COLLECTION
    year_path = f"{root}/{academic_year}"
    field_path = f"{year_path}/{semester_id}/{context.field_of_study}"
    semester_path = f"{field_path}/{context.study_mode}/{context.semester}"

    key = (semester_path, group_name)
    if key in seen:
        logger.debug(f"Duplicate group '{group_name}' under {semester_path}")
        return GroupTreeResult(seen=seen)

    operations = (
        WriteOperation.upsert(year_path, {'lastUpdated': SERVER_TIMESTAMP}),
        WriteOperation.upsert(field_path, {'lastUpdated': SERVER_TIMESTAMP}),
        WriteOperation.upsert(semester_path, {group_name: node.id}),
        WriteOperation.upsert(
            f"{config.GROUP_DETAILS_COLLECTION}/{node.id}",
            {'groupName': group_name, 'fullPath': semester_path}
        ),
    )
    return GroupTreeResult(operations=operations, groups_found=1, seen=seen | {key})


def _process_node(node: GroupTreeNode, context: ProcessingContext, academic_year: str,
                  academic_year_start: int, seen: FrozenSet[Tuple[str, str]]) -> GroupTreeResult:
    context = _derive_context(node, context)

    result = GroupTreeResult(seen=seen)
    if node.kind == NODE_DEAN_GROUP and node.id is not None:
        result = _group_operations(node, context, academic_year, academic_year_start, seen)

    for child in node.children:
        child_result = _process_node(child, context, academic_year, academic_year_start, result.seen)
        result = result + child_result
    return result


def process_group_tree(root_nodes: Sequence[GroupTreeNode], academic_year: str,
                       academic_year_start: int) -> GroupTreeResult:
    """
    Walk the group tree depth-first and produce every write it implies

    Args:
        root_nodes: Top-level nodes of the tree
        academic_year: e.g. "2024-2025"
        academic_year_start: e.g. 2024

    Returns:
        GroupTreeResult with the flat operation list
    """
    if not root_nodes:
        logger.info("Group tree is empty - nothing to write")
        return GroupTreeResult()

    result = GroupTreeResult()
    for node in root_nodes:
        result = result + _process_node(node, ProcessingContext(), academic_year,
                                        academic_year_start, result.seen)

    logger.info(
        f"🌳 Group tree processed: {result.groups_found} groups, {result.skipped} skipped, "
        f"{len(result.operations)} operations"
    )
    return result


def parse_group_tree(items: List[dict]) -> List[GroupTreeNode]:
    """Turn the upstream's tree items into GroupTreeNodes"""
    return [GroupTreeNode.from_api(item) for item in items if isinstance(item, dict)]
