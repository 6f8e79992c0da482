# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Store Queries - Read helpers over the schedule and group documents
"""
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

import config
from storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


def classes_collection(group_id: int) -> str:
    return f"{config.SCHEDULES_COLLECTION}/{group_id}/{config.CLASSES_SUBCOLLECTION}"


def load_week_documents(store: DocumentStore, group_id: int, week_id: str) -> List[Tuple[str, Dict[str, Any]]]:
    """(doc_id, data) of every stored entry of one (group, week)"""
    return store.query(classes_collection(group_id), 'weekId', week_id)


def get_schedule_for_week(store: DocumentStore, group_id: int, week_id: str) -> List[Dict[str, Any]]:
    """Entries of one group for one week, ordered by start time"""
    documents = store.query(classes_collection(group_id), 'weekId', week_id, order_by='startTime')
    if not documents:
        logger.info(f"No classes found for group {group_id} in week {week_id}")
    return [data for _, data in documents]


def get_schedule_for_day(store: DocumentStore, group_id: int, day: str) -> List[Dict[str, Any]]:
    """Entries of one group for one day (YYYY-MM-DD), ordered by start time"""
    documents = store.query(classes_collection(group_id), 'day', day, order_by='startTime')
    if not documents:
        logger.info(f"No classes found for group {group_id} on {day}")
    return [data for _, data in documents]


def academic_year_for_semester(semester_identifier: str) -> str:
    """``2024Z`` -> ``2024-2025``; ``2025L`` -> ``2024-2025``"""
    year = int(semester_identifier[:4])
    if semester_identifier.endswith('Z'):
        return f"{year}-{year + 1}"
    return f"{year - 1}-{year}"


def _group_ids(data: Dict[str, Any]) -> List[int]:
    return [value for value in data.values() if isinstance(value, int) and not isinstance(value, bool)]


def get_all_group_ids_for_semester(store: DocumentStore, semester_identifier: str) -> Set[int]:
    """
    Every dean group id stored for a semester

    Walks ``deanGroups/{year}/{semester}/{field}/{mode}/{semester doc}`` and
    collects the numeric values of the semester documents.
    """
    academic_year = academic_year_for_semester(semester_identifier)
    fields_path = f"{config.DEAN_GROUPS_COLLECTION}/{academic_year}/{semester_identifier}"

    group_ids: Set[int] = set()
    field_docs = store.list_documents(fields_path)
    if not field_docs:
        logger.info(f"No fields of study found for semester {semester_identifier}")
        return group_ids

    for field_id, _ in field_docs:
        field_path = f"{fields_path}/{field_id}"
        for mode in store.list_collections(field_path):
            for _, data in store.list_documents(f"{field_path}/{mode}"):
                group_ids.update(_group_ids(data))
    return group_ids


def get_group_details(store: DocumentStore, group_id: int) -> Optional[Dict[str, Any]]:
    """``{groupName, fullPath}`` of one group, or None"""
    return store.get(f"{config.GROUP_DETAILS_COLLECTION}/{group_id}")


def _tree_for_document(store: DocumentStore, collection: str, doc_id: str,
                       data: Dict[str, Any]) -> Dict[str, Any]:
    doc_path = f"{collection}/{doc_id}"
    subcollections = store.list_collections(doc_path)

    if not subcollections:
        # Leaf: a semester document mapping group names to ids
        children = [
            {'id': str(gid), 'name': name, 'type': 'group', 'children': [], 'groupId': gid}
            for name, gid in data.items()
            if isinstance(gid, int) and not isinstance(gid, bool)
        ]
    else:
        children = [
            {
                'id': sub,
                'name': sub,
                'type': 'parent_node',
                'children': build_tree_for_collection(store, f"{doc_path}/{sub}"),
                'groupId': None,
            }
            for sub in subcollections
        ]

    return {'id': doc_id, 'name': doc_id, 'type': 'parent_node', 'children': children, 'groupId': None}


def build_tree_for_collection(store: DocumentStore, collection: str) -> List[Dict[str, Any]]:
    """
    Nested tree of a collection for the group picker

    Documents with subcollections become parent nodes per subcollection;
    leaf documents list their ``name -> id`` entries as group nodes.
    """
    return [
        _tree_for_document(store, collection, doc_id, data)
        for doc_id, data in store.list_documents(collection)
    ]
