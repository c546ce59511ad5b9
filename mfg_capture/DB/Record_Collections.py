# Record_Collections.py
# Description: Per-collection table layout and remote mapping for captured records.
#
# Imports
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
#
# Local Imports
from ..Constants import (
    COLLECTION_TENSION,
    COLLECTION_STOCKTAKE,
    COLLECTION_FINISH_EARLIER,
)
#
########################################################################################################################
#
# Functions:


@dataclass(frozen=True)
class CollectionSpec:
    """
    Describes how one record collection is stored locally and addressed remotely.

    `json_fields` maps each JSON column to the literal stored when a payload omits it.
    `scalar_fields` maps each plain column to its default (None means "leave NULL").
    """
    key: str
    table: str
    label: str
    json_fields: Dict[str, str]
    scalar_fields: Dict[str, Any]
    remote_path: str
    push_fields: Tuple[str, ...]
    settings_flag: str
    soft_delete: bool = True
    filterable_fields: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def content_fields(self) -> Tuple[str, ...]:
        return tuple(self.scalar_fields) + tuple(self.json_fields)

    def content_from(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Content columns present in `record`; envelope and unknown keys are dropped."""
        return {name: record[name] for name in self.content_fields if name in record}

    def push_payload(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {name: record.get(name) for name in self.push_fields}

    def conflict_id(self, local_id: int) -> str:
        return f"{self.key}-{local_id}"


TENSION_RECORDS = CollectionSpec(
    key=COLLECTION_TENSION,
    table='tension_records',
    label='tension record',
    json_fields={'form_data': '{}', 'measurement_data': '{}', 'problems': '[]', 'metadata': '{}'},
    scalar_fields={'record_type': None, 'csv_data': '', 'user_id': None},
    remote_path='/tension-records',
    push_fields=('record_type', 'csv_data', 'form_data', 'measurement_data', 'problems', 'metadata'),
    settings_flag='sync_tension_records',
    filterable_fields=('record_type', 'user_id'),
)

STOCK_TAKE_RECORDS = CollectionSpec(
    key=COLLECTION_STOCKTAKE,
    table='stock_taking_records',
    label='stock take record',
    json_fields={'indv_batch_data': '[]', 'recorded_batches': '[]', 'metadata': '{}', 'stock_take_summary': '[]'},
    scalar_fields={'session_id': None, 'user_id': None},
    remote_path='/stock-take-records',
    push_fields=('indv_batch_data', 'metadata'),
    settings_flag='sync_stock_take_records',
    filterable_fields=('session_id', 'user_id'),
)

FINISH_EARLIER_RECORDS = CollectionSpec(
    key=COLLECTION_FINISH_EARLIER,
    table='finish_earlier_records',
    label='finish earlier record',
    json_fields={'metadata': '{}', 'entries': '[]'},
    scalar_fields={},
    remote_path='/finish-earlier',
    push_fields=('metadata', 'entries'),
    settings_flag='sync_finish_earlier_records',
    soft_delete=False,
)

COLLECTIONS: Dict[str, CollectionSpec] = {
    spec.key: spec for spec in (TENSION_RECORDS, STOCK_TAKE_RECORDS, FINISH_EARLIER_RECORDS)
}


def get_collection(collection: str) -> CollectionSpec:
    """Looks up a collection by key. Raises KeyError for unknown keys."""
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise KeyError(f"Unknown record collection: '{collection}'") from None


def get_collection_by_table(table_name: str) -> Optional[CollectionSpec]:
    for spec in COLLECTIONS.values():
        if spec.table == table_name:
            return spec
    return None

#
# End of Record_Collections.py
########################################################################################################################
