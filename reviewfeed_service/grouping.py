"""
Visit grouping - partitions review records into multi-dish visits
"""
from typing import Iterable

from .models import ReviewRecord, VisitGrouping


def group_by_visit(records: Iterable[ReviewRecord]) -> VisitGrouping:
    """Partition records by visit id.

    Records sharing a non-null visit id form one visit (member order follows
    input order); records without one are standalone. Every input record
    lands in exactly one group.
    """
    grouping = VisitGrouping()

    for record in records:
        if record.visit_id:
            grouping.visits.setdefault(record.visit_id, []).append(record)
        else:
            grouping.standalone.append(record)

    return grouping
