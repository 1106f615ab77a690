# =============================================================================
# homeroom_core/services/report_service.py
# Class Reports computed from the local snapshot
# =============================================================================
"""
ReportService - weekly and monthly class summaries.

Reports are computed locally from the cached snapshot; no request is made.

Usage:
    reports = ReportService(data_service)
    result = reports.weekly("c1", "2024-03-04", "2024-03-10")
    if result:
        print(result.data["content"]["attendanceRate"])
"""

from __future__ import annotations
import calendar
import math
from typing import Any, Dict, List

import pandas as pd

from homeroom_core.offline.data_service import ClassroomDataService, new_id
from homeroom_core.offline.snapshot import utc_now
from homeroom_core.services.base_service import BaseService, ServiceResult

# Attendance status values as stored in the spreadsheet
ABSENT_STATUS = "Vắng"
LATE_STATUS = "Muộn"

# Behavior types
PRAISE_TYPE = "PRAISE"
WARN_TYPE = "WARN"

TOP_BEHAVIOR_COUNT = 3


def _percent(part: float, whole: float) -> int:
    """Percentage rounded half up; 0 when there is nothing to divide by."""
    if not whole:
        return 0
    return int(math.floor(part / whole * 100 + 0.5))


def _top_students(
    behaviors: pd.DataFrame,
    names: Dict[Any, Any],
    behavior_type: str,
    value: str,
) -> List[Dict[str, Any]]:
    """
    Students of one behavior type ranked by ``value``: summed points for
    "points", number of entries for "count". Ties keep the order the records were listed in.
    """
    rows = behaviors[behaviors["type"] == behavior_type]
    if rows.empty:
        return []

    if value == "points":
        totals = rows.groupby("studentId", sort=False)["points"].sum()
    else:
        totals = rows.groupby("studentId", sort=False).size()
    totals = totals.sort_values(ascending=False, kind="stable").head(TOP_BEHAVIOR_COUNT)

    return [
        {"studentId": student_id, "fullName": names.get(student_id), value: int(total)}
        for student_id, total in totals.items()
    ]


class ReportService(BaseService):
    """Attendance and task summaries for one class over a date range."""

    def __init__(self, data_service: ClassroomDataService):
        super().__init__()
        self.data = data_service

    def weekly(self, class_id: str, start_date: str, end_date: str) -> ServiceResult:
        return self.safe_execute(
            f"Weekly report for class {class_id}",
            self._build_report,
            class_id,
            start_date,
            end_date,
            report_type="WEEKLY",
            title=f"Weekly report {start_date} - {end_date}",
        )

    def monthly(self, class_id: str, month: int, year: int) -> ServiceResult:
        """Report from the first to the last calendar day of the month."""
        return self.safe_execute(
            f"Monthly report for class {class_id}",
            self._build_monthly,
            class_id,
            int(month),
            int(year),
        )

    def _build_monthly(self, class_id: str, month: int, year: int) -> Dict[str, Any]:
        last_day = calendar.monthrange(year, month)[1]
        return self._build_report(
            class_id,
            f"{year:04d}-{month:02d}-01",
            f"{year:04d}-{month:02d}-{last_day:02d}",
            report_type="MONTHLY",
            title=f"Monthly report {month:02d}/{year:04d}",
        )

    def _build_report(
        self,
        class_id: str,
        start_date: str,
        end_date: str,
        report_type: str,
        title: str,
    ) -> Dict[str, Any]:
        attendance = pd.DataFrame(
            self.data.get_attendance_range(class_id, start_date, end_date),
            columns=["studentId", "date", "status"],
        )
        students = self.data.get_students_by_class(class_id)
        student_ids = {s.get("id") for s in students}

        task_ids = {t.get("id") for t in self.data.get_tasks(class_id)}
        replies = pd.DataFrame(
            self.data.task_replies.list(lambda r: r.get("taskId") in task_ids),
            columns=["taskId", "studentId"],
        )

        absences = int((attendance["status"] == ABSENT_STATUS).sum())
        lates = int((attendance["status"] == LATE_STATUS).sum())
        total_records = len(attendance) or 1

        completed = replies[replies["studentId"].isin(student_ids)].drop_duplicates()

        behaviors = pd.DataFrame(
            self.data.get_behaviors(class_id, start_date, end_date),
            columns=["studentId", "type", "points"],
        )
        behaviors = behaviors[behaviors["studentId"].isin(student_ids)].assign(
            points=lambda df: pd.to_numeric(df["points"], errors="coerce").fillna(0)
        )
        names = {s.get("id"): s.get("fullName") for s in students}

        content = {
            "attendanceRate": _percent(total_records - absences, total_records),
            "totalAbsences": absences,
            "totalLates": lates,
            "topPraise": _top_students(behaviors, names, PRAISE_TYPE, "points"),
            "topWarn": _top_students(behaviors, names, WARN_TYPE, "count"),
            "taskCompletionRate": _percent(len(completed), len(task_ids) * len(students)),
            "parentReplyCount": int(len(replies)),
            "totalStudents": len(students),
        }
        self.logger.debug(f"Report content for class {class_id}: {content}")

        return {
            "id": new_id(),
            "title": title,
            "type": report_type,
            "startDate": start_date,
            "endDate": end_date,
            "generatedDate": utc_now().isoformat(),
            "content": content,
        }
