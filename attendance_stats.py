import re
from typing import Optional, Dict, Any, List, Iterable, Tuple
from datetime import date, datetime, timedelta
from pydantic import BaseModel, ConfigDict, field_validator

ATTENDANCE_STATUSES = ("present", "absent", "late", "excused", "makeup")
CHARGEABLE_STATUSES = ("present", "late", "absent", "makeup")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class FilterCriteria(BaseModel):
    """Active filters for the attendance views. ``None`` means "all"."""

    model_config = ConfigDict(frozen=True)

    class_id: Optional[str] = None
    student_id: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    status: Optional[str] = None

    @field_validator('class_id', 'student_id', 'status', 'date_from', 'date_to', mode='before')
    @classmethod
    def normalize_all(cls, v):
        # The UI sends "all" or "" for an unset filter
        if v is None or v == "" or v == "all":
            return None
        return v

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in ATTENDANCE_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(ATTENDANCE_STATUSES)}")
        return v

    @field_validator('date_from', 'date_to')
    @classmethod
    def validate_date(cls, v):
        if v is not None and not DATE_PATTERN.match(v):
            raise ValueError("Dates must be in YYYY-MM-DD format")
        return v


# ==================== FEE COMPUTATION ====================

def fee_per_session(class_data: Optional[Dict[str, Any]]) -> float:
    if not class_data:
        return 0
    return class_data.get("feePerSession") or 0


def fee_for_record(record: Dict[str, Any], class_data: Optional[Dict[str, Any]]) -> float:
    """
    Fee charged for one attendance record.

    - excused: nothing
    - makeup: the record's own fee when set, otherwise the class fee
    - present / late / absent: the class fee (absence does not waive the session)
    """
    status = record.get("status")
    session_fee = fee_per_session(class_data)

    if status == "makeup":
        return record.get("fee") or session_fee
    if status in CHARGEABLE_STATUSES:
        return session_fee
    return 0


# ==================== FILTERING ====================

def scope_to_classes(records: Iterable[Dict[str, Any]], classes: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep only records whose class belongs to the given class list"""
    class_ids = {c.get("id") for c in classes}
    return [r for r in records if r.get("classId") in class_ids]


def filter_records(records: Iterable[Dict[str, Any]], criteria: FilterCriteria) -> List[Dict[str, Any]]:
    result = []
    for record in records:
        if criteria.class_id is not None and record.get("classId") != criteria.class_id:
            continue
        if criteria.student_id is not None and record.get("studentId") != criteria.student_id:
            continue
        # Dates are ISO strings, so string comparison is chronological
        if criteria.date_from and record.get("date", "") < criteria.date_from:
            continue
        if criteria.date_to and record.get("date", "") > criteria.date_to:
            continue
        if criteria.status is not None and record.get("status") != criteria.status:
            continue
        result.append(record)
    return result


def filter_classes(classes: Iterable[Dict[str, Any]], search: Optional[str]) -> List[Dict[str, Any]]:
    """Case-insensitive search on class name, subject and teacher name"""
    if not search:
        return list(classes)
    term = search.strip().lower()
    return [
        c for c in classes
        if term in (c.get("className") or "").lower()
        or term in (c.get("subject") or "").lower()
        or term in (c.get("teacherName") or "").lower()
    ]


def filter_students(students: Iterable[Dict[str, Any]], search: Optional[str]) -> List[Dict[str, Any]]:
    """Search students by name, email or phone number"""
    if not search:
        return list(students)
    term = search.strip()
    lowered = term.lower()
    return [
        s for s in students
        if lowered in (s.get("studentName") or "").lower()
        or lowered in (s.get("studentEmail") or "").lower()
        or term in (s.get("phoneNumber") or "")
    ]


# ==================== AGGREGATION ====================

def _empty_counts() -> Dict[str, Any]:
    return {"present": 0, "late": 0, "excused": 0, "absent": 0, "makeup": 0, "totalFee": 0}


def student_class_stats(
    records: Iterable[Dict[str, Any]],
    classes_by_id: Dict[str, Dict[str, Any]],
) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """
    Group records by class, then by student.

    Returns {classId: {studentId: counts}} where counts holds one entry per
    status plus ``totalFee``. Ordering follows first appearance in ``records``.
    """
    stats: Dict[str, Dict[str, Dict[str, Any]]] = {}

    for record in records:
        class_id = record.get("classId")
        student_id = record.get("studentId")
        per_class = stats.setdefault(class_id, {})
        counts = per_class.get(student_id)
        if counts is None:
            counts = _empty_counts()
            per_class[student_id] = counts

        status = record.get("status")
        if status in ATTENDANCE_STATUSES:
            counts[status] += 1
        counts["totalFee"] += fee_for_record(record, classes_by_id.get(class_id))

    return stats


def class_totals(stats: Dict[str, Dict[str, Dict[str, Any]]]) -> Dict[str, Dict[str, Any]]:
    """Sum per-student counts into one row per class"""
    totals = {}
    for class_id, students in stats.items():
        row = _empty_counts()
        for counts in students.values():
            for key in row:
                row[key] += counts[key]
        totals[class_id] = row
    return totals


def summarize(records: Iterable[Dict[str, Any]], classes_by_id: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    summary = {"totalRecords": 0, **_empty_counts()}
    for record in records:
        summary["totalRecords"] += 1
        status = record.get("status")
        if status in ATTENDANCE_STATUSES:
            summary[status] += 1
        summary["totalFee"] += fee_for_record(record, classes_by_id.get(record.get("classId")))
    return summary


def monthly_summary(
    records: Iterable[Dict[str, Any]],
    classes_by_id: Dict[str, Dict[str, Any]],
) -> Dict[str, Dict[str, Any]]:
    """Same shape as summarize(), bucketed by the record's YYYY-MM"""
    buckets: Dict[str, List[Dict[str, Any]]] = {}
    for record in records:
        buckets.setdefault(record.get("date", "")[:7], []).append(record)
    return {month: summarize(items, classes_by_id) for month, items in buckets.items()}


def monthly_trends(monthly: Dict[str, Dict[str, Any]], limit: int = 6) -> List[Dict[str, Any]]:
    """Most recent months first; ``total`` counts present, absent and late only"""
    trends = []
    for month in sorted(monthly.keys(), reverse=True)[:limit]:
        data = monthly[month]
        trends.append({
            "month": month,
            "present": data["present"],
            "absent": data["absent"],
            "late": data["late"],
            "excused": data["excused"],
            "makeup": data["makeup"],
            "total": data["present"] + data["absent"] + data["late"],
        })
    return trends


def records_by_date(records: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for record in records:
        grouped.setdefault(record.get("date"), []).append(record)
    return grouped


def student_fee_breakdown(
    records: Iterable[Dict[str, Any]],
    classes_by_id: Dict[str, Dict[str, Any]],
    student_id: str,
) -> Dict[str, Any]:
    """
    Per-date fee detail for one student.

    One entry per date; when a date has several records the last one wins.
    """
    by_date: Dict[str, Dict[str, Any]] = {}
    for record in records:
        if record.get("studentId") != student_id:
            continue
        by_date[record.get("date")] = {
            **record,
            "fee": fee_for_record(record, classes_by_id.get(record.get("classId"))),
        }

    return {
        "studentId": student_id,
        "records": by_date,
        "totalFee": sum(entry["fee"] for entry in by_date.values()),
    }


def build_report(
    records: Iterable[Dict[str, Any]],
    classes: List[Dict[str, Any]],
    criteria: FilterCriteria,
) -> Dict[str, Any]:
    """Every derived statistics view, computed from one filtered record list"""
    classes_by_id = {c.get("id"): c for c in classes}
    filtered = filter_records(scope_to_classes(records, classes), criteria)

    per_student = student_class_stats(filtered, classes_by_id)
    monthly = monthly_summary(filtered, classes_by_id)

    return {
        "filters": criteria.model_dump(),
        "summary": summarize(filtered, classes_by_id),
        "studentStats": per_student,
        "classTotals": class_totals(per_student),
        "monthly": monthly,
        "monthlyTrends": monthly_trends(monthly),
        "recordsByDate": records_by_date(filtered),
    }


# ==================== MONTH RANGES ====================

def _parse_month_start(value: Optional[str]) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    for fmt in ("%Y-%m-%d", "%Y-%m"):
        try:
            return datetime.strptime(value.strip(), fmt).date().replace(day=1)
        except ValueError:
            continue
    return None


def _next_month(d: date) -> date:
    if d.month == 12:
        return d.replace(year=d.year + 1, month=1)
    return d.replace(month=d.month + 1)


def months_in_range(date_from: Optional[str], date_to: Optional[str]) -> List[str]:
    """
    All calendar months touched by [date_from, date_to], ascending, as YYYY-MM.

    Empty when a bound is missing or malformed, or when the start month is
    after the end month.
    """
    current = _parse_month_start(date_from)
    end = _parse_month_start(date_to)
    if current is None or end is None:
        return []

    months = []
    while current <= end:
        months.append(current.strftime("%Y-%m"))
        current = _next_month(current)
    return months


def pick_toggle_month(months: List[str], today: Optional[date] = None) -> Optional[str]:
    """Month a window-level payment toggle applies to"""
    if not months:
        return None
    if len(months) == 1:
        return months[0]

    current_month = (today or date.today()).strftime("%Y-%m")
    return current_month if current_month in months else months[0]


def month_window(day: date) -> Tuple[str, str]:
    """First and last day of the month containing ``day``"""
    first = day.replace(day=1)
    last = _next_month(first) - timedelta(days=1)
    return first.isoformat(), last.isoformat()


def shift_month_window(anchor: date, direction: str, today: Optional[date] = None) -> Tuple[str, str]:
    """Window for the previous, next or current month relative to ``anchor``"""
    first = anchor.replace(day=1)
    if direction == "prev":
        target = (first - timedelta(days=1)).replace(day=1)
    elif direction == "next":
        target = _next_month(first)
    elif direction == "current":
        target = today or date.today()
    else:
        raise ValueError("Direction must be prev, next or current")
    return month_window(target)
