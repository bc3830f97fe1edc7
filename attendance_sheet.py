from typing import Optional, Dict, Any, List, Iterable
from datetime import datetime, timezone

from attendance_stats import ATTENDANCE_STATUSES


class AttendanceSheet:
    """
    Attendance being taken for one class on one date.

    Every rostered student is either unmarked (None) or holds exactly one
    status. Selecting the status a student already has clears the mark.
    """

    def __init__(self, class_id: str, date: str, roster: Iterable[str]):
        self.class_id = class_id
        self.date = date
        self.roster: List[str] = list(roster)
        self.marks: Dict[str, str] = {}
        self.notes: Dict[str, str] = {}
        self.makeup_fees: Dict[str, float] = {}

    @classmethod
    def from_records(cls, class_id: str, date: str, roster: Iterable[str], records: Iterable[Dict[str, Any]]) -> "AttendanceSheet":
        """Rebuild the sheet from saved attendance records"""
        sheet = cls(class_id, date, roster)
        for record in records:
            student_id = record.get("studentId")
            status = record.get("status")
            if status not in ATTENDANCE_STATUSES:
                continue
            sheet.marks[student_id] = status
            if record.get("note"):
                sheet.notes[student_id] = record["note"]
            if record.get("fee"):
                sheet.makeup_fees[student_id] = record["fee"]
        return sheet

    def status_of(self, student_id: str) -> Optional[str]:
        return self.marks.get(student_id)

    def select(self, student_id: str, status: str) -> Optional[str]:
        """Mark a student, or clear the mark when ``status`` is already selected"""
        if status not in ATTENDANCE_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(ATTENDANCE_STATUSES)}")
        if student_id not in self.roster:
            raise ValueError(f"Student {student_id} is not enrolled in this class")

        if self.marks.get(student_id) == status:
            self.clear(student_id)
            return None

        self.marks[student_id] = status
        return status

    def clear(self, student_id: str):
        self.marks.pop(student_id, None)
        self.notes.pop(student_id, None)
        self.makeup_fees.pop(student_id, None)

    def set_note(self, student_id: str, note: str):
        self.notes[student_id] = note

    def set_makeup_fee(self, student_id: str, fee: float):
        if fee is not None and fee < 0:
            raise ValueError("Makeup fee cannot be negative")
        self.makeup_fees[student_id] = fee

    def mark_all_present(self):
        """
        If every rostered student is already present, clear the sheet.
        Otherwise mark every rostered student present.
        """
        if self.roster and all(self.marks.get(sid) == "present" for sid in self.roster):
            self.marks = {}
            self.notes = {}
            self.makeup_fees = {}
            return

        self.set_all_present()

    def set_all_present(self):
        """Mark every rostered student present; notes are kept"""
        for student_id in self.roster:
            self.marks[student_id] = "present"
            self.makeup_fees.pop(student_id, None)

    def counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in ATTENDANCE_STATUSES}
        for status in self.marks.values():
            counts[status] += 1
        return counts

    def to_records(self) -> List[Dict[str, Any]]:
        """Attendance documents for every marked student"""
        created_at = datetime.now(timezone.utc).isoformat()
        records = []
        for student_id, status in self.marks.items():
            record = {
                "studentId": student_id,
                "classId": self.class_id,
                "date": self.date,
                "status": status,
                "note": self.notes.get(student_id, ""),
                "createdAt": created_at,
            }
            fee = self.makeup_fees.get(student_id)
            if status == "makeup" and fee:
                record["fee"] = fee
            records.append(record)
        return records

    def to_dict(self) -> Dict[str, Any]:
        marks = {sid: self.marks.get(sid) for sid in self.roster}
        # Students marked on this date but no longer on the roster
        for sid, status in self.marks.items():
            marks.setdefault(sid, status)
        return {
            "classId": self.class_id,
            "date": self.date,
            "marks": marks,
            "notes": dict(self.notes),
            "makeupFees": dict(self.makeup_fees),
            "counts": self.counts(),
        }
