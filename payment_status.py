from typing import Optional, Dict, Iterable
from datetime import date, datetime, timezone

from attendance_stats import months_in_range, pick_toggle_month

PAYMENT_COLLECTION = "paymentStatus"


def payment_key(student_id: str, class_id: str, month: str) -> str:
    """Document id of a (student, class, month) payment flag"""
    return f"{student_id}_{class_id}_{month}"


class PaymentStatusIndex:
    """Paid/unpaid flags of one teacher's students, per class and month"""

    def __init__(self, store, teacher_id: str):
        self.store = store
        self.teacher_id = teacher_id
        self.statuses: Dict[str, str] = {}

    def load(self, months: Iterable[str]) -> Dict[str, str]:
        """
        Fetch the flags for the given months.

        The cache is replaced only once every month has been fetched, so a
        failing query leaves the previous state in place.
        """
        loaded: Dict[str, str] = {}
        for month in months:
            docs = self.store.query_where(
                PAYMENT_COLLECTION,
                ("teacherId", "==", self.teacher_id),
                ("month", "==", month),
            )
            for doc in docs:
                key = payment_key(doc.get("studentId"), doc.get("classId"), doc.get("month"))
                loaded[key] = doc.get("status", "unpaid")

        self.statuses = loaded
        return dict(self.statuses)

    def load_window(self, date_from: Optional[str], date_to: Optional[str]) -> Dict[str, str]:
        return self.load(months_in_range(date_from, date_to))

    def get(self, student_id: str, class_id: str, month: str) -> str:
        return self.statuses.get(payment_key(student_id, class_id, month), "unpaid")

    def toggle(self, student_id: str, class_id: str, month: str) -> str:
        """
        Flip paid/unpaid for one month and persist it.

        The stored document decides the current status. Writes exactly one
        document; the cached status changes only after the write succeeded.
        """
        key = payment_key(student_id, class_id, month)
        existing = self.store.get_by_id(PAYMENT_COLLECTION, key)
        current = existing.get("status", "unpaid") if existing else "unpaid"
        new_status = "unpaid" if current == "paid" else "paid"
        now = datetime.now(timezone.utc).isoformat()

        if existing:
            self.store.update(PAYMENT_COLLECTION, key, {"status": new_status, "updatedAt": now})
        else:
            self.store.set(PAYMENT_COLLECTION, key, {
                "studentId": student_id,
                "classId": class_id,
                "month": month,
                "status": new_status,
                "teacherId": self.teacher_id,
                "updatedAt": now,
            })

        self.statuses[key] = new_status
        print(f"[PAYMENT_STATUS] {key} -> {new_status}")
        return new_status

    def toggle_for_window(
        self,
        student_id: str,
        class_id: str,
        date_from: Optional[str],
        date_to: Optional[str],
        today: Optional[date] = None,
    ) -> Dict[str, str]:
        """Toggle the month a filter window points at (see pick_toggle_month)"""
        month = pick_toggle_month(months_in_range(date_from, date_to), today)
        if month is None:
            raise ValueError("Date filter does not cover any month")

        status = self.toggle(student_id, class_id, month)
        return {"month": month, "status": status}
