import random
import string
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime, timezone

from attendance_sheet import AttendanceSheet

Condition = Tuple[str, str, Any]

COLLECTIONS = ("classes", "enrollments", "attendance", "paymentStatus", "users")
PENDING_STUDENT_ID = "pending"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    """20-character document id"""
    return ''.join(random.choices(string.ascii_letters + string.digits, k=20))


def matches(doc: Dict[str, Any], conditions: Tuple[Condition, ...]) -> bool:
    """Evaluate ANDed (field, op, value) conditions against one document"""
    for field, op, value in conditions:
        actual = doc.get(field)
        if op == "==":
            ok = actual == value
        elif op == "!=":
            ok = actual != value
        elif op == "in":
            ok = actual in value
        elif actual is None:
            ok = False
        elif op == "<":
            ok = actual < value
        elif op == "<=":
            ok = actual <= value
        elif op == ">":
            ok = actual > value
        elif op == ">=":
            ok = actual >= value
        else:
            raise ValueError(f"Unsupported query operator: {op}")
        if not ok:
            return False
    return True


class ClassroomStore:
    """
    Classroom operations shared by the storage backends.

    Subclasses provide the document primitives: query_where, get_by_id,
    insert, set, update, delete, replace_matching and count.
    """

    # ==================== PRIMITIVES ====================

    def query_where(self, collection: str, *conditions: Condition) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    def replace_matching(self, collection: str, conditions: List[Condition], documents: List[Dict[str, Any]]) -> List[str]:
        """Atomically delete every document matching ``conditions`` and insert ``documents``"""
        raise NotImplementedError

    def count(self, collection: str) -> int:
        raise NotImplementedError

    # ==================== USER OPERATIONS ====================

    def get_teacher_name(self, teacher_id: str, fallback: Optional[str] = None) -> str:
        user = self.get_by_id("users", teacher_id)
        if user and user.get("name"):
            return user["name"]
        return fallback or "Teacher"

    # ==================== CLASS OPERATIONS ====================

    def create_class(self, teacher_id: str, teacher_name: str, class_data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new class owned by ``teacher_id``"""
        class_name = (class_data.get("className") or "").strip()
        subject = (class_data.get("subject") or "").strip()
        fee = class_data.get("feePerSession")

        if not class_name:
            raise ValueError("Class name is required")
        if not subject:
            raise ValueError("Subject is required")
        if not isinstance(fee, (int, float)) or isinstance(fee, bool) or fee <= 0:
            raise ValueError("Fee per session must be a positive number")

        now = utc_now()
        full_class_data = {
            "className": class_name,
            "teacherId": teacher_id,
            "teacherName": teacher_name,
            "subject": subject,
            "feePerSession": fee,
            "isActive": True,
            "totalStudents": 0,
            "createdAt": now,
            "updatedAt": now,
        }
        description = (class_data.get("description") or "").strip()
        if description:
            full_class_data["description"] = description

        class_id = self.insert("classes", full_class_data)
        print(f"[CREATE_CLASS] ✅ Class {class_id} created for teacher {teacher_id}")
        return {"id": class_id, **full_class_data}

    def get_teacher_classes(self, teacher_id: str) -> List[Dict[str, Any]]:
        classes = self.query_where("classes", ("teacherId", "==", teacher_id))
        for cls in classes:
            cls["totalStudents"] = cls.get("totalStudents") or 0
            cls["isActive"] = cls.get("isActive") is not False
        return classes

    def get_class(self, teacher_id: str, class_id: str) -> Optional[Dict[str, Any]]:
        """Get a class only if it belongs to the teacher"""
        cls = self.get_by_id("classes", class_id)
        if not cls or cls.get("teacherId") != teacher_id:
            return None
        return cls

    def update_class(self, teacher_id: str, class_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        cls = self.get_class(teacher_id, class_id)
        if not cls:
            raise KeyError(f"Class {class_id} not found")

        changes: Dict[str, Any] = {}
        if "className" in updates:
            changes["className"] = (updates["className"] or "").strip()
            if not changes["className"]:
                raise ValueError("Class name is required")
        if "subject" in updates:
            changes["subject"] = (updates["subject"] or "").strip()
            if not changes["subject"]:
                raise ValueError("Subject is required")
        if "feePerSession" in updates:
            fee = updates["feePerSession"]
            if not isinstance(fee, (int, float)) or isinstance(fee, bool) or fee <= 0:
                raise ValueError("Fee per session must be a positive number")
            changes["feePerSession"] = fee
        if "description" in updates:
            changes["description"] = (updates["description"] or "").strip()

        changes["updatedAt"] = utc_now()
        self.update("classes", class_id, changes)
        cls.update(changes)
        return cls

    def toggle_class_active(self, teacher_id: str, class_id: str) -> Dict[str, Any]:
        cls = self.get_class(teacher_id, class_id)
        if not cls:
            raise KeyError(f"Class {class_id} not found")

        currently_active = cls.get("isActive") is not False
        changes = {"isActive": not currently_active, "updatedAt": utc_now()}
        self.update("classes", class_id, changes)
        cls.update(changes)
        return cls

    def delete_class(self, teacher_id: str, class_id: str) -> bool:
        """Delete a class. Enrollments and attendance are left in place."""
        if not self.get_class(teacher_id, class_id):
            return False
        return self.delete("classes", class_id)

    # ==================== STUDENT OPERATIONS ====================

    def get_class_students(self, class_id: str) -> List[Dict[str, Any]]:
        return self.query_where("enrollments", ("classId", "==", class_id))

    def get_teacher_students(self, teacher_id: str) -> List[Dict[str, Any]]:
        """Enrollments across all of a teacher's classes"""
        students = []
        for cls in self.get_teacher_classes(teacher_id):
            for enrollment in self.get_class_students(cls["id"]):
                students.append({**enrollment, "className": cls.get("className")})
        return students

    def add_student(self, cls: Dict[str, Any], email: str, phone_number: str = "") -> Dict[str, Any]:
        """Invite a student by email; the real student id stays pending"""
        email = (email or "").strip()
        if not email:
            raise ValueError("Student email is required")

        existing = self.get_class_students(cls["id"])
        if any(s.get("studentEmail") == email for s in existing):
            raise ValueError("Student is already in this class")

        enrollment = {
            "studentId": PENDING_STUDENT_ID,
            "studentName": email.split("@")[0],
            "studentEmail": email,
            "classId": cls["id"],
            "enrolledAt": utc_now(),
            "status": "active",
            "phoneNumber": (phone_number or "").strip(),
        }
        enrollment_id = self.insert("enrollments", enrollment)

        self.update("classes", cls["id"], {
            "totalStudents": len(existing) + 1,
            "updatedAt": utc_now(),
        })
        print(f"[ADD_STUDENT] ✅ {email} added to class {cls['id']}")
        return {"id": enrollment_id, **enrollment}

    def update_student(self, enrollment_id: str, name: str, phone_number: str = "") -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValueError("Student name is required")

        changes = {
            "studentName": name,
            "phoneNumber": (phone_number or "").strip(),
            "updatedAt": utc_now(),
        }
        self.update("enrollments", enrollment_id, changes)
        return self.get_by_id("enrollments", enrollment_id)

    def toggle_student_status(self, enrollment: Dict[str, Any]) -> Dict[str, Any]:
        new_status = "inactive" if enrollment.get("status") == "active" else "active"
        self.update("enrollments", enrollment["id"], {"status": new_status})
        return {**enrollment, "status": new_status}

    def remove_student(self, enrollment: Dict[str, Any], cls: Dict[str, Any]) -> bool:
        if not self.delete("enrollments", enrollment["id"]):
            return False

        self.update("classes", cls["id"], {
            "totalStudents": max(0, (cls.get("totalStudents") or 1) - 1),
            "updatedAt": utc_now(),
        })
        print(f"[REMOVE_STUDENT] ✅ Enrollment {enrollment['id']} removed from class {cls['id']}")
        return True

    # ==================== ATTENDANCE OPERATIONS ====================

    def get_attendance_for_date(self, class_id: str, date: str) -> List[Dict[str, Any]]:
        return self.query_where(
            "attendance",
            ("classId", "==", class_id),
            ("date", "==", date),
        )

    def get_teacher_attendance(self, classes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Attendance records of the given classes, queried class by class"""
        records = []
        for cls in classes:
            records.extend(self.query_where("attendance", ("classId", "==", cls["id"])))
        return records

    def save_attendance(self, sheet: AttendanceSheet) -> List[Dict[str, Any]]:
        """Replace all attendance of the sheet's class and date in one atomic write"""
        records = sheet.to_records()
        ids = self.replace_matching(
            "attendance",
            [("classId", "==", sheet.class_id), ("date", "==", sheet.date)],
            records,
        )
        print(f"[SAVE_ATTENDANCE] ✅ {len(ids)} records saved for class {sheet.class_id} on {sheet.date}")
        return [{"id": doc_id, **record} for doc_id, record in zip(ids, records)]

    # ==================== MAINTENANCE ====================

    def get_database_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {f"total_{name}": self.count(name) for name in COLLECTIONS}
        stats["timestamp"] = utc_now()
        return stats
