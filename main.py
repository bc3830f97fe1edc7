from fastapi import FastAPI, HTTPException, Depends, status, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, field_validator
from typing import Optional, List, Dict, Any, Callable
import os
import re
from datetime import datetime, timedelta, timezone, date as date_type
import jwt
from dotenv import load_dotenv
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import asyncio
import time

from attendance_stats import (
    ATTENDANCE_STATUSES,
    DATE_PATTERN,
    FilterCriteria,
    build_report,
    filter_classes,
    filter_records,
    filter_students,
    month_window,
    months_in_range,
    scope_to_classes,
    shift_month_window,
    student_fee_breakdown,
)
from attendance_sheet import AttendanceSheet
from payment_status import PaymentStatusIndex

# Load environment variables from this file's directory so running uvicorn from repo root still works
ENV_PATH = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(dotenv_path=ENV_PATH)

app = FastAPI(title="Tutor Attendance API")

# Check database type from environment
DB_TYPE = os.getenv("DB_TYPE", "file")  # "file" or "mongodb"

if DB_TYPE == "mongodb":
    from mongodb_manager import MongoDBManager
    MONGO_URI = os.getenv("MONGO_URI")
    MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "tutor_attendance_db")

    if not MONGO_URI:
        raise ValueError("MONGO_URI environment variable not set")

    db = MongoDBManager(mongo_uri=MONGO_URI, db_name=MONGO_DB_NAME)
    print("✅ Using MongoDB for storage")
else:
    from db_manager import DatabaseManager
    db = DatabaseManager(base_dir=os.getenv("DATA_DIR", "data"))
    print("✅ Using file-based storage")

# Environment
APP_ENV = os.getenv("APP_ENV", "development").lower()  # development | production

# CORS Configuration
# In production set CORS_ORIGINS to a comma-separated list, e.g.
#   CORS_ORIGINS=https://yourdomain.com,https://www.yourdomain.com
cors_origins_env = os.getenv("CORS_ORIGINS", "").strip()

cors_kwargs: Dict[str, Any] = {
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
}

if cors_origins_env:
    cors_kwargs["allow_origins"] = [o.strip() for o in cors_origins_env.split(",") if o.strip()]
else:
    cors_kwargs["allow_origins"] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

app.add_middleware(CORSMiddleware, **cors_kwargs)

# ==================== TIMEOUT MIDDLEWARE ====================

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Fail requests that take longer than ``timeout`` seconds with a 504"""

    def __init__(self, app, timeout: int = 30):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        start_time = time.time()

        try:
            response = await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout
            )

            duration = time.time() - start_time
            if duration > 5:
                print(f"⚠️ Slow request: {request.method} {request.url.path} took {duration:.2f}s")

            return response

        except asyncio.TimeoutError:
            duration = time.time() - start_time
            print(f"⏱️ Request timeout: {request.method} {request.url.path} after {duration:.2f}s")

            return JSONResponse(
                status_code=504,
                content={
                    "detail": f"Request timeout - operation took longer than {self.timeout} seconds",
                    "error": "GATEWAY_TIMEOUT",
                    "path": str(request.url.path),
                    "method": request.method
                }
            )

REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "30"))
app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
print(f"✅ Timeout middleware enabled: {REQUEST_TIMEOUT}s per request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        print(f"📥 {request.method} {request.url.path}")

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            status_icon = "✅" if response.status_code < 400 else "❌"
            print(f"{status_icon} {request.method} {request.url.path} - {response.status_code} ({duration:.2f}s)")

            response.headers["X-Process-Time"] = f"{duration:.4f}"
            return response
        except Exception as e:
            duration = time.time() - start_time
            print(f"❌ {request.method} {request.url.path} - ERROR ({duration:.2f}s): {str(e)}")
            raise

app.add_middleware(RequestLoggingMiddleware)

# Security
security = HTTPBearer()

# Configuration
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
if APP_ENV != "development" and SECRET_KEY == "your-secret-key-change-this-in-production":
    raise ValueError("SECRET_KEY must be set in production")
ALGORITHM = "HS256"

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# ==================== PYDANTIC MODELS ====================

class ClassRequest(BaseModel):
    className: str
    subject: str
    feePerSession: float
    description: Optional[str] = None

class ClassUpdateRequest(BaseModel):
    className: Optional[str] = None
    subject: Optional[str] = None
    feePerSession: Optional[float] = None
    description: Optional[str] = None

class StudentCreateRequest(BaseModel):
    email: EmailStr
    phoneNumber: Optional[str] = ""

class StudentUpdateRequest(BaseModel):
    studentName: str
    phoneNumber: Optional[str] = ""

class AttendanceMark(BaseModel):
    status: Optional[str] = None  # null leaves the student unmarked
    note: Optional[str] = None
    fee: Optional[float] = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v is None:
            return None
        if v not in ATTENDANCE_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(ATTENDANCE_STATUSES)}, or null")
        return v

class AttendanceSaveRequest(BaseModel):
    marks: Dict[str, AttendanceMark] = {}
    markAllPresent: bool = False

class PaymentToggleRequest(BaseModel):
    studentId: str
    classId: str
    month: str

    @field_validator('month')
    @classmethod
    def validate_month(cls, v):
        if not MONTH_PATTERN.match(v):
            raise ValueError('Month must be in YYYY-MM format')
        return v

class PaymentWindowToggleRequest(BaseModel):
    studentId: str
    classId: str
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None

# ==================== HELPER FUNCTIONS ====================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create JWT access token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict[str, Any]:
    """Verify JWT token and return the current user"""
    try:
        token = credentials.credentials
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        uid = payload.get("sub")
        if not uid:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
            )
        return {
            "uid": str(uid),
            "email": payload.get("email"),
            "displayName": payload.get("name"),
            "emailVerified": bool(payload.get("email_verified", False)),
        }
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )


def get_owned_class(user: Dict[str, Any], class_id: str) -> Dict[str, Any]:
    cls = db.get_class(user["uid"], class_id)
    if not cls:
        raise HTTPException(status_code=404, detail="Class not found")
    return cls


def get_owned_enrollment(user: Dict[str, Any], enrollment_id: str):
    """Return (enrollment, class) when the enrollment belongs to one of the teacher's classes"""
    enrollment = db.get_by_id("enrollments", enrollment_id)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Student not found")
    cls = db.get_class(user["uid"], enrollment.get("classId"))
    if not cls:
        raise HTTPException(status_code=404, detail="Student not found")
    return enrollment, cls


def get_class_enrollment(cls: Dict[str, Any], enrollment_id: str) -> Dict[str, Any]:
    enrollment = db.get_by_id("enrollments", enrollment_id)
    if not enrollment or enrollment.get("classId") != cls["id"]:
        raise HTTPException(status_code=404, detail="Student not found")
    return enrollment


def validate_date(value: str):
    if not DATE_PATTERN.match(value or ""):
        raise HTTPException(status_code=400, detail="Date must be in YYYY-MM-DD format")


def build_criteria(
    classId: Optional[str],
    studentId: Optional[str],
    dateFrom: Optional[str],
    dateTo: Optional[str],
    status_filter: Optional[str],
) -> FilterCriteria:
    try:
        return FilterCriteria(
            class_id=classId,
            student_id=studentId,
            date_from=dateFrom,
            date_to=dateTo,
            status=status_filter,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def default_window(dateFrom: Optional[str], dateTo: Optional[str]):
    """Fall back to the current month when neither bound is given"""
    if not dateFrom and not dateTo:
        return month_window(date_type.today())
    return dateFrom, dateTo


# ==================== API ENDPOINTS ====================

@app.get("/")
def read_root():
    return {
        "message": "Tutor Attendance API",
        "version": "1.0.0",
        "status": "online",
        "database": DB_TYPE
    }


@app.get("/stats")
def get_stats(user: Dict[str, Any] = Depends(verify_token)):
    """Get database statistics"""
    return db.get_database_stats()

# ==================== CLASS ENDPOINTS ====================

@app.get("/classes")
async def get_classes(search: Optional[str] = None, user: Dict[str, Any] = Depends(verify_token)):
    """Get all classes for the current teacher"""
    try:
        classes = db.get_teacher_classes(user["uid"])
        return {"classes": filter_classes(classes, search)}
    except Exception as e:
        print(f"[GET_CLASSES API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to load classes")


@app.post("/classes")
async def create_class(class_data: ClassRequest, user: Dict[str, Any] = Depends(verify_token)):
    """Create a new class"""
    try:
        teacher_name = db.get_teacher_name(
            user["uid"],
            fallback=user.get("displayName") or user.get("email"),
        )
        created_class = db.create_class(user["uid"], teacher_name, class_data.model_dump())
        return {"success": True, "class": created_class}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"[CREATE_CLASS API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to create class")


@app.get("/classes/{class_id}")
async def get_class(class_id: str, user: Dict[str, Any] = Depends(verify_token)):
    """Get a specific class"""
    return {"class": get_owned_class(user, class_id)}


@app.put("/classes/{class_id}")
async def update_class(class_id: str, request: ClassUpdateRequest, user: Dict[str, Any] = Depends(verify_token)):
    """Edit class name, subject, fee or description"""
    try:
        updated = db.update_class(user["uid"], class_id, request.model_dump(exclude_unset=True))
        return {"success": True, "class": updated}
    except KeyError:
        raise HTTPException(status_code=404, detail="Class not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"[UPDATE_CLASS API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to update class")


@app.post("/classes/{class_id}/toggle-active")
async def toggle_class_active(class_id: str, user: Dict[str, Any] = Depends(verify_token)):
    try:
        updated = db.toggle_class_active(user["uid"], class_id)
        return {"success": True, "class": updated}
    except KeyError:
        raise HTTPException(status_code=404, detail="Class not found")
    except Exception as e:
        print(f"[TOGGLE_CLASS API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to update class status")


@app.delete("/classes/{class_id}")
async def delete_class(class_id: str, user: Dict[str, Any] = Depends(verify_token)):
    """Delete a class"""
    try:
        success = db.delete_class(user["uid"], class_id)
    except Exception as e:
        print(f"[DELETE_CLASS API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete class")

    if not success:
        raise HTTPException(status_code=404, detail="Class not found")

    return {"success": True, "message": "Class deleted successfully"}

# ==================== STUDENT ENDPOINTS ====================

@app.get("/students")
async def get_all_students(search: Optional[str] = None, user: Dict[str, Any] = Depends(verify_token)):
    """Students of every class the teacher owns"""
    try:
        students = db.get_teacher_students(user["uid"])
        return {"students": filter_students(students, search)}
    except Exception as e:
        print(f"[GET_STUDENTS API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to load students")


@app.get("/classes/{class_id}/students")
async def get_class_students(class_id: str, search: Optional[str] = None, user: Dict[str, Any] = Depends(verify_token)):
    cls = get_owned_class(user, class_id)
    try:
        students = db.get_class_students(cls["id"])
        return {"class": cls, "students": filter_students(students, search)}
    except Exception as e:
        print(f"[GET_CLASS_STUDENTS API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to load students")


@app.post("/classes/{class_id}/students")
async def add_student(class_id: str, request: StudentCreateRequest, user: Dict[str, Any] = Depends(verify_token)):
    """Add a student to a class by email"""
    cls = get_owned_class(user, class_id)
    try:
        enrollment = db.add_student(cls, request.email, request.phoneNumber or "")
        return {"success": True, "student": enrollment}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"[ADD_STUDENT API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to add student")


@app.put("/students/{enrollment_id}")
async def update_student(enrollment_id: str, request: StudentUpdateRequest, user: Dict[str, Any] = Depends(verify_token)):
    get_owned_enrollment(user, enrollment_id)
    try:
        updated = db.update_student(enrollment_id, request.studentName, request.phoneNumber or "")
        return {"success": True, "student": updated}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"[UPDATE_STUDENT API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to update student")


@app.post("/students/{enrollment_id}/toggle-status")
async def toggle_student_status(enrollment_id: str, user: Dict[str, Any] = Depends(verify_token)):
    enrollment, _ = get_owned_enrollment(user, enrollment_id)
    try:
        updated = db.toggle_student_status(enrollment)
        return {"success": True, "student": updated}
    except Exception as e:
        print(f"[TOGGLE_STUDENT API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to change student status")


@app.delete("/students/{enrollment_id}")
async def remove_student(enrollment_id: str, user: Dict[str, Any] = Depends(verify_token)):
    enrollment, cls = get_owned_enrollment(user, enrollment_id)
    try:
        db.remove_student(enrollment, cls)
        return {"success": True, "message": "Student removed successfully"}
    except Exception as e:
        print(f"[REMOVE_STUDENT API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to remove student")

# ==================== ATTENDANCE ENDPOINTS ====================

@app.get("/attendance")
async def list_attendance(
    classId: Optional[str] = None,
    studentId: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    status: Optional[str] = None,
    user: Dict[str, Any] = Depends(verify_token),
):
    """Attendance records of the teacher's classes matching the filters"""
    criteria = build_criteria(classId, studentId, dateFrom, dateTo, status)
    try:
        classes = db.get_teacher_classes(user["uid"])
        records = scope_to_classes(db.get_teacher_attendance(classes), classes)
        return {"records": filter_records(records, criteria)}
    except Exception as e:
        print(f"[LIST_ATTENDANCE API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to load attendance")


@app.get("/attendance/report")
async def attendance_report(
    classId: Optional[str] = None,
    studentId: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    status: Optional[str] = None,
    user: Dict[str, Any] = Depends(verify_token),
):
    """Fee and attendance statistics for the current filters"""
    criteria = build_criteria(classId, studentId, dateFrom, dateTo, status)
    try:
        classes = db.get_teacher_classes(user["uid"])
        records = db.get_teacher_attendance(classes)
        students = db.get_teacher_students(user["uid"])

        report = build_report(records, classes, criteria)
        report["classNames"] = {c["id"]: c.get("className") for c in classes}
        report["studentNames"] = {s["id"]: s.get("studentName") for s in students}
        return report
    except Exception as e:
        print(f"[ATTENDANCE_REPORT API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to build attendance report")


@app.get("/attendance/students/{student_id}/fees")
async def student_fees(
    student_id: str,
    classId: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    status: Optional[str] = None,
    user: Dict[str, Any] = Depends(verify_token),
):
    """Per-date fee detail for one student"""
    criteria = build_criteria(classId, student_id, dateFrom, dateTo, status)
    try:
        classes = db.get_teacher_classes(user["uid"])
        records = filter_records(scope_to_classes(db.get_teacher_attendance(classes), classes), criteria)
        return student_fee_breakdown(records, {c["id"]: c for c in classes}, student_id)
    except Exception as e:
        print(f"[STUDENT_FEES API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to load student fees")


@app.get("/attendance/{class_id}/{date}")
async def get_day_attendance(class_id: str, date: str, user: Dict[str, Any] = Depends(verify_token)):
    """Saved attendance of a class on one date, with the editable sheet"""
    validate_date(date)
    cls = get_owned_class(user, class_id)
    try:
        students = db.get_class_students(cls["id"])
        records = db.get_attendance_for_date(cls["id"], date)
        sheet = AttendanceSheet.from_records(cls["id"], date, [s["id"] for s in students], records)
        return {"records": records, "sheet": sheet.to_dict()}
    except Exception as e:
        print(f"[GET_ATTENDANCE API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to load attendance")


@app.put("/attendance/{class_id}/{date}")
async def save_day_attendance(
    class_id: str,
    date: str,
    request: AttendanceSaveRequest,
    user: Dict[str, Any] = Depends(verify_token),
):
    """Replace the attendance of a class on one date"""
    validate_date(date)
    cls = get_owned_class(user, class_id)

    print(f"[SAVE_ATTENDANCE API] Class {class_id}, date {date}, {len(request.marks)} marks")

    try:
        students = db.get_class_students(cls["id"])
        sheet = AttendanceSheet(cls["id"], date, [s["id"] for s in students])

        for student_id, mark in request.marks.items():
            if mark.status is None:
                continue
            sheet.select(student_id, mark.status)
            if mark.note:
                sheet.set_note(student_id, mark.note)
            if mark.status == "makeup" and mark.fee:
                sheet.set_makeup_fee(student_id, mark.fee)

        if request.markAllPresent:
            sheet.set_all_present()

        records = db.save_attendance(sheet)
        return {"success": True, "records": records, "counts": sheet.counts()}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"[SAVE_ATTENDANCE API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to save attendance")

# ==================== PAYMENT STATUS ENDPOINTS ====================

@app.get("/payments")
async def get_payment_statuses(
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    user: Dict[str, Any] = Depends(verify_token),
):
    """Paid/unpaid flags for every month of the window (default: current month)"""
    date_from, date_to = default_window(dateFrom, dateTo)
    months = months_in_range(date_from, date_to)
    try:
        index = PaymentStatusIndex(db, user["uid"])
        statuses = index.load(months)
        return {"months": months, "statuses": statuses}
    except Exception as e:
        print(f"[GET_PAYMENTS API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to load payment status")


@app.post("/payments/toggle")
async def toggle_payment(request: PaymentToggleRequest, user: Dict[str, Any] = Depends(verify_token)):
    """Flip paid/unpaid for one student, class and month"""
    cls = get_owned_class(user, request.classId)
    get_class_enrollment(cls, request.studentId)
    try:
        index = PaymentStatusIndex(db, user["uid"])
        index.load([request.month])
        new_status = index.toggle(request.studentId, request.classId, request.month)
        return {"success": True, "month": request.month, "status": new_status}
    except Exception as e:
        print(f"[TOGGLE_PAYMENT API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to update payment status")


@app.post("/payments/toggle-window")
async def toggle_payment_for_window(request: PaymentWindowToggleRequest, user: Dict[str, Any] = Depends(verify_token)):
    """Flip paid/unpaid for the month the current date filter points at"""
    cls = get_owned_class(user, request.classId)
    get_class_enrollment(cls, request.studentId)
    date_from, date_to = default_window(request.dateFrom, request.dateTo)
    try:
        index = PaymentStatusIndex(db, user["uid"])
        index.load_window(date_from, date_to)
        result = index.toggle_for_window(request.studentId, request.classId, date_from, date_to)
        return {"success": True, **result}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"[TOGGLE_PAYMENT API] ❌ ERROR: {e}")
        raise HTTPException(status_code=500, detail="Failed to update payment status")

# ==================== MONTH HELPERS ====================

@app.get("/months")
def get_months(dateFrom: Optional[str] = None, dateTo: Optional[str] = None, user: Dict[str, Any] = Depends(verify_token)):
    return {"months": months_in_range(dateFrom, dateTo)}


@app.get("/months/window")
def get_month_window(anchor: Optional[str] = None, direction: str = "current", user: Dict[str, Any] = Depends(verify_token)):
    """Date window of the previous, next or current month"""
    try:
        anchor_date = date_type.fromisoformat(anchor) if anchor else date_type.today()
        date_from, date_to = shift_month_window(anchor_date, direction)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"dateFrom": date_from, "dateTo": date_to}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
