from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PendingStudent(BaseModel):
    id: int
    full_name: str
    email: Optional[str] = None
    student_code: Optional[str] = None
    status: str

    model_config = ConfigDict(from_attributes=True)


class PendingStudentsResponse(BaseModel):
    main_class_id: int
    students: List[PendingStudent]
    total: int


class MainClassStudentAction(BaseModel):
    main_class_id: int
    student_id: int
    action: str
    message: str


class StudentRejection(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
