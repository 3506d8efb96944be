"""
Schémas Pydantic pour la liste des étudiants (roster) lue dans le registre.
"""

from typing import List

from pydantic import BaseModel


class Student(BaseModel):
    """Étudiant du roster ; student_id est unique dans la feuille de présence."""
    student_id: str
    student_name: str


class StudentListResponse(BaseModel):
    students: List[Student]
