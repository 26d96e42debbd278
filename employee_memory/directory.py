"""
Employee directory for the Employee Memory engine.

Maps employee ids to their role and department and holds the role
catalog: namespace abbreviations, the context sentence used to bias
task-contextual embeddings, and the leadership class used for permissions.
The directory is passed to the engine at construction so tests can swap
in their own roster.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger("directory")

ROLE_ABBREVIATIONS: Dict[str, str] = {
    "project_manager": "pm",
    "technical_lead": "tl",
    "qa_director": "qd",
    "senior_developer": "sd",
    "junior_developer": "jd",
    "qa_engineer": "qe",
    "test_engineer": "te",
    "devops_engineer": "do",
    "sre": "sre",
    "security_engineer": "se",
    "technical_writer": "tw",
    "ui_ux_designer": "ux",
    "build_engineer": "be",
}

ROLE_CONTEXTS: Dict[str, str] = {
    "technical_lead": "Technical architecture and system design context:",
    "senior_developer": "Senior development and implementation context:",
    "junior_developer": "Junior development and learning context:",
    "qa_engineer": "Quality assurance and testing context:",
    "test_engineer": "Test implementation and coverage analysis context:",
    "devops_engineer": "DevOps and infrastructure context:",
    "sre": "Site reliability and monitoring context:",
    "security_engineer": "Security audits and vulnerability analysis context:",
    "project_manager": "Project management and coordination context:",
    "qa_director": "Quality standards and release approval context:",
    "technical_writer": "Documentation and technical writing context:",
    "ui_ux_designer": "User interface and experience design context:",
    "build_engineer": "Build systems and dependency management context:",
}

GENERAL_CONTEXT = "General context:"

LEADERSHIP_ROLES = frozenset({"technical_lead", "project_manager", "qa_director"})


def role_abbreviation(role: str) -> str:
    """Short form of a role used in namespace names."""
    return ROLE_ABBREVIATIONS.get(role, role[:3])


def role_context(role: Optional[str]) -> str:
    """Context sentence prefixed to text for role-biased embeddings."""
    if not role:
        return GENERAL_CONTEXT
    return ROLE_CONTEXTS.get(role, GENERAL_CONTEXT)


def is_leadership_role(role: str) -> bool:
    return role in LEADERSHIP_ROLES


@dataclass(frozen=True)
class EmployeeProfile:
    """An AI employee known to the memory engine."""
    employee_id: str
    role: str
    department: str


class EmployeeDirectory:
    """
    Registry of employees and their roles.

    Unknown employees resolve to role "unknown" and department "Unknown",
    which keeps lookups total for callers outside the roster.
    """

    UNKNOWN_ROLE = "unknown"
    UNKNOWN_DEPARTMENT = "Unknown"

    def __init__(self, employees: Iterable[EmployeeProfile]):
        self._employees: Dict[str, EmployeeProfile] = {}
        for employee in employees:
            if employee.employee_id in self._employees:
                raise ValueError(f"Duplicate employee id: {employee.employee_id}")
            self._employees[employee.employee_id] = employee
        logger.info(f"Employee directory loaded with {len(self._employees)} employees")

    def get(self, employee_id: str) -> Optional[EmployeeProfile]:
        return self._employees.get(employee_id)

    def role_of(self, employee_id: str) -> str:
        employee = self._employees.get(employee_id)
        return employee.role if employee else self.UNKNOWN_ROLE

    def department_of(self, employee_id: str) -> str:
        employee = self._employees.get(employee_id)
        return employee.department if employee else self.UNKNOWN_DEPARTMENT

    def employees(self) -> List[EmployeeProfile]:
        return list(self._employees.values())

    def employee_ids(self) -> List[str]:
        return list(self._employees)

    def __contains__(self, employee_id: str) -> bool:
        return employee_id in self._employees

    def __len__(self) -> int:
        return len(self._employees)


def default_directory() -> EmployeeDirectory:
    """The thirteen-employee company roster."""
    return EmployeeDirectory([
        EmployeeProfile("emp_001", "project_manager", "Executive"),
        EmployeeProfile("emp_002", "technical_lead", "Executive"),
        EmployeeProfile("emp_003", "qa_director", "Executive"),
        EmployeeProfile("emp_004", "senior_developer", "Development"),
        EmployeeProfile("emp_005", "junior_developer", "Development"),
        EmployeeProfile("emp_006", "qa_engineer", "Development"),
        EmployeeProfile("emp_007", "test_engineer", "Development"),
        EmployeeProfile("emp_008", "devops_engineer", "Operations"),
        EmployeeProfile("emp_009", "sre", "Operations"),
        EmployeeProfile("emp_010", "security_engineer", "Operations"),
        EmployeeProfile("emp_011", "technical_writer", "Support"),
        EmployeeProfile("emp_012", "ui_ux_designer", "Support"),
        EmployeeProfile("emp_013", "build_engineer", "Support"),
    ])
