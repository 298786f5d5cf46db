"""
Routing engine: maps an AnalysisResult to the department that owns it.

Fallback chain, first match wins:
  1. direct mapping of the intent category
  2. category_scores, highest first
  3. configured default department
  4. the "support" department (always available)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from config import DepartmentConfig, RouterConfig
from review_triage.models import AnalysisResult, Department

logger = logging.getLogger(__name__)

SUPPORT_ID = "support"
TERMINAL_SUPPORT = Department(
    id=SUPPORT_ID,
    name="Customer Support",
    contact="support@example.com",
    categories=("general_complaint",),
)


@dataclass(frozen=True)
class _Snapshot:
    departments: Mapping[str, Department]
    mappings: Mapping[str, str]
    default_department: str


def _department_from_config(item: DepartmentConfig) -> Department:
    return Department(id=item.id, name=item.name, contact=item.contact, categories=tuple(item.categories))


class DepartmentRouter:
    """
    Mutations build a fresh immutable snapshot under a writer lock and swap it in.
    `route` reads whatever snapshot is current without locking.
    """

    def __init__(self, config: RouterConfig | None = None):
        config = config or RouterConfig()
        departments: dict[str, Department] = {}
        mappings: dict[str, str] = {}
        for item in config.departments:
            dept = _department_from_config(item)
            departments[dept.id] = dept
            for category in dept.categories:
                mappings.setdefault(category, dept.id)

        # explicit mappings override the ones implied by department categories
        for mapping in sorted(config.mappings, key=lambda m: m.priority):
            mappings[mapping.category] = mapping.department

        self._write_lock = threading.Lock()
        self._snapshot = self._freeze(departments, mappings, config.default_department or SUPPORT_ID)

    @staticmethod
    def _freeze(departments: dict[str, Department], mappings: dict[str, str], default: str) -> _Snapshot:
        return _Snapshot(
            departments=MappingProxyType(dict(departments)),
            mappings=MappingProxyType(dict(mappings)),
            default_department=default,
        )

    def route(self, result: AnalysisResult) -> Department:
        """Never raises, never returns a department without an id."""
        snap = self._snapshot
        category = getattr(result.intent_category, "value", result.intent_category)

        dept = snap.departments.get(snap.mappings.get(category, ""))
        if dept is not None:
            return dept

        # sorted() is stable, so equal scores keep their insertion order
        for name, _ in sorted(result.category_scores.items(), key=lambda kv: kv[1], reverse=True):
            dept = snap.departments.get(snap.mappings.get(name, ""))
            if dept is not None:
                logger.debug("[ROUTE] %s routed by category score '%s'", result.review_id, name)
                return dept

        dept = snap.departments.get(snap.default_department)
        if dept is not None:
            return dept

        return snap.departments.get(SUPPORT_ID) or TERMINAL_SUPPORT

    def add_department(self, department: Department) -> None:
        """Register (or replace) a department and map each of its categories to it."""
        if not department.id:
            raise ValueError("department id must not be empty")
        with self._write_lock:
            snap = self._snapshot
            departments = dict(snap.departments)
            mappings = dict(snap.mappings)
            departments[department.id] = department
            for category in department.categories:
                mappings[category] = department.id
            self._snapshot = self._freeze(departments, mappings, snap.default_department)
        logger.info("[ROUTE] Added department %s (%s)", department.id, ", ".join(department.categories))

    def update_mapping(self, category: str, department_id: str) -> None:
        """Point a category at a department. Unknown ids are stored; route skips them."""
        with self._write_lock:
            snap = self._snapshot
            mappings = dict(snap.mappings)
            mappings[category] = department_id
            self._snapshot = self._freeze(dict(snap.departments), mappings, snap.default_department)
        if department_id not in self._snapshot.departments:
            logger.warning("[ROUTE] Mapping %s -> %s points to an unknown department", category, department_id)

    def get_department(self, department_id: str) -> Department | None:
        return self._snapshot.departments.get(department_id)

    def list_departments(self) -> list[Department]:
        return list(self._snapshot.departments.values())

    def mappings(self) -> dict[str, str]:
        return dict(self._snapshot.mappings)
