import threading

import pytest

from config import DepartmentConfig, DepartmentMapping, RouterConfig
from review_triage.models import AnalysisResult, Department, IntentCategory
from review_triage.routing.router import SUPPORT_ID, DepartmentRouter


def _result(category=IntentCategory.GENERAL_COMPLAINT, scores=None):
    return AnalysisResult(
        review_id="r-1",
        sentiment_score=-0.7,
        intent_category=category,
        confidence=0.8,
        category_scores=scores or {},
    )


@pytest.fixture
def router():
    return DepartmentRouter(RouterConfig())


def test_security_goes_to_security_team(router):
    dept = router.route(_result(IntentCategory.SECURITY))
    assert dept.id == "security_team"
    assert dept.name == "Security Team"


def test_direct_mapping_ignores_category_scores(router):
    dept = router.route(_result(IntentCategory.SECURITY, scores={"billing": 0.99, "security": 0.01}))
    assert dept.id == "security_team"


def test_every_category_routes_to_a_department(router):
    for category in IntentCategory:
        dept = router.route(_result(category))
        assert dept.id


def test_category_scores_used_when_intent_unmapped():
    config = RouterConfig(
        departments=[
            DepartmentConfig("engineering", "Engineering", categories=["bug_report"]),
            DepartmentConfig("finance", "Finance", categories=["billing"]),
        ],
        default_department="engineering",
    )
    router = DepartmentRouter(config)

    dept = router.route(_result(IntentCategory.UI_UX, scores={"bug_report": 0.2, "billing": 0.6}))

    assert dept.id == "finance"


def test_equal_scores_pick_one_of_the_mapped_departments():
    config = RouterConfig(
        departments=[
            DepartmentConfig("engineering", "Engineering", categories=["bug_report"]),
            DepartmentConfig("finance", "Finance", categories=["billing"]),
        ],
    )
    router = DepartmentRouter(config)
    dept = router.route(_result(IntentCategory.UI_UX, scores={"billing": 0.5, "bug_report": 0.5}))
    assert dept.id in {"engineering", "finance"}


def test_default_department_when_nothing_matches():
    config = RouterConfig(
        departments=[
            DepartmentConfig("engineering", "Engineering", categories=["bug_report"]),
            DepartmentConfig("triage", "Triage desk"),
        ],
        default_department="triage",
    )
    router = DepartmentRouter(config)
    assert router.route(_result(IntentCategory.LOGISTICS)).id == "triage"


def test_terminal_support_when_no_department_configured():
    router = DepartmentRouter(RouterConfig(departments=[], default_department="nowhere"))
    dept = router.route(_result(IntentCategory.BILLING, scores={"billing": 1.0}))
    assert dept.id == SUPPORT_ID
    assert dept.name


def test_explicit_mapping_overrides_department_categories():
    config = RouterConfig(
        mappings=[
            DepartmentMapping("performance", "support", priority=1),
            DepartmentMapping("performance", "product", priority=5),
        ]
    )
    router = DepartmentRouter(config)
    assert router.route(_result(IntentCategory.PERFORMANCE)).id == "product"


def test_add_department_maps_its_categories(router):
    router.add_department(
        Department(id="sre", name="Site Reliability", contact="#sre-alerts", categories=("performance",))
    )
    assert router.route(_result(IntentCategory.PERFORMANCE)).id == "sre"
    assert router.get_department("sre").contact == "#sre-alerts"
    assert "sre" in [d.id for d in router.list_departments()]


def test_add_department_requires_id(router):
    with pytest.raises(ValueError):
        router.add_department(Department(id="", name="Nameless"))


def test_update_mapping_to_unknown_department_is_skipped(router):
    router.update_mapping("billing", "ghost")
    assert router.mappings()["billing"] == "ghost"
    assert router.route(_result(IntentCategory.BILLING)).id == "support"

    router.update_mapping("billing", "engineering")
    assert router.route(_result(IntentCategory.BILLING)).id == "engineering"


def test_concurrent_updates_and_routes_never_fail(router):
    errors = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            try:
                assert router.route(_result(IntentCategory.SECURITY)).id
            except Exception as exc:  # surfaced through the errors list
                errors.append(exc)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in readers:
        t.start()
    for i in range(200):
        router.add_department(Department(id=f"dept-{i}", name=f"Dept {i}", categories=("security",)))
        router.update_mapping("billing", f"dept-{i}")
    stop.set()
    for t in readers:
        t.join()

    assert errors == []
    assert router.route(_result(IntentCategory.SECURITY)).id == "dept-199"
