import yaml
from pathlib import Path

from cachestore.models import RequestDescriptor
from offline.scope import InterceptionScope

DATA_PATH = Path(__file__).parent / "tests_data" / "scope_cases.yaml"

REQUIRED_FIELDS = {"name", "url", "method", "expected"}

REASONS = {"in_scope", "cross_origin", "scheme", "method", "bypass"}


def load_cases():
    return yaml.safe_load(DATA_PATH.read_text(encoding="utf-8"))


def test_scope_cases_cover_every_reason():
    seen = set()
    for case in load_cases():
        assert REQUIRED_FIELDS.issubset(case.keys()), case["name"]
        assert case["expected"] in REASONS
        seen.add(case["expected"])

    assert REASONS.issubset(seen), "Scope cases must cover every rule"


def test_scope_against_golden_cases():
    scope = InterceptionScope("http://shop.test", bypass_paths=["/api/auth"])
    for case in load_cases():
        request = RequestDescriptor(case["url"], method=case["method"])
        in_scope, reason = scope.check(request)
        assert reason == case["expected"], case["name"]
        assert in_scope == (case["expected"] == "in_scope"), case["name"]
