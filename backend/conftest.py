"""Pytest harness wiring.

pytest-django blocks every database touch in tests that are not marked for
database access, while Django's own runner lets ``SimpleTestCase`` reuse an
already-open connection (it only forbids opening one or running queries).
Defer to Django's guard for ``SimpleTestCase`` classes so results do not
depend on test ordering under pytest.
"""

import pytest
from django.test import SimpleTestCase, TransactionTestCase


@pytest.fixture(autouse=True)
def _django_simple_testcase_guard(request, django_db_blocker):
    cls = getattr(request, "cls", None)
    if (
        cls is not None
        and issubclass(cls, SimpleTestCase)
        and not issubclass(cls, TransactionTestCase)
    ):
        with django_db_blocker.unblock():
            yield
    else:
        yield
