"""API test fixtures, shared with the tracker test suite."""

from src.tracker.tests.conftest import apps_document, apps_json_path, records  # noqa: F401
