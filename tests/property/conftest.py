"""
Configuration for property-based tests.

Property tests use Hypothesis to generate calendars, interview tables and
weights, and check invariants of the design and estimators that should
hold for every input.
"""

from pathlib import Path

import pytest


def pytest_collection_modifyitems(items):
    """Mark tests in this directory as property tests."""
    property_dir = Path(__file__).parent
    for item in items:
        if property_dir in item.path.parents:
            item.add_marker(pytest.mark.property)
