import json

import pytest

from service_catalog.json_io import JSONLoadError, dump_json, load_fault_tolerant_json
from service_catalog.models import NavigationTarget


def test_comments_are_tolerated():
    data = load_fault_tolerant_json('{\n  // the form\n  "slug": "spa-form"\n}')
    assert data == {"slug": "spa-form"}


def test_code_fences_are_stripped():
    assert load_fault_tolerant_json('```json\n{"a": 1}\n```') == {"a": 1}


def test_trailing_comma_is_repaired():
    assert load_fault_tolerant_json('{"a": [1, 2,], "b": "x",}') == {"a": [1, 2], "b": "x"}


def test_plain_text_is_rejected():
    with pytest.raises(JSONLoadError):
        load_fault_tolerant_json("just words")


def test_dump_json_accepts_models():
    dumped = json.loads(dump_json(NavigationTarget(level="root")))
    assert dumped == {"level": "root", "nodeId": None}
