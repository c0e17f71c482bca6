import copy
import json
import os
import sys

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from quote_engine.config.schema import load_pricing_config, parse_pricing_config
from quote_engine.config.settings import PACKAGE_DIR

CONFIG_PATH = PACKAGE_DIR / 'data' / 'pricing_config.json'

with open(CONFIG_PATH, 'r', encoding='utf-8') as f:
    _DOCUMENT = json.load(f)


@pytest.fixture(scope="session")
def config():
    """The packaged pricing config, shared by every test."""
    return load_pricing_config(CONFIG_PATH)


@pytest.fixture
def config_document():
    """A fresh, mutable copy of the packaged pricing document."""
    return copy.deepcopy(_DOCUMENT)


@pytest.fixture
def make_config(config_document):
    """Build a config after editing the document with ``edit(doc)``."""
    def _make(edit):
        edit(config_document)
        return parse_pricing_config(config_document)
    return _make


def find(items, key, value):
    """First dict in ``items`` whose ``key`` equals ``value``."""
    return next(item for item in items if item[key] == value)
