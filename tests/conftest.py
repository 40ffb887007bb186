import json
import os
import sys

import pytest

# Add src directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


@pytest.fixture
def default_config():
    """Defaults file contents, loaded fresh for each test"""
    from flagr_config import load_stack_config
    return load_stack_config()


@pytest.fixture
def template_dict():
    """Rendered Flagr template built from the defaults file"""
    from flagr_stack import create_flagr_template
    return json.loads(create_flagr_template().to_json())


def resources_of_type(template_dict, resource_type):
    """Map logical id -> resource for every resource of ``resource_type``"""
    return {
        name: resource
        for name, resource in template_dict["Resources"].items()
        if resource["Type"] == resource_type
    }
