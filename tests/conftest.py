import copy
import json
import sys
from pathlib import Path

import pytest
from aws_cdk import App, Environment

# Add project root to Python path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.append(str(project_root))

from infrastructure.lib.config import AppConfig  # noqa: E402

with open(project_root / "config.json", encoding="utf-8") as f:
    _SETTINGS = json.load(f)


@pytest.fixture
def settings():
    """A fresh copy of config.json that tests may modify."""
    return copy.deepcopy(_SETTINGS)


@pytest.fixture
def environ():
    return {
        "COGNITO_URL1": "https://app.example.com/oauth2/idpresponse",
        "COGNITO_URL2": "https://app.example.com/oauth2/idpresponse/",
        "HOSTED_ZONE_ID": "Z0123456789ABCDEFGHIJ",
        "DOMAIN_NAME": "example.com",
        "RECORD_NAME": "app.example.com",
        "AWS_REGION": "eu-central-1",
        "CODECONNECTION_ARN": "arn:aws:codeconnections:eu-central-1:123456789012:connection/abcd-1234",
        "REPOSITORY": "example-org/nginx-ecs-cdk",
    }


@pytest.fixture
def config(settings, environ):
    return AppConfig(settings, environ)


@pytest.fixture
def app():
    return App()


@pytest.fixture
def cdk_env():
    return Environment(account="123456789012", region="eu-central-1")
