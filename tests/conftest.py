"""
Shared pytest fixtures for the RECtify SDK tests.
"""

from unittest.mock import MagicMock

import pytest

from rectify_sdk.client import IdentityServiceClient
from rectify_sdk.credentials import MemoryCredentialStore
from tests.test_helpers.test_data_factory import UserFactory


@pytest.fixture
def credential_store():
    """Empty in-memory token slot."""
    return MemoryCredentialStore()


@pytest.fixture
def mock_client(credential_store):
    """Identity service client with every remote call mocked."""
    client = MagicMock(spec=IdentityServiceClient)
    client.credentials = credential_store
    return client


@pytest.fixture
def trader():
    return UserFactory.create()
