import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from tests.factories import ClientFactory, InvoiceFactory, UserFactory


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def user(db):
    return UserFactory(username="testuser", email="test@example.com")


@pytest.fixture
def other_user(db):
    return UserFactory(username="otheruser", email="other@example.com")


@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def anon_client():
    return APIClient()


@pytest.fixture
def customer(user):
    return ClientFactory(user=user, name="Globex", email="billing@globex.example")


@pytest.fixture
def sent_invoice(user, customer):
    return InvoiceFactory(user=user, client=customer, status="sent")
