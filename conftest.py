import mongomock
import pytest

from modules.car import create_car
from modules.client import create_client


# Thay thế db trong config bằng mongomock và cố định múi giờ kinh doanh UTC+1
@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    mock_client = mongomock.MongoClient()
    test_db = mock_client['test_database']
    monkeypatch.setattr("config.db", test_db)
    monkeypatch.setattr("config.BUSINESS_TIMEZONE", "Etc/GMT-1")
    monkeypatch.setattr("config.USE_LOCAL_TIMEZONE", False)
    yield test_db
    mock_client.drop_database('test_database')


@pytest.fixture
def db(setup_test_environment):
    return setup_test_environment


@pytest.fixture
def car_id(setup_test_environment):
    return create_car("Dacia Logan", "12345-A-6")["car_id"]


@pytest.fixture
def other_car_id(setup_test_environment):
    return create_car("Renault Clio", "67890-B-1")["car_id"]


@pytest.fixture
def client_id(setup_test_environment):
    return create_client(full_name="Nguyen Van A", passport_id="AB123456")["client_id"]
