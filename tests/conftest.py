import pytest
from moto import mock_aws

from eventhub.database.dynamodb import DynamoStorage, get_db_connection
from eventhub.database.sql import SqlStorage
from eventhub.schemas.event import EventCreate
from eventhub.schemas.user import UserCreate
from eventhub.services.attendance_registry import AttendanceRegistry
from eventhub.services.event_store import EventStore
from eventhub.services.query_engine import QueryEngine
from eventhub.services.tag_index import TagIndex
from eventhub.services.user_service import UserService
from scripts.init_dynamodb import create_table_if_not_exists, delete_table

TEST_TABLE_NAME = "EventHub_Test"


@pytest.fixture
def sql_storage(tmp_path):
    """SQL storage on a throwaway SQLite file"""
    storage = SqlStorage(f"sqlite:///{tmp_path / 'eventhub.db'}")
    storage.open()
    yield storage
    storage.close()


@pytest.fixture
def dynamo_storage(monkeypatch):
    """DynamoDB storage on a mocked AWS account"""
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with mock_aws():
        resource = get_db_connection(
            None,
            region_name="us-east-1",
            aws_access_key_id="fake",
            aws_secret_access_key="fake",
        )
        create_table_if_not_exists(TEST_TABLE_NAME, dynamodb=resource)
        storage = DynamoStorage(resource, TEST_TABLE_NAME)
        storage.open()
        yield storage
        storage.close()
        delete_table(TEST_TABLE_NAME, dynamodb=resource)


@pytest.fixture(params=["sql", "dynamo"])
def storage(request):
    """Every storage contract test runs against both backends"""
    return request.getfixturevalue(f"{request.param}_storage")


@pytest.fixture
def tag_index(storage):
    return TagIndex(storage)


@pytest.fixture
def attendance(storage):
    return AttendanceRegistry(storage)


@pytest.fixture
def event_store(storage, tag_index, attendance):
    return EventStore(storage, tag_index, attendance)


@pytest.fixture
def query_engine(storage):
    return QueryEngine(storage)


@pytest.fixture
def user_service(storage):
    return UserService(storage)


@pytest.fixture
def sample_users(user_service):
    """Four registered users: Alice, Bob, Carol, Dave"""
    users = []
    for name in ["Alice", "Bob", "Carol", "Dave"]:
        users.append(
            user_service.create_user(
                UserCreate(
                    name=name,
                    email=f"{name.lower()}@example.com",
                    passwordHash="$2b$12$hashedpassword",
                    avatar=f"https://example.com/{name.lower()}.png",
                )
            )
        )
    return users


@pytest.fixture
def make_draft():
    """Factory for valid event drafts dated in the future"""

    def _make_draft(**overrides):
        data = {
            "name": "Tech Meetup Istanbul",
            "description": "Network with fellow developers and learn new things.",
            "date": "2099-02-15",
            "time": "18:00",
            "location": "Beyoglu, Istanbul",
            "image": "https://example.com/meetup.jpg",
            "capacity": 30,
            "tags": ["Tech", "Networking"],
        }
        data.update(overrides)
        return EventCreate(**data)

    return _make_draft
