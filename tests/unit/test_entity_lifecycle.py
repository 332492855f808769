"""
Tests for compiled entities against the mocked DynamoDB: save (validation,
relations, unique indexes, timestamps, versioning), get/find/populate, update and
delete.
"""

from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
from boto3.dynamodb.conditions import Key

from dynorm import Dynorm
from dynorm.core import bulk
from dynorm.exceptions import (
    ConfigurationError,
    ConstraintViolation,
    MissingIndexValueError,
    RelationNotFoundError,
    UniqueConstraintViolation,
    ValidationError,
)
from dynorm.models.entity import Attribute, Entity


@pytest.fixture
def User(orm):
    return orm.model("User")


@pytest.fixture
def Post(orm):
    return orm.model("Post")


@pytest.fixture
def Note(orm):
    return orm.model("Note")


@pytest.fixture
def saved_user(User):
    return User({"id": "u1", "email": "a@x.com", "name": "Ann"}).save()


class TestEntityClass:
    """Test the generated entity class."""

    def test_class_shape(self, User):
        """Test class name, base class and accessors."""
        assert User.__name__ == "User"
        assert issubclass(User, Entity)
        assert isinstance(User.email, Attribute)
        assert User.schema.table_name == "test_users"

    def test_accessors_and_defaults(self, User):
        """Test attribute access and declared defaults."""
        user = User({"id": "u1"})

        assert user.is_new is True
        assert user.role == "member"
        assert "role" not in user.snapshot

        user.email = "a@x.com"
        assert user["email"] == "a@x.com"
        assert user.to_dict() == {"id": "u1", "role": "member", "email": "a@x.com"}

    def test_from_json(self, User):
        """Test building an entity from JSON text."""
        user = User.from_json('{"id": "u9", "createdAt": "2024-01-01T00:00:00.000Z"}')

        assert user.is_new is True
        assert isinstance(user.createdAt, datetime)
        assert user.to_json()["createdAt"] == "2024-01-01T00:00:00.000Z"

    @pytest.mark.parametrize("prop_name", ["_data", "_is_new", "_deleted", "_snapshot", "save"])
    def test_internal_names_get_no_accessor(self, prop_name, schema_document, store_client, mock_config):
        """Test that properties named like entity internals stay item-accessible."""
        schema_document["definitions"]["Note"]["properties"][prop_name] = {"type": "string"}
        Note = Dynorm(client=store_client, schema=schema_document, config=mock_config).model("Note")

        note = Note({"id": "n1", prop_name: "x"})

        assert note[prop_name] == "x"
        assert note.is_new is True
        assert not isinstance(Note.__dict__.get(prop_name), Attribute)


class TestUniqueIndexes:
    """Test unique indexes backed by relations and composite keys."""

    @pytest.fixture
    def Profile(self, orm):
        return orm.model("Profile")

    @pytest.fixture
    def Membership(self, orm):
        return orm.model("Membership")

    def test_relation_backed_hash_key(self, Profile, saved_user):
        """Test that a relation index value is read through the join."""
        Profile({"id": "pr1", "user": "u1"}).save()

        with pytest.raises(UniqueConstraintViolation) as exc_info:
            Profile({"id": "pr2", "user": {"id": "u1"}}).save()

        assert exc_info.value.values == {"userId": "u1"}

    def test_relation_backed_hash_key_resave(self, Profile, saved_user):
        """Test that a persisted entity does not collide with itself."""
        Profile({"id": "pr1", "user": "u1"}).save()
        loaded = Profile.get("pr1")
        loaded.bio = "hello"

        loaded.save()

        assert Profile.get("pr1").bio == "hello"

    def test_relation_backed_hash_key_missing(self, Profile):
        """Test that an empty relation leaves the index value missing."""
        with pytest.raises(MissingIndexValueError) as exc_info:
            Profile({"id": "pr3", "bio": "x"}).save()

        assert exc_info.value.attribute == "userId"

    def test_range_key(self, Membership):
        """Test that uniqueness covers both index key values."""
        Membership({"teamId": "t1", "userId": "u1", "badge": "gold", "season": "2024"}).save()
        Membership({"teamId": "t1", "userId": "u2", "badge": "gold", "season": "2025"}).save()

        with pytest.raises(UniqueConstraintViolation):
            Membership({"teamId": "t2", "userId": "u1", "badge": "gold", "season": "2024"}).save()

    def test_range_key_missing(self, Membership):
        """Test that an empty index range value is rejected."""
        with pytest.raises(MissingIndexValueError) as exc_info:
            Membership({"teamId": "t1", "userId": "u1", "badge": "gold"}).save()

        assert exc_info.value.attribute == "season"
        assert exc_info.value.key_type == "rangeKey"

    def test_composite_key_resave_excludes_only_own_record(self, Membership):
        """Test that records sharing one primary key part still collide."""
        Membership({"teamId": "t1", "userId": "u1", "badge": "gold", "season": "2024"}).save()
        Membership({"teamId": "t1", "userId": "u2", "badge": "gold", "season": "2025"}).save()

        own = Membership.get({"teamId": "t1", "userId": "u1"})
        own.save()

        other = Membership.get({"teamId": "t1", "userId": "u2"})
        other.season = "2024"
        with pytest.raises(UniqueConstraintViolation):
            other.save()


class TestSave:
    """Test save()."""

    def test_create(self, User, saved_user, dynamodb_tables):
        """Test the first save of a new entity."""
        assert saved_user.is_new is False
        assert saved_user.version == 1
        assert saved_user.createdAt == saved_user.updatedAt

        item = dynamodb_tables['users'].get_item(Key={'id': 'u1'})['Item']
        assert item['email'] == 'a@x.com'
        assert item['role'] == 'member'
        assert item['version'] == 1
        assert isinstance(item['createdAt'], type(item['version']))

    def test_get_round_trip(self, User, saved_user):
        """Test that a saved entity reads back equal."""
        loaded = User.get("u1")

        assert loaded.is_new is False
        assert loaded.email == "a@x.com"
        assert loaded.createdAt == saved_user.createdAt
        assert loaded.version == 1

    def test_create_guard(self, User, saved_user):
        """Test that a new entity cannot overwrite an existing record."""
        with pytest.raises(ConstraintViolation):
            User({"id": "u1", "email": "other@x.com"}).save()

    def test_version_advances_on_each_save(self, saved_user):
        """Test integer version increments."""
        saved_user.name = "Bea"
        saved_user.save()

        assert saved_user.version == 2

    def test_version_conflict(self, User, saved_user):
        """Test that the second of two saves from the same state fails."""
        first = User.get("u1")
        second = User.get("u1")

        first.name = "first"
        first.save()

        second.name = "second"
        with pytest.raises(ConstraintViolation):
            second.save()

        assert User.get("u1").name == "first"

    def test_unique_index_collision(self, User, saved_user):
        """Test that another entity may not take a unique value."""
        with pytest.raises(UniqueConstraintViolation):
            User({"id": "u2", "email": "a@x.com"}).save()

    def test_unique_index_ignores_own_record(self, User, saved_user):
        """Test that an existing entity keeps its own unique value."""
        loaded = User.get("u1")
        loaded.name = "Ann B."

        loaded.save()

        assert User.get("u1").name == "Ann B."

    def test_missing_unique_value(self, User):
        """Test that unique index values are required."""
        with pytest.raises(MissingIndexValueError):
            User({"id": "u3"}).save()

    def test_validation_error(self, User):
        """Test that invalid entities are rejected before any write."""
        with pytest.raises(ValidationError) as exc_info:
            User({"id": "u3", "email": "c@x.com", "loginCount": "many"}).save()

        assert exc_info.value.errors[0]["path"] == "loginCount"
        assert User.get("u3") is None

    def test_updated_at_restored_not_advanced(self, User, saved_user):
        """Test that re-saving keeps the stored timestamps."""
        loaded = User.get("u1")
        stored_updated_at = loaded.updatedAt

        loaded.name = "changed"
        loaded.save()

        assert User.get("u1").updatedAt == stored_updated_at

    def test_date_time_version(self, Note, dynamodb_tables):
        """Test date-time versions: set on create, compared and replaced on save."""
        note = Note({"id": "n1", "body": "x"}).save()
        assert isinstance(note.revisedAt, datetime)

        dynamodb_tables['notes'].put_item(Item={'id': 'n2', 'body': 'old', 'revisedAt': 1000})
        first = Note.get("n2")
        second = Note.get("n2")

        first.save()
        assert first.revisedAt > second.revisedAt

        with pytest.raises(ConstraintViolation):
            second.save()


class TestRelations:
    """Test relation resolution and population."""

    def test_save_resolves_relation(self, Post, User, saved_user, dynamodb_tables):
        """Test that a relation key is resolved and stored through the join."""
        post = Post({"id": "p1", "title": "Hello", "author": "u1"}).save()

        assert isinstance(post.author, User)
        assert post.author.email == "a@x.com"
        item = dynamodb_tables['posts'].get_item(Key={'id': 'p1'})['Item']
        assert item['authorId'] == 'u1'
        assert 'author' not in item

    def test_save_resolves_stub(self, Post, User, saved_user):
        """Test that a {foreign: value} stub is resolved."""
        post = Post({"id": "p1", "title": "Hello", "author": {"id": "u1"}}).save()

        assert isinstance(post.author, User)

    def test_unresolved_relation(self, Post, saved_user):
        """Test that a relation to a missing entity fails."""
        with pytest.raises(RelationNotFoundError):
            Post({"id": "p1", "title": "Hello", "author": "ghost"}).save()

    def test_get_without_fields_returns_stub(self, Post, saved_user):
        """Test lazy relation stubs on hydrated entities."""
        Post({"id": "p1", "title": "Hello", "author": "u1"}).save()

        post = Post.get("p1")

        assert post.author == {"id": "u1"}

    def test_get_with_fields_populates(self, Post, User, saved_user):
        """Test that requested relation fields are resolved."""
        Post({"id": "p1", "title": "Hello", "author": "u1"}).save()

        post = Post.get("p1", fields=["author"])

        assert isinstance(post.author, User)
        assert post.author.name == "Ann"
        assert post.author.is_new is False

    def test_find_populates_with_one_batched_fetch(self, Post, User, saved_user):
        """Test that distinct foreign keys are fetched once."""
        Post({"id": "p1", "title": "One", "author": "u1"}).save()
        Post({"id": "p2", "title": "Two", "author": "u1"}).save()

        with patch.object(bulk, 'batch_get_keys', wraps=bulk.batch_get_keys) as mock_get:
            result = Post.find(fields=["author", "title"])

        mock_get.assert_called_once()
        assert mock_get.call_args.args[1] == {"test_users": [{"id": "u1"}]}
        assert result.count == 2
        assert all(isinstance(post.author, User) for post in result.items)

    def test_unknown_relation_key_left_as_stub(self, Post, saved_user, dynamodb_tables):
        """Test that unresolvable relation values are left unmodified."""
        dynamodb_tables['posts'].put_item(Item={'id': 'p9', 'title': 'Orphan', 'authorId': 'ghost'})

        post = Post.get("p9", fields=["author"])

        assert post.author == {"id": "ghost"}


class TestFindAndDelete:
    """Test find() and delete()."""

    def test_find_scan_and_query(self, User):
        """Test scans and index queries."""
        for i in range(3):
            User({"id": f"u{i}", "email": f"user{i}@x.com"}).save()

        result = User.find()
        assert result.count == 3
        assert all(isinstance(user, User) for user in result.items)

        result = User.find({
            'IndexName': 'email-index',
            'KeyConditionExpression': Key('email').eq('user1@x.com'),
        })
        assert [user.id for user in result.items] == ["u1"]

    def test_find_reduce(self, User):
        """Test that reducing returns the accumulator without hydration."""
        for i in range(3):
            User({"id": f"u{i}", "email": f"user{i}@x.com"}).save()

        result = User.find(reduce_fn=lambda total, item: total + 1, initial_value=0)

        assert result.accumulator == 3
        assert result.items == []

    def test_delete(self, User, saved_user):
        """Test deleting by primary key."""
        saved_user.delete()

        assert saved_user.is_deleted is True
        assert User.get("u1") is None

    def test_batch_put_and_delete(self, User):
        """Test bulk writes through the entity class."""
        User.batch_put([User({"id": "u5", "email": "e@x.com"}), {"id": "u6"}])

        assert User.get("u5").role == "member"
        assert User.get("u6") is not None

        User.batch_delete(["u5", {"id": "u6"}])

        assert User.get("u5") is None
        assert User.get("u6") is None


class TestUpdate:
    """Test update()."""

    def test_set_advances_version(self, User, saved_user):
        """Test that a $SET moves version 1 to 2."""
        attributes = User.update({"id": "u1"}, {"$SET": {"email": "b@x.com"}})

        assert attributes["email"] == "b@x.com"
        assert attributes["version"] == 2

    def test_add(self, User, saved_user):
        """Test $ADD on a number."""
        User.update("u1", {"$ADD": {"loginCount": 2}})
        attributes = User.update("u1", {"$ADD": {"loginCount": 3}})

        assert attributes["loginCount"] == 5
        assert attributes["version"] == 3

    def test_undeclared_floats_become_numbers(self, User, saved_user, dynamodb_tables):
        """Test that attributes outside the schema are converted like save() does."""
        attributes = User.update("u1", {"$SET": {"score": 1.5, "weights": {"a": 0.25}}})

        assert attributes["score"] == Decimal("1.5")
        assert attributes["weights"] == {"a": Decimal("0.25")}
        assert dynamodb_tables['users'].get_item(Key={'id': 'u1'})['Item']['score'] == Decimal("1.5")

    def test_expected_version(self, User, saved_user):
        """Test that a supplied version is the expected current value."""
        attributes = User.update("u1", {"$SET": {"name": "Bea", "version": 1}})
        assert attributes["version"] == 2

        with pytest.raises(ConstraintViolation):
            User.update("u1", {"$SET": {"name": "Cy", "version": 1}})

    def test_key_attributes_not_updated(self, User, saved_user):
        """Test that primary key attributes are stripped from the body."""
        attributes = User.update("u1", {"$SET": {"id": "u2", "name": "Bea"}})

        assert attributes["id"] == "u1"
        assert User.get("u2") is None

    def test_datetime_values_stored_as_epoch(self, User, saved_user, dynamodb_tables):
        """Test date conversion in update bodies."""
        User.update("u1", {"$SET": {"createdAt": datetime(1970, 1, 1, 0, 0, 1)}})

        assert dynamodb_tables['users'].get_item(Key={'id': 'u1'})['Item']['createdAt'] == 1000

    def test_date_time_version(self, Note, dynamodb_tables):
        """Test that a date-time version is set to now."""
        dynamodb_tables['notes'].put_item(Item={'id': 'n1', 'revisedAt': 1000})

        attributes = Note.update("n1", {"$SET": {"body": "new"}})

        assert attributes["revisedAt"] > 1000

    def test_nothing_to_update(self, Post):
        """Test that an empty body without a version is rejected."""
        with pytest.raises(ConfigurationError):
            Post.update("p1", {"$SET": {"id": "p1"}})

    @pytest.mark.parametrize("update", [
        {"$SET": {"name": "a"}, "$ADD": {"loginCount": 1}},
        {"$PUSH": {"name": "a"}},
        {},
    ])
    def test_invalid_verbs(self, User, update):
        """Test that exactly one known verb is required."""
        with pytest.raises(ConfigurationError):
            User.update("u1", update)
