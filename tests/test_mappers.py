"""
Tests for the table mappers: column checks, store checks and staging.
"""

import pytest

from app.db.models import Application, TemporaryUser, User, UserApplication, UserRole
from app.domain.imports.cancellation import CancellationToken
from app.domain.imports.errors import ImportCancelledError
from app.domain.imports.mappers.base import BatchTableMapper
from app.domain.imports.results import should_stage
from tests.utils.factories import (
    count_rows,
    dataset_from,
    seed_application,
    seed_assignment,
    seed_temporary_user,
    seed_user,
    user_record,
)


def _validate(mapper, record):
    return mapper.validate_row(dataset_from([record]).row(1))


class TestUserValidation:
    def test_valid_row(self, bind):
        mapper, _ = bind("Users")

        result = _validate(mapper, user_record("alice"))

        assert result.is_valid
        assert result.errors == ()

    def test_required_fields(self, bind):
        mapper, _ = bind("Users")

        result = _validate(mapper, {"Username": "alice", "Email": "", "FirstName": " "})

        assert not result.is_valid
        assert not result.recoverable
        assert set(result.errors) == {"Email is required", "FirstName is required", "LastName is required"}

    def test_max_length(self, bind):
        mapper, _ = bind("Users")

        result = _validate(mapper, user_record("u" * 51, email="long@example.com"))

        assert result.errors == ("Username cannot exceed 50 characters",)

    def test_invalid_email(self, bind):
        mapper, _ = bind("Users")

        result = _validate(mapper, user_record("alice", email="not-an-email"))

        assert result.errors == ("Invalid email format",)

    def test_unknown_role_is_recoverable(self, bind):
        mapper, _ = bind("Users")

        result = _validate(mapper, user_record("alice", Role="Superuser"))

        assert not result.is_valid
        assert result.recoverable
        assert result.errors == ("Invalid Role. Must be Admin, User, or PlatformAdmin",)
        assert should_stage(result, ignore_errors=True)
        assert not should_stage(result, ignore_errors=False)

    def test_invalid_boolean_is_recoverable(self, bind):
        mapper, _ = bind("Users")

        result = _validate(mapper, user_record("alice", IsActive="sometimes"))

        assert result.recoverable
        assert result.errors == ("Invalid IsActive value 'sometimes'. Use true or false",)

    def test_soft_and_hard_errors_are_not_recoverable(self, bind):
        mapper, _ = bind("Users")

        result = _validate(mapper, user_record("alice", email="bad", Role="Superuser"))

        assert not result.recoverable
        assert len(result.errors) == 2

    def test_role_matches_case_insensitively(self, bind):
        mapper, _ = bind("Users")

        assert _validate(mapper, user_record("alice", Role="platformadmin")).is_valid

    def test_existing_username_and_email(self, bind, session_factory):
        seed_user(session_factory, "Alice", email="alice@example.com")
        mapper, _ = bind("Users")

        result = _validate(mapper, user_record("alice", email="ALICE@example.com"))

        assert result.errors == (
            "Username 'alice' already exists",
            "Email 'ALICE@example.com' already exists",
        )

    def test_validate_row_checks_cancellation_before_store_lookup(self, bind):
        mapper, _ = bind("Users")
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ImportCancelledError):
            mapper.validate_row(dataset_from([user_record("alice")]).row(1), cancel=token)


class TestUserBatchValidation:
    def test_duplicates_within_batch_differing_only_in_case(self, bind):
        mapper, _ = bind("Users")
        dataset = dataset_from([
            user_record("alice"),
            user_record("ALICE", email="other@example.com"),
            user_record("bob", email="Alice@Example.com"),
        ])

        results = mapper.validate_batch(dataset)

        assert results[1].is_valid
        assert results[2].errors == ("Username 'ALICE' appears multiple times in this batch",)
        assert results[3].errors == ("Email 'Alice@Example.com' appears multiple times in this batch",)

    def test_existing_keys_are_preloaded(self, bind, session_factory):
        seed_user(session_factory, "carol")
        mapper, _ = bind("Users")
        dataset = dataset_from([user_record("carol", email="new@example.com"), user_record("dave")])

        results = mapper.validate_batch(dataset)

        assert results[1].errors == ("Username 'carol' already exists",)
        assert results[2].is_valid

    def test_batch_and_row_validation_agree_without_sibling_duplicates(self, bind, session_factory):
        seed_user(session_factory, "carol")
        mapper, _ = bind("Users")
        dataset = dataset_from([
            user_record("carol"),
            user_record("dave", email="bad"),
            user_record("erin", Role="Nobody"),
            user_record("frank"),
        ])

        batch = mapper.validate_batch(dataset)
        single = {row.row_number: mapper.validate_row(row) for row in dataset}

        assert batch == single

    def test_cancelled_batch_validation(self, bind):
        mapper, _ = bind("Users")
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ImportCancelledError):
            mapper.validate_batch(dataset_from([user_record("alice")]), token)


class TestUserSaving:
    def test_save_batch_stages_valid_rows(self, bind, session_factory):
        mapper, unit_of_work = bind("Users")
        dataset = dataset_from([
            user_record("alice", Role="admin", IsActive="no", PhoneNumber="555-0100"),
            user_record("bob", email="bad"),
        ])
        results = mapper.validate_batch(dataset)

        saved = mapper.save_batch(dataset, "operator-1", results)
        committed = unit_of_work.commit()

        assert saved.success
        assert saved.value == 1
        assert committed == 1
        with session_factory() as session:
            user = session.query(User).one()
            assert user.username == "alice"
            assert user.role == "Admin"
            assert user.is_active is False
            assert user.phone_number == "555-0100"
            assert user.created_by == "operator-1"
            assert user.password_hash.startswith("$2")

    def test_recoverable_rows_use_defaults_when_ignoring_errors(self, bind, session_factory):
        mapper, unit_of_work = bind("Users")
        dataset = dataset_from([user_record("alice", Role="Wizard", IsActive="maybe")])
        results = mapper.validate_batch(dataset)

        mapper.save_batch(dataset, None, results, ignore_errors=True)
        unit_of_work.commit()

        with session_factory() as session:
            user = session.query(User).one()
            assert user.role == "User"
            assert user.is_active is True

    def test_save_without_unit_of_work(self, registry, session_factory):
        mapper = registry.create("Users", session_factory=session_factory)

        with pytest.raises(RuntimeError):
            mapper.save_row(dataset_from([user_record("alice")]).row(1), None)


class TestUserRoles:
    def test_whitespace_is_a_soft_error_and_trimmed(self, bind, session_factory):
        mapper, unit_of_work = bind("UserRoles")
        dataset = dataset_from([{"Role": "  Auditor ", "CreatedBy": "system.admin"}])

        results = mapper.validate_batch(dataset)

        assert results[1].errors == ("Role name cannot have leading or trailing whitespace",)
        assert results[1].recoverable

        mapper.save_batch(dataset, None, results, ignore_errors=True)
        unit_of_work.commit()
        with session_factory() as session:
            assert session.query(UserRole.role_name).scalar() == "Auditor"

    def test_duplicate_role_names(self, bind):
        mapper, _ = bind("UserRoles")
        dataset = dataset_from([
            {"Role": "Developer", "CreatedBy": "a"},
            {"Role": "developer", "CreatedBy": "b"},
        ])

        results = mapper.validate_batch(dataset)

        assert results[2].errors == ("Role 'developer' appears multiple times in this batch",)

    def test_created_by_is_required(self, bind):
        mapper, _ = bind("UserRoles")

        result = _validate(mapper, {"Role": "Developer"})

        assert result.errors == ("CreatedBy is required",)


class TestApplications:
    def test_is_row_only(self, bind):
        mapper, _ = bind("Applications")

        assert not isinstance(mapper, BatchTableMapper)
        assert not mapper.descriptor().batch_capable

    def test_existing_application_name(self, bind, session_factory):
        seed_application(session_factory, "Employee Portal")
        mapper, _ = bind("Applications")

        result = _validate(mapper, {
            "ApplicationName": "employee portal",
            "ApplicationDescription": "Duplicate",
        })

        assert result.errors == ("ApplicationName 'employee portal' already exists",)

    def test_invalid_data_source_type_is_recoverable(self, bind):
        mapper, _ = bind("Applications")

        result = _validate(mapper, {
            "ApplicationName": "Portal",
            "ApplicationDescription": "Portal",
            "ApplicationDataSourceType": "Mainframe",
        })

        assert result.recoverable
        assert result.errors == ("Invalid ApplicationDataSourceType. Must be Database, API, File, or Cloud",)

    def test_save_row_stages_entity(self, bind, session_factory):
        mapper, unit_of_work = bind("Applications")
        row = dataset_from([{
            "ApplicationName": "Portal",
            "ApplicationDescription": "Self service",
            "ApplicationDataSourceType": "api",
        }]).row(1)

        saved = mapper.save_row(row, "operator-1")
        unit_of_work.commit()

        assert saved.success
        with session_factory() as session:
            application = session.query(Application).one()
            assert application.data_source_type == "API"
            assert application.is_active is True
            assert application.created_by == "operator-1"


class TestUserApplications:
    def test_unknown_user_and_application(self, bind):
        mapper, _ = bind("UserApplications")

        result = _validate(mapper, {"Username": "ghost", "ApplicationName": "Nowhere"})

        assert result.errors == (
            "User 'ghost' does not exist or is inactive",
            "Application 'Nowhere' does not exist",
        )

    def test_inactive_user(self, bind, session_factory):
        seed_user(session_factory, "sleepy", is_active=False)
        seed_application(session_factory, "Portal")
        mapper, _ = bind("UserApplications")

        result = _validate(mapper, {"Username": "sleepy", "ApplicationName": "Portal"})

        assert result.errors == ("User 'sleepy' does not exist or is inactive",)

    def test_already_assigned(self, bind, session_factory):
        user_id = seed_user(session_factory, "alice")
        application_id = seed_application(session_factory, "Portal")
        seed_assignment(session_factory, user_id, application_id)
        mapper, _ = bind("UserApplications")

        result = _validate(mapper, {"Username": "alice", "ApplicationName": "Portal"})

        assert result.errors == ("User 'alice' is already assigned to application 'Portal'",)

    def test_invalid_permission_level_is_not_recoverable(self, bind, session_factory):
        seed_user(session_factory, "alice")
        seed_application(session_factory, "Portal")
        mapper, _ = bind("UserApplications")

        result = _validate(mapper, {"Username": "alice", "ApplicationName": "Portal", "PermissionLevel": "Owner"})

        assert not result.recoverable
        assert result.errors == ("Invalid PermissionLevel. Must be Read, Write, or Admin",)

    def test_invalid_expiration_date(self, bind, session_factory):
        seed_user(session_factory, "alice")
        seed_application(session_factory, "Portal")
        mapper, _ = bind("UserApplications")

        result = _validate(mapper, {"Username": "alice", "ApplicationName": "Portal", "ExpirationDate": "soon"})

        assert result.errors == ("Invalid ExpirationDate format",)

    def test_save_row_resolves_references(self, bind, session_factory):
        user_id = seed_user(session_factory, "alice")
        application_id = seed_application(session_factory, "Portal")
        mapper, unit_of_work = bind("UserApplications")
        row = dataset_from([{
            "Username": "Alice",
            "ApplicationName": "portal",
            "PermissionLevel": "write",
            "ExpirationDate": "2030-06-30",
        }]).row(1)

        saved = mapper.save_row(row, None)
        unit_of_work.commit()

        assert saved.success
        with session_factory() as session:
            assignment = session.query(UserApplication).one()
            assert assignment.user_id == user_id
            assert assignment.application_id == application_id
            assert assignment.permission_level == "Write"
            assert assignment.expiration_date.year == 2030

    def test_save_row_failure_names_the_entity(self, bind, session_factory):
        mapper, unit_of_work = bind("UserApplications")
        row = dataset_from([{"Username": "ghost", "ApplicationName": "Portal"}]).row(1)

        saved = mapper.save_row(row, None)

        assert not saved.success
        assert saved.error == "Error saving user application assignment: User 'ghost' does not exist or is inactive"
        assert unit_of_work.pending_count == 0
        assert count_rows(session_factory, UserApplication) == 0


def _request(email, **extra):
    record = {"FirstName": "Pat", "LastName": "Lee", "Email": email}
    record.update(extra)
    return record


class TestTemporaryUsers:
    def test_valid_request(self, bind, session_factory):
        seed_application(session_factory, "Portal")
        mapper, _ = bind("TemporaryUsers")

        result = _validate(mapper, _request("pat@example.com", RequestedApplications="portal"))

        assert result.is_valid

    def test_invalid_email(self, bind):
        mapper, _ = bind("TemporaryUsers")

        assert _validate(mapper, _request("pat-at-example")).errors == ("Invalid email format",)

    def test_email_already_requested_or_active(self, bind, session_factory):
        seed_temporary_user(session_factory, "pending@example.com")
        seed_user(session_factory, "active", email="active@example.com")
        mapper, _ = bind("TemporaryUsers")

        pending = _validate(mapper, _request("Pending@Example.com"))
        active = _validate(mapper, _request("active@example.com"))

        assert pending.errors == ("Email 'Pending@Example.com' already has a temporary user request",)
        assert active.errors == ("Email 'active@example.com' already exists as an active user",)

    def test_unknown_requested_application(self, bind, session_factory):
        seed_application(session_factory, "Portal")
        mapper, _ = bind("TemporaryUsers")

        result = _validate(mapper, _request("pat@example.com", RequestedApplications="Portal, Nowhere"))

        assert result.errors == ("Application 'Nowhere' does not exist",)

    def test_duplicate_email_within_batch(self, bind):
        mapper, _ = bind("TemporaryUsers")
        dataset = dataset_from([_request("pat@example.com"), _request("PAT@example.com")])

        results = mapper.validate_batch(dataset)

        assert results[1].is_valid
        assert results[2].errors == ("Email 'PAT@example.com' appears multiple times in this batch",)

    def test_batch_and_row_validation_agree_without_sibling_duplicates(self, bind, session_factory):
        seed_temporary_user(session_factory, "pending@example.com")
        seed_user(session_factory, "active", email="active@example.com")
        seed_application(session_factory, "Portal")
        mapper, _ = bind("TemporaryUsers")
        dataset = dataset_from([
            _request("pending@example.com"),
            _request("active@example.com", RequestedApplications="Wiki"),
            _request("bad-email"),
            _request("new@example.com", RequestedApplications="Portal"),
        ])

        batch = mapper.validate_batch(dataset)
        single = {row.row_number: mapper.validate_row(row) for row in dataset}

        assert batch == single

    def test_save_batch_uses_email_as_username(self, bind, session_factory):
        seed_application(session_factory, "Portal")
        seed_application(session_factory, "Wiki")
        mapper, unit_of_work = bind("TemporaryUsers")
        dataset = dataset_from([
            _request("pat@example.com", RequestedApplications=" Portal ,Wiki,", Justification="New hire"),
        ])
        results = mapper.validate_batch(dataset)

        saved = mapper.save_batch(dataset, "operator-1", results)
        unit_of_work.commit()

        assert saved.value == 1
        with session_factory() as session:
            request = session.query(TemporaryUser).one()
            assert request.username == "pat@example.com"
            assert request.requested_applications == "Portal, Wiki"
            assert request.requested_by == "operator-1"
            assert request.created_by == "operator-1"
            assert request.password_hash.startswith("$2")
            assert len(request.token) == 36


class TestExampleRows:
    @pytest.mark.parametrize("table_type", ["Users", "UserRoles", "Applications"])
    def test_examples_validate_on_an_empty_store(self, bind, table_type):
        mapper, _ = bind(table_type)
        dataset = dataset_from(mapper.example_rows())

        for row in dataset:
            assert mapper.validate_row(row).is_valid, row

    def test_assignment_examples_validate_once_references_exist(self, bind, session_factory):
        for username in ("john.doe", "jane.smith"):
            seed_user(session_factory, username)
        for name in ("Employee Portal", "Inventory Management"):
            seed_application(session_factory, name)
        mapper, _ = bind("UserApplications")

        for row in dataset_from(mapper.example_rows()):
            assert mapper.validate_row(row).is_valid, row

    def test_temporary_user_examples_validate_once_applications_exist(self, bind, session_factory):
        for name in ("Employee Portal", "Inventory Management"):
            seed_application(session_factory, name)
        mapper, _ = bind("TemporaryUsers")

        for row in dataset_from(mapper.example_rows()):
            assert mapper.validate_row(row).is_valid, row
