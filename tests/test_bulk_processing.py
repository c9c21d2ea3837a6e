"""
Tests for commit strategies, the error policy and persistence failures.
"""

import pytest
from sqlalchemy.exc import OperationalError

from app.db.models import Application, User
from app.domain.imports.bulk_processing import (
    BulkProcessingService,
    CommitStrategy,
    choose_commit_strategy,
    compute_batch_size,
)
from app.domain.imports.cancellation import CancellationToken
from app.domain.imports.errors import PersistenceInfrastructureError
from app.domain.imports.results import ImportStatus
from app.domain.imports.validation import ValidationOrchestrator
from tests.utils.factories import count_rows, dataset_from, user_record


def _application(name, **extra):
    record = {"ApplicationName": name, "ApplicationDescription": f"{name} description"}
    record.update(extra)
    return record


def _validated(mapper, dataset):
    return ValidationOrchestrator(max_workers=1).validate(dataset, mapper).results


class TestBatchSize:
    @pytest.mark.parametrize("budget, footprint, expected", [
        (10_000, 100, 100),
        (10_000, 1, 500),
        (10_000, 1_000, 10),
        (None, 100, 10),
        (0, 100, 10),
        (10_000, None, 500),
        (10_000, 0, 500),
    ])
    def test_compute_batch_size_is_clamped(self, budget, footprint, expected):
        assert compute_batch_size(budget, footprint, 10, 500) == expected

    def test_override_is_clamped(self):
        service = BulkProcessingService(min_batch_size=50, max_batch_size=5000)
        dataset = dataset_from([_application("A")])

        assert service.resolve_batch_size(dataset, 10) == 50
        assert service.resolve_batch_size(dataset, 10_000) == 5000
        assert service.resolve_batch_size(dataset, 200) == 200


class TestCommitStrategy:
    def test_strategy_selection(self, bind):
        users, _ = bind("Users")
        applications, _ = bind("Applications")

        assert choose_commit_strategy(users, 5, 1000) == CommitStrategy.BATCH_MAPPER
        assert choose_commit_strategy(applications, 1000, 1000) == CommitStrategy.PER_ROW
        assert choose_commit_strategy(applications, 1001, 1000) == CommitStrategy.CHUNKED

    def test_batch_mapper_commits_once(self, bind, session_factory):
        mapper, unit_of_work = bind("Users")
        dataset = dataset_from([user_record("alice"), user_record("bob"), user_record("carol")])
        updates = []

        result = BulkProcessingService().process(
            dataset, mapper, unit_of_work, _validated(mapper, dataset), None, progress=updates.append
        )

        assert result.strategy == CommitStrategy.BATCH_MAPPER
        assert (result.succeeded_rows, result.failed_rows, result.processed_rows) == (3, 0, 3)
        assert result.status == ImportStatus.COMPLETED
        assert len(updates) == 1
        assert count_rows(session_factory, User) == 3

    def test_per_row_reports_progress_after_each_commit(self, bind, session_factory):
        mapper, unit_of_work = bind("Applications")
        dataset = dataset_from([_application("A"), _application("B"), _application("C")])
        updates = []

        result = BulkProcessingService().process(
            dataset, mapper, unit_of_work, _validated(mapper, dataset), None, progress=updates.append
        )

        assert result.strategy == CommitStrategy.PER_ROW
        assert [update.processed for update in updates] == [1, 2, 3]
        assert updates[-1].percent == 100
        assert updates[-1].batch_count == 3
        assert count_rows(session_factory, Application) == 3

    def test_chunked_commits(self, bind, session_factory):
        mapper, unit_of_work = bind("Applications")
        dataset = dataset_from([_application(f"App {index}") for index in range(7)])
        updates = []
        service = BulkProcessingService(row_batch_threshold=5, min_batch_size=3, max_batch_size=3)

        result = service.process(
            dataset, mapper, unit_of_work, _validated(mapper, dataset), None, progress=updates.append
        )

        assert result.strategy == CommitStrategy.CHUNKED
        assert result.batch_size == 3
        assert result.batch_count == 3
        assert [update.processed for update in updates] == [3, 6, 7]
        assert count_rows(session_factory, Application) == 7

    def test_failing_progress_callback_does_not_stop_the_run(self, bind, session_factory):
        mapper, unit_of_work = bind("Applications")
        dataset = dataset_from([_application("A"), _application("B")])

        def broken(update):
            raise RuntimeError("display went away")

        result = BulkProcessingService().process(
            dataset, mapper, unit_of_work, _validated(mapper, dataset), None, progress=broken
        )

        assert result.succeeded_rows == 2


class TestErrorPolicy:
    def test_invalid_rows_abort_when_not_ignoring_errors(self, bind, session_factory):
        mapper, unit_of_work = bind("Users")
        dataset = dataset_from([user_record("alice"), user_record("bob", email="nope"), user_record("carol")])

        result = BulkProcessingService().process(dataset, mapper, unit_of_work, _validated(mapper, dataset), None)

        assert result.aborted
        assert result.strategy is None
        assert (result.processed_rows, result.succeeded_rows, result.failed_rows) == (0, 0, 1)
        assert result.status == ImportStatus.FAILED
        assert result.errors == []
        assert count_rows(session_factory, User) == 0

    def test_ignore_errors_saves_valid_rows(self, bind, session_factory):
        mapper, unit_of_work = bind("Users")
        dataset = dataset_from([user_record("alice"), user_record("bob", email="nope"), user_record("carol")])

        result = BulkProcessingService().process(
            dataset, mapper, unit_of_work, _validated(mapper, dataset), None, ignore_errors=True
        )

        assert (result.processed_rows, result.succeeded_rows, result.failed_rows) == (3, 2, 1)
        assert result.status == ImportStatus.COMPLETED_WITH_ERRORS
        assert result.errors == []
        assert count_rows(session_factory, User) == 2

    def test_recoverable_rows_are_saved_when_ignoring_errors(self, bind, session_factory):
        mapper, unit_of_work = bind("Applications")
        dataset = dataset_from([_application("A", ApplicationDataSourceType="Mainframe")])

        result = BulkProcessingService().process(
            dataset, mapper, unit_of_work, _validated(mapper, dataset), None, ignore_errors=True
        )

        assert result.succeeded_rows == 1
        with session_factory() as session:
            assert session.query(Application.data_source_type).scalar() == "Database"

    def test_construction_failure_fails_only_that_row(self, bind, session_factory, monkeypatch):
        mapper, unit_of_work = bind("Applications")
        dataset = dataset_from([_application("A"), _application("B")])
        results = _validated(mapper, dataset)
        original = mapper.build_entity

        def build(row, acting_user_id):
            if row.row_number == 2:
                raise ValueError("description could not be read")
            return original(row, acting_user_id)

        monkeypatch.setattr(mapper, "build_entity", build)
        result = BulkProcessingService().process(dataset, mapper, unit_of_work, results, None)

        assert (result.succeeded_rows, result.failed_rows) == (1, 1)
        assert result.errors[0].row_number == 2
        assert result.errors[0].messages == ("Error saving application: description could not be read",)


class TestPersistenceFailures:
    def test_integrity_error_fails_the_batch(self, bind, session_factory):
        """Row-only mappers cannot see duplicates between sibling rows; the store rejects them."""
        mapper, unit_of_work = bind("Applications")
        dataset = dataset_from([_application("Portal"), _application("Other"), _application("Portal")])
        results = _validated(mapper, dataset)
        service = BulkProcessingService(row_batch_threshold=1, min_batch_size=10, max_batch_size=10)

        result = service.process(dataset, mapper, unit_of_work, results, None, file_name="apps.csv")

        assert all(results[number].is_valid for number in (1, 2, 3))
        assert result.strategy == CommitStrategy.CHUNKED
        assert (result.processed_rows, result.succeeded_rows, result.failed_rows) == (3, 0, 3)
        assert result.status == ImportStatus.FAILED
        assert {error.row_number for error in result.errors} == {1, 2, 3}
        assert all(error.messages[0].startswith("Database rejected the row:") for error in result.errors)
        assert all(error.file_name == "apps.csv" for error in result.errors)
        assert count_rows(session_factory, Application) == 0

    def test_infrastructure_error_propagates(self, bind, session_factory, monkeypatch):
        mapper, unit_of_work = bind("Applications")
        dataset = dataset_from([_application("A")])
        results = _validated(mapper, dataset)

        def unavailable():
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(unit_of_work, "commit", unavailable)

        with pytest.raises(PersistenceInfrastructureError):
            BulkProcessingService().process(dataset, mapper, unit_of_work, results, None)
        assert unit_of_work.pending_count == 0


class TestCancellation:
    def test_cancel_between_commits(self, bind, session_factory):
        mapper, unit_of_work = bind("Applications")
        dataset = dataset_from([_application("A"), _application("B"), _application("C")])
        token = CancellationToken()

        result = BulkProcessingService().process(
            dataset,
            mapper,
            unit_of_work,
            _validated(mapper, dataset),
            None,
            cancel=token,
            progress=lambda update: token.cancel(),
        )

        assert result.cancelled
        assert result.status == ImportStatus.CANCELLED
        assert result.succeeded_rows == 1
        assert count_rows(session_factory, Application) == 1

    def test_cancel_before_batch_commit_rolls_back(self, bind, session_factory):
        mapper, unit_of_work = bind("Users")
        dataset = dataset_from([user_record("alice"), user_record("bob")])
        token = CancellationToken()
        token.cancel()

        result = BulkProcessingService().process(
            dataset, mapper, unit_of_work, _validated(mapper, dataset), None, cancel=token
        )

        assert result.cancelled
        assert result.succeeded_rows == 0
        assert unit_of_work.pending_count == 0
        assert count_rows(session_factory, User) == 0
