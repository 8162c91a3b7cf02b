import threading
from datetime import timedelta

import pytest
from pydantic import ValidationError

from app.core.errors import (
    ExperimentNotActive,
    ExperimentNotFound,
    InvalidTransition,
    ParticipantNotFound,
)
from app.models.enums import ExperimentStatus, Variant
from app.models.schemas.experiment import ExperimentCreateModel, Participant
from app.repositories.memory import InMemoryStore
from app.services.event_service import EventService
from app.services.experiment_service import ExperimentService

from .conftest import NOW, make_experiment


@pytest.fixture
def service(memory_store, clock):
    return ExperimentService(config=memory_store, store=memory_store, writer=memory_store, clock=clock)


@pytest.fixture
def events(memory_store, clock):
    return EventService(config=memory_store, store=memory_store, clock=clock)


class TestAssign:
    def test_sticky_assignment_survives_allocation_change(self, service, memory_store):
        experiment = memory_store.save_experiment(make_experiment(traffic_allocation=100))

        first = service.assign(experiment, "user-1", {"platform": "ios"})
        assert first.variant == Variant.TREATMENT
        assert first.is_new is True

        changed = memory_store.save_experiment(experiment.model_copy(update={"traffic_allocation": 0}))
        second = service.assign(changed, "user-1")
        assert second.variant == Variant.TREATMENT
        assert second.is_new is False

    @pytest.mark.parametrize(
        "allocation, expected", [(0, Variant.CONTROL), (100, Variant.TREATMENT)]
    )
    def test_allocation_boundaries(self, service, memory_store, allocation, expected):
        experiment = memory_store.save_experiment(make_experiment(traffic_allocation=allocation))
        variants = {service.assign(experiment, f"user-{i}").variant for i in range(100)}
        assert variants == {expected}

    def test_participant_records_context_and_time(self, service, memory_store):
        experiment = memory_store.save_experiment(make_experiment())
        service.assign(experiment, "user-1", {"platform": "web"})
        participant = memory_store.get_participant(experiment.experiment_id, "user-1")
        assert participant.context == {"platform": "web"}
        assert participant.assigned_at == NOW

    def test_returned_participants_are_copies(self, service, memory_store):
        experiment = memory_store.save_experiment(make_experiment())
        service.assign(experiment, "user-1", {"platform": "web"})

        memory_store.get_participant(experiment.experiment_id, "user-1").context["platform"] = "ios"
        memory_store.list_participants(experiment.experiment_id)[0].context.clear()

        stored = memory_store.get_participant(experiment.experiment_id, "user-1")
        assert stored.context == {"platform": "web"}

    def test_draft_experiment_rejects_new_participants(self, service, memory_store):
        experiment = memory_store.save_experiment(make_experiment(status=ExperimentStatus.DRAFT))
        with pytest.raises(ExperimentNotActive):
            service.assign(experiment, "user-1")
        assert memory_store.list_participants(experiment.experiment_id) == []

    def test_future_start_date_rejects(self, service, memory_store):
        experiment = memory_store.save_experiment(
            make_experiment(start_date=NOW + timedelta(days=1))
        )
        with pytest.raises(ExperimentNotActive):
            service.assign(experiment, "user-1")

    def test_past_end_date_rejects(self, service, memory_store):
        experiment = memory_store.save_experiment(make_experiment(end_date=NOW - timedelta(seconds=1)))
        with pytest.raises(ExperimentNotActive):
            service.assign(experiment, "user-1")

    def test_window_bounds_are_inclusive(self, service, memory_store):
        experiment = memory_store.save_experiment(make_experiment(start_date=NOW, end_date=NOW))
        assert service.assign(experiment, "user-1").is_new is True

    def test_existing_participant_returned_after_stop(self, service, memory_store):
        experiment = memory_store.save_experiment(make_experiment())
        first = service.assign(experiment, "user-1")

        stopped = service.stop_experiment(experiment.experiment_id)
        again = service.assign(stopped, "user-1")
        assert again.variant == first.variant
        assert again.is_new is False

        with pytest.raises(ExperimentNotActive):
            service.assign(stopped, "user-2")

    def test_assign_variant_by_id(self, service, memory_store):
        memory_store.save_experiment(make_experiment(traffic_allocation=100))
        result = service.assign_variant("exp-checkout", "user-1")
        assert result.variant == Variant.TREATMENT
        assert result.experiment_id == "exp-checkout"
        assert result.user_id == "user-1"

        repeat = service.assign_variant("exp-checkout", "user-1")
        assert repeat.variant == result.variant
        assert repeat.is_new is False

    def test_assign_variant_unknown_experiment(self, service):
        with pytest.raises(ExperimentNotFound):
            service.assign_variant("missing", "user-1")

    def test_race_loser_returns_winner_variant(self, clock):
        class LaggingStore(InMemoryStore):
            """Misses the existing row on read, as a concurrent request would."""

            def get_participant(self, experiment_id, user_id):
                return None

        store = LaggingStore()
        experiment = store.save_experiment(make_experiment(traffic_allocation=0))
        store.insert_participant_if_absent(
            Participant(
                experiment_id=experiment.experiment_id,
                user_id="user-1",
                variant=Variant.TREATMENT,
                assigned_at=NOW,
            )
        )
        service = ExperimentService(config=store, store=store, clock=clock)

        result = service.assign(experiment, "user-1")
        assert result.variant == Variant.TREATMENT
        assert result.is_new is False

    def test_concurrent_first_assignments_converge(self, service, memory_store):
        experiment = memory_store.save_experiment(make_experiment())
        workers = 16
        barrier = threading.Barrier(workers)
        results = []
        errors = []

        def worker():
            barrier.wait()
            try:
                results.append(service.assign(experiment, "user-1"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len({r.variant for r in results}) == 1
        assert sum(r.is_new for r in results) == 1
        assert len(memory_store.list_participants(experiment.experiment_id)) == 1


class TestLifecycle:
    def test_create_starts_as_draft(self, service):
        experiment = service.create_experiment(ExperimentCreateModel(name="Pricing page"))
        assert experiment.status == ExperimentStatus.DRAFT
        assert experiment.traffic_allocation == 50
        assert service.get_experiment(experiment.experiment_id).name == "Pricing page"

    def test_create_rejects_end_before_start(self):
        with pytest.raises(ValidationError):
            ExperimentCreateModel(
                name="Pricing page", start_date=NOW, end_date=NOW - timedelta(days=1)
            )
        same_day = ExperimentCreateModel(name="Pricing page", start_date=NOW, end_date=NOW)
        assert same_day.end_date == same_day.start_date

    def test_start_sets_start_date_when_missing(self, service, memory_store):
        memory_store.save_experiment(make_experiment(status=ExperimentStatus.DRAFT))
        started = service.start_experiment("exp-checkout")
        assert started.status == ExperimentStatus.RUNNING
        assert started.start_date == NOW

    def test_start_keeps_scheduled_start_date(self, service, memory_store):
        scheduled = NOW + timedelta(days=2)
        memory_store.save_experiment(
            make_experiment(status=ExperimentStatus.DRAFT, start_date=scheduled)
        )
        assert service.start_experiment("exp-checkout").start_date == scheduled

    def test_start_only_from_draft(self, service, memory_store):
        memory_store.save_experiment(make_experiment(status=ExperimentStatus.RUNNING))
        with pytest.raises(InvalidTransition):
            service.start_experiment("exp-checkout")

    def test_stop_records_reason_and_end_date(self, service, memory_store, clock):
        memory_store.save_experiment(make_experiment())
        clock.advance(hours=1)
        stopped = service.stop_experiment("exp-checkout", "guardrail breached")
        assert stopped.status == ExperimentStatus.STOPPED
        assert stopped.end_date == NOW + timedelta(hours=1)
        assert stopped.metadata["stop_reason"] == "guardrail breached"

    def test_stop_default_reason(self, service, memory_store):
        memory_store.save_experiment(make_experiment())
        assert service.stop_experiment("exp-checkout").metadata["stop_reason"] == "Manual stop"

    def test_complete_from_stopped_keeps_end_date(self, service, memory_store, clock):
        memory_store.save_experiment(make_experiment())
        stopped = service.stop_experiment("exp-checkout")
        clock.advance(days=1)
        completed = service.complete_experiment("exp-checkout", {"winner": "treatment"}, "Ship it")
        assert completed.status == ExperimentStatus.COMPLETED
        assert completed.end_date == stopped.end_date
        assert completed.results == {"winner": "treatment"}
        assert completed.conclusion == "Ship it"

    def test_complete_directly_from_running(self, service, memory_store):
        memory_store.save_experiment(make_experiment())
        completed = service.complete_experiment("exp-checkout")
        assert completed.status == ExperimentStatus.COMPLETED
        assert completed.end_date == NOW

    @pytest.mark.parametrize("status", [ExperimentStatus.DRAFT, ExperimentStatus.COMPLETED])
    def test_complete_rejected_from(self, service, memory_store, status):
        memory_store.save_experiment(make_experiment(status=status))
        with pytest.raises(InvalidTransition):
            service.complete_experiment("exp-checkout")

    def test_stop_unknown_experiment(self, service):
        with pytest.raises(ExperimentNotFound):
            service.stop_experiment("missing")

    def test_lifecycle_requires_writer(self, memory_store, clock):
        service = ExperimentService(config=memory_store, store=memory_store, clock=clock)
        with pytest.raises(RuntimeError):
            service.create_experiment(ExperimentCreateModel(name="No writer"))


class TestTrack:
    def test_requires_participant(self, memory_store, events):
        memory_store.save_experiment(make_experiment())
        with pytest.raises(ParticipantNotFound):
            events.track("exp-checkout", "user-1", "conversion")

    def test_unknown_experiment(self, events):
        with pytest.raises(ExperimentNotFound):
            events.track("missing", "user-1", "conversion")

    def test_variant_copied_from_participant(self, service, memory_store, events):
        experiment = memory_store.save_experiment(make_experiment(traffic_allocation=100))
        service.assign(experiment, "user-1")
        memory_store.save_experiment(experiment.model_copy(update={"traffic_allocation": 0}))

        event = events.track("exp-checkout", "user-1", "conversion", {"amount": 12.5})
        assert event.variant == Variant.TREATMENT
        assert event.event_data == {"amount": 12.5}
        assert event.tracked_at == NOW
        assert memory_store.list_events("exp-checkout") == [event]

    def test_tracking_allowed_after_stop(self, service, memory_store, events):
        experiment = memory_store.save_experiment(make_experiment())
        service.assign(experiment, "user-1")
        service.stop_experiment("exp-checkout")
        assert events.track("exp-checkout", "user-1", "click").event_type == "click"


def test_get_results(service, memory_store, events):
    experiment = memory_store.save_experiment(make_experiment(traffic_allocation=100))
    for i in range(4):
        service.assign(experiment, f"user-{i}")
    events.track("exp-checkout", "user-0", "conversion")
    events.track("exp-checkout", "user-1", "click")

    results = service.get_results("exp-checkout")
    assert results.participant_counts == {Variant.CONTROL: 0, Variant.TREATMENT: 4}
    assert results.conversion_rates[Variant.TREATMENT].conversion_rate == 25.0
    assert results.event_counts[Variant.TREATMENT] == {"conversion": 1, "click": 1}

    with pytest.raises(ExperimentNotFound):
        service.get_results("missing")
