"""Tests for the polling scheduler."""

import logging
import threading

import pytest
from prometheus_client import CollectorRegistry

from scaleway_sd.discovery.group_builder import GroupBuilder
from scaleway_sd.discovery.label_mapper import LabelMapper
from scaleway_sd.discovery.models import InstanceRecord
from scaleway_sd.exceptions import InventoryError, SinkError
from scaleway_sd.metrics import DiscoveryMetrics
from scaleway_sd.scheduler import Scheduler, SchedulerState


def _rec(identifier, public_ip, tags=("web",)):
    return InstanceRecord(
        identifier=identifier,
        name=identifier,
        private_ip="10.0.0.1",
        public_ip=public_ip,
        commercial_type="DEV1-S",
        tags=tuple(tags),
    )


S1 = _rec("S1", "1.2.3.4")
S2 = _rec("S2", "5.6.7.8")


class FakeClient:
    """Returns or raises the queued responses in order, repeating the last one."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def list_instances(self):
        self.calls += 1
        response = self.responses[min(self.calls, len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return list(response)


class RecordingSink:
    def __init__(self, error=None):
        self.batches = []
        self.error = error

    def publish(self, batch):
        self.batches.append(batch)
        if self.error is not None:
            raise self.error


def _scheduler(client, sink=None, policy="per-instance", malformed_records="drop", interval=60):
    metrics = DiscoveryMetrics(CollectorRegistry())
    scheduler = Scheduler(
        client=client,
        mapper=LabelMapper(port=9100, address_source="public"),
        builder=GroupBuilder(policy=policy, instance_labels=["__address__", "__meta_scaleway_identifier",
                                                             "__meta_scaleway_name",
                                                             "__meta_scaleway_public_ip"]),
        sink=sink if sink is not None else RecordingSink(),
        interval_seconds=interval,
        metrics=metrics,
        malformed_records=malformed_records,
    )
    return scheduler, metrics


def _sample(metrics, name):
    return metrics.registry.get_sample_value(name)


class TestCycle:
    def test_two_instances_then_one_removed(self):
        sink = RecordingSink()
        scheduler, metrics = _scheduler(FakeClient([S1, S2], [S1]), sink)

        first = scheduler.run_once()
        assert [g.source for g in first] == ["scaleway/S1", "scaleway/S2"]
        assert [g.targets[0].address for g in first] == ["1.2.3.4:9100", "5.6.7.8:9100"]

        second = scheduler.run_once()
        assert [g.source for g in second] == ["scaleway/S1", "scaleway/S2"]
        assert not second[0].is_retraction
        assert second[1].is_retraction
        assert second[1].targets == ()
        assert sink.batches == [first, second]
        assert _sample(metrics, "prometheus_scaleway_sd_retractions_total") == 1

    def test_no_false_retraction_on_unchanged_inventory(self):
        scheduler, _ = _scheduler(FakeClient([S1, S2]))
        first = scheduler.run_once()
        second = scheduler.run_once()
        assert first == second
        assert not any(g.is_retraction for g in second)

    def test_merged_policy_collapses_identical_instances(self):
        scheduler, metrics = _scheduler(FakeClient([S1, S2]), policy="merged")
        batch = scheduler.run_once()
        assert len(batch) == 1
        assert [t.address for t in batch[0].targets] == ["1.2.3.4:9100", "5.6.7.8:9100"]
        assert _sample(metrics, "prometheus_scaleway_sd_targets") == 2
        assert _sample(metrics, "prometheus_scaleway_sd_target_groups") == 1

    def test_empty_inventory_publishes_empty_batch(self):
        sink = RecordingSink()
        scheduler, _ = _scheduler(FakeClient([]), sink)
        assert scheduler.run_once() == []
        assert sink.batches == [[]]

    def test_state_after_cycle_is_waiting(self):
        scheduler, _ = _scheduler(FakeClient([S1]))
        assert scheduler.state is SchedulerState.IDLE
        scheduler.run_once()
        assert scheduler.state is SchedulerState.WAITING


class TestFailures:
    def test_failed_poll_keeps_previous_state_and_publishes_nothing(self):
        sink = RecordingSink()
        scheduler, metrics = _scheduler(FakeClient([S1, S2], InventoryError("boom"), [S1]), sink)

        scheduler.run_once()
        before = scheduler.previous_identities
        assert scheduler.run_once() is None
        assert scheduler.previous_identities == before
        assert len(sink.batches) == 1
        assert _sample(metrics, "prometheus_scaleway_sd_request_failures_total") == 1

        # Next success still retracts S2 against the state from before the failure
        third = scheduler.run_once()
        assert [g.source for g in third if g.is_retraction] == ["scaleway/S2"]

    def test_unexpected_client_exception_is_transient(self):
        scheduler, metrics = _scheduler(FakeClient(RuntimeError("surprise")))
        assert scheduler.run_once() is None
        assert _sample(metrics, "prometheus_scaleway_sd_request_failures_total") == 1

    def test_request_latency_observed_for_success_and_failure(self):
        scheduler, metrics = _scheduler(FakeClient([S1], InventoryError("x")))
        scheduler.run_once()
        scheduler.run_once()
        assert _sample(metrics, "prometheus_scaleway_sd_request_duration_seconds_count") == 2

    def test_malformed_record_skipped_rest_published(self):
        broken = _rec("S3", "")
        scheduler, metrics = _scheduler(FakeClient([S1, broken, S2]))
        batch = scheduler.run_once()
        assert [g.source for g in batch] == ["scaleway/S1", "scaleway/S2"]
        assert _sample(metrics, "prometheus_scaleway_sd_malformed_records_total") == 1

    def test_malformed_warn_policy_logs_partial_batch(self, caplog):
        scheduler, _ = _scheduler(FakeClient([S1, _rec("S3", "")]), malformed_records="warn")
        with caplog.at_level(logging.WARNING, logger="scaleway_sd.scheduler"):
            scheduler.run_once()
        assert any("Partial batch" in r.getMessage() for r in caplog.records)

    def test_malformed_drop_policy_is_quiet(self, caplog):
        scheduler, _ = _scheduler(FakeClient([S1, _rec("S3", "")]))
        with caplog.at_level(logging.WARNING, logger="scaleway_sd.scheduler"):
            scheduler.run_once()
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_sink_error_does_not_undo_state(self):
        sink = RecordingSink(error=SinkError("full"))
        scheduler, _ = _scheduler(FakeClient([S1, S2], [S1]), sink)
        scheduler.run_once()
        assert scheduler.previous_identities == {"scaleway/S1", "scaleway/S2"}
        second = scheduler.run_once()
        assert second[-1].is_retraction
        assert len(sink.batches) == 2

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            _scheduler(FakeClient([]), interval=0)


class TestRun:
    def test_stop_during_wait_ends_run_promptly(self):
        polled = threading.Event()

        class SignallingClient(FakeClient):
            def list_instances(self):
                result = super().list_instances()
                polled.set()
                return result

        client = SignallingClient([S1])
        scheduler, _ = _scheduler(client, interval=3600)
        worker = threading.Thread(target=scheduler.run)
        worker.start()

        assert polled.wait(5)
        scheduler.stop()
        worker.join(5)

        assert not worker.is_alive()
        assert client.calls == 1
        assert scheduler.state is SchedulerState.STOPPED

    def test_failures_do_not_stop_the_loop(self):
        scheduler = None

        class StopAfterThree(FakeClient):
            def list_instances(self):
                if self.calls == 2:
                    scheduler.stop()
                return super().list_instances()

        client = StopAfterThree(InventoryError("down"))
        scheduler, metrics = _scheduler(client, interval=0.01)
        scheduler.run()

        assert client.calls == 3
        assert _sample(metrics, "prometheus_scaleway_sd_request_failures_total") == 3
        assert scheduler.state is SchedulerState.STOPPED

    def test_stop_before_run_never_polls(self):
        client = FakeClient([S1])
        scheduler, _ = _scheduler(client)
        scheduler.stop()
        scheduler.run()
        assert client.calls == 0
