from __future__ import annotations

from dataclasses import replace

import pytest

from dormant.constants import PowerState
from dormant.exceptions import PollTimeoutError, UnexpectedStateError
from dormant.instance import InstanceController
from tests.fakes import NO_WAIT, PUBLIC_IP, FakeCompute, make_instance

pytestmark = [pytest.mark.xdist_group("unit")]

IID = "i-0abc123"


class TestStartStop:
    def test_start_and_wait_running(self):
        compute = FakeCompute(make_instance(PowerState.STOPPED))
        controller = InstanceController(compute, NO_WAIT)

        controller.start(IID)
        instance = controller.wait_for_power_state(IID, PowerState.RUNNING)

        assert instance.power_state == PowerState.RUNNING
        assert compute.count("start_instance") == 1

    def test_stop_and_wait_stopped(self):
        compute = FakeCompute(make_instance(PowerState.RUNNING, public_ip=PUBLIC_IP))
        controller = InstanceController(compute, NO_WAIT)

        controller.stop(IID)
        instance = controller.wait_for_power_state(IID, PowerState.STOPPED)

        assert instance.power_state == PowerState.STOPPED


class TestWaitForPowerState:
    def test_passes_through_pending(self):
        base = make_instance(PowerState.PENDING)
        compute = FakeCompute(base)
        compute.script_instance(base, base, replace(base, power_state=PowerState.RUNNING))

        instance = InstanceController(compute, NO_WAIT).wait_for_power_state(IID, PowerState.RUNNING)

        assert instance.power_state == PowerState.RUNNING
        assert compute.count("describe_instance") == 3

    def test_terminated_while_waiting_for_running(self):
        base = make_instance(PowerState.PENDING)
        compute = FakeCompute(base)
        compute.script_instance(base, replace(base, power_state=PowerState.TERMINATED))

        with pytest.raises(UnexpectedStateError) as exc:
            InstanceController(compute, NO_WAIT).wait_for_power_state(IID, PowerState.RUNNING)
        assert exc.value.state == PowerState.TERMINATED

    def test_shutting_down_while_waiting_for_stopped(self):
        base = make_instance(PowerState.STOPPING)
        compute = FakeCompute(base)
        compute.script_instance(replace(base, power_state=PowerState.SHUTTING_DOWN))

        with pytest.raises(UnexpectedStateError):
            InstanceController(compute, NO_WAIT).wait_for_power_state(IID, PowerState.STOPPED)

    def test_deadline(self):
        compute = FakeCompute(make_instance(PowerState.PENDING))
        with pytest.raises(PollTimeoutError):
            InstanceController(compute, NO_WAIT).wait_for_power_state(IID, PowerState.RUNNING)
        assert compute.count("describe_instance") == NO_WAIT.instance_running.attempts


class TestResolvePublicIp:
    def test_waits_for_address(self):
        base = make_instance(PowerState.RUNNING)
        compute = FakeCompute(replace(base, public_ip="198.51.100.7"))
        compute.script_instance(base, base)

        assert InstanceController(compute, NO_WAIT).resolve_public_ip(IID) == "198.51.100.7"

    def test_instance_stopping_aborts(self):
        compute = FakeCompute(make_instance(PowerState.STOPPING))
        with pytest.raises(UnexpectedStateError):
            InstanceController(compute, NO_WAIT).resolve_public_ip(IID)

    def test_no_address_times_out(self):
        compute = FakeCompute(make_instance(PowerState.RUNNING))
        with pytest.raises(PollTimeoutError):
            InstanceController(compute, NO_WAIT).resolve_public_ip(IID)
