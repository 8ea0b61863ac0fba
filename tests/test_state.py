from nightshift.runner.state import RunnerStateChannel, RunnerStateSnapshot


def test_channel_starts_idle() -> None:
    assert RunnerStateChannel().get() == RunnerStateSnapshot(is_running=False)


def test_subscribers_receive_every_change_until_unsubscribed() -> None:
    channel = RunnerStateChannel()
    first: list[RunnerStateSnapshot] = []
    second: list[RunnerStateSnapshot] = []
    unsubscribe_first = channel.subscribe(first.append)
    channel.subscribe(second.append)

    channel.set(RunnerStateSnapshot(is_running=True))
    unsubscribe_first()
    unsubscribe_first()
    channel.set(RunnerStateSnapshot(is_running=True, active_task_id="t1", active_stage="code"))

    assert first == [RunnerStateSnapshot(is_running=True)]
    assert len(second) == 2
    assert channel.get().active_task_id == "t1"


def test_snapshot_payload_omits_absent_fields() -> None:
    assert RunnerStateSnapshot(is_running=False).to_dict() == {"isRunning": False}
    assert RunnerStateSnapshot(is_running=True, active_task_id="t1", active_stage="audit").to_dict() == {
        "isRunning": True,
        "activeTaskId": "t1",
        "activeStage": "audit",
    }
